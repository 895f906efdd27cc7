# eld_integration_hub/storage/upsert.py
"""
Dialect-aware idempotent upserts.

PostgreSQL and SQLite both support INSERT ... ON CONFLICT; the two dialect
`insert` constructs differ only in their import, so this module picks the
right one from the session's bind and builds the statement the same way for
both.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import DeclarativeBase, Session

__all__: list[str] = ['insert_ignore', 'upsert']

logger: logging.Logger = logging.getLogger(__name__)


def _insert_for(session: Session, table: Table) -> Any:
    dialect_name: str = session.get_bind().dialect.name
    if dialect_name == 'postgresql':
        return postgresql.insert(table)
    if dialect_name == 'sqlite':
        return sqlite.insert(table)
    raise NotImplementedError(f'Upsert is not supported for dialect {dialect_name!r}')


def upsert(
    session: Session,
    model: type[DeclarativeBase],
    values: Mapping[str, Any],
    index_elements: Sequence[str],
    update_columns: Iterable[str] | None = None,
) -> None:
    """
    Insert a row, or update it in place when its unique key already exists.

    Args:
        session: Open session inside a transaction.
        model: Mapped class to write.
        values: Column values for the row (must include the key columns).
        index_elements: Columns of the unique constraint to conflict on.
        update_columns: Columns to overwrite on conflict. Defaults to every
            supplied column except the key columns and 'id'.
    """
    table: Table = model.__table__  # pyright: ignore[reportAssignmentType]
    statement: Any = _insert_for(session, table).values(**values)

    key_columns: set[str] = {*index_elements, 'id'}
    columns: list[str] = (
        list(update_columns)
        if update_columns is not None
        else [name for name in values if name not in key_columns]
    )

    if not columns:
        statement = statement.on_conflict_do_nothing(index_elements=list(index_elements))
    else:
        statement = statement.on_conflict_do_update(
            index_elements=list(index_elements),
            set_={name: statement.excluded[name] for name in columns},
        )
    session.execute(statement)


def insert_ignore(
    session: Session,
    model: type[DeclarativeBase],
    values: Mapping[str, Any],
    index_elements: Sequence[str],
) -> bool:
    """
    Insert a row unless its unique key already exists.

    Returns:
        True when a new row was inserted.
    """
    table: Table = model.__table__  # pyright: ignore[reportAssignmentType]
    statement: Any = (
        _insert_for(session, table)
        .values(**values)
        .on_conflict_do_nothing(index_elements=list(index_elements))
    )
    inserted: bool = session.execute(statement).rowcount > 0  # pyright: ignore[reportAttributeAccessIssue]
    logger.debug('insert_ignore into %s: inserted=%r', table.name, inserted)
    return inserted
