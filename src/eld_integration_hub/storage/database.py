# eld_integration_hub/storage/database.py
"""
Engine and session factory construction.

The hosting application owns schema management; `create_schema` exists for
local development and tests against SQLite.
"""

import logging
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from eld_integration_hub.config import DatabaseConfig
from eld_integration_hub.storage.tables import Base

__all__: list[str] = ['build_engine', 'build_session_factory', 'create_schema']

logger: logging.Logger = logging.getLogger(__name__)


def build_engine(config: DatabaseConfig | None = None) -> Engine:
    """
    Create a SQLAlchemy engine from DatabaseConfig.

    In-memory SQLite URLs get a StaticPool so every session shares the one
    connection (and therefore the one database). SQLite connections also
    enable foreign key enforcement.
    """
    database_config: DatabaseConfig = config or DatabaseConfig()
    url: str = database_config.url
    engine_kwargs: dict[str, Any] = {'echo': database_config.echo}

    if url.startswith('sqlite'):
        engine_kwargs['connect_args'] = {'check_same_thread': False}
        if ':memory:' in url or url in {'sqlite://', 'sqlite:///'}:
            engine_kwargs['poolclass'] = StaticPool

    engine: Engine = create_engine(url, **engine_kwargs)

    if engine.dialect.name == 'sqlite':
        event.listen(engine, 'connect', _enable_sqlite_foreign_keys)

    logger.info('Database engine created for dialect %r', engine.dialect.name)
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor: Any = dbapi_connection.cursor()
    cursor.execute('PRAGMA foreign_keys=ON')
    cursor.close()


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory handed to every service component."""
    return sessionmaker(bind=engine, expire_on_commit=False)


def create_schema(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(engine)
    logger.info('Created %d tables', len(Base.metadata.tables))
