# eld_integration_hub/readers/base.py
"""
Shared plumbing for the read-side services.

Readers never talk to a provider. They answer from the datastore, scoped to
an owner's primary connection.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Final

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from eld_integration_hub.config import ELDHubConfig, ReaderConfig
from eld_integration_hub.connections import select_primary_connection
from eld_integration_hub.storage import ELDConnection, EntityMapping
from eld_integration_hub.storage.tables import utc_now

__all__: list[str] = ['NO_ACTIVE_CONNECTION', 'ReaderBase']

logger: logging.Logger = logging.getLogger(__name__)

NO_ACTIVE_CONNECTION: Final[str] = 'No active ELD connection'


class ReaderBase:
    """
    Base for HosReader, GpsReader and DiagnosticsReader.

    Args:
        session_factory: Datastore handle.
        config: Hub configuration; readers use its `readers` thresholds.
        clock: Returns the current aware UTC time.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: ELDHubConfig | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory: sessionmaker[Session] = session_factory
        self._config: ELDHubConfig = config or ELDHubConfig()
        self._clock: Callable[[], datetime] = clock

    @property
    def thresholds(self) -> ReaderConfig:
        return self._config.readers

    @staticmethod
    def _primary_connection(session: Session, owner_id: str) -> ELDConnection | None:
        rows: list[ELDConnection] = list(
            session.scalars(select(ELDConnection).where(ELDConnection.owner_id == owner_id))
        )
        return select_primary_connection(rows)

    @staticmethod
    def _external_id(
        session: Session,
        connection_id: str,
        entity_type: str,
        local_id: str,
    ) -> str | None:
        return session.scalar(
            select(EntityMapping.external_id)
            .where(
                EntityMapping.connection_id == connection_id,
                EntityMapping.entity_type == entity_type,
                EntityMapping.local_id == local_id,
            )
            .order_by(EntityMapping.created_at)
            .limit(1)
        )
