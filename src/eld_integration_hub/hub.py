# eld_integration_hub/hub.py
"""
One-stop wiring of every service around a single datastore.

Usage:
------
    hub = ELDHub.from_config('config/eld_hub.yaml')
    hub.orchestrator.run_scheduled_sync()

    # Tests and embedding applications can hand in their own engine
    hub = ELDHub(load_config(None), engine=engine)
"""

import logging
from pathlib import Path
from typing import Self

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from eld_integration_hub.common.logger import setup_logger
from eld_integration_hub.config import ELDHubConfig, load_config
from eld_integration_hub.connections import ConnectionManager
from eld_integration_hub.mapping import EntityMappingService
from eld_integration_hub.readers import DiagnosticsReader, GpsReader, HosReader
from eld_integration_hub.reconciliation import IftaReconciliationEngine
from eld_integration_hub.registry import ProviderRegistry
from eld_integration_hub.storage import build_engine, build_session_factory
from eld_integration_hub.sync import SyncOrchestrator
from eld_integration_hub.webhooks import WebhookHandler

__all__: list[str] = ['ELDHub']

logger: logging.Logger = logging.getLogger(__name__)


class ELDHub:
    """
    Builds the registry, connection manager, mapping service, orchestrator,
    readers, reconciliation engine and webhook handler from one config.

    Args:
        config: Validated hub configuration.
        engine: Existing engine; built from `config.database` when omitted.
    """

    def __init__(self, config: ELDHubConfig, engine: Engine | None = None) -> None:
        self.config: ELDHubConfig = config
        self.engine: Engine = engine or build_engine(config.database)
        self.session_factory: sessionmaker[Session] = build_session_factory(self.engine)

        self.registry: ProviderRegistry = ProviderRegistry(config)
        self.connections: ConnectionManager = ConnectionManager(
            self.session_factory, self.registry, config
        )
        self.mapping: EntityMappingService = EntityMappingService(self.session_factory, config)
        self.orchestrator: SyncOrchestrator = SyncOrchestrator(
            self.session_factory, self.connections, self.mapping, config
        )
        self.hos: HosReader = HosReader(self.session_factory, config)
        self.gps: GpsReader = GpsReader(self.session_factory, config)
        self.diagnostics: DiagnosticsReader = DiagnosticsReader(self.session_factory, config)
        self.reconciliation: IftaReconciliationEngine = IftaReconciliationEngine(
            self.session_factory, config
        )
        self.webhooks: WebhookHandler = WebhookHandler(self.connections, self.orchestrator, config)

    @classmethod
    def from_config(cls, config_path: Path | str | None = None) -> Self:
        """Load configuration, set up package logging, and wire the services."""
        config: ELDHubConfig = load_config(config_path)
        setup_logger(config=config.logging)
        hub: Self = cls(config)
        logger.info(
            'ELD hub ready with providers: %s',
            ', '.join(info.id for info in hub.registry.list_providers()),
        )
        return hub

    def close(self) -> None:
        self.engine.dispose()
