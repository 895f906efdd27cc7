"""
Tests for eld_integration_hub.hub module.
"""

from pathlib import Path

import yaml
from sqlalchemy import Engine

from conftest import OWNER_ID
from eld_integration_hub import ELDHub
from eld_integration_hub.config import ELDHubConfig


class TestELDHub:
    """Test service wiring."""

    def test_services_share_one_datastore(self, engine: Engine) -> None:
        """Should hand every service the same session factory."""
        hub = ELDHub(ELDHubConfig(), engine=engine)

        assert hub.orchestrator.session_factory is hub.session_factory
        assert hub.orchestrator.mapping is hub.mapping
        assert hub.connections.registry is hub.registry

    def test_readers_answer_for_unknown_owner(self, engine: Engine) -> None:
        hub = ELDHub(ELDHubConfig(), engine=engine)

        assert hub.hos.get_hos_dashboard(OWNER_ID).error
        assert hub.diagnostics.get_diagnostics_data(OWNER_ID).data is not None

    def test_from_config(self, tmp_path: Path) -> None:
        """Should load YAML, build its own engine and list enabled providers."""
        config_path: Path = tmp_path / 'eld_hub.yaml'
        config_path.write_text(
            yaml.safe_dump(
                {
                    'database': {'url': 'sqlite://'},
                    'providers': {'terminal': {'enabled': False}},
                }
            ),
            encoding='utf-8',
        )

        hub = ELDHub.from_config(config_path)

        try:
            assert [info.id for info in hub.registry.list_providers()] == ['motive', 'samsara']
        finally:
            hub.close()
