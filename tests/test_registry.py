"""
Tests for eld_integration_hub.registry module.

Tests provider lookup, discovery, credential resolution, and the adapter
factory.
"""

import pytest
from pydantic import SecretStr

from eld_integration_hub.config import ELDHubConfig, ProviderConfig
from eld_integration_hub.errors import ProviderNotFoundError
from eld_integration_hub.providers import (
    MotiveProvider,
    ProviderCapability,
    SamsaraProvider,
    TerminalProvider,
)
from eld_integration_hub.registry import OAuthOverride, ProviderRegistry


@pytest.fixture
def registry() -> ProviderRegistry:
    return ProviderRegistry(
        ELDHubConfig(
            providers={
                'motive': ProviderConfig(
                    client_id='motive-client',
                    client_secret=SecretStr('motive-secret'),
                ),
            }
        )
    )


@pytest.fixture(autouse=True)
def clean_provider_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Credentials in the developer's shell must not leak into tests."""
    for provider_id in ('MOTIVE', 'SAMSARA', 'TERMINAL'):
        monkeypatch.delenv(f'{provider_id}_CLIENT_ID', raising=False)
        monkeypatch.delenv(f'{provider_id}_CLIENT_SECRET', raising=False)


class TestLookup:
    """Test provider lookup by id."""

    def test_get_is_case_insensitive(self, registry: ProviderRegistry) -> None:
        """Should resolve ids regardless of case and padding."""
        assert registry.get('Motive') is MotiveProvider
        assert registry.get(' SAMSARA ') is SamsaraProvider
        assert registry.get('terminal') is TerminalProvider

    def test_unknown_provider_raises(self, registry: ProviderRegistry) -> None:
        """Should raise ProviderNotFoundError listing the known providers."""
        with pytest.raises(ProviderNotFoundError) as exc_info:
            registry.get('geotab')

        assert exc_info.value.provider == 'geotab'
        assert 'motive' in exc_info.value.available_providers
        assert exc_info.value.code == 'UNKNOWN_PROVIDER'

    def test_info_exposes_public_metadata(self, registry: ProviderRegistry) -> None:
        """Should describe the provider without exposing credentials."""
        info = registry.info('motive')

        assert info.id == 'motive'
        assert info.auth_type == 'oauth2'
        assert 'ifta' in info.capabilities
        assert info.capabilities == tuple(sorted(info.capabilities))


class TestDiscovery:
    """Test list and capability queries."""

    def test_list_is_sorted(self, registry: ProviderRegistry) -> None:
        """Should list every enabled provider ordered by id."""
        assert [info.id for info in registry.list_providers()] == [
            'motive',
            'samsara',
            'terminal',
        ]

    def test_disabled_provider_is_hidden(self) -> None:
        """Should omit providers disabled in configuration."""
        registry = ProviderRegistry(
            ELDHubConfig(providers={'Samsara': ProviderConfig(enabled=False)})
        )

        assert not registry.is_enabled('samsara')
        assert [info.id for info in registry.list_providers()] == ['motive', 'terminal']

    def test_provider_supports(self, registry: ProviderRegistry) -> None:
        """Should answer capability checks without raising for unknown input."""
        assert registry.provider_supports('motive', ProviderCapability.FUEL_PURCHASES)
        assert not registry.provider_supports('terminal', 'fuel_purchases')
        assert not registry.provider_supports('geotab', 'vehicles')
        assert not registry.provider_supports('motive', 'teleportation')

    def test_ifta_capable_providers(self, registry: ProviderRegistry) -> None:
        """Should return every provider that declares IFTA."""
        ids: list[str] = [info.id for info in registry.ifta_capable_providers()]

        assert ids == ['motive', 'samsara', 'terminal']


class TestCredentialResolution:
    """Test override, then config, then environment precedence."""

    def test_config_credentials_used(self, registry: ProviderRegistry) -> None:
        """Should use configured credentials when no override is given."""
        resolved: ProviderConfig = registry.resolve_provider_config('motive')

        assert resolved.client_id == 'motive-client'
        assert resolved.client_secret is not None
        assert resolved.client_secret.get_secret_value() == 'motive-secret'

    def test_override_wins_over_config(self, registry: ProviderRegistry) -> None:
        """Should prefer per-call override credentials."""
        resolved: ProviderConfig = registry.resolve_provider_config(
            'motive', OAuthOverride(client_id='tenant-client')
        )

        assert resolved.client_id == 'tenant-client'
        assert resolved.client_secret is not None
        assert resolved.client_secret.get_secret_value() == 'motive-secret'

    def test_environment_fills_missing_credentials(
        self,
        registry: ProviderRegistry,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Should fall back to {ID}_CLIENT_ID and {ID}_CLIENT_SECRET."""
        monkeypatch.setenv('SAMSARA_CLIENT_ID', 'env-client')
        monkeypatch.setenv('SAMSARA_CLIENT_SECRET', 'env-secret')

        resolved: ProviderConfig = registry.resolve_provider_config('samsara')

        assert resolved.client_id == 'env-client'
        assert resolved.client_secret is not None
        assert resolved.client_secret.get_secret_value() == 'env-secret'

    def test_validation_lists_every_problem(self, registry: ProviderRegistry) -> None:
        """Should report the missing token and both missing credentials."""
        validation = registry.validate_provider_config('samsara')

        assert not validation.valid
        assert len(validation.errors) == 3  # noqa: PLR2004
        assert validation.errors[0] == 'Access token is required'
        assert 'SAMSARA_CLIENT_ID' in validation.errors[1]
        assert 'SAMSARA_CLIENT_SECRET' in validation.errors[2]

    def test_validation_passes_with_everything(self, registry: ProviderRegistry) -> None:
        """Should be valid once token and credentials are present."""
        validation = registry.validate_provider_config('motive', access_token='token')

        assert validation.valid
        assert validation.errors == ()

    def test_validation_of_unknown_provider(self, registry: ProviderRegistry) -> None:
        """Should not raise for an unknown provider."""
        validation = registry.validate_provider_config('geotab', access_token='token')

        assert not validation.valid
        assert validation.errors == ('Unknown provider: geotab',)


class TestFactory:
    """Test adapter construction."""

    def test_creates_configured_adapter(self, registry: ProviderRegistry) -> None:
        """Should build the adapter class with resolved credentials and tokens."""
        provider = registry.create_provider(
            'MOTIVE', access_token='access', refresh_token='refresh'
        )

        assert isinstance(provider, MotiveProvider)
        assert provider.client_id == 'motive-client'
        assert provider.access_token == 'access'
        assert provider.refresh_token == 'refresh'
        provider.close()

    def test_disabled_provider_cannot_be_created(self) -> None:
        """Should refuse to build a disabled provider."""
        registry = ProviderRegistry(
            ELDHubConfig(providers={'terminal': ProviderConfig(enabled=False)})
        )

        with pytest.raises(ProviderNotFoundError):
            registry.create_provider('terminal', access_token='token')
