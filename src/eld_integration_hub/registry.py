# eld_integration_hub/registry.py
"""
Provider registry: the closed table of supported ELD adapters.

Design Decisions:
-----------------
- Case-insensitive lookups: 'MOTIVE', 'Motive' and 'motive' all resolve.

- The table is a MappingProxyType built at import time. Adding a provider
  means adding one adapter class and one table entry; nothing else
  dispatches on provider id.

- OAuth client credentials are resolved per call: an explicit override
  wins, then the configured ProviderConfig, then the {PROVIDER}_CLIENT_ID /
  {PROVIDER}_CLIENT_SECRET environment variables.

Usage:
------
    from eld_integration_hub.registry import ProviderRegistry

    registry = ProviderRegistry(config)
    registry.ifta_capable_providers()
    provider = registry.create_provider('samsara', access_token='...')
"""

import logging
import os
from collections.abc import Mapping
from datetime import datetime
from types import MappingProxyType
from typing import Final

import httpx
from pydantic import BaseModel, ConfigDict, SecretStr

from eld_integration_hub.config import ELDHubConfig, ProviderConfig
from eld_integration_hub.errors import ProviderNotFoundError
from eld_integration_hub.providers import (
    ELDProvider,
    MotiveProvider,
    ProviderCapability,
    SamsaraProvider,
    TerminalProvider,
)

__all__: list[str] = [
    'PROVIDER_CLASSES',
    'ConfigValidation',
    'OAuthOverride',
    'ProviderInfo',
    'ProviderRegistry',
]

logger: logging.Logger = logging.getLogger(__name__)

PROVIDER_CLASSES: Final[Mapping[str, type[ELDProvider]]] = MappingProxyType(
    {
        MotiveProvider.provider_id: MotiveProvider,
        SamsaraProvider.provider_id: SamsaraProvider,
        TerminalProvider.provider_id: TerminalProvider,
    }
)


# =============================================================================
# Registry Models
# =============================================================================


class ProviderInfo(BaseModel):
    """Public metadata for a provider picker."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    id: str
    name: str
    description: str
    capabilities: tuple[str, ...]
    auth_type: str
    docs_url: str
    requires_client_id: bool = True
    requires_client_secret: bool = True


class OAuthOverride(BaseModel):
    """Per-call OAuth client credentials that take precedence over config."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    client_id: str | None = None
    client_secret: SecretStr | None = None


class ConfigValidation(BaseModel):
    """Outcome of validate_provider_config."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    valid: bool
    errors: tuple[str, ...] = ()


# =============================================================================
# Registry
# =============================================================================


class ProviderRegistry:
    """
    Lookup, discovery and construction of ELD adapters.

    Args:
        config: Hub configuration supplying provider settings and HTTP
            transport options. Defaults are used when omitted.
    """

    def __init__(self, config: ELDHubConfig | None = None) -> None:
        self._config: ELDHubConfig = config or ELDHubConfig()

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def get(self, provider_id: str) -> type[ELDProvider]:
        """
        Return the adapter class for a provider id.

        Raises:
            ProviderNotFoundError: If the id is not registered.
        """
        provider_class: type[ELDProvider] | None = PROVIDER_CLASSES.get(
            (provider_id or '').strip().lower()
        )
        if provider_class is None:
            raise ProviderNotFoundError(
                provider=provider_id,
                available_providers=list(PROVIDER_CLASSES.keys()),
            )
        return provider_class

    def info(self, provider_id: str) -> ProviderInfo:
        """Public metadata for one provider."""
        return _describe(self.get(provider_id))

    def is_enabled(self, provider_id: str) -> bool:
        """Registered and not disabled in config."""
        return (
            provider_id.strip().lower() in PROVIDER_CLASSES
            and self._config.provider_config(provider_id).enabled
        )

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    def list_providers(self) -> list[ProviderInfo]:
        """Every enabled provider, sorted by id."""
        return [
            _describe(PROVIDER_CLASSES[provider_id])
            for provider_id in sorted(PROVIDER_CLASSES)
            if self.is_enabled(provider_id)
        ]

    def provider_supports(
        self,
        provider_id: str,
        capability: ProviderCapability | str,
    ) -> bool:
        """False for unknown providers rather than raising."""
        try:
            provider_class: type[ELDProvider] = self.get(provider_id)
        except ProviderNotFoundError:
            return False
        try:
            return ProviderCapability(capability) in provider_class.capabilities
        except ValueError:
            return False

    def providers_with_capability(
        self,
        capability: ProviderCapability | str,
    ) -> list[ProviderInfo]:
        return [
            info
            for info in self.list_providers()
            if self.provider_supports(info.id, capability)
        ]

    def ifta_capable_providers(self) -> list[ProviderInfo]:
        return self.providers_with_capability(ProviderCapability.IFTA)

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def resolve_provider_config(
        self,
        provider_id: str,
        oauth_override: OAuthOverride | None = None,
    ) -> ProviderConfig:
        """
        Merge override, config and environment into one ProviderConfig.

        Each credential is taken from the first source that has it.
        """
        provider_key: str = self.get(provider_id).provider_id
        configured: ProviderConfig = self._config.provider_config(provider_key)
        override: OAuthOverride = oauth_override or OAuthOverride()
        env_prefix: str = provider_key.upper()

        client_id: str | None = (
            override.client_id
            or configured.client_id
            or os.environ.get(f'{env_prefix}_CLIENT_ID')
        )
        client_secret: SecretStr | None = override.client_secret or configured.client_secret
        if client_secret is None:
            env_secret: str | None = os.environ.get(f'{env_prefix}_CLIENT_SECRET')
            client_secret = SecretStr(env_secret) if env_secret else None

        return configured.model_copy(
            update={'client_id': client_id, 'client_secret': client_secret}
        )

    def validate_provider_config(
        self,
        provider_id: str,
        access_token: str | None = None,
        oauth_override: OAuthOverride | None = None,
    ) -> ConfigValidation:
        """
        Check that a provider can be constructed for API calls.

        Requires an access token and both client credentials (from any
        source). Never raises.
        """
        try:
            provider_class: type[ELDProvider] = self.get(provider_id)
        except ProviderNotFoundError:
            return ConfigValidation(valid=False, errors=(f'Unknown provider: {provider_id}',))

        errors: list[str] = []
        if provider_class.auth_type == 'oauth2' and not access_token:
            errors.append('Access token is required')

        resolved: ProviderConfig = self.resolve_provider_config(provider_id, oauth_override)
        env_prefix: str = provider_class.provider_id.upper()
        if not resolved.client_id:
            errors.append(
                f'Client ID is required for {provider_class.display_name}. '
                f'Set via config or {env_prefix}_CLIENT_ID env var.'
            )
        if resolved.client_secret is None:
            errors.append(
                f'Client Secret is required for {provider_class.display_name}. '
                f'Set via config or {env_prefix}_CLIENT_SECRET env var.'
            )

        return ConfigValidation(valid=not errors, errors=tuple(errors))

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    def create_provider(
        self,
        provider_id: str,
        *,
        access_token: str | None = None,
        refresh_token: str | None = None,
        token_expires_at: datetime | None = None,
        oauth_override: OAuthOverride | None = None,
        http_client: httpx.Client | None = None,
    ) -> ELDProvider:
        """
        Construct an adapter for one connection.

        Raises:
            ProviderNotFoundError: If the id is unknown or disabled in config.
        """
        provider_class: type[ELDProvider] = self.get(provider_id)
        if not self.is_enabled(provider_class.provider_id):
            raise ProviderNotFoundError(
                provider=provider_id,
                available_providers=[info.id for info in self.list_providers()],
            )

        logger.debug('Creating %s adapter', provider_class.provider_id)
        return provider_class(
            self.resolve_provider_config(provider_class.provider_id, oauth_override),
            access_token=access_token,
            refresh_token=refresh_token,
            token_expires_at=token_expires_at,
            http_config=self._config.http,
            http_client=http_client,
        )


def _describe(provider_class: type[ELDProvider]) -> ProviderInfo:
    return ProviderInfo(
        id=provider_class.provider_id,
        name=provider_class.display_name,
        description=provider_class.description,
        capabilities=tuple(
            sorted(capability.value for capability in provider_class.capabilities)
        ),
        auth_type=provider_class.auth_type,
        docs_url=provider_class.docs_url,
    )
