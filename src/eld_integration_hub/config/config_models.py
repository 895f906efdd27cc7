# eld_integration_hub/config/config_models.py
"""
Configuration models for the ELD integration hub.

One YAML file configures every component: the provider OAuth apps, the HTTP
transport, connection lifecycle timing, sync windows, reader thresholds,
reconciliation policy, the datastore, webhooks, and logging.

Design Decisions:
-----------------
- All models use `extra='forbid'` so a typo in the YAML fails at load time
  instead of silently falling back to a default.

- No logging occurs within this module because the logging configuration
  itself is defined here.

- Every section has working defaults. An empty file (or no file at all)
  yields a usable configuration; OAuth client credentials can then come from
  the environment.

- Client secrets and the webhook secret are SecretStr so they never appear in
  repr() or log output.

Usage:
------
    from eld_integration_hub.config import ELDHubConfig, load_config

    config = load_config('config/eld_hub.yaml')
    config.connections.refresh_horizon_minutes   # 5
"""

from pathlib import Path
from typing import Literal, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)

__all__: list[str] = [
    'ConnectionConfig',
    'DatabaseConfig',
    'ELDHubConfig',
    'HttpConfig',
    'LogLevelName',
    'LoggingConfig',
    'MileageMode',
    'OverlapPrecedence',
    'ProviderConfig',
    'ReaderConfig',
    'ReconciliationConfig',
    'SyncConfig',
    'SyncDomain',
    'WebhookConfig',
]

# =============================================================================
# Type Aliases
# =============================================================================

LogLevelName = Literal['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']

LOG_LEVEL_VALUES: frozenset[int] = frozenset({10, 20, 30, 40, 50})

LOG_LEVEL_NAME_TO_INT: dict[LogLevelName, int] = {
    'DEBUG': 10,
    'INFO': 20,
    'WARNING': 30,
    'ERROR': 40,
    'CRITICAL': 50,
}

SyncDomain = Literal[
    'vehicles',
    'drivers',
    'gps',
    'hos',
    'hos_available_time',
    'ifta',
    'fault_codes',
    'fuel_purchases',
]

# Vehicles and drivers go first: every later pass resolves ids through the
# mappings they create.
DEFAULT_SYNC_DOMAINS: tuple[SyncDomain, ...] = (
    'vehicles',
    'drivers',
    'gps',
    'hos',
    'ifta',
    'fault_codes',
    'fuel_purchases',
)

MileageMode = Literal['eld', 'manual', 'combined']
OverlapPrecedence = Literal['eld', 'manual']


# =============================================================================
# Provider Configuration
# =============================================================================


class ProviderConfig(BaseModel):
    """
    OAuth application settings for one provider.

    Attributes:
        enabled: Disabled providers are rejected by the registry factory.
        client_id: OAuth client id. May be left empty and supplied through
            the environment ({PROVIDER}_CLIENT_ID).
        client_secret: OAuth client secret ({PROVIDER}_CLIENT_SECRET).
        base_url: API base URL override (sandbox environments).
        scopes: OAuth scope override; None uses the adapter's defaults.
        request_timeout: [connect, read] seconds for every provider request.
    """

    model_config = ConfigDict(extra='forbid')

    enabled: bool = True
    client_id: str | None = None
    client_secret: SecretStr | None = None
    base_url: str | None = None
    scopes: list[str] | None = None
    request_timeout: tuple[float, float] = (10.0, 30.0)

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, base_url: str | None) -> str | None:
        """Require an http(s) scheme and strip any trailing slash."""
        if base_url is None:
            return None
        if not base_url.startswith(('http://', 'https://')):
            raise ValueError(
                f"base_url must start with 'http://' or 'https://', got: {base_url!r}"
            )
        return base_url.rstrip('/')

    @field_validator('request_timeout')
    @classmethod
    def validate_timeout_values_positive(
        cls, timeout: tuple[float, float]
    ) -> tuple[float, float]:
        """Both timeout values must be positive."""
        connect_timeout, read_timeout = timeout
        if connect_timeout <= 0 or read_timeout <= 0:
            raise ValueError(f'request_timeout values must be positive, got: {timeout}')
        return timeout


# =============================================================================
# HTTP Transport
# =============================================================================


class HttpConfig(BaseModel):
    """
    Transport and retry settings shared by all provider clients.

    Retry Budget:
        Transient failures (timeouts, connection errors, 5xx, 429) are retried
        up to max_attempts in total. A 429 whose Retry-After exceeds
        max_retry_after_seconds is not slept on: the RateLimitError
        propagates so the sync pass can be deferred instead of blocking a
        worker for minutes.

    Attributes:
        max_attempts: Total attempts per request, including the first.
        max_retry_after_seconds: Longest provider-requested wait we will honor
            in-process.
        backoff_multiplier: Base of the exponential backoff in seconds.
        backoff_max_seconds: Cap on a single exponential backoff wait.
        verify_ssl: True, False, or path to a CA bundle.
        use_truststore: Build the SSLContext from the OS trust store.
        pool_connections: Keep-alive connections per client.
        pool_maxsize: Maximum connections per client.
    """

    model_config = ConfigDict(extra='forbid')

    max_attempts: int = Field(default=3, ge=1, le=10)
    max_retry_after_seconds: float = Field(default=30.0, ge=0.0)
    backoff_multiplier: float = Field(default=1.0, gt=0.0, le=60.0)
    backoff_max_seconds: float = Field(default=30.0, gt=0.0)
    verify_ssl: bool | str = True
    use_truststore: bool = False
    pool_connections: int = Field(default=5, ge=1)
    pool_maxsize: int = Field(default=10, ge=1)

    @field_validator('verify_ssl')
    @classmethod
    def validate_ssl_configuration(cls, verify_ssl: bool | str) -> bool | str:
        """A string value must point at an existing CA bundle file."""
        if isinstance(verify_ssl, str):
            cert_path = Path(verify_ssl)
            if not cert_path.is_file():
                raise ValueError(f'SSL certificate bundle file not found: {verify_ssl}')
        return verify_ssl


# =============================================================================
# Connection Lifecycle
# =============================================================================


class ConnectionConfig(BaseModel):
    """
    Credential lifecycle timing.

    Attributes:
        oauth_state_max_age_minutes: OAuth callbacks with an older state are
            rejected.
        refresh_horizon_minutes: Tokens expiring within this window are
            refreshed before use.
        default_sync_frequency_minutes: Sync frequency stored on new
            connections.
        default_token_lifetime_seconds: Assumed lifetime when a provider
            omits expires_in.
    """

    model_config = ConfigDict(extra='forbid')

    oauth_state_max_age_minutes: int = Field(default=30, ge=1)
    refresh_horizon_minutes: int = Field(default=5, ge=0)
    default_sync_frequency_minutes: int = Field(default=60, ge=1)
    default_token_lifetime_seconds: int = Field(default=3600, ge=1)


# =============================================================================
# Sync
# =============================================================================


class SyncConfig(BaseModel):
    """
    Time windows and ordering for sync runs.

    Attributes:
        hos_lookback_days: HOS logs window ending now.
        fault_code_lookback_days: Fault code window ending now.
        fuel_purchase_lookback_days: Fuel purchase window ending now.
        ifta_previous_quarter: Also re-sync the previous quarter's IFTA data.
        auto_create_entities: Create local vehicles/drivers for unmatched
            external records instead of leaving them unmapped.
        schedule_threshold_minutes: Default staleness threshold for the
            scheduled sweep.
        domains: Passes run by sync_all when none are given, in order.
    """

    model_config = ConfigDict(extra='forbid')

    hos_lookback_days: int = Field(default=14, ge=1, le=90)
    fault_code_lookback_days: int = Field(default=30, ge=1, le=365)
    fuel_purchase_lookback_days: int = Field(default=30, ge=1, le=365)
    ifta_previous_quarter: bool = True
    auto_create_entities: bool = False
    schedule_threshold_minutes: int = Field(default=60, ge=1)
    domains: tuple[SyncDomain, ...] = DEFAULT_SYNC_DOMAINS

    @field_validator('domains')
    @classmethod
    def validate_unique_domains(
        cls, domains: tuple[SyncDomain, ...]
    ) -> tuple[SyncDomain, ...]:
        """Each domain may appear at most once."""
        if len(set(domains)) != len(domains):
            raise ValueError(f'domains must not repeat, got: {list(domains)}')
        return domains


# =============================================================================
# Readers & Reconciliation
# =============================================================================


class ReaderConfig(BaseModel):
    """Thresholds used by the HOS, GPS and diagnostics readers."""

    model_config = ConfigDict(extra='forbid')

    hos_low_time_minutes: int = Field(default=120, ge=0)
    hos_critical_minutes: int = Field(default=30, ge=0)
    gps_stale_minutes: int = Field(default=30, ge=1)
    gps_moving_speed_mph: float = Field(default=5.0, ge=0.0)
    compliance_lookback_days: int = Field(default=7, ge=1)
    default_radius_miles: float = Field(default=50.0, gt=0.0)
    active_fault_limit: int = Field(default=50, ge=1)

    @model_validator(mode='after')
    def ensure_critical_below_low_time(self) -> Self:
        """The critical threshold must not exceed the warning threshold."""
        if self.hos_critical_minutes > self.hos_low_time_minutes:
            raise ValueError(
                'hos_critical_minutes must be <= hos_low_time_minutes, got '
                f'{self.hos_critical_minutes} > {self.hos_low_time_minutes}'
            )
        return self


class ReconciliationConfig(BaseModel):
    """
    IFTA reconciliation policy.

    Attributes:
        default_mode: Mode used when the caller does not pass one.
        overlap_precedence: Which source supplies a jurisdiction's combined
            miles when both ELD and manual data exist.
    """

    model_config = ConfigDict(extra='forbid')

    default_mode: MileageMode = 'eld'
    overlap_precedence: OverlapPrecedence = 'eld'


# =============================================================================
# Datastore & Webhooks
# =============================================================================


class DatabaseConfig(BaseModel):
    """SQLAlchemy engine settings."""

    model_config = ConfigDict(extra='forbid')

    url: str = 'sqlite:///eld_hub.db'
    echo: bool = False


class WebhookConfig(BaseModel):
    """Inbound webhook settings. A None secret disables signature checks."""

    model_config = ConfigDict(extra='forbid')

    secret: SecretStr | None = None


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """
    Console and optional file logging.

    Levels can be names ('DEBUG') or their numeric values (10). When a
    file_path is given without file_level, the file captures DEBUG.

    Attributes:
        file_path: Log file path (.log appended if missing). None disables it.
        console_level: Minimum level for console output.
        file_level: Minimum level for file output.
    """

    model_config = ConfigDict(extra='forbid')

    file_path: Path | None = None
    console_level: LogLevelName | int = 'INFO'
    file_level: LogLevelName | int | None = None

    @field_validator('file_path', mode='before')
    @classmethod
    def normalize_log_file_path(cls, path_value: str | Path | None) -> Path | None:
        """Ensure a .log extension."""
        if path_value is None:
            return None
        path_string: str = str(path_value)
        if not path_string.lower().endswith('.log'):
            path_string = f'{path_string}.log'
        return Path(path_string)

    @field_validator('console_level', 'file_level', mode='after')
    @classmethod
    def validate_numeric_log_level(
        cls, level_value: LogLevelName | int | None
    ) -> LogLevelName | int | None:
        """Numeric levels must be one of the standard logging constants."""
        if level_value is None or isinstance(level_value, str):
            return level_value
        if level_value not in LOG_LEVEL_VALUES:
            raise ValueError(
                f'Numeric log level must be one of {sorted(LOG_LEVEL_VALUES)}, '
                f'got: {level_value}'
            )
        return level_value

    @model_validator(mode='after')
    def ensure_file_logging_configuration_consistency(self) -> Self:
        """file_level without file_path has nowhere to write."""
        if self.file_path is not None and self.file_level is None:
            self.file_level = 'DEBUG'
        if self.file_level is not None and self.file_path is None:
            raise ValueError('file_level is specified but file_path is missing')
        return self

    def get_console_level_int(self) -> int:
        """Console level as a logging module integer."""
        if isinstance(self.console_level, int):
            return self.console_level
        return LOG_LEVEL_NAME_TO_INT[self.console_level]

    def get_file_level_int(self) -> int | None:
        """File level as a logging module integer, or None."""
        if self.file_level is None:
            return None
        if isinstance(self.file_level, int):
            return self.file_level
        return LOG_LEVEL_NAME_TO_INT[self.file_level]


# =============================================================================
# Root Configuration
# =============================================================================


class ELDHubConfig(BaseModel):
    """
    Root configuration model.

    Every section is optional in the YAML; missing sections take defaults.

    Example YAML:
        providers:
          motive:
            client_id: abc
            client_secret: xyz
          samsara:
            enabled: false
        http:
          max_attempts: 4
        reconciliation:
          overlap_precedence: manual
        database:
          url: postgresql+psycopg://localhost/fleet
    """

    model_config = ConfigDict(extra='forbid')

    providers: dict[str, ProviderConfig] = Field(default_factory=dict)
    http: HttpConfig = Field(default_factory=HttpConfig)
    connections: ConnectionConfig = Field(default_factory=ConnectionConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    readers: ReaderConfig = Field(default_factory=ReaderConfig)
    reconciliation: ReconciliationConfig = Field(default_factory=ReconciliationConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    webhooks: WebhookConfig = Field(default_factory=WebhookConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('providers')
    @classmethod
    def normalize_provider_keys(
        cls, providers: dict[str, ProviderConfig]
    ) -> dict[str, ProviderConfig]:
        """Provider ids are lowercase everywhere."""
        return {name.strip().lower(): config for name, config in providers.items()}

    def provider_config(self, provider_id: str) -> ProviderConfig:
        """Return the provider's section, or defaults when it is absent."""
        return self.providers.get(provider_id.lower(), ProviderConfig())
