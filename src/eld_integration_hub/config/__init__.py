"""
Configuration package for the ELD integration hub.

Exposes the configuration models and the loader function.
"""

from eld_integration_hub.config.config_models import (
    ConnectionConfig,
    DatabaseConfig,
    ELDHubConfig,
    HttpConfig,
    LoggingConfig,
    MileageMode,
    OverlapPrecedence,
    ProviderConfig,
    ReaderConfig,
    ReconciliationConfig,
    SyncConfig,
    SyncDomain,
    WebhookConfig,
)
from eld_integration_hub.config.loader import load_config

__all__: list[str] = [
    'ConnectionConfig',
    'DatabaseConfig',
    'ELDHubConfig',
    'HttpConfig',
    'LoggingConfig',
    'MileageMode',
    'OverlapPrecedence',
    'ProviderConfig',
    'ReaderConfig',
    'ReconciliationConfig',
    'SyncConfig',
    'SyncDomain',
    'WebhookConfig',
    'load_config',
]
