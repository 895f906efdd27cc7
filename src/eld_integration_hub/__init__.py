# eld_integration_hub/__init__.py
"""
ELD Integration Hub - multi-provider ELD and telematics integration core.

Connects to electronic-logging and fleet-telematics providers, normalizes
their APIs into one canonical model, and keeps a relational datastore in
sync with them:

1. **Provider adapters**: Motive and Samsara natively, many more through the
   Terminal aggregator, all behind one ELDProvider interface with declared
   capabilities.

2. **Connection manager**: OAuth and API-key onboarding, token expiry and
   refresh, soft disconnect and hard delete.

3. **Entity mapping**: tiered auto-matching of provider vehicles and drivers
   onto local records, with manual overrides that always win.

4. **Sync orchestrator**: per-domain passes (vehicles, drivers, GPS, HOS,
   IFTA, fault codes, fuel) with idempotent upserts, a single token refresh
   retry, and rate-limit aware partial failure.

5. **Readers and reconciliation**: HOS, GPS and diagnostics read models, and
   IFTA jurisdiction mileage reconciled against manual trip records.

Quick Start:
    >>> from eld_integration_hub import ELDHub
    >>>
    >>> hub = ELDHub.from_config('config/eld_hub.yaml')
    >>> started = hub.connections.start_authorization(owner_id, 'motive', redirect_uri)
    >>> # ... user consents, provider redirects back ...
    >>> hub.connections.handle_oauth_callback(code, state, redirect_uri)
    >>> hub.orchestrator.run_scheduled_sync()
    >>>
    >>> report = hub.reconciliation.get_jurisdiction_mileage(owner_id, '2024-Q3', 'combined')
    >>> report.data.to_dataframe()

For more information, see README.md and DESIGN.md.
"""

__version__ = '0.1.0'

from eld_integration_hub.common import setup_logger
from eld_integration_hub.config import ELDHubConfig, load_config
from eld_integration_hub.connections import ConnectionManager, ConnectionStatus
from eld_integration_hub.errors import (
    APIError,
    AuthError,
    ELDError,
    RateLimitError,
    TransientAPIError,
    UnsupportedCapabilityError,
)
from eld_integration_hub.hub import ELDHub
from eld_integration_hub.mapping import EntityMappingService, EntityType
from eld_integration_hub.models import ServiceResult
from eld_integration_hub.providers import ELDProvider, ProviderCapability
from eld_integration_hub.readers import DiagnosticsReader, GpsReader, HosReader
from eld_integration_hub.reconciliation import IftaReconciliationEngine, reconcile
from eld_integration_hub.registry import ProviderRegistry
from eld_integration_hub.sync import SyncOrchestrator
from eld_integration_hub.webhooks import WebhookHandler

__all__: list[str] = [
    'APIError',
    'AuthError',
    'ConnectionManager',
    'ConnectionStatus',
    'DiagnosticsReader',
    'ELDError',
    'ELDHub',
    'ELDHubConfig',
    'ELDProvider',
    'EntityMappingService',
    'EntityType',
    'GpsReader',
    'HosReader',
    'IftaReconciliationEngine',
    'ProviderCapability',
    'ProviderRegistry',
    'RateLimitError',
    'ServiceResult',
    'SyncOrchestrator',
    'TransientAPIError',
    'UnsupportedCapabilityError',
    'WebhookHandler',
    '__version__',
    'load_config',
    'reconcile',
    'setup_logger',
]
