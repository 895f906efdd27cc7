# eld_integration_hub/webhooks.py
"""
Inbound provider webhooks.

Aggregator providers push connection and sync lifecycle events. Each event
names the provider-side connection id; the handler resolves it to a local
connection and either updates connection state or triggers the matching
sync pass.

Design Decisions:
-----------------
- The body is verified with HMAC-SHA256 over the raw bytes, compared with
  `hmac.compare_digest`. Verification is skipped only when no secret is
  configured, and that is logged as a warning on every request.

- Unknown event types and unknown connections are acknowledged and
  ignored, so the provider does not retry them forever.

- Delivery is at-least-once on the provider side. Every handler is safe to
  replay: status updates are idempotent and data events re-run a pass whose
  writes are upserts.

Usage:
------
    handler = WebhookHandler(connections, orchestrator, config)
    result = handler.handle(raw_body, request.headers.get('x-webhook-signature'))
    status = 401 if result.error_message == INVALID_SIGNATURE else 200
"""

import hashlib
import hmac
import json
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, Final

from pydantic import BaseModel, ConfigDict

from eld_integration_hub.config import ELDHubConfig, SyncDomain
from eld_integration_hub.connections import ConnectionManager, ConnectionStatus, ConnectionView
from eld_integration_hub.models import ServiceResult, SyncPassResult
from eld_integration_hub.storage.tables import SyncJob, new_id, utc_now
from eld_integration_hub.sync import SyncOrchestrator

__all__: list[str] = [
    'DATA_EVENT_DOMAINS',
    'INVALID_SIGNATURE',
    'WebhookHandler',
    'WebhookOutcome',
    'compute_signature',
    'map_external_status',
    'verify_signature',
]

logger: logging.Logger = logging.getLogger(__name__)

INVALID_SIGNATURE: Final[str] = 'Invalid signature'
INVALID_PAYLOAD: Final[str] = 'Invalid webhook payload'

DATA_EVENT_DOMAINS: Final[dict[str, SyncDomain]] = {
    'data.vehicles_updated': 'vehicles',
    'data.drivers_updated': 'drivers',
    'data.hos_updated': 'hos',
    'data.locations_updated': 'gps',
    'data.safety_events': 'fault_codes',
}

_EXTERNAL_STATUS: Final[dict[str, ConnectionStatus]] = {
    'active': ConnectionStatus.ACTIVE,
    'inactive': ConnectionStatus.DISCONNECTED,
    'disconnected': ConnectionStatus.DISCONNECTED,
    'error': ConnectionStatus.ERROR,
    'failed': ConnectionStatus.ERROR,
    'expired': ConnectionStatus.TOKEN_EXPIRED,
}


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body."""
    return hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Constant-time check of a hex signature, with or without a 'sha256=' prefix."""
    if not signature:
        return False
    provided: str = signature.strip().removeprefix('sha256=')
    return hmac.compare_digest(provided, compute_signature(body, secret))


def map_external_status(status: str | None) -> ConnectionStatus:
    """Provider connection status to ours; anything unrecognized is an error."""
    return _EXTERNAL_STATUS.get((status or '').strip().lower(), ConnectionStatus.ERROR)


class WebhookOutcome(BaseModel):
    """What the handler did with one event."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    event_type: str
    handled: bool
    connection_id: str | None = None
    detail: str | None = None
    sync_pass: SyncPassResult | None = None


class WebhookHandler:
    """
    Verifies and dispatches webhook events.

    Args:
        connections: Connection manager for lookups and status changes.
        orchestrator: Runs sync passes for data events.
        config: Hub configuration; `webhooks.secret` enables verification.
        clock: Returns the current aware UTC time.
    """

    def __init__(
        self,
        connections: ConnectionManager,
        orchestrator: SyncOrchestrator,
        config: ELDHubConfig | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._connections: ConnectionManager = connections
        self._orchestrator: SyncOrchestrator = orchestrator
        self._config: ELDHubConfig = config or ELDHubConfig()
        self._clock: Callable[[], datetime] = clock

    def handle(self, body: bytes | str, signature: str | None = None) -> ServiceResult[WebhookOutcome]:
        raw: bytes = body.encode('utf-8') if isinstance(body, str) else body

        secret = self._config.webhooks.secret
        if secret is None:
            logger.warning('Webhook secret not configured; accepting unsigned event')
        elif not verify_signature(raw, signature, secret.get_secret_value()):
            logger.warning('Rejected webhook with invalid signature')
            return ServiceResult.fail(INVALID_SIGNATURE)

        try:
            event: Any = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return ServiceResult.fail(INVALID_PAYLOAD)
        if not isinstance(event, dict) or not isinstance(event.get('type'), str):
            return ServiceResult.fail(INVALID_PAYLOAD)

        return self.dispatch(event['type'], event.get('data') or {})

    def dispatch(self, event_type: str, data: dict[str, Any]) -> ServiceResult[WebhookOutcome]:
        """Route an already-verified event."""
        logger.info('Webhook event %s', event_type)

        external_id: str | None = data.get('connectionId')
        known_event: bool = event_type in DATA_EVENT_DOMAINS or event_type in {
            'sync.completed',
            'sync.failed',
            'connection.status_changed',
            'connection.disconnected',
        }
        if not known_event:
            logger.info('Ignoring unhandled webhook event %s', event_type)
            return ServiceResult.ok(WebhookOutcome(event_type=event_type, handled=False))

        connection: ConnectionView | None = None
        if external_id:
            found: ServiceResult[ConnectionView] = self._connections.find_by_external_connection_id(
                str(external_id)
            )
            connection = found.data
        if connection is None:
            logger.info('No connection for external id %r (%s)', external_id, event_type)
            return ServiceResult.ok(
                WebhookOutcome(event_type=event_type, handled=False, detail='Connection not found')
            )

        if event_type == 'sync.completed':
            return self._sync_completed(event_type, connection, data)
        if event_type == 'sync.failed':
            return self._sync_failed(event_type, connection, data)
        if event_type == 'connection.status_changed':
            return self._status_changed(event_type, connection, data)
        if event_type == 'connection.disconnected':
            return self._disconnected(event_type, connection, data)
        return self._data_event(event_type, connection)

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _sync_completed(
        self, event_type: str, connection: ConnectionView, data: dict[str, Any]
    ) -> ServiceResult[WebhookOutcome]:
        now: datetime = self._clock()
        counts: dict[str, Any] = data.get('recordCounts') or {}
        total: int = sum(int(value) for value in counts.values() if isinstance(value, int | float))
        self._record_job(connection.id, 'completed', now, data, records_synced=total)
        self._connections.update_connection_status(connection.id, ConnectionStatus.ACTIVE)
        self._connections.update_last_sync(connection.id, now)
        return ServiceResult.ok(
            WebhookOutcome(
                event_type=event_type,
                handled=True,
                connection_id=connection.id,
                detail=f'{total} records synced by provider',
            )
        )

    def _sync_failed(
        self, event_type: str, connection: ConnectionView, data: dict[str, Any]
    ) -> ServiceResult[WebhookOutcome]:
        message: str = str(data.get('error') or 'Provider sync failed')
        self._record_job(connection.id, 'failed', self._clock(), data, error_message=message)
        self._connections.update_connection_status(connection.id, ConnectionStatus.ERROR, message)
        return ServiceResult.ok(
            WebhookOutcome(
                event_type=event_type, handled=True, connection_id=connection.id, detail=message
            )
        )

    def _status_changed(
        self, event_type: str, connection: ConnectionView, data: dict[str, Any]
    ) -> ServiceResult[WebhookOutcome]:
        status: ConnectionStatus = map_external_status(data.get('status'))
        updated: ServiceResult[ConnectionView] = self._connections.update_connection_status(
            connection.id, status, data.get('message')
        )
        if updated.error:
            return ServiceResult.fail(updated.error_message or 'Status update failed')
        return ServiceResult.ok(
            WebhookOutcome(
                event_type=event_type,
                handled=True,
                connection_id=connection.id,
                detail=status.value,
            )
        )

    def _disconnected(
        self, event_type: str, connection: ConnectionView, data: dict[str, Any]
    ) -> ServiceResult[WebhookOutcome]:
        result: ServiceResult[ConnectionView] = self._connections.disconnect_connection(
            connection.owner_id, connection.id
        )
        if result.error:
            return ServiceResult.fail(result.error_message or 'Disconnect failed')
        reason: str | None = data.get('reason')
        if reason:
            self._connections.update_connection_status(
                connection.id, ConnectionStatus.DISCONNECTED, str(reason)
            )
        return ServiceResult.ok(
            WebhookOutcome(
                event_type=event_type, handled=True, connection_id=connection.id, detail=reason
            )
        )

    def _data_event(self, event_type: str, connection: ConnectionView) -> ServiceResult[WebhookOutcome]:
        domain: SyncDomain = DATA_EVENT_DOMAINS[event_type]
        result: ServiceResult[SyncPassResult] = self._orchestrator.sync_domain(
            connection.id, domain, self._clock()
        )
        return ServiceResult.ok(
            WebhookOutcome(
                event_type=event_type,
                handled=not result.error,
                connection_id=connection.id,
                detail=result.error_message,
                sync_pass=result.data,
            )
        )

    def _record_job(
        self,
        connection_id: str,
        status: str,
        now: datetime,
        data: dict[str, Any],
        *,
        records_synced: int = 0,
        error_message: str | None = None,
    ) -> None:
        """Log a provider-run sync in the job history."""
        details: dict[str, Any] = {'source': 'webhook'}
        if data.get('syncId'):
            details['externalSyncId'] = str(data['syncId'])
        if data.get('recordCounts'):
            details['recordCounts'] = data['recordCounts']
        if data.get('dataTypes'):
            details['dataTypes'] = data['dataTypes']

        with self._orchestrator.session_factory.begin() as session:
            session.add(
                SyncJob(
                    id=new_id(),
                    connection_id=connection_id,
                    status=status,
                    domains=[str(item) for item in data.get('dataTypes') or []],
                    records_synced=records_synced,
                    error_message=error_message,
                    details=details,
                    started_at=now,
                    completed_at=now,
                )
            )
