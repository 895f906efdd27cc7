"""
Tests for eld_integration_hub.webhooks module.

Tests signature verification, payload validation, and dispatch of
connection lifecycle and data events.
"""

import json
from collections.abc import Callable, Iterator
from datetime import datetime
from typing import Any
from unittest.mock import patch

import pytest
from pydantic import SecretStr
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from conftest import FIXED_NOW, FakeProvider, seed_connection
from eld_integration_hub.config import ELDHubConfig, WebhookConfig
from eld_integration_hub.connections import ConnectionManager
from eld_integration_hub.models import ServiceResult
from eld_integration_hub.storage import ELDConnection, SyncJob
from eld_integration_hub.sync import SyncOrchestrator
from eld_integration_hub.webhooks import (
    INVALID_SIGNATURE,
    WebhookHandler,
    compute_signature,
    map_external_status,
    verify_signature,
)

SECRET: str = 'whsec_test'
EXTERNAL_ID: str = 'conn_123'


@pytest.fixture
def config() -> ELDHubConfig:
    return ELDHubConfig(webhooks=WebhookConfig(secret=SecretStr(SECRET)))


@pytest.fixture
def manager(
    session_factory: sessionmaker[Session],
    config: ELDHubConfig,
    clock: Callable[[], datetime],
    fake_provider: FakeProvider,
) -> Iterator[ConnectionManager]:
    connection_manager = ConnectionManager(session_factory, config=config, clock=clock)
    with patch.object(
        connection_manager,
        'create_provider_for_connection',
        return_value=ServiceResult.ok(fake_provider),
    ):
        yield connection_manager


@pytest.fixture
def handler(
    session_factory: sessionmaker[Session],
    manager: ConnectionManager,
    config: ELDHubConfig,
    clock: Callable[[], datetime],
) -> WebhookHandler:
    orchestrator = SyncOrchestrator(session_factory, manager, config=config, clock=clock)
    return WebhookHandler(manager, orchestrator, config, clock=clock)


@pytest.fixture
def connection_id(session_factory: sessionmaker[Session]) -> str:
    return seed_connection(
        session_factory, provider_id='terminal', external_connection_id=EXTERNAL_ID
    )


def _signed(event_type: str, data: dict[str, Any]) -> tuple[bytes, str]:
    body: bytes = json.dumps({'type': event_type, 'data': data}).encode('utf-8')
    return body, compute_signature(body, SECRET)


def _row(session_factory: sessionmaker[Session], connection_id: str) -> ELDConnection:
    with session_factory.begin() as session:
        row = session.get(ELDConnection, connection_id)
        assert row is not None
        return row


class TestSignatures:
    """Test the HMAC helpers."""

    def test_prefix_accepted(self) -> None:
        body: bytes = b'{"type": "sync.completed"}'
        signature: str = compute_signature(body, SECRET)

        assert verify_signature(body, signature, SECRET)
        assert verify_signature(body, f'sha256={signature}', SECRET)

    def test_tampered_body_rejected(self) -> None:
        signature: str = compute_signature(b'original', SECRET)

        assert not verify_signature(b'tampered', signature, SECRET)
        assert not verify_signature(b'original', None, SECRET)

    def test_status_mapping(self) -> None:
        assert map_external_status('Active').value == 'active'
        assert map_external_status('expired').value == 'token_expired'
        assert map_external_status('something-new').value == 'error'


class TestHandleValidation:
    """Test request-level rejection."""

    @pytest.mark.usefixtures('connection_id')
    def test_invalid_signature(self, handler: WebhookHandler) -> None:
        body, _ = _signed('sync.completed', {'connectionId': EXTERNAL_ID})

        result = handler.handle(body, 'sha256=deadbeef')

        assert result.error_message == INVALID_SIGNATURE

    def test_malformed_payload(self, handler: WebhookHandler) -> None:
        body: bytes = b'not json'

        result = handler.handle(body, compute_signature(body, SECRET))

        assert result.error_message == 'Invalid webhook payload'

    def test_unsigned_accepted_without_secret(
        self,
        session_factory: sessionmaker[Session],
        manager: ConnectionManager,
    ) -> None:
        """Should skip verification when no secret is configured."""
        orchestrator = SyncOrchestrator(session_factory, manager)
        unsigned = WebhookHandler(manager, orchestrator, ELDHubConfig())

        result = unsigned.handle(json.dumps({'type': 'ping', 'data': {}}))

        assert result.data is not None
        assert not result.data.handled


class TestDispatch:
    """Test per-event behavior."""

    def test_sync_completed(
        self,
        handler: WebhookHandler,
        session_factory: sessionmaker[Session],
        connection_id: str,
    ) -> None:
        """Should record a job, reactivate the connection and advance last_sync."""
        body, signature = _signed(
            'sync.completed',
            {
                'connectionId': EXTERNAL_ID,
                'syncId': 'sync_9',
                'recordCounts': {'vehicles': 3, 'drivers': 2},
                'dataTypes': ['vehicles', 'drivers'],
            },
        )

        result = handler.handle(body, signature)

        assert result.data is not None
        assert result.data.handled
        assert result.data.detail == '5 records synced by provider'
        assert _row(session_factory, connection_id).last_sync_at == FIXED_NOW
        with session_factory.begin() as session:
            job = session.scalars(select(SyncJob)).one()
            assert (job.status, job.records_synced) == ('completed', 5)
            assert job.details['externalSyncId'] == 'sync_9'
            assert job.domains == ['vehicles', 'drivers']

    def test_sync_failed(
        self,
        handler: WebhookHandler,
        session_factory: sessionmaker[Session],
        connection_id: str,
    ) -> None:
        body, signature = _signed(
            'sync.failed', {'connectionId': EXTERNAL_ID, 'error': 'Provider API down'}
        )

        handler.handle(body, signature)

        row: ELDConnection = _row(session_factory, connection_id)
        assert (row.status, row.error_message) == ('error', 'Provider API down')
        assert row.last_sync_at is None

    def test_status_changed(
        self,
        handler: WebhookHandler,
        session_factory: sessionmaker[Session],
        connection_id: str,
    ) -> None:
        body, signature = _signed(
            'connection.status_changed', {'connectionId': EXTERNAL_ID, 'status': 'expired'}
        )

        result = handler.handle(body, signature)

        assert result.data is not None
        assert result.data.detail == 'token_expired'
        assert _row(session_factory, connection_id).status == 'token_expired'

    def test_disconnected(
        self,
        handler: WebhookHandler,
        session_factory: sessionmaker[Session],
        connection_id: str,
    ) -> None:
        """Should clear tokens and keep the provider's reason."""
        body, signature = _signed(
            'connection.disconnected', {'connectionId': EXTERNAL_ID, 'reason': 'Revoked by fleet'}
        )

        handler.handle(body, signature)

        row: ELDConnection = _row(session_factory, connection_id)
        assert row.status == 'disconnected'
        assert row.access_token is None
        assert row.error_message == 'Revoked by fleet'

    def test_data_event_runs_pass(
        self,
        handler: WebhookHandler,
        connection_id: str,
        fake_provider: FakeProvider,
    ) -> None:
        """Should run the matching sync pass for the connection."""
        body, signature = _signed('data.vehicles_updated', {'connectionId': EXTERNAL_ID})

        result = handler.handle(body, signature)

        assert result.data is not None
        assert result.data.handled
        assert result.data.connection_id == connection_id
        assert result.data.sync_pass is not None
        assert result.data.sync_pass.domain == 'vehicles'
        assert fake_provider.calls == ['vehicles']

    @pytest.mark.usefixtures('connection_id')
    def test_unknown_event_acknowledged(self, handler: WebhookHandler) -> None:
        body, signature = _signed('issue.created', {'connectionId': EXTERNAL_ID})

        result = handler.handle(body, signature)

        assert result.succeeded
        assert result.data is not None
        assert not result.data.handled

    def test_unknown_connection_acknowledged(self, handler: WebhookHandler) -> None:
        """Should not fail for a connection this hub does not know."""
        body, signature = _signed('sync.completed', {'connectionId': 'conn_missing'})

        result = handler.handle(body, signature)

        assert result.succeeded
        assert result.data is not None
        assert result.data.detail == 'Connection not found'
