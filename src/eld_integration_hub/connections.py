# eld_integration_hub/connections.py
"""
Credential and connection lifecycle for ELD providers.

A connection is one owner's authorization with one provider: the OAuth
tokens, their expiry, and a status that the rest of the core consults
before talking to the provider.

Design Decisions:
-----------------
- OAuth state is base64 JSON {userId, providerId, timestamp} with the
  timestamp in epoch milliseconds. It carries enough to finish the flow
  without server-side session storage and is rejected after
  `oauth_state_max_age_minutes`.

- Provider HTTP calls (exchange, refresh, verify) never run inside a
  database transaction. A row is read in one short transaction, the
  provider is called, and the outcome is written in another.

- `update_last_sync` is a conditional UPDATE, so concurrent sync passes can
  only ever move `last_sync_at` forward.

- Hard deletion removes dependent rows explicitly, in dependency order,
  before removing the connection itself. SQLite without foreign key
  enforcement and PostgreSQL behave the same.

- Every public method returns a ServiceResult. ELDError and SQLAlchemyError
  are logged and converted at this boundary.

Usage:
------
    manager = ConnectionManager(session_factory, registry, config)

    started = manager.start_authorization(owner_id, 'motive', redirect_uri)
    # ... user consents, provider redirects back with code and state ...
    result = manager.handle_oauth_callback(code, state, redirect_uri)
    if result.error:
        print(result.error_message)
"""

import base64
import binascii
import json
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, SecretStr
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from eld_integration_hub.config import ConnectionConfig, ELDHubConfig
from eld_integration_hub.errors import AuthError, ELDError, OAuthStateError
from eld_integration_hub.models import ServiceResult
from eld_integration_hub.providers import ConnectionVerification, ELDProvider, TokenSet
from eld_integration_hub.registry import OAuthOverride, ProviderRegistry
from eld_integration_hub.storage import (
    ELDConnection,
    EntityMapping,
    FaultCodeRecord,
    FuelPurchaseRecord,
    HosDailyLogRecord,
    HosLogRecord,
    IftaMileageRecord,
    SyncJob,
    VehicleLocationRecord,
    upsert,
)
from eld_integration_hub.storage.tables import new_id, utc_now

__all__: list[str] = [
    'AuthorizationRequest',
    'ConnectionManager',
    'ConnectionStatus',
    'ConnectionStatusSummary',
    'ConnectionView',
    'OAuthState',
    'decode_oauth_state',
    'encode_oauth_state',
    'select_primary_connection',
]

logger: logging.Logger = logging.getLogger(__name__)

CONNECTION_NOT_FOUND: str = 'Connection not found'
TOKEN_REFRESH_FAILED: str = 'Token refresh failed'
VERIFICATION_FAILED: str = 'Connection verification failed'

# Dependent tables, in the order they are removed by delete_connection.
_DEPENDENT_TABLES: tuple[Any, ...] = (
    SyncJob,
    EntityMapping,
    VehicleLocationRecord,
    HosLogRecord,
    HosDailyLogRecord,
    IftaMileageRecord,
    FaultCodeRecord,
    FuelPurchaseRecord,
)


# =============================================================================
# Models
# =============================================================================


class ConnectionStatus(str, Enum):
    ACTIVE = 'active'
    ERROR = 'error'
    TOKEN_EXPIRED = 'token_expired'
    DISCONNECTED = 'disconnected'


class AuthorizationRequest(BaseModel):
    """Consent URL to redirect the user to, and the state it carries."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    provider_id: str
    url: str
    state: str


class OAuthState(BaseModel):
    """Decoded OAuth state parameter."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    owner_id: str
    provider_id: str
    issued_at: datetime


class ConnectionView(BaseModel):
    """
    A connection as shown to callers: provider info attached, tokens never.

    Attributes:
        is_token_expired: True when the stored expiry has passed.
        capabilities: Declared capabilities of the connection's provider.
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    id: str
    owner_id: str
    provider_id: str
    provider_name: str
    status: ConnectionStatus
    company_name: str | None = None
    external_connection_id: str | None = None
    sync_frequency_minutes: int
    last_sync_at: datetime | None = None
    token_expires_at: datetime | None = None
    error_message: str | None = None
    created_at: datetime
    is_token_expired: bool = False
    capabilities: tuple[str, ...] = ()


class ConnectionStatusSummary(BaseModel):
    """Owner-level connection overview for a settings page."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    connected: bool
    has_error: bool
    is_token_expired: bool
    primary_connection: ConnectionView | None = None
    connections: list[ConnectionView]


# =============================================================================
# OAuth State
# =============================================================================


def encode_oauth_state(owner_id: str, provider_id: str, now: datetime) -> str:
    """Encode owner, provider and issue time as URL-safe base64 JSON."""
    payload: dict[str, Any] = {
        'userId': owner_id,
        'providerId': provider_id,
        'timestamp': int(now.timestamp() * 1000),
    }
    return base64.urlsafe_b64encode(json.dumps(payload).encode('utf-8')).decode('ascii')


def decode_oauth_state(
    state: str,
    now: datetime,
    max_age: timedelta = timedelta(minutes=30),
) -> OAuthState:
    """
    Decode and age-check an OAuth state parameter.

    Raises:
        OAuthStateError: If the state is undecodable or older than max_age.
    """
    try:
        payload: Any = json.loads(base64.urlsafe_b64decode(state.encode('ascii')))
        issued_at: datetime = datetime.fromtimestamp(
            int(payload['timestamp']) / 1000, tz=now.tzinfo
        )
        decoded: OAuthState = OAuthState(
            owner_id=str(payload['userId']),
            provider_id=str(payload['providerId']),
            issued_at=issued_at,
        )
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError, OverflowError) as error:
        raise OAuthStateError('Invalid state parameter') from error

    if now - decoded.issued_at > max_age:
        raise OAuthStateError('Authorization expired. Please try again.')
    return decoded


# =============================================================================
# Helpers
# =============================================================================


def select_primary_connection(rows: Iterable[ELDConnection]) -> ELDConnection | None:
    """
    Pick an owner's primary connection.

    Disconnected rows are ignored; among the rest the most recently synced
    wins, with never-synced rows last and creation time breaking ties.
    """
    candidates: list[ELDConnection] = [
        row for row in rows if row.status != ConnectionStatus.DISCONNECTED.value
    ]
    if not candidates:
        return None
    return max(
        candidates,
        key=lambda row: (
            row.last_sync_at is not None,
            row.last_sync_at or row.created_at,
            row.created_at,
        ),
    )


# =============================================================================
# Connection Manager
# =============================================================================


class ConnectionManager:
    """
    Owns connection rows and every credential transition on them.

    Args:
        session_factory: Datastore handle; each operation opens its own
            transaction.
        registry: Provider registry used to build adapters.
        config: Hub configuration (connection and sync settings).
        http_client: Injected httpx.Client handed to every adapter built here.
        clock: Returns the current aware UTC time.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        registry: ProviderRegistry | None = None,
        config: ELDHubConfig | None = None,
        *,
        http_client: httpx.Client | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config: ELDHubConfig = config or ELDHubConfig()
        self._session_factory: sessionmaker[Session] = session_factory
        self._registry: ProviderRegistry = registry or ProviderRegistry(self._config)
        self._http_client: httpx.Client | None = http_client
        self._clock: Callable[[], datetime] = clock

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def _settings(self) -> ConnectionConfig:
        return self._config.connections

    @property
    def _refresh_horizon(self) -> timedelta:
        return timedelta(minutes=self._settings.refresh_horizon_minutes)

    # -------------------------------------------------------------------------
    # Authorization Flow
    # -------------------------------------------------------------------------

    def start_authorization(
        self,
        owner_id: str,
        provider_id: str,
        redirect_uri: str,
        oauth_override: OAuthOverride | None = None,
    ) -> ServiceResult[AuthorizationRequest]:
        """Build the provider consent URL with a fresh state parameter."""
        try:
            provider: ELDProvider = self._build_provider(
                provider_id, oauth_override=oauth_override
            )
            with provider:
                state: str = encode_oauth_state(
                    owner_id, provider.provider_id, self._clock()
                )
                url: str = provider.get_authorization_url(redirect_uri, state)
        except ELDError as error:
            logger.error('Cannot start %s authorization: %s', provider_id, error)
            return ServiceResult.fail(str(error))

        logger.info('Started %s authorization for owner %s', provider.provider_id, owner_id)
        return ServiceResult.ok(
            AuthorizationRequest(provider_id=provider.provider_id, url=url, state=state)
        )

    def handle_oauth_callback(
        self,
        code: str,
        state: str,
        redirect_uri: str,
        oauth_override: OAuthOverride | None = None,
    ) -> ServiceResult[ConnectionView]:
        """
        Finish an authorization: decode state, exchange the code, verify the
        new tokens, then store the connection.
        """
        now: datetime = self._clock()
        try:
            decoded: OAuthState = decode_oauth_state(
                state,
                now,
                timedelta(minutes=self._settings.oauth_state_max_age_minutes),
            )
        except OAuthStateError as error:
            logger.warning('Rejected OAuth callback: %s', error)
            return ServiceResult.fail(str(error))

        try:
            provider: ELDProvider = self._build_provider(
                decoded.provider_id, oauth_override=oauth_override
            )
            with provider:
                tokens: TokenSet = provider.exchange_code_for_tokens(code, redirect_uri)
                provider.token_expires_at = tokens.expires_at(
                    now, self._settings.default_token_lifetime_seconds
                )
                verification: ConnectionVerification = provider.verify_connection()
        except AuthError as error:
            logger.error('OAuth callback for %s failed: %s', decoded.provider_id, error)
            return ServiceResult.fail('Authentication failed with ELD provider')
        except ELDError as error:
            logger.error('OAuth callback for %s failed: %s', decoded.provider_id, error)
            return ServiceResult.fail(str(error))

        if not verification.valid:
            logger.error(
                'New %s tokens failed verification: %s',
                decoded.provider_id,
                verification.error_message,
            )
            return ServiceResult.fail('Failed to verify connection with ELD provider')

        return self.create_connection(
            decoded.owner_id,
            decoded.provider_id,
            tokens,
            company_name=verification.company_name,
            external_connection_id=verification.external_connection_id,
        )

    def create_connection(
        self,
        owner_id: str,
        provider_id: str,
        tokens: TokenSet,
        company_name: str | None = None,
        external_connection_id: str | None = None,
    ) -> ServiceResult[ConnectionView]:
        """
        Store tokens for (owner, provider).

        An existing row for the pair is re-authorized in place: tokens are
        replaced, status returns to active and any error is cleared. A new
        row gets the default sync frequency.
        """
        now: datetime = self._clock()
        try:
            provider_key: str = self._registry.get(provider_id).provider_id
        except ELDError as error:
            return ServiceResult.fail(str(error))

        values: dict[str, Any] = {
            'id': new_id(),
            'owner_id': owner_id,
            'provider_id': provider_key,
            'access_token': tokens.access_token.get_secret_value(),
            'refresh_token': _secret(tokens.refresh_token),
            'token_expires_at': tokens.expires_at(
                now, self._settings.default_token_lifetime_seconds
            ),
            'status': ConnectionStatus.ACTIVE.value,
            'company_name': company_name,
            'external_connection_id': external_connection_id,
            'sync_frequency_minutes': self._settings.default_sync_frequency_minutes,
            'error_message': None,
            'created_at': now,
            'updated_at': now,
        }
        try:
            with self._session_factory.begin() as session:
                upsert(
                    session,
                    ELDConnection,
                    values,
                    index_elements=('owner_id', 'provider_id'),
                    update_columns=(
                        'access_token',
                        'refresh_token',
                        'token_expires_at',
                        'status',
                        'company_name',
                        'external_connection_id',
                        'error_message',
                        'updated_at',
                    ),
                )
                row: ELDConnection = session.scalars(
                    select(ELDConnection).where(
                        ELDConnection.owner_id == owner_id,
                        ELDConnection.provider_id == provider_key,
                    )
                ).one()
                view: ConnectionView = self._view(row, now)
        except SQLAlchemyError:
            logger.exception('Failed to store %s connection for owner %s', provider_key, owner_id)
            return ServiceResult.fail('Failed to store connection')

        logger.info('Stored %s connection %s for owner %s', provider_key, view.id, owner_id)
        return ServiceResult.ok(view)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_connection(
        self,
        owner_id: str,
        provider_id: str | None = None,
    ) -> ServiceResult[ConnectionView]:
        """
        The owner's connection for a provider, or the primary connection when
        no provider is given. `data` is None when there is none.
        """
        now: datetime = self._clock()
        statement = select(ELDConnection).where(ELDConnection.owner_id == owner_id)
        if provider_id is not None:
            statement = statement.where(
                ELDConnection.provider_id == provider_id.strip().lower()
            )
        with self._session_factory.begin() as session:
            rows: list[ELDConnection] = list(session.scalars(statement))
            row: ELDConnection | None = (
                rows[0] if provider_id is not None and rows else select_primary_connection(rows)
            )
            return ServiceResult.ok(self._view(row, now) if row is not None else None)

    def get_connection_by_id(self, connection_id: str) -> ServiceResult[ConnectionView]:
        now: datetime = self._clock()
        with self._session_factory.begin() as session:
            row: ELDConnection | None = session.get(ELDConnection, connection_id)
            if row is None:
                return ServiceResult.fail(CONNECTION_NOT_FOUND)
            return ServiceResult.ok(self._view(row, now))

    def list_connections(self, owner_id: str) -> ServiceResult[list[ConnectionView]]:
        """Every connection of an owner, newest first."""
        now: datetime = self._clock()
        with self._session_factory.begin() as session:
            rows = session.scalars(
                select(ELDConnection)
                .where(ELDConnection.owner_id == owner_id)
                .order_by(ELDConnection.created_at.desc())
            )
            return ServiceResult.ok([self._view(row, now) for row in rows])

    def get_connection_status(self, owner_id: str) -> ServiceResult[ConnectionStatusSummary]:
        now: datetime = self._clock()
        with self._session_factory.begin() as session:
            rows: list[ELDConnection] = list(
                session.scalars(select(ELDConnection).where(ELDConnection.owner_id == owner_id))
            )
            views: list[ConnectionView] = [self._view(row, now) for row in rows]
            primary: ELDConnection | None = select_primary_connection(rows)

        primary_view: ConnectionView | None = next(
            (view for view in views if primary is not None and view.id == primary.id),
            None,
        )
        return ServiceResult.ok(
            ConnectionStatusSummary(
                connected=any(view.status == ConnectionStatus.ACTIVE for view in views),
                has_error=any(
                    view.status in {ConnectionStatus.ERROR, ConnectionStatus.TOKEN_EXPIRED}
                    for view in views
                ),
                is_token_expired=primary_view is not None and primary_view.is_token_expired,
                primary_connection=primary_view,
                connections=views,
            )
        )

    def find_by_external_connection_id(
        self,
        external_connection_id: str,
    ) -> ServiceResult[ConnectionView]:
        """Locate a connection from a provider-side id (webhook payloads)."""
        now: datetime = self._clock()
        with self._session_factory.begin() as session:
            row: ELDConnection | None = session.scalars(
                select(ELDConnection)
                .where(ELDConnection.external_connection_id == external_connection_id)
                .limit(1)
            ).first()
            if row is None:
                return ServiceResult.fail(CONNECTION_NOT_FOUND)
            return ServiceResult.ok(self._view(row, now))

    def get_connections_needing_sync(
        self,
        threshold_minutes: int | None = None,
        now: datetime | None = None,
    ) -> ServiceResult[list[ConnectionView]]:
        """Active connections never synced or last synced before the threshold."""
        current_time: datetime = now or self._clock()
        threshold: int = (
            threshold_minutes
            if threshold_minutes is not None
            else self._config.sync.schedule_threshold_minutes
        )
        cutoff: datetime = current_time - timedelta(minutes=threshold)
        with self._session_factory.begin() as session:
            rows = session.scalars(
                select(ELDConnection)
                .where(
                    ELDConnection.status == ConnectionStatus.ACTIVE.value,
                    or_(
                        ELDConnection.last_sync_at.is_(None),
                        ELDConnection.last_sync_at < cutoff,
                    ),
                )
                .order_by(ELDConnection.last_sync_at.asc())
            )
            due: list[ConnectionView] = [self._view(row, current_time) for row in rows]

        logger.debug('%d connection(s) due for sync (threshold %d min)', len(due), threshold)
        return ServiceResult.ok(due)

    # -------------------------------------------------------------------------
    # Lifecycle Transitions
    # -------------------------------------------------------------------------

    def disconnect_connection(self, owner_id: str, connection_id: str) -> ServiceResult[ConnectionView]:
        """Soft disconnect: tokens cleared, row and synced data kept."""
        now: datetime = self._clock()
        with self._session_factory.begin() as session:
            row: ELDConnection | None = _owned(session, owner_id, connection_id)
            if row is None:
                return ServiceResult.fail(CONNECTION_NOT_FOUND)
            row.access_token = None
            row.refresh_token = None
            row.token_expires_at = None
            row.status = ConnectionStatus.DISCONNECTED.value
            row.updated_at = now
            view: ConnectionView = self._view(row, now)

        logger.info('Disconnected connection %s', connection_id)
        return ServiceResult.ok(view)

    def delete_connection(self, owner_id: str, connection_id: str) -> ServiceResult[dict[str, int]]:
        """
        Hard delete: the connection and everything synced through it.

        Returns:
            Rows removed per table.
        """
        removed: dict[str, int] = {}
        try:
            with self._session_factory.begin() as session:
                if _owned(session, owner_id, connection_id) is None:
                    return ServiceResult.fail(CONNECTION_NOT_FOUND)
                for table in _DEPENDENT_TABLES:
                    result: Any = session.execute(
                        delete(table).where(table.connection_id == connection_id)
                    )
                    removed[table.__tablename__] = result.rowcount
                result = session.execute(
                    delete(ELDConnection).where(ELDConnection.id == connection_id)
                )
                removed[ELDConnection.__tablename__] = result.rowcount
        except SQLAlchemyError:
            logger.exception('Failed to delete connection %s', connection_id)
            return ServiceResult.fail('Failed to delete connection')

        logger.info('Deleted connection %s: %r', connection_id, removed)
        return ServiceResult.ok(removed)

    def update_connection_status(
        self,
        connection_id: str,
        status: ConnectionStatus | str,
        error_message: str | None = None,
    ) -> ServiceResult[ConnectionView]:
        """Set status; an `error` stores the message, `active` clears it."""
        try:
            new_status: ConnectionStatus = ConnectionStatus(status)
        except ValueError:
            return ServiceResult.fail(f'Invalid connection status: {status!r}')

        now: datetime = self._clock()
        with self._session_factory.begin() as session:
            row: ELDConnection | None = session.get(ELDConnection, connection_id)
            if row is None:
                return ServiceResult.fail(CONNECTION_NOT_FOUND)
            row.status = new_status.value
            if new_status is ConnectionStatus.ACTIVE:
                row.error_message = None
            elif error_message is not None:
                row.error_message = error_message
            row.updated_at = now
            view: ConnectionView = self._view(row, now)

        logger.info('Connection %s is now %s', connection_id, new_status.value)
        return ServiceResult.ok(view)

    def update_last_sync(
        self,
        connection_id: str,
        synced_at: datetime | None = None,
    ) -> ServiceResult[bool]:
        """
        Advance last_sync_at to synced_at unless it is already later.

        Returns:
            True when the timestamp moved forward.
        """
        timestamp: datetime = synced_at or self._clock()
        with self._session_factory.begin() as session:
            result: Any = session.execute(
                update(ELDConnection)
                .where(
                    ELDConnection.id == connection_id,
                    or_(
                        ELDConnection.last_sync_at.is_(None),
                        ELDConnection.last_sync_at < timestamp,
                    ),
                )
                .values(last_sync_at=timestamp, updated_at=self._clock())
            )
            advanced: bool = result.rowcount > 0

        logger.debug('last_sync_at for %s advanced=%r', connection_id, advanced)
        return ServiceResult.ok(advanced)

    # -------------------------------------------------------------------------
    # Tokens & Verification
    # -------------------------------------------------------------------------

    def refresh_connection_tokens(self, connection_id: str) -> ServiceResult[ConnectionView]:
        """
        Refresh the access token with the provider.

        On failure the connection becomes token_expired with the message
        'Token refresh failed' and its access token is cleared.
        """
        row: ELDConnection | None = self._load(connection_id)
        if row is None:
            return ServiceResult.fail(CONNECTION_NOT_FOUND)

        try:
            provider: ELDProvider = self._provider_for_row(row)
            with provider:
                tokens: TokenSet = provider.refresh_access_token()
        except ELDError as error:
            logger.error('Token refresh for connection %s failed: %s', connection_id, error)
            self._mark_token_expired(connection_id)
            return ServiceResult.fail(TOKEN_REFRESH_FAILED)

        now: datetime = self._clock()
        with self._session_factory.begin() as session:
            stored: ELDConnection | None = session.get(ELDConnection, connection_id)
            if stored is None:
                return ServiceResult.fail(CONNECTION_NOT_FOUND)
            stored.access_token = tokens.access_token.get_secret_value()
            stored.refresh_token = _secret(tokens.refresh_token) or stored.refresh_token
            stored.token_expires_at = tokens.expires_at(
                now, self._settings.default_token_lifetime_seconds
            )
            stored.status = ConnectionStatus.ACTIVE.value
            stored.error_message = None
            stored.updated_at = now
            view: ConnectionView = self._view(stored, now)

        logger.info('Refreshed tokens for connection %s', connection_id)
        return ServiceResult.ok(view)

    def verify_connection(self, connection_id: str) -> ServiceResult[ConnectionVerification]:
        """
        Probe the provider with the stored token, refreshing it first when it
        expires within the refresh horizon.
        """
        row: ELDConnection | None = self._load(connection_id)
        if row is None:
            return ServiceResult.fail(CONNECTION_NOT_FOUND)
        if row.status == ConnectionStatus.DISCONNECTED.value or not row.access_token:
            return ServiceResult.fail('Connection is not authorized')

        if self._expires_soon(row):
            refreshed: ServiceResult[ConnectionView] = self.refresh_connection_tokens(connection_id)
            if refreshed.error:
                return ServiceResult.fail(refreshed.error_message or TOKEN_REFRESH_FAILED)
            row = self._load(connection_id)
            if row is None:
                return ServiceResult.fail(CONNECTION_NOT_FOUND)

        try:
            provider: ELDProvider = self._provider_for_row(row)
            with provider:
                verification: ConnectionVerification = provider.verify_connection()
        except ELDError as error:
            verification = ConnectionVerification(valid=False, error_message=str(error))

        if not verification.valid:
            logger.error(
                'Connection %s failed verification: %s',
                connection_id,
                verification.error_message,
            )
            self.update_connection_status(
                connection_id, ConnectionStatus.ERROR, VERIFICATION_FAILED
            )
            return ServiceResult.fail(VERIFICATION_FAILED, data=verification)

        with self._session_factory.begin() as session:
            stored: ELDConnection | None = session.get(ELDConnection, connection_id)
            if stored is not None:
                stored.status = ConnectionStatus.ACTIVE.value
                stored.error_message = None
                stored.company_name = verification.company_name or stored.company_name
                stored.updated_at = self._clock()

        logger.info('Verified connection %s', connection_id)
        return ServiceResult.ok(verification)

    def create_provider_for_connection(self, connection_id: str) -> ServiceResult[ELDProvider]:
        """
        Build a ready-to-use adapter for an active connection.

        The token is refreshed first when it expires within the refresh
        horizon. The caller owns the returned adapter and must close it.
        """
        row: ELDConnection | None = self._load(connection_id)
        if row is None:
            return ServiceResult.fail(CONNECTION_NOT_FOUND)
        if row.status != ConnectionStatus.ACTIVE.value:
            return ServiceResult.fail(f'Connection is {row.status}')
        if not row.access_token:
            return ServiceResult.fail('Connection has no access token')

        if self._expires_soon(row):
            refreshed: ServiceResult[ConnectionView] = self.refresh_connection_tokens(connection_id)
            if refreshed.error:
                return ServiceResult.fail(refreshed.error_message or TOKEN_REFRESH_FAILED)
            row = self._load(connection_id)
            if row is None:
                return ServiceResult.fail(CONNECTION_NOT_FOUND)

        try:
            return ServiceResult.ok(self._provider_for_row(row))
        except ELDError as error:
            logger.error('Cannot build adapter for connection %s: %s', connection_id, error)
            return ServiceResult.fail(str(error))

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _build_provider(
        self,
        provider_id: str,
        *,
        access_token: str | None = None,
        refresh_token: str | None = None,
        token_expires_at: datetime | None = None,
        oauth_override: OAuthOverride | None = None,
    ) -> ELDProvider:
        return self._registry.create_provider(
            provider_id,
            access_token=access_token,
            refresh_token=refresh_token,
            token_expires_at=token_expires_at,
            oauth_override=oauth_override,
            http_client=self._http_client,
        )

    def _provider_for_row(self, row: ELDConnection) -> ELDProvider:
        return self._build_provider(
            row.provider_id,
            access_token=row.access_token,
            refresh_token=row.refresh_token,
            token_expires_at=row.token_expires_at,
        )

    def _load(self, connection_id: str) -> ELDConnection | None:
        with self._session_factory.begin() as session:
            return session.get(ELDConnection, connection_id)

    def _expires_soon(self, row: ELDConnection) -> bool:
        if row.token_expires_at is None:
            return False
        return row.token_expires_at - self._clock() < self._refresh_horizon

    def _mark_token_expired(self, connection_id: str) -> None:
        with self._session_factory.begin() as session:
            stored: ELDConnection | None = session.get(ELDConnection, connection_id)
            if stored is None:
                return
            stored.status = ConnectionStatus.TOKEN_EXPIRED.value
            stored.error_message = TOKEN_REFRESH_FAILED
            stored.access_token = None
            stored.updated_at = self._clock()

    def _view(self, row: ELDConnection, now: datetime) -> ConnectionView:
        provider_name: str = row.provider_id
        capabilities: tuple[str, ...] = ()
        try:
            provider_class: type[ELDProvider] = self._registry.get(row.provider_id)
        except ELDError:
            logger.warning('Connection %s has unknown provider %r', row.id, row.provider_id)
        else:
            provider_name = provider_class.display_name
            capabilities = tuple(sorted(cap.value for cap in provider_class.capabilities))

        return ConnectionView(
            id=row.id,
            owner_id=row.owner_id,
            provider_id=row.provider_id,
            provider_name=provider_name,
            status=ConnectionStatus(row.status),
            company_name=row.company_name,
            external_connection_id=row.external_connection_id,
            sync_frequency_minutes=row.sync_frequency_minutes,
            last_sync_at=row.last_sync_at,
            token_expires_at=row.token_expires_at,
            error_message=row.error_message,
            created_at=row.created_at,
            is_token_expired=(
                row.token_expires_at is not None and row.token_expires_at <= now
            ),
            capabilities=capabilities,
        )


def _owned(session: Session, owner_id: str, connection_id: str) -> ELDConnection | None:
    row: ELDConnection | None = session.get(ELDConnection, connection_id)
    if row is None or row.owner_id != owner_id:
        return None
    return row


def _secret(value: SecretStr | None) -> str | None:
    return value.get_secret_value() if value is not None else None
