"""
Tests for eld_integration_hub.client module.

Tests ProviderHttpClient status mapping, retries, pagination, and ownership
of the underlying httpx.Client.
"""

from typing import Any

import httpx
import pytest

from conftest import mock_http_client
from eld_integration_hub.client import ProviderHttpClient
from eld_integration_hub.config import HttpConfig
from eld_integration_hub.errors import (
    APIError,
    AuthError,
    RateLimitError,
    TransientAPIError,
)
from eld_integration_hub.models import (
    MotiveEndpoints,
    RequestCredentials,
    RequestSpec,
    SamsaraEndpoints,
)

FAST_RETRIES: HttpConfig = HttpConfig(
    max_attempts=3,
    max_retry_after_seconds=30.0,
    backoff_multiplier=0.5,
    backoff_max_seconds=4.0,
)


class SleepRecorder:
    """Stands in for time.sleep and records each wait."""

    def __init__(self) -> None:
        self.waits: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.waits.append(seconds)


def _client(
    responses: list[httpx.Response],
    sleep: SleepRecorder | None = None,
    requests: list[httpx.Request] | None = None,
) -> ProviderHttpClient:
    queue: list[httpx.Response] = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return queue.pop(0)

    return ProviderHttpClient(
        http_config=FAST_RETRIES,
        http_client=mock_http_client(handler),
        sleep=sleep or SleepRecorder(),
    )


def _spec(**overrides: Any) -> RequestSpec:
    return RequestSpec(url='https://eld.test/vehicles', **overrides)


class TestStatusMapping:
    """Test how response statuses map onto the error hierarchy."""

    def test_success_returns_decoded_json(self) -> None:
        """Should return the JSON body of a 2xx response."""
        client: ProviderHttpClient = _client([httpx.Response(200, json={'ok': True})])

        assert client.send(_spec()) == {'ok': True}

    def test_no_content_returns_none(self) -> None:
        """Should return None for 204 responses."""
        client: ProviderHttpClient = _client([httpx.Response(204)])

        assert client.send(_spec()) is None

    def test_unauthorized_raises_auth_error_without_retry(self) -> None:
        """Should raise AuthError on 401 after a single attempt."""
        requests: list[httpx.Request] = []
        client: ProviderHttpClient = _client(
            [httpx.Response(401, text='expired'), httpx.Response(200, json={})],
            requests=requests,
        )

        with pytest.raises(AuthError) as exc_info:
            client.send(_spec())

        assert exc_info.value.status_code == 401  # noqa: PLR2004
        assert exc_info.value.code == 'AUTH_ERROR'
        assert len(requests) == 1

    def test_allowed_not_found_returns_none(self) -> None:
        """Should return None on 404 when the request allows it."""
        client: ProviderHttpClient = _client([httpx.Response(404)])

        assert client.send(_spec(allow_not_found=True)) is None

    def test_not_found_raises_api_error_by_default(self) -> None:
        """Should raise APIError on 404 when not allowed."""
        client: ProviderHttpClient = _client([httpx.Response(404, text='missing')])

        with pytest.raises(APIError) as exc_info:
            client.send(_spec())

        assert exc_info.value.status_code == 404  # noqa: PLR2004
        assert not isinstance(exc_info.value, TransientAPIError)

    def test_invalid_json_raises_api_error(self) -> None:
        """Should raise APIError when a 2xx body is not JSON."""
        client: ProviderHttpClient = _client([httpx.Response(200, text='<html>')])

        with pytest.raises(APIError, match='Invalid JSON'):
            client.send(_spec())


class TestRetries:
    """Test tenacity-driven retry behavior."""

    def test_server_error_is_retried_until_success(self) -> None:
        """Should retry 5xx responses with exponential backoff."""
        sleep = SleepRecorder()
        client: ProviderHttpClient = _client(
            [
                httpx.Response(503),
                httpx.Response(502),
                httpx.Response(200, json={'data': []}),
            ],
            sleep=sleep,
        )

        assert client.send(_spec()) == {'data': []}
        assert sleep.waits == [0.5, 1.0]

    def test_server_error_raises_after_max_attempts(self) -> None:
        """Should raise TransientAPIError once attempts are exhausted."""
        requests: list[httpx.Request] = []
        client: ProviderHttpClient = _client(
            [httpx.Response(500)] * 3,
            requests=requests,
        )

        with pytest.raises(TransientAPIError):
            client.send(_spec())

        assert len(requests) == 3  # noqa: PLR2004

    def test_rate_limit_waits_for_retry_after(self) -> None:
        """Should sleep for the Retry-After value before retrying a 429."""
        sleep = SleepRecorder()
        client: ProviderHttpClient = _client(
            [
                httpx.Response(429, headers={'Retry-After': '7'}),
                httpx.Response(200, json={'ok': True}),
            ],
            sleep=sleep,
        )

        assert client.send(_spec()) == {'ok': True}
        assert sleep.waits == [7.0]

    def test_rate_limit_beyond_budget_raises_immediately(self) -> None:
        """Should surface RateLimitError when Retry-After exceeds the budget."""
        sleep = SleepRecorder()
        requests: list[httpx.Request] = []
        client: ProviderHttpClient = _client(
            [httpx.Response(429, headers={'Retry-After': '120'})],
            sleep=sleep,
            requests=requests,
        )

        with pytest.raises(RateLimitError) as exc_info:
            client.send(_spec())

        assert exc_info.value.retry_after_seconds == 120.0  # noqa: PLR2004
        assert exc_info.value.code == 'RATE_LIMITED'
        assert len(requests) == 1
        assert sleep.waits == []

    def test_connection_error_is_transient(self) -> None:
        """Should convert transport errors to TransientAPIError and retry."""
        attempts: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            if len(attempts) == 1:
                raise httpx.ConnectError('refused', request=request)
            return httpx.Response(200, json={'ok': True})

        client = ProviderHttpClient(
            http_config=FAST_RETRIES,
            http_client=mock_http_client(handler),
            sleep=SleepRecorder(),
        )

        assert client.send(_spec()) == {'ok': True}
        assert len(attempts) == 2  # noqa: PLR2004


class TestPagination:
    """Test fetch_all across provider pagination styles."""

    def test_motive_pages_until_short_page(self) -> None:
        """Should request page 2 after a full page and stop after a short one."""
        full_page: list[dict[str, Any]] = [{'vehicle': {'id': index}} for index in range(100)]
        requests: list[httpx.Request] = []
        client: ProviderHttpClient = _client(
            [
                httpx.Response(200, json={'vehicles': full_page, 'pagination': {'page_no': 1}}),
                httpx.Response(
                    200,
                    json={'vehicles': [{'vehicle': {'id': 100}}], 'pagination': {'page_no': 2}},
                ),
            ],
            requests=requests,
        )
        credentials = RequestCredentials(base_url='https://api.gomotive.com/v1')

        records: list[dict[str, Any]] = client.fetch_all(MotiveEndpoints.VEHICLES, credentials)

        assert len(records) == 101  # noqa: PLR2004
        assert records[0] == {'id': 0}
        assert requests[1].url.params['page_no'] == '2'

    def test_samsara_follows_end_cursor(self) -> None:
        """Should pass endCursor as 'after' until hasNextPage is false."""
        requests: list[httpx.Request] = []
        client: ProviderHttpClient = _client(
            [
                httpx.Response(
                    200,
                    json={
                        'data': [{'id': 'a'}],
                        'pagination': {'endCursor': 'cursor-1', 'hasNextPage': True},
                    },
                ),
                httpx.Response(
                    200,
                    json={
                        'data': [{'id': 'b'}],
                        'pagination': {'endCursor': '', 'hasNextPage': False},
                    },
                ),
            ],
            requests=requests,
        )
        credentials = RequestCredentials(base_url='https://api.samsara.com')

        records: list[dict[str, Any]] = client.fetch_all(SamsaraEndpoints.VEHICLES, credentials)

        assert [record['id'] for record in records] == ['a', 'b']
        assert 'after' not in requests[0].url.params
        assert requests[1].url.params['after'] == 'cursor-1'

    def test_repeated_cursor_stops_pagination(self) -> None:
        """Should stop when the provider hands back the same cursor twice."""
        page: dict[str, Any] = {
            'data': [{'id': 'a'}],
            'pagination': {'endCursor': 'same', 'hasNextPage': True},
        }
        client: ProviderHttpClient = _client([httpx.Response(200, json=page)] * 3)
        credentials = RequestCredentials(base_url='https://api.samsara.com')

        records: list[dict[str, Any]] = client.fetch_all(SamsaraEndpoints.VEHICLES, credentials)

        assert len(records) == 2  # noqa: PLR2004


class TestClientOwnership:
    """Test context manager and close semantics."""

    def test_injected_client_is_not_closed(self) -> None:
        """Should leave an injected httpx.Client open on close()."""
        http_client: httpx.Client = mock_http_client(lambda request: httpx.Response(200))

        with ProviderHttpClient(http_client=http_client):
            pass

        assert not http_client.is_closed
        http_client.close()

    def test_bearer_token_sent_from_credentials(self) -> None:
        """Should send the Authorization header built from credentials."""
        requests: list[httpx.Request] = []
        client: ProviderHttpClient = _client(
            [httpx.Response(200, json={'vehicles': []})], requests=requests
        )
        credentials = RequestCredentials(
            base_url='https://api.gomotive.com/v1', access_token='token-xyz'
        )

        client.fetch_all(MotiveEndpoints.VEHICLES, credentials)

        assert requests[0].headers['Authorization'] == 'Bearer token-xyz'
