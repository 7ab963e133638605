"""Tests for API endpoints."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from quotaproxy.api.app import create_app
from quotaproxy.config import Settings
from quotaproxy.http.client import UpstreamError, UpstreamResponse
from quotaproxy.quota.limiter import FixedWindowLimiter
from quotaproxy.store.memory import InMemoryQuotaStore
from quotaproxy.verification import VerificationResult, VerificationStatus

PROXY = "/api/openai-proxy"
STATUS = "/api/openai-proxy/rate-limit-status"
CLIENT = {"client-ip": "203.0.113.7"}


def make_settings(**overrides) -> Settings:
    values = {
        "_env_file": None,
        "openai_api_key": "sk-test",
        "rate_limit": 20,
        "rate_limit_window_seconds": 86400,
        "quota_backend": "memory",
    }
    values.update(overrides)
    return Settings(**values)


def stub_verifier(status: VerificationStatus, score: float | None = None) -> MagicMock:
    verifier = MagicMock()
    verifier.verify = AsyncMock(return_value=VerificationResult(status, score))
    verifier.close = AsyncMock()
    return verifier


class TestHealthCheck:
    """Tests for health check endpoint."""

    def test_health_check(self, client: TestClient) -> None:
        """Test health check returns healthy."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["quota_backend"] == "memory"
        assert response.json()["store"] == {"backend": "memory"}


class TestProxyAdmission:
    """Tests for rate limit admission on the proxy endpoint."""

    def test_first_request(self, client: TestClient, chat_body: dict, upstream: MagicMock,
                           sample_completion: dict) -> None:
        """Test a successful request relays the upstream body with quota headers."""
        response = client.post(PROXY, json=chat_body, headers=CLIENT)

        assert response.status_code == 200
        assert response.json() == sample_completion
        assert response.headers["X-RateLimit-Limit"] == "20"
        assert response.headers["X-RateLimit-Remaining"] == "19"
        assert response.headers["X-RateLimit-Used"] == "1"
        assert response.headers["X-RateLimit-Reset"] == "2025-01-02T12:00:00.000Z"
        assert response.headers["X-Recaptcha-Verified"] == "skipped"
        upstream.create_chat_completion.assert_called_once_with(chat_body)

    def test_quota_exhaustion(self, client: TestClient, chat_body: dict,
                              upstream: MagicMock) -> None:
        """Test twenty admitted requests followed by a denial."""
        remaining = []
        for _ in range(20):
            response = client.post(PROXY, json=chat_body, headers=CLIENT)
            assert response.status_code == 200
            remaining.append(int(response.headers["X-RateLimit-Remaining"]))

        assert remaining == list(range(19, -1, -1))

        response = client.post(PROXY, json=chat_body, headers=CLIENT)

        assert response.status_code == 429
        data = response.json()
        assert data["error"] == "Rate limit exceeded"
        assert "exceeded the rate limit of 20 requests per day" in data["message"]
        assert "2025-01-02T12:00:00.000Z" in data["message"]
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert response.headers["X-RateLimit-Used"] == "20"
        assert response.headers["Retry-After"] == "86400"
        assert upstream.create_chat_completion.call_count == 20

    def test_window_reset(self, client: TestClient, chat_body: dict, clock) -> None:
        """Test quota is restored once the window has elapsed."""
        for _ in range(21):
            client.post(PROXY, json=chat_body, headers=CLIENT)

        clock.advance(days=1, seconds=1)
        response = client.post(PROXY, json=chat_body, headers=CLIENT)

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Remaining"] == "19"

    def test_denied_request_does_not_write(self, client: TestClient, chat_body: dict,
                                           memory_store: InMemoryQuotaStore) -> None:
        for _ in range(20):
            client.post(PROXY, json=chat_body, headers=CLIENT)
        snapshot = memory_store.document

        response = client.post(PROXY, json=chat_body, headers=CLIENT)

        assert response.status_code == 429
        assert memory_store.document == snapshot

    def test_clients_are_isolated(self, client: TestClient, chat_body: dict) -> None:
        for _ in range(20):
            client.post(PROXY, json=chat_body, headers=CLIENT)

        response = client.post(PROXY, json=chat_body, headers={"x-forwarded-for": "198.51.100.9"})

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Remaining"] == "19"

    def test_store_failure_fails_open(self, test_settings: Settings, upstream: MagicMock,
                                      chat_body: dict, clock) -> None:
        """Test a broken store admits the request."""
        store = MagicMock()
        store.name = "broken"
        store.load = AsyncMock(side_effect=ConnectionError("down"))
        store.save = AsyncMock()
        store.close = AsyncMock()
        app = create_app(settings=test_settings, store=store, upstream=upstream, clock=clock)

        with TestClient(app) as test_client:
            response = test_client.post(PROXY, json=chat_body, headers=CLIENT)

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Remaining"] == "19"


class TestProxyValidation:
    """Tests for request validation after admission."""

    def test_missing_fields(self, client: TestClient, upstream: MagicMock) -> None:
        """Test an empty body is rejected and still charged."""
        response = client.post(PROXY, json={}, headers=CLIENT)

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request. 'model' and 'messages' are required."
        assert response.headers["X-RateLimit-Remaining"] == "19"
        upstream.create_chat_completion.assert_not_called()

    @pytest.mark.parametrize(
        "body",
        [
            {"model": "gpt-3.5-turbo"},
            {"messages": [{"role": "user", "content": "hi"}]},
            {"model": "", "messages": []},
            {"model": "gpt-3.5-turbo", "messages": "hi"},
        ],
    )
    def test_invalid_bodies(self, client: TestClient, upstream: MagicMock, body: dict) -> None:
        response = client.post(PROXY, json=body, headers=CLIENT)

        assert response.status_code == 400
        upstream.create_chat_completion.assert_not_called()

    def test_malformed_json(self, client: TestClient, upstream: MagicMock) -> None:
        response = client.post(
            PROXY,
            content=b"{not json",
            headers={**CLIENT, "content-type": "application/json"},
        )

        assert response.status_code == 400
        assert "valid JSON" in response.json()["error"]
        upstream.create_chat_completion.assert_not_called()

    @pytest.mark.parametrize("method", ["GET", "PUT", "PATCH", "DELETE"])
    def test_method_not_allowed(self, client: TestClient, upstream: MagicMock,
                                method: str) -> None:
        """Test non-POST methods are charged, then rejected."""
        response = client.request(method, PROXY, headers=CLIENT)

        assert response.status_code == 405
        assert response.headers["Allow"] == "POST"
        assert response.headers["X-RateLimit-Remaining"] == "19"
        upstream.create_chat_completion.assert_not_called()

    def test_missing_api_key(self, client: TestClient, upstream: MagicMock,
                             chat_body: dict) -> None:
        upstream.has_credentials = False

        response = client.post(PROXY, json=chat_body, headers=CLIENT)

        assert response.status_code == 500
        assert response.json()["error"] == "API key not configured"
        assert response.headers["X-RateLimit-Remaining"] == "19"
        upstream.create_chat_completion.assert_not_called()


class TestProxyUpstream:
    """Tests for upstream dispatch."""

    def test_upstream_error(self, client: TestClient, upstream: MagicMock,
                            chat_body: dict) -> None:
        """Test upstream failures map to 500 and keep quota headers."""
        upstream.create_chat_completion.side_effect = UpstreamError("model overloaded", 503)

        response = client.post(PROXY, json=chat_body, headers=CLIENT)

        assert response.status_code == 500
        assert response.json() == {
            "error": "Internal server error",
            "message": "model overloaded",
        }
        assert response.headers["X-RateLimit-Remaining"] == "19"

    def test_unexpected_error(self, client: TestClient, upstream: MagicMock,
                              chat_body: dict) -> None:
        upstream.create_chat_completion.side_effect = RuntimeError("boom")

        response = client.post(PROXY, json=chat_body, headers=CLIENT)

        assert response.status_code == 500
        assert response.json()["error"] == "Internal server error"

    def test_unexpected_error_message_is_generic(self, client: TestClient, upstream: MagicMock,
                                                 chat_body: dict) -> None:
        """Test internal exception text never reaches the caller."""
        upstream.create_chat_completion.side_effect = RuntimeError("secret at /etc/keys")

        response = client.post(PROXY, json=chat_body, headers=CLIENT)

        assert response.status_code == 500
        assert "secret" not in response.text
        assert response.json()["message"] == (
            "An unexpected error occurred while contacting the upstream API."
        )

    def test_relays_upstream_content_type(self, client: TestClient, upstream: MagicMock,
                                          chat_body: dict) -> None:
        upstream.create_chat_completion.return_value = UpstreamResponse(
            status_code=200,
            content=b'{"id": "chatcmpl-1"}',
            headers={"content-type": "application/json; charset=utf-8"},
        )

        response = client.post(PROXY, json=chat_body, headers=CLIENT)

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json; charset=utf-8"
        assert response.content == b'{"id": "chatcmpl-1"}'

    def test_failed_upstream_still_charged(self, client: TestClient, upstream: MagicMock,
                                           chat_body: dict) -> None:
        upstream.create_chat_completion.side_effect = UpstreamError("down")
        client.post(PROXY, json=chat_body, headers=CLIENT)

        response = client.get(STATUS, headers=CLIENT)

        assert response.json()["used"] == 1


class TestVerification:
    """Tests for advisory bot verification."""

    def test_result_reported_in_headers(self, upstream: MagicMock, chat_body: dict,
                                        clock) -> None:
        verifier = stub_verifier(VerificationStatus.PASSED, score=0.9)
        app = create_app(settings=make_settings(), store=InMemoryQuotaStore(),
                         upstream=upstream, verifier=verifier, clock=clock)

        with TestClient(app) as test_client:
            response = test_client.post(
                PROXY, json=chat_body, headers={**CLIENT, "X-Recaptcha-Token": "tok"}
            )

        assert response.status_code == 200
        assert response.headers["X-Recaptcha-Verified"] == "true"
        assert response.headers["X-Recaptcha-Score"] == "0.90"
        verifier.verify.assert_called_once_with("tok", "203.0.113.7")

    def test_failure_is_advisory(self, upstream: MagicMock, chat_body: dict, clock) -> None:
        """Test a failed verification does not block by default."""
        verifier = stub_verifier(VerificationStatus.FAILED, score=0.1)
        app = create_app(settings=make_settings(), store=InMemoryQuotaStore(),
                         upstream=upstream, verifier=verifier, clock=clock)

        with TestClient(app) as test_client:
            response = test_client.post(PROXY, json=chat_body, headers=CLIENT)

        assert response.status_code == 200
        assert response.headers["X-Recaptcha-Verified"] == "false"

    def test_failure_enforced(self, upstream: MagicMock, chat_body: dict, clock) -> None:
        verifier = stub_verifier(VerificationStatus.FAILED, score=0.1)
        app = create_app(settings=make_settings(recaptcha_enforce=True),
                         store=InMemoryQuotaStore(), upstream=upstream,
                         verifier=verifier, clock=clock)

        with TestClient(app) as test_client:
            response = test_client.post(PROXY, json=chat_body, headers=CLIENT)

        assert response.status_code == 403
        upstream.create_chat_completion.assert_not_called()

    def test_skipped_in_development(self, upstream: MagicMock, chat_body: dict,
                                    clock) -> None:
        verifier = stub_verifier(VerificationStatus.FAILED)
        app = create_app(settings=make_settings(environment="development"),
                         store=InMemoryQuotaStore(), upstream=upstream,
                         verifier=verifier, clock=clock)

        with TestClient(app) as test_client:
            response = test_client.post(
                PROXY, json=chat_body, headers={**CLIENT, "X-Recaptcha-Token": "tok"}
            )

        assert response.headers["X-Recaptcha-Verified"] == "skipped"
        verifier.verify.assert_not_called()


class TestLocalDevelopment:
    """Tests for the local development bypass."""

    def test_bypass_never_charges(self, upstream: MagicMock, chat_body: dict, clock) -> None:
        store = InMemoryQuotaStore()
        app = create_app(settings=make_settings(local_dev_bypass=True, rate_limit=1),
                         store=store, upstream=upstream, clock=clock)

        with TestClient(app) as test_client:
            for _ in range(3):
                response = test_client.post(
                    PROXY, json=chat_body, headers={"client-ip": "127.0.0.1"}
                )
                assert response.status_code == 200
                assert response.headers["X-RateLimit-Remaining"] == "0"

            assert store.document is None

    def test_bypass_off_charges_local(self, upstream: MagicMock, chat_body: dict,
                                      clock) -> None:
        app = create_app(settings=make_settings(rate_limit=1), store=InMemoryQuotaStore(),
                         upstream=upstream, clock=clock)

        with TestClient(app) as test_client:
            first = test_client.post(PROXY, json=chat_body, headers={"client-ip": "127.0.0.1"})
            second = test_client.post(PROXY, json=chat_body, headers={"client-ip": "127.0.0.1"})

        assert first.status_code == 200
        assert second.status_code == 429


class TestClientReportedMode:
    """Tests for the advisory client-reported limiter mode."""

    @pytest.fixture
    def reported_client(self, upstream: MagicMock, clock):
        app = create_app(settings=make_settings(limiter_mode="client-reported"),
                         store=InMemoryQuotaStore(), upstream=upstream, clock=clock)
        with TestClient(app) as test_client:
            yield test_client

    def test_allowed_below_limit(self, reported_client: TestClient, chat_body: dict) -> None:
        response = reported_client.post(
            PROXY, json=chat_body, headers={**CLIENT, "X-Client-Call-Count": "5"}
        )

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Remaining"] == "14"

    def test_denied_at_limit(self, reported_client: TestClient, chat_body: dict) -> None:
        response = reported_client.post(
            PROXY, json=chat_body, headers={**CLIENT, "X-Client-Call-Count": "20"}
        )

        assert response.status_code == 429

    def test_status_snapshot(self, reported_client: TestClient) -> None:
        response = reported_client.get(STATUS, headers={"X-Client-Call-Count": "3"})

        assert response.json()["remaining"] == 17
        assert response.json()["used"] == 3


class TestRateLimitStatus:
    """Tests for the rate limit status endpoint."""

    def test_fresh_client(self, client: TestClient) -> None:
        response = client.get(STATUS, headers=CLIENT)

        assert response.status_code == 200
        assert response.json() == {
            "limit": 20,
            "remaining": 20,
            "reset": "2025-01-02T12:00:00.000Z",
            "used": 0,
        }
        assert "no-store" in response.headers["Cache-Control"]

    def test_status_does_not_consume(self, client: TestClient, chat_body: dict) -> None:
        """Test repeated status checks leave quota unchanged."""
        for _ in range(3):
            client.post(PROXY, json=chat_body, headers=CLIENT)

        for _ in range(5):
            response = client.get(STATUS, headers=CLIENT)
            assert response.json()["remaining"] == 17
            assert response.json()["used"] == 3

        response = client.post(PROXY, json=chat_body, headers=CLIENT)
        assert response.headers["X-RateLimit-Remaining"] == "16"

    def test_status_headers(self, client: TestClient, chat_body: dict) -> None:
        client.post(PROXY, json=chat_body, headers=CLIENT)

        response = client.get(STATUS, headers=CLIENT)

        assert response.headers["X-RateLimit-Limit"] == "20"
        assert response.headers["X-RateLimit-Remaining"] == "19"
        assert response.headers["X-RateLimit-Used"] == "1"


class TestConcurrentAdmission:
    """Tests for concurrent requests against a shared store."""

    @pytest.mark.asyncio
    async def test_concurrent_first_requests(self) -> None:
        """Test concurrent first requests are all admitted with count at most N."""
        store = InMemoryQuotaStore()
        limiter = FixedWindowLimiter(store, limit=20, window_seconds=86400)

        results = await asyncio.gather(
            limiter.check("203.0.113.7"),
            limiter.check("203.0.113.7"),
        )

        assert all(result.allowed for result in results)
        records = await store.load()
        assert records["203.0.113.7"].count in {1, 2}

    def test_sequential_requests_after_window(self, client: TestClient, chat_body: dict,
                                              clock) -> None:
        client.post(PROXY, json=chat_body, headers=CLIENT)
        clock.advance(hours=23, minutes=59)
        client.post(PROXY, json=chat_body, headers=CLIENT)

        response = client.get(STATUS, headers=CLIENT)

        assert response.json()["used"] == 2
        assert response.json()["reset"] == "2025-01-02T12:00:00.000Z"

    def test_window_boundary(self, client: TestClient, chat_body: dict, clock) -> None:
        client.post(PROXY, json=chat_body, headers=CLIENT)
        clock.advance(days=1, milliseconds=1)

        response = client.post(PROXY, json=chat_body, headers=CLIENT)

        assert response.headers["X-RateLimit-Remaining"] == "19"
        expected = (clock.now + timedelta(days=1)).isoformat(timespec="milliseconds")
        assert response.headers["X-RateLimit-Reset"] == expected.replace("+00:00", "Z")


class TestCors:
    """Tests for cross-origin header exposure."""

    def test_quota_headers_exposed(self, client: TestClient, chat_body: dict) -> None:
        response = client.post(
            PROXY, json=chat_body, headers={**CLIENT, "Origin": "https://board.example"}
        )

        exposed = {h.strip() for h in response.headers["access-control-expose-headers"].split(",")}
        assert {
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "X-RateLimit-Used",
            "Retry-After",
            "X-Recaptcha-Verified",
            "X-Recaptcha-Score",
        } <= exposed
