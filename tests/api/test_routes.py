"""Tests for API routes in linkpeek/api/routes.py."""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from linkpeek.api import routes
from linkpeek.api.models import CacheStats, Preview, PreviewError, PreviewImage
from linkpeek.exceptions import ErrorCode
from linkpeek.main import app

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

TARGET = "https://example.com/article"


def _success() -> Preview:
    return Preview(
        url=TARGET,
        title="Article",
        site_name="Example",
        image=PreviewImage(url="https://example.com/a.png", width=800),
        fetched_at="2026-01-01T00:00:00.000Z",
    )


def _failure(code: ErrorCode = ErrorCode.SSRF_BLOCKED) -> Preview:
    return Preview(
        url=TARGET,
        fetched_at="2026-01-01T00:00:00.000Z",
        error=PreviewError(code=code, message="Hostname resolves to a private/reserved IP address"),
    )


def _assert_cors(response) -> None:
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-allow-methods"] == "GET, OPTIONS"
    assert response.headers["access-control-allow-headers"] == "Content-Type"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def client() -> TestClient:
    """Return a synchronous TestClient for the FastAPI app."""
    return TestClient(app, raise_server_exceptions=False)


# ---------------------------------------------------------------------------
# GET /api/preview
# ---------------------------------------------------------------------------


class TestGetPreview:
    def test_success_returns_200_with_public_caching(self, client):
        with patch.object(routes.resolver, "resolve", AsyncMock(return_value=_success())):
            response = client.get("/api/preview", params={"url": TARGET})

        assert response.status_code == 200
        assert response.headers["cache-control"] == "public, max-age=3600, s-maxage=86400"
        assert response.json() == {
            "url": TARGET,
            "title": "Article",
            "siteName": "Example",
            "image": {"url": "https://example.com/a.png", "width": 800},
            "fetchedAt": "2026-01-01T00:00:00.000Z",
        }
        _assert_cors(response)

    def test_passes_service_options(self, client):
        mock = AsyncMock(return_value=_success())
        with patch.object(routes.resolver, "resolve", mock):
            client.get("/api/preview", params={"url": TARGET})
        mock.assert_awaited_once_with(TARGET, routes.resolve_options)

    def test_failure_returns_502_no_store(self, client):
        with patch.object(routes.resolver, "resolve", AsyncMock(return_value=_failure())):
            response = client.get("/api/preview", params={"url": TARGET})

        assert response.status_code == 502
        assert response.headers["cache-control"] == "no-store"
        body = response.json()
        assert body["error"]["code"] == "SSRF_BLOCKED"
        assert "title" not in body
        _assert_cors(response)

    @pytest.mark.parametrize("query", ["", "?url=", "?other=x"])
    def test_missing_url_returns_400(self, client, query):
        mock = AsyncMock()
        with patch.object(routes.resolver, "resolve", mock):
            response = client.get(f"/api/preview{query}")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MISSING_URL"
        mock.assert_not_called()
        _assert_cors(response)

    def test_unexpected_fault_returns_sanitized_500(self, client):
        boom = AsyncMock(side_effect=RuntimeError("secret stack detail"))
        with patch.object(routes.resolver, "resolve", boom):
            response = client.get("/api/preview", params={"url": TARGET})

        assert response.status_code == 500
        body = response.json()
        assert body["error"]["code"] == "INTERNAL_ERROR"
        assert "secret" not in response.text
        assert response.headers["cache-control"] == "no-store"
        _assert_cors(response)

    def test_custom_parameter_name(self, client):
        mock = AsyncMock(return_value=_success())
        with patch("linkpeek.api.routes.PARAM_NAME", "link"), patch.object(
            routes.resolver, "resolve", mock
        ):
            missing = client.get("/api/preview", params={"url": TARGET})
            found = client.get("/api/preview", params={"link": TARGET})

        assert missing.status_code == 400
        assert '"link"' in missing.json()["error"]["message"]
        assert found.status_code == 200
        mock.assert_awaited_once()

    def test_security_headers(self, client):
        with patch.object(routes.resolver, "resolve", AsyncMock(return_value=_success())):
            response = client.get("/api/preview", params={"url": TARGET})
        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["x-api-version"]


# ---------------------------------------------------------------------------
# OPTIONS /api/preview
# ---------------------------------------------------------------------------


class TestPreflight:
    def test_returns_204_without_resolving(self, client):
        mock = AsyncMock()
        with patch.object(routes.resolver, "resolve", mock):
            response = client.options("/api/preview")

        assert response.status_code == 204
        assert response.content == b""
        mock.assert_not_called()
        _assert_cors(response)


# ---------------------------------------------------------------------------
# GET /api/health/ready
# ---------------------------------------------------------------------------


class TestHealthReady:
    def test_reports_cache_stats(self, client):
        stats = {"max=1000,ttl_ms=86400000": CacheStats(size=2, hits=5, misses=3)}
        with patch.object(routes.resolver, "stats", return_value=stats):
            response = client.get("/api/health/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["ready"] is True
        assert body["caches"] == {
            "max=1000,ttl_ms=86400000": {"size": 2, "hits": 5, "misses": 3}
        }
        _assert_cors(response)

    def test_empty_before_first_resolution(self, client):
        with patch.object(routes.resolver, "stats", return_value={}):
            response = client.get("/api/health/ready")
        assert response.json()["caches"] == {}
