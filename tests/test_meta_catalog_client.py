import json
import time

import requests

from primepickz.config import Config
from primepickz.services.meta_catalog_client import (
    MetaApiError,
    MetaCatalogClient,
    get_meta_catalog_client,
    reset_meta_catalog_client,
)

GRAPH = "https://graph.facebook.com/v21.0"
PRODUCTS_URL = f"{GRAPH}/cat-1/products"


class _StubConfig(Config):
    META_API_VERSION = "v21.0"
    META_MAX_RETRIES = 2
    META_RATE_LIMIT_PER_HOUR = 200


class _StubResponse:
    def __init__(self, payload=None, status_code=200, headers=None):
        self._payload = payload
        self.status_code = status_code
        self.headers = headers or {}

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class _StubSession:
    """Replays queued responses (or raises queued exceptions) in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def request(self, method, url, headers=None, json=None, params=None, timeout=None):
        self.calls.append({"method": method, "url": url, "headers": headers, "json": json, "params": params})
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _client(session, sleeps=None):
    return MetaCatalogClient(
        access_token="token-123",
        catalog_id="cat-1",
        business_id="biz-1",
        config=_StubConfig,
        session=session,
        sleep=(sleeps if sleeps is not None else []).append,
    )


def _graph_error(code, message="boom", status_code=400):
    payload = {"error": {"message": message, "type": "OAuthException", "code": code, "fbtrace_id": "trace"}}
    return _StubResponse(payload, status_code=status_code)


def test_validate_config_lists_missing_settings():
    client = MetaCatalogClient(access_token="", catalog_id="cat-1", business_id="", config=_StubConfig)
    assert client.validate_config() == (False, ["META_ACCESS_TOKEN", "META_BUSINESS_ID"])
    assert _client(_StubSession(_StubResponse({}))).validate_config() == (True, [])


def test_upsert_posts_product_with_allow_upsert():
    session = _StubSession(_StubResponse({"id": "meta-9"}))

    result = _client(session).upsert_product({"retailer_id": "p1", "name": "Lamp"})

    assert result.success is True
    assert result.data == {"id": "meta-9"}
    sent = session.calls[0]
    assert sent["method"] == "POST"
    assert sent["url"] == PRODUCTS_URL
    assert sent["headers"]["Authorization"] == "Bearer token-123"
    assert sent["json"]["allow_upsert"] is True
    assert sent["json"]["retailer_id"] == "p1"


def test_transient_error_is_retried_then_succeeds():
    session = _StubSession(_graph_error(2, "Service unavailable", status_code=503), _StubResponse({"id": "meta-1"}))
    sleeps = []

    result = _client(session, sleeps).upsert_product({"retailer_id": "p1"})

    assert result.success is True
    assert len(session.calls) == 2
    assert len(sleeps) == 1
    # First backoff is 1s with a 25% jitter band
    assert 0.75 <= sleeps[0] <= 1.25


def test_non_retryable_error_fails_immediately():
    session = _StubSession(_graph_error(100, "Invalid parameter"))

    result = _client(session).upsert_product({"retailer_id": "p1"})

    assert result.success is False
    assert result.error_code == 100
    assert result.error_message == "Invalid parameter"
    assert len(session.calls) == 1


def test_retries_stop_after_configured_attempts():
    session = _StubSession(_graph_error(17, "User request limit reached"))
    sleeps = []

    result = _client(session, sleeps).upsert_product({"retailer_id": "p1"})

    assert result.success is False
    assert result.error_code == 17
    assert len(session.calls) == 3
    assert len(sleeps) == 2


def test_network_failures_are_retried_and_reported():
    session = _StubSession(requests.ConnectionError("connection reset"))

    result = _client(session).delete_product("p1")

    assert result.success is False
    assert result.error["type"] == "NetworkError"
    assert len(session.calls) == 3
    assert session.calls[0]["json"] == {"retailer_id": "p1"}


def test_list_all_products_follows_cursors():
    session = _StubSession(
        _StubResponse({
            "data": [{"retailer_id": "a"}, {"retailer_id": "b"}],
            "paging": {"cursors": {"after": "cursor-2"}, "next": f"{PRODUCTS_URL}?after=cursor-2"},
        }),
        _StubResponse({"data": [{"retailer_id": "c"}], "paging": {"cursors": {"after": "cursor-3"}}}),
    )

    result = _client(session).list_all_products(limit=2)

    assert result.success is True
    assert [item["retailer_id"] for item in result.data["products"]] == ["a", "b", "c"]
    assert result.data["has_more"] is False
    assert "after" not in session.calls[0]["params"]
    assert session.calls[1]["params"]["after"] == "cursor-2"


def test_list_all_products_fails_when_a_page_fails():
    session = _StubSession(
        _StubResponse({"data": [{"retailer_id": "a"}], "paging": {"cursors": {"after": "c2"}, "next": "x"}}),
        _graph_error(190, "Token expired", status_code=401),
    )

    result = _client(session).list_all_products()

    assert result.success is False
    assert result.error_code == 190


def test_usage_header_updates_rate_limit_budget():
    usage = {"biz-1": [{"call_count": 50, "type": "catalog"}]}
    session = _StubSession(_StubResponse(
        {"id": "cat-1", "name": "Main", "product_count": 3},
        headers={"x-business-use-case-usage": json.dumps(usage)},
    ))
    client = _client(session)

    result = client.verify_catalog_access()

    assert result.success is True
    assert result.data["product_count"] == 3
    assert session.calls[0]["url"] == f"{GRAPH}/cat-1"
    assert client.rate_limit_remaining == 149


def test_exhausted_budget_waits_for_window_reset():
    session = _StubSession(_StubResponse({"id": "meta-1"}))
    sleeps = []
    client = _client(session, sleeps)
    client._rate_limit_remaining = 0
    client._rate_limit_reset_at = time.time() + 120

    result = client.upsert_product({"retailer_id": "p1"})

    assert result.success is True
    assert len(sleeps) == 1
    assert 110 <= sleeps[0] <= 120
    assert len(session.calls) == 1
    # Fresh window after the wait, minus the call just made
    assert client.rate_limit_remaining == 199
    assert client._rate_limit_reset_at > time.time() + 3500


def test_elapsed_window_resets_budget_without_waiting():
    sleeps = []
    client = _client(_StubSession(_StubResponse({"id": "meta-1"})), sleeps)
    client._rate_limit_remaining = 0
    client._rate_limit_reset_at = time.time() - 1

    assert client.upsert_product({"retailer_id": "p1"}).success is True
    assert sleeps == []
    assert client.rate_limit_remaining == 199


def test_malformed_usage_header_is_ignored():
    session = _StubSession(_StubResponse({"id": "cat-1"}, headers={"x-business-use-case-usage": "not-json"}))
    client = _client(session)

    assert client.verify_catalog_access().success is True
    assert client.rate_limit_remaining == 199


def test_meta_api_error_parses_graph_payload():
    error = MetaApiError.from_payload(
        {"error": {"message": "Application request limit reached", "code": 4, "fbtrace_id": "trace"}},
        http_status=400,
    )
    assert error.code == 4
    assert error.retryable is True
    assert error.to_dict()["fbtrace_id"] == "trace"

    unknown = MetaApiError.from_payload(None)
    assert unknown.code == -1
    assert unknown.retryable is False


def test_batch_operation_encodes_requests():
    session = _StubSession(_StubResponse({"handles": ["h1"]}))

    result = _client(session).batch_operation([
        {"method": "UPDATE", "retailer_id": "p1", "data": {"name": "Lamp"}},
        {"method": "DELETE", "retailer_id": "p2"},
    ])

    assert result.success is True
    body = session.calls[0]["json"]
    assert session.calls[0]["url"] == f"{GRAPH}/cat-1/items_batch"
    assert body["allow_upsert"] is True
    assert json.loads(body["requests"]) == [
        {"method": "UPDATE", "data": {"name": "Lamp", "retailer_id": "p1"}},
        {"method": "DELETE", "data": {"retailer_id": "p2"}},
    ]


def test_get_product_returns_first_match_or_none():
    session = _StubSession(
        _StubResponse({"data": [{"id": "m1", "retailer_id": "p1"}]}),
        _StubResponse({"data": []}),
    )
    client = _client(session)

    assert client.get_product("p1").data == {"id": "m1", "retailer_id": "p1"}
    assert client.get_product("p2").data is None
    assert json.loads(session.calls[0]["params"]["filter"]) == {"retailer_id": {"eq": "p1"}}


def test_client_singleton_can_be_reset():
    reset_meta_catalog_client()
    first = get_meta_catalog_client()
    assert get_meta_catalog_client() is first
    reset_meta_catalog_client()
    assert get_meta_catalog_client() is not first
    reset_meta_catalog_client()
