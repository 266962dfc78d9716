"""
Meta Graph API client for the product catalog.

Covers single-item upsert/delete, batch operations, reads used by
reconciliation, and a connection check. Transient Graph errors and network
failures are retried with exponential backoff; callers always receive a
``MetaApiResponse`` rather than an exception.
"""
from __future__ import annotations

import json
import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import requests
from tenacity import Retrying, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from primepickz.config import Config
from primepickz.observability import increment_counter, record_event

logger = logging.getLogger(__name__)

BASE_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 60.0
JITTER_RATIO = 0.25
RATE_LIMIT_WINDOW_SECONDS = 3600
LIST_SAFETY_LIMIT = 10000

# Graph API codes worth retrying: unknown, service unavailable, app/user
# throttling, temporary issue, spam prevention
RETRYABLE_ERROR_CODES = frozenset({1, 2, 4, 17, 341, 368})
RATE_LIMIT_ERROR_CODES = frozenset({4, 17})
AUTH_ERROR_CODES = frozenset({102, 190})

PRODUCT_FIELDS = "id,retailer_id,name,description,price,currency,availability,image_url,url"


class MetaApiError(Exception):
    """Error body returned by the Graph API."""

    def __init__(self, message: str, code: int = -1, error_type: str = "UnknownError",
                 fbtrace_id: Optional[str] = None, http_status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.type = error_type
        self.fbtrace_id = fbtrace_id
        self.http_status = http_status

    @classmethod
    def from_payload(cls, payload: Any, http_status: Optional[int] = None) -> "MetaApiError":
        error = payload.get("error") if isinstance(payload, dict) else None
        if not isinstance(error, dict):
            return cls("Unknown error", http_status=http_status)
        try:
            code = int(error.get("code", -1))
        except (TypeError, ValueError):
            code = -1
        return cls(
            error.get("message") or "Unknown error",
            code=code,
            error_type=error.get("type") or "UnknownError",
            fbtrace_id=error.get("fbtrace_id"),
            http_status=http_status,
        )

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_ERROR_CODES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "type": self.type,
            "code": self.code,
            "fbtrace_id": self.fbtrace_id,
        }


@dataclass
class MetaApiResponse:
    success: bool
    data: Any = None
    error: Optional[Dict[str, Any]] = None

    @property
    def error_message(self) -> Optional[str]:
        return (self.error or {}).get("message")

    @property
    def error_code(self) -> Optional[int]:
        return (self.error or {}).get("code")

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error
        return payload


class wait_backoff_with_jitter(wait_base):
    """Exponential backoff (base * 2^n, capped) with a symmetric jitter band."""

    def __init__(self, base: float = BASE_DELAY_SECONDS, maximum: float = MAX_DELAY_SECONDS,
                 jitter: float = JITTER_RATIO):
        self.base = base
        self.maximum = maximum
        self.jitter = jitter

    def __call__(self, retry_state) -> float:
        delay = min(self.base * (2 ** (retry_state.attempt_number - 1)), self.maximum)
        return max(0.0, delay + delay * self.jitter * random.uniform(-1, 1))


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, MetaApiError):
        return exc.retryable
    return isinstance(exc, requests.RequestException)


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        "Meta API call failed, retrying",
        extra={
            "attempt": retry_state.attempt_number,
            "wait_seconds": round(wait, 2),
            "error": str(exc),
            "error_code": getattr(exc, "code", None),
        },
    )
    increment_counter("meta_api_retries_total")


class MetaCatalogClient:
    def __init__(
        self,
        access_token: Optional[str] = None,
        catalog_id: Optional[str] = None,
        business_id: Optional[str] = None,
        config: type[Config] = Config,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.access_token = access_token if access_token is not None else config.META_ACCESS_TOKEN
        self.catalog_id = catalog_id if catalog_id is not None else config.META_CATALOG_ID
        self.business_id = business_id if business_id is not None else config.META_BUSINESS_ID
        self.base_url = config.meta_api_base()
        self.timeout = config.META_API_TIMEOUT_SECONDS
        self.max_retries = config.META_MAX_RETRIES
        self.rate_limit_per_hour = config.META_RATE_LIMIT_PER_HOUR
        self.session = session or requests.Session()
        self._sleep = sleep
        self._rate_lock = threading.Lock()
        self._rate_limit_remaining = self.rate_limit_per_hour
        self._rate_limit_reset_at = time.time() + RATE_LIMIT_WINDOW_SECONDS

    # ------------------------------------------------------------------
    # Configuration and rate limiting
    # ------------------------------------------------------------------
    def validate_config(self) -> Tuple[bool, List[str]]:
        missing: List[str] = []
        if not self.access_token:
            missing.append("META_ACCESS_TOKEN")
        if not self.catalog_id:
            missing.append("META_CATALOG_ID")
        if not self.business_id:
            missing.append("META_BUSINESS_ID")
        return len(missing) == 0, missing

    @property
    def rate_limit_remaining(self) -> int:
        return self._rate_limit_remaining

    def _wait_for_rate_limit(self) -> None:
        with self._rate_lock:
            now = time.time()
            if now >= self._rate_limit_reset_at:
                self._rate_limit_remaining = self.rate_limit_per_hour
                self._rate_limit_reset_at = now + RATE_LIMIT_WINDOW_SECONDS
                return
            if self._rate_limit_remaining > 0:
                return
            wait_seconds = self._rate_limit_reset_at - now

        logger.warning("Meta API rate limit reached, waiting", extra={"wait_seconds": round(wait_seconds, 1)})
        record_event("meta_rate_limit_wait", {"wait_seconds": wait_seconds})
        self._sleep(wait_seconds)
        with self._rate_lock:
            self._rate_limit_remaining = self.rate_limit_per_hour
            self._rate_limit_reset_at = time.time() + RATE_LIMIT_WINDOW_SECONDS

    def _update_rate_limit(self, headers: Any) -> None:
        with self._rate_lock:
            raw_usage = headers.get("x-business-use-case-usage") if headers else None
            if raw_usage:
                try:
                    usage = json.loads(raw_usage)
                    entries = usage.get(self.business_id) if isinstance(usage, dict) else None
                    if entries:
                        call_count = int(entries[0].get("call_count") or 0)
                        self._rate_limit_remaining = max(0, self.rate_limit_per_hour - call_count)
                except (ValueError, TypeError, AttributeError, IndexError):
                    logger.debug("Ignoring malformed usage header", extra={"header": raw_usage})
            self._rate_limit_remaining -= 1

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    def _send_once(self, method: str, url: str, body: Optional[Dict[str, Any]],
                   params: Optional[Dict[str, Any]]) -> Any:
        self._wait_for_rate_limit()
        response = self.session.request(
            method,
            url,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.access_token}",
            },
            json=body,
            params=params,
            timeout=self.timeout,
        )
        self._update_rate_limit(response.headers)

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.ok:
            raise MetaApiError.from_payload(data, http_status=response.status_code)
        return data

    def _request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> MetaApiResponse:
        url = endpoint if endpoint.startswith("http") else f"{self.base_url}{endpoint}"
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_backoff_with_jitter(),
            retry=retry_if_exception(_is_retryable),
            before_sleep=_log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            data = retrying(self._send_once, method, url, body, params)
        except MetaApiError as exc:
            increment_counter("meta_api_errors_total", labels={"code": str(exc.code)})
            logger.error(
                "Meta API request failed",
                extra={"endpoint": endpoint, "method": method, "error_code": exc.code, "error": exc.message},
            )
            return MetaApiResponse(success=False, error=exc.to_dict())
        except requests.RequestException as exc:
            increment_counter("meta_api_errors_total", labels={"code": "network"})
            logger.error("Meta API network failure", extra={"endpoint": endpoint, "error": str(exc)})
            return MetaApiResponse(
                success=False,
                error={"message": str(exc) or "Network error", "type": "NetworkError", "code": -1,
                       "fbtrace_id": None},
            )
        return MetaApiResponse(success=True, data=data)

    # ------------------------------------------------------------------
    # Catalog operations
    # ------------------------------------------------------------------
    def upsert_product(self, product: Dict[str, Any]) -> MetaApiResponse:
        """Create or update an item keyed by its retailer_id."""
        return self._request(
            f"/{self.catalog_id}/products",
            "POST",
            body={**product, "allow_upsert": True},
        )

    def delete_product(self, retailer_id: str) -> MetaApiResponse:
        return self._request(
            f"/{self.catalog_id}/products",
            "DELETE",
            body={"retailer_id": retailer_id},
        )

    def batch_operation(self, items: Iterable[Dict[str, Any]]) -> MetaApiResponse:
        """Send CREATE/UPDATE/DELETE items through the items_batch endpoint.

        Each item is ``{"method": ..., "retailer_id": ..., "data": {...}}``.
        Meta accepts up to 5000 requests per call.
        """
        requests_payload = []
        for item in items:
            if item["method"] == "DELETE":
                requests_payload.append({"method": "DELETE", "data": {"retailer_id": item["retailer_id"]}})
            else:
                requests_payload.append({
                    "method": item["method"],
                    "data": {**(item.get("data") or {}), "retailer_id": item["retailer_id"]},
                })
        return self._request(
            f"/{self.catalog_id}/items_batch",
            "POST",
            body={"allow_upsert": True, "requests": json.dumps(requests_payload)},
        )

    def get_product(self, retailer_id: str) -> MetaApiResponse:
        response = self._request(
            f"/{self.catalog_id}/products",
            "GET",
            params={
                "filter": json.dumps({"retailer_id": {"eq": retailer_id}}),
                "fields": PRODUCT_FIELDS,
            },
        )
        if not response.success:
            return response
        items = (response.data or {}).get("data") or []
        return MetaApiResponse(success=True, data=items[0] if items else None)

    def list_all_products(self, limit: int = 250) -> MetaApiResponse:
        """Page through the whole catalog; used by reconciliation."""
        products: List[Dict[str, Any]] = []
        cursor: Optional[str] = None

        while True:
            params: Dict[str, Any] = {"limit": limit, "fields": PRODUCT_FIELDS}
            if cursor:
                params["after"] = cursor
            response = self._request(f"/{self.catalog_id}/products", "GET", params=params)
            if not response.success:
                return MetaApiResponse(success=False, error=response.error)

            page = response.data or {}
            products.extend(page.get("data") or [])
            paging = page.get("paging") or {}
            cursor = (paging.get("cursors") or {}).get("after")

            if not paging.get("next") or not cursor:
                break
            if len(products) >= LIST_SAFETY_LIMIT:
                logger.warning("Catalog listing hit safety limit", extra={"count": len(products)})
                break

        return MetaApiResponse(success=True, data={"products": products, "has_more": False})

    def verify_catalog_access(self) -> MetaApiResponse:
        return self._request(
            f"/{self.catalog_id}",
            "GET",
            params={"fields": "id,name,product_count"},
        )


_client_instance: Optional[MetaCatalogClient] = None
_client_lock = threading.Lock()


def get_meta_catalog_client() -> MetaCatalogClient:
    global _client_instance
    if _client_instance is None:
        with _client_lock:
            if _client_instance is None:
                _client_instance = MetaCatalogClient()
    return _client_instance


def reset_meta_catalog_client() -> None:
    global _client_instance
    with _client_lock:
        _client_instance = None
