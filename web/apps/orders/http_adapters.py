"""HTTP adapter clients with retries, circuit breakers, and context headers.

This module implements concrete HTTP clients for the domain ports using
``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from a ContextVar set by
    the gateway middleware.
- Circuit breaker for the catalog service to avoid hammering an unhealthy
    dependency, with HALF_OPEN probing after a timeout.
- Simple retry policy with exponential backoff for transport errors and 5xx
    on catalog calls. Stock moves are only retried when they carry a move
    key the catalog deduplicates; an unkeyed move fails on its first error.
- A payment gateway client that is deliberately not retried: creating a
    gateway order twice is not harmless, so a failure is reported to the
    caller as a ``GatewayError``.

Transport failures surface as ``GatewayError`` so the domain layer never
sees ``httpx`` types.
"""

import logging
import threading
import time
from typing import Optional

import httpx
from django.conf import settings
from django.utils.module_loading import import_string

from .domain import CatalogPort, GatewayPort, Product
from .errors import GatewayError, PaymentNotConfigured

REQUEST_ID_CTX = import_string("gateway.middleware.REQUEST_ID_CTX")

logger = logging.getLogger(__name__)


# ---------------- Circuit Breaker ---------------- #

class CircuitOpenError(RuntimeError):
    """Raised when a call is refused by an OPEN (or busy HALF_OPEN) breaker."""


class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful probe; stays HALF_OPEN while a
      single probe is in flight; transitions back to OPEN on failure.

    This implementation is thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"  # CLOSED | OPEN | HALF_OPEN
        self._opened_at = 0.0
        self._half_open_probe_in_flight = False

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._half_open_probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Check and update state before a protected call.

        Raises:
            CircuitOpenError: If the circuit is OPEN or a HALF_OPEN probe is busy.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise CircuitOpenError("CIRCUIT_OPEN")
            if st == "HALF_OPEN":
                if self._half_open_probe_in_flight:
                    raise CircuitOpenError("CIRCUIT_HALF_OPEN_BUSY")
                self._half_open_probe_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._half_open_probe_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._failures >= self.fail_threshold and self._state != "OPEN":
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._half_open_probe_in_flight = False
                logger.warning("circuit opened", extra={"circuit": self.name})

    def on_finish(self):
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_probe_in_flight = False


_catalog_cb = CircuitBreaker(
    "catalog",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return retry configuration as (max_retries, backoff_base_seconds)."""
    return (
        getattr(settings, "HTTP_RETRY_MAX", 3),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    # Retry only on transport errors or 5xx
    if exc is not None:
        return True
    if resp is not None and 500 <= resp.status_code < 600:
        return True
    return False


def _send(breaker: CircuitBreaker, method: str, url: str, timeout: float,
          json: Optional[dict] = None, business: tuple = (), retry: bool = True) -> httpx.Response:
    """Send a request with circuit-breaker precheck and backoff retries.

    Responses below 300 and statuses listed in ``business`` are returned
    to the caller and count as circuit successes. Transport errors and 5xx
    are retried when ``retry`` is set; anything else raises immediately.

    Raises:
        CircuitOpenError: The breaker refused the call.
        httpx.RequestError: Transport failure after retries.
        httpx.HTTPStatusError: Non-retriable or exhausted non-2xx response.
    """
    max_retries, backoff = _retry_policy()
    if not retry:
        max_retries = 0
    tries = 0

    state = breaker.before_call()
    headers = _request_headers({"X-Circuit-State": state, "X-Retry-Count": "0"})
    kwargs = {"headers": headers}
    if json is not None:
        kwargs["json"] = json

    try:
        with httpx.Client(timeout=timeout) as client:
            while True:
                resp = None
                exc = None
                try:
                    resp = getattr(client, method)(url, **kwargs)
                    if resp.status_code < 300 or resp.status_code in business:
                        breaker.on_success()
                        return resp
                    if not _should_retry(resp, None):
                        resp.raise_for_status()
                except httpx.RequestError as e:
                    exc = e

                tries += 1
                headers["X-Retry-Count"] = str(tries)

                if tries > max_retries or not _should_retry(resp, exc):
                    breaker.on_failure()
                    if exc:
                        raise exc
                    resp.raise_for_status()

                sleep_s = backoff * (2 ** (tries - 1))  # exponential backoff
                cap = getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)
                time.sleep(min(sleep_s, cap))
    finally:
        breaker.on_finish()


# ---------------- Catalog Adapter ---------------- #

class HttpCatalogClient(CatalogPort):
    """HTTP client for the catalog service with retry and circuit breaker."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or settings.CATALOG_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def _call(self, method: str, path: str, json: Optional[dict] = None, business: tuple = (),
              retry: bool = True):
        try:
            return _send(_catalog_cb, method, f"{self.base_url}{path}", self.timeout,
                         json=json, business=business, retry=retry)
        except (httpx.HTTPError, CircuitOpenError) as e:
            logger.warning("catalog call failed", extra={"path": path, "error": repr(e)})
            raise GatewayError("Catalog service unavailable") from e

    def get(self, product_id: str) -> Optional[Product]:
        """Fetch a product; 404 maps to None."""
        resp = self._call("get", f"/products/{product_id}", business=(404,))
        if resp.status_code == 404:
            return None
        data = resp.json()
        return Product(
            id=data["id"],
            name=data["name"],
            price_cents=int(data["price_cents"]),
            stock=int(data["stock"]),
        )

    def decrement_if_available(self, product_id: str, quantity: int, move_key: Optional[str] = None) -> bool:
        """Conditionally take stock.

        - 200 → True
        - 404 or 422 with INSUFFICIENT_STOCK → False, not circuit failures
        - any other 422 (request the catalog could not validate) → GatewayError
        """
        resp = self._call(
            "post", f"/products/{product_id}/decrement",
            json=_move_body(quantity, move_key), business=(404, 422), retry=move_key is not None,
        )
        if resp.status_code == 422 and not _is_stock_refusal(resp):
            logger.error("catalog rejected stock request", extra={"product_id": product_id, "status": 422})
            raise GatewayError("Catalog rejected the stock request")
        return resp.status_code == 200

    def increment(self, product_id: str, quantity: int, move_key: Optional[str] = None) -> None:
        self._call(
            "post", f"/products/{product_id}/increment",
            json=_move_body(quantity, move_key), retry=move_key is not None,
        )

    def reverse_decrement(self, product_id: str, quantity: int, move_key: str) -> bool:
        resp = self._call(
            "post", f"/products/{product_id}/reverse",
            json=_move_body(quantity, move_key),
        )
        return bool(resp.json().get("restored"))


def _move_body(quantity: int, move_key: Optional[str]) -> dict:
    body = {"quantity": quantity}
    if move_key is not None:
        body["move_key"] = move_key
    return body


def _is_stock_refusal(resp) -> bool:
    try:
        detail = resp.json().get("detail")
    except ValueError:
        return False
    return isinstance(detail, dict) and detail.get("detail") == "INSUFFICIENT_STOCK"


# ---------------- Payment Gateway Adapter ---------------- #

class HttpGatewayClient(GatewayPort):
    """HTTP client creating payment orders at the gateway.

    Uses HTTP basic auth with the account key id and secret and a short
    fixed timeout. There is no retry: any transport failure or non-2xx
    answer becomes a ``GatewayError``.
    """

    def __init__(self, base_url: str | None = None, key_id: str | None = None,
                 key_secret: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or settings.GATEWAY_BASE_URL).rstrip("/")
        self.key_id = key_id if key_id is not None else settings.GATEWAY_KEY_ID
        self.key_secret = key_secret if key_secret is not None else settings.GATEWAY_KEY_SECRET
        self.timeout = timeout or settings.GATEWAY_TIMEOUT_SECS

    def create_order(self, amount_cents: int, currency: str, receipt: str) -> dict:
        if not self.key_id or not self.key_secret:
            raise PaymentNotConfigured("Payment gateway not configured")
        payload = {
            "amount": amount_cents,
            "currency": currency,
            "receipt": receipt,
            "payment_capture": 1,
        }
        try:
            with httpx.Client(timeout=self.timeout, auth=(self.key_id, self.key_secret)) as client:
                resp = client.post(f"{self.base_url}/v1/orders", json=payload, headers=_request_headers())
        except httpx.RequestError as e:
            logger.warning("gateway unreachable", extra={"error": repr(e)})
            raise GatewayError("Failed to create payment order") from e

        if resp.status_code >= 300:
            logger.warning("gateway rejected order", extra={"status": resp.status_code})
            raise GatewayError(f"Gateway error ({resp.status_code})")
        return resp.json()
