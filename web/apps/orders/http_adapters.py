"""HTTP adapter for the payments port with retries, circuit breaker and context headers.

This module implements the concrete HTTP client for ``PaymentsPort`` using
``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from a ContextVar set by
    the gateway middleware.
- Circuit breaker for the payments service to avoid hammering an unhealthy
    dependency, with HALF_OPEN probing after a timeout.
- Simple retry policy with exponential backoff for transport errors and 5xx.
- Payments idempotency: the client can propagate an ``Idempotency-Key``
    header to enable end-to-end idempotency.

The client never raises to its caller: timeouts, transport errors, an open
circuit and unexpected responses all become failed ``PaymentResult``
values with code ``UNAVAILABLE``.
"""

import logging
import threading
import time
import uuid
from decimal import Decimal
from typing import Optional

import httpx
from django.conf import settings

from gateway.middleware import REQUEST_ID_CTX

from .domain import PaymentCode, PaymentResult, PaymentsPort, to_cents

logger = logging.getLogger("orders.payments")

# Business outcomes from the payments service; not circuit failures
DECLINE_STATUSES = (402, 409, 422)


# ---------------- Circuit Breaker ---------------- #

class CircuitOpenError(RuntimeError):
    """Raised by ``CircuitBreaker.before_call`` when calls are not allowed."""


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
        """Current breaker state with time-based transition handling."""
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._half_open_probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Check and update state before a protected call.

        Returns:
            str: The state at call time.

        Raises:
            CircuitOpenError: If the circuit is OPEN or a HALF_OPEN probe is busy.
        """
        with self._lock:
            st = self.state  # force evaluation of time-based transition
            if st == "OPEN":
                raise CircuitOpenError("CIRCUIT_OPEN")
            if st == "HALF_OPEN":
                # allow only one concurrent probe
                if self._half_open_probe_in_flight:
                    raise CircuitOpenError("CIRCUIT_HALF_OPEN_BUSY")
                self._half_open_probe_in_flight = True
            return st

    def on_success(self):
        """Record a successful call and close/reset the breaker."""
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._half_open_probe_in_flight = False

    def on_failure(self):
        """Record a failed call and open the breaker if threshold exceeded."""
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (self._failures >= self.fail_threshold and self._state != "OPEN"):
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._half_open_probe_in_flight = False

    def on_finish(self):
        """Release any HALF_OPEN probe flag after a call finishes."""
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_probe_in_flight = False


_payments_cb = CircuitBreaker(
    "payments",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


def circuit_states() -> dict[str, str]:
    return {_payments_cb.name: _payments_cb.state}


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras.

    Args:
        extra: Optional dict of additional headers to include.

    Returns:
        dict: Final headers dictionary for the outgoing request.
    """
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
    """Retry only on transport exceptions or HTTP 5xx."""
    if exc is not None:
        return True
    if resp is not None and 500 <= resp.status_code < 600:
        return True
    return False


def _detail(resp) -> Optional[str]:
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        detail = body.get("detail")
        return detail if isinstance(detail, str) else None
    return None


# ---------------- Payments Adapter ---------------- #

class HttpPaymentsClient(PaymentsPort):
    """HTTP client for the payments service with retry and circuit breaker.

    Args:
        base_url: Payments service root URL (``PAYMENTS_BASE_URL`` by default).
        timeout: Per-request timeout in seconds (``HTTP_TIMEOUT_SECS``).
        currency: ISO currency sent with every charge.
        idempotency_key: Key sent as ``Idempotency-Key`` on ``/charge``. When
            absent, a fresh key is generated per ``process_payment`` call and
            reused by its retries.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        currency: str | None = None,
        idempotency_key: str | None = None,
        breaker: CircuitBreaker | None = None,
    ):
        self.base_url = base_url or settings.PAYMENTS_BASE_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS
        self.currency = currency or getattr(settings, "DEFAULT_CURRENCY", "EUR")
        self.idempotency_key = idempotency_key
        self.breaker = breaker or _payments_cb

    def process_payment(self, amount: Decimal) -> PaymentResult:
        """Authorize a charge of ``amount`` (major units).

        Business mappings:
        - 200 → success with the service's ``transaction_id``
        - 402, 409 or 422 → declined, not a circuit failure
        - 409 ``IN_PROGRESS`` → ``UNAVAILABLE`` (the same key is still being charged)
        - anything else, or no response at all → ``UNAVAILABLE``

        Args:
            amount: Positive amount in major units, e.g. ``Decimal("12.50")``.

        Returns:
            PaymentResult: Never raises.
        """
        if amount is None or Decimal(amount) <= 0:
            logger.warning("rejected non-positive payment amount", extra={"amount": str(amount)})
            return PaymentResult.failed("INVALID_AMOUNT", code=PaymentCode.INVALID_AMOUNT)

        payload = {"amount_cents": to_cents(amount), "currency": self.currency}
        # retries of this charge reuse the same key
        extras = {"Idempotency-Key": self.idempotency_key or str(uuid.uuid4())}

        resp = self._call("/charge", payload, extras)
        if isinstance(resp, PaymentResult):
            return resp
        if resp.status_code == 200:
            try:
                tx = resp.json().get("transaction_id")
            except (ValueError, AttributeError):
                tx = None
            if not tx:
                return PaymentResult.failed("MISSING_TRANSACTION_ID", code=PaymentCode.UNAVAILABLE)
            return PaymentResult.succeeded(str(tx))
        detail = _detail(resp)
        if resp.status_code == 409 and detail == "IN_PROGRESS":
            return PaymentResult.failed(detail, code=PaymentCode.UNAVAILABLE)
        if resp.status_code in DECLINE_STATUSES:
            return PaymentResult.failed(detail or "PAYMENT_DECLINED", code=PaymentCode.DECLINED)
        return PaymentResult.failed(f"HTTP_{resp.status_code}", code=PaymentCode.UNAVAILABLE)

    def refund(self, transaction_id: str, amount: Decimal) -> PaymentResult:
        """Reverse a charge previously returned by ``process_payment``."""
        payload = {"transaction_id": str(transaction_id), "amount_cents": to_cents(amount)}
        resp = self._call("/refund", payload, {})
        if isinstance(resp, PaymentResult):
            return resp
        if resp.status_code == 200:
            return PaymentResult.succeeded(str(transaction_id), message="REFUNDED")
        if resp.status_code in DECLINE_STATUSES or resp.status_code == 404:
            return PaymentResult.failed(_detail(resp) or "REFUND_REJECTED", transaction_id=str(transaction_id))
        return PaymentResult.failed(
            f"HTTP_{resp.status_code}", code=PaymentCode.UNAVAILABLE, transaction_id=str(transaction_id)
        )

    def _call(self, path: str, payload: dict, extras: dict):
        """POST and return the final response, or a failed PaymentResult."""
        try:
            return self._post_with_retry(path, payload, extras)
        except CircuitOpenError as e:
            logger.warning("payments circuit open", extra={"path": path, "state": str(e)})
            return PaymentResult.failed(str(e), code=PaymentCode.UNAVAILABLE)
        except httpx.TimeoutException:
            logger.error("payments call timed out", extra={"path": path, "timeout": self.timeout})
            return PaymentResult.failed("PAYMENT_TIMEOUT", code=PaymentCode.UNAVAILABLE)
        except httpx.HTTPError as e:
            logger.error("payments call failed", extra={"path": path, "error": str(e)})
            return PaymentResult.failed("PAYMENT_UNAVAILABLE", code=PaymentCode.UNAVAILABLE)
        except Exception:
            logger.error("unexpected payments client error", exc_info=True, extra={"path": path})
            return PaymentResult.failed("PAYMENT_ERROR", code=PaymentCode.UNAVAILABLE)

    def _post_with_retry(self, path: str, payload: dict, extras: dict):
        """Circuit-breaker precheck plus exponential backoff retries.

        Retries transport errors and HTTP 5xx up to ``HTTP_RETRY_MAX`` times.

        Raises:
            CircuitOpenError: When the breaker refuses the call.
            httpx.RequestError: For network/transport errors after retries.
        """
        max_retries, backoff = _retry_policy()
        cap = getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)
        tries = 0

        state = self.breaker.before_call()
        headers = _request_headers({**extras, "X-Circuit-State": state, "X-Retry-Count": "0"})

        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = client.post(f"{self.base_url}{path}", json=payload, headers=headers)
                        if not _should_retry(resp, None):
                            self.breaker.on_success()
                            return resp
                    except httpx.RequestError as e:
                        exc = e

                    if tries >= max_retries:
                        self.breaker.on_failure()
                        if exc:
                            raise exc
                        return resp

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)
                    time.sleep(min(backoff * (2 ** (tries - 1)), cap))  # exponential backoff
        finally:
            self.breaker.on_finish()
