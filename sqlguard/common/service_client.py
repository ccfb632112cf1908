"""
Service Client

Resilient wrapper for every call that leaves the process: embedding provider,
model provider, document store and remote analysis peers.

Each call gets:
- a per-attempt timeout
- exponential backoff retry (base * 2^attempt) on network errors, timeouts
  and 5xx/429 responses only
- per-endpoint circuit breaking on consecutive failures

Every call returns a ServiceResponse envelope; callers never need a
try/except around a remote call.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

import httpx

from .errors import (
    CallTimeout,
    CircuitOpenError,
    InternalInconsistency,
    PeerValidationError,
    ProviderUnavailable,
)

logger = logging.getLogger("sqlguard.common.service_client")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ServiceResponse:
    """Uniform envelope returned by every remote call"""
    status: str  # "success" | "error"
    data: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None  # name from sqlguard.common.errors
    timestamp: str = field(default_factory=_now_iso)
    attempts: int = 0
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == "success"


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class ServiceHealth:
    """Point-in-time view of one endpoint's health"""
    endpoint: str
    consecutive_failures: int
    state: CircuitState
    last_transition: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "consecutive_failures": self.consecutive_failures,
            "state": self.state.value,
            "last_transition": self.last_transition.isoformat(),
        }


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker for a single endpoint.

    closed -> open once failures reach the threshold; open -> half_open after
    the cooldown, admitting exactly one trial call whose outcome closes or
    re-opens the circuit. All transitions happen under one lock.
    """

    def __init__(
        self,
        endpoint: str,
        failure_threshold: int = 5,
        cooldown: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.endpoint = endpoint
        self._threshold = max(1, failure_threshold)
        self._cooldown = cooldown
        self._clock = clock
        self._lock = threading.Lock()
        self._failures = 0
        self._state = CircuitState.CLOSED
        self._opened_at = 0.0
        self._trial_in_flight = False
        self._last_transition = datetime.now(timezone.utc)

    def _transition(self, state: CircuitState) -> None:
        if state != self._state:
            logger.warning(
                "Circuit for %s: %s -> %s", self.endpoint, self._state.value, state.value
            )
            self._state = state
            self._last_transition = datetime.now(timezone.utc)

    def allow_request(self) -> bool:
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.OPEN:
                if self._clock() - self._opened_at < self._cooldown:
                    return False
                self._transition(CircuitState.HALF_OPEN)
                self._trial_in_flight = False
            # half-open: a single trial call at a time
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._trial_in_flight = False
            self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._trial_in_flight = False
            if self._state == CircuitState.HALF_OPEN or self._failures >= self._threshold:
                self._opened_at = self._clock()
                self._transition(CircuitState.OPEN)

    def snapshot(self) -> ServiceHealth:
        with self._lock:
            return ServiceHealth(
                endpoint=self.endpoint,
                consecutive_failures=self._failures,
                state=self._state,
                last_transition=self._last_transition,
            )


@dataclass
class _Failure:
    error: str
    error_type: str
    retryable: bool
    counts_against_health: bool = True


def _status_code_of(exc: BaseException) -> Optional[int]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    code = getattr(exc, "status_code", None)
    return code if isinstance(code, int) else None


def _classify(exc: BaseException) -> _Failure:
    """Map an exception onto the error taxonomy and the retry policy."""
    if isinstance(exc, (asyncio.TimeoutError, CallTimeout)):
        return _Failure(str(exc) or "call timed out", "CallTimeout", retryable=True)

    if isinstance(exc, PeerValidationError):
        return _Failure(str(exc), "PeerValidationError", retryable=False,
                        counts_against_health=False)

    status = _status_code_of(exc)
    if status is not None:
        if status >= 500 or status == 429:
            return _Failure(f"HTTP {status}: {exc}", "ProviderUnavailable", retryable=True)
        if 400 <= status < 500:
            return _Failure(f"HTTP {status}: {exc}", "PeerValidationError", retryable=False,
                            counts_against_health=False)

    if isinstance(exc, (httpx.TransportError, ProviderUnavailable, ConnectionError)):
        return _Failure(str(exc) or type(exc).__name__, "ProviderUnavailable", retryable=True)

    if isinstance(exc, InternalInconsistency):
        return _Failure(str(exc), "InternalInconsistency", retryable=False)

    return _Failure(f"{type(exc).__name__}: {exc}", "ProviderUnavailable", retryable=False)


def attempt_timeout_for_budget(budget: float, retries: int, backoff_base: float) -> float:
    """Largest per-attempt timeout whose full retry schedule fits in budget."""
    retries = max(0, retries)
    backoff = sum(backoff_base * (2 ** attempt) for attempt in range(retries))
    available = budget - backoff
    if available <= 0:
        raise ValueError(
            f"Budget of {budget}s cannot cover {retries} retries with "
            f"{backoff:.2f}s of backoff"
        )
    return available / (retries + 1)


class ServiceClient:
    """
    Resilient call wrapper shared by every Tier-2 step.

    Endpoints are free-form ids ("embedding", "model", "store", a peer URL);
    each gets its own circuit breaker on first use.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        retries: int = 2,
        backoff_base: float = 0.5,
        failure_threshold: int = 5,
        cooldown: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._timeout = timeout
        self._retries = max(0, retries)
        self._backoff_base = backoff_base
        self._failure_threshold = failure_threshold
        self._cooldown = cooldown
        self._clock = clock
        self._sleep = sleep
        self._http = http_client
        self._owns_http = http_client is None
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._breakers_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        service_config,
        http_client: Optional[httpx.AsyncClient] = None,
        budget: Optional[float] = None,
    ):
        """
        Build from a ServiceConfig section.

        When a total budget is given, the per-attempt timeout is lowered so
        that every attempt plus the backoff between them fits inside it.
        """
        timeout = service_config.timeout
        if budget is not None:
            fitted = attempt_timeout_for_budget(
                budget, service_config.retries, service_config.backoff_base
            )
            if fitted < timeout:
                logger.info(
                    "Per-attempt timeout lowered from %.2fs to %.2fs to fit a %.1fs budget",
                    timeout, fitted, budget,
                )
                timeout = fitted
        return cls(
            timeout=timeout,
            retries=service_config.retries,
            backoff_base=service_config.backoff_base,
            failure_threshold=service_config.failure_threshold,
            cooldown=service_config.cooldown,
            http_client=http_client,
        )

    def breaker(self, endpoint: str) -> CircuitBreaker:
        """Circuit breaker for an endpoint, created on first use."""
        with self._breakers_lock:
            if endpoint not in self._breakers:
                self._breakers[endpoint] = CircuitBreaker(
                    endpoint,
                    failure_threshold=self._failure_threshold,
                    cooldown=self._cooldown,
                    clock=self._clock,
                )
            return self._breakers[endpoint]

    def backoff_delay(self, attempt: int) -> float:
        return self._backoff_base * (2 ** attempt)

    async def call(
        self,
        endpoint: str,
        operation: Callable[[], Awaitable[Any]],
        timeout: Optional[float] = None,
    ) -> ServiceResponse:
        """
        Run an async operation against an endpoint.

        Args:
            endpoint: Endpoint id used for health tracking
            operation: Zero-argument coroutine factory, invoked once per attempt
            timeout: Per-attempt timeout (defaults to the client timeout)

        Returns:
            ServiceResponse with status "success" and the operation's return
            value, or status "error" with the classified failure
        """
        breaker = self.breaker(endpoint)
        started = self._clock()

        if not breaker.allow_request():
            error = CircuitOpenError(endpoint)
            logger.warning("Short-circuited call to %s", endpoint)
            return ServiceResponse(
                status="error",
                error=str(error),
                error_type="CircuitOpenError",
                attempts=0,
            )

        try:
            return await self._attempts(endpoint, breaker, operation, timeout, started)
        except asyncio.CancelledError:
            # Pre-empted by an outer budget or deadline while in flight; this
            # also releases a half-open trial slot.
            logger.warning("Call to %s abandoned by caller, counted as a failure", endpoint)
            breaker.record_failure()
            raise

    async def _attempts(
        self,
        endpoint: str,
        breaker: CircuitBreaker,
        operation: Callable[[], Awaitable[Any]],
        timeout: Optional[float],
        started: float,
    ) -> ServiceResponse:
        per_attempt = timeout if timeout is not None else self._timeout
        failure: Optional[_Failure] = None
        attempt = 0

        while True:
            attempt_started = self._clock()
            try:
                data = await asyncio.wait_for(operation(), timeout=per_attempt)
            except Exception as e:
                if isinstance(e, asyncio.TimeoutError):
                    # wait_for raises an empty TimeoutError
                    elapsed = self._clock() - attempt_started
                    e = CallTimeout(f"{endpoint} timed out after {elapsed:.2f}s")
                failure = _classify(e)
                logger.warning(
                    "Attempt %d for %s failed (%s): %s",
                    attempt + 1, endpoint, failure.error_type, failure.error,
                )
            else:
                breaker.record_success()
                return ServiceResponse(
                    status="success",
                    data=data,
                    attempts=attempt + 1,
                    elapsed_ms=(self._clock() - started) * 1000,
                )

            if not failure.retryable or attempt >= self._retries:
                break

            delay = self.backoff_delay(attempt)
            logger.debug("Retrying %s in %.2fs", endpoint, delay)
            await self._sleep(delay)
            attempt += 1

        if failure.counts_against_health:
            breaker.record_failure()
        else:
            # The endpoint answered; it is alive even though it rejected us
            breaker.record_success()

        error_type = failure.error_type
        if error_type == "CallTimeout":
            # Exhausted timeouts are treated as an unavailable provider
            error_type = "ProviderUnavailable"

        return ServiceResponse(
            status="error",
            error=failure.error,
            error_type=error_type,
            attempts=attempt + 1,
            elapsed_ms=(self._clock() - started) * 1000,
        )

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._timeout)
        return self._http

    async def request(
        self,
        endpoint: str,
        method: str,
        url: str,
        payload: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> ServiceResponse:
        """HTTP request through call(); data is the decoded JSON body."""

        async def _send() -> Any:
            client = self._get_http_client()
            logger.debug("Request: %s %s", method.upper(), url)
            response = await client.request(method.upper(), url, json=payload, headers=headers)
            response.raise_for_status()
            return response.json()

        return await self.call(endpoint, _send, timeout=timeout)

    def health_check(self, endpoints: Optional[Iterable[str]] = None) -> Dict[str, ServiceHealth]:
        """Health snapshot per endpoint (all known endpoints by default)."""
        if endpoints is not None:
            for endpoint in endpoints:
                self.breaker(endpoint)
        with self._breakers_lock:
            breakers = list(self._breakers.values())
        return {b.endpoint: b.snapshot() for b in breakers}

    async def close(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None
