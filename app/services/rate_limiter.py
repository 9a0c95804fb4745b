"""
In-process rate limiter for Google API calls.

Every provider call is gated per (user, service) by three checks, in order:
circuit breaker, backoff window, token bucket. State lives in process
memory; separate instances do not share quotas.
"""

import asyncio
import inspect
import logging
import random
import time
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar
from uuid import UUID

from app.config import Settings, get_settings
from app.services.retry import error_status
from app.utils.log_context import mask_user_id

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Quota classes; Google meters reads, sends and metadata calls separately
GMAIL_READ = "gmail_read"
GMAIL_SEND = "gmail_send"
GMAIL_METADATA = "gmail_metadata"
CALENDAR = "calendar"

REASON_CIRCUIT_OPEN = "circuit_breaker_open"
REASON_HALF_OPEN_BUSY = "circuit_breaker_half_open"
REASON_BACKOFF = "backoff_delay"
REASON_QUOTA = "quota_exceeded"


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class RateLimitExceededError(Exception):
    """Raised when a call is denied by the limiter."""

    def __init__(self, reason: str, wait_seconds: float, service: str | None = None):
        self.reason = reason
        self.wait_seconds = wait_seconds
        self.service = service
        super().__init__(f"Rate limit exceeded: {reason}")


@dataclass
class TokenBucket:
    tokens: float
    capacity: float
    refill_rate: float
    last_refill: float


@dataclass
class BackoffState:
    consecutive_failures: int = 0
    backoff_seconds: float = 0.0
    next_allowed_at: float = 0.0


@dataclass
class CircuitBreakerState:
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure_at: float = 0.0
    next_attempt_at: float = 0.0
    trial_in_flight: bool = False
    trial_started_at: float = 0.0


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of an admission check."""

    allowed: bool
    wait_seconds: float = 0.0
    reason: str | None = None


@dataclass(frozen=True)
class FailureOutcome:
    backoff_seconds: float
    circuit_breaker_tripped: bool


class GoogleApiRateLimiter:
    """
    Token bucket + exponential backoff + circuit breaker, keyed by user and service.

    check_and_consume_quota() is fully synchronous so that no await can slip
    between the admission checks and the token consumption.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self._clock = clock
        self._rng = rng
        self._sleep = sleep
        self._capacities = {
            GMAIL_READ: self.settings.rate_limit_gmail_read_capacity,
            GMAIL_SEND: self.settings.rate_limit_gmail_send_capacity,
            GMAIL_METADATA: self.settings.rate_limit_gmail_metadata_capacity,
            CALENDAR: self.settings.rate_limit_calendar_capacity,
        }
        self._buckets: dict[str, TokenBucket] = {}
        self._backoffs: dict[str, BackoffState] = {}
        self._breakers: dict[str, CircuitBreakerState] = {}

    @staticmethod
    def _key(user_id: UUID | str, service: str) -> str:
        return f"{user_id}:{service}"

    def capacity_for(self, service: str) -> float:
        return float(self._capacities.get(service, self.settings.rate_limit_default_capacity))

    def _refill(self, bucket: TokenBucket, now: float) -> None:
        elapsed = max(0.0, now - bucket.last_refill)
        bucket.tokens = min(bucket.capacity, bucket.tokens + elapsed * bucket.refill_rate)
        bucket.last_refill = now

    def _bucket(self, key: str, service: str, now: float) -> TokenBucket:
        bucket = self._buckets.get(key)
        if bucket is None:
            capacity = self.capacity_for(service)
            bucket = TokenBucket(
                tokens=capacity,
                capacity=capacity,
                refill_rate=capacity / self.settings.rate_limit_refill_window_seconds,
                last_refill=now,
            )
            self._buckets[key] = bucket
        else:
            self._refill(bucket, now)
        return bucket

    def check_and_consume_quota(
        self,
        user_id: UUID | str,
        service: str,
        cost: int = 1,
    ) -> QuotaDecision:
        """
        Admit a request and consume its tokens, or deny with a wait hint.

        Args:
            user_id: Owner of the quota
            service: Quota class (gmail_read, gmail_send, gmail_metadata, calendar)
            cost: Tokens the request consumes

        Returns:
            QuotaDecision; tokens are only consumed when allowed is True
        """
        now = self._clock()
        key = self._key(user_id, service)

        breaker = self._breakers.get(key)
        if breaker is not None and breaker.state == CircuitState.OPEN:
            if now < breaker.next_attempt_at:
                return QuotaDecision(False, breaker.next_attempt_at - now, REASON_CIRCUIT_OPEN)
            breaker.state = CircuitState.HALF_OPEN
            breaker.trial_in_flight = False
            logger.info("Circuit breaker half-open for %s", self._log_key(user_id, service))

        # Half-open lets one trial through until it reports back or goes stale
        if (
            breaker is not None
            and breaker.state == CircuitState.HALF_OPEN
            and breaker.trial_in_flight
            and now - breaker.trial_started_at
            < self.settings.rate_limit_circuit_breaker_timeout_seconds
        ):
            return QuotaDecision(
                False,
                self.settings.rate_limit_initial_backoff_seconds,
                REASON_HALF_OPEN_BUSY,
            )

        backoff = self._backoffs.get(key)
        if backoff is not None and now < backoff.next_allowed_at:
            return QuotaDecision(False, backoff.next_allowed_at - now, REASON_BACKOFF)

        bucket = self._bucket(key, service, now)
        if bucket.tokens < cost:
            wait = (cost - bucket.tokens) / bucket.refill_rate
            return QuotaDecision(False, wait, REASON_QUOTA)

        bucket.tokens -= cost
        if breaker is not None and breaker.state == CircuitState.HALF_OPEN:
            breaker.trial_in_flight = True
            breaker.trial_started_at = now

        logger.debug(
            "Admitted %s call for %s (%.1f tokens left)",
            service,
            mask_user_id(user_id),
            bucket.tokens,
        )
        return QuotaDecision(True)

    def record_failure(
        self,
        user_id: UUID | str,
        service: str,
        status: int | None = None,
        message: str | None = None,
    ) -> FailureOutcome:
        """
        Register a failed call: grow the backoff and maybe open the breaker.

        Args:
            user_id: Owner of the quota
            service: Quota class
            status: HTTP status of the failure, if known
            message: Error text for logs
        """
        now = self._clock()
        key = self._key(user_id, service)
        s = self.settings

        backoff = self._backoffs.setdefault(key, BackoffState())
        backoff.consecutive_failures += 1

        delay = min(
            s.rate_limit_initial_backoff_seconds
            * s.rate_limit_backoff_multiplier ** (backoff.consecutive_failures - 1),
            s.rate_limit_max_backoff_seconds,
        )
        delay += delay * s.rate_limit_jitter_factor * self._rng()
        delay *= self._status_multiplier(status)
        backoff.backoff_seconds = delay
        backoff.next_allowed_at = now + delay

        breaker = self._breakers.setdefault(key, CircuitBreakerState())
        breaker.failure_count = backoff.consecutive_failures
        breaker.last_failure_at = now

        tripped = False
        if breaker.state == CircuitState.HALF_OPEN:
            self._open(breaker, now)
            tripped = True
        elif (
            breaker.state == CircuitState.CLOSED
            and backoff.consecutive_failures >= s.rate_limit_max_consecutive_failures
        ):
            self._open(breaker, now)
            tripped = True

        if tripped:
            logger.error(
                "Circuit breaker opened for %s after %d failures (status=%s): %s",
                self._log_key(user_id, service),
                backoff.consecutive_failures,
                status,
                message,
            )
        else:
            logger.warning(
                "Google API failure for %s (status=%s), backing off %.1fs",
                self._log_key(user_id, service),
                status,
                delay,
            )
        return FailureOutcome(backoff_seconds=delay, circuit_breaker_tripped=tripped)

    def record_success(self, user_id: UUID | str, service: str) -> None:
        """Reset the backoff and close a non-closed breaker."""
        key = self._key(user_id, service)

        backoff = self._backoffs.get(key)
        if backoff is not None:
            backoff.consecutive_failures = 0
            backoff.backoff_seconds = 0.0
            backoff.next_allowed_at = 0.0

        breaker = self._breakers.get(key)
        if breaker is not None:
            if breaker.state != CircuitState.CLOSED:
                logger.info("Circuit breaker closed for %s", self._log_key(user_id, service))
            breaker.state = CircuitState.CLOSED
            breaker.failure_count = 0
            breaker.trial_in_flight = False

    def _status_multiplier(self, status: int | None) -> float:
        if status == 429:
            return self.settings.rate_limit_429_multiplier
        if status == 403:
            return self.settings.rate_limit_403_multiplier
        if status is not None and status >= 500:
            return self.settings.rate_limit_5xx_multiplier
        return 1.0

    def _open(self, breaker: CircuitBreakerState, now: float) -> None:
        breaker.state = CircuitState.OPEN
        breaker.next_attempt_at = now + self.settings.rate_limit_circuit_breaker_timeout_seconds
        breaker.trial_in_flight = False

    @staticmethod
    def _log_key(user_id: UUID | str, service: str) -> str:
        return f"{mask_user_id(user_id)}/{service}"

    def get_status(self, user_id: UUID | str, service: str | None = None) -> dict[str, Any]:
        """
        Snapshot of the user's limiter state, keyed by service.

        Times are reported relative to now; bucket levels include pending refill.
        """
        now = self._clock()
        prefix = f"{user_id}:"

        def wanted(key: str) -> str | None:
            if not key.startswith(prefix):
                return None
            svc = key[len(prefix):]
            if service is not None and svc != service:
                return None
            return svc

        buckets = {}
        for key, bucket in self._buckets.items():
            svc = wanted(key)
            if svc is None:
                continue
            elapsed = max(0.0, now - bucket.last_refill)
            buckets[svc] = {
                "tokens": min(bucket.capacity, bucket.tokens + elapsed * bucket.refill_rate),
                "capacity": bucket.capacity,
                "refill_rate": bucket.refill_rate,
            }

        backoffs = {}
        for key, backoff in self._backoffs.items():
            svc = wanted(key)
            if svc is None:
                continue
            backoffs[svc] = {
                "consecutive_failures": backoff.consecutive_failures,
                "backoff_seconds": backoff.backoff_seconds,
                "retry_in_seconds": max(0.0, backoff.next_allowed_at - now),
            }

        breakers = {}
        for key, breaker in self._breakers.items():
            svc = wanted(key)
            if svc is None:
                continue
            snapshot = asdict(breaker)
            snapshot["state"] = breaker.state.value
            snapshot["retry_in_seconds"] = max(0.0, breaker.next_attempt_at - now)
            del snapshot["last_failure_at"], snapshot["next_attempt_at"], snapshot["trial_started_at"]
            breakers[svc] = snapshot

        return {"buckets": buckets, "backoffs": backoffs, "circuit_breakers": breakers}

    def cleanup_expired_state(self) -> int:
        """
        Drop state nobody has touched within the stale window.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        cutoff = now - self.settings.rate_limit_stale_state_seconds

        stale_backoffs = [k for k, b in self._backoffs.items() if b.next_allowed_at < cutoff]
        stale_breakers = [
            k
            for k, b in self._breakers.items()
            if b.state == CircuitState.CLOSED and b.last_failure_at < cutoff
        ]
        # A bucket idle this long is full again; dropping it changes nothing
        stale_buckets = [k for k, b in self._buckets.items() if b.last_refill < cutoff]

        for key in stale_backoffs:
            del self._backoffs[key]
        for key in stale_breakers:
            del self._breakers[key]
        for key in stale_buckets:
            del self._buckets[key]

        removed = len(stale_backoffs) + len(stale_breakers) + len(stale_buckets)
        if removed:
            logger.info("Rate limiter maintenance removed %d stale entries", removed)
        return removed

    def reset(self) -> None:
        """Clear all state."""
        self._buckets.clear()
        self._backoffs.clear()
        self._breakers.clear()

    async def with_rate_limit(
        self,
        user_id: UUID | str,
        service: str,
        api_call: Callable[[], Awaitable[T] | T],
        cost: int = 1,
    ) -> T:
        """
        Run api_call behind the limiter and record its outcome.

        A denial with a short wait sleeps once and re-checks; anything else
        raises RateLimitExceededError. Errors from api_call are recorded and
        re-raised unchanged.
        """
        decision = self.check_and_consume_quota(user_id, service, cost)
        if not decision.allowed:
            if decision.wait_seconds < self.settings.rate_limit_max_wait_seconds:
                logger.debug(
                    "Waiting %.2fs for %s quota (%s)",
                    decision.wait_seconds,
                    service,
                    decision.reason,
                )
                await self._sleep(decision.wait_seconds)
                decision = self.check_and_consume_quota(user_id, service, cost)
            if not decision.allowed:
                raise RateLimitExceededError(decision.reason, decision.wait_seconds, service)

        try:
            result = api_call()
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            self.record_failure(user_id, service, status=error_status(exc), message=str(exc))
            raise

        self.record_success(user_id, service)
        return result


google_api_rate_limiter = GoogleApiRateLimiter()
