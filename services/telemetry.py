"""Resilience and health tracking for market-data collaborators.

Every outbound provider call is keyed by a short name such as
``"binance.fetch_ohlcv"``.  The :class:`Telemetry` object owns one circuit
breaker and one :class:`ProviderStatus` per key and exposes the aggregated
view through :meth:`Telemetry.health_snapshot`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat() if moment is not None else None


@dataclass
class ResiliencePolicy:
    """Timeout, retry and breaker settings applied to provider calls."""

    request_timeout: float = 10.0
    max_retries: int = 2
    retry_backoff: float = 0.5
    circuit_breaker_threshold: int = 3
    circuit_breaker_reset_s: float = 30.0

    @classmethod
    def from_mapping(cls, payload: Optional[Mapping[str, Any]]) -> "ResiliencePolicy":
        """Build a policy from a config section, ignoring unrecognised keys."""

        known = {item.name for item in fields(cls)}
        overrides = {key: value for key, value in (payload or {}).items() if key in known}
        return cls(**overrides)

    def backoff_for(self, attempt: int) -> float:
        return self.retry_backoff * attempt


class CircuitOpenError(RuntimeError):
    """Raised when a provider call is short-circuited by an open breaker."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Circuit open for {name}")
        self.name = name


@dataclass
class CircuitBreakerState:
    """Consecutive-failure counter that trips after ``threshold`` errors."""

    threshold: int
    reset_seconds: float
    failure_count: int = 0
    opened_at: Optional[float] = None

    def is_open(self, now: Optional[float] = None) -> bool:
        if self.opened_at is None:
            return False
        clock = time.monotonic() if now is None else now
        if clock - self.opened_at < self.reset_seconds:
            return True
        # cooled down: half-open, next call decides
        self.record_success()
        return False

    def record_failure(self, now: Optional[float] = None) -> None:
        self.failure_count += 1
        tripped = self.failure_count >= self.threshold
        if tripped and self.opened_at is None:
            self.opened_at = time.monotonic() if now is None else now

    def record_success(self) -> None:
        self.failure_count, self.opened_at = 0, None


@dataclass
class ProviderStatus:
    status: str = "unknown"
    reason: Optional[str] = None
    last_success: Optional[datetime] = None
    last_checked: Optional[datetime] = None
    failures: int = 0
    successes: int = 0

    def succeeded(self) -> None:
        self.last_success = self.last_checked = _utcnow()
        self.status, self.reason = "healthy", None
        self.successes += 1

    def failed(self, reason: str) -> None:
        self.last_checked = _utcnow()
        self.status, self.reason = "degraded", reason
        self.failures += 1

    def to_payload(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "reason": self.reason,
            "last_success": _isoformat(self.last_success),
            "last_checked": _isoformat(self.last_checked),
            "failures": self.failures,
            "successes": self.successes,
        }


class Telemetry:
    """Wrap provider calls with timeouts, retries and circuit breaking."""

    def __init__(
        self,
        *,
        policy: Optional[ResiliencePolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.policy = policy or ResiliencePolicy()
        self.latencies_ms: Dict[str, float] = {}
        self.provider_status: Dict[str, ProviderStatus] = {}
        self._breakers: Dict[str, CircuitBreakerState] = {}
        self._sleep = sleep

    def _breaker_for(self, name: str) -> CircuitBreakerState:
        if name not in self._breakers:
            self._breakers[name] = CircuitBreakerState(
                threshold=self.policy.circuit_breaker_threshold,
                reset_seconds=self.policy.circuit_breaker_reset_s,
            )
        return self._breakers[name]

    def _status_for(self, name: str) -> ProviderStatus:
        return self.provider_status.setdefault(name, ProviderStatus())

    def mark_healthy(self, name: str) -> None:
        self._status_for(name).succeeded()

    def mark_degraded(self, name: str, reason: str) -> None:
        self._status_for(name).failed(reason)

    async def _invoke(self, name: str, func: Callable[[], Any], timeout: float) -> Any:
        started = time.perf_counter()
        try:
            outcome = func()
            if inspect.isawaitable(outcome):
                outcome = await asyncio.wait_for(outcome, timeout=timeout)
            return outcome
        finally:
            self.latencies_ms[name] = round((time.perf_counter() - started) * 1000, 2)

    async def execute_with_resilience(
        self,
        name: str,
        func: Callable[[], Any],
        *,
        policy: Optional[ResiliencePolicy] = None,
    ) -> Any:
        """Run ``func`` under the timeout, retry and breaker rules of ``policy``.

        ``func`` may be a plain callable or return an awaitable.  The last
        error is re-raised once retries are exhausted or the breaker trips;
        a breaker that is already open raises :class:`CircuitOpenError`
        without calling ``func``.
        """

        active = policy or self.policy
        breaker = self._breaker_for(name)
        if breaker.is_open():
            logger.warning("Circuit breaker open", extra={"provider_call": name})
            self.mark_degraded(name, "circuit_open")
            raise CircuitOpenError(name)

        for attempt in range(1, active.max_retries + 2):
            try:
                outcome = await self._invoke(name, func, active.request_timeout)
            except Exception as exc:
                breaker.record_failure()
                self.mark_degraded(name, str(exc) or type(exc).__name__)
                logger.warning(
                    "Provider call failed",
                    extra={"provider_call": name, "attempt": attempt, "error": str(exc)},
                )
                if attempt > active.max_retries or breaker.is_open():
                    raise
                await self._sleep(active.backoff_for(attempt))
            else:
                breaker.record_success()
                self.mark_healthy(name)
                return outcome
        raise AssertionError("unreachable")  # pragma: no cover

    def health_snapshot(self) -> Dict[str, Any]:
        degraded = any(status.status != "healthy" for status in self.provider_status.values())
        return {
            "status": "degraded" if degraded else "healthy",
            "providers": {name: status.to_payload() for name, status in self.provider_status.items()},
        }


__all__ = ["CircuitBreakerState", "CircuitOpenError", "ProviderStatus", "ResiliencePolicy", "Telemetry"]
