"""Collaborator services feeding market data into the portfolio advisor."""

from .cache import CacheEntry, TTLCache
from .telemetry import CircuitBreakerState, CircuitOpenError, ProviderStatus, ResiliencePolicy, Telemetry

__all__ = [
    "CacheEntry",
    "CircuitBreakerState",
    "CircuitOpenError",
    "ProviderStatus",
    "ResiliencePolicy",
    "TTLCache",
    "Telemetry",
]
