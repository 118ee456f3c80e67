"""
Resilience primitives: backoff policy and circuit breaker.
"""

from authguard.core.resilience.backoff import BackoffPolicy
from authguard.core.resilience.circuit_breaker import CircuitBreaker

__all__ = ["BackoffPolicy", "CircuitBreaker"]
