#!/usr/bin/env python3
"""
Metrics Collector with Prometheus Integration

This module provides metrics collection for the authentication-resilience
core:
- Cache operations by backend and outcome
- Primary cache latency histogram
- Circuit breaker state and transitions
- Connection pool health
- Rate-limit rejections, lockouts, session and OTP outcomes

Architectural Decision: prometheus-client for industry-standard metrics
- Compatible with Grafana dashboards
- Recording is an in-memory counter update, so it never blocks a request
- Histogram buckets tuned for sub-second cache round trips

Author: Senior Solution Architect
Date: 2025-12-05
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from authguard.core.config.constants import CIRCUIT_STATE_GAUGE_VALUES, CircuitState
from authguard.core.logging.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Metric Definitions
# ============================================================================

# Cache metrics
CACHE_OPERATIONS = Counter(
    'authguard_cache_operations_total',
    'Cache operations by serving backend and outcome',
    ['operation', 'backend', 'outcome']  # outcome: ok, error, timeout, unavailable
)

CACHE_LATENCY = Histogram(
    'authguard_cache_latency_seconds',
    'Primary cache operation latency',
    ['operation'],
    buckets=(0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0)
)

CACHE_FALLBACK_SERVES = Counter(
    'authguard_cache_fallback_serves_total',
    'Operations served by the in-memory fallback store',
    ['operation', 'reason']  # reason: circuit_open, primary_failed
)

FALLBACK_ENTRIES = Gauge(
    'authguard_fallback_entries',
    'Live entries in the in-memory fallback store'
)

# Circuit breaker metrics
CIRCUIT_BREAKER_STATE = Gauge(
    'authguard_circuit_breaker_state',
    'Circuit breaker state (0=closed, 1=half_open, 2=open)',
    ['circuit']
)

CIRCUIT_BREAKER_TRANSITIONS = Counter(
    'authguard_circuit_breaker_transitions_total',
    'Circuit breaker state transitions',
    ['circuit', 'to_state']
)

# Connection pool metrics
POOL_HEALTHY = Gauge(
    'authguard_redis_pool_healthy',
    'Whether the Redis connection pool is healthy (1) or not (0)'
)

POOL_UNAVAILABLE = Counter(
    'authguard_redis_pool_unavailable_total',
    'Acquire calls refused because the pool was unhealthy',
    ['tag']
)

POOL_RECONNECT_ATTEMPTS = Counter(
    'authguard_redis_pool_reconnect_attempts_total',
    'Reconnection probes made while the pool was unhealthy'
)

# Rate limiting metrics
RATE_LIMIT_DECISIONS = Counter(
    'authguard_rate_limit_decisions_total',
    'Rate limit decisions by scope',
    ['scope', 'allowed']
)

EMERGENCY_MODE = Gauge(
    'authguard_rate_limit_emergency_mode',
    'Emergency mode as last observed by this process (1=on)'
)

# Login metrics
LOGIN_EVENTS = Counter(
    'authguard_login_events_total',
    'Login security events',
    ['event']  # failure, success, lockout, blocked
)

# Session metrics
SESSION_EVENTS = Counter(
    'authguard_session_events_total',
    'Session lifecycle events and validation outcomes',
    ['event']  # created, revoked, destroyed, validate:OK, validate:EXPIRED, ...
)

# OTP metrics
OTP_EVENTS = Counter(
    'authguard_otp_events_total',
    'OTP lifecycle events and verification outcomes',
    ['event']  # generated, resent, verify:OK, verify:MISMATCH, ...
)


class MetricsCollector:
    """
    Centralized metrics collector.

    STAGE-M: Metrics collection

    Usage:
        metrics = MetricsCollector()
        metrics.record_cache_operation("incr", "primary", "ok")
        metrics.set_circuit_state("shared_cache", CircuitState.OPEN)
        output = metrics.get_prometheus_metrics()
    """

    def __init__(self):
        logger.info("Metrics collector initialized", stage="M.0")

    # =========================================================================
    # Cache Metrics
    # =========================================================================

    def record_cache_operation(self, operation: str, backend: str, outcome: str) -> None:
        CACHE_OPERATIONS.labels(operation=operation, backend=backend, outcome=outcome).inc()

    def record_cache_latency(self, operation: str, duration_seconds: float) -> None:
        CACHE_LATENCY.labels(operation=operation).observe(duration_seconds)

    def record_fallback_serve(self, operation: str, reason: str) -> None:
        CACHE_FALLBACK_SERVES.labels(operation=operation, reason=reason).inc()

    def set_fallback_entries(self, count: int) -> None:
        FALLBACK_ENTRIES.set(count)

    # =========================================================================
    # Circuit Breaker Metrics
    # =========================================================================

    def set_circuit_state(self, circuit: str, state: CircuitState) -> None:
        """Set circuit breaker state gauge."""
        CIRCUIT_BREAKER_STATE.labels(circuit=circuit).set(CIRCUIT_STATE_GAUGE_VALUES[state])

    def record_circuit_transition(self, circuit: str, state: CircuitState) -> None:
        CIRCUIT_BREAKER_TRANSITIONS.labels(circuit=circuit, to_state=state.value).inc()
        self.set_circuit_state(circuit, state)

    # =========================================================================
    # Connection Pool Metrics
    # =========================================================================

    def set_pool_health(self, healthy: bool) -> None:
        POOL_HEALTHY.set(1 if healthy else 0)

    def record_pool_unavailable(self, tag: str) -> None:
        POOL_UNAVAILABLE.labels(tag=tag).inc()

    def record_reconnect_attempt(self) -> None:
        POOL_RECONNECT_ATTEMPTS.inc()

    # =========================================================================
    # Domain Metrics
    # =========================================================================

    def record_rate_limit_decision(self, scope: str, allowed: bool) -> None:
        RATE_LIMIT_DECISIONS.labels(scope=scope, allowed=str(allowed).lower()).inc()

    def set_emergency_mode(self, enabled: bool) -> None:
        EMERGENCY_MODE.set(1 if enabled else 0)

    def record_login_event(self, event: str) -> None:
        LOGIN_EVENTS.labels(event=event).inc()

    def record_session_event(self, event: str) -> None:
        SESSION_EVENTS.labels(event=event).inc()

    def record_otp_event(self, event: str) -> None:
        OTP_EVENTS.labels(event=event).inc()

    # =========================================================================
    # Export
    # =========================================================================

    def get_prometheus_metrics(self) -> bytes:
        """
        Get Prometheus metrics output.

        Returns:
            bytes: Prometheus text format metrics
        """
        return generate_latest(REGISTRY)

    def get_content_type(self) -> str:
        """Get Prometheus content type."""
        return CONTENT_TYPE_LATEST
