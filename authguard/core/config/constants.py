"""
System Constants and Enumerations

This module defines the constants and enumerations shared by the
authentication-resilience core.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for key prefixes and result codes
- Type-safe enums for state management
- Easy to update and track changes
"""

from enum import Enum

# ============================================================================
# Circuit Breaker States
# ============================================================================


class CircuitState(str, Enum):
    """
    Circuit breaker states.

    CLOSED: Normal operation, calls routed to the shared cache
    OPEN: Shared cache considered down, calls routed to the fallback store
    HALF_OPEN: Cool-down elapsed, exactly one probe call allowed through
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


# Numeric encoding used by the circuit state gauge
CIRCUIT_STATE_GAUGE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


# ============================================================================
# Backends
# ============================================================================


class BackendName(str, Enum):
    """
    Variants of the cache capability interface.

    PRIMARY: Redis, shared by every process instance
    FALLBACK: Process-local in-memory store
    """

    PRIMARY = "primary"
    FALLBACK = "fallback"


# ============================================================================
# Result Codes
# ============================================================================


class ResultCode(str, Enum):
    """
    Machine-readable outcome of an authentication-adjacent operation.

    UNAVAILABLE and CONFIG_INVALID belong to the taxonomy but are never
    returned by the public operations: the first is absorbed by the cache
    facade, the second is raised as ConfigurationError at startup.
    """

    OK = "OK"
    UNAVAILABLE = "UNAVAILABLE"
    RATE_LIMITED = "RATE_LIMITED"
    LOCKED = "LOCKED"
    EXPIRED = "EXPIRED"
    EXHAUSTED = "EXHAUSTED"
    MISMATCH = "MISMATCH"
    ALREADY_CONSUMED = "ALREADY_CONSUMED"
    NOT_FOUND = "NOT_FOUND"
    REVOKED = "REVOKED"
    CONFIG_INVALID = "CONFIG_INVALID"


# ============================================================================
# Rate Limit Scopes
# ============================================================================

SCOPE_LOGIN_SOURCE = "login_source"
SCOPE_OTP_GENERATE = "otp_generate"
SCOPE_OTP_RESEND = "otp_resend"

# ============================================================================
# Redis Key Prefixes
# ============================================================================

REDIS_KEY_RATE_LIMIT = "ratelimit"
REDIS_KEY_EMERGENCY_MODE = "ratelimit:emergency"
REDIS_KEY_LOGIN_FAILURES = "login:failures"
REDIS_KEY_LOGIN_LOCK = "login:lock"
REDIS_KEY_LOGIN_LOCK_COUNT = "login:lock_count"
REDIS_KEY_LOGIN_LAST_FAILURE = "login:last_failure"
REDIS_KEY_LOGIN_SOURCES = "login:sources"
REDIS_KEY_SESSION = "session"
REDIS_KEY_SESSION_REVOKED = "session_revoked"
REDIS_KEY_USER_SESSIONS = "user_sessions"
REDIS_KEY_OTP = "otp"
REDIS_KEY_OTP_ATTEMPTS = "otp:attempts"
REDIS_KEY_OTP_CONSUMED = "otp:consumed"

# ============================================================================
# Transport
# ============================================================================

# Tag used when the pool is probed by its own liveness loop
POOL_TAG_HEALTH_PROBE = "health_probe"
