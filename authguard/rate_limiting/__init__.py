from authguard.rate_limiting.rate_limiter import (
    EmergencyStatus,
    RateLimiter,
    RateLimitResult,
    hash_subject,
)

__all__ = ["EmergencyStatus", "RateLimiter", "RateLimitResult", "hash_subject"]
