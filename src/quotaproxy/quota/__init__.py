"""
Quota management module for rate limiting.

Provides a fixed-window limiter that re-derives every decision from
a shared quota store, plus an advisory client-reported variant.
"""

from quotaproxy.quota.limiter import (
    ClientReportedLimiter,
    FixedWindowLimiter,
    RateLimitResult,
    describe_window,
    format_reset,
    prune_expired,
)

__all__ = [
    "ClientReportedLimiter",
    "FixedWindowLimiter",
    "RateLimitResult",
    "describe_window",
    "format_reset",
    "prune_expired",
]
