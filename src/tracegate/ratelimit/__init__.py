"""
tracegate.ratelimit

Rate limiting package.

Responsibilities:
- Counter store abstraction (in-memory and Redis).
- Fixed-window, multi-tier `RateLimiter`.
"""

# Package marker.
