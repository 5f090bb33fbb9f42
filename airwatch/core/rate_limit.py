"""
rate_limit.py — Global rate limiter instance.

Uses slowapi (a Starlette-compatible wrapper around the `limits` library).
Requests are keyed by client IP address.

Usage in routes:
    from fastapi import Request
    from airwatch.core.rate_limit import limiter

    @router.post("/search")
    @limiter.limit("60/minute")
    async def my_endpoint(request: Request, payload: MyRequest):
        ...
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Upstream providers throttle us per API key, so the service throttles
# its own callers per IP before they can exhaust that budget.
limiter = Limiter(key_func=get_remote_address)
