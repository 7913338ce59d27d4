"""
Example Usage of Rate Limiter

This file shows how the limiters would be used in a real backend service.
It is not part of the package - it's just for reference.
"""

import logging
from typing import Optional

from rate_limiter import (
    FixedWindowRateLimiter,
    RateLimiterError,
    RedisCounterStore,
    SlidingWindowRateLimiter,
    TokenBucketRateLimiter,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

store = RedisCounterStore.from_env()

# One limiter per endpoint budget; all instances of the service share Redis.
# Each uses a different algorithm, so the default "rate-limit:<algorithm>:<client>"
# keys never collide between endpoints.
login_limiter = FixedWindowRateLimiter(store, window_seconds=60, limit=5)
search_limiter = SlidingWindowRateLimiter(store, window_seconds=60, sub_window_seconds=5, limit=20)
read_limiter = TokenBucketRateLimiter(store, capacity=100, refill_rate=100 / 60)


def client_id_for(user_id: Optional[str], ip: str) -> str:
    """
    Authenticated users are limited per user, anonymous traffic per IP.
    """
    if user_id:
        return f"user:{user_id}"
    return f"ip:{ip}"


def rejection(limiter, endpoint: str, user_id: Optional[str], ip: str):
    """
    Returns an error response if the request must not proceed, None otherwise.
    A limiter failure answers 503 rather than guessing allow or deny.
    """
    try:
        allowed = limiter.is_allowed(client_id_for(user_id, ip))
    except RateLimiterError:
        logger.exception("Rate limiter unavailable for %s", endpoint)
        return {'error': 'Service temporarily unavailable', 'status_code': 503}

    if not allowed:
        return {
            'error': 'Too many requests. Please try again later.',
            'status_code': 429
        }
    return None


def handle_login_request(user_id: str, ip: str):
    """
    Example: How a login endpoint would use the rate limiter
    """
    error = rejection(login_limiter, '/login', user_id, ip)
    if error:
        return error

    # ... actual login code here ...
    return {'success': True}


def handle_search_request(user_id: Optional[str], ip: str):
    """
    Example: How a search endpoint would use the rate limiter
    """
    error = rejection(search_limiter, '/search', user_id, ip)
    if error:
        return error

    # ... actual search code here ...
    return {'results': []}


def handle_read_request(user_id: Optional[str], ip: str):
    error = rejection(read_limiter, '/read', user_id, ip)
    if error:
        return error
    return {'items': []}


# Example usage scenarios:

# Scenario 1: Authenticated user
# handle_login_request("user_123", "192.168.1.10")
# → counts under "rate-limit:fixed-window:user:user_123"

# Scenario 2: Anonymous user
# handle_search_request(None, "192.168.1.10")
# → one hash "rate-limit:sliding-window:ip:192.168.1.10", one field per 5s bucket

# Scenario 3: Multiple requests from same user
# Request 1..5: handle_login_request("user_42", "1.2.3.4") → {'success': True}
# Request 6:    handle_login_request("user_42", "1.2.3.4") → 429

if __name__ == '__main__':
    for attempt in range(7):
        logger.info("login attempt %d: %s", attempt + 1, handle_login_request("user_42", "1.2.3.4"))
