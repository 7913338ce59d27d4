"""
Rate Limiter Exceptions

Every failure a limiter can raise derives from RateLimiterError. A denied
request is not an error: is_allowed() returns False for it.
"""


class RateLimiterError(Exception):
    """Base class for rate limiter failures."""


class ConfigurationError(RateLimiterError, ValueError):
    """Invalid limiter parameters or environment settings."""


class StoreUnavailableError(RateLimiterError):
    """Redis could not be reached (connection refused, timeout, ...)."""


class ProtocolError(RateLimiterError):
    """
    Redis answered, but not with something we can use: an empty transaction
    result where one was required, a non-numeric counter, or a rejected
    command.
    """


class ContentionError(RateLimiterError):
    """Every optimistic transaction attempt lost the race on a watched key."""

    def __init__(self, keys, attempts: int):
        self.keys = list(keys)
        self.attempts = attempts
        super().__init__(
            f"Gave up after {attempts} attempts: watched keys {self.keys} kept changing"
        )
