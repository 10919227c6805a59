"""Error taxonomy for the redirector service.

Request-path errors are translated to HTTP responses in ``redirector.routes``;
only a ``StorageFailure`` raised inside the count aggregator under the fatal
policy is escalated to a process shutdown.
"""

__all__ = [
    "RedirectorError",
    "TokenNotFound",
    "TokenConflict",
    "StorageFailure",
    "ConfigurationError",
]


class RedirectorError(Exception):
    """Base class for all redirector errors."""


class TokenNotFound(RedirectorError):
    """The token is neither cached nor present in the durable store."""

    def __init__(self, token: str):
        super().__init__(f"Token '{token}' not found")
        self.token = token


class TokenConflict(RedirectorError):
    """A freshly generated token is already in use."""

    def __init__(self, token: str):
        super().__init__(f"Token '{token}' collision detected")
        self.token = token


class StorageFailure(RedirectorError):
    """A durable store operation failed or timed out."""

    def __init__(self, operation: str, cause: BaseException | None = None):
        detail = f": {cause!r}" if cause is not None else ""
        super().__init__(f"Durable store {operation} failed{detail}")
        self.operation = operation
        self.cause = cause


class ConfigurationError(RedirectorError):
    """Settings are missing or invalid; the process must not start."""
