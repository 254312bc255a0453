"""Error taxonomy for Resource Management API responses."""


class RMApiError(Exception):
    """Base class for classified RM API failures."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class RMAuthError(RMApiError):
    """401/403: token rejected or lacking permission. Never retried."""


class RMRateLimitError(RMApiError):
    """429: too many requests."""

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        status_code: int | None = 429,
    ) -> None:
        super().__init__(message, status_code)
        self.retry_after = retry_after


class RMNotFoundError(RMApiError):
    """404: the addressed entry or project does not exist."""


class RMValidationError(RMApiError):
    """400/422: the payload was rejected. Never retried."""


class RMNetworkError(RMApiError):
    """5xx, unexpected status, transport failure or unparsable body."""
