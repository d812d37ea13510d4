"""
Service layer exceptions.

Storage failures are recovered inside the cache and only surface as
StorageError in logs; everything else propagates to the caller.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class ConfigurationError(ServiceError):
    """Missing or invalid remote address. Never retried."""

    pass


class StorageError(ServiceError):
    """Local cache persistence failed."""

    pass


class TransientNetworkError(ServiceError):
    """Connection failure, timeout or retryable HTTP status."""

    def __init__(
        self,
        message: str,
        service_id: str | None = None,
        url: str | None = None,
        attempts: int = 1,
    ):
        self.url = url
        self.attempts = attempts
        super().__init__(message, service_id=service_id)


class RequestTimeoutError(TransientNetworkError):
    """Request timed out."""

    def __init__(self, url: str, timeout: float, attempts: int = 1):
        self.timeout = timeout
        super().__init__(
            f"Request to '{url}' timed out after {timeout}s "
            f"(attempt {attempts})",
            url=url,
            attempts=attempts,
        )


class RequestCancelledError(TransientNetworkError):
    """Request was aborted through its cancellation token."""

    pass


class CircuitOpenError(TransientNetworkError):
    """Circuit breaker is open, request blocked."""

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit open for host '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )


class UpstreamHTTPError(ServiceError):
    """Remote service answered with a non-retryable HTTP error."""

    def __init__(self, url: str, status_code: int, body: str = ""):
        self.url = url
        self.status_code = status_code
        message = f"HTTP {status_code} from '{url}'"
        if body:
            message += f": {body[:200]}"
        super().__init__(message)


class ResourceNotFoundError(UpstreamHTTPError):
    """Remote service confirmed the resource does not exist."""

    pass


class MalformedResponseError(ServiceError):
    """Response body could not be parsed as JSON."""

    def __init__(self, resource: str, raw_length: int):
        self.resource = resource
        self.raw_length = raw_length
        super().__init__(
            f"Malformed response for '{resource}' ({raw_length} bytes)"
        )
