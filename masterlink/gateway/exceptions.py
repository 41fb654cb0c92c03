from typing import Any


class APIError(Exception):
    """Base exception for all API errors."""

    status_code: int = 500

    def __init__(self, message: str, *, detail: str | None = None, **extra: Any):
        super().__init__(message)
        self.detail = detail
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        body: dict[str, Any] = {"error": str(self)}
        if self.detail:
            body["detail"] = self.detail
        body.update(self.extra)
        return body


class BadRequestError(APIError):
    """Raised for missing or malformed request input - maps to HTTP 400."""

    status_code = 400


class ConfigurationError(APIError):
    """Raised when required server configuration is absent - maps to HTTP 500."""

    status_code = 500


class ProxyError(APIError):
    """Raised when forwarding fails in a way the caller can't act on - maps to HTTP 500."""

    status_code = 500


class UpstreamUnavailableError(APIError):
    """Raised when the partner API can't be reached - maps to HTTP 502."""

    status_code = 502


class UpstreamTimeoutError(APIError):
    """Raised when the partner API doesn't answer in time - maps to HTTP 504."""

    status_code = 504
