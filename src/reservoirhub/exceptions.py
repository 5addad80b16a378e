"""
Exceptions for reservoirhub operations.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Failure categories shared by adapters, the prefetcher and the controller."""

    UPSTREAM_TIMEOUT = "upstream_timeout"
    UPSTREAM_HTTP_ERROR = "upstream_http_error"
    UPSTREAM_MALFORMED_RESPONSE = "upstream_malformed_response"
    NETWORK_UNAVAILABLE = "network_unavailable"


class ReservoirHubError(Exception):
    """Base exception for reservoirhub errors."""

    pass


class UpstreamError(ReservoirHubError):
    """
    An upstream data source could not produce a usable response.

    ``fallback`` holds the estimated bundle substituted for the failed source,
    when its policy degrades to one.
    """

    kind: ErrorKind = ErrorKind.UPSTREAM_HTTP_ERROR

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.source = source
        self.fallback: Optional[Any] = None

    def __str__(self) -> str:
        if self.source:
            return f"[{self.source}] {self.message}"
        return self.message


class UpstreamTimeout(UpstreamError):
    """Upstream did not answer within its timeout budget."""

    kind = ErrorKind.UPSTREAM_TIMEOUT


class UpstreamHttpError(UpstreamError):
    """Upstream answered with a non-2xx status."""

    kind = ErrorKind.UPSTREAM_HTTP_ERROR

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        source: Optional[str] = None,
    ):
        super().__init__(message, source=source)
        self.status_code = status_code


class UpstreamMalformedResponse(UpstreamError):
    """Upstream answered, but without the fields we extract."""

    kind = ErrorKind.UPSTREAM_MALFORMED_RESPONSE


class NetworkUnavailable(UpstreamError):
    """No connectivity to the upstream host."""

    kind = ErrorKind.NETWORK_UNAVAILABLE


_ERRORS_BY_KIND = {
    ErrorKind.UPSTREAM_TIMEOUT: UpstreamTimeout,
    ErrorKind.UPSTREAM_HTTP_ERROR: UpstreamHttpError,
    ErrorKind.UPSTREAM_MALFORMED_RESPONSE: UpstreamMalformedResponse,
    ErrorKind.NETWORK_UNAVAILABLE: NetworkUnavailable,
}


def error_from_kind(
    kind: ErrorKind,
    message: str,
    source: Optional[str] = None,
    fallback: Optional[Any] = None,
) -> UpstreamError:
    """Rebuild the exception for ``kind``, e.g. from a recorded fetch result."""
    error = _ERRORS_BY_KIND[kind](message, source=source)
    error.fallback = fallback
    return error


class PolicyError(ReservoirHubError):
    """Invalid freshness policy configuration."""

    pass


class UnknownSourceError(ReservoirHubError, KeyError):
    """A source key that has no adapter or policy row."""

    def __init__(self, key: str):
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"Unknown source key: {self.key!r}"
