"""
Exception types raised by the source clients.

Every client failure that prevents a request from completing surfaces as a
ConnectorException subclass so collectors can catch a single type at their
boundary and count it against the run.
"""

from typing import Optional


class ConnectorException(Exception):
    """Base exception for all source client errors."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source

    def __str__(self) -> str:
        message = super().__str__()
        if self.source:
            return f"[{self.source}] {message}"
        return message


class RateLimitException(ConnectorException):
    """Raised when the upstream API throttles the client."""

    pass


class AuthenticationException(ConnectorException):
    """Raised when credentials are rejected."""

    pass


class NotFoundException(ConnectorException):
    """Raised when an upstream resource does not exist."""

    pass


class PaginationException(ConnectorException):
    """Raised when a paged response cannot be walked."""

    pass


class APIException(ConnectorException):
    """Raised when the API returns an error or the transport fails."""

    pass
