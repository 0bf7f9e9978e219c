"""
Failure taxonomy and classification for gateway calls.

Every outbound call made by stackcheck ends in one of four failure kinds:

- **transport**: no response at all (DNS, connect, timeout)
- **client_error**: 4xx (bad query syntax, unknown datasource, unauthenticated)
- **server_error**: 5xx
- **malformed**: a response arrived but its shape violates the contract

Exceptions raised by the components carry their kind so the suite can turn
them into check outcomes without re-inspecting transport details.

Usage::

    from stackcheck.errors import FailureKind, classify

    try:
        await proxy.instant_query(session, uid, "up")
    except StackCheckError as exc:
        if classify(exc) is FailureKind.TRANSPORT:
            ...
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Optional

import httpx
from pydantic import ValidationError

__all__ = [
    "FailureKind",
    "StackCheckError",
    "AuthError",
    "NotFoundError",
    "QueryError",
    "GatewayError",
    "TransportError",
    "MalformedResponseError",
    "classify",
    "classify_status",
]


class FailureKind(str, Enum):
    """Classified failure of an outbound call."""

    TRANSPORT = "transport"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    MALFORMED = "malformed"


class StackCheckError(Exception):
    """Base error for all classified stackcheck failures.

    Args:
        message: Human-readable description.
        kind: Failure kind, when known at raise time.
        status_code: HTTP status of the offending response, if any.
        field: Name of the missing or invalid response field, if any.
    """

    default_kind: Optional[FailureKind] = None

    def __init__(
        self,
        message: str,
        *,
        kind: Optional[FailureKind] = None,
        status_code: Optional[int] = None,
        field: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.status_code = status_code
        self.field = field

    @property
    def diagnostic(self) -> str:
        """Short diagnostic for reports: status code or missing field first."""
        if self.field is not None:
            return f"missing field '{self.field}': {self.message}"
        if self.status_code is not None:
            return f"HTTP {self.status_code}: {self.message}"
        return self.message


class AuthError(StackCheckError):
    """Credential exchange failed; no check can run without a session."""


class NotFoundError(StackCheckError):
    """A named resource (datasource, dashboard) does not exist."""

    default_kind = FailureKind.CLIENT_ERROR


class QueryError(StackCheckError):
    """A backend rejected a proxied query."""

    def __init__(self, message: str, *, expression: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.expression = expression


class GatewayError(StackCheckError):
    """Non-2xx response from a gateway endpoint."""


class TransportError(StackCheckError):
    """No response was received (DNS, connect, timeout)."""

    default_kind = FailureKind.TRANSPORT


class MalformedResponseError(StackCheckError):
    """Response arrived but lacks fields the contract requires."""

    default_kind = FailureKind.MALFORMED


def classify_status(status_code: int) -> FailureKind:
    """Map an HTTP error status to a failure kind."""
    if status_code >= 500:
        return FailureKind.SERVER_ERROR
    if status_code >= 400:
        return FailureKind.CLIENT_ERROR
    raise ValueError(f"HTTP {status_code} is not an error status")


def classify(error: BaseException) -> FailureKind:
    """
    Classify an exception raised by (or around) an outbound call.

    Args:
        error: A stackcheck error or a raw httpx/pydantic/json error.

    Returns:
        The failure kind.

    Raises:
        TypeError: If the exception is not a recognised call failure.
    """
    if isinstance(error, StackCheckError):
        if error.kind is not None:
            return error.kind
        if error.status_code is not None:
            return classify_status(error.status_code)
        # No kind, status or field: a response arrived but could not be read
        return FailureKind.MALFORMED
    if isinstance(error, httpx.HTTPStatusError):
        return classify_status(error.response.status_code)
    if isinstance(error, (httpx.TimeoutException, httpx.TransportError, TimeoutError, OSError)):
        return FailureKind.TRANSPORT
    if isinstance(error, (json.JSONDecodeError, ValidationError, KeyError)):
        return FailureKind.MALFORMED
    raise TypeError(f"Cannot classify {type(error).__name__}: {error}")
