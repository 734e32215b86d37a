# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Error taxonomy for the storage client.

Every failure raised by signing or storage operations is a
:class:`StorageError` subclass tagged with an :class:`ErrorKind`, so
callers can branch on ``err.kind`` instead of matching message text.
Callers that prefer values over exceptions can wrap an operation in
:func:`attempt` and inspect the returned :class:`Outcome`.
"""

from __future__ import annotations

from collections.abc import Awaitable
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar


T = TypeVar("T")


class ErrorKind(Enum):
    """Failure category of a storage operation."""

    CONFIGURATION = "configuration"
    SIGNING = "signing"
    TRANSPORT = "transport"
    AUTHENTICATION = "authentication"
    REMOTE = "remote"
    PARSE = "parse"


class StorageError(Exception):
    """Base exception for all storage client failures."""

    kind: ErrorKind


class ConfigurationError(StorageError):
    """A required configuration value is missing or malformed.

    Raised before any network I/O; not retryable until the
    configuration is fixed.
    """

    kind = ErrorKind.CONFIGURATION


class SigningError(StorageError):
    """A request could not be canonicalized for signing.

    Indicates a programming defect (empty method, relative URL), never a
    runtime network condition.
    """

    kind = ErrorKind.SIGNING


class TransportError(StorageError):
    """The HTTP exchange itself failed (DNS, TLS, timeout, reset).

    The underlying ``httpx`` exception is chained as ``__cause__``.
    """

    kind = ErrorKind.TRANSPORT


class ResponseError(StorageError):
    """The provider answered with a non-2xx status.

    Attributes:
        method: HTTP method of the failed request.
        url: Request URL (without presign query).
        status_code: HTTP status returned by the provider.
        body: Response body, verbatim, for diagnosis.
    """

    def __init__(
        self, method: str, url: str, status_code: int, body: str
    ) -> None:
        super().__init__(
            f"{method} {url} failed with HTTP {status_code}: {body}"
        )
        self.method = method
        self.url = url
        self.status_code = status_code
        self.body = body


class AuthenticationError(ResponseError):
    """The provider rejected the signature or credentials (401/403)."""

    kind = ErrorKind.AUTHENTICATION


class RemoteOperationError(ResponseError):
    """Any other non-2xx response."""

    kind = ErrorKind.REMOTE


class ParseError(StorageError):
    """A listing response did not have the expected shape."""

    kind = ErrorKind.PARSE


def error_for_status(
    method: str, url: str, status_code: int, body: str
) -> ResponseError:
    """Build the matching error for a non-2xx response."""
    if status_code in (401, 403):
        return AuthenticationError(method, url, status_code, body)
    return RemoteOperationError(method, url, status_code, body)


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of an operation run through :func:`attempt`.

    Exactly one of ``value`` / ``error`` is meaningful; check ``ok``.
    """

    value: T | None = None
    error: StorageError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> ErrorKind | None:
        """Error kind, or None on success."""
        return self.error.kind if self.error is not None else None

    def unwrap(self) -> T:
        """Return the value, re-raising the captured error if any."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


async def attempt(awaitable: Awaitable[T]) -> Outcome[T]:
    """Await *awaitable* and capture storage failures as an Outcome.

    Only :class:`StorageError` subclasses are captured; anything else
    (cancellation, programming errors) propagates.
    """
    try:
        return Outcome(value=await awaitable)
    except StorageError as e:
        return Outcome(error=e)
