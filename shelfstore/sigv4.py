# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""AWS Signature Version 4 signing for S3-compatible object stores.

Provides the pieces needed to talk to an S3-compatible provider directly,
with no intermediary holding the credentials:

- Canonical request construction (URI, query, headers)
- Signing key derivation and signature computation (HMAC-SHA256)
- Header-mode signing (``Authorization`` header) for PUT/GET/DELETE
- Query-mode signing for shareable pre-signed GET URLs

Everything here is pure computation: no I/O, no caching, no globals.
The provider recomputes the same strings from what it receives, so any
difference in encoding, casing, or ordering fails the whole request.

No boto3/botocore dependency; uses only the standard library.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import urllib.parse
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from shelfstore.errors import SigningError


if TYPE_CHECKING:
    from shelfstore.config import StorageConfig


logger = logging.getLogger(__name__)

ALGORITHM = "AWS4-HMAC-SHA256"
SCOPE_TERMINATOR = "aws4_request"

#: Payload hash sentinel for bodies that are not hashed before sending.
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"

#: SHA-256 of the empty string, the payload hash of bodiless requests.
EMPTY_PAYLOAD_HASH = hashlib.sha256(b"").hexdigest()

AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"
DATE_STAMP_FORMAT = "%Y%m%d"

DEFAULT_PRESIGN_EXPIRES = 3600
#: Longest validity the provider accepts for a pre-signed URL (7 days).
MAX_PRESIGN_EXPIRES = 7 * 24 * 3600

SIGNATURE_PARAM = "X-Amz-Signature"

_AWS_UNRESERVED = frozenset(
    b"ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~"
)


# ---------------------------------------------------------------------------
# URI encoding (RFC 3986 unreserved set)
# ---------------------------------------------------------------------------


def uri_encode(value: str, *, encode_slash: bool = True) -> str:
    """URI-encode a value using the SigV4 rules.

    - Unreserved characters are not encoded: A-Z, a-z, 0-9, -, _, ., ~
    - Every other UTF-8 byte is percent-encoded as %XX (uppercase hex),
      including ``!``, ``'``, ``(``, ``)`` and ``*`` which generic URL
      quoting tends to leave alone
    - Forward slashes (/) are optionally preserved

    Args:
        value: String to encode.
        encode_slash: If True, encode '/'; if False, preserve '/'.

    Returns:
        URI-encoded string.
    """
    result: list[str] = []
    for byte in value.encode("utf-8"):
        if byte in _AWS_UNRESERVED:
            result.append(chr(byte))
        elif byte == 0x2F and not encode_slash:
            result.append("/")
        else:
            result.append(f"%{byte:02X}")
    return "".join(result)


def quote_path(path: str) -> str:
    """Encode a raw ``/``-delimited path segment by segment.

    Used to build request URLs from object keys; the result is already in
    canonical form, so the same string goes on the wire and into the
    canonical request.
    """
    return "/".join(uri_encode(segment) for segment in path.split("/"))


# ---------------------------------------------------------------------------
# Canonical request construction
# ---------------------------------------------------------------------------


def canonical_uri(path: str) -> str:
    """Build the canonical URI from a request path.

    The path may already be percent-encoded (as produced by
    :func:`quote_path`).  S3 uses single encoding and no path
    normalization: decode once, then re-encode each segment, keeping
    empty segments and ``.``/``..`` as they are.
    """
    if not path:
        return "/"
    return quote_path(urllib.parse.unquote(path))


def encode_query(pairs: Iterable[tuple[str, str]]) -> str:
    """Encode raw name/value pairs into a sorted canonical query string."""
    encoded = sorted((uri_encode(k), uri_encode(v)) for k, v in pairs)
    return "&".join(f"{k}={v}" for k, v in encoded)


def canonical_query_string(query: str) -> str:
    """Build the canonical query string.

    Names and values are decoded, re-encoded with :func:`uri_encode`, and
    sorted by encoded name, then by encoded value.

    Args:
        query: Raw query string (without leading ?).

    Returns:
        Canonical query string.
    """
    if not query:
        return ""
    return encode_query(urllib.parse.parse_qsl(query, keep_blank_values=True))


def canonical_headers(headers: Mapping[str, str]) -> tuple[str, str]:
    """Canonicalize a header map.

    Header names are lower-cased; values are trimmed with internal
    whitespace runs collapsed to one space.  Names differing only in case
    are merged with a comma, in iteration order.

    Args:
        headers: Headers to sign (name -> value).

    Returns:
        Tuple of (canonical headers block, signed headers list).  The
        block has one ``name:value`` line per header, each ending in a
        newline; the list is the sorted, semicolon-joined names.
    """
    lower: dict[str, str] = {}
    for name, value in headers.items():
        key = name.strip().lower()
        trimmed = " ".join(str(value).split())
        if key in lower:
            lower[key] = f"{lower[key]},{trimmed}"
        else:
            lower[key] = trimmed

    names = sorted(lower)
    block = "".join(f"{name}:{lower[name]}\n" for name in names)
    return block, ";".join(names)


def signed_header_names(headers: Mapping[str, str]) -> str:
    """Return the semicolon-joined signed headers list for *headers*."""
    return canonical_headers(headers)[1]


def build_canonical_request(
    method: str,
    url: str,
    headers: Mapping[str, str],
    payload_hash: str,
) -> str:
    """Build the canonical request string.

    Args:
        method: HTTP method.
        url: Absolute request URL, including any query string.
        headers: Headers to sign; must include ``host``.
        payload_hash: Hex SHA-256 of the body, :data:`UNSIGNED_PAYLOAD`,
            or :data:`EMPTY_PAYLOAD_HASH`.

    Returns:
        The six newline-joined canonical request fields.

    Raises:
        SigningError: If method or payload hash is empty, the URL is not
            absolute, or no ``host`` header is given.
    """
    method = method.strip().upper()
    if not method:
        raise SigningError("HTTP method must not be empty")
    if not payload_hash:
        raise SigningError("Payload hash must not be empty")

    parts = urllib.parse.urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise SigningError(f"Request URL must be absolute: {url!r}")

    header_block, signed_headers = canonical_headers(headers)
    if "host" not in signed_headers.split(";"):
        raise SigningError("Signed headers must include 'host'")

    return "\n".join(
        [
            method,
            canonical_uri(parts.path),
            canonical_query_string(parts.query),
            header_block,
            signed_headers,
            payload_hash,
        ]
    )


# ---------------------------------------------------------------------------
# Signing key derivation
# ---------------------------------------------------------------------------


def _hmac_sha256(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def derive_signing_key(
    secret_key: str, date_stamp: str, region: str, service: str
) -> bytes:
    """Derive the scoped signing key.

    Recomputed for every request; each request carries its own date.

    Args:
        secret_key: Secret access key.
        date_stamp: Date string (YYYYMMDD).
        region: Region token.
        service: Service token.

    Returns:
        Derived signing key bytes.
    """
    k_date = _hmac_sha256(("AWS4" + secret_key).encode("utf-8"), date_stamp)
    k_region = _hmac_sha256(k_date, region)
    k_service = _hmac_sha256(k_region, service)
    return _hmac_sha256(k_service, SCOPE_TERMINATOR)


def credential_scope(date_stamp: str, region: str, service: str) -> str:
    """Return ``date/region/service/aws4_request``."""
    return "/".join([date_stamp, region, service, SCOPE_TERMINATOR])


def build_string_to_sign(
    amz_date: str, scope: str, canonical_request: str
) -> str:
    """Build the string to sign.

    Args:
        amz_date: Request timestamp (YYYYMMDDTHHMMSSZ).
        scope: Credential scope.
        canonical_request: The canonical request string.

    Returns:
        String to sign.
    """
    return "\n".join(
        [
            ALGORITHM,
            amz_date,
            scope,
            hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
        ]
    )


def sign(string_to_sign: str, signing_key: bytes) -> str:
    """Return the hex HMAC-SHA256 signature of *string_to_sign*."""
    return hmac.new(
        signing_key, string_to_sign.encode("utf-8"), hashlib.sha256
    ).hexdigest()


# ---------------------------------------------------------------------------
# Request signing
# ---------------------------------------------------------------------------


class PayloadMode(Enum):
    """How the request body is represented in the signature."""

    EMPTY = "empty"
    UNSIGNED = "unsigned"
    SHA256 = "sha256"


def payload_hash(mode: PayloadMode, body: bytes = b"") -> str:
    """Return the ``x-amz-content-sha256`` value for *mode*."""
    if mode is PayloadMode.UNSIGNED:
        return UNSIGNED_PAYLOAD
    if mode is PayloadMode.SHA256:
        return hashlib.sha256(body).hexdigest()
    return EMPTY_PAYLOAD_HASH


def request_timestamps(now: datetime | None = None) -> tuple[str, str]:
    """Return ``(amz_date, date_stamp)`` for *now* (default: current UTC)."""
    if now is None:
        now = datetime.now(UTC)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    else:
        now = now.astimezone(UTC)
    return now.strftime(AMZ_DATE_FORMAT), now.strftime(DATE_STAMP_FORMAT)


def _signature(
    config: StorageConfig,
    amz_date: str,
    date_stamp: str,
    canonical_request: str,
) -> tuple[str, str]:
    """Sign a canonical request; returns ``(scope, signature)``."""
    scope = credential_scope(date_stamp, config.region, config.service)
    string_to_sign = build_string_to_sign(amz_date, scope, canonical_request)
    logger.debug(
        "Canonical request:\n%s\nString to sign:\n%s",
        canonical_request,
        string_to_sign,
    )
    signing_key = derive_signing_key(
        config.secret_access_key, date_stamp, config.region, config.service
    )
    return scope, sign(string_to_sign, signing_key)


def sign_headers(
    method: str,
    url: str,
    config: StorageConfig,
    *,
    headers: Mapping[str, str] | None = None,
    payload: PayloadMode = PayloadMode.EMPTY,
    body: bytes = b"",
    now: datetime | None = None,
) -> dict[str, str]:
    """Sign a request in header mode.

    Every header in *headers* is signed alongside ``host``,
    ``x-amz-date`` and ``x-amz-content-sha256``; those three are always
    computed here and override caller values.

    Args:
        method: HTTP method.
        url: Absolute request URL with an already-encoded path.
        config: Storage configuration supplying credentials and scope.
        headers: Extra headers to send and sign (e.g. ``content-type``).
        payload: Payload hash mode.
        body: Request body; only hashed for :attr:`PayloadMode.SHA256`.
        now: Signing time (default: current UTC time).

    Returns:
        Header map to send: all signed headers (lower-case names) plus
        ``Authorization``.
    """
    amz_date, date_stamp = request_timestamps(now)
    content_hash = payload_hash(payload, body)

    signed: dict[str, str] = {}
    for name, value in (headers or {}).items():
        signed[name.strip().lower()] = value
    signed["host"] = urllib.parse.urlsplit(url).netloc
    signed["x-amz-date"] = amz_date
    signed["x-amz-content-sha256"] = content_hash

    creq = build_canonical_request(method, url, signed, content_hash)
    scope, signature = _signature(config, amz_date, date_stamp, creq)

    signed["Authorization"] = (
        f"{ALGORITHM} "
        f"Credential={config.access_key_id}/{scope}, "
        f"SignedHeaders={signed_header_names(signed)}, "
        f"Signature={signature}"
    )
    return signed


def presign_url(
    url: str,
    config: StorageConfig,
    *,
    expires_in: int = DEFAULT_PRESIGN_EXPIRES,
    method: str = "GET",
    now: datetime | None = None,
) -> str:
    """Sign a request in query mode and return the pre-signed URL.

    Only ``host`` is signed and the payload is ``UNSIGNED-PAYLOAD``, so
    the URL can be fetched by any HTTP client without extra headers.
    Expiry is enforced by the provider, not here.

    Args:
        url: Absolute object URL with an already-encoded path.
        config: Storage configuration supplying credentials and scope.
        expires_in: Validity in seconds (1 to 604800).
        method: HTTP method the URL is valid for.
        now: Signing time (default: current UTC time).

    Returns:
        The URL with sorted ``X-Amz-*`` parameters and a trailing
        ``X-Amz-Signature``.

    Raises:
        ValueError: If *expires_in* is out of range.
    """
    if not 1 <= expires_in <= MAX_PRESIGN_EXPIRES:
        raise ValueError(
            f"expires_in must be between 1 and {MAX_PRESIGN_EXPIRES} "
            f"seconds: {expires_in}"
        )

    amz_date, date_stamp = request_timestamps(now)
    scope = credential_scope(date_stamp, config.region, config.service)
    parts = urllib.parse.urlsplit(url)

    params = urllib.parse.parse_qsl(parts.query, keep_blank_values=True)
    params += [
        ("X-Amz-Algorithm", ALGORITHM),
        ("X-Amz-Credential", f"{config.access_key_id}/{scope}"),
        ("X-Amz-Date", amz_date),
        ("X-Amz-Expires", str(expires_in)),
        ("X-Amz-SignedHeaders", "host"),
    ]
    unsigned_url = urllib.parse.urlunsplit(
        (parts.scheme, parts.netloc, parts.path, encode_query(params), "")
    )

    creq = build_canonical_request(
        method, unsigned_url, {"host": parts.netloc}, UNSIGNED_PAYLOAD
    )
    _, signature = _signature(config, amz_date, date_stamp, creq)
    return f"{unsigned_url}&{SIGNATURE_PARAM}={signature}"
