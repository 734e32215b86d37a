# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Signed object storage operations.

:class:`StorageClient` exposes the user-facing verbs (upload, download,
delete, list, presign) over an S3-compatible bucket.  Each call is an
independent request/response cycle: sign, send, check status, parse.
There is no shared mutable state, no connection pool and no retry; a
failed call surfaces immediately as a :class:`~shelfstore.errors.StorageError`
and the caller decides whether to retry.

Objects are addressed path-style (``<endpoint>/<bucket>/<key>``).  Keys
are generated here as ``<namespace>/<millis>-<random>.<ext>`` and never
reused.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath

import httpx

from shelfstore.config import DEFAULT_NAMESPACE, StorageConfig
from shelfstore.errors import (
    ParseError,
    RemoteOperationError,
    TransportError,
    error_for_status,
)
from shelfstore.listing import ListedObject, parse_list_response
from shelfstore.sigv4 import (
    DEFAULT_PRESIGN_EXPIRES,
    PayloadMode,
    encode_query,
    presign_url,
    quote_path,
    sign_headers,
    uri_encode,
)


logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_FILE_TYPES: dict[str, str] = {
    "pdf": "pdf",
    "doc": "document",
    "docx": "document",
    "xls": "spreadsheet",
    "xlsx": "spreadsheet",
    "ppt": "presentation",
    "pptx": "presentation",
    "txt": "text",
    "jpg": "image",
    "jpeg": "image",
    "png": "image",
    "gif": "image",
    "mp4": "video",
    "mp3": "audio",
    "zip": "archive",
}

_SIZE_UNITS = ("Bytes", "KB", "MB", "GB")


def file_type(name: str) -> str:
    """Return the coarse file category for *name* based on its extension."""
    suffix = PurePosixPath(name).suffix.lstrip(".").lower()
    return _FILE_TYPES.get(suffix, "file")


def format_size(size_bytes: int) -> str:
    """Format a byte count for display (``0 Bytes``, ``1.5 KB``, ...)."""
    if size_bytes <= 0:
        return "0 Bytes"
    unit = 0
    while unit < len(_SIZE_UNITS) - 1 and size_bytes >= 1024 ** (unit + 1):
        unit += 1
    value = f"{size_bytes / 1024**unit:.2f}".rstrip("0").rstrip(".")
    return f"{value} {_SIZE_UNITS[unit]}"


def guess_content_type(name: str) -> str:
    """Guess a MIME type from *name*, defaulting to octet-stream."""
    content_type, _ = mimetypes.guess_type(name)
    return content_type or DEFAULT_CONTENT_TYPE


def generate_object_key(
    display_name: str,
    namespace: str = DEFAULT_NAMESPACE,
    *,
    now: datetime | None = None,
) -> str:
    """Generate a fresh object key for an upload.

    The key is ``<namespace>/<millis>-<random>.<ext>``.  The extension is
    taken from *display_name* (lower-cased, alphanumeric only); the
    display name itself is not embedded.

    Args:
        display_name: Original file name.
        namespace: Key prefix (may contain ``/``).  Empty for none.
        now: Timestamp source (default: current UTC time).

    Returns:
        The new object key.
    """
    if now is None:
        now = datetime.now(UTC)
    millis = int(now.timestamp() * 1000)
    token = secrets.token_hex(4)

    suffix = PurePosixPath(display_name).suffix.lstrip(".").lower()
    ext = f".{suffix}" if suffix.isascii() and suffix.isalnum() else ""

    name = f"{millis}-{token}{ext}"
    prefix = namespace.strip("/")
    return f"{prefix}/{name}" if prefix else name


def _check_key(key: str) -> None:
    # Dot segments are collapsed by the HTTP client after signing.
    if not key or any(seg in (".", "..") for seg in key.split("/")):
        raise ValueError(f"Invalid object key: {key!r}")


@dataclass(frozen=True)
class StoredObjectMetadata:
    """Read-only description of a stored object.

    Attributes:
        key: Object key within the bucket.
        display_name: Name to show users.
        size_bytes: Object size in bytes.
        last_modified: Last modification time (UTC).
        content_type: MIME type (guessed from the key for listings).
        url: Public URL of the object.
    """

    key: str
    display_name: str
    size_bytes: int
    last_modified: datetime
    content_type: str
    url: str

    @property
    def file_type(self) -> str:
        """Coarse category (``pdf``, ``image``, ...) for icons."""
        return file_type(self.display_name or self.key)

    @property
    def size_label(self) -> str:
        """Human-readable size."""
        return format_size(self.size_bytes)


class StorageClient:
    """Async client for one S3-compatible bucket.

    Args:
        config: Storage configuration, validated at construction.
        transport: Optional ``httpx`` transport (tests use
            ``httpx.MockTransport``).
        timeout: Optional per-request timeout; ``None`` keeps the
            ``httpx`` default.
    """

    def __init__(
        self,
        config: StorageConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._timeout = timeout

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> StorageClient:
        """Build a client from environment configuration.

        Raises:
            ConfigurationError: If a required variable is missing.
        """
        return cls(
            StorageConfig.from_env(environ),
            transport=transport,
            timeout=timeout,
        )

    @property
    def config(self) -> StorageConfig:
        return self._config

    # -- URLs ---------------------------------------------------------------

    @property
    def bucket_url(self) -> str:
        """Bucket root URL, with trailing slash."""
        endpoint = self._config.endpoint.rstrip("/")
        return f"{endpoint}/{uri_encode(self._config.bucket_name)}/"

    def object_url(self, key: str) -> str:
        """Path-style URL of *key* on the storage endpoint."""
        _check_key(key)
        return f"{self.bucket_url}{quote_path(key)}"

    def public_url(self, key: str) -> str:
        """Public-bucket URL of *key*."""
        _check_key(key)
        return f"{self._config.public_url_base}/{quote_path(key)}"

    # -- HTTP -----------------------------------------------------------------

    async def _send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        content: bytes | None = None,
    ) -> httpx.Response:
        """Send a signed request and check its status.

        Raises:
            TransportError: If the HTTP exchange fails.
            AuthenticationError: On 401/403.
            RemoteOperationError: On any other non-2xx status.
        """
        kwargs = {} if self._timeout is None else {"timeout": self._timeout}
        try:
            async with httpx.AsyncClient(
                transport=self._transport, **kwargs
            ) as client:
                response = await client.request(
                    method, url, headers=dict(headers), content=content
                )
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        if not response.is_success:
            logger.warning(
                "%s %s returned HTTP %d", method, url, response.status_code
            )
            raise error_for_status(
                method, url, response.status_code, response.text
            )
        return response

    # -- Operations -----------------------------------------------------------

    async def upload(
        self,
        data: bytes,
        display_name: str,
        content_type: str | None = None,
    ) -> StoredObjectMetadata:
        """Upload *data* under a freshly generated key.

        The body is sent with an ``UNSIGNED-PAYLOAD`` hash so it does not
        need to be hashed before sending.

        Args:
            data: Object content.
            display_name: Original file name (used for the extension,
                content type guess, and returned metadata).
            content_type: MIME type; guessed from *display_name* if None.

        Returns:
            Metadata of the stored object, with its public URL.
        """
        if not display_name:
            raise ValueError("display_name must not be empty")
        if content_type is None:
            content_type = guess_content_type(display_name)

        key = generate_object_key(display_name, self._config.namespace)
        url = self.object_url(key)
        headers = sign_headers(
            "PUT",
            url,
            self._config,
            headers={"content-type": content_type},
            payload=PayloadMode.UNSIGNED,
        )
        await self._send("PUT", url, headers, content=data)
        logger.info(
            "Uploaded %s (%d bytes) as %s", display_name, len(data), key
        )

        return StoredObjectMetadata(
            key=key,
            display_name=display_name,
            size_bytes=len(data),
            last_modified=datetime.now(UTC),
            content_type=content_type,
            url=self.public_url(key),
        )

    async def upload_file(
        self,
        path: Path | str,
        display_name: str | None = None,
        content_type: str | None = None,
    ) -> StoredObjectMetadata:
        """Read a local file off the event loop and upload it."""
        path = Path(path)
        data = await asyncio.to_thread(path.read_bytes)
        return await self.upload(data, display_name or path.name, content_type)

    async def download(self, key: str) -> bytes:
        """Fetch the content of *key*."""
        url = self.object_url(key)
        headers = sign_headers("GET", url, self._config)
        response = await self._send("GET", url, headers)
        logger.info("Downloaded %s (%d bytes)", key, len(response.content))
        return response.content

    async def delete(self, key: str, *, missing_ok: bool = False) -> None:
        """Delete *key*.

        Args:
            key: Object key.
            missing_ok: Treat a 404 as success instead of an error.
        """
        url = self.object_url(key)
        headers = sign_headers("DELETE", url, self._config)
        try:
            await self._send("DELETE", url, headers)
        except RemoteOperationError as e:
            if not (missing_ok and e.status_code == 404):
                raise
            logger.info("Delete of %s: already absent", key)
            return
        logger.info("Deleted %s", key)

    async def list_objects(
        self, prefix: str = "", *, max_keys: int | None = None
    ) -> list[StoredObjectMetadata]:
        """List objects whose key starts with *prefix*.

        Follows continuation tokens until the listing is complete.

        Args:
            prefix: Key prefix filter.
            max_keys: Page size requested from the provider.

        Returns:
            Metadata for every matching object, in provider order.
        """
        if max_keys is not None and max_keys < 1:
            raise ValueError(f"max_keys must be >= 1: {max_keys}")

        results: list[StoredObjectMetadata] = []
        token: str | None = None
        seen_tokens: set[str] = set()
        while True:
            params = [("list-type", "2"), ("prefix", prefix)]
            if token:
                params.append(("continuation-token", token))
            if max_keys is not None:
                params.append(("max-keys", str(max_keys)))

            url = f"{self.bucket_url}?{encode_query(params)}"
            headers = sign_headers("GET", url, self._config)
            response = await self._send("GET", url, headers)
            page = parse_list_response(response.content)
            results.extend(self._metadata(obj) for obj in page.objects)

            if not page.is_truncated or not page.next_token:
                break
            if page.next_token in seen_tokens:
                raise ParseError(
                    f"Listing repeated continuation token "
                    f"{page.next_token!r}"
                )
            seen_tokens.add(page.next_token)
            token = page.next_token

        logger.info("Listed %d objects under %r", len(results), prefix)
        return results

    def presign(
        self, key: str, expires_in: int = DEFAULT_PRESIGN_EXPIRES
    ) -> str:
        """Return a time-limited GET URL for *key*.

        Pure computation; the provider enforces the expiry.
        """
        return presign_url(
            self.object_url(key), self._config, expires_in=expires_in
        )

    def _metadata(self, obj: ListedObject) -> StoredObjectMetadata:
        return StoredObjectMetadata(
            key=obj.key,
            display_name=PurePosixPath(obj.key).name or obj.key,
            size_bytes=obj.size,
            last_modified=obj.last_modified,
            content_type=guess_content_type(obj.key),
            url=self.public_url(obj.key),
        )
