# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared fixtures for storage client tests.

Provides :class:`FakeBucket`, an in-memory S3-compatible bucket served
through ``httpx.MockTransport``.  Like the real provider it recomputes
the SigV4 signature of every request from what it received and answers
403 on any mismatch, so a passing test means the request would have
authenticated.
"""

import hashlib
import hmac
import re
import urllib.parse
from collections.abc import Iterator
from xml.sax.saxutils import escape

import httpx
import pytest

from shelfstore.config import StorageConfig
from shelfstore.logging import SecretFilter
from shelfstore.sigv4 import (
    SIGNATURE_PARAM,
    UNSIGNED_PAYLOAD,
    build_canonical_request,
    build_string_to_sign,
    derive_signing_key,
    encode_query,
    sign,
)
from shelfstore.storage import StorageClient
from tests.vectors import (
    R2_ACCESS_KEY_ID,
    R2_BUCKET,
    R2_ENDPOINT,
    R2_REGION,
    R2_SECRET_ACCESS_KEY,
)


_S3_NS = "http://s3.amazonaws.com/doc/2006-03-01/"
_LAST_MODIFIED = "2024-01-15T10:30:00.000Z"

_SIGNATURE_MISMATCH = (
    "<?xml version='1.0' encoding='UTF-8'?>"
    "<Error><Code>SignatureDoesNotMatch</Code>"
    "<Message>The request signature we calculated does not match the "
    "signature you provided.</Message></Error>"
)


# ---------------------------------------------------------------------------
# Signature verification helpers
# ---------------------------------------------------------------------------

_AUTH_HEADER_RE = re.compile(
    r"(?P<algorithm>AWS4-HMAC-SHA256)\s+"
    r"Credential=(?P<key_id>[^/]+)/(?P<scope>[^,]+),\s*"
    r"SignedHeaders=(?P<signed_headers>[^,]+),\s*"
    r"Signature=(?P<signature>[0-9a-f]+)"
)


class ParsedAuth:
    """Parsed SigV4 ``Authorization`` header."""

    __slots__ = ("algorithm", "key_id", "scope", "signed_headers", "signature")

    def __init__(
        self,
        algorithm: str,
        key_id: str,
        scope: str,
        signed_headers: str,
        signature: str,
    ) -> None:
        self.algorithm = algorithm
        self.key_id = key_id
        self.scope = scope
        self.signed_headers = signed_headers
        self.signature = signature

    @property
    def scope_parts(self) -> list[str]:
        """Split scope into date/region/service/aws4_request."""
        return self.scope.split("/")


def parse_auth_header(auth_value: str) -> ParsedAuth | None:
    """Parse a SigV4 Authorization header, or return None."""
    m = _AUTH_HEADER_RE.match(auth_value)
    if not m:
        return None
    return ParsedAuth(
        algorithm=m.group("algorithm"),
        key_id=m.group("key_id"),
        scope=m.group("scope"),
        signed_headers=m.group("signed_headers"),
        signature=m.group("signature"),
    )


def split_presigned_url(url: str) -> tuple[str, str | None]:
    """Split a pre-signed URL into (unsigned URL, signature).

    The unsigned URL keeps every other query parameter, so it can be fed
    back into ``build_canonical_request`` to recompute the signature.
    """
    parts = urllib.parse.urlsplit(url)
    params = urllib.parse.parse_qsl(parts.query, keep_blank_values=True)
    signature = None
    kept: list[tuple[str, str]] = []
    for name, value in params:
        if name == SIGNATURE_PARAM:
            signature = value
        else:
            kept.append((name, value))
    unsigned = urllib.parse.urlunsplit(
        (parts.scheme, parts.netloc, parts.path, encode_query(kept), "")
    )
    return unsigned, signature


class FakeBucket:
    """In-memory bucket that verifies SigV4 like the provider.

    Attributes:
        objects: Stored objects (key -> (content, content type)).
        requests: Every request received, in order.
        page_size: Default listing page size.
        fail_with: If set, ``(status, body)`` returned for every
            request after signature verification.
    """

    def __init__(self, config: StorageConfig) -> None:
        self.config = config
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.requests: list[httpx.Request] = []
        self.page_size = 1000
        self.fail_with: tuple[int, str] | None = None

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # -- Signature verification -----------------------------------------

    def verify(self, request: httpx.Request) -> bool:
        """Recompute the request signature and compare."""
        auth = parse_auth_header(request.headers.get("authorization", ""))
        if auth is None:
            return False
        if auth.key_id != self.config.access_key_id:
            return False
        date_stamp, region, service, _ = auth.scope_parts
        if (region, service) != (self.config.region, self.config.service):
            return False

        amz_date = request.headers.get("x-amz-date", "")
        if not amz_date.startswith(date_stamp):
            return False

        content_sha = request.headers.get("x-amz-content-sha256", "")
        if content_sha != UNSIGNED_PAYLOAD:
            if content_sha != hashlib.sha256(request.content).hexdigest():
                return False

        signed = auth.signed_headers.split(";")
        if not {"host", "x-amz-date", "x-amz-content-sha256"} <= set(signed):
            return False
        headers = {name: request.headers.get(name, "") for name in signed}

        creq = build_canonical_request(
            request.method, str(request.url), headers, content_sha
        )
        string_to_sign = build_string_to_sign(amz_date, auth.scope, creq)
        key = derive_signing_key(
            self.config.secret_access_key, date_stamp, region, service
        )
        return hmac.compare_digest(sign(string_to_sign, key), auth.signature)

    # -- Request handling -----------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.verify(request):
            return httpx.Response(403, text=_SIGNATURE_MISMATCH)
        if self.fail_with is not None:
            status, body = self.fail_with
            return httpx.Response(status, text=body)

        bucket_prefix = f"/{self.config.bucket_name}/"
        path = request.url.path
        if not path.startswith(bucket_prefix):
            return httpx.Response(404, text="<Error>NoSuchBucket</Error>")
        key = path[len(bucket_prefix) :]

        if not key:
            if request.method == "GET":
                return self._list(request)
            return httpx.Response(405)

        if request.method == "PUT":
            content_type = request.headers.get(
                "content-type", "application/octet-stream"
            )
            self.objects[key] = (request.content, content_type)
            return httpx.Response(200)
        if request.method == "GET":
            if key not in self.objects:
                return httpx.Response(404, text="<Error>NoSuchKey</Error>")
            return httpx.Response(200, content=self.objects[key][0])
        if request.method == "DELETE":
            if self.objects.pop(key, None) is None:
                return httpx.Response(404, text="<Error>NoSuchKey</Error>")
            return httpx.Response(204)
        return httpx.Response(405)

    def _list(self, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        if params.get("list-type") != "2":
            return httpx.Response(400, text="<Error>InvalidArgument</Error>")
        prefix = params.get("prefix", "")
        start = int(params.get("continuation-token", "0"))
        size = int(params.get("max-keys", str(self.page_size)))

        keys = sorted(k for k in self.objects if k.startswith(prefix))
        page = keys[start : start + size]
        truncated = start + size < len(keys)

        parts = [
            f'<?xml version="1.0" encoding="UTF-8"?>'
            f'<ListBucketResult xmlns="{_S3_NS}">'
            f"<Name>{self.config.bucket_name}</Name>"
            f"<Prefix>{escape(prefix)}</Prefix>"
            f"<KeyCount>{len(page)}</KeyCount>"
            f"<IsTruncated>{'true' if truncated else 'false'}</IsTruncated>"
        ]
        if truncated:
            parts.append(
                f"<NextContinuationToken>{start + size}"
                f"</NextContinuationToken>"
            )
        for key in page:
            parts.append(
                f"<Contents><Key>{escape(key)}</Key>"
                f"<LastModified>{_LAST_MODIFIED}</LastModified>"
                f'<ETag>"abc"</ETag>'
                f"<Size>{len(self.objects[key][0])}</Size>"
                f"<StorageClass>STANDARD</StorageClass></Contents>"
            )
        parts.append("</ListBucketResult>")
        return httpx.Response(
            200,
            text="".join(parts),
            headers={"content-type": "application/xml"},
        )


@pytest.fixture(autouse=True)
def _clear_secrets() -> Iterator[None]:
    """Keep registered secrets from leaking between tests."""
    yield
    SecretFilter.clear_secrets()


@pytest.fixture
def storage_config() -> StorageConfig:
    """Config for the fake R2 bucket."""
    return StorageConfig(
        endpoint=R2_ENDPOINT,
        access_key_id=R2_ACCESS_KEY_ID,
        secret_access_key=R2_SECRET_ACCESS_KEY,
        bucket_name=R2_BUCKET,
        region=R2_REGION,
    )


@pytest.fixture
def fake_bucket(storage_config: StorageConfig) -> FakeBucket:
    """Empty fake bucket that accepts the storage_config credentials."""
    return FakeBucket(storage_config)


@pytest.fixture
def client(
    storage_config: StorageConfig, fake_bucket: FakeBucket
) -> StorageClient:
    """Storage client wired to the fake bucket."""
    return StorageClient(storage_config, transport=fake_bucket.transport())
