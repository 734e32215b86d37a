# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Parsing of ListObjectsV2 XML responses.

The provider returns one ``<Contents>`` block per object, each holding a
``<Key>``, ``<Size>`` and ``<LastModified>`` element.  Those three are
collected as parallel lists in document order and zipped positionally;
if the lists differ in length the response is rejected rather than
producing misaligned records.  Namespaces are ignored (elements are
matched by local name).
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import UTC, datetime

from shelfstore.errors import ParseError


@dataclass(frozen=True)
class ListedObject:
    """One object entry from a listing response."""

    key: str
    size: int
    last_modified: datetime


@dataclass(frozen=True)
class ListPage:
    """One page of a listing response.

    Attributes:
        objects: Entries on this page, in response order.
        is_truncated: True if more results are available.
        next_token: Continuation token for the next page, if any.
    """

    objects: list[ListedObject]
    is_truncated: bool = False
    next_token: str | None = None


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _parse_timestamp(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise ParseError(f"Invalid LastModified value: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _parse_size(value: str) -> int:
    try:
        size = int(value)
    except ValueError as e:
        raise ParseError(f"Invalid Size value: {value!r}") from e
    if size < 0:
        raise ParseError(f"Invalid Size value: {value!r}")
    return size


def parse_list_response(body: str | bytes) -> ListPage:
    """Parse a ListObjectsV2 response body.

    Args:
        body: Raw XML response body.

    Returns:
        The parsed page.

    Raises:
        ParseError: If the body is not XML, is not a list result, or the
            Key/Size/LastModified sequences are misaligned or malformed.
    """
    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        raise ParseError(f"Listing response is not valid XML: {e}") from e

    if _local_name(root.tag) != "ListBucketResult":
        raise ParseError(
            f"Unexpected listing root element: {_local_name(root.tag)}"
        )

    keys: list[str] = []
    sizes: list[str] = []
    modified: list[str] = []
    is_truncated = False
    next_token: str | None = None

    for element in root.iter():
        name = _local_name(element.tag)
        text = (element.text or "").strip()
        if name == "Key":
            keys.append(element.text or "")
        elif name == "Size":
            sizes.append(text)
        elif name == "LastModified":
            modified.append(text)
        elif name == "IsTruncated":
            is_truncated = text.lower() == "true"
        elif name == "NextContinuationToken":
            next_token = text or None

    if not len(keys) == len(sizes) == len(modified):
        raise ParseError(
            f"Mismatched listing entries: {len(keys)} keys, "
            f"{len(sizes)} sizes, {len(modified)} timestamps"
        )

    objects = [
        ListedObject(
            key=key,
            size=_parse_size(size),
            last_modified=_parse_timestamp(stamp),
        )
        for key, size, stamp in zip(keys, sizes, modified, strict=True)
    ]
    return ListPage(objects, is_truncated=is_truncated, next_token=next_token)
