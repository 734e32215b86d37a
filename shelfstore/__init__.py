# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Signed object storage client for the inventory app's file store.

Talks to an S3-compatible bucket (Cloudflare R2) directly, signing every
request with AWS Signature Version 4:
- Request signing and pre-signed URLs (sigv4)
- Upload, download, delete and list operations (StorageClient)
- Immutable configuration from env or YAML (StorageConfig)
- Error taxonomy with programmatic error kinds (errors)
"""

from shelfstore.config import StorageConfig
from shelfstore.errors import (
    AuthenticationError,
    ConfigurationError,
    ErrorKind,
    Outcome,
    ParseError,
    RemoteOperationError,
    SigningError,
    StorageError,
    TransportError,
    attempt,
)
from shelfstore.storage import StorageClient, StoredObjectMetadata


__all__ = [
    # config
    "StorageConfig",
    # storage
    "StorageClient",
    "StoredObjectMetadata",
    # errors
    "AuthenticationError",
    "ConfigurationError",
    "ErrorKind",
    "Outcome",
    "ParseError",
    "RemoteOperationError",
    "SigningError",
    "StorageError",
    "TransportError",
    "attempt",
]
