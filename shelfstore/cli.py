# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Multi-command entry point for the shelfstore CLI.

Provides ``shelfstore <command>`` for working with the bucket from a
shell.  Configuration comes from ``--config <yaml>`` when given, and from
``R2_*`` environment variables (and ``.env`` files) otherwise.

Subcommands:

* ``init``    : create a stub YAML config file
* ``upload``  : upload a local file under a generated key
* ``download``: download an object to a local file
* ``list``    : list objects under a prefix
* ``delete``  : delete an object
* ``presign`` : print a time-limited download URL
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from shelfstore.config import StorageConfig, get_config_path
from shelfstore.errors import StorageError
from shelfstore.logging import configure_logging
from shelfstore.sigv4 import DEFAULT_PRESIGN_EXPIRES
from shelfstore.storage import StorageClient


logger = logging.getLogger(__name__)

_USAGE = """\
Usage: shelfstore <command> [options]

Commands:
  init       Create a stub config file
  upload     Upload a local file
  download   Download an object
  list       List objects under a prefix
  delete     Delete an object
  presign    Print a pre-signed download URL

Run 'shelfstore <command> --help' for command options."""

#: Stub configuration template written by ``shelfstore init``.
_STUB_CONFIG = """\
# Shelfstore storage configuration
#
# Values tagged !env are read from the environment (or a .env file).

storage:
  endpoint: https://<account-id>.r2.cloudflarestorage.com
  access_key_id: !env R2_ACCESS_KEY_ID
  secret_access_key: !env R2_SECRET_ACCESS_KEY
  bucket: inventory-files
  # Region token in the credential scope; must match the provider exactly.
  region: auto
  # service: s3
  # public_base_url: https://files.example.com
  # namespace: uploads
"""


def _parser(command: str, description: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=f"shelfstore {command}", description=description
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML config file (default: read R2_* environment variables)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    return parser


def _client(args: argparse.Namespace) -> StorageClient:
    configure_logging(debug=args.debug)
    if args.config is not None:
        return StorageClient(StorageConfig.from_yaml(args.config))
    return StorageClient(StorageConfig.from_env())


# ── init subcommand ─────────────────────────────────────────────────


def cmd_init(argv: list[str]) -> int:
    """Create a stub configuration file if none exists.

    Args:
        argv: Extra arguments (currently unused).

    Returns:
        Exit code (always 0).
    """
    del argv
    config_path = get_config_path()

    if config_path.exists():
        print(f"Config already exists: {config_path}")
        return 0

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STUB_CONFIG)
    print(f"Created stub config: {config_path}")
    return 0


# ── object subcommands ──────────────────────────────────────────────


def cmd_upload(argv: list[str]) -> int:
    """Upload a local file and print its key and public URL."""
    parser = _parser("upload", "Upload a local file under a generated key.")
    parser.add_argument("file", type=Path, help="File to upload")
    parser.add_argument("--name", help="Display name (default: file name)")
    parser.add_argument("--content-type", help="MIME type (default: guessed)")
    args = parser.parse_args(argv)

    try:
        client = _client(args)
        meta = asyncio.run(
            client.upload_file(args.file, args.name, args.content_type)
        )
    except StorageError as e:
        logger.error("Upload failed: %s", e)
        return 1
    except ValueError as e:
        print(f"shelfstore upload: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        logger.error("Cannot read %s: %s", args.file, e)
        return 1

    print(meta.key)
    print(meta.url)
    return 0


def cmd_download(argv: list[str]) -> int:
    """Download an object to a local file."""
    parser = _parser("download", "Download an object.")
    parser.add_argument("key", help="Object key")
    parser.add_argument(
        "-o", "--output", type=Path, help="Output file (default: key name)"
    )
    args = parser.parse_args(argv)
    output = args.output or Path(Path(args.key).name)

    try:
        client = _client(args)
        data = asyncio.run(client.download(args.key))
    except StorageError as e:
        logger.error("Download failed: %s", e)
        return 1
    except ValueError as e:
        print(f"shelfstore download: {e}", file=sys.stderr)
        return 2

    try:
        output.write_bytes(data)
    except OSError as e:
        logger.error("Cannot write %s: %s", output, e)
        return 1
    print(f"Saved {len(data)} bytes to {output}")
    return 0


def cmd_list(argv: list[str]) -> int:
    """List objects under a prefix, one per line."""
    parser = _parser("list", "List objects under a prefix.")
    parser.add_argument("--prefix", default="", help="Key prefix")
    args = parser.parse_args(argv)

    try:
        client = _client(args)
        objects = asyncio.run(client.list_objects(args.prefix))
    except StorageError as e:
        logger.error("List failed: %s", e)
        return 1

    for obj in objects:
        print(
            f"{obj.last_modified:%Y-%m-%d}  {obj.size_label:>10}  "
            f"{obj.file_type:<12}  {obj.key}"
        )
    return 0


def cmd_delete(argv: list[str]) -> int:
    """Delete an object."""
    parser = _parser("delete", "Delete an object.")
    parser.add_argument("key", help="Object key")
    parser.add_argument(
        "--missing-ok",
        action="store_true",
        help="Succeed if the object does not exist",
    )
    args = parser.parse_args(argv)

    try:
        client = _client(args)
        asyncio.run(client.delete(args.key, missing_ok=args.missing_ok))
    except StorageError as e:
        logger.error("Delete failed: %s", e)
        return 1
    except ValueError as e:
        print(f"shelfstore delete: {e}", file=sys.stderr)
        return 2
    return 0


def cmd_presign(argv: list[str]) -> int:
    """Print a pre-signed GET URL for an object."""
    parser = _parser("presign", "Print a pre-signed download URL.")
    parser.add_argument("key", help="Object key")
    parser.add_argument(
        "--expires",
        type=int,
        default=DEFAULT_PRESIGN_EXPIRES,
        help="Validity in seconds (default: %(default)s)",
    )
    args = parser.parse_args(argv)

    try:
        client = _client(args)
        url = client.presign(args.key, args.expires)
    except StorageError as e:
        logger.error("Presign failed: %s", e)
        return 1
    except ValueError as e:
        print(f"shelfstore presign: {e}", file=sys.stderr)
        return 2

    print(url)
    return 0


# ── CLI plumbing ────────────────────────────────────────────────────


_DISPATCH: dict[str, str] = {
    "init": "cmd_init",
    "upload": "cmd_upload",
    "download": "cmd_download",
    "list": "cmd_list",
    "delete": "cmd_delete",
    "presign": "cmd_presign",
}


def cli() -> None:
    """Entry point for ``shelfstore``.

    Requires an explicit subcommand; with no arguments prints usage.
    """
    argv = sys.argv[1:]

    if not argv or argv[0] in ("-h", "--help"):
        print(_USAGE)
        sys.exit(0)

    if argv[0] not in _DISPATCH:
        print(f"shelfstore: unknown command '{argv[0]}'", file=sys.stderr)
        print(_USAGE, file=sys.stderr)
        sys.exit(2)

    # Look up handler by name so tests can mock individual commands.
    import shelfstore.cli as _self

    handler = getattr(_self, _DISPATCH[argv[0]])
    sys.exit(handler(argv[1:]))
