# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration for the signed object storage client.

A :class:`StorageConfig` is built once at startup and passed by reference
into :class:`~shelfstore.storage.StorageClient`.  Nothing in the signing
core reads the environment on its own.

Two sources are supported:

* The process environment (``R2_ENDPOINT``, ``R2_ACCESS_KEY_ID``,
  ``R2_SECRET_ACCESS_KEY``, ``R2_BUCKET_NAME``, ``R2_REGION``), with the
  mobile app's ``EXPO_PUBLIC_R2_*`` names accepted as fallbacks.  ``.env``
  files are loaded first if present.
* A YAML file, by default ``$XDG_CONFIG_HOME/shelfstore/shelfstore.yaml``,
  where ``!env`` tags resolve values from environment variables::

      storage:
        endpoint: https://<account>.r2.cloudflarestorage.com
        access_key_id: !env R2_ACCESS_KEY_ID
        secret_access_key: !env R2_SECRET_ACCESS_KEY
        bucket: inventory-files
        region: apac

The region and service tokens are part of every credential scope and are
never inferred from the endpoint: a wrong token produces a signature
mismatch on the provider side that looks exactly like a bad secret key.
"""

import logging
import os
import urllib.parse
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from platformdirs import user_config_path

from shelfstore.dotenv_loader import load_dotenv_once
from shelfstore.errors import ConfigurationError
from shelfstore.logging import SecretFilter


logger = logging.getLogger(__name__)

#: Application name for XDG path resolution.
_APP_NAME = "shelfstore"

#: Service token for the S3-compatible API.
DEFAULT_SERVICE = "s3"

#: Key prefix for generated object keys.
DEFAULT_NAMESPACE = "uploads"

#: Domain serving public-read buckets (``pub-<bucket>.<domain>``).
PUBLIC_BUCKET_DOMAIN = "r2.dev"

#: Environment variable names per field, primary name first.
_ENV_VARS: dict[str, tuple[str, ...]] = {
    "endpoint": ("R2_ENDPOINT", "EXPO_PUBLIC_R2_ENDPOINT"),
    "access_key_id": ("R2_ACCESS_KEY_ID", "EXPO_PUBLIC_R2_ACCESS_KEY_ID"),
    "secret_access_key": (
        "R2_SECRET_ACCESS_KEY",
        "EXPO_PUBLIC_R2_SECRET_ACCESS_KEY",
    ),
    "bucket_name": ("R2_BUCKET_NAME", "EXPO_PUBLIC_R2_BUCKET_NAME"),
    "region": ("R2_REGION", "EXPO_PUBLIC_R2_REGION"),
    "service": ("R2_SERVICE",),
    "public_base_url": ("R2_PUBLIC_BASE_URL", "EXPO_PUBLIC_R2_PUBLIC_URL"),
    "namespace": ("R2_NAMESPACE",),
}

_REQUIRED_FIELDS = (
    "endpoint",
    "access_key_id",
    "secret_access_key",
    "bucket_name",
    "region",
)


def get_config_path() -> Path:
    """Return the default YAML config file path.

    Uses XDG: ``$XDG_CONFIG_HOME/shelfstore/shelfstore.yaml``.
    """
    return user_config_path(_APP_NAME) / "shelfstore.yaml"


def get_dotenv_path() -> Path:
    """Return the ``.env`` path inside the XDG config directory."""
    return user_config_path(_APP_NAME) / ".env"


# ---------------------------------------------------------------------------
# YAML tag placeholders
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)  # type: ignore[arg-type]
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None, or the env var is unset or empty.
    """
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name) or None
    if value is None:
        return None
    return str(value) or None


def _resolve_required(value: object, name: str) -> str:
    resolved = _raw_resolve(value)
    if resolved is None:
        if isinstance(value, _EnvVar):
            raise ConfigurationError(
                f"Required config '{name}': environment variable "
                f"'{value.var_name}' is not set"
            )
        raise ConfigurationError(f"Required config '{name}' is missing")
    return resolved


# ---------------------------------------------------------------------------
# Storage configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StorageConfig:
    """Connection settings for one S3-compatible bucket.

    Immutable for the process lifetime and safe to share between
    concurrent operations.

    Attributes:
        endpoint: Absolute provider endpoint URL (account-level, no bucket).
        access_key_id: Access key ID (auto-redacted in logs).
        secret_access_key: Secret access key (auto-redacted in logs).
        bucket_name: Bucket holding all objects.
        region: Region token used in the credential scope.
        service: Service token used in the credential scope.
        public_base_url: Base URL for public object links.  ``None`` means
            ``https://pub-<bucket>.r2.dev``.
        namespace: Key prefix for generated object keys.
    """

    endpoint: str
    access_key_id: str
    secret_access_key: str = field(repr=False)
    bucket_name: str
    region: str
    service: str = DEFAULT_SERVICE
    public_base_url: str | None = None
    namespace: str = DEFAULT_NAMESPACE

    def __post_init__(self) -> None:
        """Validate configuration and register credentials for redaction.

        Raises:
            ConfigurationError: If a required field is empty or the
                endpoint is not an absolute http(s) URL.
        """
        for name in _REQUIRED_FIELDS:
            if not getattr(self, name):
                raise ConfigurationError(f"Required config '{name}' is missing")
        if not self.service:
            raise ConfigurationError("Required config 'service' is missing")

        parts = urllib.parse.urlsplit(self.endpoint)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ConfigurationError(
                f"Config 'endpoint' must be an absolute http(s) URL: "
                f"{self.endpoint!r}"
            )
        if parts.query or parts.fragment:
            raise ConfigurationError(
                f"Config 'endpoint' must not carry a query or fragment: "
                f"{self.endpoint!r}"
            )

        SecretFilter.register_secret(self.access_key_id)
        SecretFilter.register_secret(self.secret_access_key)

        logger.debug(
            "Storage config: endpoint=%s, bucket=%s, region=%s, service=%s",
            self.endpoint,
            self.bucket_name,
            self.region,
            self.service,
        )

    @property
    def public_url_base(self) -> str:
        """Base URL for public object links, without trailing slash."""
        if self.public_base_url:
            return self.public_base_url.rstrip("/")
        return f"https://pub-{self.bucket_name}.{PUBLIC_BUCKET_DOMAIN}"

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None
    ) -> "StorageConfig":
        """Build config from environment variables.

        Args:
            environ: Mapping to read from.  Defaults to ``os.environ``
                after loading ``.env`` files.

        Returns:
            StorageConfig instance.

        Raises:
            ConfigurationError: If a required variable is unset or empty.
        """
        if environ is None:
            load_dotenv_once()
            environ = os.environ

        values: dict[str, str] = {}
        for name, var_names in _ENV_VARS.items():
            for var_name in var_names:
                value = environ.get(var_name, "").strip()
                if value:
                    values[name] = value
                    break

        for name in _REQUIRED_FIELDS:
            if name not in values:
                raise ConfigurationError(
                    f"Required config '{name}': environment variable "
                    f"'{_ENV_VARS[name][0]}' is not set"
                )

        return cls(**values)

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> "StorageConfig":
        """Load configuration from the ``storage:`` section of a YAML file.

        Values tagged with ``!env VAR_NAME`` are resolved from the
        environment at load time.  A ``.env`` file is loaded first if
        present.

        Args:
            config_path: Path to YAML config file.  Defaults to
                ``~/.config/shelfstore/shelfstore.yaml`` (XDG).

        Returns:
            StorageConfig instance.

        Raises:
            ConfigurationError: If the file is missing, malformed, or
                required values are absent.
        """
        load_dotenv_once()

        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            try:
                raw = yaml.load(f, Loader=_make_loader())
            except yaml.YAMLError as e:
                raise ConfigurationError(
                    f"Invalid YAML in {config_path}: {e}"
                ) from e

        if not isinstance(raw, dict) or not isinstance(
            raw.get("storage"), dict
        ):
            raise ConfigurationError(
                f"Config file must contain a 'storage' mapping: {config_path}"
            )

        return cls._from_raw(raw["storage"])

    @classmethod
    def _from_raw(cls, raw: dict) -> "StorageConfig":
        """Build config from the parsed (but unresolved) storage mapping."""
        return cls(
            endpoint=_resolve_required(raw.get("endpoint"), "storage.endpoint"),
            access_key_id=_resolve_required(
                raw.get("access_key_id"), "storage.access_key_id"
            ),
            secret_access_key=_resolve_required(
                raw.get("secret_access_key"), "storage.secret_access_key"
            ),
            bucket_name=_resolve_required(raw.get("bucket"), "storage.bucket"),
            region=_resolve_required(raw.get("region"), "storage.region"),
            service=_raw_resolve(raw.get("service")) or DEFAULT_SERVICE,
            public_base_url=_raw_resolve(raw.get("public_base_url")),
            namespace=_raw_resolve(raw.get("namespace")) or DEFAULT_NAMESPACE,
        )
