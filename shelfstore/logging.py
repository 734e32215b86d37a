# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Log redaction of storage credentials.

Every :class:`~shelfstore.config.StorageConfig` registers its access key
and secret key here once validated.  The command-line handler installed
by :func:`configure_logging` runs records through :class:`SecretFilter`,
so neither key can reach the terminal even when a message or an error
body happens to echo one.  Library modules use plain
``logging.getLogger(__name__)``.
"""

import logging
import re
import sys
from typing import ClassVar


REDACTED = "[REDACTED]"

# Chatty at INFO; one line per request.
_HTTP_LOGGERS = ("httpx", "httpcore")


class SecretFilter(logging.Filter):
    """Replace registered credentials with ``[REDACTED]``.

    The registry is process-wide, shared by every handler the filter is
    attached to.
    """

    _secrets: ClassVar[set[str]] = set()
    _pattern: ClassVar[re.Pattern[str] | None] = None

    @classmethod
    def register_secret(cls, secret: str) -> None:
        if not secret or secret in cls._secrets:
            return
        cls._secrets.add(secret)
        # Longest first, so a key containing another is redacted whole.
        ordered = sorted(cls._secrets, key=len, reverse=True)
        cls._pattern = re.compile("|".join(map(re.escape, ordered)))

    @classmethod
    def clear_secrets(cls) -> None:
        cls._secrets.clear()
        cls._pattern = None

    @classmethod
    def redact(cls, text: str) -> str:
        """Return *text* with every registered credential replaced."""
        if cls._pattern is None:
            return text
        return cls._pattern.sub(REDACTED, text)

    def filter(self, record: logging.LogRecord) -> bool:
        if self._pattern is None:
            return True
        # Render first; a credential may sit in a non-str argument.
        record.msg = self.redact(record.getMessage())
        record.args = None
        if record.exc_info and not record.exc_text:
            record.exc_text = logging.Formatter().formatException(
                record.exc_info
            )
        if record.exc_text:
            record.exc_text = self.redact(record.exc_text)
        return True


def configure_logging(debug: bool = False) -> None:
    """Send log records to stderr for command-line use.

    Replaces any handlers already on the root logger.  HTTP client
    request logs are only shown with *debug*.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter("%(levelname)s %(name)s: %(message)s")
    )
    handler.addFilter(SecretFilter())

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    for name in _HTTP_LOGGERS:
        logging.getLogger(name).setLevel(
            logging.NOTSET if debug else logging.WARNING
        )
