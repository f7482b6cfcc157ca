"""Structured logging for the limiter and the demo app.

Log messages are dotted event names (``rate_limit.exceeded``,
``cache.set``, ``http.request``) with the details passed as ``extra``.
Records then go through two filters before they are written:

- ``RequestIdFilter`` stamps the request id from the current context
- ``SensitiveDataFilter`` redacts secrets (API keys, tokens, Redis URLs)
  and replaces client identity (addresses, forwarded-for chains) with a
  short hash, so events of one client can still be grouped

``configure_logging()`` installs a JSON (or plain) handler on the root
logger, writing to stdout or a rotating file.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from throttlegate.core.config import LogSettings, settings

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

REDACTED = "[REDACTED]"
_HASH_PREFIX = "sha256:"

# Values dropped from log output entirely.
SECRET_KEYS_DEFAULT: frozenset[str] = frozenset(
    {
        "api_key",
        "x-api-key",
        "authorization",
        "token",
        "secret",
        "password",
        "cookie",
        "set-cookie",
        "redis_url",
    }
)

# Values that identify a client; logged as hash_identifier(value).
IDENTITY_KEYS_DEFAULT: frozenset[str] = frozenset(
    {
        "identifier",
        "client_ip",
        "client_host",
        "x-forwarded-for",
        "x-real-ip",
    }
)

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset(vars(LogRecord("", logging.INFO, "", 0, "", (), None))) | {
    "message",
    "asctime",
}


def set_request_id(request_id: str | None) -> None:
    """Store the current request id in a context variable."""

    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    return _request_id_var.get()


def clear_request_id() -> None:
    _request_id_var.set(None)


def hash_identifier(value: str) -> str:
    """Return a short SHA-256 digest of ``value`` for log correlation.

    Lets logs group events per client without exposing addresses or keys.
    """

    return hashlib.sha256(value.encode()).hexdigest()[:16]


class Redactor:
    """Scrub secrets and client identity out of structured log fields.

    Args:
        secret_keys: Field names whose values are replaced by ``[REDACTED]``.
        identity_keys: Field names whose values are replaced by their hash.
    """

    def __init__(
        self,
        secret_keys: Iterable[str] | None = None,
        identity_keys: Iterable[str] | None = None,
    ) -> None:
        self.secret_keys = {k.lower() for k in (secret_keys or SECRET_KEYS_DEFAULT)}
        self.identity_keys = {k.lower() for k in (identity_keys or IDENTITY_KEYS_DEFAULT)}

    def scrub_field(self, key: str, value: Any) -> Any:
        lowered = key.lower()
        if lowered in self.secret_keys:
            return REDACTED
        if lowered in self.identity_keys:
            return self._pseudonymize(value)
        return self.scrub(value)

    def scrub(self, value: Any) -> Any:
        """Recursively scrub nested mappings and sequences."""

        if isinstance(value, Mapping):
            return {k: self.scrub_field(str(k), v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return type(value)(self.scrub(v) for v in value)
        return value

    def record_extras(self, record: LogRecord) -> dict[str, Any]:
        """Return the scrubbed ``extra`` fields of ``record``."""

        return {
            key: self.scrub_field(key, value)
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }

    @staticmethod
    def _pseudonymize(value: Any) -> str | None:
        if value is None:
            return None
        text = str(value)
        if text.startswith(_HASH_PREFIX):
            return text
        return f"{_HASH_PREFIX}{hash_identifier(text)}"


class RequestIdFilter(logging.Filter):
    """Attach request_id from context when absent on the record."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "request_id", None) is None:
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True


class SensitiveDataFilter(logging.Filter):
    """Scrub the record's extra fields in place before any formatter runs.

    Runs on the handler, so plain-text output is protected as well as JSON.
    """

    def __init__(self, redactor: Redactor | None = None) -> None:
        super().__init__()
        self.redactor = redactor or Redactor()

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        for key, value in self.redactor.record_extras(record).items():
            setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, event, extras."""

    def __init__(self, *, redactor: Redactor | None = None, ensure_ascii: bool = True) -> None:
        super().__init__()
        self.redactor = redactor or Redactor()
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            payload["request_id"] = request_id

        payload.update(self.redactor.record_extras(record))

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=self.ensure_ascii)


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    if log_settings.output.lower() != "file":
        return logging.StreamHandler(sys.stdout)

    file_path = Path(log_settings.file_path or "logs/throttlegate.log")
    file_path.parent.mkdir(parents=True, exist_ok=True)
    if not log_settings.max_bytes:
        return logging.FileHandler(file_path, encoding="utf-8")
    return RotatingFileHandler(
        file_path,
        maxBytes=log_settings.max_bytes,
        backupCount=log_settings.backup_count,
        encoding="utf-8",
    )


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install the throttlegate handler on the root logger.

    Replaces existing root handlers, so calling it again (one call per
    ``create_app``) does not duplicate output.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.
    """

    cfg = log_settings or settings.log

    handler = _build_handler(cfg)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())

    if cfg.format.lower() == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))

    # http.request from the request id middleware replaces uvicorn's access log.
    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.access").propagate = False
    logging.getLogger("uvicorn.access").disabled = True
