"""Logging setup for the engine and its CLI.

Records go to stderr so command output on stdout stays machine-readable.
Two renderings are available: one JSON object per line (the default, for log
shippers) and a compact ``key=value`` text form for terminals. Anything passed
through ``extra={...}`` is carried along in both.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any, Literal

LogFormat = Literal["json", "text"]

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_STANDARD_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", logging.NOTSET, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}

# Provider SDKs and their HTTP stacks are chatty at DEBUG.
QUIET_LOGGERS: tuple[str, ...] = ("openai", "httpx", "httpcore", "urllib3", "llama_cpp")


def record_extra(record: logging.LogRecord) -> dict[str, Any]:
    """Return the fields a caller attached to ``record`` via ``extra``."""

    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class JsonFormatter(logging.Formatter):
    """Render log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra = record_extra(record)
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Render ``time LEVEL logger: message key=value ...`` lines."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        stamp = datetime.fromtimestamp(record.created, tz=UTC).strftime("%H:%M:%S")
        line = f"{stamp} {record.levelname:<7} {record.name}: {record.getMessage()}"

        fields = " ".join(
            f"{key}={json.dumps(value, ensure_ascii=False, default=str)}"
            for key, value in record_extra(record).items()
        )
        if fields:
            line = f"{line} {fields}"

        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


_FORMATTERS: dict[str, type[logging.Formatter]] = {
    "json": JsonFormatter,
    "text": TextFormatter,
}


def configure_logging(
    level: str,
    fmt: LogFormat = "json",
    quiet: Iterable[str] = QUIET_LOGGERS,
) -> None:
    """Point the root logger at stderr with the chosen rendering.

    Args:
        level: Root level name, case-insensitive.
        fmt: ``"json"`` or ``"text"``.
        quiet: Loggers held at INFO or above even when the root is at DEBUG.

    Raises:
        ValueError: Unknown ``fmt``.
    """

    try:
        formatter_cls = _FORMATTERS[fmt]
    except KeyError:
        raise ValueError(f"Unknown log format {fmt!r}; expected one of {sorted(_FORMATTERS)}") from None

    root = logging.getLogger()

    # Re-configuring must not stack handlers.
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(formatter_cls())

    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in quiet:
        logging.getLogger(name).setLevel(max(root.level, logging.INFO))
