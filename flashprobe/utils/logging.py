"""
Structured logging for flashprobe.

The oracle's output is a log: one `PASS:` / `WARN:` / `FAIL:` line per check,
and the load side reports violations and actor errors the same way. Everything
goes through standard library logging, configured once by the CLI:

- console mode prints `time | level | logger | message`
- JSON mode prints one object per line and lifts every `extra=` attribute
  (product_id, actor_id, phase, check...) to a top-level key, so a CI job can
  filter the check log without parsing messages

Usage:
    from flashprobe.utils.logging import configure_logging, get_logger

    configure_logging(level="INFO", json_logs=True)
    log = get_logger(__name__)
    log.error("FAIL: stock integrity", extra={"product_id": 1, "check": "stock_conservation"})
"""

from __future__ import annotations

import json
import logging
import logging.config
from typing import Any, Dict, Iterable, Optional

# Attributes every LogRecord carries; anything else arrived through `extra=`.
_RESERVED_ATTRS = frozenset(
    logging.LogRecord(
        name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None
    ).__dict__
) | {"message", "asctime", "taskName"}

# Request-level chatter from the HTTP stack; one line per request under load.
NOISY_LOGGERS = ("httpx", "httpcore")


def _json_formatter(record: logging.LogRecord) -> str:
    payload: Dict[str, Any] = {
        "level": record.levelname,
        "logger": record.name,
        "message": record.getMessage(),
    }
    payload.update(
        (key, value)
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS
    )
    if record.exc_info:
        payload["exc_info"] = logging.Formatter().formatException(record.exc_info)
    return json.dumps(payload, default=str)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        return _json_formatter(record)


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """
    Configure root logging for a CLI run.

    Parameters
    ----------
    level : str
        Root level name ("DEBUG", "INFO", ...).
    json_logs : bool
        Emit one JSON object per line instead of the console format.
    quiet : Iterable[str]
        Loggers capped at WARNING regardless of `level`.
    """
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
                "json": {"()": JsonFormatter},
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "json" if json_logs else "console",
                    "level": level,
                }
            },
            "root": {"handlers": ["default"], "level": level},
            "loggers": {name: {"level": "WARNING"} for name in quiet},
        }
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


__all__ = ["JsonFormatter", "NOISY_LOGGERS", "configure_logging", "get_logger"]
