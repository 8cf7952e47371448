from __future__ import annotations

import sys
from copy import copy, deepcopy
from typing import Any
from urllib.parse import unquote

from uvicorn.config import LOGGING_CONFIG
from uvicorn.logging import AccessFormatter as UvicornAccessFormatter

_DEBUG_LOG = False


def set_debug_logging(enabled: bool) -> None:
    global _DEBUG_LOG
    _DEBUG_LOG = enabled


def debug_enabled() -> bool:
    return _DEBUG_LOG


def debug_log(message: str) -> None:
    if _DEBUG_LOG:
        print(f"[makeebook debug] {message}", file=sys.stderr)


def _decode_path(value: str) -> str:
    # Book ids and sort keys arrive percent-encoded in access log lines.
    try:
        return unquote(value, encoding="utf-8", errors="replace")
    except (TypeError, UnicodeError):
        return value


class Utf8AccessFormatter(UvicornAccessFormatter):
    """Access log formatter that shows request paths decoded."""

    def formatMessage(self, record):  # type: ignore[override]
        args = record.args
        if not isinstance(args, tuple) or len(args) != 5:
            return super().formatMessage(record)
        client_addr, method, full_path, http_version, status_code = args
        if not isinstance(full_path, str):
            return super().formatMessage(record)
        new_record = copy(record)
        new_record.args = (client_addr, method, _decode_path(full_path), http_version, status_code)
        return super().formatMessage(new_record)


def build_uvicorn_log_config(debug: bool = False) -> dict[str, Any]:
    """Uvicorn logging config for ``makeebook serve``.

    Access lines go through :class:`Utf8AccessFormatter`; with ``debug``
    every uvicorn logger is lowered to DEBUG.
    """
    config = deepcopy(LOGGING_CONFIG)
    formatter = config.get("formatters", {}).get("access")
    if isinstance(formatter, dict):
        formatter["()"] = "makeebook.logging_utils.Utf8AccessFormatter"
    if debug:
        for logger in config.get("loggers", {}).values():
            if isinstance(logger, dict):
                logger["level"] = "DEBUG"
    return config


__all__ = [
    "Utf8AccessFormatter",
    "build_uvicorn_log_config",
    "debug_enabled",
    "debug_log",
    "set_debug_logging",
]
