from __future__ import annotations


class MakeEbookError(Exception):
    """Base class for errors raised by makeebook."""


class ConfigError(MakeEbookError, ValueError):
    """Raised when a configuration file holds an invalid value."""


__all__ = ["MakeEbookError", "ConfigError"]
