from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

from .logging_utils import debug_log

DEBOUNCE_KEY = "autosave.debounce_seconds"


class PreferenceStore:
    """Local key/value preferences in a JSON file.

    Nothing here is authoritative: a missing or corrupt file reads as empty,
    and failed writes are logged and reported as ``False``.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _read(self) -> dict[str, Any]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return {}
        return raw if isinstance(raw, dict) else {}

    def _write(self, data: dict[str, Any]) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        except (OSError, TypeError, ValueError) as exc:
            debug_log(f"Failed to write preferences to {self.path}: {exc}")
            return False
        return True

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._read().get(key, default)

    def set(self, key: str, value: Any) -> bool:
        with self._lock:
            data = self._read()
            data[key] = value
            return self._write(data)

    def remove(self, key: str) -> bool:
        with self._lock:
            data = self._read()
            if key not in data:
                return True
            del data[key]
            return self._write(data)

    def all(self) -> dict[str, Any]:
        with self._lock:
            return self._read()

    def debounce_seconds(self) -> float | None:
        value = self.get(DEBOUNCE_KEY)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
            return float(value)
        return None

    def remember_debounce(self, seconds: float) -> bool:
        return self.set(DEBOUNCE_KEY, float(seconds))


__all__ = ["DEBOUNCE_KEY", "PreferenceStore"]
