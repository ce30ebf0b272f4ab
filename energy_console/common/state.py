"""
Persistent Key-Value State

File-based store for operator preferences and the connection plan.
One JSON file per key, written with write-and-rename so a crash never
leaves a half-written file behind.
"""

import json
import os
import time
from pathlib import Path
from typing import Any

from .logging_setup import get_service_logger

logger = get_service_logger("state")


# Keys used across services
CONNECTIONS_KEY = "connections"
MODE2_ENABLED_KEY = "mode2_enabled"
MODE2_LAST_APPLIED_KEY = "mode2_last_applied"
AUTO_ESTIMATE_ENABLED_KEY = "auto_estimate_enabled"
AUTO_ESTIMATE_TUNING_KEY = "auto_estimate_tuning"
SAFE_MODE_KEY = "safe_mode"
PREFER_MANUAL_KEY = "prefer_manual_estimates"
RUN_HISTORY_KEY = "run_history"


def power_estimate_key(device_name: str) -> str:
    """Key for a device's nameplate estimate"""
    return f"power_estimate.{str(device_name or '').strip()}"


def generator_load_key(device_name: str) -> str:
    """Key for the last setLoad value sent to a generator"""
    return f"generator_load.{str(device_name or '').strip().lower()}"


class MemoryStore:
    """In-memory store with the same interface as KeyValueStore"""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        # Round-trip through JSON so callers never share mutable state
        self._data[key] = json.loads(json.dumps(value))

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class KeyValueStore:
    """
    Simple file-based key-value store.

    Values must be JSON-serializable. Reads are cached for a short time
    so the telemetry and balance loops do not hit the disk on every tick.
    """

    def __init__(self, directory: str | Path, cache_ttl: float = 1.0):
        self.directory = Path(directory)
        self._cache: dict[str, tuple[Any, float]] = {}
        self._cache_ttl = cache_ttl

    def _ensure_dir(self) -> None:
        """Ensure state directory exists"""
        self.directory.mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        """Get file path for state key"""
        safe_key = "".join(c if c.isalnum() or c in "._-" else "_" for c in key)
        return self.directory / f"{safe_key}.json"

    def get(self, key: str, default: Any = None) -> Any:
        """
        Read a value.

        Args:
            key: State key
            default: Returned when the key is missing or unreadable

        Returns:
            Stored value or default
        """
        cached = self._cache.get(key)
        if cached and time.time() - cached[1] < self._cache_ttl:
            return json.loads(json.dumps(cached[0]))

        path = self._get_path(key)
        if not path.exists():
            return default

        try:
            with open(path, "r", encoding="utf-8") as f:
                value = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable state file {path.name}: {e}")
            return default

        self._cache[key] = (json.loads(json.dumps(value)), time.time())
        return value

    def set(self, key: str, value: Any) -> None:
        """Write a value (atomic rename)"""
        self._ensure_dir()
        path = self._get_path(key)
        temp_path = path.with_suffix(".tmp")

        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(value, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        temp_path.replace(path)

        self._cache[key] = (json.loads(json.dumps(value)), time.time())

    def delete(self, key: str) -> None:
        """Remove a key"""
        self._cache.pop(key, None)
        path = self._get_path(key)
        if path.exists():
            path.unlink()

    def keys(self) -> list[str]:
        if not self.directory.exists():
            return []
        return [p.stem for p in self.directory.glob("*.json")]
