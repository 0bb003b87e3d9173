"""Key-value persistence for feature-flag state."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import yaml

from src.utils.logger import get_logger

logger = get_logger("tool_router.store")


class SettingsStore(ABC):
    """Abstract key-value store. Writes must be visible to the next read."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any: ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None: ...

    @abstractmethod
    def remove(self, key: str) -> None: ...

    @abstractmethod
    def keys(self) -> list[str]: ...

    def get_int(self, key: str, default: int = 0) -> int:
        value = self.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            return default
        try:
            return int(value)
        except ValueError:
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return default

    def get_str(self, key: str) -> Optional[str]:
        value = self.get(key)
        return value if isinstance(value, str) else None

    def get_str_list(self, key: str) -> Optional[list[str]]:
        value = self.get(key)
        if not isinstance(value, list):
            return None
        return [v for v in value if isinstance(v, str)]


class InMemorySettingsStore(SettingsStore):
    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._values: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._values)


def load_settings(path: Path) -> dict[str, Any]:
    """Load a YAML mapping from path. Returns {} if the file is missing or invalid."""
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error(f"❌ Invalid YAML in {path}: {e}")
        return {}
    except OSError as e:
        logger.error(f"❌ Could not read settings from {path}: {e}")
        return {}
    if not isinstance(raw, dict):
        logger.error(f"❌ Settings file {path} must hold a mapping, got {type(raw).__name__}")
        return {}
    return {str(k): v for k, v in raw.items()}


def save_settings(values: dict[str, Any], path: Path) -> None:
    """Write values to path as YAML, creating parent dirs. Raises OSError on failure."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(
            values,
            f,
            default_flow_style=False,
            sort_keys=True,
            allow_unicode=True,
        )


class YamlSettingsStore(SettingsStore):
    """
    Store backed by a single YAML file.

    The file is read once; every mutation rewrites it. Reads are served from
    memory so they always see the latest write.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._values = load_settings(self.path)

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value
        save_settings(self._values, self.path)

    def remove(self, key: str) -> None:
        if key in self._values:
            del self._values[key]
            save_settings(self._values, self.path)

    def keys(self) -> list[str]:
        return list(self._values)
