"""Key-value settings stores used for base URLs, API keys and tokens."""

from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Protocol

from ..constants import SECRET_SETTING_KEYS, SETTING_KEYS
from ..errors import ConfigError


class SettingsStore(Protocol):
    """Opaque read/write by key; storage format is the store's business."""

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


def validate_setting_key(key: str) -> None:
    """Reject keys outside the known settings set."""
    if key not in SETTING_KEYS:
        raise ConfigError(f"Unknown setting key: {key}")


class MemorySettingsStore:
    """In-process settings store."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        validate_setting_key(key)
        with self._lock:
            self._values[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._values)


class JsonSettingsStore:
    """Settings persisted as a flat JSON object.

    Writes go to a temp file in the same directory and are renamed into
    place so a crash never leaves a half-written file behind.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data: Any = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in settings file {self.path}: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"Settings file {self.path} must contain a JSON object")
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _write(self, values: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(self.path.parent), prefix=".settings-", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(values, f, indent=2, ensure_ascii=False, sort_keys=True)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        validate_setting_key(key)
        with self._lock:
            values = self._read()
            values[key] = value
            self._write(values)

    def delete(self, key: str) -> None:
        with self._lock:
            values = self._read()
            if key in values:
                del values[key]
                self._write(values)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._read())


class KeyringSettingsStore:
    """Route secret keys to the system credential store, the rest to a fallback."""

    def __init__(self, fallback: SettingsStore, service: str = "aibox") -> None:
        self.fallback = fallback
        self.service = service

    def get(self, key: str) -> str | None:
        if key in SECRET_SETTING_KEYS:
            from .backends import load_from_keyring

            return load_from_keyring(self.service, key)
        return self.fallback.get(key)

    def set(self, key: str, value: str) -> None:
        validate_setting_key(key)
        if key in SECRET_SETTING_KEYS:
            from .backends import store_in_keyring

            store_in_keyring(self.service, key, value)
            return
        self.fallback.set(key, value)

    def delete(self, key: str) -> None:
        if key in SECRET_SETTING_KEYS:
            from .backends import delete_from_keyring

            delete_from_keyring(self.service, key)
            return
        self.fallback.delete(key)

    def keys(self) -> list[str]:
        present = [key for key in SECRET_SETTING_KEYS if self.get(key) is not None]
        fallback_keys = getattr(self.fallback, "keys", None)
        others = fallback_keys() if callable(fallback_keys) else []
        return sorted(set(present) | set(others))


def mask_secret(value: str) -> str:
    """Mask a secret for display, keeping the first and last four chars."""
    if len(value) > 8:
        return f"{value[:4]}...{value[-4:]}"
    return "*" * len(value)


def masked_settings(store: SettingsStore) -> dict[str, str]:
    """Return known settings with secret values masked for display."""
    result: dict[str, str] = {}
    for key in SETTING_KEYS:
        value = store.get(key)
        if value is None:
            continue
        result[key] = mask_secret(value) if key in SECRET_SETTING_KEYS else value
    return result
