"""Typed application configuration loaded from a JSON file."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .constants import (
    DEFAULT_CHUNK_OVERLAP,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CLAUDE_MAX_TOKENS,
    DEFAULT_COPILOT_CLIENT_ID,
    DEFAULT_DATABASE_FILE,
    DEFAULT_EMBEDDING_BATCH_SIZE,
    DEFAULT_EMBEDDING_MODEL,
    DEFAULT_LOGS_DIR,
    DEFAULT_RETRIEVAL_TOP_K,
    DEFAULT_SETTINGS_FILE,
    TOKEN_SAFETY_MARGIN_SEC,
)
from .errors import ConfigError
from .timeouts import DEFAULT_TIMEOUT_SEC

_INT_FIELDS = (
    "chunk_size",
    "chunk_overlap",
    "embedding_batch_size",
    "retrieval_top_k",
    "token_safety_margin_sec",
    "claude_max_tokens",
)
_STR_FIELDS = (
    "settings_file",
    "database_file",
    "logs_dir",
    "embedding_model",
    "copilot_client_id",
)


@dataclass(slots=True)
class AppConfig:
    """Runtime configuration consumed by the service and CLI layers."""

    settings_file: str = DEFAULT_SETTINGS_FILE
    database_file: str = DEFAULT_DATABASE_FILE
    logs_dir: str = DEFAULT_LOGS_DIR
    timeout: int | float = DEFAULT_TIMEOUT_SEC
    chunk_size: int = DEFAULT_CHUNK_SIZE
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP
    embedding_batch_size: int = DEFAULT_EMBEDDING_BATCH_SIZE
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    retrieval_top_k: int = DEFAULT_RETRIEVAL_TOP_K
    token_safety_margin_sec: int = TOKEN_SAFETY_MARGIN_SEC
    claude_max_tokens: int = DEFAULT_CLAUDE_MAX_TOKENS
    copilot_client_id: str = DEFAULT_COPILOT_CLIENT_ID
    default_model: str | None = None
    use_keyring: bool = False
    extras: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ConfigError("'chunk_size' must be positive")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ConfigError("'chunk_overlap' must be >= 0 and less than 'chunk_size'")
        if self.embedding_batch_size <= 0:
            raise ConfigError("'embedding_batch_size' must be positive")
        if self.token_safety_margin_sec < 0:
            raise ConfigError("'token_safety_margin_sec' must not be negative")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AppConfig:
        """Create typed config from raw mapped JSON data."""
        if not isinstance(data, Mapping):
            raise ConfigError("Config must be a dictionary-like mapping")

        values: dict[str, Any] = {}
        for key in _INT_FIELDS:
            if key in data:
                value = data[key]
                if isinstance(value, bool) or not isinstance(value, int):
                    raise ConfigError(f"'{key}' must be an integer")
                values[key] = value

        for key in _STR_FIELDS:
            if key in data:
                value = data[key]
                if not isinstance(value, str) or not value.strip():
                    raise ConfigError(f"'{key}' must be a non-empty string")
                values[key] = value

        if "timeout" in data:
            timeout = data["timeout"]
            if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout < 0:
                raise ConfigError("'timeout' must be a non-negative number")
            values["timeout"] = timeout

        if data.get("default_model") is not None:
            values["default_model"] = str(data["default_model"])

        if "use_keyring" in data:
            if not isinstance(data["use_keyring"], bool):
                raise ConfigError("'use_keyring' must be true or false")
            values["use_keyring"] = data["use_keyring"]

        known = set(_INT_FIELDS) | set(_STR_FIELDS) | {"timeout", "default_model", "use_keyring"}
        values["extras"] = {str(k): v for k, v in data.items() if k not in known}
        return cls(**values)

    def resolved_path(self, value: str) -> Path:
        """Expand ``~`` in a configured path."""
        return Path(value).expanduser()


def load_config(path: str | None) -> AppConfig:
    """Load config from a JSON file; a missing path yields the defaults."""
    if path is None:
        return AppConfig()

    config_path = Path(path).expanduser()
    if not config_path.exists():
        return AppConfig()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file {config_path}: {e}")

    return AppConfig.from_dict(data)
