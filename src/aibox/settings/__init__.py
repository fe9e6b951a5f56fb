"""Settings/credential store collaborators."""

from .store import (
    JsonSettingsStore,
    KeyringSettingsStore,
    MemorySettingsStore,
    SettingsStore,
    mask_secret,
    masked_settings,
    validate_setting_key,
)

__all__ = [
    "JsonSettingsStore",
    "KeyringSettingsStore",
    "MemorySettingsStore",
    "SettingsStore",
    "mask_secret",
    "masked_settings",
    "validate_setting_key",
]
