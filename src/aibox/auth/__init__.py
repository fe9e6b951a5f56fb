"""Copilot credential lifecycle (GitHub device flow + API token cache)."""

from .credentials import (
    CredentialManager,
    CredentialPhase,
    DeviceCode,
    PollResult,
    PollStatus,
)

__all__ = [
    "CredentialManager",
    "CredentialPhase",
    "DeviceCode",
    "PollResult",
    "PollStatus",
]
