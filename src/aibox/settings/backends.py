"""System credential store access via keyring."""

from __future__ import annotations

import sys

import keyring
from keyring.errors import PasswordDeleteError


def _credential_store_name() -> str:
    """Return a human-readable name for the platform's credential store."""
    if sys.platform == "darwin":
        return "macOS Keychain"
    elif sys.platform == "win32":
        return "Windows Credential Manager"
    else:
        return "system credential store"


def load_from_keyring(service: str, account: str) -> str | None:
    """Load a secret from the system credential store; absent -> None."""
    try:
        value = keyring.get_password(service, account)
    except Exception as e:
        raise ValueError(
            f"Failed to access {_credential_store_name()}: {e}\n"
            f"Service: {service}, Account: {account}"
        )
    if not isinstance(value, str) or not value:
        return None
    return value


def store_in_keyring(service: str, account: str, value: str) -> None:
    """Store a secret in the system credential store."""
    try:
        keyring.set_password(service, account, value)
    except Exception as e:
        raise ValueError(f"Failed to store key in {_credential_store_name()}: {e}")


def delete_from_keyring(service: str, account: str) -> None:
    """Delete a secret; deleting an absent secret is not an error."""
    try:
        keyring.delete_password(service, account)
    except PasswordDeleteError:
        return
    except Exception as e:
        raise ValueError(f"Failed to delete key from {_credential_store_name()}: {e}")
