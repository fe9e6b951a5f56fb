"""Typed exceptions for aibox."""

from __future__ import annotations


class AiboxError(Exception):
    """Base exception for aibox failures."""


class NetworkError(AiboxError):
    """Raised for transport-level failures (connect, read, timeout).

    Generally safe for the caller to retry the whole operation later.
    """


class AuthError(AiboxError):
    """Raised when a credential is missing, invalid, expired or revoked.

    Never retried automatically; the user has to authenticate again.
    """


class ProviderError(AiboxError):
    """Raised when a remote service returned a structured failure."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigError(AiboxError):
    """Raised for unresolvable model references or missing settings."""


class DimensionMismatchError(AiboxError):
    """Raised when an embedding's length differs from the stored dimension."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class Cancelled(AiboxError):
    """Raised or reported when the caller stopped a stream on purpose."""


class DocumentExistsError(AiboxError):
    """Raised when ingesting under a document id that is already stored."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document {document_id} already exists")
        self.document_id = document_id
