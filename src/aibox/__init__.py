"""aibox - multi-provider AI chat with a local retrieval knowledge base."""

from .constants import APP_VERSION
from .errors import (
    AiboxError,
    AuthError,
    Cancelled,
    ConfigError,
    DimensionMismatchError,
    DocumentExistsError,
    NetworkError,
    ProviderError,
)
from .service import AiBox

__version__ = APP_VERSION

__all__ = [
    "AiBox",
    "AiboxError",
    "AuthError",
    "Cancelled",
    "ConfigError",
    "DimensionMismatchError",
    "DocumentExistsError",
    "NetworkError",
    "ProviderError",
    "__version__",
]
