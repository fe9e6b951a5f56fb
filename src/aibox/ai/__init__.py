"""Provider gateway: one streaming chat interface over several backends."""

from .catalog import PROVIDER_DISPLAY_NAMES, static_models
from .gateway import PROVIDER_CLASSES, Backend, ProviderGateway
from .types import ChatTurn, ModelInfo, ModelRef, ProviderKind, Role, StreamEvent

__all__ = [
    "PROVIDER_CLASSES",
    "PROVIDER_DISPLAY_NAMES",
    "Backend",
    "ChatTurn",
    "ModelInfo",
    "ModelRef",
    "ProviderGateway",
    "ProviderKind",
    "Role",
    "StreamEvent",
    "static_models",
]
