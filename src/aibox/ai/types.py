"""Shared value types for the provider gateway."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..errors import AiboxError, ConfigError

MODEL_REF_SEPARATOR = "/"


class ProviderKind(str, Enum):
    """Closed set of backend kinds; the value is the model-string prefix."""

    OPENAI = "openai"
    CLAUDE = "claude"
    OLLAMA = "ollama"
    COPILOT = "copilot"

    @classmethod
    def parse(cls, value: str) -> ProviderKind:
        try:
            return cls(value)
        except ValueError:
            known = ", ".join(kind.value for kind in cls)
            raise ConfigError(f"Unknown provider '{value}' (expected one of: {known})")


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True, slots=True)
class ModelRef:
    """Provider kind + model id parsed from ``"<provider>/<model-id>"``."""

    provider: ProviderKind
    model_id: str

    @classmethod
    def parse(cls, value: str) -> ModelRef:
        """Parse a model string; the model id keeps everything after the first separator."""
        if not isinstance(value, str):
            raise ConfigError("Model reference must be a string")
        prefix, sep, model_id = value.partition(MODEL_REF_SEPARATOR)
        if not sep:
            raise ConfigError(
                f"Model reference '{value}' must look like '<provider>/<model-id>'"
            )
        if not model_id:
            raise ConfigError(f"Model reference '{value}' has an empty model id")
        return cls(provider=ProviderKind.parse(prefix), model_id=model_id)

    def __str__(self) -> str:
        return f"{self.provider.value}{MODEL_REF_SEPARATOR}{self.model_id}"


@dataclass(frozen=True, slots=True)
class ChatTurn:
    """One conversation message; lists of turns keep conversational order."""

    role: Role
    text: str

    @classmethod
    def user(cls, text: str) -> ChatTurn:
        return cls(Role.USER, text)

    @classmethod
    def assistant(cls, text: str) -> ChatTurn:
        return cls(Role.ASSISTANT, text)

    @classmethod
    def system(cls, text: str) -> ChatTurn:
        return cls(Role.SYSTEM, text)

    def to_message(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.text}


@dataclass(frozen=True, slots=True)
class StreamEvent:
    """Incremental chat output.

    ``done`` marks the terminal event of a stream. A terminal event may carry
    the error that ended the stream; deltas emitted before it still stand.
    """

    delta: str = ""
    done: bool = False
    error: AiboxError | None = None

    @classmethod
    def text(cls, delta: str) -> StreamEvent:
        return cls(delta=delta)

    @classmethod
    def finished(cls, error: AiboxError | None = None) -> StreamEvent:
        return cls(done=True, error=error)


@dataclass(frozen=True, slots=True)
class ModelInfo:
    """Model listing entry; ``id`` is the full model reference string."""

    id: str
    name: str
    provider: str
