"""Static model registry for providers without model discovery."""

from __future__ import annotations

from .types import ModelInfo, ModelRef, ProviderKind

PROVIDER_DISPLAY_NAMES: dict[ProviderKind, str] = {
    ProviderKind.OPENAI: "OpenAI",
    ProviderKind.CLAUDE: "Anthropic",
    ProviderKind.OLLAMA: "Ollama",
    ProviderKind.COPILOT: "GitHub Copilot",
}

# Model registry: provider -> (model id, display name)
# - OpenAI: https://platform.openai.com/docs/models
# - Claude: https://docs.anthropic.com/en/docs/about-claude/models
STATIC_MODEL_REGISTRY: dict[ProviderKind, list[tuple[str, str]]] = {
    ProviderKind.OPENAI: [
        ("gpt-4o", "GPT-4o"),
        ("gpt-4o-mini", "GPT-4o Mini"),
        ("gpt-4.1", "GPT-4.1"),
    ],
    ProviderKind.CLAUDE: [
        ("claude-sonnet-4-20250514", "Claude Sonnet 4"),
        ("claude-3-5-haiku-20241022", "Claude Haiku 3.5"),
    ],
}


def model_info(provider: ProviderKind, model_id: str, name: str | None = None) -> ModelInfo:
    """Build a listing entry whose id round-trips through ModelRef.parse."""
    return ModelInfo(
        id=str(ModelRef(provider, model_id)),
        name=name or model_id,
        provider=PROVIDER_DISPLAY_NAMES[provider],
    )


def static_models(provider: ProviderKind) -> list[ModelInfo]:
    """Return the configured model list for a provider (no network call)."""
    return [
        model_info(provider, model_id, name)
        for model_id, name in STATIC_MODEL_REGISTRY.get(provider, [])
    ]
