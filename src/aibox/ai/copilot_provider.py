"""GitHub Copilot chat provider (OpenAI-compatible, token-gated)."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from openai import APIConnectionError, APIError, InternalServerError, RateLimitError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from ..constants import COPILOT_API_BASE_URL, COPILOT_EDITOR_VERSION, COPILOT_INTEGRATION_ID
from ..logging import before_sleep_log_event
from ..timeouts import (
    DEFAULT_TIMEOUT_SEC,
    RETRY_BACKOFF_INITIAL_SEC,
    RETRY_BACKOFF_MAX_SEC,
    STANDARD_RETRY_ATTEMPTS,
)
from .catalog import model_info
from .openai_provider import OpenAIProvider
from .provider_utils import translate_error
from .types import ModelInfo, ProviderKind


def copilot_headers() -> dict[str, str]:
    """Editor identification headers required by the Copilot API."""
    return {
        "Editor-Version": COPILOT_EDITOR_VERSION,
        "Copilot-Integration-Id": COPILOT_INTEGRATION_ID,
    }


def _is_chat_model(entry: Any) -> bool:
    capabilities = getattr(entry, "capabilities", None)
    if isinstance(capabilities, dict):
        return capabilities.get("type") == "chat"
    return False


class CopilotProvider(OpenAIProvider):
    """Copilot chat completions authorized by a short-lived API token."""

    kind = ProviderKind.COPILOT
    discovers_models = True

    def __init__(
        self,
        api_token: str,
        *,
        base_url: str = COPILOT_API_BASE_URL,
        timeout: int | float = DEFAULT_TIMEOUT_SEC,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(
            api_token,
            base_url=base_url,
            timeout=timeout,
            http_client=http_client,
            default_headers=copilot_headers(),
        )

    @retry(
        retry=retry_if_exception_type(
            (APIConnectionError, RateLimitError, InternalServerError)
        ),
        wait=wait_exponential_jitter(
            initial=RETRY_BACKOFF_INITIAL_SEC,
            max=RETRY_BACKOFF_MAX_SEC,
        ),
        stop=stop_after_attempt(STANDARD_RETRY_ATTEMPTS),
        before_sleep=before_sleep_log_event(
            provider="copilot",
            operation="_fetch_models",
            level=logging.WARNING,
        ),
        reraise=True,
    )
    async def _fetch_models(self) -> list[Any]:
        """GET ``/models`` with retry logic (idempotent)."""
        page = await self.client.models.list()
        return list(page.data)

    async def list_models(self) -> list[ModelInfo]:
        """Return the chat-capable entries of the Copilot catalog."""
        try:
            entries = await self._fetch_models()
        except APIError as e:
            raise translate_error(e) from e

        models: list[ModelInfo] = []
        for entry in entries:
            if not _is_chat_model(entry):
                continue
            name = getattr(entry, "name", None)
            models.append(model_info(self.kind, entry.id, name if isinstance(name, str) else None))
        return models
