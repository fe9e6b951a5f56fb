"""Text embedding through an OpenAI-compatible embeddings endpoint."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import httpx
import numpy as np
from openai import APIError, AsyncOpenAI

from ..ai.provider_utils import translate_error
from ..constants import DEFAULT_EMBEDDING_MODEL, DEFAULT_OPENAI_BASE_URL
from ..errors import ProviderError
from ..logging import log_event
from ..timeouts import DEFAULT_TIMEOUT_SEC, build_httpx_timeout
from .vector_store import check_dimension


class EmbeddingClient:
    """Turn text batches into vectors, one request per batch.

    A batch either succeeds as a whole or raises; partial results are never
    returned. Requests are not retried.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_OPENAI_BASE_URL,
        model: str = DEFAULT_EMBEDDING_MODEL,
        timeout: int | float = DEFAULT_TIMEOUT_SEC,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=build_httpx_timeout(timeout),
            max_retries=0,
            http_client=http_client,
        )
        self.model = model
        self._owns_client = http_client is None

    async def embed(
        self,
        texts: Sequence[str],
        *,
        expected_dimension: int | None = None,
    ) -> list[np.ndarray]:
        """Embed texts, preserving input order.

        Raises:
            NetworkError / AuthError / ProviderError: The request failed
            DimensionMismatchError: Vectors differ from ``expected_dimension``
        """
        if not texts:
            return []

        log_event(
            "embedding_request",
            level=logging.INFO,
            model=self.model,
            batch_size=len(texts),
            input_chars=sum(len(text) for text in texts),
        )
        try:
            response = await self.client.embeddings.create(
                model=self.model,
                input=list(texts),
                encoding_format="float",
            )
        except APIError as e:
            error = translate_error(e)
            log_event(
                "embedding_error",
                level=logging.ERROR,
                model=self.model,
                batch_size=len(texts),
                error_type=type(error).__name__,
                error=str(error),
            )
            raise error from e

        items = sorted(response.data, key=lambda item: item.index)
        if len(items) != len(texts):
            raise ProviderError(
                f"Embedding response has {len(items)} vectors for {len(texts)} inputs"
            )

        vectors = [np.asarray(item.embedding, dtype=np.float64) for item in items]
        dimension = expected_dimension
        for vector in vectors:
            if vector.ndim != 1 or vector.shape[0] == 0:
                raise ProviderError("Embedding response contains an empty vector")
            if dimension is None:
                dimension = int(vector.shape[0])
            check_dimension(vector, dimension)
        return vectors

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.close()
