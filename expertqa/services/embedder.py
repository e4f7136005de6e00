# =============================================================================
# Embedding Gateway — Text → Vector, Vector × Vector → Similarity
# =============================================================================
#
# Every embedding in the system goes through this module:
#   - expert tag embeddings    (", ".join(tags))
#   - request tag embeddings   (", ".join(tags))
#   - RAG corpus embeddings    (question + " " + response)
#   - RAG query embeddings
# so all cosine scores are comparable.
#
# Uses any OpenAI-compatible embedding API (OpenAI, DashScope, ...) through
# the OpenAI SDK with a configurable base_url. The SDK client is sync; async
# callers go through asyncio.to_thread().
#
# ARCHITECTURE:
#   EmbeddingGateway (Protocol)
#   ├── OpenAIEmbeddingGateway
#   │   ├── embed_batch()   — sync, sub-batched, order-preserving
#   │   └── embed()         — async single text
#   └── cosine_similarity() — numpy, shared by matching and RAG
#
# No retries here. Callers decide how to degrade (see errors.py).
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

import numpy as np
from openai import OpenAI, OpenAIError

from expertqa.config import Settings, settings as default_settings
from expertqa.errors import ProviderError

logger = logging.getLogger(__name__)


class EmbeddingGateway(Protocol):
    """Converts text into a fixed-dimension vector."""

    async def embed(self, text: str) -> list[float]:
        """
        Embed one text.

        Raises:
            ProviderError: If the provider call fails or returns no vector.
        """
        ...


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity in [-1, 1].

    A zero vector has similarity 0.0 with everything.

    Raises:
        ValueError: If the vectors differ in dimension.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(
            f"Vector dimension mismatch: {va.shape[0]} vs {vb.shape[0]}"
        )

    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


class OpenAIEmbeddingGateway:
    """
    Embedding gateway backed by an OpenAI-compatible embeddings endpoint.

    API key resolution order:
      1. OPENAI_API_KEY (explicit embedding key)
      2. LLM_API_KEY (shared key, e.g. one DashScope key for both)

    The client is created lazily so that constructing the gateway (app
    startup, tests) never requires a key.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or default_settings
        self._client: OpenAI | None = None

    def _get_client(self) -> OpenAI:
        if self._client is None:
            resolved_key = self._settings.openai_api_key or self._settings.llm_api_key
            if not resolved_key:
                raise ProviderError(
                    "No API key configured for embeddings. "
                    "Set OPENAI_API_KEY or LLM_API_KEY in .env"
                )

            client_kwargs: dict = {"api_key": resolved_key}
            if self._settings.embedding_base_url:
                client_kwargs["base_url"] = self._settings.embedding_base_url

            self._client = OpenAI(**client_kwargs)
            logger.info(
                "Initialized embedding client (model=%s, base_url=%s)",
                self._settings.embedding_model,
                self._settings.embedding_base_url or "https://api.openai.com/v1",
            )
        return self._client

    def embed_batch(
        self,
        texts: Sequence[str],
        batch_size: int | None = None,
    ) -> list[list[float]]:
        """
        Embed many texts, preserving input order.

        Texts are sent in sub-batches of `batch_size` (default
        settings.embedding_batch_size) to stay within request limits.

        Raises:
            ProviderError: On any SDK failure or an empty vector.
        """
        if not texts:
            return []

        client = self._get_client()
        _batch_size = batch_size or self._settings.embedding_batch_size
        all_embeddings: list[list[float]] = [[] for _ in texts]

        for i in range(0, len(texts), _batch_size):
            batch = list(texts[i : i + _batch_size])
            create_kwargs: dict = {
                "model": self._settings.embedding_model,
                "input": batch,
            }
            if self._settings.embedding_dimensions:
                create_kwargs["dimensions"] = self._settings.embedding_dimensions

            try:
                response = client.embeddings.create(**create_kwargs)
            except OpenAIError as e:
                raise ProviderError(f"Embedding call failed: {e}") from e

            # Sort by index so output order always matches input order
            for item in sorted(response.data, key=lambda x: x.index):
                all_embeddings[i + item.index] = item.embedding

            logger.debug(
                "Embedded batch %d–%d of %d texts (%d prompt tokens)",
                i + 1,
                min(i + _batch_size, len(texts)),
                len(texts),
                response.usage.prompt_tokens if response.usage else 0,
            )

        if any(not vec for vec in all_embeddings):
            raise ProviderError("Embedding provider returned an empty vector")
        return all_embeddings

    async def embed(self, text: str) -> list[float]:
        result = await asyncio.to_thread(self.embed_batch, [text], 1)
        return result[0]
