# =============================================================================
# RAG Corpus Index — Accepted Expert Answers as Retrieval Context
# =============================================================================
#
# The corpus is a view over accepted assignments with a non-empty response.
# Each entry's vector embeds "<question> <response>".
#
# RETRIEVAL:
#   1. Load every accepted answer
#   2. Embed the query once (failure raises; callers treat RAG as optional)
#   3. For each answer without a stored vector, embed it now and write it
#      back (write-through backfill); a failure skips only that answer
#   4. Keep cosine >= threshold, sort descending, truncate to limit
#
# Embeddings are computed at most once per answer: ensure_embedding() and
# the retrieval backfill both short-circuit when a vector is already
# stored.
#
# Similarity is computed in Python (numpy) rather than with a pgvector
# distance operator, so answers without a stored vector can be backfilled
# in the same pass.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass

from expertqa.db.store import AcceptedAnswer, ExpertStore
from expertqa.errors import ProviderError, StorageError
from expertqa.services.embedder import EmbeddingGateway, cosine_similarity

logger = logging.getLogger(__name__)


@dataclass
class RagEntry:
    """One retrieved answer. `similarity` is computed per query, never stored."""

    assignment_id: str
    question: str
    answer: str
    similarity: float


@dataclass
class BackfillSummary:
    embedded: int = 0
    skipped: int = 0
    failed: int = 0


def format_context_blocks(entries: list[RagEntry]) -> str:
    """Render entries as [EXPERT CONTEXT] blocks for a system prompt."""
    return "\n\n".join(
        f"[EXPERT CONTEXT]\nQuestion: {e.question}\nAnswer: {e.answer}\n[/EXPERT CONTEXT]"
        for e in entries
    )


class RagCorpusIndex:
    def __init__(
        self,
        store: ExpertStore,
        embedder: EmbeddingGateway,
        default_limit: int = 3,
        default_threshold: float = 0.7,
    ):
        self._store = store
        self._embedder = embedder
        self.default_limit = default_limit
        self.default_threshold = default_threshold

    async def retrieve(
        self,
        query: str,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[RagEntry]:
        """
        Rank accepted answers by similarity to `query`.

        Raises:
            ProviderError: If the query itself cannot be embedded.
        """
        limit = self.default_limit if limit is None else limit
        threshold = self.default_threshold if threshold is None else threshold

        async with self._store.transaction() as repo:
            answers = await repo.list_accepted_answers()
        if not answers or limit <= 0:
            return []

        query_vec = await self._embedder.embed(query)

        entries: list[RagEntry] = []
        for answer in answers:
            vector = answer.response_embedding
            if vector is None:
                vector = await self._backfill(answer)
                if vector is None:
                    continue
            try:
                score = cosine_similarity(query_vec, vector)
            except ValueError as e:
                logger.warning("Skipping assignment=%s: %s", answer.assignment_id, e)
                continue
            if score >= threshold:
                entries.append(RagEntry(
                    assignment_id=answer.assignment_id,
                    question=answer.question,
                    answer=answer.response,
                    similarity=score,
                ))

        entries.sort(key=lambda e: e.similarity, reverse=True)
        logger.info(
            "RAG retrieval: %d of %d answers >= %.2f, returning %d",
            len(entries), len(answers), threshold, min(limit, len(entries)),
        )
        return entries[:limit]

    async def _backfill(self, answer: AcceptedAnswer) -> list[float] | None:
        try:
            vector = await self._embedder.embed(answer.embedding_text)
        except ProviderError as e:
            logger.warning(
                "Lazy embedding failed for assignment=%s, skipping: %s",
                answer.assignment_id, e,
            )
            return None

        try:
            async with self._store.transaction() as repo:
                await repo.set_response_embedding(answer.assignment_id, vector)
        except StorageError as e:
            logger.warning(
                "Could not persist embedding for assignment=%s: %s",
                answer.assignment_id, e,
            )
        else:
            logger.debug("Backfilled embedding for assignment=%s", answer.assignment_id)
        return vector

    async def ensure_embedding(self, assignment_id: str) -> bool:
        """
        Embed an accepted answer if it has no stored vector.

        Returns True if a vector was computed, False if nothing was needed
        (already embedded, not accepted, or no response).

        Raises:
            ProviderError: If the embedding call fails.
        """
        async with self._store.transaction() as repo:
            answers = await repo.list_accepted_answers([assignment_id])
        if not answers:
            logger.debug("Assignment=%s is not an accepted answer", assignment_id)
            return False

        answer = answers[0]
        if answer.response_embedding is not None:
            return False

        vector = await self._embedder.embed(answer.embedding_text)
        async with self._store.transaction() as repo:
            await repo.set_response_embedding(assignment_id, vector)
        logger.info("Stored response embedding for assignment=%s", assignment_id)
        return True

    async def backfill(self, assignment_ids: list[str] | None = None) -> BackfillSummary:
        """Embed every accepted answer still missing a vector."""
        async with self._store.transaction() as repo:
            answers = await repo.list_accepted_answers(assignment_ids)

        summary = BackfillSummary()
        for answer in answers:
            if answer.response_embedding is not None:
                summary.skipped += 1
                continue
            try:
                vector = await self._embedder.embed(answer.embedding_text)
                async with self._store.transaction() as repo:
                    await repo.set_response_embedding(answer.assignment_id, vector)
            except (ProviderError, StorageError) as e:
                logger.warning("Backfill failed for assignment=%s: %s", answer.assignment_id, e)
                summary.failed += 1
            else:
                summary.embedded += 1

        logger.info(
            "Embedding backfill: %d embedded, %d skipped, %d failed",
            summary.embedded, summary.skipped, summary.failed,
        )
        return summary
