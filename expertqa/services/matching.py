# =============================================================================
# Matching Engine — Request → Experts
# =============================================================================
#
# Three ordered tiers; the first that selects at least one expert wins:
#
#   1. SEMANTIC   request has tags AND some candidate has a fresh tag
#                 embedding → embed ", ".join(tags), assign every candidate
#                 with cosine >= threshold, remember the best one below it
#   2. BEST MATCH tier 1 selected nobody but saw a below-threshold
#                 candidate → assign that single candidate
#   3. GENERIC    still nobody (no tags, no embeddings, provider failure)
#                 → first min(cap, len(pool)) candidates in listed order
#
# A provider failure in tier 1 degrades to tier 3; it never aborts the
# request. Each assignment is its own transaction: insert the row, bump
# assigned_experts_count by +1, move a pending request to in_progress.
# =============================================================================

from __future__ import annotations

import logging

from expertqa.db.store import (
    AssignmentRecord,
    ExpertProfile,
    ExpertRequestRecord,
    ExpertStore,
    join_tags,
)
from expertqa.errors import ProviderError
from expertqa.services.embedder import EmbeddingGateway, cosine_similarity

logger = logging.getLogger(__name__)


class MatchingEngine:
    def __init__(
        self,
        store: ExpertStore,
        embedder: EmbeddingGateway,
        similarity_threshold: float = 0.7,
        fallback_max_experts: int | None = None,
    ):
        self._store = store
        self._embedder = embedder
        self.similarity_threshold = similarity_threshold
        self.fallback_max_experts = fallback_max_experts

    async def assign(
        self,
        request: ExpertRequestRecord,
        candidate_pool: list[ExpertProfile],
    ) -> list[AssignmentRecord]:
        """
        Select experts for `request` and create their assignments.

        `candidate_pool` must already exclude the requesting user. Pairs
        that already have an assignment are skipped.
        """
        selected, tier = await self.select(request, candidate_pool)

        created: list[AssignmentRecord] = []
        for expert in selected:
            assignment = await self._create_assignment(request, expert)
            if assignment is not None:
                created.append(assignment)

        logger.info(
            "Matched request=%s via %s tier: %d selected, %d assigned (pool=%d)",
            request.id, tier, len(selected), len(created), len(candidate_pool),
        )
        return created

    async def select(
        self,
        request: ExpertRequestRecord,
        candidate_pool: list[ExpertProfile],
    ) -> tuple[list[ExpertProfile], str]:
        """Run the tiers without writing anything. Returns (experts, tier name)."""
        above, best_match = await self._semantic_tier(request, candidate_pool)
        if above:
            return above, "semantic"
        if best_match is not None:
            return [best_match], "best-match"
        return self._generic_tier(candidate_pool), "generic"

    async def _semantic_tier(
        self,
        request: ExpertRequestRecord,
        candidate_pool: list[ExpertProfile],
    ) -> tuple[list[ExpertProfile], ExpertProfile | None]:
        eligible = [c for c in candidate_pool if c.has_fresh_embedding]
        if not request.expertise_tags or not eligible:
            return [], None

        try:
            query = await self._embedder.embed(join_tags(request.expertise_tags))
        except ProviderError as e:
            logger.warning(
                "Request tag embedding failed for request=%s, using generic "
                "assignment: %s",
                request.id, e,
            )
            return [], None

        above: list[ExpertProfile] = []
        best_match: ExpertProfile | None = None
        best_score = float("-inf")

        for candidate in eligible:
            try:
                score = cosine_similarity(query, candidate.tags_embedding)
            except ValueError as e:
                logger.warning("Skipping expert=%s: %s", candidate.id, e)
                continue

            logger.debug(
                "request=%s expert=%s similarity=%.4f", request.id, candidate.id, score,
            )
            if score >= self.similarity_threshold:
                above.append(candidate)
            elif score > best_score:
                best_match, best_score = candidate, score

        return above, best_match

    def _generic_tier(self, candidate_pool: list[ExpertProfile]) -> list[ExpertProfile]:
        cap = self.fallback_max_experts
        if cap is None:
            cap = len(candidate_pool)
        return candidate_pool[: min(cap, len(candidate_pool))]

    async def _create_assignment(
        self,
        request: ExpertRequestRecord,
        expert: ExpertProfile,
    ) -> AssignmentRecord | None:
        async with self._store.transaction() as repo:
            assignment = await repo.create_assignment(request.id, expert.id, request.title)
            if assignment is None:
                logger.debug(
                    "Expert=%s already assigned to request=%s", expert.id, request.id,
                )
                return None
            await repo.adjust_request_counters(request.id, assigned_delta=1)
        return assignment
