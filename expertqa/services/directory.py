# =============================================================================
# Expert Directory — Profiles and Tag Embeddings
# =============================================================================
#
# Lookup and listing of expert profiles, plus profile edits. Whenever tags
# change, the tag embedding is recomputed from ", ".join(tags) and stored
# together with that exact string. A failed or skipped embedding leaves the
# expert without one: ineligible for semantic matching, never an error.
# =============================================================================

from __future__ import annotations

import logging

from expertqa.db.store import ExpertProfile, ExpertStore, join_tags
from expertqa.errors import NotFoundError, ProviderError
from expertqa.services.embedder import EmbeddingGateway
from expertqa.services.tags import validate_tags

logger = logging.getLogger(__name__)


class ExpertDirectory:
    def __init__(self, store: ExpertStore, embedder: EmbeddingGateway):
        self._store = store
        self._embedder = embedder

    async def list_candidates(self, exclude_user_id: str | None = None) -> list[ExpertProfile]:
        """Every expert except `exclude_user_id`, in stable listing order."""
        async with self._store.transaction() as repo:
            return await repo.list_expert_profiles(exclude_user_id=exclude_user_id)

    async def get_profile(self, user_id: str) -> ExpertProfile:
        async with self._store.transaction() as repo:
            profile = await repo.get_expert_profile(user_id)
        if profile is None:
            raise NotFoundError(f"User {user_id} not found")
        return profile

    async def update_profile(
        self,
        user_id: str,
        tags: list[str],
        expertise: str | None = None,
    ) -> ExpertProfile:
        """
        Replace an expert's tags (and optionally free-text expertise).

        The tag embedding is recomputed outside the write transaction; a
        provider failure stores no embedding.

        Raises:
            ValidationError: If any tag is outside the vocabulary.
            NotFoundError: If the user does not exist.
        """
        tags = validate_tags(tags)
        current = await self.get_profile(user_id)
        source = join_tags(tags)

        embedding: list[float] | None = None
        if tags:
            if current.tags_embedding is not None and current.tags_embedding_source == source:
                embedding = current.tags_embedding
            else:
                try:
                    embedding = await self._embedder.embed(source)
                except ProviderError as e:
                    logger.warning(
                        "Tag embedding failed for user=%s; profile saved without one: %s",
                        user_id, e,
                    )

        async with self._store.transaction() as repo:
            profile = await repo.update_expert_profile(
                user_id,
                expertise_tags=tags,
                expertise=expertise if expertise is not None else current.expertise,
                tags_embedding=embedding,
                tags_embedding_source=source if embedding is not None else None,
            )

        logger.info(
            "Updated profile user=%s (%d tags, embedding=%s)",
            user_id, len(tags), "yes" if embedding is not None else "no",
        )
        return profile
