# =============================================================================
# Unit Tests — Expertise Tags, Expert Directory, Levels
# =============================================================================

from __future__ import annotations

import asyncio
import json

import pytest

from expertqa.errors import NotFoundError, ProviderError, ValidationError
from expertqa.services.directory import ExpertDirectory
from expertqa.services.levels import (
    calculate_level,
    calculate_progress_to_next_level,
    xp_for_level,
)
from expertqa.services.tags import (
    ALL_EXPERTISE_TAGS,
    extract_expertise_tags,
    generate_expertise_tags,
    validate_tags,
)
from tests.fakes import InMemoryExpertStore, ScriptedEmbedder, ScriptedProvider


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Test: Tag vocabulary
# ---------------------------------------------------------------------------


class TestTags:
    def test_vocabulary_has_no_duplicates(self):
        assert len(ALL_EXPERTISE_TAGS) == len(set(ALL_EXPERTISE_TAGS))

    def test_validate_keeps_order_and_drops_duplicates(self):
        assert validate_tags(["Finance", "DevOps", "Finance"]) == ["Finance", "DevOps"]

    def test_validate_rejects_unknown(self):
        with pytest.raises(ValidationError, match="Underwater Basket Weaving"):
            validate_tags(["Finance", "Underwater Basket Weaving"])

    def test_extract_is_case_insensitive(self):
        tags = extract_expertise_tags("I do machine learning and some devops work")
        assert tags == ["Machine Learning", "DevOps"]

    def test_extract_empty(self):
        assert extract_expertise_tags("") == []

    def test_generate_filters_to_vocabulary(self):
        provider = ScriptedProvider([json.dumps({"tags": ["Finance", "Crypto", "Marketing"]})])

        tags = _run(generate_expertise_tags(provider, "Ten years in fintech marketing"))

        assert tags == ["Marketing", "Finance"]

    def test_generate_falls_back_to_extraction(self):
        provider = ScriptedProvider([ProviderError("down")])

        tags = _run(generate_expertise_tags(provider, "Nursing and public health"))

        assert tags == ["Nursing", "Public Health"]

    @pytest.mark.parametrize("text", ["short", "x" * 501])
    def test_generate_rejects_bad_length(self, text):
        with pytest.raises(ValidationError):
            _run(generate_expertise_tags(ScriptedProvider(), text))


# ---------------------------------------------------------------------------
# Test: Expert directory
# ---------------------------------------------------------------------------


class TestExpertDirectory:
    def test_update_embeds_joined_tags(self):
        store = InMemoryExpertStore()
        store.add_expert("u1")
        embedder = ScriptedEmbedder({"Finance, DevOps": [0.6, 0.8]})

        profile = _run(ExpertDirectory(store, embedder).update_profile("u1", ["Finance", "DevOps"]))

        assert profile.tags_embedding == [0.6, 0.8]
        assert profile.tags_embedding_source == "Finance, DevOps"
        assert profile.has_fresh_embedding

    def test_unchanged_tags_reuse_embedding(self):
        store = InMemoryExpertStore()
        store.add_expert("u1", tags=["Finance"], embedding=[1.0, 0.0])
        embedder = ScriptedEmbedder(fail=True)

        profile = _run(ExpertDirectory(store, embedder).update_profile(
            "u1", ["Finance"], expertise="Bond markets",
        ))

        assert embedder.calls == []
        assert profile.tags_embedding == [1.0, 0.0]
        assert profile.expertise == "Bond markets"

    def test_embedding_failure_saves_without_embedding(self):
        store = InMemoryExpertStore()
        store.add_expert("u1", tags=["Finance"], embedding=[1.0, 0.0])

        profile = _run(ExpertDirectory(store, ScriptedEmbedder(fail=True)).update_profile(
            "u1", ["Law"],
        ))

        assert profile.expertise_tags == ["Law"]
        assert profile.tags_embedding is None
        assert not profile.has_fresh_embedding

    def test_unknown_user(self):
        directory = ExpertDirectory(InMemoryExpertStore(), ScriptedEmbedder())
        with pytest.raises(NotFoundError):
            _run(directory.get_profile("ghost"))

    def test_candidates_exclude_requester(self):
        store = InMemoryExpertStore()
        for uid in ("a", "b", "c"):
            store.add_expert(uid)

        candidates = _run(ExpertDirectory(store, ScriptedEmbedder()).list_candidates("b"))

        assert [c.id for c in candidates] == ["a", "c"]


# ---------------------------------------------------------------------------
# Test: Levels
# ---------------------------------------------------------------------------


class TestLevels:
    @pytest.mark.parametrize("xp,level", [(0, 1), (49, 1), (50, 2), (124, 2), (1000, 6)])
    def test_calculate_level(self, xp, level):
        assert calculate_level(xp) == level

    def test_xp_for_level(self):
        assert [xp_for_level(n) for n in range(1, 6)] == [0, 50, 125, 237, 406]

    def test_progress(self):
        assert calculate_progress_to_next_level(0) == 0
        assert calculate_progress_to_next_level(25) == 50
        assert calculate_progress_to_next_level(100) == 66
