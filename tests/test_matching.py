# =============================================================================
# Unit Tests — Matching Engine
# =============================================================================
#
# Experts carry 2-d tag embeddings [s, sqrt(1 - s^2)] so their cosine
# similarity to the request vector [1, 0] is exactly s.
# =============================================================================

from __future__ import annotations

import asyncio
import math

from expertqa.db.models import RequestStatus
from expertqa.services.matching import MatchingEngine
from tests.fakes import InMemoryExpertStore, ScriptedEmbedder

TAGS = ["Machine Learning"]
QUERY = [1.0, 0.0]


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _vec(similarity: float) -> list[float]:
    return [similarity, math.sqrt(1 - similarity ** 2)]


def _setup(similarities, threshold=0.7, embedder=None, cap=None, tags=TAGS):
    store = InMemoryExpertStore()
    store.add_chat("chat-1", "asker")
    for i, s in enumerate(similarities):
        store.add_expert(f"expert-{i}", tags=TAGS, embedding=_vec(s))
    request = store.add_request("chat-1", tags=tags)
    engine = MatchingEngine(
        store,
        embedder or ScriptedEmbedder({"Machine Learning": QUERY}),
        similarity_threshold=threshold,
        fallback_max_experts=cap,
    )
    return store, engine, request


def _pool(store):
    return [u for uid, u in store.users.items() if uid != "asker"]


# ---------------------------------------------------------------------------
# Test: Tier selection
# ---------------------------------------------------------------------------


class TestSemanticTier:
    def test_assigns_every_candidate_above_threshold(self):
        store, engine, request = _setup([0.9, 0.75, 0.5])

        created = _run(engine.assign(request, _pool(store)))

        assert sorted(a.expert_id for a in created) == ["expert-0", "expert-1"]

    def test_high_threshold_falls_back_to_single_best_match(self):
        store, engine, request = _setup([0.9, 0.75, 0.5], threshold=0.95)

        experts, tier = _run(engine.select(request, _pool(store)))

        assert tier == "best-match"
        assert [e.id for e in experts] == ["expert-0"]

    def test_single_candidate_scenario(self):
        store, engine, request = _setup([0.82])

        created = _run(engine.assign(request, _pool(store)))

        assert len(created) == 1
        stored = store.requests[request.id]
        assert stored.status == RequestStatus.IN_PROGRESS
        assert stored.assigned_experts_count == 1

    def test_threshold_is_inclusive(self):
        store, engine, request = _setup([], threshold=1.0)
        store.add_expert("exact", tags=TAGS, embedding=[2.0, 0.0])

        experts, tier = _run(engine.select(request, _pool(store)))

        assert tier == "semantic"
        assert len(experts) == 1

    def test_stale_embedding_is_not_eligible(self):
        store, engine, request = _setup([])
        store.add_expert("stale", tags=TAGS, embedding=_vec(0.99), source="Finance")

        experts, tier = _run(engine.select(request, _pool(store)))

        assert tier == "generic"
        assert [e.id for e in experts] == ["stale"]

    def test_dimension_mismatch_skips_candidate(self):
        store, engine, request = _setup([0.9])
        store.add_expert("odd", tags=TAGS, embedding=[1.0, 0.0, 0.0])

        experts, tier = _run(engine.select(request, _pool(store)))

        assert tier == "semantic"
        assert [e.id for e in experts] == ["expert-0"]


class TestGenericTier:
    def test_provider_failure_assigns_whole_pool(self):
        store, engine, request = _setup(
            [0.9, 0.75, 0.5], embedder=ScriptedEmbedder(fail=True),
        )

        created = _run(engine.assign(request, _pool(store)))

        assert [a.expert_id for a in created] == ["expert-0", "expert-1", "expert-2"]
        assert store.requests[request.id].assigned_experts_count == 3

    def test_request_without_tags_skips_embedding(self):
        embedder = ScriptedEmbedder({"Machine Learning": QUERY})
        store, engine, request = _setup([0.9, 0.5], embedder=embedder, tags=[])

        experts, tier = _run(engine.select(request, _pool(store)))

        assert tier == "generic"
        assert len(experts) == 2
        assert embedder.calls == []

    def test_cap_limits_generic_assignment(self):
        store, engine, request = _setup(
            [0.9, 0.75, 0.5], embedder=ScriptedEmbedder(fail=True), cap=2,
        )

        experts, _ = _run(engine.select(request, _pool(store)))

        assert [e.id for e in experts] == ["expert-0", "expert-1"]

    def test_empty_pool_assigns_nobody(self):
        store, engine, request = _setup([])

        created = _run(engine.assign(request, []))

        assert created == []
        assert store.requests[request.id].status == RequestStatus.PENDING


class TestAssignmentCreation:
    def test_existing_pair_is_not_duplicated(self):
        store, engine, request = _setup([0.9])

        _run(engine.assign(request, _pool(store)))
        again = _run(engine.assign(request, _pool(store)))

        assert again == []
        assert len(store.assignments) == 1
        assert store.requests[request.id].assigned_experts_count == 1
