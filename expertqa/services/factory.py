# =============================================================================
# Service Container — Wiring
# =============================================================================
# Everything that depends on configuration or a provider is built here,
# once, and passed down explicitly. The API builds one container at
# startup; each Celery task builds its own; tests build one around fakes.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass

from expertqa.config import Settings, settings as default_settings
from expertqa.db.store import ExpertStore
from expertqa.services.assignments import AssignmentStateMachine
from expertqa.services.consensus import ConsensusEngine
from expertqa.services.directory import ExpertDirectory
from expertqa.services.dispatch import (
    BACKFILL_EMBEDDINGS,
    EVALUATE_CONSENSUS,
    AsyncioDispatcher,
    CeleryDispatcher,
    Dispatcher,
)
from expertqa.services.embedder import EmbeddingGateway, OpenAIEmbeddingGateway
from expertqa.services.expert_requests import ExpertRequestService
from expertqa.services.llm import ModelRegistry, ModelRole
from expertqa.services.matching import MatchingEngine
from expertqa.services.quality import QualityAssessor
from expertqa.services.rag import RagCorpusIndex

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    store: ExpertStore
    embedder: EmbeddingGateway
    registry: ModelRegistry
    dispatcher: Dispatcher
    directory: ExpertDirectory
    matching: MatchingEngine
    quality: QualityAssessor
    rag: RagCorpusIndex
    consensus: ConsensusEngine
    assignments: AssignmentStateMachine
    requests: ExpertRequestService


def build_services(
    settings: Settings | None = None,
    store: ExpertStore | None = None,
    embedder: EmbeddingGateway | None = None,
    registry: ModelRegistry | None = None,
    dispatcher: Dispatcher | None = None,
) -> ServiceContainer:
    """
    Build every service. Missing collaborators come from settings.

    An AsyncioDispatcher (given or defaulted) gets the consensus and
    backfill jobs registered on it.
    """
    cfg = settings or default_settings

    if store is None:
        from expertqa.db.engine import get_async_session_factory
        from expertqa.db.sql_store import SqlExpertStore

        store = SqlExpertStore(get_async_session_factory())
    if embedder is None:
        embedder = OpenAIEmbeddingGateway(cfg)
    if registry is None:
        registry = ModelRegistry.from_settings(cfg)
    if dispatcher is None:
        dispatcher = CeleryDispatcher() if cfg.consensus_dispatch == "celery" else AsyncioDispatcher()

    directory = ExpertDirectory(store, embedder)
    matching = MatchingEngine(
        store,
        embedder,
        similarity_threshold=cfg.matching_similarity_threshold,
        fallback_max_experts=cfg.matching_fallback_max_experts,
    )
    quality = QualityAssessor(
        registry.get(ModelRole.QUALITY),
        pass_threshold=cfg.quality_pass_threshold,
        min_question_length=cfg.quality_min_question_length,
    )
    rag = RagCorpusIndex(
        store,
        embedder,
        default_limit=cfg.rag_default_limit,
        default_threshold=cfg.rag_similarity_threshold,
    )
    consensus = ConsensusEngine(store, registry, rag)
    assignments = AssignmentStateMachine(
        store,
        dispatcher,
        quality=quality,
        quality_gate_on_submit=cfg.quality_gate_on_submit,
    )
    requests = ExpertRequestService(
        store,
        directory,
        matching,
        title_provider=registry.get(ModelRole.TITLE),
        infer_tags=cfg.infer_request_tags,
    )

    if isinstance(dispatcher, AsyncioDispatcher):
        dispatcher.register(EVALUATE_CONSENSUS, consensus.evaluate)
        dispatcher.register(BACKFILL_EMBEDDINGS, rag.backfill)

    logger.info(
        "Services ready (dispatch=%s, similarity_threshold=%.2f, quality_gate_on_submit=%s)",
        type(dispatcher).__name__,
        cfg.matching_similarity_threshold,
        cfg.quality_gate_on_submit,
    )
    return ServiceContainer(
        settings=cfg,
        store=store,
        embedder=embedder,
        registry=registry,
        dispatcher=dispatcher,
        directory=directory,
        matching=matching,
        quality=quality,
        rag=rag,
        consensus=consensus,
        assignments=assignments,
        requests=requests,
    )
