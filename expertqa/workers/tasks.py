# =============================================================================
# Celery Task Definitions — Consensus and Embedding Backfill
# =============================================================================
#
# Both tasks are thin shells around the async services:
#
#   evaluate_consensus(request_id)       → ConsensusEngine.evaluate
#   backfill_embeddings(assignment_ids)  → RagCorpusIndex.backfill
#
# Celery workers are synchronous. Each task runs its coroutine with
# asyncio.run() against a fresh service container on a NullPool engine
# (a pooled engine cannot outlive the event loop that created it), and
# disposes the engine before returning.
#
# RETRY STRATEGY: none (max_retries=0). Failures are logged and the task
# ends; both jobs are idempotent and get re-triggered by later activity.
# =============================================================================

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from expertqa.db.engine import create_worker_engine
from expertqa.db.sql_store import SqlExpertStore
from expertqa.services.dispatch import AsyncioDispatcher
from expertqa.services.factory import ServiceContainer, build_services
from expertqa.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _with_worker_services(job: Callable[[ServiceContainer], Awaitable[Any]]) -> Any:
    engine = create_worker_engine()
    try:
        store = SqlExpertStore(
            async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
        )
        dispatcher = AsyncioDispatcher()
        services = build_services(store=store, dispatcher=dispatcher)
        result = await job(services)
        await dispatcher.drain()
        return result
    finally:
        await engine.dispose()


@celery_app.task(bind=True, name="evaluate_consensus", max_retries=0)
def evaluate_consensus(self, request_id: str) -> dict:
    """Run the consensus pipeline for one request."""
    logger.info("[task %s] evaluate_consensus request=%s", self.request.id, request_id)

    async def _job(services: ServiceContainer) -> dict:
        state = await services.consensus.evaluate(request_id)
        return {
            "request_id": request_id,
            "outcome": state.get("outcome", "unknown"),
            "accepted": len(state.get("accepted") or []),
        }

    try:
        return asyncio.run(_with_worker_services(_job))
    except Exception:
        logger.exception("[task %s] Consensus failed for request=%s", self.request.id, request_id)
        raise


@celery_app.task(bind=True, name="backfill_embeddings", max_retries=0)
def backfill_embeddings(self, assignment_ids: list[str] | None = None) -> dict:
    """Embed accepted answers that have no stored vector."""
    logger.info(
        "[task %s] backfill_embeddings (%s)",
        self.request.id,
        f"{len(assignment_ids)} ids" if assignment_ids is not None else "all",
    )

    async def _job(services: ServiceContainer) -> dict:
        summary = await services.rag.backfill(assignment_ids)
        return {
            "embedded": summary.embedded,
            "skipped": summary.skipped,
            "failed": summary.failed,
        }

    try:
        return asyncio.run(_with_worker_services(_job))
    except Exception:
        logger.exception("[task %s] Embedding backfill failed", self.request.id)
        raise
