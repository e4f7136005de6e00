# =============================================================================
# Background Dispatch — Fire-and-Forget Jobs
# =============================================================================
#
# State transitions hand follow-up work (consensus evaluation, embedding
# backfill) to a Dispatcher instead of awaiting it. The contract every
# dispatcher honours:
#
#   - dispatch() returns immediately; the caller's response is not blocked
#   - no retry: a failed job is logged and dropped
#   - no backpressure: jobs are never queued behind each other
#   - failures never propagate to the caller
#
# Jobs are idempotent (evaluate_consensus, backfill_embeddings), so
# at-least-once delivery is acceptable.
#
# ARCHITECTURE:
#   Dispatcher (Protocol)
#   ├── AsyncioDispatcher — asyncio task in the current process (default)
#   └── CeleryDispatcher  — send_task() to the Celery broker by job name
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

logger = logging.getLogger(__name__)

EVALUATE_CONSENSUS = "evaluate_consensus"
BACKFILL_EMBEDDINGS = "backfill_embeddings"

JobHandler = Callable[..., Awaitable[Any]]


class Dispatcher(Protocol):
    def dispatch(self, job: str, *args: Any) -> None:
        """Schedule `job(*args)` and return without waiting."""
        ...


class AsyncioDispatcher:
    """
    Runs jobs as asyncio tasks on the running loop.

    Holds a strong reference to every in-flight task until it finishes,
    so a job is never garbage-collected mid-run. `drain()` waits for all
    outstanding jobs (application shutdown, tests).
    """

    def __init__(self) -> None:
        self._handlers: dict[str, JobHandler] = {}
        self._tasks: set[asyncio.Task] = set()

    def register(self, job: str, handler: JobHandler) -> None:
        self._handlers[job] = handler

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, job: str, *args: Any) -> None:
        handler = self._handlers.get(job)
        if handler is None:
            raise ValueError(f"No handler registered for job '{job}'")

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("No running event loop; dropping job %s%r", job, args)
            return

        task = loop.create_task(self._run(job, handler, args), name=f"{job}{args!r}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("Dispatched %s%r", job, args)

    async def _run(self, job: str, handler: JobHandler, args: tuple) -> None:
        try:
            await handler(*args)
        except Exception:
            logger.exception("Background job %s%r failed (not retried)", job, args)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))


class CeleryDispatcher:
    """
    Sends jobs to Celery workers by task name.

    The worker side declares each task with max_retries=0 (see
    workers/tasks.py). A broker failure at send time is logged and the
    job is dropped.
    """

    def __init__(self, app=None) -> None:
        if app is None:
            from expertqa.workers.celery_app import celery_app

            app = celery_app
        self._app = app

    def dispatch(self, job: str, *args: Any) -> None:
        try:
            result = self._app.send_task(job, args=list(args))
        except Exception:
            logger.exception("Failed to enqueue %s%r (not retried)", job, args)
            return
        logger.debug("Enqueued %s%r as task %s", job, args, result.id)
