# =============================================================================
# Celery Application Configuration
# =============================================================================
#
# Used when CONSENSUS_DISPATCH=celery. The API enqueues follow-up work
# after assignment transitions; workers run it:
#
# ┌──────────┐     ┌───────┐     ┌──────────────┐
# │ FastAPI  │────▶│ Redis │────▶│ Celery Worker│
# │(producer)│     │(broker)│    │  (consumer)  │
# └──────────┘     └───────┘     └──────────────┘
#
# Jobs are idempotent and never retried (see services/dispatch.py), so
# acknowledgement happens on receipt rather than on completion.
# =============================================================================

from celery import Celery

from expertqa.config import settings

celery_app = Celery(
    "expertqa.workers",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    # --- Serialization ---
    # JSON only; pickle can execute code during deserialization.
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # --- Delivery ---
    # Ack on receipt: a crashed job is not redelivered. The next
    # submission on the same request re-triggers consensus.
    task_acks_late=False,
    worker_prefetch_multiplier=1,

    # --- Timeouts ---
    # Provider calls have no bound of their own; cap each job here.
    task_soft_time_limit=120,
    task_time_limit=180,

    # --- Results ---
    result_expires=3600,

    include=["expertqa.workers.tasks"],
)
