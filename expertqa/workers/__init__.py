# =============================================================================
# Workers Package — Celery Background Tasks
# =============================================================================
# Runs consensus evaluation and embedding backfill when the dispatcher is
# configured for Celery (CONSENSUS_DISPATCH=celery).
# =============================================================================
