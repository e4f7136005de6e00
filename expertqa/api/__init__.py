# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
# Each module defines a FastAPI APIRouter for a specific feature:
#   - expert_requests.py: create/list expert requests, derived counts
#   - assignments.py: expert inbox and assignment transitions
#   - quality.py: rubric preview of a draft answer
#   - context.py: RAG retrieval, AI answers with context, dataset
#   - profile.py: expertise tags and XP levels
#   - deps.py: caller identity and service container dependencies
# =============================================================================
