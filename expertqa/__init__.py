# =============================================================================
# Expert Consensus Q&A Service
# =============================================================================
# Routes user questions either to an AI model or to a pool of human domain
# experts, reconciles independent expert answers into one trusted response,
# and feeds accepted answers back into a retrieval corpus for future AI
# answers.
#
# Package structure:
#   expertqa/
#   ├── api/          → FastAPI route handlers (requests, assignments,
#   │                    quality, context, profile)
#   ├── db/           → Database engine, ORM models, storage protocol and
#   │                    its SQLAlchemy implementation
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── services/     → Business logic (matching, assignment lifecycle,
#   │                    consensus, RAG corpus, quality gate, providers)
#   └── workers/      → Celery task definitions and configuration
# =============================================================================
