# =============================================================================
# Services Package — Business Logic
# =============================================================================
# Core logic, separated from API handlers and storage:
#   - embedder.py: embedding gateway + cosine similarity
#   - llm.py: providers, structured-output fold, model registry
#   - directory.py: expert profiles and tag embeddings
#   - matching.py: request → experts (semantic / best-match / generic)
#   - assignments.py: assignment state machine
#   - consensus.py: agreement check + synthesis (LangGraph)
#   - rag.py: accepted-answer corpus and retrieval
#   - quality.py: rubric scoring of expert answers
#   - dispatch.py: fire-and-forget background jobs
#   - factory.py: builds the service container
# =============================================================================
