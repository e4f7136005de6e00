# =============================================================================
# Pydantic Models Package — API Request/Response Schemas
# =============================================================================
# These are NOT database models (those are in db/models.py).
# These define the shape of data flowing through the API:
#   - requests.py: incoming request bodies
#   - responses.py: outgoing response bodies, plus the quality rubric
#     schema the quality model fills in
# =============================================================================
