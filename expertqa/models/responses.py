# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API. Embedding
# vectors are internal and never appear here.
#
# QualityAssessment and its parts double as the schema the quality model
# is asked to fill (see services/quality.py).
# =============================================================================

from datetime import datetime

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


# ---------------------------------------------------------------------------
# Expert requests & assignments
# ---------------------------------------------------------------------------


class AssignmentResponse(BaseModel):
    id: str
    expert_request_id: str
    expert_id: str
    status: str
    title: str
    response: str | None = None
    rating: int | None = None
    credits_awarded: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, record) -> "AssignmentResponse":
        return cls(
            id=record.id,
            expert_request_id=record.expert_request_id,
            expert_id=record.expert_id,
            status=record.status.value,
            title=record.title,
            response=record.response,
            rating=record.rating,
            credits_awarded=record.credits_awarded,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class ExpertRequestResponse(BaseModel):
    id: str
    chat_id: str
    question: str
    title: str
    expertise_tags: list[str]
    status: str
    assigned_experts_count: int
    completed_experts_count: int
    created_at: datetime | None = None

    @classmethod
    def from_record(cls, record) -> "ExpertRequestResponse":
        return cls(
            id=record.id,
            chat_id=record.chat_id,
            question=record.question,
            title=record.title,
            expertise_tags=list(record.expertise_tags),
            status=record.status.value,
            assigned_experts_count=record.assigned_experts_count,
            completed_experts_count=record.completed_experts_count,
            created_at=record.created_at,
        )


class CreateExpertRequestResponse(BaseModel):
    """Response for POST /expert-requests — the request and who got it."""

    request: ExpertRequestResponse
    assignments: list[AssignmentResponse] = Field(default_factory=list)


class RequestCountsResponse(BaseModel):
    """Derived counts; `completed` counts submitted or accepted assignments."""

    assigned: int
    completed: int


# ---------------------------------------------------------------------------
# Quality assessment
# ---------------------------------------------------------------------------


class CriterionScore(BaseModel):
    score: float = Field(ge=0, le=10)
    feedback: str


class OverallScore(BaseModel):
    score: float = Field(ge=0, le=100)
    feedback: str


class QualityRubric(BaseModel):
    """What the quality model is asked to produce."""

    accuracy: CriterionScore
    completeness: CriterionScore
    clarity: CriterionScore
    helpfulness: CriterionScore
    conciseness: CriterionScore
    overall: OverallScore
    suggestions: list[str] = Field(
        min_length=1,
        max_length=3,
        description="1-3 specific suggestions for improvement",
    )


class QualityAssessment(QualityRubric):
    """Rubric scores plus the pass/fail verdict. Never persisted."""

    passes_threshold: bool


# ---------------------------------------------------------------------------
# RAG
# ---------------------------------------------------------------------------


class ContextEntry(BaseModel):
    question: str
    answer: str
    similarity: float


class ContextResponse(BaseModel):
    """Response for POST /context."""

    entries: list[ContextEntry]


class AskResponse(BaseModel):
    """Response for POST /ask — an AI answer, enriched with expert context."""

    answer: str
    model: str
    contexts: list[ContextEntry] = Field(default_factory=list)


class DatasetEntry(BaseModel):
    assignment_id: str
    expert_request_id: str
    expert_id: str
    title: str
    question: str
    response: str
    accepted_answers_for_request: int


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class ProfileResponse(BaseModel):
    id: str
    email: str
    expertise: str | None = None
    expertise_tags: list[str]
    has_tags_embedding: bool
    credits: int
    xp: int
    level: int


class TagsResponse(BaseModel):
    tags: list[str]


class LevelResponse(BaseModel):
    """Response for GET /level."""

    xp: int
    level: int
    next_level_xp: int
    progress: int = Field(description="Percent of the way to the next level (0-100)")
    xp_needed: int
