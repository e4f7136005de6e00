# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
#
# Fields whose rules belong to the core (assignment status values, empty
# responses, tag vocabulary) are accepted loosely here and checked by the
# services, so those failures come back as 400 rather than 422.
# =============================================================================

from pydantic import BaseModel, Field


class CreateExpertRequestBody(BaseModel):
    """
    Request body for POST /expert-requests — ask the community.

    Example:
        {
            "chat_id": "6f1c...",
            "question": "How should I version a public REST API?",
            "tags": ["Web Development"]
        }
    """

    chat_id: str = Field(..., min_length=1)
    question: str = Field(
        ...,
        max_length=10000,
        description="The question experts will answer",
    )
    tags: list[str] = Field(
        default_factory=list,
        description="Expertise tags from the vocabulary. Inferred from the question if empty.",
    )
    title: str | None = Field(
        default=None,
        description="Display title. Generated from the question if omitted.",
    )


class UpdateAssignmentBody(BaseModel):
    """Request body for PATCH /expert-assignments/{id}."""

    status: str = Field(
        ...,
        description="assigned | working | submitted | accepted | rejected",
        examples=["submitted"],
    )
    response: str | None = Field(default=None, description="The expert's answer")
    credits_awarded: int | None = Field(
        default=None,
        description="Credits (and XP) granted to the expert on acceptance",
    )


class QualityAssessmentBody(BaseModel):
    """Request body for POST /quality-assessment — a preview check."""

    question: str = ""
    response: str = ""


class ContextBody(BaseModel):
    """Request body for POST /context."""

    query: str = Field(..., min_length=1, max_length=10000)
    limit: int = Field(default=3, ge=1, le=50)
    threshold: float = Field(default=0.7, ge=-1.0, le=1.0)


class AskBody(BaseModel):
    """Request body for POST /ask — AI answer with expert context."""

    question: str = Field(..., min_length=1, max_length=10000)
    limit: int | None = Field(default=None, ge=1, le=50)
    threshold: float | None = Field(default=None, ge=-1.0, le=1.0)


class UpdateTagsBody(BaseModel):
    """Request body for PUT /profile/tags."""

    tags: list[str]
    expertise: str | None = Field(default=None, max_length=2000)


class ExtractTagsBody(BaseModel):
    text: str = Field(..., max_length=10000)


class GenerateTagsBody(BaseModel):
    expertise_text: str = Field(..., description="Free-text description, 10-500 characters")
