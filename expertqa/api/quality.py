# =============================================================================
# Quality Assessment API
# =============================================================================
# POST /quality-assessment scores a draft answer so the expert can see the
# rubric before submitting. Always 200 with an assessment unless the
# question or response is empty (400); provider trouble yields the default
# assessment.
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends

from expertqa.api.deps import get_current_user_id, get_services
from expertqa.models.requests import QualityAssessmentBody
from expertqa.models.responses import QualityAssessment
from expertqa.services.factory import ServiceContainer

router = APIRouter(tags=["Quality"])


@router.post(
    "/quality-assessment",
    response_model=QualityAssessment,
    summary="Score a draft expert answer",
)
async def assess_quality(
    body: QualityAssessmentBody,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> QualityAssessment:
    return await services.quality.assess(body.question, body.response)
