# =============================================================================
# Expert Assignments API
# =============================================================================
#
#   GET   /expert-assignments        the caller's inbox, newest first
#   PATCH /expert-assignments/{id}   drive the assignment state machine
#
# A PATCH to "submitted" returns as soon as the transition commits;
# consensus evaluation runs in the background and its failures never
# reach this response.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from expertqa.api.deps import get_current_user_id, get_services
from expertqa.models.requests import UpdateAssignmentBody
from expertqa.models.responses import AssignmentResponse
from expertqa.services.factory import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Expert Assignments"])


@router.get(
    "/expert-assignments",
    response_model=list[AssignmentResponse],
    summary="List assignments for the calling expert",
)
async def list_my_assignments(
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> list[AssignmentResponse]:
    records = await services.requests.get_assignments_for_expert(user_id)
    return [AssignmentResponse.from_record(a) for a in records]


@router.patch(
    "/expert-assignments/{assignment_id}",
    response_model=AssignmentResponse,
    summary="Transition an assignment",
)
async def update_assignment(
    assignment_id: str,
    body: UpdateAssignmentBody,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> AssignmentResponse:
    updated = await services.assignments.transition(
        assignment_id,
        body.status,
        response=body.response,
        credits_awarded=body.credits_awarded,
        actor_id=user_id,
    )
    return AssignmentResponse.from_record(updated)
