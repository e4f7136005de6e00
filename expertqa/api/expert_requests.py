# =============================================================================
# Expert Requests API — Ask the Community
# =============================================================================
#
#   POST /expert-requests                        create + match experts
#   GET  /expert-requests?chat_id=...            requests in one chat
#   GET  /expert-request-counts?request_ids=a,b  derived counts per request
#
# Thin handlers: validation, ownership and matching all happen in
# ExpertRequestService. Core errors map to HTTP via the handler in main.py.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from expertqa.api.deps import get_current_user_id, get_services
from expertqa.models.requests import CreateExpertRequestBody
from expertqa.models.responses import (
    AssignmentResponse,
    CreateExpertRequestResponse,
    ExpertRequestResponse,
    RequestCountsResponse,
)
from expertqa.services.factory import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Expert Requests"])


@router.post(
    "/expert-requests",
    response_model=CreateExpertRequestResponse,
    status_code=201,
    summary="Submit a question to the expert community",
)
async def create_expert_request(
    body: CreateExpertRequestBody,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> CreateExpertRequestResponse:
    created = await services.requests.create(
        user_id=user_id,
        chat_id=body.chat_id,
        question=body.question,
        tags=body.tags,
        title=body.title,
    )
    return CreateExpertRequestResponse(
        request=ExpertRequestResponse.from_record(created.request),
        assignments=[AssignmentResponse.from_record(a) for a in created.assignments],
    )


@router.get(
    "/expert-requests",
    response_model=list[ExpertRequestResponse],
    summary="List expert requests in a chat",
)
async def list_expert_requests(
    chat_id: str = Query(..., min_length=1),
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> list[ExpertRequestResponse]:
    records = await services.requests.get_requests_for_chat(user_id, chat_id)
    return [ExpertRequestResponse.from_record(r) for r in records]


@router.get(
    "/expert-request-counts",
    response_model=dict[str, RequestCountsResponse],
    summary="Assigned and completed expert counts per request",
)
async def expert_request_counts(
    request_ids: str = Query(..., description="Comma-separated request ids"),
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> dict[str, RequestCountsResponse]:
    ids = [r.strip() for r in request_ids.split(",")]
    counts = await services.requests.get_request_counts(ids)
    return {
        rid: RequestCountsResponse(assigned=c.assigned, completed=c.completed)
        for rid, c in counts.items()
    }
