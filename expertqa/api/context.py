# =============================================================================
# Context API — RAG Retrieval, AI Answers, Dataset
# =============================================================================
#
#   POST /context   ranked accepted answers for a query (RetrieveContext)
#   POST /ask       chat-model answer with [EXPERT CONTEXT] enrichment
#   GET  /dataset   every accepted answer, for export and review
#
# /context surfaces a query-embedding failure as 502. /ask treats
# retrieval as optional and answers without context instead.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from expertqa.api.deps import get_current_user_id, get_services
from expertqa.models.requests import AskBody, ContextBody
from expertqa.models.responses import (
    AskResponse,
    ContextEntry,
    ContextResponse,
    DatasetEntry,
)
from expertqa.services.answering import answer_with_context
from expertqa.services.factory import ServiceContainer
from expertqa.services.llm import ModelRole
from expertqa.services.rag import RagEntry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Context"])


def _entry(e: RagEntry) -> ContextEntry:
    return ContextEntry(question=e.question, answer=e.answer, similarity=e.similarity)


@router.post(
    "/context",
    response_model=ContextResponse,
    summary="Retrieve relevant accepted expert answers",
)
async def retrieve_context(
    body: ContextBody,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> ContextResponse:
    entries = await services.rag.retrieve(body.query, limit=body.limit, threshold=body.threshold)
    return ContextResponse(entries=[_entry(e) for e in entries])


@router.post(
    "/ask",
    response_model=AskResponse,
    summary="Answer with the AI model, enriched by expert context",
)
async def ask(
    body: AskBody,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> AskResponse:
    logger.info("Ask request from user=%s: '%s'", user_id, body.question[:80])
    result = await answer_with_context(
        body.question,
        services.rag,
        services.registry.get(ModelRole.CHAT),
        limit=body.limit,
        threshold=body.threshold,
    )
    return AskResponse(
        answer=result.answer,
        model=result.model,
        contexts=[_entry(e) for e in result.contexts],
    )


@router.get(
    "/dataset",
    response_model=list[DatasetEntry],
    summary="All accepted expert answers",
)
async def dataset(
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> list[DatasetEntry]:
    rows = await services.requests.get_dataset()
    return [
        DatasetEntry(
            assignment_id=row.answer.assignment_id,
            expert_request_id=row.answer.expert_request_id,
            expert_id=row.answer.expert_id,
            title=row.answer.title,
            question=row.answer.question,
            response=row.answer.response,
            accepted_answers_for_request=row.accepted_answers_for_request,
        )
        for row in rows
    ]
