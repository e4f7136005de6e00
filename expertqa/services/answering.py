# =============================================================================
# AI-Mode Answering with Expert Context
# =============================================================================
# Questions not sent to the community go straight to the chat model. Before
# the call, the RAG corpus is consulted and any relevant accepted expert
# answers are appended to the system prompt as [EXPERT CONTEXT] blocks.
# Retrieval is optional: any failure there means answering without context.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from expertqa.errors import ExpertQAError, ValidationError
from expertqa.services.llm import LLMProvider
from expertqa.services.rag import RagCorpusIndex, RagEntry, format_context_blocks

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a friendly assistant! Keep your responses concise and helpful. "
    "When expert context is provided below, prefer it over general knowledge "
    "and stay consistent with it."
)


@dataclass
class ContextualAnswer:
    answer: str
    model: str
    contexts: list[RagEntry] = field(default_factory=list)


async def answer_with_context(
    question: str,
    rag: RagCorpusIndex,
    provider: LLMProvider,
    limit: int | None = None,
    threshold: float | None = None,
) -> ContextualAnswer:
    """
    Answer `question` with the chat model, enriched by the RAG corpus.

    Raises:
        ValidationError: Empty question.
        ProviderError: The chat model itself failed.
    """
    question = (question or "").strip()
    if not question:
        raise ValidationError("Question is required")

    contexts: list[RagEntry] = []
    try:
        contexts = await rag.retrieve(question, limit=limit, threshold=threshold)
    except ExpertQAError as e:
        logger.warning("RAG retrieval failed, answering without context: %s", e)

    system = SYSTEM_PROMPT
    if contexts:
        system = f"{system}\n\n{format_context_blocks(contexts)}"
        logger.info("System prompt enriched with %d expert contexts", len(contexts))

    result = await provider.complete([{"role": "user", "content": question}], system=system)
    return ContextualAnswer(answer=result.content, model=result.model, contexts=contexts)
