# =============================================================================
# Expert Requests — Create, List, Count
# =============================================================================
#
# CREATE FLOW (CreateExpertRequest):
#   1. Validate question and tags; infer tags from the question by keyword
#      extraction when none are given
#   2. Resolve a title: caller-supplied, else title-model, else "Untitled"
#   3. Check the caller owns the chat, insert the request (pending)
#   4. MatchingEngine.assign over every other user
#   5. Return the request with its updated counters and the assignments
#
# Read projections (requests per chat, assignments per expert, counts per
# request, the accepted-answer dataset) live here too.
# =============================================================================

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass

from expertqa.db.store import (
    AcceptedAnswer,
    AssignmentRecord,
    ExpertRequestRecord,
    ExpertStore,
    RequestCounts,
)
from expertqa.errors import NotFoundError, ProviderError, UnauthorizedError, ValidationError
from expertqa.services.directory import ExpertDirectory
from expertqa.services.llm import LLMProvider
from expertqa.services.matching import MatchingEngine
from expertqa.services.tags import extract_expertise_tags, validate_tags

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled"
MAX_TITLE_LENGTH = 80

_TITLE_SYSTEM = """
- you will generate a short title based on the question a user is asking
- ensure it is not more than 80 characters long
- the title should be a summary of the user's question
- do not use quotes or colons"""


async def generate_title(provider: LLMProvider, question: str) -> str:
    """Short title for a question; "Untitled" if the provider fails."""
    try:
        result = await provider.complete(
            [{"role": "user", "content": question}],
            system=_TITLE_SYSTEM,
            max_tokens=40,
        )
    except ProviderError as e:
        logger.warning("Title generation failed: %s", e)
        return DEFAULT_TITLE

    title = result.content.strip().strip('"').replace(":", "")
    return title[:MAX_TITLE_LENGTH] or DEFAULT_TITLE


@dataclass
class CreatedRequest:
    request: ExpertRequestRecord
    assignments: list[AssignmentRecord]


@dataclass
class DatasetRow:
    answer: AcceptedAnswer
    accepted_answers_for_request: int


class ExpertRequestService:
    def __init__(
        self,
        store: ExpertStore,
        directory: ExpertDirectory,
        matching: MatchingEngine,
        title_provider: LLMProvider | None = None,
        infer_tags: bool = True,
    ):
        self._store = store
        self._directory = directory
        self._matching = matching
        self._title_provider = title_provider
        self.infer_tags = infer_tags

    async def create(
        self,
        user_id: str,
        chat_id: str,
        question: str,
        tags: list[str] | None = None,
        title: str | None = None,
    ) -> CreatedRequest:
        """
        Create a request in `chat_id` and assign experts to it.

        Raises:
            ValidationError: Empty question or unknown tags.
            NotFoundError: Unknown chat.
            UnauthorizedError: The chat belongs to someone else.
        """
        question = (question or "").strip()
        if not question:
            raise ValidationError("Question is required")

        tags = validate_tags(tags or [])
        if not tags and self.infer_tags:
            tags = extract_expertise_tags(question)
            logger.debug("Inferred tags %s from question", tags)

        async with self._store.transaction() as repo:
            chat = await repo.get_chat(chat_id)
        if chat is None:
            raise NotFoundError(f"Chat {chat_id} not found")
        if chat.user_id != user_id:
            raise UnauthorizedError(f"Chat {chat_id} does not belong to user {user_id}")

        title = (title or "").strip()[:MAX_TITLE_LENGTH]
        if not title:
            if self._title_provider is not None:
                title = await generate_title(self._title_provider, question)
            else:
                title = DEFAULT_TITLE

        async with self._store.transaction() as repo:
            request = await repo.create_request(chat_id, question, title, tags)
        logger.info("Created expert request=%s in chat=%s (tags=%s)", request.id, chat_id, tags)

        pool = await self._directory.list_candidates(exclude_user_id=user_id)
        assignments = await self._matching.assign(request, pool)

        async with self._store.transaction() as repo:
            refreshed = await repo.get_request(request.id)
        return CreatedRequest(request=refreshed or request, assignments=assignments)

    async def get_requests_for_chat(self, user_id: str, chat_id: str) -> list[ExpertRequestRecord]:
        async with self._store.transaction() as repo:
            chat = await repo.get_chat(chat_id)
            if chat is None:
                raise NotFoundError(f"Chat {chat_id} not found")
            if chat.user_id != user_id:
                raise UnauthorizedError(f"Chat {chat_id} does not belong to user {user_id}")
            return await repo.list_requests_by_chat(chat_id)

    async def get_assignments_for_expert(self, expert_id: str) -> list[AssignmentRecord]:
        async with self._store.transaction() as repo:
            return await repo.list_assignments_by_expert(expert_id)

    async def get_request_counts(self, request_ids: list[str]) -> dict[str, RequestCounts]:
        ids = list(dict.fromkeys(r for r in request_ids if r))
        if not ids:
            raise ValidationError("At least one request id is required")
        async with self._store.transaction() as repo:
            return await repo.count_assignments(ids)

    async def get_dataset(self) -> list[DatasetRow]:
        """Accepted answers with the number of accepted answers per request."""
        async with self._store.transaction() as repo:
            answers = await repo.list_accepted_answers()
        per_request = Counter(a.expert_request_id for a in answers)
        return [DatasetRow(a, per_request[a.expert_request_id]) for a in answers]
