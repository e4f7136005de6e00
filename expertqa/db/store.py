# =============================================================================
# Storage Protocol — Transactional Repository Interface
# =============================================================================
#
# Services never touch SQLAlchemy directly. They open a transaction on an
# ExpertStore and work through the ExpertRepository it yields:
#
#     async with store.transaction() as repo:
#         assignment = await repo.get_assignment(aid, for_update=True)
#         await repo.adjust_request_counters(rid, completed_delta=1)
#         await repo.update_assignment(aid, status=AssignmentStatus.SUBMITTED)
#
# Everything inside one `async with` commits together or not at all.
#
# ARCHITECTURE:
#   ExpertStore (Protocol)
#   ├── SqlExpertStore       — PostgreSQL + pgvector (db/sql_store.py)
#   └── InMemoryExpertStore  — test double (tests/fakes.py)
#
# Records returned by the repository are plain dataclasses, detached from
# any session, so they can cross task and thread boundaries freely.
# =============================================================================

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from expertqa.db.models import AssignmentStatus, RequestStatus

# Assignment statuses that count towards Request.completed_experts_count.
COUNTED_STATUSES = frozenset({AssignmentStatus.SUBMITTED, AssignmentStatus.ACCEPTED})

# Statuses that require a non-empty response.
RESPONSE_REQUIRED_STATUSES = frozenset({
    AssignmentStatus.SUBMITTED,
    AssignmentStatus.ACCEPTED,
    AssignmentStatus.REJECTED,
})


def join_tags(tags: list[str]) -> str:
    """The exact text embedded for a tag set."""
    return ", ".join(tags)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class ExpertProfile:
    """
    An expert as seen by matching.

    `tags_embedding_source` holds the joined tag string the embedding was
    computed from. A missing source (embeddings written by an external
    process) is trusted as-is.
    """

    id: str
    email: str
    expertise: str | None = None
    expertise_tags: list[str] = field(default_factory=list)
    tags_embedding: list[float] | None = None
    tags_embedding_source: str | None = None
    credits: int = 0
    xp: int = 0

    @property
    def has_fresh_embedding(self) -> bool:
        if self.tags_embedding is None:
            return False
        if self.tags_embedding_source is None:
            return True
        return self.tags_embedding_source == join_tags(self.expertise_tags)


@dataclass
class ChatRecord:
    id: str
    user_id: str
    title: str = "Untitled"


@dataclass
class ExpertRequestRecord:
    id: str
    chat_id: str
    question: str
    title: str
    expertise_tags: list[str]
    status: RequestStatus
    assigned_experts_count: int = 0
    completed_experts_count: int = 0
    created_at: datetime | None = None


@dataclass
class AssignmentRecord:
    id: str
    expert_request_id: str
    expert_id: str
    status: AssignmentStatus
    title: str = "Untitled"
    response: str | None = None
    rating: int | None = None
    credits_awarded: int | None = None
    response_embedding: list[float] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class AcceptedAnswer:
    """An accepted assignment joined with its request (one RAG corpus entry)."""

    assignment_id: str
    expert_request_id: str
    expert_id: str
    question: str
    title: str
    response: str
    response_embedding: list[float] | None = None

    @property
    def embedding_text(self) -> str:
        return f"{self.question} {self.response}"


@dataclass
class RequestCounts:
    """Derived counts for one request, computed from its assignments."""

    assigned: int = 0
    completed: int = 0


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class ExpertRepository(Protocol):
    """
    Operations available inside one transaction.

    Missing ids raise NotFoundError from the mutating methods; the `get_*`
    methods return None instead.
    """

    # --- Experts ---------------------------------------------------------

    async def list_expert_profiles(
        self, exclude_user_id: str | None = None,
    ) -> list[ExpertProfile]:
        """All experts in stable listing order, optionally excluding one."""
        ...

    async def get_expert_profile(self, user_id: str) -> ExpertProfile | None: ...

    async def update_expert_profile(
        self,
        user_id: str,
        *,
        expertise_tags: list[str],
        expertise: str | None,
        tags_embedding: list[float] | None,
        tags_embedding_source: str | None,
    ) -> ExpertProfile: ...

    async def award_credits(self, user_id: str, amount: int) -> None:
        """Add `amount` to both credits and xp, as a relative update."""
        ...

    # --- Chats -----------------------------------------------------------

    async def get_chat(self, chat_id: str) -> ChatRecord | None: ...

    async def append_message(self, chat_id: str, role: str, content: str) -> None: ...

    # --- Requests --------------------------------------------------------

    async def create_request(
        self,
        chat_id: str,
        question: str,
        title: str,
        expertise_tags: list[str],
    ) -> ExpertRequestRecord: ...

    async def get_request(self, request_id: str) -> ExpertRequestRecord | None: ...

    async def list_requests_by_chat(self, chat_id: str) -> list[ExpertRequestRecord]: ...

    async def set_request_status(
        self, request_id: str, status: RequestStatus,
    ) -> None: ...

    async def adjust_request_counters(
        self,
        request_id: str,
        assigned_delta: int = 0,
        completed_delta: int = 0,
    ) -> ExpertRequestRecord:
        """
        Apply relative counter deltas, each floored at zero.

        A positive `assigned_delta` also moves a pending request to
        in_progress. Never read-modify-write.
        """
        ...

    # --- Assignments -----------------------------------------------------

    async def create_assignment(
        self, request_id: str, expert_id: str, title: str,
    ) -> AssignmentRecord | None:
        """Insert an `assigned` row; None if the pair already exists."""
        ...

    async def get_assignment(
        self, assignment_id: str, for_update: bool = False,
    ) -> AssignmentRecord | None: ...

    async def update_assignment(self, assignment_id: str, **fields) -> AssignmentRecord: ...

    async def list_assignments_by_request(
        self,
        request_id: str,
        status: AssignmentStatus | None = None,
    ) -> list[AssignmentRecord]: ...

    async def list_assignments_by_expert(self, expert_id: str) -> list[AssignmentRecord]:
        """Newest first."""
        ...

    async def accept_submitted_assignments(
        self, request_id: str, assignment_ids: list[str],
    ) -> list[AssignmentRecord]:
        """
        Flip the given assignments that are still submitted to accepted;
        return those flipped. Answers submitted after the caller loaded
        `assignment_ids` are left alone.
        """
        ...

    async def count_assignments(self, request_ids: list[str]) -> dict[str, RequestCounts]: ...

    # --- RAG corpus ------------------------------------------------------

    async def list_accepted_answers(
        self, assignment_ids: list[str] | None = None,
    ) -> list[AcceptedAnswer]:
        """Accepted assignments with a non-empty response."""
        ...

    async def set_response_embedding(
        self, assignment_id: str, embedding: list[float],
    ) -> None: ...


class ExpertStore(Protocol):
    """Opens transactions. Storage failures surface as StorageError."""

    def transaction(self) -> AbstractAsyncContextManager[ExpertRepository]: ...
