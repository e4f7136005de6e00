# =============================================================================
# SQL Expert Store — PostgreSQL Implementation of the Storage Protocol
# =============================================================================
#
# One AsyncSession per transaction. `session.begin()` commits on clean exit
# and rolls back on any exception; SQLAlchemy failures are re-raised as
# StorageError so callers see a single storage failure type.
#
# CONCURRENCY:
#   - Transitions lock the assignment row (SELECT ... FOR UPDATE) so two
#     transitions on the same assignment serialize.
#   - Request counters are only ever changed with relative UPDATEs:
#       SET completed_experts_count = GREATEST(completed_experts_count + 1, 0)
#     so concurrent submissions on sibling assignments never lose updates.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from expertqa.db.models import (
    AssignmentStatus,
    Chat,
    ExpertAssignment,
    ExpertRequest,
    Message,
    RequestStatus,
    User,
)
from expertqa.db.store import (
    AcceptedAnswer,
    AssignmentRecord,
    ChatRecord,
    ExpertProfile,
    ExpertRequestRecord,
    RequestCounts,
)
from expertqa.errors import NotFoundError, StorageError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Statement builders
# ---------------------------------------------------------------------------


def _counter_update_stmt(request_id: str, assigned_delta: int, completed_delta: int):
    """Relative counter UPDATE, floored at zero."""
    values = {}
    if assigned_delta:
        values["assigned_experts_count"] = func.greatest(
            ExpertRequest.assigned_experts_count + assigned_delta, 0,
        )
    if completed_delta:
        values["completed_experts_count"] = func.greatest(
            ExpertRequest.completed_experts_count + completed_delta, 0,
        )
    return (
        update(ExpertRequest)
        .where(ExpertRequest.id == request_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def _credit_update_stmt(user_id: str, amount: int):
    return (
        update(User)
        .where(User.id == user_id)
        .values(credits=User.credits + amount, xp=User.xp + amount)
        .execution_options(synchronize_session=False)
    )


def _vector(value) -> list[float] | None:
    # pgvector hands back numpy arrays
    if value is None:
        return None
    return [float(x) for x in value]


# ---------------------------------------------------------------------------
# ORM → record conversion
# ---------------------------------------------------------------------------


def _to_profile(user: User) -> ExpertProfile:
    return ExpertProfile(
        id=user.id,
        email=user.email,
        expertise=user.expertise,
        expertise_tags=list(user.expertise_tags or []),
        tags_embedding=_vector(user.tags_embedding),
        tags_embedding_source=user.tags_embedding_source,
        credits=user.credits,
        xp=user.xp,
    )


def _to_request(row: ExpertRequest) -> ExpertRequestRecord:
    return ExpertRequestRecord(
        id=row.id,
        chat_id=row.chat_id,
        question=row.question,
        title=row.title,
        expertise_tags=list(row.expertise_tags or []),
        status=RequestStatus(row.status),
        assigned_experts_count=row.assigned_experts_count,
        completed_experts_count=row.completed_experts_count,
        created_at=row.created_at,
    )


def _to_assignment(row: ExpertAssignment) -> AssignmentRecord:
    return AssignmentRecord(
        id=row.id,
        expert_request_id=row.expert_request_id,
        expert_id=row.expert_id,
        status=AssignmentStatus(row.status),
        title=row.title,
        response=row.response,
        rating=row.rating,
        credits_awarded=row.credits_awarded,
        response_embedding=_vector(row.response_embedding),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SqlExpertRepository:
    """ExpertRepository bound to one open AsyncSession transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # --- Experts ---------------------------------------------------------

    async def list_expert_profiles(
        self, exclude_user_id: str | None = None,
    ) -> list[ExpertProfile]:
        stmt = select(User).order_by(User.created_at, User.id)
        if exclude_user_id is not None:
            stmt = stmt.where(User.id != exclude_user_id)
        result = await self.session.execute(stmt)
        return [_to_profile(u) for u in result.scalars().all()]

    async def get_expert_profile(self, user_id: str) -> ExpertProfile | None:
        user = await self.session.get(User, user_id)
        return _to_profile(user) if user else None

    async def update_expert_profile(
        self,
        user_id: str,
        *,
        expertise_tags: list[str],
        expertise: str | None,
        tags_embedding: list[float] | None,
        tags_embedding_source: str | None,
    ) -> ExpertProfile:
        user = await self.session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        user.expertise_tags = list(expertise_tags)
        user.expertise = expertise
        user.tags_embedding = tags_embedding
        user.tags_embedding_source = tags_embedding_source
        await self.session.flush()
        return _to_profile(user)

    async def award_credits(self, user_id: str, amount: int) -> None:
        result = await self.session.execute(_credit_update_stmt(user_id, amount))
        if result.rowcount == 0:
            raise NotFoundError(f"User {user_id} not found")

    # --- Chats -----------------------------------------------------------

    async def get_chat(self, chat_id: str) -> ChatRecord | None:
        chat = await self.session.get(Chat, chat_id)
        if chat is None:
            return None
        return ChatRecord(id=chat.id, user_id=chat.user_id, title=chat.title)

    async def append_message(self, chat_id: str, role: str, content: str) -> None:
        self.session.add(Message(chat_id=chat_id, role=role, content=content))
        await self.session.flush()

    # --- Requests --------------------------------------------------------

    async def create_request(
        self,
        chat_id: str,
        question: str,
        title: str,
        expertise_tags: list[str],
    ) -> ExpertRequestRecord:
        row = ExpertRequest(
            chat_id=chat_id,
            question=question,
            title=title,
            expertise_tags=list(expertise_tags),
            status=RequestStatus.PENDING,
            assigned_experts_count=0,
            completed_experts_count=0,
        )
        self.session.add(row)
        await self.session.flush()
        await self.session.refresh(row)
        return _to_request(row)

    async def _load_request(self, request_id: str) -> ExpertRequest | None:
        result = await self.session.execute(
            select(ExpertRequest)
            .where(ExpertRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_request(self, request_id: str) -> ExpertRequestRecord | None:
        row = await self._load_request(request_id)
        return _to_request(row) if row else None

    async def list_requests_by_chat(self, chat_id: str) -> list[ExpertRequestRecord]:
        result = await self.session.execute(
            select(ExpertRequest)
            .where(ExpertRequest.chat_id == chat_id)
            .order_by(ExpertRequest.created_at.desc())
        )
        return [_to_request(r) for r in result.scalars().all()]

    async def set_request_status(self, request_id: str, status: RequestStatus) -> None:
        result = await self.session.execute(
            update(ExpertRequest)
            .where(ExpertRequest.id == request_id)
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Expert request {request_id} not found")

    async def adjust_request_counters(
        self,
        request_id: str,
        assigned_delta: int = 0,
        completed_delta: int = 0,
    ) -> ExpertRequestRecord:
        if assigned_delta or completed_delta:
            result = await self.session.execute(
                _counter_update_stmt(request_id, assigned_delta, completed_delta)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Expert request {request_id} not found")

        if assigned_delta > 0:
            await self.session.execute(
                update(ExpertRequest)
                .where(
                    ExpertRequest.id == request_id,
                    ExpertRequest.status == RequestStatus.PENDING,
                )
                .values(status=RequestStatus.IN_PROGRESS)
                .execution_options(synchronize_session=False)
            )

        row = await self._load_request(request_id)
        if row is None:
            raise NotFoundError(f"Expert request {request_id} not found")
        return _to_request(row)

    # --- Assignments -----------------------------------------------------

    async def create_assignment(
        self, request_id: str, expert_id: str, title: str,
    ) -> AssignmentRecord | None:
        existing = await self.session.execute(
            select(ExpertAssignment.id).where(
                ExpertAssignment.expert_request_id == request_id,
                ExpertAssignment.expert_id == expert_id,
            )
        )
        if existing.scalar_one_or_none() is not None:
            return None

        row = ExpertAssignment(
            expert_request_id=request_id,
            expert_id=expert_id,
            status=AssignmentStatus.ASSIGNED,
            title=title,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(row)
                await self.session.flush()
        except IntegrityError:
            # Lost a race with a concurrent insert of the same pair
            logger.debug(
                "Assignment for request=%s expert=%s already exists",
                request_id, expert_id,
            )
            return None
        await self.session.refresh(row)
        return _to_assignment(row)

    async def get_assignment(
        self, assignment_id: str, for_update: bool = False,
    ) -> AssignmentRecord | None:
        stmt = (
            select(ExpertAssignment)
            .where(ExpertAssignment.id == assignment_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return _to_assignment(row) if row else None

    async def update_assignment(self, assignment_id: str, **fields) -> AssignmentRecord:
        row = await self.session.get(ExpertAssignment, assignment_id)
        if row is None:
            raise NotFoundError(f"Assignment {assignment_id} not found")
        for name, value in fields.items():
            setattr(row, name, value)
        await self.session.flush()
        await self.session.refresh(row)
        return _to_assignment(row)

    async def list_assignments_by_request(
        self,
        request_id: str,
        status: AssignmentStatus | None = None,
    ) -> list[AssignmentRecord]:
        stmt = (
            select(ExpertAssignment)
            .where(ExpertAssignment.expert_request_id == request_id)
            .order_by(ExpertAssignment.created_at, ExpertAssignment.id)
            .execution_options(populate_existing=True)
        )
        if status is not None:
            stmt = stmt.where(ExpertAssignment.status == status)
        result = await self.session.execute(stmt)
        return [_to_assignment(r) for r in result.scalars().all()]

    async def list_assignments_by_expert(self, expert_id: str) -> list[AssignmentRecord]:
        result = await self.session.execute(
            select(ExpertAssignment)
            .where(ExpertAssignment.expert_id == expert_id)
            .order_by(ExpertAssignment.created_at.desc())
        )
        return [_to_assignment(r) for r in result.scalars().all()]

    async def accept_submitted_assignments(
        self, request_id: str, assignment_ids: list[str],
    ) -> list[AssignmentRecord]:
        if not assignment_ids:
            return []
        result = await self.session.execute(
            update(ExpertAssignment)
            .where(
                ExpertAssignment.expert_request_id == request_id,
                ExpertAssignment.id.in_(assignment_ids),
                ExpertAssignment.status == AssignmentStatus.SUBMITTED,
            )
            .values(status=AssignmentStatus.ACCEPTED, updated_at=func.now())
            .returning(ExpertAssignment.id)
            .execution_options(synchronize_session=False)
        )
        accepted_ids = [r[0] for r in result.all()]
        if not accepted_ids:
            return []

        rows = await self.session.execute(
            select(ExpertAssignment)
            .where(ExpertAssignment.id.in_(accepted_ids))
            .order_by(ExpertAssignment.created_at, ExpertAssignment.id)
            .execution_options(populate_existing=True)
        )
        return [_to_assignment(r) for r in rows.scalars().all()]

    async def count_assignments(self, request_ids: list[str]) -> dict[str, RequestCounts]:
        counts = {rid: RequestCounts() for rid in request_ids}
        if not request_ids:
            return counts

        completed = case(
            (
                ExpertAssignment.status.in_(
                    [AssignmentStatus.SUBMITTED, AssignmentStatus.ACCEPTED]
                ),
                1,
            ),
            else_=0,
        )
        result = await self.session.execute(
            select(
                ExpertAssignment.expert_request_id,
                func.count(ExpertAssignment.id),
                func.coalesce(func.sum(completed), 0),
            )
            .where(ExpertAssignment.expert_request_id.in_(request_ids))
            .group_by(ExpertAssignment.expert_request_id)
        )
        for request_id, assigned, done in result.all():
            counts[request_id] = RequestCounts(assigned=int(assigned), completed=int(done))
        return counts

    # --- RAG corpus ------------------------------------------------------

    async def list_accepted_answers(
        self, assignment_ids: list[str] | None = None,
    ) -> list[AcceptedAnswer]:
        stmt = (
            select(ExpertAssignment, ExpertRequest.question, ExpertRequest.title)
            .join(ExpertRequest, ExpertRequest.id == ExpertAssignment.expert_request_id)
            .where(
                ExpertAssignment.status == AssignmentStatus.ACCEPTED,
                ExpertAssignment.response.is_not(None),
                ExpertAssignment.response != "",
            )
            .order_by(ExpertAssignment.updated_at.desc())
        )
        if assignment_ids is not None:
            stmt = stmt.where(ExpertAssignment.id.in_(assignment_ids))
        result = await self.session.execute(stmt)
        return [
            AcceptedAnswer(
                assignment_id=a.id,
                expert_request_id=a.expert_request_id,
                expert_id=a.expert_id,
                question=question,
                title=title,
                response=a.response,
                response_embedding=_vector(a.response_embedding),
            )
            for a, question, title in result.all()
        ]

    async def set_response_embedding(
        self, assignment_id: str, embedding: list[float],
    ) -> None:
        result = await self.session.execute(
            update(ExpertAssignment)
            .where(ExpertAssignment.id == assignment_id)
            .values(response_embedding=embedding)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Assignment {assignment_id} not found")


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SqlExpertStore:
    """ExpertStore over an async_sessionmaker."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlExpertRepository]:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    yield SqlExpertRepository(session)
            except SQLAlchemyError as e:
                logger.error("Transaction rolled back: %s", e)
                raise StorageError(f"Storage transaction failed: {e}") from e
