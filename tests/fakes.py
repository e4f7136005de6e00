# =============================================================================
# Test Doubles — In-Memory Store, Scripted Providers
# =============================================================================
#
# Everything here satisfies the same Protocols as the production classes,
# so services run unmodified against them:
#
#   InMemoryExpertStore  → ExpertStore / ExpertRepository
#   ScriptedEmbedder     → EmbeddingGateway
#   ScriptedProvider     → LLMProvider (complete + stream)
#   RecordingDispatcher  → Dispatcher
#
# The store serializes transactions with an asyncio.Lock and restores a
# snapshot when a transaction body raises, so rollback behaviour matches
# the SQL store.
# =============================================================================

from __future__ import annotations

import asyncio
import copy
import itertools
import uuid
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timedelta

from expertqa.db.models import AssignmentStatus, RequestStatus
from expertqa.db.store import (
    COUNTED_STATUSES,
    AcceptedAnswer,
    AssignmentRecord,
    ChatRecord,
    ExpertProfile,
    ExpertRequestRecord,
    RequestCounts,
    join_tags,
)
from expertqa.errors import NotFoundError, ProviderError
from expertqa.services.llm import LLMResponse

_EPOCH = datetime(2026, 1, 1)
_UNSET = object()


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class InMemoryExpertRepository:
    def __init__(self, store: InMemoryExpertStore):
        self._s = store

    # --- Experts ---

    async def list_expert_profiles(self, exclude_user_id=None):
        return [
            copy.deepcopy(u) for u in self._s.users.values() if u.id != exclude_user_id
        ]

    async def get_expert_profile(self, user_id):
        user = self._s.users.get(user_id)
        return copy.deepcopy(user) if user else None

    async def update_expert_profile(
        self, user_id, *, expertise_tags, expertise, tags_embedding, tags_embedding_source,
    ):
        user = self._s.users.get(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        user.expertise_tags = list(expertise_tags)
        user.expertise = expertise
        user.tags_embedding = list(tags_embedding) if tags_embedding is not None else None
        user.tags_embedding_source = tags_embedding_source
        return copy.deepcopy(user)

    async def award_credits(self, user_id, amount):
        user = self._s.users.get(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        user.credits += amount
        user.xp += amount

    # --- Chats ---

    async def get_chat(self, chat_id):
        chat = self._s.chats.get(chat_id)
        return replace(chat) if chat else None

    async def append_message(self, chat_id, role, content):
        self._s.messages.append((chat_id, role, content))

    # --- Requests ---

    async def create_request(self, chat_id, question, title, expertise_tags):
        record = ExpertRequestRecord(
            id=_new_id(),
            chat_id=chat_id,
            question=question,
            title=title,
            expertise_tags=list(expertise_tags),
            status=RequestStatus.PENDING,
            created_at=self._s.tick(),
        )
        self._s.requests[record.id] = record
        return copy.deepcopy(record)

    async def get_request(self, request_id):
        record = self._s.requests.get(request_id)
        return copy.deepcopy(record) if record else None

    async def list_requests_by_chat(self, chat_id):
        rows = [r for r in self._s.requests.values() if r.chat_id == chat_id]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return copy.deepcopy(rows)

    async def set_request_status(self, request_id, status):
        record = self._s.requests.get(request_id)
        if record is None:
            raise NotFoundError(f"Expert request {request_id} not found")
        record.status = status

    async def adjust_request_counters(self, request_id, assigned_delta=0, completed_delta=0):
        record = self._s.requests.get(request_id)
        if record is None:
            raise NotFoundError(f"Expert request {request_id} not found")
        record.assigned_experts_count = max(record.assigned_experts_count + assigned_delta, 0)
        record.completed_experts_count = max(record.completed_experts_count + completed_delta, 0)
        if assigned_delta > 0 and record.status == RequestStatus.PENDING:
            record.status = RequestStatus.IN_PROGRESS
        return copy.deepcopy(record)

    # --- Assignments ---

    async def create_assignment(self, request_id, expert_id, title):
        for a in self._s.assignments.values():
            if a.expert_request_id == request_id and a.expert_id == expert_id:
                return None
        now = self._s.tick()
        record = AssignmentRecord(
            id=_new_id(),
            expert_request_id=request_id,
            expert_id=expert_id,
            status=AssignmentStatus.ASSIGNED,
            title=title,
            created_at=now,
            updated_at=now,
        )
        self._s.assignments[record.id] = record
        return copy.deepcopy(record)

    async def get_assignment(self, assignment_id, for_update=False):
        record = self._s.assignments.get(assignment_id)
        return copy.deepcopy(record) if record else None

    async def update_assignment(self, assignment_id, **fields):
        record = self._s.assignments.get(assignment_id)
        if record is None:
            raise NotFoundError(f"Assignment {assignment_id} not found")
        for name, value in fields.items():
            setattr(record, name, value)
        record.updated_at = self._s.tick()
        return copy.deepcopy(record)

    async def list_assignments_by_request(self, request_id, status=None):
        return [
            copy.deepcopy(a)
            for a in self._s.assignments.values()
            if a.expert_request_id == request_id and (status is None or a.status == status)
        ]

    async def list_assignments_by_expert(self, expert_id):
        rows = [a for a in self._s.assignments.values() if a.expert_id == expert_id]
        rows.sort(key=lambda a: a.created_at, reverse=True)
        return copy.deepcopy(rows)

    async def accept_submitted_assignments(self, request_id, assignment_ids):
        flipped = []
        for a in self._s.assignments.values():
            if (
                a.expert_request_id == request_id
                and a.id in assignment_ids
                and a.status == AssignmentStatus.SUBMITTED
            ):
                a.status = AssignmentStatus.ACCEPTED
                a.updated_at = self._s.tick()
                flipped.append(copy.deepcopy(a))
        return flipped

    async def count_assignments(self, request_ids):
        counts = {rid: RequestCounts() for rid in request_ids}
        for a in self._s.assignments.values():
            if a.expert_request_id in counts:
                c = counts[a.expert_request_id]
                c.assigned += 1
                if a.status in COUNTED_STATUSES:
                    c.completed += 1
        return counts

    # --- RAG corpus ---

    async def list_accepted_answers(self, assignment_ids=None):
        answers = []
        for a in self._s.assignments.values():
            if a.status != AssignmentStatus.ACCEPTED or not a.response:
                continue
            if assignment_ids is not None and a.id not in assignment_ids:
                continue
            request = self._s.requests[a.expert_request_id]
            answers.append(AcceptedAnswer(
                assignment_id=a.id,
                expert_request_id=a.expert_request_id,
                expert_id=a.expert_id,
                question=request.question,
                title=request.title,
                response=a.response,
                response_embedding=list(a.response_embedding)
                if a.response_embedding is not None else None,
            ))
        return answers

    async def set_response_embedding(self, assignment_id, embedding):
        record = self._s.assignments.get(assignment_id)
        if record is None:
            raise NotFoundError(f"Assignment {assignment_id} not found")
        record.response_embedding = list(embedding)


class InMemoryExpertStore:
    """ExpertStore backed by dicts. Seed with the add_* helpers."""

    def __init__(self):
        self.users: dict[str, ExpertProfile] = {}
        self.chats: dict[str, ChatRecord] = {}
        self.messages: list[tuple[str, str, str]] = []
        self.requests: dict[str, ExpertRequestRecord] = {}
        self.assignments: dict[str, AssignmentRecord] = {}
        self.transactions = 0
        self._clock = itertools.count(1)
        self._lock: asyncio.Lock | None = None
        self._lock_loop = None

    def tick(self) -> datetime:
        return _EPOCH + timedelta(seconds=next(self._clock))

    def _get_lock(self) -> asyncio.Lock:
        # Each asyncio.run() in a test gets a fresh loop
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    def _snapshot(self) -> tuple:
        return copy.deepcopy((self.users, self.chats, self.messages, self.requests, self.assignments))

    @asynccontextmanager
    async def transaction(self):
        async with self._get_lock():
            snapshot = self._snapshot()
            self.transactions += 1
            try:
                yield InMemoryExpertRepository(self)
            except BaseException:
                (self.users, self.chats, self.messages,
                 self.requests, self.assignments) = snapshot
                raise
            # Let other tasks interleave between transactions
            await asyncio.sleep(0)

    # --- Seeding ---

    def add_expert(
        self,
        user_id: str,
        tags: list[str] | None = None,
        embedding: list[float] | None = None,
        source=_UNSET,
        email: str | None = None,
        credits: int = 0,
        xp: int = 0,
    ) -> ExpertProfile:
        tags = list(tags or [])
        if source is _UNSET:
            source = join_tags(tags) if embedding is not None else None
        profile = ExpertProfile(
            id=user_id,
            email=email or f"{user_id}@example.com",
            expertise_tags=tags,
            tags_embedding=embedding,
            tags_embedding_source=source,
            credits=credits,
            xp=xp,
        )
        self.users[user_id] = profile
        return profile

    def add_chat(self, chat_id: str, user_id: str) -> ChatRecord:
        if user_id not in self.users:
            self.add_expert(user_id)
        chat = ChatRecord(id=chat_id, user_id=user_id)
        self.chats[chat_id] = chat
        return chat

    def add_request(
        self,
        chat_id: str,
        question: str = "How do I profile a slow Python service?",
        tags: list[str] | None = None,
        title: str = "Profiling",
    ) -> ExpertRequestRecord:
        record = ExpertRequestRecord(
            id=_new_id(),
            chat_id=chat_id,
            question=question,
            title=title,
            expertise_tags=list(tags or []),
            status=RequestStatus.PENDING,
            created_at=self.tick(),
        )
        self.requests[record.id] = record
        return record

    def add_assignment(
        self,
        request_id: str,
        expert_id: str,
        status: AssignmentStatus = AssignmentStatus.ASSIGNED,
        response: str | None = None,
        response_embedding: list[float] | None = None,
    ) -> AssignmentRecord:
        """Insert an assignment and keep the request counters consistent."""
        if expert_id not in self.users:
            self.add_expert(expert_id)
        now = self.tick()
        record = AssignmentRecord(
            id=_new_id(),
            expert_request_id=request_id,
            expert_id=expert_id,
            status=status,
            title=self.requests[request_id].title,
            response=response,
            response_embedding=response_embedding,
            created_at=now,
            updated_at=now,
        )
        self.assignments[record.id] = record
        request = self.requests[request_id]
        request.assigned_experts_count += 1
        if status in COUNTED_STATUSES:
            request.completed_experts_count += 1
        if request.status == RequestStatus.PENDING:
            request.status = RequestStatus.IN_PROGRESS
        return record


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class ScriptedEmbedder:
    """
    Returns vectors from a text → vector map.

    Unmapped texts get `default`; with no default, or with fail=True, the
    call raises ProviderError.
    """

    def __init__(
        self,
        vectors: dict[str, list[float]] | None = None,
        default: list[float] | None = None,
        fail: bool = False,
    ):
        self.vectors = dict(vectors or {})
        self.default = default
        self.fail = fail
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise ProviderError("embedding provider unavailable")
        if text in self.vectors:
            return list(self.vectors[text])
        if self.default is not None:
            return list(self.default)
        raise ProviderError(f"no scripted vector for {text!r}")


class ScriptedProvider:
    """
    LLMProvider that replays scripted outputs in order.

    Each item is either the full text to return (streamed in small chunks)
    or an exception instance to raise.
    """

    def __init__(self, outputs=None, model: str = "fake-model", chunk_size: int = 7):
        self.outputs = list(outputs or [])
        self.model = model
        self.chunk_size = chunk_size
        self.calls: list[dict] = []

    def _next(self, messages, system) -> str:
        self.calls.append({"messages": messages, "system": system})
        if not self.outputs:
            raise ProviderError("no scripted output left")
        item = self.outputs.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def complete(self, messages, system=None, temperature=None, max_tokens=None):
        text = self._next(messages, system)
        return LLMResponse(content=text, model=self.model, input_tokens=0, output_tokens=0)

    async def stream(self, messages, system=None, temperature=None, max_tokens=None):
        text = self._next(messages, system)
        for i in range(0, len(text), self.chunk_size):
            yield text[i:i + self.chunk_size]


class RecordingDispatcher:
    def __init__(self):
        self.jobs: list[tuple] = []

    def dispatch(self, job: str, *args) -> None:
        self.jobs.append((job, *args))
