# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌──────────────────────┐     ┌────────────┐     ┌──────────────┐
# │ users                │     │ chats      │     │ messages     │
# ├──────────────────────┤     ├────────────┤     ├──────────────┤
# │ id (PK)              │◀─┐  │ id (PK)    │──1:N│ chat_id (FK) │
# │ email                │  └──│ user_id    │     │ role         │
# │ expertise            │     │ title      │     │ content      │
# │ expertise_tags       │     └────────────┘     └──────────────┘
# │ tags_embedding       │           │
# │ tags_embedding_source│           │ 1:N
# │ credits, xp          │           ▼
# └──────────────────────┘     ┌────────────────────────┐
#           │                  │ expert_requests        │
#           │                  ├────────────────────────┤
#           │                  │ id (PK), chat_id (FK)  │
#           │                  │ question, title, tags  │
#           │                  │ status                 │
#           │                  │ assigned_experts_count │
#           │                  │ completed_experts_count│
#           │                  └────────────────────────┘
#           │                              │ 1:N
#           │         ┌────────────────────▼─────────────┐
#           └────────▶│ expert_assignments               │
#                     ├──────────────────────────────────┤
#                     │ id (PK), expert_request_id (FK)  │
#                     │ expert_id (FK), status, title    │
#                     │ response, rating, credits_awarded│
#                     │ response_embedding vector(1536)  │
#                     └──────────────────────────────────┘
#
# Counters on expert_requests are the only contended rows. They are only
# ever changed with relative UPDATEs (see db/sql_store.py).
# =============================================================================

import enum
import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from expertqa.config import settings


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class for all ORM models."""

    pass


class RequestStatus(str, enum.Enum):
    """
    Lifecycle of an expert request.

        PENDING → IN_PROGRESS → COMPLETED

    PENDING until the first expert is assigned; COMPLETED once consensus
    is reached (or an assignment is accepted directly).
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class AssignmentStatus(str, enum.Enum):
    """
    Lifecycle of one expert × one request.

        ASSIGNED → WORKING → SUBMITTED → ACCEPTED
                                       → REJECTED
    """

    ASSIGNED = "assigned"
    WORKING = "working"
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class User(Base):
    """
    A user account. Every user is also a potential expert.

    The expert profile is the free-text `expertise`, the ordered
    `expertise_tags`, and an optional tag embedding. The embedding is only
    usable for matching while `tags_embedding_source` equals the current
    joined tag string.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    expertise: Mapped[str | None] = mapped_column(Text, nullable=True)
    expertise_tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    tags_embedding: Mapped[list[float] | None] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=True,
    )
    # The exact ", "-joined tag string the embedding was computed from
    tags_embedding_source: Mapped[str | None] = mapped_column(Text, nullable=True)

    credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"


class Chat(Base):
    """A conversation owned by one user."""

    __tablename__ = "chats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False, default="Untitled")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="chat",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Chat(id={self.id}, user_id={self.user_id})>"


class Message(Base):
    """A chat message. Consensus answers are appended with role='assistant'."""

    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    chat_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("chats.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    chat: Mapped["Chat"] = relationship("Chat", back_populates="messages")


class ExpertRequest(Base):
    """
    A question submitted for community answering.

    Invariant: 0 <= completed_experts_count <= assigned_experts_count.
    Never deleted by the core; deletion follows chat deletion.
    """

    __tablename__ = "expert_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    chat_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("chats.id", ondelete="CASCADE"),
        nullable=False,
    )
    question: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="Untitled")
    expertise_tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=RequestStatus.PENDING,
    )

    assigned_experts_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0,
    )
    completed_experts_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    assignments: Mapped[list["ExpertAssignment"]] = relationship(
        "ExpertAssignment",
        back_populates="expert_request",
    )

    def __repr__(self) -> str:
        return (
            f"<ExpertRequest(id={self.id}, status={self.status}, "
            f"assigned={self.assigned_experts_count}, "
            f"completed={self.completed_experts_count})>"
        )


class ExpertAssignment(Base):
    """
    One expert paired with one request.

    Invariant: response is non-empty whenever status is submitted,
    accepted or rejected. `response_embedding` is the RAG corpus vector,
    computed from "<question> <response>" after acceptance or lazily at
    retrieval time.
    """

    __tablename__ = "expert_assignments"
    __table_args__ = (
        UniqueConstraint(
            "expert_request_id", "expert_id",
            name="uq_assignment_request_expert",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    expert_request_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("expert_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    expert_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    status: Mapped[AssignmentStatus] = mapped_column(
        Enum(AssignmentStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=AssignmentStatus.ASSIGNED,
    )

    # Request title copied at assignment time for display in expert inboxes
    title: Mapped[str] = mapped_column(Text, nullable=False, default="Untitled")

    response: Mapped[str | None] = mapped_column(Text, nullable=True)
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    credits_awarded: Mapped[int | None] = mapped_column(Integer, nullable=True)

    response_embedding: Mapped[list[float] | None] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    expert_request: Mapped["ExpertRequest"] = relationship(
        "ExpertRequest", back_populates="assignments",
    )

    def __repr__(self) -> str:
        return (
            f"<ExpertAssignment(id={self.id}, request={self.expert_request_id}, "
            f"expert={self.expert_id}, status={self.status})>"
        )


# =============================================================================
# Indexes
# =============================================================================

assignment_request_status_idx = Index(
    "idx_assignment_request_status",
    ExpertAssignment.expert_request_id,
    ExpertAssignment.status,
)

assignment_expert_created_idx = Index(
    "idx_assignment_expert_created",
    ExpertAssignment.expert_id,
    ExpertAssignment.created_at,
)

expert_request_chat_created_idx = Index(
    "idx_expert_request_chat_created",
    ExpertRequest.chat_id,
    ExpertRequest.created_at,
)
