"""
Grouping Infrastructure Models
===============================

SQLAlchemy ORM models for tickets and their messages.

Embeddings are stored as JSON arrays next to the rows; Milvus holds the
searchable copies.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON, Boolean, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, Uuid, text
)
from sqlalchemy.orm import Mapped, mapped_column

from ticketdedup.config import TicketStatus
from ticketdedup.infrastructure.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketModel(Base):
    """
    Database model for the Ticket entity.

    Among open tickets the canonical key is unique (partial unique index).
    """
    __tablename__ = "tickets"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TicketStatus.OPEN, index=True
    )
    canonical_key: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Vectors
    embedding: Mapped[Optional[List[float]]] = mapped_column(JSON, nullable=True)
    summary_embedding: Mapped[Optional[List[float]]] = mapped_column(JSON, nullable=True)

    # People
    assignees: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    reporter_user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    reporter_username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Structured summary: description, action_items, technical_details, priority_hint
    summary: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, index=True
    )

    __table_args__ = (
        Index(
            "uq_tickets_open_canonical_key",
            "canonical_key",
            unique=True,
            postgresql_where=text("status = 'open'"),
            sqlite_where=text("status = 'open'"),
        ),
    )


class TicketMessageModel(Base):
    """
    Database model for a chat message attached to a ticket.

    (channel_id, ts) identifies a chat message; redelivery updates the row.
    """
    __tablename__ = "ticket_messages"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    ticket_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Chat coordinates
    channel_id: Mapped[str] = mapped_column(String(64), nullable=False)
    ts: Mapped[str] = mapped_column(String(64), nullable=False)
    root_thread_ts: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    team_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    event_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    permalink: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    text: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[Optional[List[float]]] = mapped_column(JSON, nullable=True)
    canonical_key: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Intent fingerprint
    intent_action: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    intent_object: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    intent_value: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    intent_key: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    is_redundant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    redundant_of_message_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("channel_id", "ts", name="uq_ticket_messages_channel_ts"),
        Index("ix_ticket_messages_channel_created", "channel_id", "created_at"),
        Index("ix_ticket_messages_ticket_intent", "ticket_id", "intent_key"),
    )
