"""
Grouping Domain Entities
=========================

Pure Python domain entities for message grouping.

These entities carry no infrastructure concerns: repositories translate
between them and ORM rows, services pass them between pipeline stages.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import FrozenSet, List, Optional

from ticketdedup.config import (
    Priority, TicketStatus, VALID_CATEGORIES, PRIORITY_ORDER
)


@dataclass(frozen=True)
class IncomingMessage:
    """
    A chat message as delivered by the chat platform.

    ``ts`` is an opaque token that orders messages within a channel.
    ``root_thread_ts`` is the thread root, or the message's own ts when it
    is not a reply.
    """
    channel_id: str
    ts: str
    user_id: str
    text: str
    root_thread_ts: Optional[str] = None
    username: Optional[str] = None
    team_id: Optional[str] = None
    event_id: Optional[str] = None
    permalink: Optional[str] = None
    is_context_only: bool = False

    @property
    def thread_ts(self) -> str:
        """Thread root, falling back to the message's own ts."""
        return self.root_thread_ts or self.ts


@dataclass(frozen=True)
class NormalizedMessage:
    """Lowercased text plus the signal tokens extracted from it."""
    normalized_text: str
    signals: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class IntentFingerprint:
    """
    What a message asks for: action, object and optional value.

    ``key`` is ``action|object|value`` (``*`` for no value) and is set only
    when both action and object were resolved.
    """
    action: Optional[str] = None
    object: Optional[str] = None
    value: Optional[str] = None
    key: Optional[str] = None


@dataclass(frozen=True)
class ClassificationResult:
    """Relevance and category decided for one message."""
    is_relevant: bool
    category: str
    confidence: float
    short_title: str
    signals: FrozenSet[str] = frozenset()
    inferred_assignees: FrozenSet[str] = frozenset()

    def __post_init__(self):
        if self.category not in VALID_CATEGORIES:
            raise ValueError(f"Unknown category: {self.category}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("confidence must be between 0 and 1")
        if len(self.short_title) > 100:
            object.__setattr__(self, "short_title", self.short_title[:100])


@dataclass
class TicketSummary:
    """Structured summary of a ticket's conversation."""
    description: str
    action_items: List[str] = field(default_factory=list)
    technical_details: Optional[str] = None
    priority_hint: str = Priority.MEDIUM

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "action_items": list(self.action_items),
            "technical_details": self.technical_details,
            "priority_hint": self.priority_hint,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["TicketSummary"]:
        if not data:
            return None
        priority = data.get("priority_hint") or Priority.MEDIUM
        return cls(
            description=data.get("description", ""),
            action_items=list(data.get("action_items") or []),
            technical_details=data.get("technical_details"),
            priority_hint=priority if priority in PRIORITY_ORDER else Priority.MEDIUM,
        )


@dataclass
class Ticket:
    """
    A deduplicated ticket grouping one or more chat messages.

    ``updated_at`` is bumped every time a message is attached.
    """
    id: str
    title: str
    category: str
    status: str
    created_at: datetime
    updated_at: datetime
    canonical_key: Optional[str] = None
    embedding: Optional[List[float]] = None
    summary_embedding: Optional[List[float]] = None
    assignees: List[str] = field(default_factory=list)
    reporter_user_id: Optional[str] = None
    reporter_username: Optional[str] = None
    summary: Optional[TicketSummary] = None

    @property
    def is_open(self) -> bool:
        return self.status == TicketStatus.OPEN

    @property
    def priority(self) -> str:
        """Priority carried by the current summary, medium when unknown."""
        return self.summary.priority_hint if self.summary else Priority.MEDIUM

    def minutes_since_update(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return max(0.0, (now - self.updated_at).total_seconds() / 60)

    def merge_assignees(self, assignees) -> bool:
        """Add assignees not already present. Returns True if any were added."""
        added = False
        for assignee in sorted(assignees):
            if assignee not in self.assignees:
                self.assignees.append(assignee)
                added = True
        return added


@dataclass
class TicketMessage:
    """A persisted chat message. Unique per (channel_id, ts)."""
    ticket_id: str
    channel_id: str
    ts: str
    root_thread_ts: str
    user_id: str
    text: str
    id: Optional[str] = None
    username: Optional[str] = None
    team_id: Optional[str] = None
    event_id: Optional[str] = None
    permalink: Optional[str] = None
    embedding: Optional[List[float]] = None
    canonical_key: Optional[str] = None
    intent_action: Optional[str] = None
    intent_object: Optional[str] = None
    intent_value: Optional[str] = None
    intent_key: Optional[str] = None
    is_redundant: bool = False
    redundant_of_message_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_incoming(cls, message: IncomingMessage, ticket_id: str) -> "TicketMessage":
        return cls(
            ticket_id=ticket_id,
            channel_id=message.channel_id,
            ts=message.ts,
            root_thread_ts=message.thread_ts,
            user_id=message.user_id,
            username=message.username,
            team_id=message.team_id,
            event_id=message.event_id,
            text=message.text,
            permalink=message.permalink,
        )


@dataclass(frozen=True)
class TicketCandidate:
    """An open ticket found by nearest-neighbour search."""
    ticket_id: str
    distance: float
    category: str
    updated_at: datetime
    canonical_key: Optional[str] = None
    channel_id: Optional[str] = None
    source: str = "ticket"


@dataclass(frozen=True)
class MatchScoreBreakdown:
    """Components of the recent-channel match score."""
    semantic: float
    same_category: bool
    same_channel: bool
    recent_update: bool
    signal_overlap: int
    distance: float
    minutes_since_update: float
    total: float

    def to_dict(self) -> dict:
        return {
            "semantic": round(self.semantic, 4),
            "same_category": self.same_category,
            "same_channel": self.same_channel,
            "recent_update": self.recent_update,
            "signal_overlap": self.signal_overlap,
            "distance": round(self.distance, 4),
            "minutes_since_update": round(self.minutes_since_update, 2),
            "total": round(self.total, 4),
        }


@dataclass(frozen=True)
class MergeDecision:
    """Outcome of asking the model whether two conversations are one ticket."""
    should_merge: bool
    confidence: float
    reason: str = ""
