"""In-memory fakes: scripted LLM, repositories, publisher and a controllable clock."""

import copy
import json
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from ticketdedup.config import TicketStatus
from ticketdedup.core import DuplicateCanonicalKeyException, LLMException, RepositoryException
from ticketdedup.grouping.application import (
    GroupingService,
    ILLMClient,
    IMessageRepository,
    ITicketEventPublisher,
    ITicketRepository,
    MergeArbiter,
    SummaryService,
)
from ticketdedup.grouping.domain import ClassificationResult, GroupingConfig, IncomingMessage, Ticket, TicketMessage
from ticketdedup.grouping.infrastructure import EmbeddingIndex


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 6, 10, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float = 0, days: float = 0) -> None:
        self.now = self.now + timedelta(minutes=minutes, days=days)


class ScriptedLLM(ILLMClient):
    """
    LLM fake with per-operation scripted responses.

    Embeddings are picked by the first marker found in the embedded text.
    The last scripted response of an operation is reused once the others
    are consumed.
    """

    def __init__(self, embeddings: Optional[Dict[str, List[float]]] = None, default_embedding=None):
        self.embeddings = dict(embeddings or {})
        self.default_embedding = default_embedding
        self.responses: Dict[str, list] = {}
        self.calls: List[str] = []
        self.embedding_calls: List[str] = []

    def script(self, operation: str, *responses) -> None:
        self.responses.setdefault(operation, []).extend(responses)

    async def generate_embedding(self, text: str) -> List[float]:
        self.embedding_calls.append(text)
        for marker, vector in self.embeddings.items():
            if marker in text:
                return list(vector)
        if self.default_embedding is None:
            raise LLMException("no embedding scripted")
        return list(self.default_embedding)

    async def chat_completion(
        self,
        messages,
        temperature=0.3,
        max_tokens=1000,
        operation="chat_completion",
        json_schema=None
    ):
        self.calls.append(operation)
        queue = self.responses.get(operation)
        if not queue:
            raise LLMException(f"no response scripted for {operation}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        content = item if isinstance(item, str) else json.dumps(item)
        return SimpleNamespace(content=content)


class InMemoryMessageRepository(IMessageRepository):
    def __init__(self, clock: FakeClock):
        self._clock = clock
        self.rows: Dict[Tuple[str, str], TicketMessage] = {}

    async def upsert(self, message: TicketMessage) -> TicketMessage:
        existing = self.rows.get((message.channel_id, message.ts))
        stored = replace(
            message,
            id=existing.id if existing else str(uuid4()),
            created_at=existing.created_at if existing else (message.created_at or self._clock()),
        )
        self.rows[(message.channel_id, message.ts)] = stored
        return replace(stored)

    async def list_by_ticket(self, ticket_id: str) -> List[TicketMessage]:
        rows = [m for m in self.rows.values() if m.ticket_id == ticket_id]
        return [replace(m) for m in sorted(rows, key=lambda m: (m.created_at, m.ts))]

    async def recent_by_ticket(self, ticket_id: str, limit: int) -> List[TicketMessage]:
        return (await self.list_by_ticket(ticket_id))[-limit:]

    async def find_by_intent_key(self, ticket_id, intent_key, exclude_ts=None):
        for message in await self.list_by_ticket(ticket_id):
            if message.intent_key == intent_key and message.ts != exclude_ts:
                return message
        return None


class InMemoryTicketRepository(ITicketRepository):
    def __init__(self, messages: InMemoryMessageRepository, clock: FakeClock):
        self._messages = messages
        self._clock = clock
        self.tickets: Dict[str, Ticket] = {}

    def _open(self):
        return [t for t in self.tickets.values() if t.status == TicketStatus.OPEN]

    @staticmethod
    def _latest(tickets) -> Optional[Ticket]:
        if not tickets:
            return None
        return copy.deepcopy(max(tickets, key=lambda t: t.updated_at))

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        ticket = self.tickets.get(ticket_id)
        return copy.deepcopy(ticket) if ticket else None

    async def find_open_by_thread(self, channel_id: str, root_thread_ts: str) -> Optional[Ticket]:
        ids = {
            m.ticket_id for m in self._messages.rows.values()
            if m.channel_id == channel_id and m.root_thread_ts == root_thread_ts
        }
        return self._latest([t for t in self._open() if t.id in ids])

    async def find_open_by_canonical_key(self, canonical_key: str) -> Optional[Ticket]:
        return self._latest([t for t in self._open() if t.canonical_key == canonical_key])

    async def get_open_by_ids(self, ticket_ids, updated_since=None) -> List[Ticket]:
        return [
            copy.deepcopy(t) for t in self._open()
            if t.id in ticket_ids and (updated_since is None or t.updated_at >= updated_since)
        ]

    async def find_most_recent_open_in_channel(self, channel_id: str, minutes_back: int, now=None) -> Optional[Ticket]:
        since = (now or datetime.now(timezone.utc)) - timedelta(minutes=minutes_back)
        ids = {
            m.ticket_id for m in self._messages.rows.values()
            if m.channel_id == channel_id and m.created_at >= since
        }
        return self._latest([t for t in self._open() if t.id in ids])

    async def create(self, ticket: Ticket) -> Ticket:
        if ticket.canonical_key and any(t.canonical_key == ticket.canonical_key for t in self._open()):
            raise DuplicateCanonicalKeyException(ticket.canonical_key)
        self.tickets[ticket.id] = copy.deepcopy(ticket)
        return copy.deepcopy(ticket)

    async def update(self, ticket: Ticket) -> Ticket:
        if ticket.id not in self.tickets:
            raise RepositoryException(f"Ticket {ticket.id} does not exist")
        self.tickets[ticket.id] = copy.deepcopy(ticket)
        return copy.deepcopy(ticket)

    async def touch(self, ticket_id: str, at=None) -> None:
        self.tickets[ticket_id].updated_at = at or self._clock()

    async def list_tickets(self, status=None, limit=100) -> List[Ticket]:
        tickets = [t for t in self.tickets.values() if status is None or t.status == status]
        tickets.sort(key=lambda t: t.updated_at, reverse=True)
        return [copy.deepcopy(t) for t in tickets[:limit]]


class RecordingPublisher(ITicketEventPublisher):
    def __init__(self):
        self.published: List[str] = []

    async def publish_ticket_updated(self, ticket_id: str) -> None:
        self.published.append(ticket_id)


def make_message(
    text: str,
    ts: str,
    channel: str = "C1",
    user: str = "U1",
    thread: Optional[str] = None,
    username: str = "dana",
    is_context_only: bool = False
) -> IncomingMessage:
    return IncomingMessage(
        channel_id=channel,
        ts=ts,
        user_id=user,
        text=text,
        root_thread_ts=thread,
        username=username,
        is_context_only=is_context_only,
    )


def make_classification(category: str = "bug_report", title: str = "Issue", signals=(), assignees=()):
    return ClassificationResult(
        is_relevant=True,
        category=category,
        confidence=0.9,
        short_title=title,
        signals=frozenset(signals),
        inferred_assignees=frozenset(assignees),
    )


class GroupingEnv(SimpleNamespace):
    def build(self, config: Optional[GroupingConfig] = None, tickets: Optional[ITicketRepository] = None):
        tickets = tickets or self.tickets
        return GroupingService(
            tickets=tickets,
            messages=self.messages,
            index=EmbeddingIndex(self.ticket_store, self.message_store, tickets, candidates=5),
            llm_client=self.llm,
            summaries=SummaryService(self.llm),
            arbiter=MergeArbiter(self.llm),
            config=config or GroupingConfig(),
            clock=self.clock,
        )


