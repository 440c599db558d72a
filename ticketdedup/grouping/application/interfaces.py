"""
Grouping Ports
===============

Interfaces the grouping services depend on. Infrastructure provides the
implementations; tests provide in-memory fakes.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Optional

from ticketdedup.grouping.domain import Ticket, TicketCandidate, TicketMessage


class ILLMClient(ABC):
    """Interface for LLM operations."""

    @abstractmethod
    async def generate_embedding(self, text: str) -> List[float]:
        """Generate an embedding vector for text."""

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        json_schema: Optional[dict] = None
    ) -> Any:
        """Generate chat completion. The result exposes ``content``."""


class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID."""

    @abstractmethod
    async def find_open_by_thread(self, channel_id: str, root_thread_ts: str) -> Optional[Ticket]:
        """Open ticket holding a message from this thread."""

    @abstractmethod
    async def find_open_by_canonical_key(self, canonical_key: str) -> Optional[Ticket]:
        """Open ticket with this canonical key."""

    @abstractmethod
    async def get_open_by_ids(
        self,
        ticket_ids: List[str],
        updated_since: Optional[datetime] = None
    ) -> List[Ticket]:
        """Open tickets among ``ticket_ids``, optionally updated since a cut-off."""

    @abstractmethod
    async def find_most_recent_open_in_channel(
        self,
        channel_id: str,
        minutes_back: int,
        now: Optional[datetime] = None
    ) -> Optional[Ticket]:
        """
        Most recently updated open ticket with a message in the channel in the window.

        The window ends at now, the caller's clock; wall-clock time when omitted.
        """

    @abstractmethod
    async def create(self, ticket: Ticket) -> Ticket:
        """
        Persist a new ticket.

        Raises:
            DuplicateCanonicalKeyException: If an open ticket owns the key
        """

    @abstractmethod
    async def update(self, ticket: Ticket) -> Ticket:
        """Persist changes to title, summary, assignees, embeddings and status."""

    @abstractmethod
    async def touch(self, ticket_id: str, at: Optional[datetime] = None) -> None:
        """Bump updated_at."""

    @abstractmethod
    async def list_tickets(self, status: Optional[str] = None, limit: int = 100) -> List[Ticket]:
        """List tickets, most recently updated first."""


class IMessageRepository(ABC):
    """Interface for ticket message data access."""

    @abstractmethod
    async def upsert(self, message: TicketMessage) -> TicketMessage:
        """Insert, or update the existing row with the same (channel_id, ts)."""

    @abstractmethod
    async def list_by_ticket(self, ticket_id: str) -> List[TicketMessage]:
        """All messages of a ticket, oldest first."""

    @abstractmethod
    async def recent_by_ticket(self, ticket_id: str, limit: int) -> List[TicketMessage]:
        """Latest ``limit`` messages of a ticket, oldest first."""

    @abstractmethod
    async def find_by_intent_key(
        self,
        ticket_id: str,
        intent_key: str,
        exclude_ts: Optional[str] = None
    ) -> Optional[TicketMessage]:
        """Earliest message of the ticket with this intent key."""


class IEmbeddingIndex(ABC):
    """Interface for nearest-neighbour search over ticket and message embeddings."""

    @abstractmethod
    async def index_ticket(self, ticket: Ticket, embedding: List[float]) -> None:
        """Store or replace a ticket's embedding."""

    @abstractmethod
    async def index_message(self, message: TicketMessage, embedding: List[float]) -> None:
        """Store or replace a message's embedding."""

    @abstractmethod
    async def search_tickets(
        self,
        embedding: List[float],
        updated_since: datetime
    ) -> Optional[TicketCandidate]:
        """Nearest open ticket by ticket embedding, updated since the cut-off."""

    @abstractmethod
    async def search_messages(
        self,
        embedding: List[float],
        updated_since: datetime
    ) -> Optional[TicketCandidate]:
        """Nearest open ticket by message embedding, updated since the cut-off."""


class ITicketEventPublisher(ABC):
    """Interface for pushing ticket changes to live listeners."""

    @abstractmethod
    async def publish_ticket_updated(self, ticket_id: str) -> None:
        """Announce that a ticket changed."""
