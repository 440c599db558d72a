"""
Embedding Index
================

Nearest-open-ticket search over two vector collections: one vector per
ticket and one per message.

Vector stores know nothing about ticket state, so the index over-fetches
candidates and keeps the nearest one whose ticket is open and was updated
inside the lookback window.
"""

from datetime import datetime
from typing import Dict, List, Optional, Protocol, Tuple

from ticketdedup.config import settings
from ticketdedup.grouping.application.interfaces import IEmbeddingIndex, ITicketRepository
from ticketdedup.grouping.domain import Ticket, TicketCandidate, TicketMessage, cosine_distance
from ticketdedup.infrastructure.vectorstore import SearchResult, VectorRecord
from ticketdedup.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class VectorStore(Protocol):
    async def upsert(self, records: List[VectorRecord]) -> None: ...

    async def search(
        self,
        query_embedding: List[float],
        top_k: int = 5,
        output_fields: Optional[List[str]] = None
    ) -> List[SearchResult]: ...


class InMemoryVectorStore:
    """
    Brute-force vector store kept in process memory.

    Used when Milvus is not configured, and in tests. Vectors whose
    dimension differs from the query are skipped.
    """

    def __init__(self):
        self._records: Dict[str, Tuple[List[float], dict]] = {}

    def __len__(self) -> int:
        return len(self._records)

    async def upsert(self, records: List[VectorRecord]) -> None:
        for record in records:
            self._records[record.id] = (list(record.vector), dict(record.metadata))

    async def search(
        self,
        query_embedding: List[float],
        top_k: int = 5,
        output_fields: Optional[List[str]] = None
    ) -> List[SearchResult]:
        scored = [
            SearchResult(id=record_id, distance=cosine_distance(query_embedding, vector), metadata=metadata)
            for record_id, (vector, metadata) in self._records.items()
            if len(vector) == len(query_embedding)
        ]
        scored.sort(key=lambda r: r.distance)
        return scored[:top_k]


class EmbeddingIndex(IEmbeddingIndex):
    """
    IEmbeddingIndex over a ticket store and a message store.

    Args:
        ticket_store: One vector per ticket, keyed by ticket id
        message_store: One vector per message, keyed by message id
        tickets: Repository used to keep only open, recently updated tickets
        candidates: Nearest neighbours fetched per search
    """

    def __init__(
        self,
        ticket_store: VectorStore,
        message_store: VectorStore,
        tickets: ITicketRepository,
        candidates: Optional[int] = None
    ):
        self._ticket_store = ticket_store
        self._message_store = message_store
        self._tickets = tickets
        self._candidates = candidates or settings.vector_search_candidates

    async def index_ticket(self, ticket: Ticket, embedding: List[float]) -> None:
        await self._ticket_store.upsert([
            VectorRecord(
                id=ticket.id,
                vector=embedding,
                metadata={"ticket_id": ticket.id, "category": ticket.category},
            )
        ])

    async def index_message(self, message: TicketMessage, embedding: List[float]) -> None:
        if message.id is None:
            return
        await self._message_store.upsert([
            VectorRecord(
                id=message.id,
                vector=embedding,
                metadata={"ticket_id": message.ticket_id, "channel_id": message.channel_id},
            )
        ])

    async def search_tickets(self, embedding: List[float], updated_since: datetime) -> Optional[TicketCandidate]:
        hits = await self._ticket_store.search(embedding, self._candidates, ["ticket_id", "category"])
        return await self._nearest_open(hits, updated_since, "ticket")

    async def search_messages(self, embedding: List[float], updated_since: datetime) -> Optional[TicketCandidate]:
        hits = await self._message_store.search(embedding, self._candidates, ["ticket_id", "channel_id"])
        return await self._nearest_open(hits, updated_since, "message")

    async def _nearest_open(
        self,
        hits: List[SearchResult],
        updated_since: datetime,
        source: str
    ) -> Optional[TicketCandidate]:
        if not hits:
            return None

        ticket_ids = list(dict.fromkeys(h.metadata.get("ticket_id") or h.id for h in hits))
        open_tickets = {
            t.id: t for t in await self._tickets.get_open_by_ids(ticket_ids, updated_since=updated_since)
        }

        for hit in sorted(hits, key=lambda h: h.distance):
            ticket = open_tickets.get(hit.metadata.get("ticket_id") or hit.id)
            if ticket is None:
                continue
            return TicketCandidate(
                ticket_id=ticket.id,
                distance=hit.distance,
                category=ticket.category,
                updated_at=ticket.updated_at,
                canonical_key=ticket.canonical_key,
                channel_id=hit.metadata.get("channel_id"),
                source=source,
            )

        logger.debug("No open candidate among nearest vectors", extra={"source": source, "hits": len(hits)})
        return None
