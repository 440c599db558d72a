"""
Grouping Infrastructure Layer
==============================

Infrastructure implementations for the message grouping module.

Contains:
- Models: SQLAlchemy ORM models
- Repositories: Data access implementations
- Cache: TTL classification cache with a scheduled sweeper
- Vector index: Ticket/message embedding search
- Events: ticket_updated broadcasting
- Config manager: Hot-reloaded grouping thresholds
- External: LLM client adapter
- Runner: Session-scoped grouping jobs
"""

from ticketdedup.grouping.infrastructure.models import TicketModel, TicketMessageModel
from ticketdedup.grouping.infrastructure.repositories import (
    SQLAlchemyTicketRepository,
    SQLAlchemyMessageRepository
)
from ticketdedup.grouping.infrastructure.cache import (
    ClassificationCache,
    init_classification_cache,
    get_classification_cache,
    shutdown_classification_cache
)
from ticketdedup.grouping.infrastructure.vector_index import EmbeddingIndex, InMemoryVectorStore
from ticketdedup.grouping.infrastructure.events import TicketEventBroadcaster, get_event_broadcaster
from ticketdedup.grouping.infrastructure.config_manager import GroupingConfigManager
from ticketdedup.grouping.infrastructure.external import LLMClientAdapter
from ticketdedup.grouping.infrastructure.runner import SessionGroupingRunner

__all__ = [
    "TicketModel",
    "TicketMessageModel",
    "SQLAlchemyTicketRepository",
    "SQLAlchemyMessageRepository",
    "ClassificationCache",
    "init_classification_cache",
    "get_classification_cache",
    "shutdown_classification_cache",
    "EmbeddingIndex",
    "InMemoryVectorStore",
    "TicketEventBroadcaster",
    "get_event_broadcaster",
    "GroupingConfigManager",
    "LLMClientAdapter",
    "SessionGroupingRunner",
]
