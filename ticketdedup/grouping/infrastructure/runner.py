"""
Grouping Job Runner
====================

Runs one sequenced grouping job inside its own database session.

The runner holds the process-wide collaborators (LLM adapter, vector
stores, config manager, event publisher) and builds the session-scoped
repositories and GroupingService per job. The session commits when the job
returns and rolls back when it raises; ticket_updated goes out after the
commit, never for a rolled-back job.
"""

from typing import AsyncContextManager, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ticketdedup.grouping.application import (
    GroupingService,
    ILLMClient,
    ITicketEventPublisher,
    MergeArbiter,
    SummaryService,
)
from ticketdedup.grouping.domain import ClassificationResult, GroupingConfig, IncomingMessage
from ticketdedup.grouping.infrastructure.config_manager import GroupingConfigManager
from ticketdedup.grouping.infrastructure.repositories import (
    SQLAlchemyMessageRepository,
    SQLAlchemyTicketRepository,
)
from ticketdedup.grouping.infrastructure.vector_index import EmbeddingIndex, VectorStore
from ticketdedup.infrastructure.database import get_session_context

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


class SessionGroupingRunner:
    """
    Callable passed to IngestionPipeline as its grouping runner.

    Args:
        llm_client: Grouping LLM port (embeddings, summaries, arbitration)
        ticket_store: Vector store with one vector per ticket
        message_store: Vector store with one vector per message
        config_manager: Source of hot-reloaded thresholds
        events: Publisher for ticket_updated events
        config: Static thresholds, used when no config_manager is given
        session_factory: Opens a committing session; get_session_context by default
    """

    def __init__(
        self,
        llm_client: ILLMClient,
        ticket_store: VectorStore,
        message_store: VectorStore,
        config_manager: Optional[GroupingConfigManager] = None,
        events: Optional[ITicketEventPublisher] = None,
        config: Optional[GroupingConfig] = None,
        session_factory: SessionFactory = get_session_context
    ):
        self._llm = llm_client
        self._ticket_store = ticket_store
        self._message_store = message_store
        self._config_manager = config_manager
        self._events = events
        self._config = config
        self._session_factory = session_factory
        self._summaries = SummaryService(llm_client)
        self._arbiter = MergeArbiter(llm_client)

    def build_service(self, session: AsyncSession) -> GroupingService:
        tickets = SQLAlchemyTicketRepository(session)
        return GroupingService(
            tickets=tickets,
            messages=SQLAlchemyMessageRepository(session),
            index=EmbeddingIndex(self._ticket_store, self._message_store, tickets),
            llm_client=self._llm,
            summaries=self._summaries,
            arbiter=self._arbiter,
            config=self._config,
            config_manager=self._config_manager,
        )

    async def __call__(
        self,
        message: IncomingMessage,
        classification: ClassificationResult,
        is_context_only: bool
    ) -> Optional[str]:
        async with self._session_factory() as session:
            service = self.build_service(session)
            ticket_id = await service.group_message(
                message, classification, is_context_only=is_context_only
            )

        # Announce only what the committed session made visible
        if ticket_id is not None and self._events is not None:
            await self._events.publish_ticket_updated(ticket_id)
        return ticket_id
