"""
Grouping Service
=================

Decides, for each classified message, which ticket it belongs to.

Steps run in strict order and the first match wins:

1. Thread match: an open ticket already holds a message of this thread.
2. Canonical-key match: an open ticket carries the message's canonical key.
3. Semantic match: the nearest open ticket (by ticket or message embedding)
   updated inside the lookback window is close enough.
4. Recent-channel fallback: the most recently active open ticket in the
   channel, accepted on score, guarded against cross-category merges and
   arbitrated by the model in the gray zone.
5. Create a new ticket, unless the author may only add context.

Callers must serialize group_message calls (see MessageSequencer): steps
read state that earlier messages write. The service never publishes events:
the caller announces the returned ticket id once its transaction commits.
"""

import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, FrozenSet, List, Optional

from ticketdedup.config import MatchStep, TicketCategory, TicketStatus
from ticketdedup.core import DuplicateCanonicalKeyException, LLMException, VectorStoreException
from ticketdedup.grouping.application.arbitration import MergeArbiter
from ticketdedup.grouping.application.interfaces import (
    IEmbeddingIndex,
    ILLMClient,
    IMessageRepository,
    ITicketRepository,
)
from ticketdedup.grouping.application.summarization import SummaryService
from ticketdedup.grouping.domain import (
    ClassificationResult,
    GroupingConfig,
    IncomingMessage,
    MatchScorer,
    Ticket,
    TicketCandidate,
    TicketMessage,
    compute_canonical_key,
    compute_intent_fingerprint,
    cosine_distance,
    normalize_message,
    signal_overlap,
)
from ticketdedup.grouping.domain.scoring import EPSILON
from ticketdedup.shared.infrastructure.grafana import get_grafana_exporter
from ticketdedup.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _GroupingRun:
    """Per-message state shared by the grouping steps."""

    def __init__(
        self,
        message: IncomingMessage,
        classification: ClassificationResult,
        precomputed_embedding: Optional[List[float]]
    ):
        self.message = message
        self.classification = classification
        self.normalized = normalize_message(message.text)
        # Embedding text and intent fingerprint only; step 4 overlap reads classification.signals
        self.signals: FrozenSet[str] = self.normalized.signals | classification.signals
        self.canonical_key: Optional[str] = compute_canonical_key(
            self.normalized.signals, message.text
        )
        self.precomputed_embedding = precomputed_embedding
        self.embedding: Optional[List[float]] = None
        self.embedding_resolved = False
        self.started = time.perf_counter()

    def embedding_text(self, max_chars: int) -> str:
        text = (
            f"{self.classification.category}: {self.classification.short_title}\n"
            f"Signals: {', '.join(sorted(self.signals))}\n"
            f"Message: {self.message.text}"
        )
        return text[:max_chars]


class GroupingService:
    """
    Places messages on tickets.

    Args:
        tickets: Ticket repository
        messages: Message repository
        index: Embedding index for semantic search
        llm_client: Client used for embeddings
        summaries: Summary service, refreshed on every attach
        arbiter: Gray-zone merge arbiter
        config: Static thresholds, used when no config_manager is given
        config_manager: Source of hot-reloaded thresholds
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        tickets: ITicketRepository,
        messages: IMessageRepository,
        index: IEmbeddingIndex,
        llm_client: ILLMClient,
        summaries: SummaryService,
        arbiter: MergeArbiter,
        config: Optional[GroupingConfig] = None,
        config_manager=None,
        clock: Callable[[], datetime] = _utcnow
    ):
        self._tickets = tickets
        self._messages = messages
        self._index = index
        self._llm = llm_client
        self._summaries = summaries
        self._arbiter = arbiter
        self._config = config or GroupingConfig()
        self._config_manager = config_manager
        self._clock = clock

    @property
    def config(self) -> GroupingConfig:
        if self._config_manager is not None:
            return self._config_manager.config
        return self._config

    async def group_message(
        self,
        message: IncomingMessage,
        classification: ClassificationResult,
        *,
        is_context_only: bool = False,
        embedding: Optional[List[float]] = None
    ) -> Optional[str]:
        """
        Attach a message to a ticket, creating one if nothing matches.

        Args:
            message: The incoming chat message
            classification: Its classification
            is_context_only: The author may add to tickets but not open them
            embedding: Precomputed embedding of the grouping text

        Returns:
            Ticket id, or None when a context-only message matched nothing

        Raises:
            RepositoryException: If the store fails
        """
        config = self.config
        run = _GroupingRun(message, classification, embedding)
        log_extra = {"channel_id": message.channel_id, "ts": message.ts}

        # Step 1: thread
        ticket = await self._tickets.find_open_by_thread(message.channel_id, message.thread_ts)
        if ticket:
            return await self._attach(ticket, run, config, MatchStep.THREAD)

        # Step 2: canonical key
        if run.canonical_key:
            ticket = await self._tickets.find_open_by_canonical_key(run.canonical_key)
            if ticket:
                return await self._attach(ticket, run, config, MatchStep.CANONICAL_KEY)

        # Step 3: semantic
        ticket = await self._semantic_match(run, config)
        if ticket:
            return await self._attach(ticket, run, config, MatchStep.SEMANTIC)

        # Step 4: recent channel activity
        ticket = await self._recent_channel_match(run, config)
        if ticket:
            return await self._attach(ticket, run, config, MatchStep.RECENT_CHANNEL)

        # Step 5: create
        if is_context_only or message.is_context_only:
            logger.info("Context-only message matched no ticket, dropping", extra=log_extra)
            await self._export_decision(run, MatchStep.DROPPED)
            return None

        return await self._create(run, config)

    # ========== Embeddings ==========

    async def _resolve_embedding(self, run: _GroupingRun, config: GroupingConfig) -> Optional[List[float]]:
        """Embedding of the grouping text, computed at most once per run."""
        if run.embedding_resolved:
            return run.embedding
        run.embedding_resolved = True

        if run.precomputed_embedding is not None and config.reuse_precomputed_embedding:
            run.embedding = list(run.precomputed_embedding)
            return run.embedding

        try:
            run.embedding = await self._llm.generate_embedding(
                run.embedding_text(config.embedding_max_chars)
            )
        except LLMException as e:
            logger.warning(
                "Embedding failed, skipping semantic steps",
                extra={"channel_id": run.message.channel_id, "ts": run.message.ts, "error": str(e)}
            )
            run.embedding = None
        return run.embedding

    async def _semantic_match(self, run: _GroupingRun, config: GroupingConfig) -> Optional[Ticket]:
        vector = await self._resolve_embedding(run, config)
        if not vector:
            return None

        since = self._clock() - timedelta(days=config.lookback_days)
        candidates: List[TicketCandidate] = []
        for search in (self._index.search_tickets, self._index.search_messages):
            try:
                candidate = await search(vector, since)
            except VectorStoreException as e:
                logger.warning("Embedding search failed", extra={"error": str(e)})
                continue
            if candidate is not None:
                candidates.append(candidate)

        if not candidates:
            return None

        best = min(candidates, key=lambda c: c.distance)
        if best.distance > config.semantic_distance_threshold + EPSILON:
            logger.debug(
                "Nearest ticket too far for semantic match",
                extra={"ticket_id": best.ticket_id, "distance": best.distance, "source": best.source}
            )
            return None

        ticket = await self._tickets.get_by_id(best.ticket_id)
        if ticket is None or not ticket.is_open:
            return None
        logger.info(
            "Semantic match",
            extra={"ticket_id": ticket.id, "distance": round(best.distance, 4), "source": best.source}
        )
        return ticket

    # ========== Recent channel fallback ==========

    async def _recent_channel_match(self, run: _GroupingRun, config: GroupingConfig) -> Optional[Ticket]:
        message = run.message
        ticket = await self._tickets.find_most_recent_open_in_channel(
            message.channel_id, config.recent_channel_window_minutes, now=self._clock()
        )
        if ticket is None:
            return None

        if not ticket.embedding:
            logger.info(
                "Recent channel ticket has no embedding, attaching",
                extra={"ticket_id": ticket.id, "channel_id": message.channel_id}
            )
            return ticket

        vector = await self._resolve_embedding(run, config)
        if not vector or len(vector) != len(ticket.embedding):
            logger.info(
                "No comparable embedding for recent channel ticket, skipping",
                extra={"ticket_id": ticket.id}
            )
            return None

        distance = cosine_distance(vector, ticket.embedding)
        recent = await self._messages.recent_by_ticket(ticket.id, config.recent_messages_for_signals)
        ticket_signals = set()
        for earlier in recent:
            ticket_signals |= normalize_message(earlier.text).signals
        overlap = signal_overlap(run.classification.signals, ticket_signals)
        minutes = ticket.minutes_since_update(self._clock())
        same_category = run.classification.category == ticket.category
        same_channel = True

        scorer = MatchScorer(config)
        if scorer.guardrail_blocks(distance, same_category, same_channel, minutes, overlap):
            logger.info(
                "Guardrail blocked cross-category merge",
                extra={"ticket_id": ticket.id, "distance": round(distance, 4), "overlap": overlap}
            )
            return None

        breakdown = scorer.score(distance, same_category, same_channel, minutes, overlap)
        log_extra = {"ticket_id": ticket.id, **breakdown.to_dict()}

        if scorer.should_attach(breakdown):
            logger.info("Recent channel score accepted", extra=log_extra)
            return ticket

        if not scorer.is_gray_zone(breakdown):
            logger.info("Recent channel score rejected", extra=log_extra)
            return None

        decision = await self._arbiter.arbitrate(
            candidate=ticket,
            recent_messages=recent[-config.arbitration_recent_messages:],
            message=message,
            classification=run.classification,
            breakdown=breakdown,
        )
        if decision.should_merge and decision.confidence >= config.arbitration_min_confidence:
            logger.info("Gray zone merged by arbitration", extra={**log_extra, "reason": decision.reason})
            return ticket

        logger.info("Gray zone not merged", extra={**log_extra, "reason": decision.reason})
        return None

    # ========== Attach / create ==========

    async def _attach(
        self,
        ticket: Ticket,
        run: _GroupingRun,
        config: GroupingConfig,
        step: str,
        refresh_summary: bool = True
    ) -> str:
        message = run.message
        fingerprint = compute_intent_fingerprint(message.text, run.signals)

        record = TicketMessage.from_incoming(message, ticket.id)
        record.embedding = run.embedding
        record.canonical_key = run.canonical_key
        record.intent_action = fingerprint.action
        record.intent_object = fingerprint.object
        record.intent_value = fingerprint.value
        record.intent_key = fingerprint.key

        if fingerprint.key:
            earlier = await self._messages.find_by_intent_key(
                ticket.id, fingerprint.key, exclude_ts=message.ts
            )
            if earlier is not None:
                record.is_redundant = True
                record.redundant_of_message_id = earlier.id

        saved = await self._messages.upsert(record)

        now = self._clock()
        ticket.updated_at = now
        await self._tickets.touch(ticket.id, now)
        ticket.merge_assignees(run.classification.inferred_assignees)

        if run.embedding:
            try:
                await self._index.index_message(saved, run.embedding)
            except VectorStoreException as e:
                logger.warning("Message embedding not indexed", extra={"error": str(e)})

        if refresh_summary:
            conversation = await self._messages.list_by_ticket(ticket.id)
            ticket.summary = await self._summaries.summarize_conversation(
                title=ticket.title,
                category=ticket.category,
                messages=conversation,
                assignees=ticket.assignees,
                reporter=ticket.reporter_username or ticket.reporter_user_id,
                current_priority=ticket.priority if ticket.summary else None,
            )
        await self._tickets.update(ticket)

        logger.info(
            "Message grouped",
            extra={
                "ticket_id": ticket.id,
                "step": step,
                "channel_id": message.channel_id,
                "ts": message.ts,
                "intent_key": fingerprint.key,
                "is_redundant": record.is_redundant,
            }
        )
        await self._export_decision(run, step)
        return ticket.id

    async def _create(self, run: _GroupingRun, config: GroupingConfig) -> str:
        message = run.message
        classification = run.classification
        vector = await self._resolve_embedding(run, config)
        assignees = sorted(classification.inferred_assignees)

        summary = await self._summaries.summarize_new(
            text=message.text,
            classification=classification,
            reporter=message.username or message.user_id,
            assignees=assignees,
        )

        category = classification.category
        if category == TicketCategory.IRRELEVANT:
            category = TicketCategory.SUPPORT_QUESTION

        now = self._clock()
        ticket = Ticket(
            id=str(uuid.uuid4()),
            title=classification.short_title or message.text[:100],
            category=category,
            status=TicketStatus.OPEN,
            created_at=now,
            updated_at=now,
            canonical_key=run.canonical_key,
            embedding=vector,
            assignees=assignees,
            reporter_user_id=message.user_id,
            reporter_username=message.username,
            summary=summary,
        )

        try:
            ticket = await self._tickets.create(ticket)
        except DuplicateCanonicalKeyException as e:
            existing = await self._tickets.find_open_by_canonical_key(e.canonical_key)
            if existing is None:
                raise
            logger.info(
                "Canonical key taken concurrently, attaching to existing ticket",
                extra={"ticket_id": existing.id, "canonical_key": e.canonical_key}
            )
            return await self._attach(existing, run, config, MatchStep.CANONICAL_KEY)

        if vector:
            try:
                await self._index.index_ticket(ticket, vector)
            except VectorStoreException as e:
                logger.warning("Ticket embedding not indexed", extra={"error": str(e)})

        logger.info(
            "Ticket created",
            extra={"ticket_id": ticket.id, "category": ticket.category, "canonical_key": ticket.canonical_key}
        )
        return await self._attach(ticket, run, config, MatchStep.CREATED, refresh_summary=False)

    async def _export_decision(self, run: _GroupingRun, step: str) -> None:
        exporter = get_grafana_exporter()
        if exporter and exporter.is_enabled():
            await exporter.export_grouping_decision(
                step=step,
                category=run.classification.category,
                latency_ms=int((time.perf_counter() - run.started) * 1000)
            )
