"""
Ingestion Pipeline
===================

End-to-end handling of one chat message:

normalize -> filter -> classify -> relevance gate -> sequenced grouping

Classification runs concurrently across messages (bounded by the LLM
limiter); grouping runs strictly one message at a time.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional, Sequence

from ticketdedup.grouping.application.classification import ClassificationService
from ticketdedup.grouping.application.sequencer import MessageSequencer
from ticketdedup.grouping.domain import (
    ClassificationResult, IncomingMessage, normalize_message, should_process_message
)
from ticketdedup.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

GroupingRunner = Callable[[IncomingMessage, ClassificationResult, bool], Awaitable[Optional[str]]]


class IngestStatus:
    """Outcome of ingesting a message."""
    FILTERED = "filtered"
    IRRELEVANT = "irrelevant"
    GROUPED = "grouped"
    DROPPED = "dropped"
    FAILED = "failed"


@dataclass(frozen=True)
class IngestResult:
    status: str
    ticket_id: Optional[str] = None
    classification: Optional[ClassificationResult] = None


class IngestionPipeline:
    """
    Drives a message through the grouping pipeline.

    Args:
        classifier: Classification service
        sequencer: Sequencer that serializes grouping
        grouping_runner: Runs one grouping job, typically in its own DB session
        context_only_user_ids: Authors who may add context but never open tickets
    """

    def __init__(
        self,
        classifier: ClassificationService,
        sequencer: MessageSequencer,
        grouping_runner: GroupingRunner,
        context_only_user_ids: Iterable[str] = ()
    ):
        self._classifier = classifier
        self._sequencer = sequencer
        self._grouping_runner = grouping_runner
        self._context_only_user_ids = frozenset(context_only_user_ids)

    def is_context_only(self, message: IncomingMessage) -> bool:
        return message.is_context_only or message.user_id in self._context_only_user_ids

    async def process(
        self,
        message: IncomingMessage,
        thread_context: Optional[Sequence[str]] = None,
        channel_context: Optional[Sequence[str]] = None
    ) -> IngestResult:
        """
        Ingest one message.

        Never raises: failures are logged and reported as status "failed".
        """
        log_extra = {"channel_id": message.channel_id, "ts": message.ts}
        normalized = normalize_message(message.text)

        if not should_process_message(normalized.normalized_text):
            logger.debug("Message filtered", extra=log_extra)
            return IngestResult(status=IngestStatus.FILTERED)

        classification = await self._classifier.classify(
            message.text,
            normalized.normalized_text,
            thread_context=thread_context,
            channel_context=channel_context,
        )
        if not classification.is_relevant:
            logger.info("Message not relevant", extra={**log_extra, "category": classification.category})
            return IngestResult(status=IngestStatus.IRRELEVANT, classification=classification)

        context_only = self.is_context_only(message)

        async def job() -> Optional[str]:
            with log_latency(logger, "group_message", **log_extra):
                return await self._grouping_runner(message, classification, context_only)

        try:
            ticket_id = await self._sequencer.submit(job)
        except Exception as e:
            logger.error(
                "Grouping failed",
                extra={**log_extra, "error_type": type(e).__name__, "error": str(e)}
            )
            return IngestResult(status=IngestStatus.FAILED, classification=classification)

        if ticket_id is None:
            return IngestResult(status=IngestStatus.DROPPED, classification=classification)
        return IngestResult(status=IngestStatus.GROUPED, ticket_id=ticket_id, classification=classification)
