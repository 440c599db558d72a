"""
Grouping Application Layer
===========================

Application layer for message grouping.

Contains:
- Services: classification, summaries, arbitration, grouping
- Sequencer and ingestion pipeline
- Interfaces: ports implemented by the infrastructure layer
- DTOs: structured LLM payloads and API models
"""

from ticketdedup.grouping.application.interfaces import (
    ILLMClient,
    ITicketRepository,
    IMessageRepository,
    IEmbeddingIndex,
    ITicketEventPublisher,
)
from ticketdedup.grouping.application.dto import (
    ClassificationPayload,
    SummaryPayload,
    MergeDecisionPayload,
    IntakeMessageRequest,
    IngestResponse,
    ClassificationInfo,
    TicketDTO,
    TicketDetailDTO,
    TicketMessageDTO,
    TicketListResponse,
    parse_structured,
)
from ticketdedup.grouping.application.classification import (
    ClassificationService,
    fallback_classification,
)
from ticketdedup.grouping.application.summarization import SummaryService
from ticketdedup.grouping.application.arbitration import MergeArbiter
from ticketdedup.grouping.application.grouping import GroupingService
from ticketdedup.grouping.application.sequencer import MessageSequencer
from ticketdedup.grouping.application.pipeline import (
    IngestionPipeline,
    IngestResult,
    IngestStatus,
)

__all__ = [
    # Interfaces
    "ILLMClient",
    "ITicketRepository",
    "IMessageRepository",
    "IEmbeddingIndex",
    "ITicketEventPublisher",
    # DTOs
    "ClassificationPayload",
    "SummaryPayload",
    "MergeDecisionPayload",
    "IntakeMessageRequest",
    "IngestResponse",
    "ClassificationInfo",
    "TicketDTO",
    "TicketDetailDTO",
    "TicketMessageDTO",
    "TicketListResponse",
    "parse_structured",
    # Services
    "ClassificationService",
    "fallback_classification",
    "SummaryService",
    "MergeArbiter",
    "GroupingService",
    "MessageSequencer",
    "IngestionPipeline",
    "IngestResult",
    "IngestStatus",
]
