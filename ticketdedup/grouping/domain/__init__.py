"""
Grouping Domain Layer
======================

Domain layer for message grouping.

Contains:
- Entities: messages, tickets, classification and scoring results
- Normalization: signals, canonical keys, intent fingerprints
- Filters: acknowledgement gate
- Scoring: recent-channel match scorer
- Value Objects: GroupingConfig
- Prompts: prompt builders and JSON schemas

This layer is framework-agnostic and contains pure business logic.
"""

from ticketdedup.grouping.domain.entities import (
    IncomingMessage,
    NormalizedMessage,
    IntentFingerprint,
    ClassificationResult,
    TicketSummary,
    Ticket,
    TicketMessage,
    TicketCandidate,
    MatchScoreBreakdown,
    MergeDecision,
)
from ticketdedup.grouping.domain.normalization import (
    normalize_message,
    compute_canonical_key,
    compute_intent_fingerprint,
)
from ticketdedup.grouping.domain.filters import should_process_message
from ticketdedup.grouping.domain.scoring import MatchScorer, cosine_distance, signal_overlap
from ticketdedup.grouping.domain.value_objects import GroupingConfig, ScoreWeights
from ticketdedup.grouping.domain.prompts import (
    ClassificationPromptBuilder,
    SummaryPromptBuilder,
    ArbitrationPromptBuilder,
)

__all__ = [
    "IncomingMessage",
    "NormalizedMessage",
    "IntentFingerprint",
    "ClassificationResult",
    "TicketSummary",
    "Ticket",
    "TicketMessage",
    "TicketCandidate",
    "MatchScoreBreakdown",
    "MergeDecision",
    "normalize_message",
    "compute_canonical_key",
    "compute_intent_fingerprint",
    "should_process_message",
    "MatchScorer",
    "cosine_distance",
    "signal_overlap",
    "GroupingConfig",
    "ScoreWeights",
    "ClassificationPromptBuilder",
    "SummaryPromptBuilder",
    "ArbitrationPromptBuilder",
]
