"""
Grouping Application DTOs
==========================

Pydantic models for structured LLM output and for the HTTP API.

LLM payloads are validated here, at the boundary: a response that does not
fit its model is treated exactly like a failed call.
"""

from datetime import datetime
from typing import List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ticketdedup.core import LLMException
from ticketdedup.grouping.domain import (
    ClassificationResult, MergeDecision, Ticket, TicketMessage, TicketSummary
)


# ========== Type Aliases for Literals ==========
CategoryStr = Literal[
    "bug_report", "support_question", "feature_request", "product_question", "irrelevant"
]
PriorityStr = Literal["low", "medium", "high", "critical"]
StatusStr = Literal["open", "resolved", "closed"]

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_structured(content: str, model: Type[ModelT]) -> ModelT:
    """
    Validate a model response against a pydantic model.

    Markdown code fences around the JSON are tolerated.

    Raises:
        LLMException: If the content is not valid JSON for the model
    """
    text = content.strip()
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0].strip()
    elif text.startswith("```"):
        text = text.split("```")[1].split("```")[0].strip()

    try:
        return model.model_validate_json(text)
    except ValidationError as e:
        raise LLMException(f"Invalid {model.__name__} response: {e.error_count()} errors")


# ========== LLM Payloads ==========

class ClassificationPayload(BaseModel):
    """Structured classification returned by the model."""
    is_relevant: bool
    category: CategoryStr
    confidence: float = Field(..., ge=0.0, le=1.0)
    short_title: str
    signals: List[str] = Field(default_factory=list)
    inferred_assignees: List[str] = Field(default_factory=list)

    @field_validator("short_title")
    @classmethod
    def truncate_title(cls, v: str) -> str:
        return v.strip()[:100]

    def to_result(self) -> ClassificationResult:
        return ClassificationResult(
            is_relevant=self.is_relevant,
            category=self.category,
            confidence=self.confidence,
            short_title=self.short_title,
            signals=frozenset(s.lower().strip() for s in self.signals if s.strip()),
            inferred_assignees=frozenset(
                a.strip().lstrip("@") for a in self.inferred_assignees if a.strip().lstrip("@")
            ),
        )


class SummaryPayload(BaseModel):
    """Structured ticket summary returned by the model."""
    description: str
    action_items: List[str] = Field(default_factory=list)
    technical_details: Optional[str] = None
    priority_hint: PriorityStr = "medium"

    def to_summary(self) -> TicketSummary:
        return TicketSummary(
            description=self.description,
            action_items=list(self.action_items),
            technical_details=self.technical_details,
            priority_hint=self.priority_hint,
        )


class MergeDecisionPayload(BaseModel):
    """Structured arbitration verdict returned by the model."""
    should_merge: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    reason: str = ""

    def to_decision(self) -> MergeDecision:
        return MergeDecision(
            should_merge=self.should_merge,
            confidence=self.confidence,
            reason=self.reason,
        )


# ========== Request DTOs ==========

class IntakeMessageRequest(BaseModel):
    """A chat message pushed to the intake endpoint."""
    channel_id: str = Field(..., min_length=1, description="Chat channel id")
    ts: str = Field(..., min_length=1, description="Message timestamp token")
    user_id: str = Field(..., min_length=1, description="Author's chat user id")
    text: str = Field(..., description="Message text")
    thread_ts: Optional[str] = Field(None, description="Thread root ts, if a reply")
    username: Optional[str] = None
    team_id: Optional[str] = None
    event_id: Optional[str] = None
    permalink: Optional[str] = None
    thread_context: List[str] = Field(
        default_factory=list,
        description="Earlier replies in the same thread, oldest first"
    )
    channel_context: List[str] = Field(
        default_factory=list,
        description="Recent messages in the channel, oldest first"
    )
    is_context_only: bool = Field(
        False,
        description="Attach to an existing ticket if one matches, never open a new one"
    )

    @field_validator("text")
    @classmethod
    def validate_text_length(cls, v: str) -> str:
        """Ensure text is not too long for the LLM."""
        if len(v) > 10000:
            raise ValueError("Text too long (max 10000 characters)")
        return v


# ========== Response DTOs ==========

class ClassificationInfo(BaseModel):
    """Classification information in API responses."""
    is_relevant: bool
    category: CategoryStr
    confidence: float = Field(..., ge=0.0, le=1.0)
    short_title: str

    @classmethod
    def from_result(cls, result: ClassificationResult) -> "ClassificationInfo":
        return cls(
            is_relevant=result.is_relevant,
            category=result.category,
            confidence=result.confidence,
            short_title=result.short_title,
        )


class IngestResponse(BaseModel):
    """Outcome of ingesting one message."""
    status: Literal["filtered", "irrelevant", "grouped", "dropped", "failed"]
    ticket_id: Optional[str] = None
    classification: Optional[ClassificationInfo] = None
    processing_time_ms: int


class TicketSummaryDTO(BaseModel):
    """Ticket summary in API responses."""
    description: str
    action_items: List[str]
    technical_details: Optional[str]
    priority_hint: PriorityStr


class TicketMessageDTO(BaseModel):
    """A ticket message in API responses."""
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str]
    channel_id: str
    ts: str
    root_thread_ts: str
    user_id: str
    username: Optional[str]
    text: str
    permalink: Optional[str]
    intent_key: Optional[str]
    is_redundant: bool
    redundant_of_message_id: Optional[str]
    created_at: Optional[datetime]

    @classmethod
    def from_entity(cls, message: TicketMessage) -> "TicketMessageDTO":
        return cls.model_validate(message)


class TicketDTO(BaseModel):
    """Ticket data transfer object."""
    id: str
    title: str
    category: CategoryStr
    status: StatusStr
    priority: PriorityStr
    canonical_key: Optional[str]
    assignees: List[str]
    reporter_user_id: Optional[str]
    reporter_username: Optional[str]
    summary: Optional[TicketSummaryDTO]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketDTO":
        return cls(
            id=ticket.id,
            title=ticket.title,
            category=ticket.category,
            status=ticket.status,
            priority=ticket.priority,
            canonical_key=ticket.canonical_key,
            assignees=list(ticket.assignees),
            reporter_user_id=ticket.reporter_user_id,
            reporter_username=ticket.reporter_username,
            summary=TicketSummaryDTO(**ticket.summary.to_dict()) if ticket.summary else None,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
        )


class TicketDetailDTO(TicketDTO):
    """Ticket with its messages, oldest first."""
    messages: List[TicketMessageDTO]


class TicketListResponse(BaseModel):
    """Response model for ticket listing."""
    tickets: List[TicketDTO]
    total: int
