"""
Merge Arbitration
==================

Asks the model to settle gray-zone matches of the recent-channel fallback.
"""

from typing import Sequence

from ticketdedup.core import LLMException
from ticketdedup.grouping.application.dto import MergeDecisionPayload, parse_structured
from ticketdedup.grouping.application.interfaces import ILLMClient
from ticketdedup.grouping.domain import (
    ArbitrationPromptBuilder,
    ClassificationResult,
    IncomingMessage,
    MatchScoreBreakdown,
    MergeDecision,
    Ticket,
    TicketMessage,
)
from ticketdedup.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class MergeArbiter:
    """Returns a MergeDecision; any failure means "do not merge"."""

    def __init__(self, llm_client: ILLMClient, temperature: float = 0.0, max_tokens: int = 200):
        self._llm = llm_client
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def arbitrate(
        self,
        candidate: Ticket,
        recent_messages: Sequence[TicketMessage],
        message: IncomingMessage,
        classification: ClassificationResult,
        breakdown: MatchScoreBreakdown
    ) -> MergeDecision:
        prompt = ArbitrationPromptBuilder.build_messages(
            ticket_title=candidate.title,
            ticket_category=candidate.category,
            ticket_summary=candidate.summary.description if candidate.summary else None,
            recent_messages=[m.text for m in recent_messages],
            message_text=message.text,
            message_category=classification.category,
            score_details=breakdown.to_dict(),
        )
        try:
            response = await self._llm.chat_completion(
                messages=prompt,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                operation="arbitration",
                json_schema=ArbitrationPromptBuilder.SCHEMA
            )
            decision = parse_structured(response.content, MergeDecisionPayload).to_decision()
        except (LLMException, ValueError) as e:
            logger.warning(
                "Merge arbitration failed, not merging",
                extra={"ticket_id": candidate.id, "error": str(e)}
            )
            return MergeDecision(should_merge=False, confidence=0.0, reason="arbitration failed")

        logger.info(
            "Merge arbitration decided",
            extra={
                "ticket_id": candidate.id,
                "should_merge": decision.should_merge,
                "confidence": decision.confidence,
            }
        )
        return decision
