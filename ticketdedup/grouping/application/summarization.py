"""
Summary Service
================

Keeps each ticket's structured summary current.

Priority only ever goes up over a ticket's life: the conversation summary
takes the highest of the model's hint, an urgency scan of every message and
the ticket's current priority.
"""

import re
from typing import List, Optional, Sequence

from ticketdedup.config import Priority, PRIORITY_ORDER, TicketCategory
from ticketdedup.core import LLMException
from ticketdedup.grouping.application.dto import SummaryPayload, parse_structured
from ticketdedup.grouping.application.interfaces import ILLMClient
from ticketdedup.grouping.domain import (
    ClassificationResult, SummaryPromptBuilder, TicketMessage, TicketSummary
)
from ticketdedup.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

URGENCY_KEYWORDS = {
    Priority.CRITICAL: ("production down", "prod down", "outage", "data loss", "security breach"),
    Priority.HIGH: ("asap", "tonight", "urgent", "blocking", "blocker"),
}


def max_priority(*priorities: Optional[str]) -> Optional[str]:
    """Highest of the given priorities, ignoring unknown values."""
    known = [p for p in priorities if p in PRIORITY_ORDER]
    return max(known, key=PRIORITY_ORDER.index) if known else None


def scan_urgency(texts: Sequence[str]) -> Optional[str]:
    """Highest priority signalled by urgency keywords in any of the texts."""
    found: Optional[str] = None
    for text in texts:
        lowered = text.lower()
        for priority, keywords in URGENCY_KEYWORDS.items():
            if any(re.search(rf"\b{re.escape(k)}\b", lowered) for k in keywords):
                found = max_priority(found, priority)
    return found


class SummaryService:
    """
    Generates ticket summaries with the LLM.

    Never raises; failures fall back to a summary built from the title.
    """

    def __init__(self, llm_client: ILLMClient, temperature: float = 0.3, max_tokens: int = 800):
        self._llm = llm_client
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def _request(self, messages: List[dict], operation: str) -> TicketSummary:
        response = await self._llm.chat_completion(
            messages=messages,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            operation=operation,
            json_schema=SummaryPromptBuilder.SCHEMA
        )
        return parse_structured(response.content, SummaryPayload).to_summary()

    async def summarize_new(
        self,
        text: str,
        classification: ClassificationResult,
        reporter: Optional[str],
        assignees: List[str]
    ) -> TicketSummary:
        """
        Summarize a ticket from its first message.

        Args:
            text: First message text
            classification: Classification of that message
            reporter: Reporter's display name
            assignees: Inferred assignees

        Returns:
            TicketSummary, or the fallback on failure
        """
        messages = SummaryPromptBuilder.build_new_ticket_messages(
            text=text,
            title=classification.short_title,
            category=classification.category,
            reporter=reporter,
            assignees=assignees,
        )
        try:
            summary = await self._request(messages, "summary")
        except (LLMException, ValueError) as e:
            logger.warning("New ticket summary failed, using fallback", extra={"error": str(e)})
            action_items = []
            if classification.category != TicketCategory.IRRELEVANT:
                action_items.append(f"Review {classification.category.replace('_', ' ')}")
            return TicketSummary(
                description=classification.short_title or text[:100],
                action_items=action_items,
                technical_details=None,
                priority_hint=Priority.MEDIUM,
            )

        summary.priority_hint = max_priority(summary.priority_hint, scan_urgency([text]))
        return summary

    async def summarize_conversation(
        self,
        title: str,
        category: str,
        messages: Sequence[TicketMessage],
        assignees: List[str],
        reporter: Optional[str],
        current_priority: Optional[str] = None
    ) -> TicketSummary:
        """
        Re-summarize a ticket from its whole conversation.

        Args:
            title: Ticket title
            category: Ticket category
            messages: Every message on the ticket, oldest first
            assignees: Current assignees
            reporter: Reporter's display name
            current_priority: Priority before this update

        Returns:
            TicketSummary whose priority is never below current_priority
        """
        texts = [m.text for m in messages if m.text and m.text.strip()]
        escalated = max_priority(current_priority, scan_urgency(texts))

        fallback = TicketSummary(
            description=title,
            action_items=[],
            technical_details=None,
            priority_hint=escalated or Priority.MEDIUM,
        )
        if not texts:
            return fallback

        prompt = SummaryPromptBuilder.build_conversation_messages(
            title=title,
            category=category,
            conversation=[(m.username or m.user_id, m.text) for m in messages if m.text],
            reporter=reporter,
            assignees=assignees,
        )
        try:
            summary = await self._request(prompt, "conversation_summary")
        except (LLMException, ValueError) as e:
            logger.warning(
                "Conversation summary failed, using fallback",
                extra={"error": str(e), "message_count": len(texts)}
            )
            return fallback

        summary.priority_hint = max_priority(summary.priority_hint, escalated)
        return summary
