"""
Prompt Builders
================

Prompts and JSON schemas for the three model calls made while grouping:
classification, ticket summary and merge arbitration.

The schemas are the binding contract; prompt wording may change freely.
"""

from typing import List, Optional, Sequence, Tuple

from ticketdedup.config import VALID_CATEGORIES, PRIORITY_ORDER


def _numbered(lines: Sequence[str]) -> str:
    return "\n".join(f"[{i}] {line}" for i, line in enumerate(lines, start=1))


class ClassificationPromptBuilder:
    """Builds prompts for message classification."""

    SCHEMA = {
        "name": "classification_result",
        "schema": {
            "type": "object",
            "properties": {
                "is_relevant": {"type": "boolean"},
                "category": {"type": "string", "enum": list(VALID_CATEGORIES)},
                "confidence": {"type": "number"},
                "short_title": {"type": "string"},
                "signals": {"type": "array", "items": {"type": "string"}},
                "inferred_assignees": {"type": "array", "items": {"type": "string"}},
            },
            "required": [
                "is_relevant", "category", "confidence",
                "short_title", "signals", "inferred_assignees",
            ],
            "additionalProperties": False,
        },
    }

    SYSTEM_PROMPT = """You classify chat messages from a customer workspace to decide whether they should become support tickets.

RELEVANT messages:
- bug_report: errors, crashes, broken or unexpected behaviour
- support_question: how-to, troubleshooting, configuration
- feature_request: requests for new functionality or improvements
- product_question: questions about what the product can do
- Follow-ups that add detail to a request, including short replies whose
  pronouns ("it", "that", "the button") refer to something in the context

IRRELEVANT messages: greetings, thanks, small talk, lunch plans, bare
acknowledgements with no actionable content and no link to the context.

When unsure, prefer RELEVANT if the message describes a problem, asks a
question, requests something or clarifies an earlier request.

Fields:
- is_relevant: should this become (or join) a ticket
- category: one of bug_report, support_question, feature_request, product_question, irrelevant
- confidence: 0.0 to 1.0
- short_title: specific title of at most 100 characters. Use the topic from
  the context ("User cannot find CSV export button", not "User cannot find button").
- signals: specific keywords from the message AND the context (feature
  names, error codes, components)
- inferred_assignees: @mentions or names the message assigns work to; empty if none

Respond ONLY in JSON with exactly these fields."""

    @classmethod
    def get_system_prompt(cls) -> str:
        return cls.SYSTEM_PROMPT

    @classmethod
    def build_prompt(
        cls,
        text: str,
        thread_context: Optional[Sequence[str]] = None,
        channel_context: Optional[Sequence[str]] = None
    ) -> str:
        """
        Build the user prompt.

        Thread context wins over channel context: a thread reply is a direct
        follow-up, a channel neighbour only might be related.
        """
        if thread_context:
            return (
                "THREAD CONTEXT (the message below is a reply in this thread):\n"
                f"{_numbered(thread_context)}\n\n"
                f"MESSAGE TO CLASSIFY:\n{text}"
            )
        if channel_context:
            return (
                "CHANNEL CONTEXT (recent messages in the same channel, not a thread; "
                "look for indirect references):\n"
                f"{_numbered(channel_context)}\n\n"
                f"MESSAGE TO CLASSIFY:\n{text}"
            )
        return text


class SummaryPromptBuilder:
    """Builds prompts for ticket summaries."""

    SCHEMA = {
        "name": "ticket_summary",
        "schema": {
            "type": "object",
            "properties": {
                "description": {"type": "string"},
                "action_items": {"type": "array", "items": {"type": "string"}},
                "technical_details": {"type": ["string", "null"]},
                "priority_hint": {"type": "string", "enum": list(PRIORITY_ORDER)},
            },
            "required": ["description", "action_items", "technical_details", "priority_hint"],
            "additionalProperties": False,
        },
    }

    PRIORITY_GUIDE = """priority_hint:
- critical: production down, security issue, data loss
- high: major feature broken, many users affected, tight deadline ("tonight", "ASAP", "blocking")
- medium: regular bug or feature request
- low: minor, cosmetic, nice-to-have"""

    @classmethod
    def _header(cls, title: str, category: str, reporter: Optional[str], assignees: List[str]) -> str:
        return (
            f"Title: {title}\n"
            f"Category: {category}\n"
            f"Reporter: {reporter or 'Unknown'}\n"
            f"Assignees: {', '.join(assignees) if assignees else 'None assigned'}"
        )

    @classmethod
    def build_new_ticket_messages(
        cls,
        text: str,
        title: str,
        category: str,
        reporter: Optional[str],
        assignees: List[str]
    ) -> List[dict]:
        system = (
            "You summarize a new support ticket from its first message.\n\n"
            f"{cls._header(title, category, reporter, assignees)}\n\n"
            "Fields:\n"
            "- description: 1-2 sentences on what the ticket is about\n"
            "- action_items: specific things to do\n"
            "- technical_details: error codes, stack traces, file names; null if none\n"
            f"- {cls.PRIORITY_GUIDE}\n\n"
            "Respond ONLY in JSON with exactly these fields."
        )
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": text},
        ]

    @classmethod
    def build_conversation_messages(
        cls,
        title: str,
        category: str,
        conversation: Sequence[Tuple[Optional[str], str]],
        reporter: Optional[str],
        assignees: List[str]
    ) -> List[dict]:
        system = (
            "You update a support ticket summary from its FULL conversation. "
            "Summarize the whole thread, folding in follow-ups and clarifications. "
            "Merge and deduplicate action items across messages. When later "
            "messages raise the urgency, the priority must reflect the highest urgency.\n\n"
            f"{cls._header(title, category, reporter, assignees)}\n\n"
            f"{cls.PRIORITY_GUIDE}\n\n"
            "Respond ONLY in JSON with description, action_items, technical_details, priority_hint."
        )
        transcript = "\n\n".join(f"{user or 'Unknown'}: {text}" for user, text in conversation)
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": f"Conversation:\n\n{transcript}"},
        ]


class ArbitrationPromptBuilder:
    """Builds prompts asking whether a message belongs to a candidate ticket."""

    SCHEMA = {
        "name": "merge_decision",
        "schema": {
            "type": "object",
            "properties": {
                "should_merge": {"type": "boolean"},
                "confidence": {"type": "number"},
                "reason": {"type": "string"},
            },
            "required": ["should_merge", "confidence", "reason"],
            "additionalProperties": False,
        },
    }

    SYSTEM_PROMPT = """You decide whether a new chat message is about the SAME underlying issue or request as an existing support ticket.

Merge only when both describe the same problem or ask for the same change.
Sharing a channel, a product area or a colour is not enough.

Respond ONLY in JSON: {"should_merge": bool, "confidence": 0.0-1.0, "reason": "short explanation"}"""

    @classmethod
    def build_messages(
        cls,
        ticket_title: str,
        ticket_category: str,
        ticket_summary: Optional[str],
        recent_messages: Sequence[str],
        message_text: str,
        message_category: str,
        score_details: dict
    ) -> List[dict]:
        recent = _numbered(recent_messages) if recent_messages else "(none)"
        user = (
            f"EXISTING TICKET\nTitle: {ticket_title}\nCategory: {ticket_category}\n"
            f"Summary: {ticket_summary or '(none)'}\nRecent messages:\n{recent}\n\n"
            f"NEW MESSAGE\nCategory: {message_category}\nText: {message_text}\n\n"
            f"Match score details: {score_details}"
        )
        return [
            {"role": "system", "content": cls.SYSTEM_PROMPT},
            {"role": "user", "content": user},
        ]
