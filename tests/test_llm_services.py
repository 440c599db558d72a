"""Tests for classification, summaries and merge arbitration."""

import pytest

from ticketdedup.core import LLMException
from ticketdedup.grouping.application import (
    ClassificationService,
    MergeArbiter,
    SummaryService,
    fallback_classification,
    parse_structured,
    ClassificationPayload,
)
from ticketdedup.grouping.application.summarization import max_priority, scan_urgency
from ticketdedup.grouping.domain import GroupingConfig, MatchScorer, Ticket, TicketMessage
from ticketdedup.grouping.infrastructure import ClassificationCache

from tests.fakes import FakeClock, ScriptedLLM, make_classification, make_message

BUG_PAYLOAD = {
    "is_relevant": True,
    "category": "bug_report",
    "confidence": 0.92,
    "short_title": "CSV export returns 500",
    "signals": ["CSV", " Export ", ""],
    "inferred_assignees": ["@sam", "lee", "@"],
}


def _message(text: str, ts: str, user: str = "U1") -> TicketMessage:
    return TicketMessage(
        ticket_id="t1", channel_id="C1", ts=ts, root_thread_ts=ts, user_id=user, text=text
    )


# ========== Structured output parsing ==========

def test_parse_structured_accepts_fenced_json():
    content = "```json\n{\"is_relevant\": false, \"category\": \"irrelevant\", \"confidence\": 0.1, \"short_title\": \"x\"}\n```"
    payload = parse_structured(content, ClassificationPayload)
    assert payload.category == "irrelevant"


@pytest.mark.parametrize(
    "content",
    [
        "not json",
        '{"is_relevant": true}',
        '{"is_relevant": true, "category": "outage", "confidence": 0.5, "short_title": "x"}',
        '{"is_relevant": true, "category": "bug_report", "confidence": 1.5, "short_title": "x"}',
    ],
)
def test_parse_structured_rejects_invalid_payloads(content):
    with pytest.raises(LLMException):
        parse_structured(content, ClassificationPayload)


# ========== Classification ==========

async def test_classification_maps_payload():
    llm = ScriptedLLM()
    llm.script("classification", BUG_PAYLOAD)
    service = ClassificationService(llm)

    result = await service.classify("Export to CSV is broken", "export to csv is broken")

    assert result.is_relevant
    assert result.category == "bug_report"
    assert result.signals == frozenset({"csv", "export"})
    assert result.inferred_assignees == frozenset({"sam", "lee"})


async def test_classification_is_cached_by_normalized_text():
    llm = ScriptedLLM()
    llm.script("classification", BUG_PAYLOAD)
    service = ClassificationService(llm, cache=ClassificationCache())

    first = await service.classify("Export to CSV is broken", "export to csv is broken")
    second = await service.classify("EXPORT to CSV is broken", "export to csv is broken")

    assert first == second
    assert llm.calls == ["classification"]


async def test_classification_with_context_bypasses_cache():
    llm = ScriptedLLM()
    llm.script("classification", BUG_PAYLOAD)
    cache = ClassificationCache()
    service = ClassificationService(llm, cache=cache)

    await service.classify("same here", "same here", thread_context=["CSV export is broken"])
    await service.classify("same here", "same here", thread_context=["CSV export is broken"])

    assert llm.calls == ["classification", "classification"]
    assert len(cache) == 0


async def test_classification_failure_falls_back_and_is_not_cached():
    llm = ScriptedLLM()
    llm.script("classification", "garbage", BUG_PAYLOAD)
    cache = ClassificationCache()
    service = ClassificationService(llm, cache=cache)

    failed = await service.classify("Export to CSV is broken", "export to csv is broken")
    assert failed == fallback_classification("Export to CSV is broken")
    assert failed.is_relevant is False
    assert failed.category == "irrelevant"
    assert len(cache) == 0

    retried = await service.classify("Export to CSV is broken", "export to csv is broken")
    assert retried.category == "bug_report"


async def test_classification_llm_error_falls_back():
    llm = ScriptedLLM()
    llm.script("classification", LLMException("timeout"))

    result = await ClassificationService(llm).classify("x" * 80, "x" * 80)

    assert result.confidence == 0.0
    assert result.short_title == "x" * 50


# ========== Summaries ==========

def test_max_priority_ignores_unknown_values():
    assert max_priority("low", None, "high", "bogus") == "high"
    assert max_priority(None) is None


def test_scan_urgency_matches_whole_phrases():
    assert scan_urgency(["need this asap"]) == "high"
    assert scan_urgency(["prod down since 9am", "asap"]) == "critical"
    assert scan_urgency(["the blockers list"]) is None


async def test_new_ticket_summary_escalates_on_urgency():
    llm = ScriptedLLM()
    llm.script("summary", {"description": "CSV export fails", "priority_hint": "low"})

    summary = await SummaryService(llm).summarize_new(
        text="CSV export broken, customer needs it tonight",
        classification=make_classification(title="CSV export fails"),
        reporter="dana",
        assignees=[],
    )

    assert summary.description == "CSV export fails"
    assert summary.priority_hint == "high"


async def test_new_ticket_summary_fallback():
    llm = ScriptedLLM()
    llm.script("summary", LLMException("down"))

    summary = await SummaryService(llm).summarize_new(
        text="CSV export broken",
        classification=make_classification(category="feature_request", title="Better CSV export"),
        reporter="dana",
        assignees=["sam"],
    )

    assert summary.description == "Better CSV export"
    assert summary.action_items == ["Review feature request"]
    assert summary.priority_hint == "medium"


async def test_conversation_summary_never_downgrades_priority():
    llm = ScriptedLLM()
    llm.script("conversation_summary", {"description": "Export fixed?", "priority_hint": "low"})

    summary = await SummaryService(llm).summarize_conversation(
        title="CSV export fails",
        category="bug_report",
        messages=[_message("CSV export broken", "1"), _message("looks better now", "2")],
        assignees=[],
        reporter="dana",
        current_priority="high",
    )

    assert summary.description == "Export fixed?"
    assert summary.priority_hint == "high"


async def test_conversation_summary_fallback_keeps_escalated_priority():
    llm = ScriptedLLM()
    llm.script("conversation_summary", "not json")

    summary = await SummaryService(llm).summarize_conversation(
        title="CSV export fails",
        category="bug_report",
        messages=[_message("CSV export broken", "1"), _message("this is a production down situation", "2")],
        assignees=[],
        reporter="dana",
        current_priority="medium",
    )

    assert summary.description == "CSV export fails"
    assert summary.priority_hint == "critical"


async def test_empty_conversation_skips_the_model():
    llm = ScriptedLLM()

    summary = await SummaryService(llm).summarize_conversation(
        title="CSV export fails",
        category="bug_report",
        messages=[_message("   ", "1")],
        assignees=[],
        reporter=None,
    )

    assert llm.calls == []
    assert summary.priority_hint == "medium"


# ========== Arbitration ==========

async def _arbitrate(llm: ScriptedLLM):
    now = FakeClock()()
    ticket = Ticket(id="t1", title="CSV export fails", category="bug_report", status="open",
                    created_at=now, updated_at=now)
    breakdown = MatchScorer(GroupingConfig()).score(1.25, True, True, 1, 0)
    return await MergeArbiter(llm).arbitrate(
        candidate=ticket,
        recent_messages=[_message("CSV export broken", "1")],
        message=make_message("the download button does nothing", "2"),
        classification=make_classification(),
        breakdown=breakdown,
    )


async def test_arbitration_returns_model_decision():
    llm = ScriptedLLM()
    llm.script("arbitration", {"should_merge": True, "confidence": 0.85, "reason": "same export bug"})

    decision = await _arbitrate(llm)

    assert decision.should_merge is True
    assert decision.confidence == 0.85


async def test_arbitration_failure_means_no_merge():
    llm = ScriptedLLM()
    llm.script("arbitration", LLMException("rate limited"))

    decision = await _arbitrate(llm)

    assert decision.should_merge is False
    assert decision.confidence == 0.0
