"""Tests for the ingestion pipeline: filter, classify, relevance gate, sequenced grouping."""

import pytest

from ticketdedup.core import RepositoryException
from ticketdedup.grouping.application import (
    ClassificationService,
    IngestionPipeline,
    IngestStatus,
    MessageSequencer,
)
from ticketdedup.grouping.infrastructure import ClassificationCache

from tests.fakes import make_message

BUG_PAYLOAD = {
    "is_relevant": True,
    "category": "bug_report",
    "confidence": 0.9,
    "short_title": "CSV export returns 500",
    "signals": ["csv", "export"],
    "inferred_assignees": [],
}

CHATTER_PAYLOAD = {
    "is_relevant": False,
    "category": "irrelevant",
    "confidence": 0.95,
    "short_title": "Lunch plans",
}


@pytest.fixture
async def sequencer():
    sequencer = MessageSequencer()
    await sequencer.start()
    yield sequencer
    await sequencer.stop()


def _pipeline(env, sequencer, runner=None, context_only_user_ids=()):
    async def run_grouping(message, classification, is_context_only):
        return await env.service.group_message(message, classification, is_context_only=is_context_only)

    return IngestionPipeline(
        ClassificationService(env.llm, cache=ClassificationCache()),
        sequencer,
        runner or run_grouping,
        context_only_user_ids=context_only_user_ids,
    )


async def test_acknowledgement_is_filtered_before_classification(env, sequencer):
    result = await _pipeline(env, sequencer).process(make_message("Thanks!", "100"))

    assert result.status == IngestStatus.FILTERED
    assert result.classification is None
    assert env.llm.calls == []


async def test_irrelevant_message_never_reaches_grouping(env, sequencer):
    env.llm.script("classification", CHATTER_PAYLOAD)

    result = await _pipeline(env, sequencer).process(make_message("who wants tacos for lunch today", "100"))

    assert result.status == IngestStatus.IRRELEVANT
    assert result.classification.category == "irrelevant"
    assert env.tickets.tickets == {}


async def test_relevant_message_is_grouped(env, sequencer):
    env.llm.script("classification", BUG_PAYLOAD)

    result = await _pipeline(env, sequencer).process(make_message("Export to CSV is broken, error 500", "100"))

    assert result.status == IngestStatus.GROUPED
    assert result.ticket_id in env.tickets.tickets
    assert result.classification.category == "bug_report"


async def test_context_only_author_without_ticket_is_dropped(env, sequencer):
    env.llm.script("classification", BUG_PAYLOAD)
    pipeline = _pipeline(env, sequencer, context_only_user_ids=["U9"])

    result = await pipeline.process(make_message("Export to CSV is broken, error 500", "100", user="U9"))

    assert result.status == IngestStatus.DROPPED
    assert result.ticket_id is None
    assert env.tickets.tickets == {}


async def test_grouping_failure_is_reported_not_raised(env, sequencer):
    env.llm.script("classification", BUG_PAYLOAD)

    async def broken_runner(message, classification, is_context_only):
        raise RepositoryException("database unavailable")

    pipeline = _pipeline(env, sequencer, runner=broken_runner)
    result = await pipeline.process(make_message("Export to CSV is broken, error 500", "100"))

    assert result.status == IngestStatus.FAILED
    assert result.classification.category == "bug_report"

    # The sequencer keeps serving later messages
    healthy = _pipeline(env, sequencer)
    assert (await healthy.process(make_message("Export to CSV is broken, error 500", "101"))).status == IngestStatus.GROUPED


async def test_paraphrased_report_in_another_channel_joins_ticket(env, sequencer):
    env.llm.script("classification", BUG_PAYLOAD)
    pipeline = _pipeline(env, sequencer)

    first = await pipeline.process(make_message("Export to CSV is broken, error 500", "100", channel="C1"))
    ack = await pipeline.process(make_message("thanks", "101", channel="C1", user="U2"))
    second = await pipeline.process(
        make_message("csv export still gives 500", "200", channel="C2", user="U3")
    )

    assert first.status == IngestStatus.GROUPED
    assert ack.status == IngestStatus.FILTERED
    assert second.ticket_id == first.ticket_id
    assert len(env.tickets.tickets) == 1
    assert env.llm.calls.count("classification") == 2
