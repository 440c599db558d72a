"""Tests for the HTTP surface and the ticket event broadcaster."""

import asyncio
import logging
from datetime import datetime, timezone
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from ticketdedup.grouping.application import IngestResult, IngestStatus
from ticketdedup.grouping.domain import Ticket, TicketMessage
from ticketdedup.grouping.infrastructure import (
    SQLAlchemyMessageRepository,
    SQLAlchemyTicketRepository,
    TicketEventBroadcaster,
)
from ticketdedup.grouping.interfaces.controllers import encode_sse_event
from ticketdedup.infrastructure.database import get_session
from ticketdedup.main import app

from tests.fakes import make_classification


class RecordingPipeline:
    def __init__(self, result: IngestResult):
        self.result = result
        self.calls = []

    async def process(self, message, thread_context=None, channel_context=None):
        self.calls.append((message, thread_context, channel_context))
        return self.result


@pytest.fixture
async def client(session_maker):
    async def override_session():
        async with session_maker() as session:
            yield session
            await session.commit()

    app.dependency_overrides[get_session] = override_session
    app.state.pipeline = None
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
    app.state.pipeline = None


async def _seed_ticket(session_maker, status="open") -> str:
    now = datetime.now(timezone.utc)
    ticket = Ticket(
        id=str(uuid4()), title="CSV export fails", category="bug_report", status=status,
        created_at=now, updated_at=now, canonical_key="500|csv|export",
    )
    async with session_maker() as session:
        await SQLAlchemyTicketRepository(session).create(ticket)
        await SQLAlchemyMessageRepository(session).upsert(TicketMessage(
            ticket_id=ticket.id, channel_id="C1", ts="100", root_thread_ts="100",
            user_id="U1", text="Export to CSV is broken, error 500",
        ))
        await session.commit()
    return ticket.id


# ========== Intake ==========

async def test_intake_runs_the_pipeline(client):
    pipeline = RecordingPipeline(IngestResult(
        status=IngestStatus.GROUPED, ticket_id="t-1", classification=make_classification()
    ))
    app.state.pipeline = pipeline

    response = await client.post("/intake/messages", json={
        "channel_id": "C1",
        "ts": "101",
        "user_id": "U1",
        "text": "csv export still gives 500",
        "thread_ts": "100",
    })

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "grouped"
    assert body["ticket_id"] == "t-1"
    assert body["classification"]["category"] == "bug_report"

    message, thread_context, channel_context = pipeline.calls[0]
    assert message.root_thread_ts == "100"
    assert thread_context is None
    assert channel_context is None


async def test_intake_passes_context_only_flag(client):
    pipeline = RecordingPipeline(IngestResult(status=IngestStatus.DROPPED, classification=make_classification()))
    app.state.pipeline = pipeline

    response = await client.post("/intake/messages", json={
        "channel_id": "C1", "ts": "101", "user_id": "U1", "text": "csv export still gives 500",
        "is_context_only": True,
    })

    assert response.status_code == 200
    assert response.json()["status"] == "dropped"
    message, _, _ = pipeline.calls[0]
    assert message.is_context_only is True


async def test_intake_defaults_to_ticket_opening_message(client):
    pipeline = RecordingPipeline(IngestResult(status=IngestStatus.FILTERED))
    app.state.pipeline = pipeline

    await client.post("/intake/messages", json={
        "channel_id": "C1", "ts": "101", "user_id": "U1", "text": "thanks",
    })

    message, _, _ = pipeline.calls[0]
    assert message.is_context_only is False


async def test_intake_logs_carry_correlation_id(client, caplog):
    caplog.set_level(logging.INFO, logger="ticketdedup")
    app.state.pipeline = RecordingPipeline(IngestResult(status=IngestStatus.FILTERED))

    await client.post(
        "/intake/messages",
        json={"channel_id": "C1", "ts": "101", "user_id": "U1", "text": "thanks"},
        headers={"X-Correlation-ID": "corr-42"},
    )

    records = [r for r in caplog.records if r.getMessage() in ("Ingesting message", "Message ingested")]
    assert len(records) == 2
    assert all(r.correlation_id == "corr-42" for r in records)
    assert records[0].channel_id == "C1"
    assert records[1].status == "filtered"


async def test_intake_without_pipeline_is_unavailable(client):
    response = await client.post("/intake/messages", json={
        "channel_id": "C1", "ts": "101", "user_id": "U1", "text": "export broken",
    })

    assert response.status_code == 503


async def test_intake_rejects_incomplete_payload(client):
    app.state.pipeline = RecordingPipeline(IngestResult(status=IngestStatus.FILTERED))

    response = await client.post("/intake/messages", json={"ts": "101", "user_id": "U1", "text": "hi"})

    assert response.status_code == 422


# ========== Tickets ==========

async def test_get_ticket_with_messages(client, session_maker):
    ticket_id = await _seed_ticket(session_maker)

    response = await client.get(f"/tickets/{ticket_id}")

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == ticket_id
    assert body["canonical_key"] == "500|csv|export"
    assert [m["ts"] for m in body["messages"]] == ["100"]


async def test_unknown_ticket_is_not_found(client):
    response = await client.get(f"/tickets/{uuid4()}")

    assert response.status_code == 404


async def test_list_tickets_filters_by_status(client, session_maker):
    await _seed_ticket(session_maker)

    response = await client.get("/tickets", params={"status": "open"})
    assert response.status_code == 200
    assert response.json()["total"] == 1

    response = await client.get("/tickets", params={"status": "resolved"})
    assert response.json()["total"] == 0


async def test_list_tickets_rejects_unknown_status(client):
    response = await client.get("/tickets", params={"status": "pending"})

    assert response.status_code == 400


async def test_health_reports_missing_pipeline(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["checks"]["intake"] == "not_configured"


# ========== Events ==========

class FakeWebSocket:
    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(data)


async def test_broadcaster_delivers_to_clients_and_subscribers():
    broadcaster = TicketEventBroadcaster()
    socket = FakeWebSocket()
    await broadcaster.connect(socket)
    queue = broadcaster.subscribe()

    await broadcaster.publish_ticket_updated("t-1")

    assert socket.accepted
    assert socket.sent[0]["type"] == "ticket_updated"
    assert socket.sent[0]["ticket_id"] == "t-1"
    assert queue.get_nowait()["ticket_id"] == "t-1"


async def test_broadcaster_drops_failing_clients():
    broadcaster = TicketEventBroadcaster()
    await broadcaster.connect(FakeWebSocket(fail=True))
    healthy = FakeWebSocket()
    await broadcaster.connect(healthy)

    await broadcaster.publish_ticket_updated("t-1")

    assert broadcaster.connection_count == 1
    assert len(healthy.sent) == 1


async def test_full_subscriber_queue_keeps_latest_events():
    broadcaster = TicketEventBroadcaster(queue_size=2)
    queue = broadcaster.subscribe()

    for ticket_id in ("t-1", "t-2", "t-3"):
        await broadcaster.publish_ticket_updated(ticket_id)

    assert [queue.get_nowait()["ticket_id"] for _ in range(2)] == ["t-2", "t-3"]


async def test_slow_client_is_dropped_without_holding_up_others():
    broadcaster = TicketEventBroadcaster(send_timeout_seconds=0.05)
    slow = FakeWebSocket(delay=5.0)
    healthy = FakeWebSocket()
    await broadcaster.connect(slow)
    await broadcaster.connect(healthy)

    await asyncio.wait_for(broadcaster.publish_ticket_updated("t-1"), timeout=1.0)

    assert broadcaster.connection_count == 1
    assert slow.sent == []
    assert healthy.sent[0]["ticket_id"] == "t-1"


async def test_unsubscribed_queue_receives_nothing():
    broadcaster = TicketEventBroadcaster()
    queue = broadcaster.subscribe()
    broadcaster.unsubscribe(queue)

    await broadcaster.publish_ticket_updated("t-1")

    assert queue.empty()
    assert broadcaster.subscriber_count == 0


async def test_event_stream_yields_events_and_unsubscribes_on_close():
    broadcaster = TicketEventBroadcaster()
    stream = broadcaster.stream(keepalive_seconds=1.0)
    assert broadcaster.subscriber_count == 1

    await broadcaster.publish_ticket_updated("t-1")
    event = await stream.__anext__()
    await stream.aclose()

    assert event["ticket_id"] == "t-1"
    assert broadcaster.subscriber_count == 0


async def test_event_stream_yields_keepalive_when_idle():
    broadcaster = TicketEventBroadcaster()
    stream = broadcaster.stream(keepalive_seconds=0.01)

    assert await stream.__anext__() is None
    await stream.aclose()


def test_sse_frames():
    frame = encode_sse_event({"type": "ticket_updated", "ticket_id": "t-1"})

    assert frame.startswith("event: ticket_updated\ndata: ")
    assert frame.endswith("\n\n")
    assert '"ticket_id": "t-1"' in frame
    assert encode_sse_event(None) == ": keepalive\n\n"
