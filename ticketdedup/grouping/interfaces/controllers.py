"""
Grouping Controllers (API Routes)
==================================

FastAPI routes for message intake, ticket inspection and the ticket event
stream.

Controllers delegate to application services.
"""

import json
import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ticketdedup.config import VALID_STATUSES
from ticketdedup.core import ResourceNotFoundException, ValidationException
from ticketdedup.grouping.application import (
    ClassificationInfo,
    IngestionPipeline,
    IngestResponse,
    IntakeMessageRequest,
    TicketDetailDTO,
    TicketDTO,
    TicketListResponse,
    TicketMessageDTO,
)
from ticketdedup.grouping.domain import IncomingMessage
from ticketdedup.grouping.infrastructure import (
    SQLAlchemyMessageRepository,
    SQLAlchemyTicketRepository,
    TicketEventBroadcaster,
    get_event_broadcaster,
)
from ticketdedup.infrastructure.database import get_session
from ticketdedup.shared.infrastructure.logging import get_context_logger

intake_router = APIRouter(prefix="/intake", tags=["Message Intake"])
tickets_router = APIRouter(prefix="/tickets", tags=["Tickets"])


# ========== Example payloads for Swagger ==========

INTAKE_REQUEST_EXAMPLE = {
    "channel_id": "C024BE91L",
    "ts": "1718030000.000100",
    "user_id": "U023BECGF",
    "username": "dana",
    "text": "Export to CSV is broken, error 500",
}

INTAKE_RESPONSE_EXAMPLE = {
    "status": "grouped",
    "ticket_id": "123e4567-e89b-12d3-a456-426614174000",
    "classification": {
        "is_relevant": True,
        "category": "bug_report",
        "confidence": 0.9,
        "short_title": "CSV export fails with 500",
    },
    "processing_time_ms": 1200,
}


# ========== Dependencies ==========

def get_ingestion_pipeline(request: Request) -> IngestionPipeline:
    """Get the ingestion pipeline built by the application lifespan."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Ingestion pipeline not initialized")
    return pipeline


def get_broadcaster(websocket: WebSocket) -> TicketEventBroadcaster:
    return getattr(websocket.app.state, "event_broadcaster", None) or get_event_broadcaster()


# ========== Intake ==========

@intake_router.post(
    "/messages",
    response_model=IngestResponse,
    summary="Ingest one chat message",
    description="""
    Run a chat message through the grouping pipeline:

    normalize -> filter -> classify -> relevance gate -> sequenced grouping

    **Statuses**:
    - `filtered` - acknowledgement or noise, nothing stored
    - `irrelevant` - classified as not a ticket
    - `grouped` - attached to an existing ticket or a new one
    - `dropped` - context-only author and no ticket matched
    - `failed` - grouping raised; see logs
    """,
    responses={
        200: {
            "description": "Message processed",
            "content": {"application/json": {"example": INTAKE_RESPONSE_EXAMPLE}}
        },
        503: {"description": "Pipeline not initialized"}
    }
)
async def ingest_message(
    request: Request,
    payload: IntakeMessageRequest,
    pipeline: IngestionPipeline = Depends(get_ingestion_pipeline)
):
    start_time = time.perf_counter()
    log = get_context_logger(__name__, getattr(request.state, "correlation_id", None))

    log.info(
        "Ingesting message",
        extra={
            "channel_id": payload.channel_id,
            "ts": payload.ts,
            "is_reply": payload.thread_ts is not None
        }
    )

    message = IncomingMessage(
        channel_id=payload.channel_id,
        ts=payload.ts,
        user_id=payload.user_id,
        text=payload.text,
        root_thread_ts=payload.thread_ts,
        username=payload.username,
        team_id=payload.team_id,
        event_id=payload.event_id,
        permalink=payload.permalink,
        is_context_only=payload.is_context_only,
    )
    result = await pipeline.process(
        message,
        thread_context=payload.thread_context or None,
        channel_context=payload.channel_context or None,
    )

    processing_time_ms = int((time.perf_counter() - start_time) * 1000)
    log.info(
        "Message ingested",
        extra={
            "status": result.status,
            "ticket_id": result.ticket_id,
            "processing_time_ms": processing_time_ms
        }
    )

    return IngestResponse(
        status=result.status,
        ticket_id=result.ticket_id,
        classification=ClassificationInfo.from_result(result.classification) if result.classification else None,
        processing_time_ms=processing_time_ms,
    )


# ========== Tickets ==========

@tickets_router.get(
    "",
    response_model=TicketListResponse,
    summary="List tickets",
    description="Tickets ordered by most recent activity. Filter with `status` (open, resolved, closed)."
)
async def list_tickets(
    status: Optional[str] = Query(None, description="Filter by ticket status"),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_session)
):
    if status is not None and status not in VALID_STATUSES:
        raise ValidationException(f"Unknown status: {status}")

    repo = SQLAlchemyTicketRepository(db)
    tickets = await repo.list_tickets(status=status, limit=limit)
    return TicketListResponse(
        tickets=[TicketDTO.from_entity(t) for t in tickets],
        total=len(tickets),
    )


@tickets_router.get(
    "/{ticket_id}",
    response_model=TicketDetailDTO,
    summary="Get a ticket with its messages",
    responses={404: {"description": "Ticket not found"}}
)
async def get_ticket(ticket_id: str, db: AsyncSession = Depends(get_session)):
    ticket = await SQLAlchemyTicketRepository(db).get_by_id(ticket_id)
    if ticket is None:
        raise ResourceNotFoundException("Ticket", ticket_id)

    messages = await SQLAlchemyMessageRepository(db).list_by_ticket(ticket_id)
    return TicketDetailDTO(
        **TicketDTO.from_entity(ticket).model_dump(),
        messages=[TicketMessageDTO.from_entity(m) for m in messages],
    )


@tickets_router.websocket("/events")
async def ticket_events(websocket: WebSocket):
    """Stream ticket_updated events to the client until it disconnects."""
    broadcaster = get_broadcaster(websocket)
    await broadcaster.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        broadcaster.disconnect(websocket)


def encode_sse_event(event: Optional[dict]) -> str:
    """Server-sent event frame for an event, or a comment frame for a keepalive."""
    if event is None:
        return ": keepalive\n\n"
    return f"event: {event['type']}\ndata: {json.dumps(event)}\n\n"


@tickets_router.get(
    "/events/stream",
    summary="Ticket events as server-sent events",
    response_class=StreamingResponse,
)
async def ticket_event_stream(request: Request):
    broadcaster = getattr(request.app.state, "event_broadcaster", None) or get_event_broadcaster()
    events = broadcaster.stream()

    async def frames():
        async for event in events:
            yield encode_sse_event(event)

    return StreamingResponse(
        frames(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
