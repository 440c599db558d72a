"""
Ticket Event Broadcasting
==========================

Fans ticket_updated events out to connected WebSocket clients and to
in-process subscriber queues, which back the server-sent event stream.
"""

import asyncio
from datetime import datetime, timezone
from typing import AsyncIterator, Optional, Set

from fastapi import WebSocket

from ticketdedup.grouping.application.interfaces import ITicketEventPublisher
from ticketdedup.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class TicketEventBroadcaster(ITicketEventPublisher):
    """
    Publishes ticket events.

    A client that fails to receive, or takes longer than send_timeout_seconds,
    is dropped. Sends run concurrently, so one slow client cannot hold up the
    grouping job that published the event. Subscriber queues are bounded;
    when one is full the oldest event is discarded.
    """

    def __init__(self, queue_size: int = 100, send_timeout_seconds: float = 1.0):
        self._connections: Set[WebSocket] = set()
        self._subscribers: Set[asyncio.Queue] = set()
        self._queue_size = queue_size
        self._send_timeout = send_timeout_seconds

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections.add(websocket)
        logger.info("Event listener connected", extra={"connections": len(self._connections)})

    def disconnect(self, websocket: WebSocket) -> None:
        self._connections.discard(websocket)
        logger.info("Event listener disconnected", extra={"connections": len(self._connections)})

    def subscribe(self) -> asyncio.Queue:
        """Register an in-process subscriber queue."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def stream(self, keepalive_seconds: float = 15.0) -> AsyncIterator[Optional[dict]]:
        """
        Subscribe now and iterate events as they arrive.

        Yields None when keepalive_seconds pass without an event. The queue
        is unsubscribed when the iterator is closed or cancelled.
        """
        queue = self.subscribe()
        return self._drain(queue, keepalive_seconds)

    async def _drain(self, queue: asyncio.Queue, keepalive_seconds: float) -> AsyncIterator[Optional[dict]]:
        try:
            while True:
                try:
                    yield await asyncio.wait_for(queue.get(), timeout=keepalive_seconds)
                except asyncio.TimeoutError:
                    yield None
        finally:
            self.unsubscribe(queue)

    async def publish_ticket_updated(self, ticket_id: str) -> None:
        await self.broadcast({
            "type": "ticket_updated",
            "ticket_id": ticket_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def broadcast(self, event: dict) -> None:
        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(event)

        connections = list(self._connections)
        if connections:
            await asyncio.gather(*(self._send(websocket, event) for websocket in connections))

    async def _send(self, websocket: WebSocket, event: dict) -> None:
        try:
            await asyncio.wait_for(websocket.send_json(event), timeout=self._send_timeout)
        except asyncio.TimeoutError:
            logger.warning("Dropping slow event listener", extra={"timeout_seconds": self._send_timeout})
            self._connections.discard(websocket)
        except Exception as e:
            logger.warning("Dropping event listener", extra={"error": str(e)})
            self._connections.discard(websocket)

    async def close(self) -> None:
        for websocket in list(self._connections):
            try:
                await websocket.close()
            except RuntimeError as e:
                logger.debug("Event listener already closed", extra={"error": str(e)})
        self._connections.clear()
        self._subscribers.clear()


_broadcaster: Optional[TicketEventBroadcaster] = None


def get_event_broadcaster() -> TicketEventBroadcaster:
    """Get or create the process-wide broadcaster."""
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = TicketEventBroadcaster()
    return _broadcaster
