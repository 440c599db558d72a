"""
Message Sequencer
==================

Runs grouping jobs one at a time, in the order they were submitted.

Grouping reads state that earlier messages write (thread membership,
canonical keys, recent channel activity), so two messages must never be
grouped concurrently. Classification happens before submission and is not
serialized.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

from ticketdedup.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Job = Callable[[], Awaitable[T]]


class MessageSequencer:
    """
    Single-consumer job queue.

    Usage:
        sequencer = MessageSequencer()
        await sequencer.start()
        ticket_id = await sequencer.submit(lambda: grouper.group_message(msg, result))
        await sequencer.stop()
    """

    def __init__(self, name: str = "grouping"):
        self._name = name
        self._queue: "asyncio.Queue[Optional[Tuple[Job, asyncio.Future]]]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        if self.is_running:
            logger.warning("Sequencer already running", extra={"sequencer": self._name})
            return
        self._worker = asyncio.create_task(self._run(), name=f"{self._name}-sequencer")
        logger.info("Sequencer started", extra={"sequencer": self._name})

    async def stop(self) -> None:
        """Finish queued jobs, then stop the worker."""
        if not self.is_running:
            return
        await self._queue.put(None)
        await self._worker
        self._worker = None
        logger.info("Sequencer stopped", extra={"sequencer": self._name})

    def submit(self, job: Job) -> "asyncio.Future[T]":
        """
        Queue a job.

        Args:
            job: Zero-argument coroutine function

        Returns:
            Future resolved with the job's result, or its exception

        Raises:
            RuntimeError: If the sequencer is not running
        """
        if not self.is_running:
            raise RuntimeError("Sequencer is not running. Call start() first.")
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((job, future))
        return future

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                job, future = item
                if future.cancelled():
                    continue
                try:
                    result = await job()
                except Exception as e:
                    logger.error(
                        "Sequenced job failed",
                        extra={"sequencer": self._name, "error_type": type(e).__name__, "error": str(e)}
                    )
                    if not future.done():
                        future.set_exception(e)
                else:
                    if not future.done():
                        future.set_result(result)
            finally:
                self._queue.task_done()
