"""Live progress events for one job, with throttled persistence into the ledger.

Hey future me - two audiences get the same progress:
1. The live sink (an SSE stream) gets EVERY event, immediately.
2. The job row gets at most one write per persist interval, so polling clients and
   reconnecting clients can see where the job is without the original stream.

The sink is allowed to die (browser tab closed). We log it, drop the sink and keep
going; the job itself never fails because nobody is listening anymore.
"""

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from artshelf.domain.entities import JobStatus
from artshelf.infrastructure.persistence.models import utc_now

logger = logging.getLogger(__name__)

CONNECTION_EVENT = "connection"
PROGRESS_EVENT = "progress"
HEARTBEAT_EVENT = "heartbeat"
COMPLETE_EVENT = "complete"
ERROR_EVENT = "error"
CANCELLED_EVENT = "cancelled"
TERMINAL_EVENTS = frozenset({COMPLETE_EVENT, ERROR_EVENT, CANCELLED_EVENT})


@dataclass(frozen=True)
class ProgressEvent:
    """One event on the wire."""

    event: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.event in TERMINAL_EVENTS

    def to_sse(self) -> dict[str, str]:
        """Shape expected by sse-starlette's EventSourceResponse."""
        return {"event": self.event, "data": json.dumps(self.data, default=str)}


class ProgressSink(Protocol):
    """Receiver of live events."""

    async def send(self, event: ProgressEvent) -> None: ...


class ProgressLedger(Protocol):
    """The part of JobLedger the channel needs."""

    async def update_progress(
        self, job_id: str, percent: int | float, message: str | None = None
    ) -> None: ...


class SinkClosedError(ConnectionError):
    """The consumer went away."""


class QueueSink:
    """In-memory sink read by the SSE endpoint.

    Once the reader calls close() (client disconnected), further sends raise
    SinkClosedError and the channel detaches the sink.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: ProgressEvent) -> None:
        if self._closed:
            raise SinkClosedError("Progress consumer disconnected")
        self._queue.put_nowait(event)

    def push(self, event: ProgressEvent) -> None:
        """Enqueue an event produced outside a channel (e.g. a refused start)."""
        if not self._closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        self._closed = True

    async def events(self) -> AsyncIterator[ProgressEvent]:
        """Yield events until (and including) the first terminal one."""
        while not self._closed:
            event = await self._queue.get()
            yield event
            if event.is_terminal:
                return


class ProgressChannel:
    """Relays progress of one job to a live sink and, throttled, to the ledger."""

    def __init__(
        self,
        job_id: str,
        ledger: ProgressLedger | None = None,
        sink: ProgressSink | None = None,
        persist_interval: float = 1.0,
        heartbeat_interval: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.job_id = job_id
        self._ledger = ledger
        self._sink = sink
        self._persist_interval = persist_interval
        self._heartbeat_interval = heartbeat_interval
        self._clock = clock
        self._last_persist: float | None = None
        self._terminal_sent = False
        self._heartbeat_task: asyncio.Task[None] | None = None
        self.persisted_writes = 0

    @property
    def has_sink(self) -> bool:
        return self._sink is not None

    @property
    def finished(self) -> bool:
        return self._terminal_sent

    async def _emit(self, event: ProgressEvent) -> None:
        if self._sink is None:
            return
        try:
            await self._sink.send(event)
        except Exception as e:
            logger.warning(
                "Progress sink for job %s failed, detaching it: %s", self.job_id, e
            )
            self._sink = None
            self._stop_heartbeat()

    async def open(self, message: str = "Connected") -> None:
        """Emit the connection event and start the heartbeat."""
        await self._emit(
            ProgressEvent(CONNECTION_EVENT, {"job_id": self.job_id, "message": message})
        )
        if self._sink is not None and self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(
                self._heartbeat_loop(), name=f"heartbeat-{self.job_id}"
            )

    async def _heartbeat_loop(self) -> None:
        while not self._terminal_sent and self._sink is not None:
            await asyncio.sleep(self._heartbeat_interval)
            if self._terminal_sent:
                return
            await self._emit(
                ProgressEvent(HEARTBEAT_EVENT, {"timestamp": utc_now().isoformat()})
            )

    async def publish(self, data: dict[str, Any]) -> None:
        """Send a progress event now, persist it if the interval elapsed.

        ``data`` must carry ``percentage`` and may carry ``message``.

        Raises:
            JobCancelledError: From the ledger, when the job is being cancelled
        """
        if self._terminal_sent:
            logger.debug("Dropping progress for finished job %s", self.job_id)
            return
        await self._emit(ProgressEvent(PROGRESS_EVENT, {"job_id": self.job_id, **data}))

        if self._ledger is None:
            return
        now = self._clock()
        if self._last_persist is not None and now - self._last_persist < self._persist_interval:
            return
        # Claim the slot before awaiting so concurrent publishers don't double-write
        self._last_persist = now
        self.persisted_writes += 1
        await self._ledger.update_progress(
            self.job_id, data.get("percentage", 0), data.get("message")
        )

    async def _terminal(self, event: str, data: dict[str, Any]) -> bool:
        if self._terminal_sent:
            logger.debug(
                "Job %s already emitted its terminal event, ignoring %s",
                self.job_id,
                event,
            )
            return False
        self._terminal_sent = True
        self._stop_heartbeat()
        await self._emit(ProgressEvent(event, {"job_id": self.job_id, **data}))
        return True

    async def complete(self, result: dict[str, Any] | None = None) -> bool:
        """Emit the single `complete` event."""
        return await self._terminal(
            COMPLETE_EVENT,
            {"status": JobStatus.COMPLETED.value, "percentage": 100, "result": result or {}},
        )

    async def fail(self, error: str) -> bool:
        """Emit the single `error` event."""
        return await self._terminal(
            ERROR_EVENT, {"status": JobStatus.FAILED.value, "error": error}
        )

    async def cancelled(self, message: str = "Cancelled") -> bool:
        """Emit the single `cancelled` event."""
        return await self._terminal(
            CANCELLED_EVENT, {"status": JobStatus.CANCELLED.value, "message": message}
        )

    def _stop_heartbeat(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def close(self) -> None:
        """Stop the heartbeat. Safe to call more than once."""
        task = self._heartbeat_task
        self._stop_heartbeat()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
