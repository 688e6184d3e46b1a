from __future__ import annotations

import asyncio
import codecs
import logging
import re
from typing import TYPE_CHECKING, AsyncIterator

from backupgui.jobs.types import StreamEvent, StreamEventKind

if TYPE_CHECKING:
    from backupgui.jobs.registry import JobRegistry

logger = logging.getLogger(__name__)

NO_SUCH_JOB_MESSAGE = "No such job"

# Only CR, LF and CRLF end an event-stream line.
_SSE_LINE_BREAK = re.compile(r"\r\n|\r|\n")


class OutputHub:
    """Broadcasts one job's output events to every attached observer.

    Each observer gets its own unbounded queue registered at subscription time,
    so events published before that moment never reach it. Once the hub is
    closed, new observers receive only the terminal event.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[StreamEvent]] = []
        self._final_event: StreamEvent | None = None

    @property
    def closed(self) -> bool:
        return self._final_event is not None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[StreamEvent]:
        queue: asyncio.Queue[StreamEvent] = asyncio.Queue()
        if self._final_event is not None:
            queue.put_nowait(self._final_event)
            return queue
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[StreamEvent]) -> None:
        try:
            self._subscribers.remove(queue)
        except ValueError:
            pass

    def publish(self, event: StreamEvent) -> None:
        if self._final_event is not None:
            raise RuntimeError("Cannot publish to a closed output hub")
        if event.is_terminal:
            self.close(event)
            return
        for queue in list(self._subscribers):
            queue.put_nowait(event)

    def close(self, final_event: StreamEvent) -> None:
        if self._final_event is not None:
            return
        self._final_event = final_event
        subscribers, self._subscribers = self._subscribers, []
        for queue in subscribers:
            queue.put_nowait(final_event)


async def _pump(
    stream: asyncio.StreamReader | None,
    kind: StreamEventKind,
    hub: OutputHub,
    chunk_size: int,
) -> None:
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await stream.read(chunk_size)
        if not chunk:
            tail = decoder.decode(b"", final=True)
            if tail:
                hub.publish(StreamEvent(kind=kind, text=tail))
            return
        text = decoder.decode(chunk)
        if text:
            hub.publish(StreamEvent(kind=kind, text=text))


async def relay_process_output(
    process: asyncio.subprocess.Process,
    hub: OutputHub,
    *,
    chunk_size: int = 64 * 1024,
) -> int:
    """Forward stdout/stderr into ``hub`` until both close, then publish ``end``.

    The two streams are pumped independently, so ordering holds within each
    stream only. ``end`` is published after both pipes hit EOF and the exit
    code is known.
    """
    await asyncio.gather(
        _pump(process.stdout, StreamEventKind.DATA, hub, chunk_size),
        _pump(process.stderr, StreamEventKind.ERR, hub, chunk_size),
    )
    exit_code = await process.wait()
    hub.close(StreamEvent.end(exit_code))
    return exit_code


async def stream_job_events(registry: "JobRegistry", job_id: str) -> AsyncIterator[StreamEvent]:
    """Yield the events of ``job_id`` from now on; ``end`` is always the last one.

    Closing the iterator early detaches only this observer. The process keeps
    running and other observers are unaffected.
    """
    try:
        job = registry.lookup(job_id)
    except LookupError:
        yield StreamEvent.end(None, message=NO_SUCH_JOB_MESSAGE)
        return

    queue = job.hub.subscribe()
    logger.debug("Observer attached to job %s (%d attached)", job_id, job.hub.subscriber_count)
    try:
        while True:
            event = await queue.get()
            yield event
            if event.is_terminal:
                return
    finally:
        job.hub.unsubscribe(queue)
        logger.debug("Observer detached from job %s (%d attached)", job_id, job.hub.subscriber_count)


def encode_sse(event: StreamEvent) -> str:
    lines: list[str] = []
    if event.kind != StreamEventKind.DATA:
        lines.append(f"event: {event.kind.value}")
    lines.extend(f"data: {line}" for line in _SSE_LINE_BREAK.split(event.text))
    return "\n".join(lines) + "\n\n"
