from __future__ import annotations

import asyncio
import itertools
import logging
import threading
import time
from datetime import datetime, timezone

from backupgui.jobs.streaming import OutputHub, relay_process_output
from backupgui.jobs.types import Job, JobKind, JobSnapshot, StreamEvent

logger = logging.getLogger(__name__)

RELAY_STOPPED_MESSAGE = "Relay stopped"


class JobNotFoundError(LookupError):
    pass


class JobRegistry:
    """In-memory map of running jobs, keyed by an opaque id.

    Entries are inserted by :meth:`register` and removed only by the relay
    task once the process exits. Lookups are safe from any thread.
    """

    def __init__(self, *, stream_chunk_bytes: int = 64 * 1024):
        self._stream_chunk_bytes = stream_chunk_bytes
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()
        self._sequence = itertools.count(1)
        self._relay_tasks: set[asyncio.Task[None]] = set()

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def _next_job_id(self) -> str:
        return f"job_{time.time_ns()}_{next(self._sequence)}"

    def register(
        self,
        process: asyncio.subprocess.Process,
        *,
        kind: JobKind,
        argv: list[str] | None = None,
    ) -> str:
        """Store ``process`` under a fresh id and start relaying its output.

        Must be called from the event loop that owns ``process``.
        """
        loop = asyncio.get_running_loop()
        with self._lock:
            job_id = self._next_job_id()
            job = Job(
                id=job_id,
                kind=kind,
                process=process,
                hub=OutputHub(),
                started_at=self._now(),
                argv=list(argv or []),
            )
            self._jobs[job_id] = job

        task = loop.create_task(self._supervise(job), name=f"relay-{job_id}")
        self._relay_tasks.add(task)
        task.add_done_callback(self._relay_tasks.discard)
        return job_id

    def lookup(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job

    def snapshot(self, job_id: str) -> JobSnapshot:
        job = self.lookup(job_id)
        return self._to_snapshot(job)

    def list_running(self) -> list[JobSnapshot]:
        with self._lock:
            jobs = list(self._jobs.values())
        return [self._to_snapshot(job) for job in sorted(jobs, key=lambda item: item.started_at)]

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    async def shutdown(self) -> None:
        tasks = list(self._relay_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        # A relay cancelled before its first step never runs its own cleanup.
        with self._lock:
            leftover = list(self._jobs.values())
            self._jobs.clear()
        for job in leftover:
            job.hub.close(StreamEvent.end(None, message=RELAY_STOPPED_MESSAGE))
        if leftover:
            logger.info("Stopped relaying %d job(s) on shutdown", len(leftover))

    async def _supervise(self, job: Job) -> None:
        exit_code: int | None = None
        try:
            exit_code = await relay_process_output(job.process, job.hub, chunk_size=self._stream_chunk_bytes)
        except asyncio.CancelledError:
            job.hub.close(StreamEvent.end(None, message=RELAY_STOPPED_MESSAGE))
            raise
        except Exception:
            logger.exception("Output relay failed for job %s", job.id)
            job.hub.close(StreamEvent.end(job.process.returncode, message="Output relay failed"))
        finally:
            self._evict(job.id)
        logger.info("Job %s (%s) exited with code %s", job.id, job.kind.value, exit_code)

    def _evict(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)

    def _to_snapshot(self, job: Job) -> JobSnapshot:
        return JobSnapshot(
            id=job.id,
            kind=job.kind,
            pid=job.pid,
            started_at=job.started_at,
            subscribers=job.hub.subscriber_count,
        )
