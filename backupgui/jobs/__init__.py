from backupgui.jobs.launcher import LaunchFailureError, LaunchRequestError, ProcessLauncher
from backupgui.jobs.registry import JobNotFoundError, JobRegistry
from backupgui.jobs.service import JobService, snapshot_to_dict
from backupgui.jobs.streaming import OutputHub, encode_sse, relay_process_output, stream_job_events
from backupgui.jobs.types import Job, JobKind, JobSnapshot, LaunchCommand, StreamEvent, StreamEventKind

__all__ = [
    "Job",
    "JobKind",
    "JobNotFoundError",
    "JobRegistry",
    "JobService",
    "JobSnapshot",
    "LaunchCommand",
    "LaunchFailureError",
    "LaunchRequestError",
    "OutputHub",
    "ProcessLauncher",
    "StreamEvent",
    "StreamEventKind",
    "encode_sse",
    "relay_process_output",
    "snapshot_to_dict",
    "stream_job_events",
]
