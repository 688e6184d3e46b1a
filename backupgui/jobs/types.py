from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from backupgui.jobs.streaming import OutputHub


class JobKind(str, Enum):
    BACKUP = "backup"
    RESTORE = "restore"


class StreamEventKind(str, Enum):
    DATA = "data"
    ERR = "err"
    END = "end"


@dataclass(frozen=True)
class StreamEvent:
    kind: StreamEventKind
    text: str
    exit_code: int | None = None

    @classmethod
    def end(cls, exit_code: int | None = None, *, message: str | None = None) -> "StreamEvent":
        text = message if message is not None else str(exit_code)
        return cls(kind=StreamEventKind.END, text=text, exit_code=exit_code)

    @property
    def is_terminal(self) -> bool:
        return self.kind == StreamEventKind.END


@dataclass(frozen=True)
class LaunchCommand:
    kind: JobKind
    argv: list[str]
    env_overlay: dict[str, str]
    confirm_prompt: bool = False


@dataclass(slots=True)
class Job:
    id: str
    kind: JobKind
    process: asyncio.subprocess.Process
    hub: "OutputHub"
    started_at: datetime
    argv: list[str] = field(default_factory=list)

    @property
    def pid(self) -> int:
        return self.process.pid


@dataclass(slots=True)
class JobSnapshot:
    id: str
    kind: JobKind
    pid: int
    started_at: datetime
    subscribers: int
