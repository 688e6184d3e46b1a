from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path


class ArtifactKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"


@dataclass(frozen=True)
class BackupEntry:
    name: str
    kind: ArtifactKind
    size: int
    size_formatted: str
    date: datetime


@dataclass(frozen=True)
class ArtifactDownload:
    path: Path
    kind: ArtifactKind
    filename: str
    media_type: str
