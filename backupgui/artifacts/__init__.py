from backupgui.artifacts.service import (
    ArtifactNotFoundError,
    ArtifactStore,
    ArtifactStreamError,
    format_bytes,
    parse_name_timestamp,
)
from backupgui.artifacts.types import ArtifactDownload, ArtifactKind, BackupEntry

__all__ = [
    "ArtifactDownload",
    "ArtifactKind",
    "ArtifactNotFoundError",
    "ArtifactStore",
    "ArtifactStreamError",
    "BackupEntry",
    "format_bytes",
    "parse_name_timestamp",
]
