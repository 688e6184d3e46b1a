from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class BackupEntryResponse(BaseModel):
    name: str
    kind: str
    size: int
    size_formatted: str = Field(serialization_alias="sizeFormatted")
    date: datetime


class BackupListResponse(BaseModel):
    backups: list[BackupEntryResponse]


class DeleteBackupRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backup_name: str = Field(min_length=1, max_length=255)


class DeleteBackupResponse(BaseModel):
    success: bool
