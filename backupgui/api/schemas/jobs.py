from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RunBackupRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    dry_run: bool = False
    keep: int | None = Field(default=None, ge=1)
    extra_env: dict[str, str | None] = Field(default_factory=dict)


class RestoreRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backup_name: str = Field(min_length=1, max_length=255)
    db_only: bool = False
    files_only: bool = False
    dry_run: bool = False

    @model_validator(mode="after")
    def _validate_scope(self) -> "RestoreRequest":
        if self.db_only and self.files_only:
            raise ValueError("db_only and files_only cannot both be set")
        return self


class JobStartedResponse(BaseModel):
    ok: bool = True
    job_id: str


class JobResponse(BaseModel):
    id: str
    kind: str
    pid: int
    started_at: datetime
    subscribers: int


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
