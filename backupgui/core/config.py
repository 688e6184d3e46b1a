from __future__ import annotations

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, PositiveInt, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_FORWARDED_ENV = ["DB_HOST", "DB_USER", "DB_PASSWORD", "DB_NAME"]


class ExecutionMode(str, Enum):
    DIRECT = "direct"
    CONTAINERIZED = "containerized"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BACKUPGUI_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "BackupGUI"
    environment: str = "production"
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    log_level: str = "INFO"

    execution_mode: ExecutionMode = ExecutionMode.CONTAINERIZED
    container_name: str = "wordpress"
    docker_bin: str = "docker"
    shell_bin: str = "bash"

    scripts_dir: Path = Field(default=Path("/backup"))
    backup_script: str = "backup.sh"
    restore_script: str = "restore.sh"
    backups_root: Path = Field(default=Path("/backups"))

    default_retention_days: PositiveInt | None = None
    max_retention_days: PositiveInt = 3650
    forwarded_env: list[str] = Field(default_factory=lambda: list(DEFAULT_FORWARDED_ENV))

    stream_read_chunk_bytes: PositiveInt = 64 * 1024
    archive_read_chunk_bytes: PositiveInt = 1024 * 1024
    archive_compress_level: int = Field(default=9, ge=0, le=9)

    @field_validator("scripts_dir", "backups_root", mode="before")
    @classmethod
    def _normalize_path(cls, value: str | Path) -> Path:
        raw = str(value)
        if "~" in raw:
            raise ValueError("Home expansion syntax is not allowed in paths")
        if "$" in raw:
            raise ValueError("Environment variable syntax is not allowed in paths")
        path = Path(raw)
        if not path.is_absolute():
            raise ValueError("Path settings must be absolute")
        return path

    @field_validator("backup_script", "restore_script")
    @classmethod
    def _validate_script_name(cls, value: str) -> str:
        name = value.strip()
        if not name or "/" in name or name in {".", ".."}:
            raise ValueError("Script names must be plain file names inside scripts_dir")
        return name

    @model_validator(mode="after")
    def _validate_runtime_constraints(self) -> "Settings":
        self.scripts_dir = self.scripts_dir.resolve(strict=False)
        self.backups_root = self.backups_root.resolve(strict=False)

        self.container_name = self.container_name.strip()
        if self.execution_mode == ExecutionMode.CONTAINERIZED and not self.container_name:
            raise ValueError("container_name is required in containerized mode")

        if self.default_retention_days is not None and self.default_retention_days > self.max_retention_days:
            raise ValueError("default_retention_days must be less than or equal to max_retention_days")

        self.forwarded_env = [name.strip() for name in self.forwarded_env if name.strip()]
        return self

    @property
    def backup_script_path(self) -> Path:
        return self.scripts_dir / self.backup_script

    @property
    def restore_script_path(self) -> Path:
        return self.scripts_dir / self.restore_script


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
