from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from backupgui.core.config import Settings
from backupgui.jobs.launcher import ProcessLauncher
from backupgui.jobs.registry import JobRegistry
from backupgui.jobs.types import JobSnapshot, LaunchCommand


class JobService:
    def __init__(self, settings: Settings, registry: JobRegistry, launcher: ProcessLauncher | None = None):
        self._settings = settings
        self._registry = registry
        self._launcher = launcher or ProcessLauncher(settings)

    async def _start(self, command: LaunchCommand) -> str:
        process = await self._launcher.launch(command)
        return self._registry.register(process, kind=command.kind, argv=command.argv)

    async def start_backup(
        self,
        *,
        dry_run: bool = False,
        keep: int | None = None,
        extra_env: Mapping[str, str | None] | None = None,
    ) -> str:
        command = self._launcher.build_backup_command(dry_run=dry_run, keep=keep, extra_env=extra_env)
        return await self._start(command)

    async def start_restore(
        self,
        backup_name: str,
        *,
        db_only: bool = False,
        files_only: bool = False,
        dry_run: bool = False,
    ) -> str:
        command = self._launcher.build_restore_command(
            backup_name,
            db_only=db_only,
            files_only=files_only,
            dry_run=dry_run,
        )
        return await self._start(command)

    def get_job(self, job_id: str) -> JobSnapshot:
        return self._registry.snapshot(job_id)

    def list_jobs(self) -> list[JobSnapshot]:
        return self._registry.list_running()


def snapshot_to_dict(snapshot: JobSnapshot) -> dict[str, Any]:
    return {
        "id": snapshot.id,
        "kind": snapshot.kind.value,
        "pid": snapshot.pid,
        "started_at": snapshot.started_at,
        "subscribers": snapshot.subscribers,
    }
