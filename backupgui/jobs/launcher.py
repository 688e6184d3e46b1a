from __future__ import annotations

import asyncio
import logging
import os
import re
from collections.abc import Mapping

from backupgui.core.config import ExecutionMode, Settings
from backupgui.core.path_safety import resolve_under_root
from backupgui.jobs.types import JobKind, LaunchCommand

logger = logging.getLogger(__name__)

RESTORE_CONFIRMATION = b"y\n"

_ENV_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class LaunchFailureError(RuntimeError):
    pass


class LaunchRequestError(ValueError):
    pass


def build_env_overlay(*layers: Mapping[str, str | None]) -> dict[str, str]:
    """Merge ``layers`` left to right; a ``None`` value drops the key instead of setting it empty."""
    overlay: dict[str, str] = {}
    for layer in layers:
        for name, value in layer.items():
            if not _ENV_NAME_PATTERN.match(name):
                raise LaunchRequestError(f"Invalid environment variable name: {name!r}")
            if value is None:
                overlay.pop(name, None)
            else:
                overlay[name] = str(value)
    return overlay


class ProcessLauncher:
    def __init__(self, settings: Settings):
        self._settings = settings

    def _forwarded_env(self) -> dict[str, str | None]:
        return {name: os.environ.get(name) for name in self._settings.forwarded_env}

    def _script_argv(self, script_name: str, args: list[str]) -> list[str]:
        script_path = (self._settings.scripts_dir / script_name).as_posix()
        return [self._settings.shell_bin, "-l", script_path, *args]

    def _wrap(self, script_argv: list[str], env_overlay: Mapping[str, str]) -> list[str]:
        if self._settings.execution_mode == ExecutionMode.DIRECT:
            return script_argv
        env_flags: list[str] = []
        for name in sorted(env_overlay):
            env_flags.extend(["-e", name])
        return [self._settings.docker_bin, "exec", "-i", *env_flags, self._settings.container_name, *script_argv]

    def _resolve_retention(self, keep: int | None) -> int | None:
        if keep is None:
            return self._settings.default_retention_days
        if isinstance(keep, bool) or not isinstance(keep, int):
            raise LaunchRequestError("keep must be an integer number of days")
        if keep < 1 or keep > self._settings.max_retention_days:
            raise LaunchRequestError(f"keep must be between 1 and {self._settings.max_retention_days} days")
        return keep

    def build_backup_command(
        self,
        *,
        dry_run: bool = False,
        keep: int | None = None,
        extra_env: Mapping[str, str | None] | None = None,
    ) -> LaunchCommand:
        retention = self._resolve_retention(keep)
        overlay = build_env_overlay(
            self._forwarded_env(),
            {
                "BACKUP_KEEP": None if retention is None else str(retention),
                "DRY_RUN": "true" if dry_run else None,
            },
            extra_env or {},
        )
        argv = self._wrap(self._script_argv(self._settings.backup_script, []), overlay)
        return LaunchCommand(kind=JobKind.BACKUP, argv=argv, env_overlay=overlay)

    def build_restore_command(
        self,
        backup_name: str,
        *,
        db_only: bool = False,
        files_only: bool = False,
        dry_run: bool = False,
    ) -> LaunchCommand:
        if db_only and files_only:
            raise LaunchRequestError("db_only and files_only cannot both be set")
        if backup_name.startswith("-"):
            raise LaunchRequestError(f"Backup name must not start with '-': {backup_name!r}")
        resolve_under_root(self._settings.backups_root, backup_name)

        flags: list[str] = []
        if db_only:
            flags.append("--db-only")
        if files_only:
            flags.append("--files-only")
        if dry_run:
            flags.append("--dry-run")

        overlay = build_env_overlay(self._forwarded_env())
        argv = self._wrap(self._script_argv(self._settings.restore_script, [*flags, backup_name]), overlay)
        return LaunchCommand(kind=JobKind.RESTORE, argv=argv, env_overlay=overlay, confirm_prompt=True)

    def _check_script_present(self, command: LaunchCommand) -> None:
        if self._settings.execution_mode != ExecutionMode.DIRECT:
            return
        script_path = (
            self._settings.backup_script_path if command.kind == JobKind.BACKUP else self._settings.restore_script_path
        )
        if not script_path.is_file():
            raise LaunchFailureError(f"Script not found: {script_path.as_posix()}")
        if not os.access(script_path, os.R_OK):
            raise LaunchFailureError(f"Script is not readable: {script_path.as_posix()}")

    async def launch(self, command: LaunchCommand) -> asyncio.subprocess.Process:
        self._check_script_present(command)
        env = {**os.environ, **command.env_overlay}
        try:
            process = await asyncio.create_subprocess_exec(
                *command.argv,
                stdin=asyncio.subprocess.PIPE if command.confirm_prompt else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as exc:
            logger.error("Failed to start %s job: %s", command.kind.value, exc)
            raise LaunchFailureError(f"Cannot start {command.argv[0]}: {exc.strerror or exc}") from exc

        if command.confirm_prompt:
            await self._confirm_prompt(process)

        logger.info("Started %s job pid=%s argv=%s", command.kind.value, process.pid, command.argv)
        return process

    async def _confirm_prompt(self, process: asyncio.subprocess.Process) -> None:
        stdin = process.stdin
        if stdin is None:
            return
        try:
            stdin.write(RESTORE_CONFIRMATION)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            logger.warning("Restore process %s closed stdin before confirmation: %s", process.pid, exc)
        finally:
            stdin.close()
