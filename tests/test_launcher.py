from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from backupgui.core.config import Settings
from backupgui.core.path_safety import PathTraversalError
from backupgui.jobs.launcher import (
    LaunchFailureError,
    LaunchRequestError,
    ProcessLauncher,
    build_env_overlay,
)
from backupgui.jobs.types import JobKind

RESTORE_PROBE = """\
if read -r answer; then echo "answer=$answer"; fi
if read -r extra; then echo "extra=$extra"; else echo "stdin-closed"; fi
echo "args=$*"
"""


def make_launcher(tmp_path: Path, **overrides: object) -> ProcessLauncher:
    scripts_dir = tmp_path / "scripts"
    scripts_dir.mkdir(parents=True, exist_ok=True)
    backups_root = tmp_path / "backups"
    backups_root.mkdir(parents=True, exist_ok=True)
    options: dict[str, object] = {
        "execution_mode": "direct",
        "scripts_dir": scripts_dir.as_posix(),
        "backups_root": backups_root.as_posix(),
    }
    options.update(overrides)
    return ProcessLauncher(Settings(_env_file=None, **options))


@pytest.fixture(autouse=True)
def _clear_forwarded_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("DB_HOST", "DB_USER", "DB_PASSWORD", "DB_NAME"):
        monkeypatch.delenv(name, raising=False)


def test_env_overlay_drops_none_values_instead_of_blanking() -> None:
    overlay = build_env_overlay({"A": "1", "B": None}, {"C": "3"}, {"A": None})
    assert overlay == {"C": "3"}


def test_env_overlay_rejects_invalid_names() -> None:
    with pytest.raises(LaunchRequestError):
        build_env_overlay({"BAD-NAME": "x"})


def test_direct_backup_command_merges_overlay(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DB_HOST", "db.internal")
    launcher = make_launcher(tmp_path)

    command = launcher.build_backup_command(dry_run=True, keep=14, extra_env={"SITE_URL": "https://example.org"})

    assert command.kind == JobKind.BACKUP
    assert command.argv == ["bash", "-l", (tmp_path / "scripts" / "backup.sh").resolve().as_posix()]
    assert command.env_overlay == {
        "DB_HOST": "db.internal",
        "BACKUP_KEEP": "14",
        "DRY_RUN": "true",
        "SITE_URL": "https://example.org",
    }
    assert command.confirm_prompt is False


def test_backup_without_options_uses_default_retention(tmp_path: Path) -> None:
    launcher = make_launcher(tmp_path, default_retention_days=30)

    command = launcher.build_backup_command()

    assert command.env_overlay == {"BACKUP_KEEP": "30"}


def test_backup_without_retention_omits_keep(tmp_path: Path) -> None:
    launcher = make_launcher(tmp_path)
    assert "BACKUP_KEEP" not in launcher.build_backup_command().env_overlay


@pytest.mark.parametrize("keep", [0, -3, 3651, True])
def test_backup_rejects_out_of_range_retention(tmp_path: Path, keep: int) -> None:
    launcher = make_launcher(tmp_path)
    with pytest.raises(LaunchRequestError):
        launcher.build_backup_command(keep=keep)


def test_containerized_backup_forwards_overlay_by_name(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DB_PASSWORD", "s3cret")
    launcher = make_launcher(
        tmp_path,
        execution_mode="containerized",
        container_name="wp-prod",
        scripts_dir="/backup",
    )

    command = launcher.build_backup_command(keep=7)

    assert command.argv == [
        "docker",
        "exec",
        "-i",
        "-e",
        "BACKUP_KEEP",
        "-e",
        "DB_PASSWORD",
        "wp-prod",
        "bash",
        "-l",
        "/backup/backup.sh",
    ]
    assert "s3cret" not in " ".join(command.argv)
    assert command.env_overlay["DB_PASSWORD"] == "s3cret"


def test_restore_command_encodes_flags_and_literal_name(tmp_path: Path) -> None:
    launcher = make_launcher(tmp_path)

    command = launcher.build_restore_command("site-2024-01-02_03-04-05", db_only=True)

    assert command.kind == JobKind.RESTORE
    assert "--db-only" in command.argv
    assert "--files-only" not in command.argv
    assert command.argv[-1] == "site-2024-01-02_03-04-05"
    assert command.confirm_prompt is True


def test_restore_command_orders_all_flags_before_name(tmp_path: Path) -> None:
    launcher = make_launcher(tmp_path)

    command = launcher.build_restore_command("site", files_only=True, dry_run=True)

    assert command.argv[-3:] == ["--files-only", "--dry-run", "site"]


def test_restore_rejects_conflicting_scope(tmp_path: Path) -> None:
    launcher = make_launcher(tmp_path)
    with pytest.raises(LaunchRequestError):
        launcher.build_restore_command("site", db_only=True, files_only=True)


def test_restore_rejects_names_outside_backups_root(tmp_path: Path) -> None:
    launcher = make_launcher(tmp_path)
    with pytest.raises(PathTraversalError):
        launcher.build_restore_command("../../etc")


@pytest.mark.asyncio
async def test_restore_writes_one_confirmation_line_then_closes_stdin(tmp_path: Path) -> None:
    launcher = make_launcher(tmp_path)
    (tmp_path / "scripts" / "restore.sh").write_text(RESTORE_PROBE)

    command = launcher.build_restore_command("site-2024-01-02_03-04-05", db_only=True)
    process = await launcher.launch(command)
    stdout = await asyncio.wait_for(process.stdout.read(), timeout=20)
    exit_code = await asyncio.wait_for(process.wait(), timeout=20)

    output = stdout.decode()
    assert exit_code == 0
    assert "answer=y" in output
    assert "stdin-closed" in output
    assert "extra=" not in output
    assert "args=--db-only site-2024-01-02_03-04-05" in output


@pytest.mark.asyncio
async def test_backup_process_sees_overlay(tmp_path: Path) -> None:
    launcher = make_launcher(tmp_path)
    (tmp_path / "scripts" / "backup.sh").write_text('echo "keep=$BACKUP_KEEP dry=${DRY_RUN:-unset}"\n')

    process = await launcher.launch(launcher.build_backup_command(keep=3))
    stdout = await asyncio.wait_for(process.stdout.read(), timeout=20)
    await asyncio.wait_for(process.wait(), timeout=20)

    assert "keep=3 dry=unset" in stdout.decode()


@pytest.mark.asyncio
async def test_missing_interpreter_fails_before_any_process_exists(tmp_path: Path) -> None:
    launcher = make_launcher(tmp_path, shell_bin=(tmp_path / "no-such-shell").as_posix())
    (tmp_path / "scripts" / "backup.sh").write_text("echo never\n")

    with pytest.raises(LaunchFailureError):
        await launcher.launch(launcher.build_backup_command())


@pytest.mark.asyncio
async def test_missing_script_in_direct_mode_is_a_launch_failure(tmp_path: Path) -> None:
    launcher = make_launcher(tmp_path)

    with pytest.raises(LaunchFailureError):
        await launcher.launch(launcher.build_backup_command())


@pytest.mark.parametrize("name", ["--files-only", "-rf", "-"])
def test_restore_rejects_names_that_look_like_options(tmp_path: Path, name: str) -> None:
    launcher = make_launcher(tmp_path)
    with pytest.raises(LaunchRequestError):
        launcher.build_restore_command(name, db_only=True)
