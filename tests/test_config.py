from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from backupgui.core.config import ExecutionMode, Settings, get_settings


def test_defaults_target_wordpress_container() -> None:
    settings = Settings(_env_file=None)
    assert settings.execution_mode == ExecutionMode.CONTAINERIZED
    assert settings.container_name == "wordpress"
    assert settings.backups_root == Path("/backups")
    assert settings.backup_script_path == Path("/backup/backup.sh")
    assert settings.restore_script_path == Path("/backup/restore.sh")
    assert settings.forwarded_env == ["DB_HOST", "DB_USER", "DB_PASSWORD", "DB_NAME"]


@pytest.mark.parametrize("raw_path", ["relative/backups", "~/backups", "/srv/$HOME/backups"])
def test_path_settings_must_be_plain_absolute_paths(raw_path: str) -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, backups_root=raw_path)


def test_containerized_mode_requires_container_name() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, execution_mode="containerized", container_name="  ")


def test_direct_mode_ignores_blank_container_name() -> None:
    settings = Settings(_env_file=None, execution_mode="direct", container_name="")
    assert settings.execution_mode == ExecutionMode.DIRECT


def test_default_retention_cannot_exceed_bound() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, default_retention_days=40, max_retention_days=30)


def test_script_names_must_stay_inside_scripts_dir() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, backup_script="../backup.sh")


def test_get_settings_reads_prefixed_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BACKUPGUI_EXECUTION_MODE", "direct")
    monkeypatch.setenv("BACKUPGUI_BACKUPS_ROOT", (tmp_path / "backups").as_posix())
    monkeypatch.setenv("BACKUPGUI_FORWARDED_ENV", '["DB_HOST", " SITE_URL ", ""]')
    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.execution_mode == ExecutionMode.DIRECT
        assert settings.backups_root == (tmp_path / "backups").resolve()
        assert settings.forwarded_env == ["DB_HOST", "SITE_URL"]
        assert get_settings() is settings
    finally:
        get_settings.cache_clear()
