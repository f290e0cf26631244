"""Tests for installer.py: preconditions, install layout, rollback and uninstall."""

from __future__ import annotations

import json
import stat

import pytest

from milvus_backup_timer.docker import Docker
from milvus_backup_timer.errors import InstallError, PrerequisiteError
from milvus_backup_timer.common import init_logging
from milvus_backup_timer.config import Settings
from milvus_backup_timer.installer import Installer, render_launcher, render_template, unit_values
from milvus_backup_timer.systemd import Systemctl

SHOW_ACTIVE = (
    "ActiveState=active\n"
    "UnitFileState=enabled\n"
    "NextElapseUSecRealtime=Mon 2026-10-19 02:00:00 UTC\n"
)
PYTHON = "/opt/milvus-backup/venv/bin/python"


def _installer(settings, runner, is_root=True, which=lambda _cmd: True):
    return Installer(
        settings,
        docker=Docker(settings, runner=runner, which=which),
        systemctl=Systemctl(settings, runner=runner),
        is_root=lambda: is_root,
        chown=lambda _path: None,
        which=which,
        python=PYTHON,
    )


@pytest.fixture
def installer(settings, runner):
    runner.on("systemctl", "show", stdout=SHOW_ACTIVE)
    return _installer(settings, runner)


def _mode(path):
    return stat.S_IMODE(path.stat().st_mode)


def _snapshot(settings):
    paths = [
        settings.script_path,
        settings.service_path,
        settings.timer_path,
        settings.backup_config_path,
    ]
    return {str(p): (p.read_bytes(), _mode(p)) for p in paths}


def _assert_untouched(settings):
    for path in (
        settings.backup_dir,
        settings.log_file.parent,
        settings.install_dir,
        settings.systemd_dir,
    ):
        assert not path.exists(), path


# ---------------------------------------------------------------------------
# Install
# ---------------------------------------------------------------------------


def test_install_layout(settings, installer, runner):
    assert installer.install() is True

    data = settings.data_dir
    assert settings.script_path.read_text() == render_launcher(
        (data / "milvus-backup.in").read_text(), PYTHON
    )
    assert f"exec {PYTHON} -m milvus_backup_timer" in settings.script_path.read_text()
    assert _mode(settings.script_path) == 0o755

    for unit, template in (
        (settings.service_path, "milvus-backup.service.in"),
        (settings.timer_path, "milvus-backup.timer.in"),
    ):
        assert unit.read_text() == render_template((data / template).read_text(), unit_values(settings))
        assert "@" not in unit.read_text()
        assert _mode(unit) == 0o644

    assert _mode(settings.backup_dir) == 0o755
    assert settings.backup_config_path.read_text() == (data / "config.yaml").read_text()
    assert settings.log_file.parent.is_dir()

    reload_at = runner.index("systemctl", "daemon-reload")
    enable_at = runner.index("systemctl", "enable", "milvus-backup.timer")
    start_at = runner.index("systemctl", "start", "milvus-backup.timer")
    assert reload_at < enable_at < start_at
    assert runner.called("docker", "pull", settings.docker_image)


def test_install_is_idempotent(settings, installer):
    assert installer.install() is True
    first = _snapshot(settings)

    assert installer.install() is True
    assert _snapshot(settings) == first


def test_install_writes_transaction_log(settings, installer):
    installer.install()
    logs = list(settings.log_file.parent.glob("milvus-backup-install-*.json"))
    assert len(logs) == 1
    data = json.loads(logs[0].read_text())
    assert data["status"] == "success"
    assert [s["id"] for s in data["steps"]] == [
        "1-directories", "2-script", "3-units", "4-systemd", "5-image", "6-verify",
    ]
    assert data["files"] == [
        str(settings.backup_config_path),
        str(settings.script_path),
        str(settings.service_path),
        str(settings.timer_path),
    ]
    assert "rollback" not in data


def test_default_units_are_hardened():
    values = unit_values(Settings())
    data = Settings().data_dir
    service = render_template((data / "milvus-backup.service.in").read_text(), values)
    timer = render_template((data / "milvus-backup.timer.in").read_text(), values)
    assert "Type=oneshot" in service
    assert "ExecStart=/usr/local/bin/milvus-backup" in service
    assert "WorkingDirectory=/data/backup" in service
    assert "EnvironmentFile=-/etc/default/milvus-backup" in service
    assert "NoNewPrivileges=true" in service
    assert "PrivateTmp=true" in service
    assert "ProtectSystem=strict" in service
    assert "ReadWritePaths=/data/backup /var/log /run" in service
    assert "OnCalendar=*-*-* 02:00:00" in timer
    assert "Unit=milvus-backup.service" in timer


def test_units_follow_overridden_paths(settings, installer, tmp_path):
    settings.backup_dir = tmp_path / "srv" / "milvus-backups"
    settings.install_dir = tmp_path / "opt" / "bin"
    settings.log_file = tmp_path / "logs" / "backup.log"
    settings.config_file = tmp_path / "etc" / "backup.yaml"

    assert installer.install() is True

    service = settings.service_path.read_text()
    assert settings.script_path.is_file()
    assert f"ExecStart={settings.script_path}\n" in service
    assert f"WorkingDirectory={settings.backup_dir}\n" in service
    assert (
        f"ReadWritePaths={settings.backup_dir} {settings.log_file.parent} {settings.lock_file.parent}\n"
        in service
    )
    assert f'Environment="MILVUS_BACKUP_BACKUP_DIR={settings.backup_dir}"' in service
    assert f'Environment="MILVUS_BACKUP_LOG_FILE={settings.log_file}"' in service
    assert f'Environment="MILVUS_BACKUP_LOCK_FILE={settings.lock_file}"' in service
    assert f'Environment="MILVUS_BACKUP_CONFIG_FILE={settings.config_file}"' in service
    assert "/data/backup" not in service
    assert "/usr/local/bin" not in service


def test_read_write_paths_are_not_repeated(settings):
    settings.log_file = settings.backup_dir / "milvus-backup.log"
    settings.lock_file = settings.backup_dir / "milvus-backup.lock"
    assert unit_values(settings)["RW_PATHS"] == str(settings.backup_dir)


def test_renamed_units_install_from_packaged_templates(settings, installer, runner):
    settings.unit_name = "milvus-nightly"

    assert installer.install() is True

    assert settings.service_path.name == "milvus-nightly.service"
    assert "Unit=milvus-nightly.service" in settings.timer_path.read_text()
    assert runner.called("systemctl", "enable", "milvus-nightly.timer")


# ---------------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------------


def test_requires_root(settings, runner):
    with pytest.raises(PrerequisiteError, match="root"):
        _installer(settings, runner, is_root=False).install()
    _assert_untouched(settings)
    assert runner.calls == []


def test_requires_systemctl(settings, runner):
    installer = _installer(settings, runner, which=lambda cmd: cmd != "systemctl")
    with pytest.raises(PrerequisiteError, match="systemctl not found"):
        installer.install()
    _assert_untouched(settings)


def test_requires_docker(settings, runner):
    installer = _installer(settings, runner, which=lambda cmd: cmd != "docker")
    with pytest.raises(PrerequisiteError, match="Docker is not installed"):
        installer.install()
    _assert_untouched(settings)


def test_starts_docker_daemon_once(settings, installer, runner):
    runner.on("docker", "info", returncode=1)

    assert installer.install() is True
    assert runner.called("systemctl", "start", "docker")


def test_docker_daemon_start_failure_is_fatal(settings, installer, runner):
    runner.on("docker", "info", returncode=1)
    runner.on("systemctl", "start", "docker", returncode=1)

    with pytest.raises(PrerequisiteError, match="Failed to start Docker daemon"):
        installer.install()
    _assert_untouched(settings)


def test_missing_source_files(settings, runner, tmp_path, capsys):
    settings.source_dir = tmp_path / "empty"
    settings.source_dir.mkdir()

    with pytest.raises(PrerequisiteError, match="Required files are missing"):
        _installer(settings, runner).install()

    assert "milvus-backup.service" in "".join(capsys.readouterr().out.split())
    _assert_untouched(settings)


# ---------------------------------------------------------------------------
# Rollback
# ---------------------------------------------------------------------------


def test_failed_step_rolls_back(settings, installer, runner):
    runner.on("systemctl", "enable", returncode=1)

    with pytest.raises(InstallError):
        installer.install()

    for path in installer.installed_files:
        assert not path.exists()
    failed_at = runner.index("systemctl", "enable")
    assert runner.index("systemctl", "stop", "milvus-backup.timer") > failed_at
    assert runner.index("systemctl", "disable", "milvus-backup.timer") > failed_at
    assert runner.calls[-1] == ["systemctl", "daemon-reload"]

    (log,) = settings.log_file.parent.glob("milvus-backup-install-*.json")
    data = json.loads(log.read_text())
    assert data["status"] == "rolled_back"
    assert data["steps"][-1]["status"] == "failed"
    assert data["rollback"] == {"clean": True, "failures": []}


def test_rollback_swallows_its_own_failures(settings, installer, runner):
    runner.on("systemctl", "daemon-reload", returncode=1)
    runner.on("systemctl", "stop", returncode=5)
    runner.on("systemctl", "disable", returncode=1)

    with pytest.raises(InstallError):
        installer.install()
    for path in installer.installed_files:
        assert not path.exists()

    (log,) = settings.log_file.parent.glob("milvus-backup-install-*.json")
    rollback = json.loads(log.read_text())["rollback"]
    assert rollback["clean"] is False
    assert [f.split(":")[0] for f in rollback["failures"]] == [
        "stop milvus-backup.timer",
        "disable milvus-backup.timer",
        "daemon-reload",
    ]


# ---------------------------------------------------------------------------
# Best-effort steps
# ---------------------------------------------------------------------------


def test_image_pull_failure_is_a_warning(settings, installer, runner, capsys):
    runner.on("docker", "pull", returncode=1)

    assert installer.install() is True
    assert "pulled automatically on first backup" in " ".join(capsys.readouterr().out.split())
    assert settings.timer_path.exists()


def test_image_pull_failure_is_written_to_log_file(settings, installer, runner):
    runner.on("docker", "pull", returncode=1)
    init_logging(settings.log_file)

    installer.install()

    assert "WARNING - Image pre-pull failed" in settings.log_file.read_text()


def test_inactive_timer_reports_warnings(settings, installer, runner):
    runner.on(
        "systemctl", "show",
        stdout="ActiveState=inactive\nUnitFileState=disabled\nNextElapseUSecRealtime=\n",
    )
    assert installer.install() is False
    assert settings.timer_path.exists()


def test_status_query_failure_does_not_abort(settings, installer, runner):
    runner.on("systemctl", "show", returncode=1)
    assert installer.install() is False


# ---------------------------------------------------------------------------
# Uninstall
# ---------------------------------------------------------------------------


def test_uninstall_is_inverse_except_storage_and_log(settings, installer, runner, make_backup):
    installer.install()
    backup = make_backup(settings.backup_dir, "backup-20260101-020000", 1)
    settings.log_file.write_text("2026-01-01 02:00:00 - INFO - done\n")

    installer.uninstall()

    for path in installer.installed_files:
        assert not path.exists()
    assert backup.is_dir()
    assert settings.backup_config_path.exists()
    assert settings.log_file.read_text().endswith("done\n")
    assert runner.calls[-1] == ["systemctl", "daemon-reload"]


def test_uninstall_when_not_installed(settings, installer, runner):
    runner.on("systemctl", "stop", returncode=5)
    runner.on("systemctl", "disable", returncode=1)
    installer.uninstall()
    assert runner.called("systemctl", "daemon-reload")
