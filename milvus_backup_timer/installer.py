"""Installer: puts the runner, unit files and config in place and starts the timer.

Every step is idempotent, so re-running on an installed host converges to
the same state. Preconditions are all checked before the first side effect.
A failure during the ordered install steps triggers a best-effort rollback.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import sys
from pathlib import Path
from typing import Callable, Optional

from .common import (
    TransactionLog,
    console,
    logger,
    print_detail,
    print_error,
    print_header,
    print_info,
    print_step,
    print_success,
    print_warning,
)
from .config import ENV_FILE, Settings
from .docker import Docker
from .errors import CommandError, InstallError, MilvusBackupError, PrerequisiteError
from .shell import check_command
from .systemd import Systemctl

LAUNCHER_TEMPLATE = "milvus-backup.in"
SERVICE_TEMPLATE = "milvus-backup.service.in"
TIMER_TEMPLATE = "milvus-backup.timer.in"
CONFIG_TEMPLATE = "config.yaml"

DIR_MODE = 0o755
SCRIPT_MODE = 0o755
UNIT_MODE = 0o644


def _chown_root(path: Path) -> None:
    os.chown(path, 0, 0)


def _is_root() -> bool:
    return os.geteuid() == 0


def render_template(template: str, values: dict[str, str]) -> str:
    """Replace each ``@KEY@`` placeholder in *template*."""
    for key, value in values.items():
        template = template.replace(f"@{key}@", value)
    return template


def render_launcher(template: str, python: str) -> str:
    """Fill the launcher template with the interpreter that has this package installed."""
    return render_template(template, {"PYTHON": python})


def unit_values(settings: Settings) -> dict[str, str]:
    """Placeholder values for the service and timer templates.

    The runner's paths are pinned into the service with Environment= lines so
    the scheduled run uses the same storage root, log and lock as the install,
    and the sandbox leaves exactly those directories writable.
    """
    s = settings
    pinned = {
        "BACKUP_DIR": s.backup_dir,
        "LOG_FILE": s.log_file,
        "LOCK_FILE": s.lock_file,
    }
    if s.config_file is not None:
        pinned["CONFIG_FILE"] = s.config_file
    environment = "\n".join(
        f'Environment="MILVUS_BACKUP_{name}={value}"' for name, value in pinned.items()
    )
    # dict.fromkeys keeps order and drops duplicates
    rw_paths = dict.fromkeys(str(p) for p in (s.backup_dir, s.log_file.parent, s.lock_file.parent))
    return {
        "EXEC": str(s.script_path),
        "BACKUP_DIR": str(s.backup_dir),
        "ENVIRONMENT": environment,
        "ENV_FILE": ENV_FILE,
        "RW_PATHS": " ".join(rw_paths),
        "SERVICE": s.service_name,
    }


class Installer:
    def __init__(
        self,
        settings: Settings,
        docker: Optional[Docker] = None,
        systemctl: Optional[Systemctl] = None,
        is_root: Callable[[], bool] = _is_root,
        chown: Callable[[Path], None] = _chown_root,
        which: Callable[[str], bool] = check_command,
        python: Optional[str] = None,
    ):
        self.settings = settings
        self.docker = docker or Docker(settings)
        self.systemctl = systemctl or Systemctl(settings)
        self._is_root = is_root
        self._chown = chown
        self._which = which
        self.python = python or sys.executable

    # -- source artifacts ----------------------------------------------------

    @property
    def source_files(self) -> dict[str, Path]:
        data = self.settings.data_dir
        return {
            "launcher": data / LAUNCHER_TEMPLATE,
            "service": data / SERVICE_TEMPLATE,
            "timer": data / TIMER_TEMPLATE,
            "config": data / CONFIG_TEMPLATE,
        }

    @property
    def installed_files(self) -> list[Path]:
        s = self.settings
        return [s.service_path, s.timer_path, s.script_path]

    # -- preconditions -------------------------------------------------------

    def check_root(self) -> None:
        if not self._is_root():
            raise PrerequisiteError("This command must be run as root or with sudo")

    def check_prerequisites(self) -> None:
        print_info("Checking prerequisites...")

        if not self._which(self.settings.systemctl_bin):
            raise PrerequisiteError("systemctl not found. This system doesn't appear to use systemd.")

        if not self.docker.is_installed():
            raise PrerequisiteError(
                "Docker is not installed. Please install Docker first. "
                "Installation guide: https://docs.docker.com/engine/install/"
            )

        if not self.docker.is_daemon_running():
            print_warning("Docker daemon is not running. Attempting to start...")
            try:
                self.systemctl.start("docker")
            except CommandError as e:
                raise PrerequisiteError(f"Failed to start Docker daemon: {e}") from e

        print_success("Prerequisites check passed")

    def check_source_files(self) -> None:
        print_info("Checking source files...")
        missing = [p for p in self.source_files.values() if not p.is_file()]
        for p in missing:
            print_error(f"Missing: {p}")
        if missing:
            raise PrerequisiteError(
                "Required files are missing. Please ensure the package data directory is intact."
            )
        print_success("Source files verified")

    # -- install steps -------------------------------------------------------

    def create_directories(self) -> None:
        print_info("Creating directories...")
        s = self.settings
        s.backup_dir.mkdir(parents=True, exist_ok=True)
        self._chown(s.backup_dir)
        s.backup_dir.chmod(DIR_MODE)

        s.log_file.parent.mkdir(parents=True, exist_ok=True)

        shutil.copyfile(self.source_files["config"], s.backup_config_path)
        print_success("Directories created")

    def install_script(self) -> None:
        print_info("Installing backup script...")
        s = self.settings
        template = self.source_files["launcher"].read_text()
        s.install_dir.mkdir(parents=True, exist_ok=True)
        s.script_path.write_text(render_launcher(template, self.python))
        s.script_path.chmod(SCRIPT_MODE)
        self._chown(s.script_path)
        print_success(f"Backup script installed to {s.script_path}")

    def install_systemd_files(self) -> None:
        print_info("Installing systemd files...")
        s = self.settings
        s.systemd_dir.mkdir(parents=True, exist_ok=True)
        values = unit_values(s)
        for key, dest in (("service", s.service_path), ("timer", s.timer_path)):
            dest.write_text(render_template(self.source_files[key].read_text(), values))
            dest.chmod(UNIT_MODE)
            self._chown(dest)
        print_success("Systemd files installed")

    def setup_systemd(self) -> None:
        print_info("Configuring systemd...")
        timer = self.settings.timer_name
        self.systemctl.daemon_reload()
        self.systemctl.enable(timer)
        self.systemctl.start(timer)
        print_success("Systemd timer enabled and started")

    def pull_docker_image(self) -> bool:
        image = self.settings.docker_image
        print_info(f"Pulling Milvus backup Docker image {image}...")
        try:
            self.docker.pull(image)
        except CommandError as e:
            logger.warning("Image pre-pull failed: %s", e)
            print_warning("Failed to pull Docker image. It will be pulled automatically on first backup.")
            return False
        print_success("Docker image pulled successfully")
        return True

    def verify_installation(self) -> bool:
        """Report timer state. Never raises; returns False when anything looks off."""
        print_info("Testing installation...")
        timer = self.settings.timer_name
        try:
            status = self.systemctl.status(timer)
        except CommandError as e:
            print_warning(f"Could not query {timer}: {e}")
            return False

        ok = True
        if status.active:
            print_success("Timer is active")
        else:
            print_warning(f"Timer is not active ({status.active_state})")
            ok = False

        if status.enabled:
            print_success("Timer is enabled for boot")
        else:
            print_warning(f"Timer is not enabled for boot ({status.unit_file_state})")
            ok = False

        if status.next_elapse:
            print_success(f"Next backup scheduled: {status.next_elapse}")
        return ok

    # -- rollback / uninstall ------------------------------------------------

    def _remove_installed_files(self) -> None:
        for path in self.installed_files:
            path.unlink(missing_ok=True)

    def rollback(self) -> list[str]:
        """Undo a partial install. Every sub-step is best effort.

        Returns a description of each sub-step that failed.
        """
        timer = self.settings.timer_name
        failures: list[str] = []
        for description, action in (
            (f"stop {timer}", lambda: self.systemctl.stop(timer)),
            (f"disable {timer}", lambda: self.systemctl.disable(timer)),
        ):
            try:
                action()
            except CommandError as e:
                failures.append(f"{description}: {e}")
        for path in self.installed_files:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                failures.append(f"remove {path}: {e}")
        try:
            self.systemctl.daemon_reload()
        except CommandError as e:
            failures.append(f"daemon-reload: {e}")
        return failures

    def uninstall(self) -> None:
        print_info("Uninstalling Milvus backup service...")
        timer = self.settings.timer_name
        with contextlib.suppress(CommandError):
            self.systemctl.stop(timer)
        with contextlib.suppress(CommandError):
            self.systemctl.disable(timer)
        self._remove_installed_files()
        self.systemctl.daemon_reload()

        print_success("Service uninstalled successfully")
        print_warning(f"Backup directory {self.settings.backup_dir} was not removed")
        print_warning(f"Log file {self.settings.log_file} was not removed")

    # -- orchestration -------------------------------------------------------

    def install(self) -> bool:
        """Run the full installation. Returns False if it finished with warnings.

        Raises PrerequisiteError before any side effect, or InstallError after
        rolling back a failed step.
        """
        print_header("Milvus Backup Service Installer")

        self.check_root()
        self.check_prerequisites()
        self.check_source_files()

        s = self.settings
        txlog = TransactionLog("milvus-backup-install", s.log_file.parent)
        steps = [
            ("1-directories", "Create storage and log directories", self.create_directories,
             [s.backup_config_path]),
            ("2-script", "Install backup launcher", self.install_script, [s.script_path]),
            ("3-units", "Install systemd unit files", self.install_systemd_files,
             [s.service_path, s.timer_path]),
            ("4-systemd", "Reload systemd, enable and start timer", self.setup_systemd, []),
        ]
        try:
            for step_id, description, action, written in steps:
                print_step(description)
                txlog.step(step_id, description)
                action()
                txlog.add_files(*written)
                txlog.step_update("done")
        except (MilvusBackupError, OSError) as e:
            txlog.step_update("failed", str(e))
            logger.error("Install step %s failed: %s", txlog.steps[-1]["id"], e)
            print_error("Installation failed. Cleaning up...")
            failures = self.rollback()
            txlog.record_rollback(failures)
            for failure in failures:
                logger.warning("Rollback could not %s", failure)
                print_warning(f"Rollback could not {failure}")
            print_error("Cleanup completed")
            txlog.finalize("rolled_back", str(e))
            raise InstallError(f"Installation failed: {e}") from e

        txlog.step("5-image", "Pre-pull backup image")
        pulled = self.pull_docker_image()
        txlog.step_update("done" if pulled else "warning")

        txlog.step("6-verify", "Verify timer state")
        ok = self.verify_installation()
        txlog.step_update("done" if ok else "warning")

        if ok:
            txlog.finalize("success", "Installation completed")
            print_success("Installation completed successfully!")
        else:
            txlog.finalize("warning", "Installation completed with warnings")
            print_warning("Installation completed with warnings. Please check the status manually.")
        self.show_info()
        print_detail(f"JSON log: {txlog.path}")
        return ok

    def show_info(self) -> None:
        s = self.settings
        print_header("Milvus Backup Service Installed")
        print_detail(f"Backup Directory: {s.backup_dir}")
        print_detail(f"Log File:         {s.log_file}")
        print_detail(f"Schedule:         {s.schedule_description}")
        print_detail(f"Retention:        {s.retention_days} days")
        console.print()
        console.print("[bold]Useful Commands:[/bold]")
        print_detail(f"Check timer status:    systemctl status {s.timer_name}")
        print_detail(f"View next run time:    systemctl list-timers {s.timer_name}")
        print_detail(f"Run backup manually:   systemctl start {s.service_name}")
        print_detail(f"View logs:             journalctl -u {s.service_name}")
        print_detail(f"View backup logs:      tail -f {s.log_file}")
        print_detail(f"List backups:          {s.script_name} list")
        console.print()
        console.print("[bold]Configuration:[/bold]")
        print_detail(f"Settings overrides:    {ENV_FILE} (MILVUS_BACKUP_* variables)")
        print_detail(f"Edit timer schedule:   {s.timer_path}")
        print_detail(f"Backup tool config:    {s.backup_config_path}")
        console.print()
