"""Backup runner: the body of the scheduled job.

One run pulls the backup image, asks it to create a timestamped backup,
checks the backup landed on disk, then deletes backups past the retention
window::

    START → PREFLIGHT_OK → IMAGE_PULLED → BACKUP_CREATED → BACKUP_VERIFIED
          → RETENTION_SWEPT → DONE

Preflight, image, creation and verification failures end the run in FAILED.
Retention failures are absorbed per directory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .backups import backup_name, directory_size, human_size, sweep_expired_backups
from .common import logger
from .config import Settings
from .docker import Docker
from .errors import BackupVerificationError, CommandError, MilvusBackupError, PrerequisiteError
from .locks import run_lock


class RunState(Enum):
    START = "start"
    PREFLIGHT_OK = "preflight_ok"
    IMAGE_PULLED = "image_pulled"
    BACKUP_CREATED = "backup_created"
    BACKUP_VERIFIED = "backup_verified"
    RETENTION_SWEPT = "retention_swept"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RunResult:
    state: RunState = RunState.START
    backup_name: str = ""
    backup_path: Optional[Path] = None
    backup_size: Optional[int] = None
    removed: list[Path] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state == RunState.DONE


class BackupRunner:
    """Runs one backup cycle against the configured Milvus instance."""

    def __init__(
        self,
        settings: Settings,
        docker: Optional[Docker] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings
        self.docker = docker or Docker(settings)
        self.clock = clock

    def run(self) -> RunResult:
        result = RunResult()
        started = self.clock()
        logger.info("=== Starting Milvus backup process ===")
        try:
            self.settings.backup_dir.mkdir(parents=True, exist_ok=True)
            with run_lock(self.settings.lock_file):
                self._preflight()
                result.state = RunState.PREFLIGHT_OK

                self._refresh_image()
                result.state = RunState.IMAGE_PULLED

                result.backup_name = backup_name(started)
                self._create_backup(result.backup_name)
                result.state = RunState.BACKUP_CREATED

                result.backup_path = self._verify_backup(result.backup_name)
                result.backup_size = directory_size(result.backup_path)
                logger.info("Backup verified: %s", human_size(result.backup_size))
                result.state = RunState.BACKUP_VERIFIED

                result.removed = self._cleanup_old_backups(started)
                result.state = RunState.RETENTION_SWEPT
        except (MilvusBackupError, OSError) as e:
            logger.error("%s", e)
            logger.error("=== Backup process failed ===")
            result.error = str(e)
            result.state = RunState.FAILED
            return result

        result.state = RunState.DONE
        logger.info("=== Backup process completed ===")
        return result

    # -- steps ---------------------------------------------------------------

    def _preflight(self) -> None:
        if not self.docker.is_installed():
            raise PrerequisiteError("Docker is not installed or not in PATH")
        if not self.docker.is_daemon_running():
            raise PrerequisiteError("Docker daemon is not running")

    def _refresh_image(self) -> None:
        image = self.settings.docker_image
        logger.info("Pulling latest backup image %s...", image)
        try:
            self.docker.pull(image)
        except CommandError as e:
            if not self.docker.image_present(image):
                raise CommandError(
                    e.cmd, e.returncode, e.stderr,
                    message=f"Failed to pull {image} and no local copy is available",
                ) from e
            logger.warning("Failed to pull %s, using the local copy: %s", image, e)

    def _create_backup(self, name: str) -> None:
        logger.info("Starting backup: %s", name)
        try:
            self.docker.create_backup(name)
        except CommandError as e:
            raise CommandError(
                e.cmd, e.returncode, e.stderr,
                message=f"Backup creation failed (exit {e.returncode})",
            ) from e
        logger.info("Backup %s created successfully", name)

    def _verify_backup(self, name: str) -> Path:
        path = self.settings.backup_dir / name
        if not path.is_dir():
            raise BackupVerificationError(f"Backup directory not found after creation: {path}")
        return path

    def _cleanup_old_backups(self, now: datetime) -> list[Path]:
        days = self.settings.retention_days
        logger.info("Cleaning up backups older than %d days...", days)
        removed = sweep_expired_backups(self.settings.backup_dir, days, now)
        logger.info("Cleanup completed (%d removed)", len(removed))
        return removed
