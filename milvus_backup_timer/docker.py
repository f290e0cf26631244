"""Docker driver: preflight checks, image refresh and the milvus-backup invocation."""

from __future__ import annotations

from typing import Callable, Optional

from .common import log_quiet
from .config import CONTAINER_BACKUP_DIR, CONTAINER_CONFIG_FILE, Settings
from .shell import CommandRunner, check_command, run_command


class Docker:
    """Thin wrapper over the docker CLI.

    The argument contract of :meth:`backup_command` belongs to the
    milvus-backup image and must not change.
    """

    def __init__(
        self,
        settings: Settings,
        runner: CommandRunner = run_command,
        which: Callable[[str], bool] = check_command,
    ):
        self.settings = settings
        self._run = runner
        self._which = which

    @property
    def bin(self) -> str:
        return self.settings.docker_bin

    # -- preflight -----------------------------------------------------------

    def is_installed(self) -> bool:
        return self._which(self.bin)

    def is_daemon_running(self) -> bool:
        return self._run([self.bin, "info"], check=False).returncode == 0

    # -- images --------------------------------------------------------------

    def pull(self, image: Optional[str] = None) -> None:
        """Pull *image* (default: the configured backup image). Raises CommandError."""
        self._run([self.bin, "pull", image or self.settings.docker_image], capture=False)

    def image_present(self, image: Optional[str] = None) -> bool:
        result = self._run(
            [self.bin, "image", "inspect", image or self.settings.docker_image],
            check=False,
        )
        return result.returncode == 0

    # -- backup --------------------------------------------------------------

    def backup_command(self, backup_name: str) -> list[str]:
        s = self.settings
        cmd = [
            self.bin, "run", "--rm",
            "-v", f"{s.backup_dir}:{CONTAINER_BACKUP_DIR}",
            "-e", f"MILVUS_ADDRESS={s.milvus_address}",
        ]
        config_file = s.effective_config_file
        if config_file is not None:
            cmd += [
                "-v", f"{config_file}:{CONTAINER_CONFIG_FILE}",
                "-e", f"CONFIG_FILE={CONTAINER_CONFIG_FILE}",
            ]
        cmd += [
            s.docker_image,
            "create",
            "--backup-name", backup_name,
            "--backup-dir", CONTAINER_BACKUP_DIR,
        ]
        return cmd

    def create_backup(self, backup_name: str) -> None:
        """Run the backup container once. Raises CommandError on non-zero exit; no retry."""
        cmd = self.backup_command(backup_name)
        log_quiet(f"backup command: {' '.join(cmd)}")
        self._run(cmd, capture=False, timeout=self.settings.command_timeout)
