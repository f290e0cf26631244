"""Exception types raised by the installer and the backup runner."""

from __future__ import annotations

from typing import Optional, Sequence


class MilvusBackupError(Exception):
    """Base class for all errors raised by this package."""


class PrerequisiteError(MilvusBackupError):
    """A required privilege, binary, daemon or source file is missing."""


class CommandError(MilvusBackupError):
    """An external command (docker, systemctl) exited non-zero."""

    def __init__(
        self,
        cmd: Sequence[str],
        returncode: int,
        stderr: str = "",
        message: Optional[str] = None,
    ):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr
        if message is None:
            message = f"Command failed (exit {returncode}): {' '.join(self.cmd)}"
            if stderr.strip():
                message += f": {stderr.strip()}"
        super().__init__(message)


class BackupVerificationError(MilvusBackupError):
    """The container reported success but the backup directory is missing."""


class RunLockedError(MilvusBackupError):
    """Another backup run already holds the run lock."""


class InstallError(MilvusBackupError):
    """A fatal installation step failed; the installer has rolled back."""
