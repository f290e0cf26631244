"""External command execution: the only place that calls subprocess."""

from __future__ import annotations

import shutil
import subprocess
from typing import Callable, Optional, Sequence

from .common import log_quiet
from .errors import CommandError

# Signature shared by run_command and the fakes used in tests
CommandRunner = Callable[..., subprocess.CompletedProcess]


def run_command(
    cmd: Sequence[str],
    *,
    check: bool = True,
    capture: bool = True,
    timeout: Optional[float] = None,
) -> subprocess.CompletedProcess:
    """Run *cmd* and return the completed process.

    With ``check=True`` a non-zero exit raises :class:`CommandError`. A missing
    executable is reported as exit status 127, the shell's convention.
    """
    argv = [str(c) for c in cmd]
    log_quiet(f"exec: {' '.join(argv)}")
    try:
        result = subprocess.run(
            argv,
            capture_output=capture,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        if check:
            raise CommandError(argv, 127, str(exc)) from exc
        return subprocess.CompletedProcess(argv, 127, "", str(exc))
    except subprocess.TimeoutExpired as exc:
        raise CommandError(argv, -1, message=f"Command timed out after {timeout}s: {' '.join(argv)}") from exc

    if check and result.returncode != 0:
        raise CommandError(argv, result.returncode, result.stderr or "")
    return result


def check_command(cmd: str) -> bool:
    """Return True if *cmd* is available on PATH."""
    return shutil.which(cmd) is not None
