"""Shared pytest fixtures."""

from __future__ import annotations

import logging
import os
import subprocess
import time
from pathlib import Path
from typing import Callable, Optional

import pytest

from milvus_backup_timer.common import LOGGER_NAME
from milvus_backup_timer.config import Settings
from milvus_backup_timer.errors import CommandError

DAY = 86400


class FakeRunner:
    """Stands in for run_command: records argv and returns canned results.

    Rules match on an argv prefix; the most recently added matching rule wins.
    Unmatched commands succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self._rules: list[tuple[list[str], int, str, Optional[Callable[[list[str]], None]]]] = []

    def on(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str = "",
        effect: Optional[Callable[[list[str]], None]] = None,
    ) -> "FakeRunner":
        self._rules.append((list(prefix), returncode, stdout, effect))
        return self

    def __call__(self, cmd, *, check=True, capture=True, timeout=None):
        argv = [str(c) for c in cmd]
        self.calls.append(argv)
        returncode, stdout = 0, ""
        for prefix, rc, out, effect in reversed(self._rules):
            if argv[: len(prefix)] == prefix:
                if effect is not None:
                    effect(argv)
                returncode, stdout = rc, out
                break
        if check and returncode != 0:
            raise CommandError(argv, returncode, "simulated failure")
        return subprocess.CompletedProcess(argv, returncode, stdout, "")

    def called(self, *prefix: str) -> bool:
        return any(c[: len(prefix)] == list(prefix) for c in self.calls)

    def index(self, *prefix: str) -> int:
        for i, c in enumerate(self.calls):
            if c[: len(prefix)] == list(prefix):
                return i
        raise ValueError(f"{prefix} was never called")


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with every host path redirected under tmp_path."""
    return Settings(
        backup_dir=tmp_path / "data" / "backup",
        log_file=tmp_path / "log" / "milvus-backup.log",
        lock_file=tmp_path / "run" / "milvus-backup.lock",
        install_dir=tmp_path / "usr" / "local" / "bin",
        systemd_dir=tmp_path / "etc" / "systemd" / "system",
        retention_days=3,
    )


@pytest.fixture(autouse=True)
def _reset_package_logger():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def make_backup_dir(root: Path, name: str, age_days: float, now: Optional[float] = None) -> Path:
    """Create *root/name* with its mtime set *age_days* before *now*."""
    path = root / name
    path.mkdir(parents=True, exist_ok=True)
    (path / "meta").mkdir(exist_ok=True)
    (path / "meta" / "backup_meta.json").write_text("{}")
    stamp = (now if now is not None else time.time()) - age_days * DAY
    os.utime(path, (stamp, stamp))
    return path


@pytest.fixture
def make_backup() -> Callable[..., Path]:
    return make_backup_dir
