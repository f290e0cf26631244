"""Shared utilities: console output, logging, JSON transaction log.

Installer and runner import from here rather than formatting output
themselves.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel

# ---------------------------------------------------------------------------
# Console singleton
# ---------------------------------------------------------------------------
console = Console()

LOGGER_NAME = "milvus_backup_timer"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(LOGGER_NAME)

# ---------------------------------------------------------------------------
# Display helpers (Rich equivalents of the Bash colour functions)
# ---------------------------------------------------------------------------


def print_header(title: str) -> None:
    console.print()
    console.print(Panel(f"[bold]{title}[/bold]", border_style="blue", expand=True))
    console.print()


def print_step(msg: str) -> None:
    console.print(f"[bold cyan]▶ {msg}[/bold cyan]")


def print_info(msg: str) -> None:
    console.print(f"[blue][INFO][/blue] {msg}")


def print_success(msg: str) -> None:
    console.print(f"[bold green][SUCCESS][/bold green] {msg}")


def print_warning(msg: str) -> None:
    console.print(f"[bold yellow][WARNING][/bold yellow] {msg}")


def print_error(msg: str) -> None:
    console.print(f"[bold red][ERROR][/bold red] {msg}")


def print_detail(msg: str) -> None:
    console.print(f"  {msg}")


def die(msg: str, code: int = 1) -> None:
    print_error(msg)
    sys.exit(code)


# ---------------------------------------------------------------------------
# File-based logging
# ---------------------------------------------------------------------------


def init_logging(log_file: Path, stdout: bool = False) -> logging.Logger:
    """Attach an append-mode file handler (and optionally stdout) to the package logger.

    Safe to call more than once: handlers from a previous call are replaced.
    """
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    log_file.parent.mkdir(parents=True, exist_ok=True)

    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    fh = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    fh.setLevel(logging.INFO)
    fh.setFormatter(formatter)
    logger.addHandler(fh)

    if stdout:
        sh = logging.StreamHandler(sys.stdout)
        sh.setLevel(logging.INFO)
        sh.setFormatter(formatter)
        logger.addHandler(sh)
    return logger


def log(msg: str) -> None:
    logger.info(msg)


def log_quiet(msg: str) -> None:
    logger.debug(msg)


# ---------------------------------------------------------------------------
# JSON transaction log
# ---------------------------------------------------------------------------



class TransactionLog:
    """JSON record of one install, rewritten to disk after every change.

    Besides the ordered steps it lists the files the install wrote and, when
    a failed install is rolled back, whatever the rollback could not undo.
    """

    def __init__(self, operation: str, log_dir: Path):
        log_dir.mkdir(parents=True, exist_ok=True)
        started = datetime.now(timezone.utc)
        self.path = log_dir / f"{operation}-{started:%Y%m%d-%H%M%S}.json"
        self._data: dict[str, Any] = {
            "operation": operation,
            "started_at": started.isoformat(),
            "status": "in_progress",
            "steps": [],
            "files": [],
        }
        self._flush()

    @property
    def steps(self) -> list[dict[str, Any]]:
        return self._data["steps"]

    @property
    def files(self) -> list[str]:
        return self._data["files"]

    @property
    def status(self) -> str:
        return self._data["status"]

    def step(self, step_id: str, description: str) -> None:
        self._close_open_steps()
        self.steps.append({"id": step_id, "description": description, "status": "in_progress"})
        self._flush()

    def step_update(self, status: str = "done", detail: str = "") -> None:
        if self.steps:
            current = self.steps[-1]
            current["status"] = status
            if detail:
                current["detail"] = detail
        self._flush()

    def add_files(self, *paths: Path) -> None:
        for path in map(str, paths):
            if path not in self.files:
                self.files.append(path)
        self._flush()

    def record_rollback(self, failures: list[str]) -> None:
        self._data["rollback"] = {"clean": not failures, "failures": list(failures)}
        self._flush()

    def finalize(self, status: str = "success", message: str = "") -> None:
        self._close_open_steps()
        self._data["status"] = status
        self._data["ended_at"] = datetime.now(timezone.utc).isoformat()
        if message:
            self._data["message"] = message
        self._flush()

    def _close_open_steps(self) -> None:
        for step in self.steps:
            if step["status"] == "in_progress":
                step["status"] = "done"

    def _flush(self) -> None:
        self.path.write_text(json.dumps(self._data, indent=2) + "\n")
