"""Backup directories: naming, listing and the retention sweep."""

from __future__ import annotations

import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .common import logger

BACKUP_PREFIX = "backup-"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
SECONDS_PER_DAY = 86400


def backup_name(now: datetime) -> str:
    """Name for a backup taken at *now*: ``backup-YYYYMMDD-HHMMSS``."""
    return f"{BACKUP_PREFIX}{now.strftime(TIMESTAMP_FORMAT)}"


def is_backup_dir(path: Path) -> bool:
    return path.name.startswith(BACKUP_PREFIX) and path.is_dir() and not path.is_symlink()


def backup_age_days(path: Path, now: datetime) -> int:
    """Whole days since *path* was last modified (rounded down, like ``find -mtime``)."""
    age = now.timestamp() - path.stat().st_mtime
    return int(age // SECONDS_PER_DAY)


def find_expired_backups(backup_dir: Path, retention_days: int, now: datetime) -> list[Path]:
    """Backup directories directly under *backup_dir* older than *retention_days* whole days."""
    if not backup_dir.is_dir():
        return []
    expired = []
    for entry in sorted(backup_dir.iterdir()):
        try:
            if is_backup_dir(entry) and backup_age_days(entry, now) > retention_days:
                expired.append(entry)
        except FileNotFoundError:
            # Removed between listing and stat
            continue
    return expired


def sweep_expired_backups(backup_dir: Path, retention_days: int, now: datetime) -> list[Path]:
    """Delete expired backups. Failures are logged per directory and never raised.

    Returns the directories that were actually removed.
    """
    removed = []
    for path in find_expired_backups(backup_dir, retention_days, now):
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning("Could not remove expired backup %s: %s", path, e)
            continue
        logger.info("Removed expired backup: %s", path.name)
        removed.append(path)
    return removed


def directory_size(path: Path) -> int:
    """Total size in bytes of the regular files under *path*."""
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except FileNotFoundError:
                pass
    return total


def human_size(size: float) -> str:
    """Format *size* bytes the way ``du -h`` does (``512``, ``4.0K``, ``1.2G``)."""
    if size < 1024:
        return f"{size:.0f}"
    for unit in ("K", "M", "G"):
        size /= 1024
        if size < 1024:
            return f"{size:.1f}{unit}"
    return f"{size / 1024:.1f}T"


def list_backups(backup_dir: Path, now: Optional[datetime] = None) -> list[dict]:
    """List existing backups sorted newest first."""
    if not backup_dir.is_dir():
        return []
    now = now or datetime.now()
    backups = sorted(
        (p for p in backup_dir.iterdir() if is_backup_dir(p)),
        key=lambda p: p.name,
        reverse=True,
    )
    return [
        {
            "name": b.name,
            "path": str(b),
            "size_bytes": directory_size(b),
            "modified": datetime.fromtimestamp(b.stat().st_mtime, tz=timezone.utc).isoformat(),
            "age_days": backup_age_days(b, now),
        }
        for b in backups
    ]
