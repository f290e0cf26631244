"""Backup timer configuration: loads from environment and the systemd env file.

The installer and the runner share this one settings object, so the storage
path, image tag and retention window cannot drift between them.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

# Read by the service unit too (EnvironmentFile=-/etc/default/milvus-backup)
ENV_FILE = "/etc/default/milvus-backup"

# Container-side paths owned by the milvus-backup image
CONTAINER_BACKUP_DIR = "/backup"
CONTAINER_CONFIG_FILE = "/config/backup.yaml"


class Settings(BaseSettings):
    """Runtime settings, populated from MILVUS_BACKUP_* env vars or the env file."""

    # Target Milvus instance
    milvus_host: str = "localhost"
    milvus_port: int = 19530

    # Storage
    backup_dir: Path = Path("/data/backup")
    config_file: Optional[Path] = None
    retention_days: int = Field(default=3, ge=0)

    # External backup image
    docker_image: str = "milvusdb/milvus-backup:v0.5.8"
    docker_bin: str = "docker"
    command_timeout: Optional[float] = None

    # Logging / locking
    log_file: Path = Path("/var/log/milvus-backup.log")
    lock_file: Path = Path("/run/milvus-backup.lock")

    # Install locations
    install_dir: Path = Path("/usr/local/bin")
    systemd_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"
    unit_name: str = "milvus-backup"
    script_name: str = "milvus-backup"
    source_dir: Optional[Path] = None

    # Schedule shown in the post-install summary (the timer file is authoritative)
    schedule_description: str = "Daily at 2:00 AM"

    model_config = {"env_prefix": "MILVUS_BACKUP_", "env_file": ENV_FILE, "extra": "ignore"}

    @property
    def milvus_address(self) -> str:
        return f"{self.milvus_host}:{self.milvus_port}"

    @property
    def service_name(self) -> str:
        return f"{self.unit_name}.service"

    @property
    def timer_name(self) -> str:
        return f"{self.unit_name}.timer"

    @property
    def script_path(self) -> Path:
        return self.install_dir / self.script_name

    @property
    def service_path(self) -> Path:
        return self.systemd_dir / self.service_name

    @property
    def timer_path(self) -> Path:
        return self.systemd_dir / self.timer_name

    @property
    def backup_config_path(self) -> Path:
        return self.backup_dir / "config.yaml"

    @property
    def effective_config_file(self) -> Optional[Path]:
        """Config file to mount into the container, or None.

        An explicit ``config_file`` wins; otherwise the copy the installer
        placed in the storage root is used when present.
        """
        candidate = self.config_file or self.backup_config_path
        if candidate.is_file():
            return candidate
        return None

    @property
    def data_dir(self) -> Path:
        """Directory holding the launcher template, unit files and config.yaml."""
        if self.source_dir is not None:
            return self.source_dir
        return Path(__file__).resolve().parent / "data"


def get_settings(**overrides) -> Settings:
    """Build settings from the environment, with explicit keyword overrides."""
    return Settings(**overrides)
