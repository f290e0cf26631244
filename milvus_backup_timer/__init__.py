"""Milvus backup timer: systemd-scheduled backups via the milvus-backup container image."""

__version__ = "0.1.0"
