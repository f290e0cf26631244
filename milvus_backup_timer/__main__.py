"""Allow ``python -m milvus_backup_timer`` (used by the installed launcher)."""

from .cli.main import backup_cli

if __name__ == "__main__":
    backup_cli(prog_name="milvus-backup")
