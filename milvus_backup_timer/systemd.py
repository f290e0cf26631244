"""systemd driver: unit registration and structured status queries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .config import Settings
from .shell import CommandRunner, run_command

STATUS_PROPERTIES = ("ActiveState", "UnitFileState", "NextElapseUSecRealtime")


@dataclass
class UnitStatus:
    """Snapshot of a unit's state as reported by ``systemctl show``."""

    unit: str
    active_state: str = "unknown"
    unit_file_state: str = "unknown"
    next_elapse: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.active_state == "active"

    @property
    def enabled(self) -> bool:
        return self.unit_file_state == "enabled"


def parse_show_output(text: str) -> dict[str, str]:
    """Parse ``systemctl show`` KEY=VALUE lines into a dict."""
    props: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if not sep or not key.strip():
            continue
        props[key.strip()] = value.strip()
    return props


class Systemctl:
    """Wrapper over the systemctl CLI."""

    def __init__(self, settings: Settings, runner: CommandRunner = run_command):
        self.settings = settings
        self._run = runner

    def _cmd(self, *args: str) -> list[str]:
        return [self.settings.systemctl_bin, *args]

    def daemon_reload(self) -> None:
        self._run(self._cmd("daemon-reload"))

    def enable(self, unit: str) -> None:
        self._run(self._cmd("enable", unit))

    def disable(self, unit: str) -> None:
        self._run(self._cmd("disable", unit))

    def start(self, unit: str) -> None:
        self._run(self._cmd("start", unit))

    def stop(self, unit: str) -> None:
        self._run(self._cmd("stop", unit))

    def is_active(self, unit: str) -> bool:
        return self._run(self._cmd("is-active", "--quiet", unit), check=False).returncode == 0

    def is_enabled(self, unit: str) -> bool:
        return self._run(self._cmd("is-enabled", "--quiet", unit), check=False).returncode == 0

    def show(self, unit: str, *properties: str) -> dict[str, str]:
        args = ["show", unit]
        if properties:
            args.append(f"--property={','.join(properties)}")
        result = self._run(self._cmd(*args))
        return parse_show_output(result.stdout or "")

    def status(self, unit: str) -> UnitStatus:
        props = self.show(unit, *STATUS_PROPERTIES)
        next_elapse = props.get("NextElapseUSecRealtime") or None
        if next_elapse == "n/a":
            next_elapse = None
        return UnitStatus(
            unit=unit,
            active_state=props.get("ActiveState", "unknown"),
            unit_file_state=props.get("UnitFileState", "unknown"),
            next_elapse=next_elapse,
        )
