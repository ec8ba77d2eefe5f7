"""Systemd provider for the docker service unit."""
from __future__ import annotations

import shutil
from collections.abc import Callable
from dataclasses import dataclass, field

from ..execution import CommandOutcome, Executor


@dataclass(slots=True)
class SystemdProvider:
    """Probe systemd and manage the docker unit through the executor."""

    executor: Executor
    unit: str = "docker"
    systemctl_bin: str = "systemctl"
    which: Callable[[str], str | None] = field(default=shutil.which)

    def available(self) -> bool:
        """Return ``True`` when ``systemctl`` is on ``PATH``."""
        return self.which(self.systemctl_bin) is not None

    def system_state(self) -> tuple[bool, str]:
        """Return whether the system reports ``running`` and the raw state text."""
        result = self.executor.query([self.systemctl_bin, "is-system-running"])
        state = (result.stdout or "").strip() or "unknown"
        return result.returncode == 0, state

    def enable_now(self) -> CommandOutcome:
        """Enable and start the unit. Failure is fatal."""
        return self._systemctl("enable", "--now", self.unit)

    def disable_now(self) -> CommandOutcome:
        """Stop and disable the unit, tolerating an absent unit."""
        return self._systemctl("disable", "--now", self.unit, tolerate=True)

    def is_active(self) -> bool:
        """Return ``True`` when the unit is currently active."""
        result = self.executor.query([self.systemctl_bin, "is-active", "--quiet", self.unit])
        return result.returncode == 0

    # ------------------------------------------------------------------
    def _systemctl(self, *args: str, tolerate: bool = False) -> CommandOutcome:
        return self.executor.run_privileged([self.systemctl_bin, *args], tolerate=tolerate)


__all__ = ["SystemdProvider"]
