"""Host environment probes that gate post-install actions.

None of these probes is fatal; each problem is reported as a warning.
"""
from __future__ import annotations

import shutil
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from .logging import Reporter
from .providers.systemd import SystemdProvider

KERNEL_OSRELEASE = Path("/proc/sys/kernel/osrelease")


@dataclass(frozen=True, slots=True)
class HostEnvironment:
    """Snapshot of the probes taken before provisioning."""

    wsl: bool
    service_manager: bool
    system_state: str | None = None
    missing_tools: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "wsl": self.wsl,
            "service_manager": self.service_manager,
            "system_state": self.system_state,
            "missing_tools": list(self.missing_tools),
        }


def detect_wsl(path: Path = KERNEL_OSRELEASE) -> bool:
    """Return ``True`` when the kernel release identifies Windows Subsystem for Linux."""
    try:
        release = path.read_text(encoding="utf-8", errors="replace").lower()
    except OSError:
        return False
    return "microsoft" in release or "wsl" in release


def missing_tools(
    tools: Sequence[str],
    *,
    which: Callable[[str], str | None] = shutil.which,
) -> tuple[str, ...]:
    """Return the entries of *tools* not found on ``PATH``."""
    return tuple(tool for tool in tools if which(tool) is None)


def probe_environment(
    systemd: SystemdProvider,
    reporter: Reporter,
    *,
    tools: Sequence[str] = (),
    which: Callable[[str], str | None] = shutil.which,
    kernel_release: Path = KERNEL_OSRELEASE,
) -> HostEnvironment:
    """Probe WSL, the service manager and prerequisite tools, warning as needed."""
    absent = missing_tools(tools, which=which)
    for tool in absent:
        reporter.warn(f"Command '{tool}' not found. Some functionality may be limited.")

    wsl = detect_wsl(kernel_release)
    if wsl:
        reporter.warn(
            "WSL detected. Docker service management is limited; ensure Docker "
            "Desktop integration or an alternative service."
        )
        return HostEnvironment(wsl=True, service_manager=False, missing_tools=absent)

    if not systemd.available():
        reporter.warn("systemctl not available; skipping service enable/start.")
        return HostEnvironment(wsl=False, service_manager=False, missing_tools=absent)

    running, state = systemd.system_state()
    if not running:
        reporter.warn(f"systemd not fully running ({state}); service enable may not work.")
    return HostEnvironment(
        wsl=False,
        service_manager=True,
        system_state=state,
        missing_tools=absent,
    )


__all__ = [
    "HostEnvironment",
    "KERNEL_OSRELEASE",
    "detect_wsl",
    "missing_tools",
    "probe_environment",
]
