"""pacman backend for Arch Linux and derivatives."""
from __future__ import annotations

from .base import BaseBackend

PACMAN = ("pacman", "--noconfirm")


class ArchBackend(BaseBackend):
    """Docker comes from the distribution's own repositories on Arch."""

    def setup_repository(self, channel: str) -> None:
        """Nothing to configure."""
        self.reporter.info(
            "Arch Linux packages docker in its own repositories; "
            "no additional repository configuration required."
        )

    def install(self, *, with_compose: bool) -> None:
        """Upgrade the system and install docker (and docker-compose)."""
        self.executor.run_privileged([*PACMAN, "-Syu", "docker"])
        if with_compose:
            self.executor.run_privileged([*PACMAN, "-S", "docker-compose"])

    def uninstall(self) -> None:
        """Remove docker and docker-compose with their unneeded dependencies."""
        self.executor.run_privileged([*PACMAN, "-Rns", "docker", "docker-compose"], tolerate=True)


__all__ = ["ArchBackend"]
