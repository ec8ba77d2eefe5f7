"""Package-manager backends, one per distribution family."""
from __future__ import annotations

from ..distro import Family, FamilyProfile
from ..errors import FatalPrecondition
from .amazon import AmazonBackend
from .arch import ArchBackend
from .base import BaseBackend, PackageBackend, ProvisionContext
from .debian import DebianBackend
from .rhel import RhelBackend
from .suse import SuseBackend
from .systemd import SystemdProvider

BACKENDS: dict[Family, type[BaseBackend]] = {
    Family.DEBIAN: DebianBackend,
    Family.RHEL: RhelBackend,
    Family.FEDORA: RhelBackend,
    Family.AMAZON: AmazonBackend,
    Family.SUSE: SuseBackend,
    Family.ARCH: ArchBackend,
}


def backend_for(profile: FamilyProfile) -> type[BaseBackend]:
    """Return the backend class implementing *profile*'s family."""
    backend = BACKENDS.get(profile.family)
    if backend is None:
        raise FatalPrecondition(
            f"No package backend for OS family '{profile.family.value}'."
        )
    return backend


__all__ = [
    "AmazonBackend",
    "ArchBackend",
    "BACKENDS",
    "BaseBackend",
    "DebianBackend",
    "PackageBackend",
    "ProvisionContext",
    "RhelBackend",
    "SuseBackend",
    "SystemdProvider",
    "backend_for",
]
