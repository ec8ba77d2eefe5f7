"""Host identity discovery and distribution-family resolution.

Resolution is two-tier. The lower-cased ``ID`` from os-release is first looked
up in :data:`KNOWN_DISTRIBUTIONS`, which also remaps derivatives onto the
repository name the upstream package repository actually publishes under.
Failing that, each ``ID_LIKE`` token is tried in order against the coarser
:data:`LIKE_FAMILIES` table. Anything still unmatched resolves to
``Family.UNRESOLVED``, which callers must treat as fatal.
"""
from __future__ import annotations

import shlex
import shutil
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .errors import FatalPrecondition

DEFAULT_OS_RELEASE = Path("/etc/os-release")


class Family(str, Enum):
    """Distribution families sharing a package manager and repository layout."""

    DEBIAN = "debian"
    RHEL = "rhel"
    FEDORA = "fedora"
    AMAZON = "amazon"
    SUSE = "suse"
    ARCH = "arch"
    UNRESOLVED = "unresolved"


class PackageManager(str, Enum):
    """Package-manager backends and the binary each is invoked through."""

    APT = "apt"
    DNF = "dnf"
    YUM = "yum"
    ZYPPER = "zypper"
    PACMAN = "pacman"
    NONE = "none"

    @property
    def binary(self) -> str | None:
        """Executable probed on ``PATH`` for this backend."""
        return {
            PackageManager.APT: "apt-get",
            PackageManager.DNF: "dnf",
            PackageManager.YUM: "yum",
            PackageManager.ZYPPER: "zypper",
            PackageManager.PACMAN: "pacman",
        }.get(self)


@dataclass(frozen=True, slots=True)
class HostIdentity:
    """Immutable snapshot of the host's os-release data."""

    raw_id: str
    raw_version: str
    raw_like: tuple[str, ...] = ()
    version_codename: str | None = None
    ubuntu_codename: str | None = None
    debian_codename: str | None = None
    pretty_name: str | None = None
    fields: Mapping[str, str] = field(default_factory=dict)

    @property
    def id(self) -> str:
        """Lower-cased distribution identifier."""
        return self.raw_id.strip().lower()

    @property
    def version(self) -> str:
        """Normalised ``VERSION_ID``."""
        return self.raw_version.strip().lower()

    @property
    def like(self) -> tuple[str, ...]:
        """Lower-cased ``ID_LIKE`` tokens in declaration order."""
        return tuple(token.lower() for token in self.raw_like if token)

    @property
    def codenames(self) -> tuple[str, ...]:
        """Candidate codenames, most upstream-specific first."""
        ordered = (self.ubuntu_codename, self.debian_codename, self.version_codename)
        seen: list[str] = []
        for value in ordered:
            if value and value.lower() not in seen:
                seen.append(value.lower())
        return tuple(seen)


@dataclass(frozen=True, slots=True)
class FamilyProfile:
    """Resolved classification of a host."""

    family: Family
    package_manager: PackageManager
    repo_identity: str
    matched_by: str = "id"

    @property
    def resolved(self) -> bool:
        """``False`` when no family could be determined."""
        return self.family is not Family.UNRESOLVED

    @property
    def is_fallback(self) -> bool:
        """``True`` when resolution went through an ``ID_LIKE`` token."""
        return self.matched_by.startswith("id_like")


UNRESOLVED = FamilyProfile(Family.UNRESOLVED, PackageManager.NONE, "", matched_by="none")


# (family, package manager, repository identity). Derivatives are remapped onto
# the nearest repository download.docker.com actually publishes.
KNOWN_DISTRIBUTIONS: dict[str, tuple[Family, PackageManager, str]] = {
    "debian": (Family.DEBIAN, PackageManager.APT, "debian"),
    "ubuntu": (Family.DEBIAN, PackageManager.APT, "ubuntu"),
    "raspbian": (Family.DEBIAN, PackageManager.APT, "raspbian"),
    "pop": (Family.DEBIAN, PackageManager.APT, "ubuntu"),
    "elementary": (Family.DEBIAN, PackageManager.APT, "ubuntu"),
    "linuxmint": (Family.DEBIAN, PackageManager.APT, "ubuntu"),
    "zorin": (Family.DEBIAN, PackageManager.APT, "ubuntu"),
    "neon": (Family.DEBIAN, PackageManager.APT, "ubuntu"),
    "kali": (Family.DEBIAN, PackageManager.APT, "debian"),
    "parrot": (Family.DEBIAN, PackageManager.APT, "debian"),
    "mx": (Family.DEBIAN, PackageManager.APT, "debian"),
    "rhel": (Family.RHEL, PackageManager.DNF, "centos"),
    "centos": (Family.RHEL, PackageManager.DNF, "centos"),
    "rocky": (Family.RHEL, PackageManager.DNF, "centos"),
    "almalinux": (Family.RHEL, PackageManager.DNF, "centos"),
    "ol": (Family.RHEL, PackageManager.DNF, "centos"),
    "fedora": (Family.FEDORA, PackageManager.DNF, "fedora"),
    "amzn": (Family.AMAZON, PackageManager.YUM, "amzn"),
    "opensuse-leap": (Family.SUSE, PackageManager.ZYPPER, "suse"),
    "opensuse-tumbleweed": (Family.SUSE, PackageManager.ZYPPER, "suse"),
    "sles": (Family.SUSE, PackageManager.ZYPPER, "suse"),
    "arch": (Family.ARCH, PackageManager.PACMAN, "arch"),
    "manjaro": (Family.ARCH, PackageManager.PACMAN, "arch"),
    "endeavouros": (Family.ARCH, PackageManager.PACMAN, "arch"),
}

# ``None`` as the package manager means "probe dnf, then yum".
LIKE_FAMILIES: dict[str, tuple[Family, PackageManager | None, str]] = {
    "ubuntu": (Family.DEBIAN, PackageManager.APT, "ubuntu"),
    "debian": (Family.DEBIAN, PackageManager.APT, "debian"),
    "rhel": (Family.RHEL, None, "centos"),
    "centos": (Family.RHEL, None, "centos"),
    "fedora": (Family.FEDORA, PackageManager.DNF, "fedora"),
    "suse": (Family.SUSE, PackageManager.ZYPPER, "suse"),
    "opensuse": (Family.SUSE, PackageManager.ZYPPER, "suse"),
    "sles": (Family.SUSE, PackageManager.ZYPPER, "suse"),
    "arch": (Family.ARCH, PackageManager.PACMAN, "arch"),
}


def parse_os_release(text: str) -> dict[str, str]:
    """Parse os-release ``KEY=value`` lines, honouring shell quoting."""
    data: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        try:
            tokens = shlex.split(value)
        except ValueError:
            tokens = [value.strip().strip('"').strip("'")]
        data[key.strip()] = " ".join(tokens)
    return data


def identity_from_fields(fields: Mapping[str, str]) -> HostIdentity:
    """Build a :class:`HostIdentity` from parsed os-release fields."""
    return HostIdentity(
        raw_id=fields.get("ID", ""),
        raw_version=fields.get("VERSION_ID", ""),
        raw_like=tuple(fields.get("ID_LIKE", "").split()),
        version_codename=fields.get("VERSION_CODENAME") or None,
        ubuntu_codename=fields.get("UBUNTU_CODENAME") or None,
        debian_codename=fields.get("DEBIAN_CODENAME") or None,
        pretty_name=fields.get("PRETTY_NAME") or None,
        fields=dict(fields),
    )


def load_host_identity(path: Path = DEFAULT_OS_RELEASE) -> HostIdentity:
    """Read *path* once; absence or unreadability is a fatal precondition."""
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        raise FatalPrecondition(f"Cannot read {path}; unsupported system ({exc}).") from exc
    fields = parse_os_release(text)
    if not fields.get("ID"):
        raise FatalPrecondition(f"{path} does not declare an ID; unsupported system.")
    return identity_from_fields(fields)


def resolve_profile(
    identity: HostIdentity,
    *,
    which: Callable[[str], str | None] = shutil.which,
) -> FamilyProfile:
    """Reduce *identity* to a :class:`FamilyProfile`.

    Never defaults to a concrete family: if neither the ``ID`` nor any
    ``ID_LIKE`` token matches, :data:`UNRESOLVED` is returned.
    """
    known = KNOWN_DISTRIBUTIONS.get(identity.id)
    if known is not None:
        family, manager, repo_identity = known
        return FamilyProfile(family, manager, repo_identity, matched_by="id")

    for token in identity.like:
        like = LIKE_FAMILIES.get(token)
        if like is None:
            continue
        family, manager, repo_identity = like
        if manager is None:
            manager = _probe_rpm_manager(which)
            if manager is None:
                continue
        return FamilyProfile(family, manager, repo_identity, matched_by=f"id_like:{token}")

    return UNRESOLVED


def _probe_rpm_manager(which: Callable[[str], str | None]) -> PackageManager | None:
    for candidate in (PackageManager.DNF, PackageManager.YUM):
        binary = candidate.binary
        if binary and which(binary):
            return candidate
    return None


__all__ = [
    "DEFAULT_OS_RELEASE",
    "Family",
    "FamilyProfile",
    "HostIdentity",
    "KNOWN_DISTRIBUTIONS",
    "LIKE_FAMILIES",
    "PackageManager",
    "UNRESOLVED",
    "identity_from_fields",
    "load_host_identity",
    "parse_os_release",
    "resolve_profile",
]
