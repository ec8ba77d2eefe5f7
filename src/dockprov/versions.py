"""Release support decisions per distribution family.

Hard-gated families (RHEL, Fedora, Amazon) fail closed on any version outside
their supported set. Debian-family derivatives are reduced to an upstream
release through their codename; when no codename maps, the decision is
``UNKNOWN`` so that unseen derivatives still provision (with a warning).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from packaging.version import InvalidVersion, Version

from .distro import Family, FamilyProfile, HostIdentity


class SupportDecision(str, Enum):
    """Outcome of version validation."""

    SUPPORTED = "supported"
    UNSUPPORTED = "unsupported"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class SupportResult:
    """Decision plus the details the later stages need."""

    decision: SupportDecision
    reason: str
    warnings: list[str] = field(default_factory=list)
    release: str | None = None
    upstream_version: str | None = None

    @property
    def fatal(self) -> bool:
        """``True`` when the run must stop."""
        return self.decision is SupportDecision.UNSUPPORTED


# Upstream codename -> (repository identity, version).
DEBIAN_CODENAMES: dict[str, tuple[str, str]] = {
    "buster": ("debian", "10"),
    "bullseye": ("debian", "11"),
    "bookworm": ("debian", "12"),
    "trixie": ("debian", "13"),
    "bionic": ("ubuntu", "18.04"),
    "focal": ("ubuntu", "20.04"),
    "jammy": ("ubuntu", "22.04"),
    "noble": ("ubuntu", "24.04"),
}

SUPPORTED_DEBIAN_RELEASES: dict[str, frozenset[str]] = {
    "debian": frozenset({"11", "12"}),
    "raspbian": frozenset({"11", "12"}),
    "ubuntu": frozenset({"20.04", "22.04", "24.04"}),
}

# Repository suite used for derivatives whose codename cannot be mapped.
DEFAULT_DERIVATIVE_RELEASE: dict[str, str] = {
    "debian": "bookworm",
    "raspbian": "bookworm",
    "ubuntu": "noble",
}

RHEL_UPSTREAM_IDS = frozenset({"rhel", "rocky", "almalinux", "centos", "ol"})
RHEL_MAJOR_VERSIONS = frozenset({8, 9})
FEDORA_MINIMUM = 38
AMAZON_VERSION = "2"
SUSE_IDS = frozenset({"opensuse-leap", "opensuse-tumbleweed", "sles"})
ARCH_IDS = frozenset({"arch", "manjaro", "endeavouros"})


def validate_support(profile: FamilyProfile, identity: HostIdentity) -> SupportResult:
    """Decide whether *identity* on *profile* may be provisioned."""
    if profile.family is Family.DEBIAN:
        return _validate_debian(profile, identity)
    if profile.family is Family.RHEL:
        return _validate_rhel(identity)
    if profile.family is Family.FEDORA:
        return _validate_fedora(identity)
    if profile.family is Family.AMAZON:
        if identity.version == AMAZON_VERSION:
            return SupportResult(SupportDecision.SUPPORTED, "Amazon Linux 2")
        return SupportResult(
            SupportDecision.UNSUPPORTED,
            f"Only Amazon Linux 2 is supported (found '{identity.raw_version}').",
        )
    if profile.family is Family.SUSE:
        return _validate_unversioned(identity, SUSE_IDS, "SUSE")
    if profile.family is Family.ARCH:
        return _validate_unversioned(identity, ARCH_IDS, "Arch")
    return SupportResult(
        SupportDecision.UNSUPPORTED,
        f"Unsupported OS family '{profile.family.value}'.",
    )


def _validate_debian(profile: FamilyProfile, identity: HostIdentity) -> SupportResult:
    upstream = profile.repo_identity
    supported = SUPPORTED_DEBIAN_RELEASES.get(upstream, frozenset())

    if identity.id == upstream:
        codename = identity.codenames[0] if identity.codenames else None
        if identity.version in supported:
            return SupportResult(
                SupportDecision.SUPPORTED,
                f"{upstream} {identity.version}",
                release=codename,
                upstream_version=identity.version,
            )
        return SupportResult(
            SupportDecision.UNSUPPORTED,
            f"Unsupported {upstream} version '{identity.raw_version}'.",
            release=codename,
        )

    for codename in identity.codenames:
        mapped = DEBIAN_CODENAMES.get(codename)
        if mapped is None or mapped[0] != upstream:
            continue
        _, version = mapped
        if version in supported:
            return SupportResult(
                SupportDecision.SUPPORTED,
                f"{identity.id} tracks {upstream} {version} ({codename})",
                release=codename,
                upstream_version=version,
            )
        return SupportResult(
            SupportDecision.UNSUPPORTED,
            f"{identity.id} tracks {upstream} {version} ({codename}), which is not supported.",
            release=codename,
            upstream_version=version,
        )

    fallback = DEFAULT_DERIVATIVE_RELEASE.get(upstream)
    return SupportResult(
        SupportDecision.UNKNOWN,
        f"Unrecognised {upstream} derivative '{identity.id}'",
        warnings=[
            f"Could not map '{identity.id}' to a known {upstream} release; "
            f"proceeding without a version check using the '{fallback}' repository."
        ],
        release=fallback,
    )


def _validate_rhel(identity: HostIdentity) -> SupportResult:
    major = _major(identity.version)
    if major not in RHEL_MAJOR_VERSIONS:
        return SupportResult(
            SupportDecision.UNSUPPORTED,
            f"Unsupported RHEL-based version '{identity.raw_version}' (need 8 or 9).",
        )
    warnings: list[str] = []
    if identity.id not in RHEL_UPSTREAM_IDS:
        warnings.append(
            f"'{identity.id}' is not a recognised RHEL rebuild; treating it as RHEL {major}."
        )
    return SupportResult(
        SupportDecision.SUPPORTED,
        f"RHEL-compatible {major}",
        warnings=warnings,
        upstream_version=str(major),
    )


def _validate_fedora(identity: HostIdentity) -> SupportResult:
    major = _major(identity.version)
    if major is None or major < FEDORA_MINIMUM:
        return SupportResult(
            SupportDecision.UNSUPPORTED,
            f"Fedora {identity.raw_version or '?'} is not supported "
            f"(need {FEDORA_MINIMUM}+).",
        )
    return SupportResult(
        SupportDecision.SUPPORTED,
        f"Fedora {major}",
        upstream_version=str(major),
    )


def _validate_unversioned(
    identity: HostIdentity,
    known_ids: frozenset[str],
    label: str,
) -> SupportResult:
    if identity.id in known_ids:
        return SupportResult(SupportDecision.SUPPORTED, f"{label} ({identity.id})")
    return SupportResult(
        SupportDecision.UNKNOWN,
        f"Unrecognised {label} derivative '{identity.id}'",
        warnings=[f"'{identity.id}' is not a recognised {label} distribution; proceeding."],
    )


def _major(version: str) -> int | None:
    try:
        return Version(version).major
    except InvalidVersion:
        return None


__all__ = [
    "DEBIAN_CODENAMES",
    "SUPPORTED_DEBIAN_RELEASES",
    "SupportDecision",
    "SupportResult",
    "validate_support",
]
