"""Trust-verified package repository configuration.

:class:`RepositoryProvisioner` performs the repository steps in a fixed order:

1. ensure the trust tooling (``gpg``) is present;
2. download the signing key to a private temporary file;
3. compare its fingerprint with the pinned value (fatal on mismatch; the
   temporary file is removed either way);
4. install the verified key at its canonical path;
5. render the repository descriptor;
6. back up an existing repository file that does not reference the upstream host;
7. write the new repository file;
8. refresh the package-manager metadata.

Under dry-run only step 1 is routed through the executor (which logs it); the
rest collapse into a single logged statement of intent with no network or
filesystem I/O.
"""
from __future__ import annotations

import os
import shutil
import tempfile
import urllib.request
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .errors import FatalPrecondition, VerificationFailure
from .execution import Executor
from .logging import Reporter

DOCKER_DEBIAN_FINGERPRINT = "9DC8 5822 9FC7 DD38 854A  E2D8 8D81 803C 0EBF CD88"
DOCKER_RPM_FINGERPRINT = "060A 61C5 1B55 8A7F 742B  77AA C52F EB6B 621E 9F35"
DEFAULT_BASE_URL = "https://download.docker.com/linux"


@dataclass(frozen=True, slots=True)
class RepositorySource:
    """Everything needed to configure one upstream package source."""

    base_url: str
    release: str
    channel: str
    key_url: str
    key_path: Path
    fingerprint: str
    config_path: Path

    @property
    def upstream_host(self) -> str:
        """Host name used to recognise files that already point upstream."""
        return self.base_url.split("://", 1)[-1].split("/", 1)[0]


@dataclass(frozen=True, slots=True)
class RepositoryOutcome:
    """What the provisioner changed."""

    written: bool
    backup: Path | None = None
    dry_run: bool = False


Fetcher = Callable[[str, Path], None]
FingerprintReader = Callable[[Path], str | None]


def fetch_url(url: str, dest: Path, *, timeout: float = 30.0) -> None:
    """Download *url* into *dest* over HTTPS.

    Proxy environment variables are honoured by :mod:`urllib.request`.
    """
    request = urllib.request.Request(url, headers={"User-Agent": "dockprov"})
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:  # noqa: S310
            dest.write_bytes(response.read())
    except OSError as exc:
        raise FatalPrecondition(f"Failed to download {url}: {exc}") from exc


def normalize_fingerprint(value: str) -> str:
    """Strip whitespace and upper-case a fingerprint for comparison."""
    return "".join(value.split()).upper()


def fingerprints_match(actual: str | None, expected: str) -> bool:
    """Exact comparison, insensitive only to case and whitespace."""
    if not actual:
        return False
    return normalize_fingerprint(actual) == normalize_fingerprint(expected)


def read_key_fingerprint(executor: Executor, key_file: Path) -> str | None:
    """Return the primary key fingerprint of *key_file* without importing it."""
    result = executor.query(
        ["gpg", "--batch", "--with-colons", "--import-options", "show-only",
         "--import", str(key_file)]
    )
    if result.returncode != 0:
        return None
    for line in (result.stdout or "").splitlines():
        fields = line.split(":")
        if fields[0] == "fpr" and len(fields) > 9:
            return fields[9]
    return None


class RepositoryProvisioner:
    """Configure a repository only after its signing key has been verified."""

    def __init__(
        self,
        executor: Executor,
        reporter: Reporter,
        *,
        fetch: Fetcher | None = None,
        fingerprint_reader: FingerprintReader | None = None,
        which: Callable[[str], str | None] = shutil.which,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Wire the provisioner to its collaborators."""
        self.executor = executor
        self.reporter = reporter
        self.fetch = fetch or fetch_url
        self.fingerprint_reader = fingerprint_reader or (
            lambda path: read_key_fingerprint(executor, path)
        )
        self.which = which
        self.clock = clock

    def ensure_trust_tooling(
        self,
        install_commands: Sequence[Sequence[str]],
        *,
        env: dict[str, str] | None = None,
    ) -> None:
        """Install ``gpg`` through the package manager when it is missing."""
        if self.which("gpg"):
            return
        self.reporter.info("gpg not found; installing it before verifying keys.")
        for command in install_commands:
            self.executor.run_privileged(command, env=env)

    def provision(
        self,
        source: RepositorySource,
        content: str,
        *,
        refresh: Sequence[Sequence[str]] = (),
        after_key: Sequence[Sequence[str]] = (),
        env: dict[str, str] | None = None,
    ) -> RepositoryOutcome:
        """Verify the key, then write *content* to ``source.config_path``."""
        if self.executor.dry_run:
            summary = content.strip().splitlines()[0] if content.strip() else ""
            self.reporter.info(
                f"[dry-run] Would verify {source.key_url} against "
                f"{normalize_fingerprint(source.fingerprint)}, install it at "
                f"{source.key_path} and configure {source.config_path}: {summary}"
            )
            return RepositoryOutcome(written=False, dry_run=True)

        self._install_verified_key(source)
        for command in after_key:
            self.executor.run_privileged(command, tolerate=True)

        backup = self._backup_foreign(source)
        written = self.executor.write_file(source.config_path, content, mode=0o644)
        if written:
            self.reporter.info(f"Configured repository {source.config_path}.")
        else:
            self.reporter.info(f"Repository {source.config_path} already up to date.")
        for command in refresh:
            self.executor.run_privileged(command, env=env)
        return RepositoryOutcome(written=written, backup=backup)

    def _install_verified_key(self, source: RepositorySource) -> None:
        fd, temp_name = tempfile.mkstemp(prefix="dockprov-key-")
        os.close(fd)
        temp = Path(temp_name)
        try:
            self.fetch(source.key_url, temp)
            actual = self.fingerprint_reader(temp)
            if not fingerprints_match(actual, source.fingerprint):
                raise VerificationFailure(
                    source.key_url,
                    normalize_fingerprint(source.fingerprint),
                    normalize_fingerprint(actual) if actual else None,
                )
            self.reporter.info(f"Verified signing key {normalize_fingerprint(actual or '')}.")
            self.executor.install_file(temp, source.key_path, mode=0o644, make_parents=True)
        finally:
            temp.unlink(missing_ok=True)

    def _backup_foreign(self, source: RepositorySource) -> Path | None:
        path = source.config_path
        if not path.is_file():
            return None
        try:
            existing = path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            existing = ""
        if source.upstream_host in existing:
            return None
        suffix = self.clock().strftime("%Y%m%d%H%M%S")
        backup = self.executor.backup_file(path, suffix=suffix)
        if backup is not None:
            self.reporter.warn(f"Backed up existing {path} to {backup}.")
        return backup


__all__ = [
    "DEFAULT_BASE_URL",
    "DOCKER_DEBIAN_FINGERPRINT",
    "DOCKER_RPM_FINGERPRINT",
    "RepositoryOutcome",
    "RepositoryProvisioner",
    "RepositorySource",
    "fetch_url",
    "fingerprints_match",
    "normalize_fingerprint",
    "read_key_fingerprint",
]
