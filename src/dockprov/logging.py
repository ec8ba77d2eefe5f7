"""Console reporting and structured audit logging for dockprov.

Two sinks are maintained:

* :class:`Reporter` prints human-readable ``info``/``warn``/``error`` lines to
  the terminal via Rich and mirrors them to the stdlib ``dockprov`` logger so a
  transcript handler (see :func:`configure_transcript`) can persist them.
* :class:`StructuredLogger` appends one JSON record per CLI operation to
  ``operations.jsonl``. It never raises: when the log directory is unavailable
  or a write fails, the logger disables itself and the run carries on.
"""
from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from rich.console import Console
from rich.markup import escape

LOGGER_NAME = "dockprov"
LOGGER = logging.getLogger(LOGGER_NAME)
LOGGER.addHandler(logging.NullHandler())

OPERATIONS_LOG = "operations.jsonl"
TRANSCRIPT_LOG = "dockprov.log"


class Reporter:
    """Terminal reporter implementing the ``info``/``warn``/``error`` contract."""

    def __init__(
        self,
        console: Console | None = None,
        err_console: Console | None = None,
    ) -> None:
        """Create a reporter writing to *console* (stdout) and *err_console* (stderr)."""
        self.console = console or Console(highlight=False)
        self.err_console = err_console or Console(stderr=True, highlight=False)
        self.warnings: list[str] = []

    def info(self, message: str) -> None:
        """Report progress."""
        self.console.print(f"[green]INFO[/green]  {escape(message)}")
        LOGGER.info(message)

    def warn(self, message: str) -> None:
        """Report a non-fatal problem and remember it for the final summary."""
        self.warnings.append(message)
        self.err_console.print(f"[yellow]WARN[/yellow]  {escape(message)}")
        LOGGER.warning(message)

    def error(self, message: str) -> None:
        """Report a fatal problem."""
        self.err_console.print(f"[red]ERROR[/red] {escape(message)}")
        LOGGER.error(message)


def configure_transcript(
    logs_dir: Path,
    *,
    verbose: bool = False,
) -> Path | None:
    """Attach a private transcript file handler to the ``dockprov`` logger.

    Returns the transcript path, or ``None`` when the directory is not
    writable (for example when running unprivileged).
    """
    LOGGER.setLevel(logging.DEBUG if verbose else logging.INFO)
    path = logs_dir / TRANSCRIPT_LOG
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        os.close(fd)
        handler = logging.FileHandler(path, encoding="utf-8")
    except OSError:
        return None
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    )
    handler.set_name(TRANSCRIPT_LOG)
    LOGGER.addHandler(handler)
    return path


def release_transcript() -> None:
    """Detach and close any transcript handler added by :func:`configure_transcript`."""
    for handler in list(LOGGER.handlers):
        if handler.get_name() == TRANSCRIPT_LOG:
            LOGGER.removeHandler(handler)
            handler.close()


class OperationScope:
    """Collects the outcome of a single logged operation."""

    def __init__(
        self,
        logger: StructuredLogger,
        name: str,
        args: Mapping[str, object] | None,
        target: Mapping[str, object] | None,
    ) -> None:
        """Bind the scope to *logger* for the operation *name*."""
        self._logger = logger
        self.name = name
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.result: dict[str, object] | None = None
        self.steps: list[dict[str, object]] = []
        self._started = time.monotonic()

    def add_step(self, name: str, *, status: str = "info", detail: str = "") -> None:
        """Append a named intermediate step to the record."""
        self.steps.append({"name": name, "status": status, "detail": detail})

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] = (),
        backups: Sequence[str] = (),
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a successful outcome."""
        self._set("success", message, changed=changed, warnings=warnings,
                  backups=backups, context=context)

    def warning(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] = (),
        errors: Sequence[str] = (),
        backups: Sequence[str] = (),
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record an outcome that completed with warnings."""
        self._set("warning", message, changed=changed, warnings=warnings,
                  errors=errors, backups=backups, context=context)

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a failed outcome. *errors* defaults to ``[message]``."""
        self._set("error", message, errors=list(errors or [message]), rc=rc,
                  context=context)

    def _set(
        self,
        status: str,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] = (),
        errors: Sequence[str] = (),
        backups: Sequence[str] = (),
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": list(warnings),
            "errors": list(errors),
            "backups": list(backups),
            "context": _sanitize(dict(context or {})),
        }
        if rc is not None:
            result["rc"] = rc
        self.result = result

    def duration_ms(self) -> int:
        """Milliseconds elapsed since the scope opened."""
        return int((time.monotonic() - self._started) * 1000)


class StructuredLogger:
    """Append-only JSON-lines audit log of CLI operations."""

    def __init__(self, log_dir: Path, *, enabled: bool = True) -> None:
        """Prepare *log_dir*; disable silently when it cannot be created."""
        self._log_dir = log_dir
        self._operations_log_path = log_dir / OPERATIONS_LOG
        self._enabled = enabled
        if not enabled:
            return
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    @property
    def enabled(self) -> bool:
        """Whether records are still being written."""
        return self._enabled

    @property
    def path(self) -> Path:
        """Location of the operations log."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        name: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Open a scope for *name*; the record is written when the block exits."""
        scope = OperationScope(self, name, args, target)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(str(exc) or type(exc).__name__)
            raise
        finally:
            if scope.result is None:
                scope.success("completed")
            self._write(scope)

    def _write(self, scope: OperationScope) -> None:
        if not self._enabled:
            return
        record = {
            "ts": datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z"),
            "op": scope.name,
            "args": _sanitize(scope.args),
            "target": _sanitize(scope.target),
            "result": scope.result,
            "steps": scope.steps,
            "duration_ms": scope.duration_ms(),
        }
        try:
            created = not self._operations_log_path.exists()
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
            if created:
                self._operations_log_path.chmod(0o600)
        except OSError:
            self._enabled = False


def _sanitize(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_sanitize(item) for item in value]
    return str(value)


__all__ = [
    "LOGGER",
    "OperationScope",
    "Reporter",
    "StructuredLogger",
    "configure_transcript",
    "release_transcript",
]
