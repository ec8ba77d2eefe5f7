"""Failure-mode tests for the structured logging subsystem."""
from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from conftest import make_reporter, reporter_output

from dockprov.logging import (
    LOGGER,
    TRANSCRIPT_LOG,
    StructuredLogger,
    configure_transcript,
    release_transcript,
)


def test_structured_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger gracefully disables itself when log directory cannot be created."""
    log_dir = tmp_path / "logs"

    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger.enabled is False

    with logger.operation("install", args={"dry_run": False}) as op:
        op.success("done", changed=0)


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so subsequent writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger.path

    original_open = Path.open

    def fail_once(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_once)

    with logger.operation("install") as op:
        op.success("done", changed=0)

    assert logger.enabled is False

    # Subsequent operations should not raise even though logger is disabled.
    with logger.operation("uninstall") as op:
        op.success("done", changed=0)


def test_disabled_logger_writes_nothing(tmp_path: Path) -> None:
    """Dry-run logging is disabled up front and never creates the directory."""
    logger = StructuredLogger(tmp_path / "logs", enabled=False)

    with logger.operation("install") as op:
        op.success("done")

    assert not (tmp_path / "logs").exists()


def test_operation_scope_warning_sanitises_context(tmp_path: Path) -> None:
    """Warnings should be recorded with JSON-safe context values."""
    logger = StructuredLogger(tmp_path / "logs")

    class Custom:
        def __str__(self) -> str:
            return "<custom>"

    with logger.operation("install", args={"path": Path("foo")}) as op:
        op.warning(
            "warned",
            warnings=("note",),
            errors=("err",),
            changed=1,
            backups=["docker.list.bak.20240101000000"],
            context={"path": Path("/etc/apt"), "obj": Custom()},
        )

    record = json.loads(logger.path.read_text(encoding="utf-8"))
    result = record["result"]
    assert record["args"] == {"path": "foo"}
    assert result["status"] == "warning"
    assert result["warnings"] == ["note"]
    assert result["errors"] == ["err"]
    assert result["backups"] == ["docker.list.bak.20240101000000"]
    assert result["context"] == {"path": "/etc/apt", "obj": "<custom>"}
    assert logger.path.stat().st_mode & 0o777 == 0o600


def test_operation_scope_error_defaults_error_list(tmp_path: Path) -> None:
    """Errors should default to the message when not provided."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("install") as op:
        op.error("boom", errors=None, rc=5, context={"value": {1, 2}})

    record = json.loads(logger.path.read_text(encoding="utf-8"))
    result = record["result"]
    assert result["status"] == "error"
    assert result["errors"] == ["boom"]
    assert result["rc"] == 5
    assert result["context"] == {"value": "{1, 2}"}


def test_unhandled_exception_is_recorded_as_error(tmp_path: Path) -> None:
    """An exception escaping the scope still produces an error record."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(RuntimeError), logger.operation("install"):
        raise RuntimeError("apt-get exploded")

    record = json.loads(logger.path.read_text(encoding="utf-8"))
    assert record["result"]["status"] == "error"
    assert record["result"]["errors"] == ["apt-get exploded"]


def test_steps_are_recorded_in_order(tmp_path: Path) -> None:
    """Intermediate steps are appended to the record."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("uninstall") as op:
        op.add_step("privilege", detail="sudo")
        op.add_step("tolerated", status="warning", detail="systemctl disable --now docker")

    record = json.loads(logger.path.read_text(encoding="utf-8"))
    assert [step["name"] for step in record["steps"]] == ["privilege", "tolerated"]
    assert record["steps"][1]["status"] == "warning"
    assert record["result"]["status"] == "success"


def test_transcript_captures_reporter_messages(tmp_path: Path) -> None:
    """Reporter output is mirrored to the transcript while it is attached."""
    path = configure_transcript(tmp_path / "logs")
    assert path == tmp_path / "logs" / TRANSCRIPT_LOG
    reporter = make_reporter()
    try:
        reporter.info("Detected Debian GNU/Linux 12 (bookworm).")
        reporter.warn("Test channel selected; using nightly builds where available.")
    finally:
        release_transcript()

    text = path.read_text(encoding="utf-8")
    assert "[INFO] Detected Debian GNU/Linux 12 (bookworm)." in text
    assert "[WARNING] Test channel selected" in text
    assert path.stat().st_mode & 0o777 == 0o600
    assert not any(
        isinstance(handler, logging.FileHandler) for handler in LOGGER.handlers
    )
    assert reporter.warnings == ["Test channel selected; using nightly builds where available."]
    assert "WARN" in reporter_output(reporter)


def test_transcript_unavailable_returns_none(tmp_path: Path) -> None:
    """An unwritable transcript location is reported as ``None``."""
    blocker = tmp_path / "logs"
    blocker.write_text("not a directory", encoding="utf-8")

    assert configure_transcript(blocker) is None
