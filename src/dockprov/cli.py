"""Typer-powered command line interface for ``dockprov``.

``install`` and ``uninstall`` build one immutable :class:`RunConfig` from the
configuration file and flags, then hand it to :class:`ProvisioningEngine`.
``detect`` is read-only and reports how the host would be classified.
"""
from __future__ import annotations

import json
import shutil
import textwrap
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, RunConfig, load_config
from .engine import ProvisioningEngine, ProvisionReport, Resolution
from .errors import ProvisionError
from .execution import ExecutionMode, Executor, Privilege, resolve_privilege
from .logging import (
    OperationScope,
    Reporter,
    StructuredLogger,
    configure_transcript,
    release_transcript,
)

console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to dockprov's YAML config file.",
)
OS_RELEASE_OPTION = typer.Option(
    None,
    "--os-release",
    dir_okay=False,
    hidden=True,
    help="Read host identity from this file instead of /etc/os-release.",
)
ASSUME_YES_OPTION = typer.Option(
    False,
    "--assume-yes",
    "-y",
    help="Automatic yes to prompts.",
)
CHANNEL_OPTION = typer.Option(
    None,
    "--channel",
    help="Docker repository channel: stable or test (default: stable).",
)
COMPOSE_OPTION = typer.Option(
    None,
    "--with-compose/--no-compose",
    help="Install the Docker Compose plugin (default: install).",
)
USER_OPTION = typer.Option(
    None,
    "--user",
    help="User to add to the docker group (default: the invoking user).",
)
SKIP_GROUP_ADD_OPTION = typer.Option(
    False,
    "--skip-group-add",
    help="Do not modify user groups.",
)
VERIFY_RUN_OPTION = typer.Option(
    None,
    "--verify-run/--no-verify-run",
    help="Run docker hello-world after install (default: when systemd is available).",
)
DRY_RUN_OPTION = typer.Option(
    False,
    "--dry-run",
    help="Print actions without executing them.",
)
VERBOSE_OPTION = typer.Option(
    False,
    "--verbose",
    help="Log every command before it runs.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit the detection result as JSON.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Install or remove Docker Engine across Linux distributions.

        Runs are idempotent and auditable; use --dry-run to see every command
        that would be executed without changing the host.
        """
    ).strip(),
)


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the dockprov version and exit.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"dockprov {__version__}")
        raise typer.Exit(code=0)
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


@app.command()
def install(
    assume_yes: bool = ASSUME_YES_OPTION,
    channel: str | None = CHANNEL_OPTION,
    with_compose: bool | None = COMPOSE_OPTION,
    user: str | None = USER_OPTION,
    skip_group_add: bool = SKIP_GROUP_ADD_OPTION,
    verify_run: bool | None = VERIFY_RUN_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    verbose: bool = VERBOSE_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
    os_release: Path | None = OS_RELEASE_OPTION,
) -> None:
    """Install Docker Engine, enable the service and set up group access."""
    _provision(
        "install",
        config_file=config_file,
        os_release=os_release,
        assume_yes=assume_yes,
        channel=channel,
        with_compose=with_compose,
        target_user=user,
        skip_group_add=skip_group_add,
        verify_run=verify_run,
        dry_run=dry_run,
        verbose=verbose,
    )


@app.command()
def uninstall(
    assume_yes: bool = ASSUME_YES_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    verbose: bool = VERBOSE_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
    os_release: Path | None = OS_RELEASE_OPTION,
) -> None:
    """Remove Docker packages, the repository configuration and its key."""
    _provision(
        "uninstall",
        config_file=config_file,
        os_release=os_release,
        assume_yes=assume_yes,
        dry_run=dry_run,
        verbose=verbose,
    )


@app.command()
def detect(
    json_output: bool = JSON_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
    os_release: Path | None = OS_RELEASE_OPTION,
) -> None:
    """Show how this host is classified. Changes nothing."""
    reporter = Reporter(console=console, err_console=err_console)
    settings = _load_settings(reporter, config_file, os_release)
    run = RunConfig(action="install", channel=settings.channel)
    executor = _build_executor(ExecutionMode(dry_run=True), reporter)
    engine = ProvisioningEngine(settings, run, executor, reporter, which=shutil.which)
    try:
        resolution = engine.inspect()
    except ProvisionError as exc:
        reporter.error(str(exc))
        raise typer.Exit(code=int(exc.exit_code)) from exc

    if json_output:
        typer.echo(json.dumps(resolution.to_dict(), indent=2, sort_keys=True))
        return
    console.print(_resolution_table(resolution))


def main() -> None:
    """Console script entry point."""
    app()


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------


def _provision(
    action: str,
    *,
    config_file: Path | None,
    os_release: Path | None,
    assume_yes: bool,
    dry_run: bool,
    verbose: bool,
    channel: str | None = None,
    with_compose: bool | None = None,
    target_user: str | None = None,
    skip_group_add: bool = False,
    verify_run: bool | None = None,
) -> None:
    reporter = Reporter(console=console, err_console=err_console)
    settings = _load_settings(reporter, config_file, os_release)
    try:
        run = RunConfig.from_config(
            settings,
            action="install" if action == "install" else "uninstall",
            channel=channel,
            with_compose=with_compose,
            target_user=target_user,
            skip_group_add=skip_group_add,
            verify_run=verify_run,
            dry_run=dry_run,
            verbose=verbose,
            assume_yes=assume_yes,
        )
    except ConfigError as exc:
        reporter.error(str(exc))
        raise typer.Exit(code=int(exc.exit_code)) from exc

    logger = StructuredLogger(settings.logs_dir, enabled=not run.dry_run)
    if not run.dry_run and configure_transcript(settings.logs_dir, verbose=run.verbose) is None:
        reporter.warn(f"Cannot write transcript under {settings.logs_dir}; continuing without it.")

    privilege = resolve_privilege()
    executor = _build_executor(
        ExecutionMode(dry_run=run.dry_run, verbose=run.verbose, privilege=privilege),
        reporter,
    )
    engine = ProvisioningEngine(
        settings,
        run,
        executor,
        reporter,
        confirm=_confirm,
        which=shutil.which,
    )

    try:
        with logger.operation(
            action,
            args=run.to_dict(),
            target={"kind": "host", "os_release": str(settings.os_release)},
        ) as op:
            op.add_step("privilege", detail=privilege.value)
            reporter.info(
                f"Starting Docker {action}"
                + (" (dry-run)" if run.dry_run else "")
                + ("" if privilege is not Privilege.NONE else "; no root or sudo available")
                + "."
            )
            try:
                report = engine.install() if action == "install" else engine.uninstall()
            except ProvisionError as exc:
                reporter.error(str(exc))
                op.error(
                    str(exc),
                    rc=int(exc.exit_code),
                    context={"warnings": list(reporter.warnings)},
                )
                raise typer.Exit(code=int(exc.exit_code)) from exc
            _record(op, report)
    finally:
        release_transcript()

    if report.warnings:
        console.print(
            f"[yellow]Completed with {len(report.warnings)} warning(s).[/yellow]"
        )


def _load_settings(
    reporter: Reporter,
    config_file: Path | None,
    os_release: Path | None,
) -> AppConfig:
    overrides: dict[str, object] = {}
    if os_release is not None:
        overrides["os_release"] = str(os_release)
    try:
        return load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        reporter.error(str(exc))
        raise typer.Exit(code=int(exc.exit_code)) from exc


def _build_executor(mode: ExecutionMode, reporter: Reporter) -> Executor:
    return Executor(mode, reporter)


def _confirm(prompt: str) -> bool:
    return typer.confirm(prompt, default=False)


def _record(op: OperationScope, report: ProvisionReport) -> None:
    for outcome in report.tolerated:
        op.add_step("tolerated", status="warning", detail=" ".join(outcome.argv))
    message = f"Docker {report.action} complete."
    if report.dry_run:
        message = f"Docker {report.action} dry-run complete."
    if report.warnings:
        op.warning(
            message,
            changed=report.changed,
            warnings=report.warnings,
            backups=report.backups,
            context=report.to_dict(),
        )
    else:
        op.success(
            message,
            changed=report.changed,
            backups=report.backups,
            context=report.to_dict(),
        )


def _resolution_table(resolution: Resolution) -> Table:
    data = resolution.to_dict()
    table = Table(title="Host classification", show_header=True, header_style="bold")
    table.add_column("Field")
    table.add_column("Value")
    rows = (
        ("ID", data["id"]),
        ("Version", data["version"] or "-"),
        ("ID_LIKE", " ".join(resolution.identity.like) or "-"),
        ("Codenames", ", ".join(resolution.identity.codenames) or "-"),
        ("Family", data["family"]),
        ("Package manager", data["package_manager"]),
        ("Repository identity", data["repo_identity"] or "-"),
        ("Matched by", data["matched_by"]),
        ("Support", data["support"]),
        ("Reason", data["reason"]),
        ("Release", data["release"] or "-"),
    )
    for field, value in rows:
        table.add_row(field, str(value))
    for message in resolution.support.warnings:
        table.add_row("Warning", message)
    return table


__all__ = ["app", "main"]
