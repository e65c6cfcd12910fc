"""
mdeinstall — CLI entrypoint.

Usage:
    mdeinstall --help
    mdeinstall install --onboarding-script WindowsDefenderATPOnboardingScript.cmd
    mdeinstall uninstall --offboarding-script WindowsDefenderATPOffboardingScript.cmd
    mdeinstall status --json

This module is the only place the process exits: the engine returns a
RunOutcome and its exit code becomes the process exit code.
"""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from mdeinstall import __version__
from mdeinstall.core.observability.logging_config import flush_logging, setup_logging


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="mdeinstall")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, dir_okay=False),
    default=None,
    help="Path to mdeinstall.yml (default: auto-detect).",
)
@click.option("--log-file", default=None, help="Also write logs to this file.")
@click.option("--mock", is_flag=True, help="Rehearse against an in-memory host; change nothing.")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
    log_file: str | None,
    mock: bool,
) -> None:
    """Install or remove the Defender for Endpoint package on down-level servers."""
    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["mock"] = mock

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("MDEI_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=log_file or os.environ.get("MDEI_LOG_FILE"),
        log_file_level=os.environ.get("MDEI_LOG_FILE_LEVEL"),
    )

    if ctx.invoked_subcommand is None:
        ctx.invoke(install)


def _deploy_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by ``install`` and ``uninstall``."""
    options = [
        click.option("--onboarding-script", type=click.Path(dir_okay=False, path_type=Path),
                     default=None, help="Onboarding script to run after installing."),
        click.option("--offboarding-script", type=click.Path(dir_okay=False, path_type=Path),
                     default=None, help="Offboarding script to run before the transaction."),
        click.option("--ui", is_flag=True, help="Show the installer UI."),
        click.option("--passive", is_flag=True, help="Put the protection engine in passive mode."),
        click.option("--no-msi-log", is_flag=True, help="Do not write the msiexec log."),
        click.option("--no-etl", is_flag=True, help="Do not capture an event trace."),
        click.option("--dev-mode", is_flag=True, help="Use the developer-build package."),
        click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@cli.command()
@_deploy_options
@click.pass_context
def install(ctx: click.Context, **options: Any) -> None:
    """Install or upgrade the package (default action)."""
    _run_action(ctx, "install", workspace_id=None, **options)


@cli.command()
@_deploy_options
@click.option("--remove-workspace", "workspace_id", default=None,
              help="Detach the legacy monitoring agent from this workspace id first.")
@click.pass_context
def uninstall(ctx: click.Context, **options: Any) -> None:
    """Remove the package."""
    _run_action(ctx, "uninstall", **options)


def _run_action(
    ctx: click.Context,
    action: str,
    *,
    onboarding_script: Path | None = None,
    offboarding_script: Path | None = None,
    ui: bool = False,
    passive: bool = False,
    no_msi_log: bool = False,
    no_etl: bool = False,
    dev_mode: bool = False,
    as_json: bool = False,
    workspace_id: str | None = None,
) -> None:
    from mdeinstall.core.config.loader import ConfigError, load_settings
    from mdeinstall.core.context import DeployAction, RunContext
    from mdeinstall.core.models.signal import ExitCode
    from mdeinstall.core.services.deploy import LifecycleController

    try:
        settings = load_settings(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        _exit(ExitCode.INVALID_PARAMETER)

    package_dir = settings.package_dir or Path.cwd()
    run_ctx = RunContext(
        action=DeployAction(action),
        settings=settings,
        onboarding_script=onboarding_script,
        offboarding_script=offboarding_script,
        ui=ui,
        passive=passive,
        no_msi_log=no_msi_log,
        no_etl=no_etl,
        dev_mode=dev_mode,
        workspace_id=workspace_id,
        package_dir=package_dir,
        log_dir=settings.log_dir or package_dir,
    )

    system = _system(ctx, run_ctx.msi_path, installed=run_ctx.action is DeployAction.UNINSTALL)
    outcome = LifecycleController(run_ctx, system).run()

    if as_json:
        click.echo(json.dumps(outcome.to_dict(), indent=2))
        _exit(outcome.exit_code)

    if not ctx.obj.get("quiet"):
        for warning in outcome.warnings:
            click.secho(f"⚠️  {warning}", fg="yellow", err=True)
        for artifact in outcome.artifacts:
            click.echo(f"   📄 {artifact}")

    if outcome.ok:
        click.secho(f"✅ {action.capitalize()} completed on {outcome.host}", fg="green", bold=True)
    else:
        assert outcome.signal is not None  # set whenever the outcome failed
        click.secho(f"❌ {outcome.signal}", fg="red", bold=True, err=True)
    _exit(outcome.exit_code)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show what the installer would see on this host.  Changes nothing."""
    from mdeinstall.core.config.loader import ConfigError, load_settings
    from mdeinstall.core.models.signal import ExitCode
    from mdeinstall.core.use_cases.status import get_status

    try:
        settings = load_settings(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        _exit(ExitCode.INVALID_PARAMETER)

    package_dir = settings.package_dir or Path.cwd()
    system = _system(ctx, package_dir / settings.msi_name)
    result = get_status(system, log_dir=settings.log_dir or package_dir)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        _exit(ExitCode.INTERNAL if result.error else ExitCode.SUCCESS)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        _exit(ExitCode.UNEXPECTED_STATE)

    click.secho(f"\n🖥️  {result.host}", fg="cyan", bold=True)
    platform = result.platform or "unsupported"
    click.echo(f"   OS: {result.os_version} ({platform}, {result.installation_type or '?'})")
    click.echo(f"   Administrator: {'yes' if result.administrator else 'no'}")

    click.echo()
    click.secho("   Services:", fg="white", bold=True)
    for name, service in result.services.items():
        state = service.state if service else "not registered"
        click.echo(f"     • {name}: {state}")
    if result.engine_version:
        click.echo(f"     engine {result.engine_version}")

    click.echo()
    if result.product:
        click.echo(f"   Product: {result.product.display_name} {result.product.display_version}")
        click.echo(f"            {result.product.uninstall_id}")
    else:
        click.echo("   Product: not installed")
    click.echo(f"   Onboarding: {result.onboarding.value.replace('_', ' ')}")

    if result.last_run:
        run = result.last_run
        color = "green" if run.status == "ok" else "red"
        click.echo()
        click.echo(f"   Last run: {run.action} at {run.timestamp} — ", nl=False)
        click.secho(f"{run.exit_name} ({run.exit_code})", fg=color)
    click.echo()


def _system(ctx: click.Context, msi_path: Path, *, installed: bool = False):
    """Real host, or the rehearsal fake with ``--mock``."""
    from mdeinstall.core.models.signal import ExitCode

    if ctx.obj.get("mock"):
        from mdeinstall.adapters.mock import FakeSystem

        return FakeSystem.rehearsal(msi_path, installed=installed)

    from mdeinstall.adapters.windows import WindowsSystem

    try:
        return WindowsSystem()
    except OSError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        _exit(ExitCode.UNSUPPORTED_DISTRO)


def _exit(code: int) -> None:
    flush_logging()
    sys.exit(int(code))


if __name__ == "__main__":
    cli()
