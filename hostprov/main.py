"""
hostprov — CLI entrypoint.

Usage:
    hostprov run alice
    hostprov run alice --dry-run --json
    hostprov plan
    hostprov config check
    hostprov status
    hostprov adapters
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from hostprov import __version__
from hostprov.core.observability.logging_config import resolve_level, setup_logging

_STATUS_COLORS = {
    "success": "green",
    "partial_failure": "yellow",
    "fatal_failure": "red",
}


@click.group()
@click.version_option(version=__version__, prog_name="hostprov")
@click.option("--verbose", "-v", is_flag=True, help="Show more detail in command output.")
@click.option("--quiet", "-q", is_flag=True, help="Only log errors.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to host.yml (default: auto-detect, else built-in defaults).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """hostprov — idempotent provisioning for a single Ubuntu host."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        flag = "DEBUG"
    elif quiet:
        flag = "ERROR"
    else:
        flag = None

    setup_logging(level=resolve_level(flag))


def _config_path(ctx: click.Context, local: str | None) -> Path | None:
    return Path(local) if local else ctx.obj.get("config_path")


@cli.command()
@click.argument("target")
@click.option(
    "--config",
    "-c",
    "local_config",
    type=click.Path(exists=False),
    default=None,
    help="Path to host.yml (overrides the global --config).",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Print the report as JSON.")
@click.option(
    "--report-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Also write the JSON report to this file.",
)
@click.option("--dry-run", is_flag=True, help="Check preconditions only; change nothing.")
@click.option("--timeout", type=float, default=None, help="Run timeout in seconds.")
@click.option(
    "--simulate",
    is_flag=True,
    help="Run against an in-memory Ubuntu host instead of this machine.",
)
@click.pass_context
def run(
    ctx: click.Context,
    target: str,
    local_config: str | None,
    as_json: bool,
    report_file: str | None,
    dry_run: bool,
    timeout: float | None,
    simulate: bool,
) -> None:
    """Provision this host for TARGET (the account given docker access).

    Exit status: 0 success, 3 partial failure, 4 fatal failure,
    5 validation or plan error, 1 configuration error.

    Examples:

        sudo hostprov run alice

        hostprov run alice --dry-run

        hostprov run alice --simulate --json
    """
    from hostprov.core.use_cases.provision import provision

    probe = registry = None
    if simulate:
        from hostprov.adapters import AdapterRegistry, memory_adapters
        from hostprov.core.facts.memory import MemoryHost, MemoryProbe

        host = MemoryHost.ubuntu(target)
        probe = MemoryProbe(host)
        registry = AdapterRegistry()
        registry.register_all(memory_adapters(host))

    result = provision(
        target,
        config_path=_config_path(ctx, local_config),
        dry_run=dry_run,
        timeout=timeout,
        probe=probe,
        registry=registry,
        persist=not simulate,
    )
    report = result.report

    if report_file:
        try:
            report.write(Path(report_file))
        except OSError as e:
            click.secho(f"❌ Could not write report to {report_file}: {e}", fg="red", err=True)

    if as_json:
        click.echo(report.to_json())
        sys.exit(report.exit_code)

    mode_label = "[simulated] " if simulate else ""
    click.echo()
    click.echo(mode_label + report.render_text())
    click.echo()
    click.secho(
        f"Status: {report.status} (exit {report.exit_code})",
        fg=_STATUS_COLORS.get(report.status, "white"),
        bold=True,
    )
    sys.exit(report.exit_code)


@cli.command()
@click.argument("target", required=False, default="<target>")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(ctx: click.Context, target: str, as_json: bool) -> None:
    """Show the ordered step plan without probing or changing the host."""
    from hostprov.core.use_cases.plan import show_plan

    result = show_plan(target, config_path=ctx.obj.get("config_path"))
    exit_code = 0
    if result.error:
        exit_code = 1 if result.error_type == "config" else 5

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(exit_code)

    assert result.plan is not None
    click.secho(f"\n📋 Plan for '{target}' — {len(result.plan)} step(s)", fg="cyan", bold=True)
    for entry in result.plan.to_dict()["steps"]:
        flag = "" if entry["criticality"] == "fatal" else " [advisory]"
        click.echo(f"   {entry['position']:>2}. {entry['name']}{flag}")
        if entry["depends_on"]:
            click.echo(f"       after: {', '.join(entry['depends_on'])}")
        if ctx.obj.get("verbose"):
            click.echo(f"       does:  {', '.join(entry['actions'])}")
            undo = ", ".join(entry["rollback"]) if entry["rollback"] is not None else "not undoable"
            click.echo(f"       undo:  {undo}")
    click.echo()


@cli.group()
def config() -> None:
    """Host configuration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate host.yml configuration."""
    from hostprov.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        click.secho("✅ Configuration is valid", fg="green", bold=True)
        click.echo(f"   Source: {result.config_path or 'built-in defaults'}")
        click.echo(f"   Steps:  {result.step_count}")
    else:
        click.secho("❌ Configuration errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    click.echo()
    if not result.valid:
        sys.exit(1)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show the last recorded run on this host."""
    from hostprov.core.use_cases.status import get_status

    result = get_status(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    if not result.has_run:
        click.echo(f"No runs recorded in {result.state_dir}.")
        return

    assert result.state is not None
    last = result.state.last_run
    click.secho(f"\n🖥  {result.state.hostname or 'this host'}", fg="cyan", bold=True)
    click.echo(f"   Last run: {last.run_id} for '{last.target}' — ", nl=False)
    click.secho(last.status, fg=_STATUS_COLORS.get(last.status, "white"))
    click.echo(f"   Ended:    {last.ended_at}")
    click.echo(
        f"   Steps:    {last.steps_applied} applied, {last.steps_skipped} skipped, "
        f"{last.steps_failed} failed of {last.steps_total}"
    )

    if result.state.steps:
        click.echo()
        width = max(len(name) for name in result.state.steps)
        for name, step in result.state.steps.items():
            changed = f"  (changed {step.last_changed_at})" if step.last_changed_at else ""
            click.echo(f"     • {name:<{width}}  {step.last_status}{changed}")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def adapters(as_json: bool) -> None:
    """Show which host tools the adapters can reach."""
    from hostprov.adapters import AdapterRegistry, system_adapters

    registry = AdapterRegistry()
    registry.register_all(system_adapters())
    status_map = registry.adapter_status()

    if as_json:
        click.echo(json.dumps(status_map, indent=2))
        return

    for name, info in status_map.items():
        marker, color = ("✓", "green") if info["available"] else ("✗", "red")
        click.secho(f"   {marker} {name:<11}", fg=color, nl=False)
        click.echo(f" {', '.join(info['operations'])}")


if __name__ == "__main__":
    cli()
