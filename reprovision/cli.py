"""reprovision CLI — capture a machine, then converge another one onto it."""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from reprovision import __version__
from reprovision.config import DEFAULT_ROOT_NAME, EngineContext, load_config
from reprovision.envelope import Envelope
from reprovision.errors import ReprovisionError
from reprovision.logging_utils import configure_logging

console = Console()

_STATUS_STYLE = {
    "succeeded": "[green]ok[/]",
    "failed": "[red]FAILED[/]",
    "planned": "[cyan]planned[/]",
}


@dataclass
class CliOptions:
    home: str | None
    state_dir: str | None
    catalog_dir: str | None
    profiles_dir: str | None
    config_path: str | None
    driver: str | None
    as_json: bool
    verbose: bool

    def build_context(self) -> EngineContext:
        home = Path(self.home).expanduser() if self.home else Path.home()
        config_path = (
            Path(self.config_path).expanduser()
            if self.config_path
            else home / DEFAULT_ROOT_NAME / "config.yaml"
        )
        context = EngineContext.create(
            home,
            load_config(config_path),
            state_dir=self.state_dir,
            catalog_dir=self.catalog_dir,
            profiles_dir=self.profiles_dir,
        )
        if self.driver:
            context = dataclasses.replace(
                context, driver=dataclasses.replace(context.driver, kind=self.driver)
            )
        return context


@click.group()
@click.version_option(version=__version__)
@click.option("--home", envvar="REPROVISION_HOME", default=None, help="Home directory to manage (default: yours)")
@click.option("--state-dir", envvar="REPROVISION_STATE_DIR", default=None, help="State store directory")
@click.option("--catalog", "catalog_dir", envvar="REPROVISION_CATALOG", default=None, help="Module catalog directory")
@click.option("--profiles-dir", envvar="REPROVISION_PROFILES_DIR", default=None, help="Where captures are written and profiles looked up")
@click.option("--config", "config_path", envvar="REPROVISION_CONFIG", default=None, help="Engine config file")
@click.option("--driver", type=click.Choice(["command", "memory"]), default=None, help="Override the configured install driver")
@click.option("--json", "as_json", is_flag=True, help="Print the result envelope as JSON on stdout")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging on stderr")
@click.pass_context
def main(ctx, home, state_dir, catalog_dir, profiles_dir, config_path, driver, as_json, verbose):
    """reprovision — declarative workstation provisioning.

    Capture what is installed and configured on one machine into a portable
    bundle, then plan, apply, verify and (if needed) revert that desired
    state on another.
    """
    configure_logging(verbose)
    ctx.obj = CliOptions(
        home=home,
        state_dir=state_dir,
        catalog_dir=catalog_dir,
        profiles_dir=profiles_dir,
        config_path=config_path,
        driver=driver,
        as_json=as_json,
        verbose=verbose,
    )


def _emit(
    ctx: click.Context,
    command: str,
    operation: Callable[[EngineContext], Envelope],
    render: Callable[[dict], None],
) -> None:
    options: CliOptions = ctx.obj
    try:
        context = options.build_context()
    except ReprovisionError as e:
        envelope = Envelope.failure(command, e)
    else:
        if context.log_file is not None:
            configure_logging(options.verbose, context.log_file)
        envelope = operation(context)

    if options.as_json:
        click.echo(envelope.to_json())
    elif envelope.error:
        _render_error(envelope.error)
        if envelope.data:
            render(envelope.data)
    else:
        render(envelope.data or {})
    ctx.exit(envelope.exit_code)


# ── Capture ──────────────────────────────────────────────────────────


@main.command()
@click.option("--output", "-o", default=None, help="Artifact path (default: <profiles-dir>/<machine>-<time>.zip)")
@click.option("--module", "-m", "modules", multiple=True, help="Only capture these modules")
@click.option("--include-sensitive-modules", is_flag=True, help="Also capture modules marked sensitivity: high")
@click.pass_context
def capture(ctx, output: str | None, modules: tuple, include_sensitive_modules: bool):
    """Capture installed packages and module configs into a bundle artifact."""
    from reprovision.engine import capture_command

    _emit(
        ctx,
        "capture",
        lambda context: capture_command(
            context,
            output,
            module_ids=list(modules) or None,
            include_sensitive_modules=include_sensitive_modules,
        ),
        _render_capture,
    )


def _render_capture(data: dict) -> None:
    table = Table(title=f"Modules ({len(data.get('modules', []))})")
    table.add_column("Module", style="cyan")
    table.add_column("Status")
    table.add_column("Files", justify="right")
    table.add_column("Note")
    for module in data.get("modules", []):
        note = module["error"] or module["reason"]
        if module["sensitiveExcluded"]:
            note = f"{len(module['sensitiveExcluded'])} sensitive file(s) withheld"
        table.add_row(module["moduleId"], module["status"], str(len(module["files"])), escape(note))
    console.print(table)
    for warning in data.get("metadata", {}).get("warnings", []):
        console.print(f"  [yellow]![/] {escape(warning)}")
    console.print(
        f"\n[green]Captured {len(data.get('packages', []))} packages to:[/] {data.get('artifact')}"
    )


# ── Plan / Apply / Restore ───────────────────────────────────────────


@main.command()
@click.argument("profile")
@click.pass_context
def plan(ctx, profile: str):
    """Show what apply would change. PROFILE is an artifact, directory or manifest."""
    from reprovision.engine import plan_command

    _emit(ctx, "plan", lambda context: plan_command(context, profile, cwd=Path.cwd()), _render_plan)


def _render_plan(data: dict) -> None:
    plan_data = data.get("plan", {})
    steps = plan_data.get("steps", [])
    if not steps:
        console.print("[green]Already converged.[/] Nothing to do.")
    else:
        table = Table(title=f"Plan ({len(steps)} steps)")
        table.add_column("#", style="dim", width=4)
        table.add_column("Action", style="cyan")
        table.add_column("Subject")
        table.add_column("Detail")
        for i, step in enumerate(steps):
            subject = step.get("packageId") or step.get("target", "")
            detail = step.get("wouldDo") or step.get("note") or step.get("strategy", "")
            table.add_row(str(i), step["kind"], escape(subject), escape(detail))
        console.print(table)
    for warning in plan_data.get("warnings", []):
        console.print(f"  [yellow]![/] {escape(warning)}")


@main.command()
@click.argument("profile")
@click.option("--dry-run", is_flag=True, help="Compute and annotate the plan without changing anything")
@click.pass_context
def apply(ctx, profile: str, dry_run: bool):
    """Install packages and restore configs until the machine matches PROFILE."""
    from reprovision.engine import apply_command

    _emit(
        ctx,
        "apply",
        lambda context: apply_command(context, profile, dry_run=dry_run, cwd=Path.cwd()),
        _render_run,
    )


@main.command()
@click.argument("profile")
@click.option("--enable-restore", is_flag=True, help="Required: allow config files to be written")
@click.option("--dry-run", is_flag=True, help="Show the restore steps without writing")
@click.pass_context
def restore(ctx, profile: str, enable_restore: bool, dry_run: bool):
    """Replay only the config restores of PROFILE (packages are left alone)."""
    from reprovision.engine import restore_command

    _emit(
        ctx,
        "restore",
        lambda context: restore_command(
            context, profile, enable_restore=enable_restore, dry_run=dry_run, cwd=Path.cwd()
        ),
        _render_run,
    )


@main.command()
@click.pass_context
def revert(ctx):
    """Undo the file changes of the most recent apply or restore."""
    from reprovision.engine import revert_command

    _emit(ctx, "revert", revert_command, _render_run)


def _render_run(data: dict) -> None:
    run = data.get("run", {})
    steps = run.get("steps", [])
    if data.get("dryRun"):
        _render_plan(data)
        return
    if steps:
        table = Table(title=f"{run.get('command', 'run').title()} ({len(steps)} steps)")
        table.add_column("#", style="dim", width=4)
        table.add_column("Kind", style="cyan")
        table.add_column("Subject")
        table.add_column("Status", justify="center")
        table.add_column("Message")
        for step in steps:
            table.add_row(
                str(step["index"]),
                step["kind"],
                escape(step["subject"]),
                _STATUS_STYLE.get(step["status"], step["status"]),
                escape(step["message"]),
            )
        console.print(table)
    else:
        console.print("[green]Nothing to do.[/]")

    summary = f"Outcome: {run.get('outcome', '?')}"
    if run.get("backupDir"):
        summary += f"\nBackups: {run['backupDir']}"
    if run.get("revertedRunId"):
        summary += f"\nReverted run: {run['revertedRunId']}"
    console.print(Panel(summary, title=f"Run {run.get('runId', '')}"))
    for warning in run.get("warnings", []):
        console.print(f"  [yellow]![/] {escape(warning)}")


# ── Verify ───────────────────────────────────────────────────────────


@main.command()
@click.argument("profile")
@click.pass_context
def verify(ctx, profile: str):
    """Check, without changing anything, that PROFILE is satisfied."""
    from reprovision.engine import verify_command

    _emit(ctx, "verify", lambda context: verify_command(context, profile, cwd=Path.cwd()), _render_verify)


def _render_verify(data: dict) -> None:
    report = data.get("report", {})
    for check in report.get("checks", []):
        status = "[green]PASS[/]" if check["passed"] else "[red]FAIL[/]"
        console.print(f"  {status} {check['kind']}: {escape(check['subject'])}")
        if not check["passed"] and check["reason"]:
            console.print(f"       [red]{escape(check['reason'])}[/]")
    verdict = "[green]Verified[/]" if report.get("passed") else "[red]Verification failed[/]"
    console.print(f"\n{verdict} ({report.get('failed', 0)} of {report.get('total', 0)} checks failed)")


# ── State ────────────────────────────────────────────────────────────


@main.command()
@click.option("--limit", "-n", default=10, show_default=True, help="Run records to show")
@click.pass_context
def state(ctx, limit: int):
    """Show the stored snapshot, drift since then, and recent runs."""
    from reprovision.engine import state_command

    _emit(ctx, "state", lambda context: state_command(context, limit=limit), _render_state)


def _render_state(data: dict) -> None:
    stored = data.get("state", {})
    if data.get("firstRun"):
        console.print(f"[yellow]No recorded state in {data.get('stateDir')}[/] (first run)")
    else:
        snapshot = stored.get("lastSnapshot") or {}
        console.print(
            Panel(
                f"Schema version: {stored.get('schemaVersion')}\n"
                f"Updated: {stored.get('updatedAtUtc')}\n"
                f"Last run: {stored.get('lastRunId') or '-'}\n"
                f"Packages: {len(snapshot.get('packages', []))}, "
                f"tracked files: {len(snapshot.get('files', {}))}",
                title="State",
            )
        )

    for item in data.get("drift", []):
        console.print(f"  [red]DRIFT[/] {item['path']}")

    runs = data.get("runs", [])
    if runs:
        table = Table(title=f"Runs ({len(runs)} of {data.get('totalRuns', len(runs))})")
        table.add_column("Run", style="cyan")
        table.add_column("Command")
        table.add_column("When")
        table.add_column("Outcome")
        table.add_column("Steps", justify="right")
        for run in runs:
            table.add_row(
                run["runId"][:12],
                run["command"],
                run["timestampUtc"],
                run["outcome"],
                f"{run['steps']} ({run['failedSteps']} failed)",
            )
        console.print(table)


# ── Schema ───────────────────────────────────────────────────────────


@main.command(name="schema")
@click.argument("name", required=False)
def dump_schema(name: str | None):
    """Print the JSON Schema for a document type (lists the types without NAME)."""
    from reprovision.schema import get_schema, schema_names

    if not name:
        for known in schema_names():
            click.echo(known)
        return
    if name not in schema_names():
        raise click.BadParameter(f"unknown schema '{name}'", param_hint="NAME")
    click.echo(json.dumps(get_schema(name), indent=2))


def _render_error(error: dict) -> None:
    code = escape(f"[{error['code']}]")
    console.print(f"[red]Error[/] {code} {escape(error['message'])}")
    for issue in error.get("detail", {}).get("issues", []):
        console.print(f"  [red]x[/] {escape(str(issue))}")


if __name__ == "__main__":
    main()
