"""Command line interface for multi-branch projects."""

import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .catalog import ProjectCatalog
from .config import SettingsManager
from .errors import ConcurrencyError, MultiBranchError
from .project import MultiBranchProject
from .report import SyncReport
from .scheduler import SyncScheduler

console = Console()


def _catalog(ctx) -> ProjectCatalog:
    return ctx.obj["catalog"]


def _project(ctx, name: str) -> MultiBranchProject:
    try:
        return _catalog(ctx).get(name)
    except (MultiBranchError, ValueError) as e:
        console.print(f"❌ {escape(str(e))}", style="red")
        sys.exit(1)


def _print_report(report: SyncReport) -> None:
    if report.aborted:
        console.print(f"❌ Sync of {report.project} aborted: {escape(report.aborted)}", style="red")
        return

    table = Table(title=f"Sync of {report.project}")
    table.add_column("Branch", style="cyan")
    table.add_column("Result")
    table.add_column("Details", style="dim")

    for name in report.created:
        build = "build scheduled" if name in report.builds_scheduled else ""
        table.add_row(name, "[green]created[/green]", build)
    for name in report.updated:
        table.add_row(name, "updated", "")
    for name in report.orphaned:
        table.add_row(name, "[yellow]orphaned[/yellow]", "branch no longer exists")
    for name in report.deleted:
        table.add_row(name, "[red]deleted[/red]", "")
    for name, reason in report.skipped:
        table.add_row(name, "skipped", escape(reason))
    for error in report.errors:
        table.add_row(error.child_name, f"[red]{error.operation} failed[/red]", escape(str(error)))

    console.print(table)
    for message in report.messages:
        console.print(message, style="dim")


@click.group()
@click.option(
    "--settings",
    "settings_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Settings file (default: ~/.multibranch/settings.json)",
)
@click.option(
    "--projects-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Override the directory holding the projects",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(version=__version__, prog_name="multibranch")
@click.pass_context
def cli(ctx, settings_path: Optional[Path], projects_dir: Optional[Path], verbose: bool):
    """Keep one job per branch in sync with a template.

    \b
    EXAMPLES:
      multibranch create web --remote https://example.com/web.git
      multibranch sync web
      multibranch status web
      multibranch schedule
    """
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
    )

    settings = SettingsManager(settings_path).load()
    if projects_dir is not None:
        settings = settings.model_copy(update={"projects_dir": projects_dir})

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["settings"] = settings
    ctx.obj["catalog"] = ProjectCatalog(settings)


@cli.command("create")
@click.argument("name")
@click.option("--remote", help="Git remote whose branches become jobs")
@click.pass_context
def create_command(ctx, name: str, remote: Optional[str]):
    """Create a multi-branch project."""
    try:
        project = _catalog(ctx).create(name, remote=remote)
    except (FileExistsError, ValueError) as e:
        console.print(f"❌ {escape(str(e))}", style="red")
        sys.exit(1)
    console.print(f"✅ Created project {project.name}", style="green")


@cli.command("list")
@click.pass_context
def list_command(ctx):
    """List projects."""
    projects = _catalog(ctx).all()
    if not projects:
        console.print("No projects found", style="yellow")
        return

    table = Table(title="Multi-branch projects")
    table.add_column("Name", style="cyan")
    table.add_column("Source")
    table.add_column("Children", justify="right")
    table.add_column("State")
    for project in projects:
        status = project.status()
        table.add_row(
            status["name"],
            status["source"] or "-",
            str(status["children"]),
            "disabled" if status["disabled"] else "enabled",
        )
    console.print(table)


@cli.command("status")
@click.argument("name")
@click.pass_context
def status_command(ctx, name: str):
    """Show the branch jobs of a project."""
    project = _project(ctx, name)

    table = Table(title=f"{project.display_name} ({'disabled' if project.disabled else 'enabled'})")
    table.add_column("Job", style="cyan")
    table.add_column("Branch")
    table.add_column("Revision", style="dim")
    table.add_column("State")
    for child in project.children():
        state = "disabled" if child.disabled else "[green]enabled[/green]"
        if child.orphaned:
            state += f" [yellow]orphaned ({child.missed_passes} passes)[/yellow]"
        revision = child.config.scm.revision if child.config.scm else None
        table.add_row(child.encoded_name, escape(child.branch_name), (revision or "")[:12], state)
    console.print(table)

    for error in project.load_errors:
        console.print(f"⚠️  {escape(str(error))}", style="yellow")


@cli.command("sync")
@click.argument("name")
@click.option("--force-enable", is_flag=True, help="Enable children that are disabled")
@click.pass_context
def sync_command(ctx, name: str, force_enable: bool):
    """Synchronize branch jobs with the source now."""
    project = _project(ctx, name)
    try:
        report = project.sync_branches(force_enable=force_enable)
    except ConcurrencyError as e:
        console.print(f"⏳ {e}", style="yellow")
        sys.exit(1)

    _print_report(report)
    if not report.succeeded:
        sys.exit(1)


@cli.command("disable")
@click.argument("name")
@click.pass_context
def disable_command(ctx, name: str):
    """Disable a project and all of its branch jobs."""
    errors = _project(ctx, name).disable()
    for error in errors:
        console.print(f"⚠️  {escape(str(error))}", style="yellow")
    console.print(f"Disabled {name}")


@cli.command("enable")
@click.argument("name")
@click.pass_context
def enable_command(ctx, name: str):
    """Enable a project and the branch jobs that were not disabled on their own."""
    errors = _project(ctx, name).enable()
    for error in errors:
        console.print(f"⚠️  {escape(str(error))}", style="yellow")
    console.print(f"Enabled {name}")


@cli.command("delete")
@click.argument("name")
@click.confirmation_option(prompt="Delete the project and all of its branch jobs?")
@click.pass_context
def delete_command(ctx, name: str):
    """Delete a project and all of its branch jobs."""
    _project(ctx, name)
    _catalog(ctx).delete(name)
    console.print(f"Deleted {name}")


@cli.command("delete-branch")
@click.argument("name")
@click.argument("branch")
@click.pass_context
def delete_branch_command(ctx, name: str, branch: str):
    """Delete one branch job right away, ignoring retention."""
    if not _project(ctx, name).delete_child(branch):
        console.print(f"❌ No job for branch '{branch}' in {name}", style="red")
        sys.exit(1)
    console.print(f"Deleted job for branch {branch}")


@cli.command("branch-workspace")
@click.argument("name")
@click.argument("branch")
@click.argument("workspace", required=False)
@click.pass_context
def branch_workspace_command(ctx, name: str, branch: str, workspace: Optional[str]):
    """Set the workspace of one branch job; omit WORKSPACE to follow the template."""
    if not _project(ctx, name).set_child_workspace(branch, workspace):
        console.print(f"❌ No job for branch '{branch}' in {name}", style="red")
        sys.exit(1)
    console.print(f"Workspace of {branch}: {workspace or 'from template'}")


@cli.command("configure")
@click.argument("name")
@click.option("--remote", help="Git remote whose branches become jobs")
@click.option("--no-source", is_flag=True, help="Remove the source (deletes all jobs on next sync)")
@click.option(
    "--suppress-new-branch-build/--build-new-branches",
    default=None,
    help="Whether new branches are built when first seen",
)
@click.option("--interval", type=int, help="Sync interval in seconds (min 60)")
@click.option("--description", help="Project description")
@click.pass_context
def configure_command(
    ctx,
    name: str,
    remote: Optional[str],
    no_source: bool,
    suppress_new_branch_build: Optional[bool],
    interval: Optional[int],
    description: Optional[str],
):
    """Change project settings."""
    if remote and no_source:
        console.print("❌ --remote and --no-source are mutually exclusive", style="red")
        sys.exit(1)

    form = {}
    if remote:
        form["source"] = {"remote": remote, "source_id": name}
    if no_source:
        form["source"] = None
    if suppress_new_branch_build is not None:
        form["suppress_trigger_new_branch_build"] = suppress_new_branch_build
    if interval is not None:
        form["sync_interval"] = interval
    if description is not None:
        form["description"] = description

    try:
        _project(ctx, name).submit_configuration(form)
    except ValidationError as e:
        console.print(f"❌ Invalid configuration: {escape(str(e))}", style="red")
        sys.exit(1)
    console.print(f"Updated {name}")


@cli.group("template")
def template_group():
    """View or change the template of a project."""
    pass


@template_group.command("show")
@click.argument("name")
@click.pass_context
def template_show(ctx, name: str):
    """Print the template configuration as JSON."""
    template = _project(ctx, name).template
    click.echo(json.dumps(template.model_dump(mode="json"), indent=2))


@template_group.command("set")
@click.argument("name")
@click.argument("config_file", type=click.File("r"))
@click.pass_context
def template_set(ctx, name: str, config_file):
    """Replace the template with the JSON in CONFIG_FILE ('-' for stdin)."""
    try:
        submitted = json.load(config_file)
        _project(ctx, name).update_template(submitted)
    except (json.JSONDecodeError, ValidationError, TypeError) as e:
        console.print(f"❌ Invalid template: {escape(str(e))}", style="red")
        sys.exit(1)
    console.print(f"Updated template of {name}")


@cli.command("schedule")
@click.option("--tick", type=float, default=1.0, help="Seconds between due checks")
@click.pass_context
def schedule_command(ctx, tick: float):
    """Sync all projects periodically until interrupted."""
    projects = _catalog(ctx).all()
    if not projects:
        console.print("No projects found", style="yellow")
        return

    scheduler = SyncScheduler(projects, tick_interval=tick, on_report=_print_report)
    stopped = threading.Event()

    def _handle_signal(signum, frame):
        stopped.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    scheduler.start()
    console.print(f"Scheduling {len(projects)} project(s); press Ctrl-C to stop")
    try:
        while not stopped.wait(0.5):
            pass
    finally:
        scheduler.stop()


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
