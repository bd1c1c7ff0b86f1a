"""Main entry point for the infrastructure orchestrator CLI."""

import sys
from pathlib import Path
from typing import Any, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from infra_orchestrator import __version__
from infra_orchestrator.config import ApprovalChannelType, Settings, get_settings
from infra_orchestrator.core.artifacts import PlanArtifactManager
from infra_orchestrator.core.contracts import (
    EXIT_CANCELLED,
    EXIT_UNKNOWN_ENVIRONMENT,
    Action,
    RunReport,
    RunStatus,
    StageStatus,
)
from infra_orchestrator.core.environments import get_resolver
from infra_orchestrator.core.errors import UnknownEnvironment
from infra_orchestrator.core.policy import StagePolicy
from infra_orchestrator.logging_utils import configure_logging

console = Console()

ACTIONS = [a.value for a in Action]

_STATUS_STYLE = {
    StageStatus.SUCCESS: "[green]success[/green]",
    StageStatus.FAILURE: "[red]failure[/red]",
    StageStatus.SKIPPED: "[dim]skipped[/dim]",
}


def print_banner() -> None:
    """Print the application banner."""
    banner = Text()
    banner.append("Infrastructure Orchestrator", style="bold blue")
    banner.append(f" v{__version__}\n", style="dim")
    banner.append("plan / apply / destroy with approval gates", style="italic")

    console.print(Panel(banner, title="[bold]infra-orchestrator[/bold]", border_style="blue"))


def _artifact_manager(settings: Settings) -> PlanArtifactManager:
    return PlanArtifactManager(settings.plan_dir, settings.plan_prefix, settings.plan_extension)


def _resolve_or_exit(settings: Settings, environment: str):
    try:
        return get_resolver(settings.environments_file).resolve(environment)
    except UnknownEnvironment as e:
        console.print(f"[red]{e.message}[/red]")
        sys.exit(EXIT_UNKNOWN_ENVIRONMENT)


def print_report(report: RunReport) -> None:
    """Render the terminal report."""
    if report.stage_results:
        table = Table(title="Stages", show_lines=False)
        table.add_column("Stage", style="cyan")
        table.add_column("Status")
        table.add_column("Exit", justify="right")
        table.add_column("Duration", justify="right")
        for result in report.stage_results:
            table.add_row(
                result.stage_name,
                _STATUS_STYLE[result.status],
                "" if result.exit_code is None else str(result.exit_code),
                "" if result.status == StageStatus.SKIPPED else f"{result.duration_ms / 1000:.1f}s",
            )
        console.print(table)

    for decision in report.approvals:
        if decision.granted:
            outcome = f"[green]granted[/green] by {decision.approver or 'unknown'}"
        elif decision.responded_within_timeout:
            outcome = f"[red]denied[/red] by {decision.approver or 'unknown'}"
        else:
            outcome = "[yellow]timed out[/yellow]"
        console.print(f"[bold]Approval {decision.gate}:[/bold] {outcome}")

    if report.status == RunStatus.COMPLETED:
        border = "green"
    elif report.status == RunStatus.TIMED_OUT:
        border = "yellow"
    else:
        border = "red"
    changed_style = "bold red" if report.changes_applied or report.mutation_attempted else "bold green"
    body = Text(report.summary().split("\n")[0] + "\n")
    body.append(report.infrastructure_changed + "\n", style=changed_style)
    if report.message:
        body.append(report.message, style="dim")
    console.print(Panel.fit(body, title=f"exit {report.exit_code}", border_style=border))


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Infrastructure Orchestrator - staged plan/apply/destroy with approval gates."""
    pass


@cli.command()
@click.option("--environment", "-e", required=True, help="Target environment (dev, stg, prod)")
@click.option("--action", "-a", type=click.Choice(ACTIONS), default="plan", show_default=True)
@click.option("--region", "-r", default=None, help="Region (defaults to the environment's region)")
@click.option("--ref", default=None, help="Branch, tag or commit of the definitions repository")
@click.option("--repo", "repository_url", default=None, help="Definitions repository URL")
@click.option(
    "--source-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Use a local directory instead of cloning",
)
@click.option("--approval-timeout", type=float, default=None, help="Minutes each approval gate waits")
@click.option("--non-interactive", is_flag=True, help="Deny every approval gate (fail closed)")
@click.option("--skip-format-check", is_flag=True, help="Do not run the format check before validate")
def run(
    environment: str,
    action: str,
    region: Optional[str],
    ref: Optional[str],
    repository_url: Optional[str],
    source_dir: Optional[Path],
    approval_timeout: Optional[float],
    non_interactive: bool,
    skip_format_check: bool,
) -> None:
    """Run checkout, init, validate, plan and, when approved, apply or destroy."""
    from infra_orchestrator.core.graph import Orchestrator

    overrides: dict[str, Any] = {}
    if ref:
        overrides["repository_ref"] = ref
    if repository_url:
        overrides["repository_url"] = repository_url
    if source_dir:
        overrides["source_dir"] = source_dir
    if approval_timeout:
        overrides["approval_timeout_minutes"] = approval_timeout
    if non_interactive:
        overrides["approval_channel"] = ApprovalChannelType.DENY
    if skip_format_check:
        overrides["format_check"] = False
    settings = get_settings().model_copy(update=overrides)

    configure_logging(settings, console=Console(stderr=True))
    print_banner()

    env_config = _resolve_or_exit(settings, environment)
    console.print(f"\n[green]Environment:[/green] {env_config.name.value.upper()}")
    console.print(f"[green]Action:[/green] {action}")
    console.print(f"[green]Region:[/green] {region or env_config.region}")
    if env_config.requires_escalated_approval:
        console.print("[yellow]Escalated approval environment[/yellow]")
    console.print()

    orchestrator = Orchestrator(settings)
    try:
        report = orchestrator.run(environment, action, region=region)
    except KeyboardInterrupt:
        console.print("\n[red]Run interrupted.[/red]")
        report = orchestrator.last_report
        if report is None:
            console.print("[yellow]No run report was produced; treat the environment as possibly changed.[/yellow]")
            sys.exit(EXIT_CANCELLED)

    print_report(report)
    sys.exit(report.exit_code)


@cli.command()
def environments() -> None:
    """List configured environments."""
    settings = get_settings()
    resolver = get_resolver(settings.environments_file)

    table = Table(title="Environments")
    table.add_column("Name", style="cyan")
    table.add_column("Variables file")
    table.add_column("Region")
    table.add_column("Escalated approval")
    table.add_column("Credential secrets")
    for name in resolver.names():
        env = resolver.resolve(name)
        table.add_row(
            env.name.value,
            env.variable_file_path,
            env.region,
            "yes" if env.requires_escalated_approval else "no",
            ", ".join(env.credential_secrets) or "-",
        )
    console.print(table)


@cli.command()
@click.option("--environment", "-e", required=True)
@click.option("--action", "-a", type=click.Choice(ACTIONS), default="plan", show_default=True)
@click.option("--mermaid", is_flag=True, help="Also print the full graph as Mermaid")
def stages(environment: str, action: str, mermaid: bool) -> None:
    """Show which stages a run would execute."""
    settings = get_settings()
    env_config = _resolve_or_exit(settings, environment)
    plan = StagePolicy.from_settings(settings.escalated_actions).plan_for(Action(action), env_config)

    console.print(f"[bold]{action}[/bold] on [bold]{env_config.name.value}[/bold]:")
    for stage in plan.stages:
        suffix = f" ({plan.approval_gates} gate(s))" if stage.value == "approval" else ""
        console.print(f"  - {stage.value}{suffix}")

    if mermaid:
        from infra_orchestrator.core.graph import Orchestrator

        console.print(f"\n```mermaid\n{Orchestrator(settings).get_graph_visualization()}\n```")


@cli.group()
def artifacts() -> None:
    """Inspect and prune plan artifacts."""
    pass


@artifacts.command("list")
@click.option("--environment", "-e", required=True)
def list_artifacts(environment: str) -> None:
    """List plan artifacts for an environment, newest first."""
    settings = get_settings()
    env_config = _resolve_or_exit(settings, environment)
    found = _artifact_manager(settings).list_artifacts(env_config.name)

    if not found:
        console.print(f"[dim]No plan artifacts for {env_config.name.value}.[/dim]")
        return
    console.print(f"[dim]{settings.plan_dir}[/dim]")
    table = Table(title=f"Plan artifacts: {env_config.name.value}")
    table.add_column("Created", justify="right")
    table.add_column("File")
    for artifact in found:
        table.add_row(str(artifact.created_at), Path(artifact.path).name)
    console.print(table)


@artifacts.command("prune")
@click.option("--environment", "-e", required=True)
@click.option("--keep", type=click.IntRange(min=0), default=None, help="Artifacts to keep")
def prune_artifacts(environment: str, keep: Optional[int]) -> None:
    """Delete all but the newest plan artifacts for an environment."""
    settings = get_settings()
    configure_logging(settings, console=Console(stderr=True))
    env_config = _resolve_or_exit(settings, environment)
    keep = settings.plan_retention if keep is None else keep

    deleted = _artifact_manager(settings).prune(env_config.name, keep=keep)
    console.print(f"[green]Deleted {len(deleted)} artifact(s); kept up to {keep}.[/green]")


@cli.command()
def status() -> None:
    """Show current orchestrator configuration."""
    settings = get_settings()
    source = settings.source_dir or settings.repository_url or "(not configured)"

    console.print(Panel.fit(
        f"""[bold]Source:[/bold] {source} @ {settings.repository_ref}
[bold]Tool:[/bold] {settings.tool_binary}
[bold]Plan directory:[/bold] {settings.plan_dir} (keep {settings.plan_retention})
[bold]Approval:[/bold] {settings.approval_channel.value}, {settings.approval_timeout_minutes:g} min per gate
[bold]Escalated actions:[/bold] {', '.join(settings.escalated_actions) or '-'}
[bold]Notifications:[/bold] {settings.notify_topic_arn or 'log only'}
""",
        title="Orchestrator Status",
        border_style="green",
    ))


if __name__ == "__main__":
    cli()
