"""CLI interface for topicgen."""

import json
import logging
from pathlib import Path
from typing import Annotated, Any

import typer
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.table import Table

from topicgen.config import TopicgenConfig, load_config, merge_cli_overrides
from topicgen.errors import TopicgenError, ValidationError
from topicgen.llm import ClaudeGenerator
from topicgen.models import (
    DurationType,
    GenerateRequest,
    ProposalStatus,
    ProposalUpdate,
    TopicProposal,
)
from topicgen.proposals import review
from topicgen.proposals.orchestrator import GenerationOrchestrator
from topicgen.store import JsonStore

app = typer.Typer(
    name="topicgen",
    help="Generate, preview, and review topic proposals from flagged news stories.",
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from topicgen import __version__

        console.print(f"topicgen {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    store: Annotated[
        Path | None,
        typer.Option("--store", help="Path to the JSON store file."),
    ] = None,
    config: Annotated[
        Path | None,
        typer.Option("--config", help="Path to a .topicgen.toml file."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Enable debug logging."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Topicgen - turn flagged stories into video topic proposals."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cfg = load_config(config)
    ctx.obj = merge_cli_overrides(cfg, store_path=str(store) if store else None)


def _store(ctx: typer.Context) -> JsonStore:
    cfg: TopicgenConfig = ctx.obj
    return JsonStore(Path(cfg.store.path))


def _orchestrator(ctx: typer.Context) -> GenerationOrchestrator:
    cfg: TopicgenConfig = ctx.obj
    llm = ClaudeGenerator(
        model=cfg.llm.model, timeout=cfg.llm.timeout, max_tokens=cfg.llm.max_tokens
    )
    return GenerationOrchestrator(_store(ctx), llm, cfg.to_generator_defaults())


def _fail(exc: TopicgenError) -> None:
    console.print(f"[red]Error:[/red] {exc}")
    raise typer.Exit(1)


def _proposal_table(proposals: list[TopicProposal], title: str) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="dim")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Trigger")
    table.add_column("Points", justify="right")
    table.add_column("Citations", justify="right")
    for p in proposals:
        table.add_row(
            p.id[:8],
            p.title,
            str(p.status),
            str(p.generation_trigger),
            str(len(p.talking_points)),
            str(len(p.research_citations)),
        )
    return table


@app.command()
def generate(
    ctx: typer.Context,
    project: Annotated[str, typer.Option("--project", "-p", help="Project ID.")],
    profile: Annotated[str, typer.Option("--profile", help="Audience profile ID.")],
    user: Annotated[str, typer.Option("--user", "-u", help="Acting user ID.")],
    duration: Annotated[
        DurationType, typer.Option("--duration", help="Duration class.")
    ] = DurationType.STANDARD,
    seconds: Annotated[
        int | None, typer.Option("--seconds", help="Length for custom duration.")
    ] = None,
    region: Annotated[
        list[str] | None, typer.Option("--region", help="Comparison region (repeatable).")
    ] = None,
    cluster: Annotated[
        list[int] | None, typer.Option("--cluster", help="Cluster index to use (repeatable).")
    ] = None,
    max_proposals: Annotated[
        int | None, typer.Option("--max", help="Maximum proposals to generate.")
    ] = None,
) -> None:
    """Generate proposals from the user's flagged stories."""
    try:
        request = GenerateRequest(
            project_id=project,
            audience_profile_id=profile,
            duration_type=duration,
            duration_seconds=seconds,
            comparison_regions=region or None,
            cluster_ids=cluster or None,
            max_proposals=max_proposals,
        )
    except PydanticValidationError as exc:
        _fail(ValidationError(str(exc)))
        return

    try:
        with console.status("Generating proposals..."):
            result = _orchestrator(ctx).generate(request, user)
    except TopicgenError as exc:
        _fail(exc)
        return

    console.print(_proposal_table(result.proposals, "Generated proposals"))
    console.print(
        f"{len(result.proposals)} proposals from {result.clusters_processed} of "
        f"{result.total_clusters} clusters"
    )
    for outcome in result.outcomes:
        if outcome.error:
            console.print(f"[yellow]Cluster {outcome.index} ({outcome.theme}):[/yellow] {outcome.error}")


@app.command()
def preview(
    ctx: typer.Context,
    project: Annotated[str, typer.Option("--project", "-p", help="Project ID.")],
    profile: Annotated[str, typer.Option("--profile", help="Audience profile ID.")],
    user: Annotated[str, typer.Option("--user", "-u", help="Acting user ID.")],
    refresh: Annotated[
        bool, typer.Option("--refresh", help="Ignore cached clusters.")
    ] = False,
) -> None:
    """Show the clusters generation would use, without saving proposals."""
    try:
        result = _orchestrator(ctx).preview(project, profile, user, force_refresh=refresh)
    except TopicgenError as exc:
        _fail(exc)
        return

    if result.message:
        console.print(f"[yellow]{result.message}[/yellow]")
    table = Table(title="Clusters (cached)" if result.from_cache else "Clusters")
    table.add_column("#", justify="right")
    table.add_column("Theme")
    table.add_column("Score", justify="right")
    table.add_column("Stories", justify="right")
    table.add_column("Similar")
    for idx, c in enumerate(result.clusters):
        similar = ", ".join(f"{s.title} ({s.overlap_percentage}%)" for s in c.similar_proposals)
        table.add_row(str(idx), c.theme, f"{c.relevance_score:.0f}", str(len(c.stories)), similar)
    console.print(table)


@app.command(name="run-scheduled")
def run_scheduled(ctx: typer.Context) -> None:
    """Run auto-generation for every project whose firing window is open."""
    summary = _orchestrator(ctx).run_scheduled()
    table = Table(title="Scheduled run")
    table.add_column("Project")
    table.add_column("Proposals", justify="right")
    table.add_column("Note")
    for r in summary.results:
        note = r.error or r.skipped_reason or ""
        style = "red" if r.error else ""
        table.add_row(r.project_id, str(r.proposals_generated), note, style=style)
    console.print(table)
    console.print(
        f"Checked {summary.projects_checked} projects, "
        f"generated {summary.total_proposals_generated} proposals "
        f"in {summary.elapsed_seconds:.1f}s"
    )


@app.command()
def resynthesize(
    ctx: typer.Context,
    proposal_id: Annotated[str, typer.Argument(help="Proposal ID.")],
    user: Annotated[str, typer.Option("--user", "-u", help="Acting user ID.")],
) -> None:
    """Regenerate a proposal's content from its source stories."""
    try:
        proposal = _orchestrator(ctx).resynthesize(proposal_id, user)
    except TopicgenError as exc:
        _fail(exc)
        return
    console.print(f"[green]Re-synthesized:[/green] {proposal.title}")


@app.command(name="list")
def list_cmd(
    ctx: typer.Context,
    project: Annotated[str, typer.Option("--project", "-p", help="Project ID.")],
    user: Annotated[str, typer.Option("--user", "-u", help="Acting user ID.")],
    status: Annotated[
        ProposalStatus | None, typer.Option("--status", help="Filter by status.")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", help="Maximum rows.")] = 50,
) -> None:
    """List a project's proposals, newest first."""
    try:
        proposals = review.list_proposals(
            _store(ctx), project, user, status=status, limit=limit
        )
    except TopicgenError as exc:
        _fail(exc)
        return
    console.print(_proposal_table(proposals, f"Proposals for {project}"))


@app.command(name="review")
def review_cmd(
    ctx: typer.Context,
    proposal_id: Annotated[str, typer.Argument(help="Proposal ID.")],
    user: Annotated[str, typer.Option("--user", "-u", help="Acting user ID.")],
    status: Annotated[
        ProposalStatus | None, typer.Option("--status", help="New status.")
    ] = None,
    notes: Annotated[str | None, typer.Option("--notes", help="Review notes.")] = None,
    title: Annotated[str | None, typer.Option("--title", help="New title.")] = None,
    hook: Annotated[str | None, typer.Option("--hook", help="New hook.")] = None,
    delete: Annotated[bool, typer.Option("--delete", help="Delete the proposal.")] = False,
) -> None:
    """Update or delete a proposal."""
    store = _store(ctx)
    try:
        if delete:
            review.delete_proposal(store, proposal_id, user)
            console.print(f"[green]Deleted[/green] {proposal_id}")
            return
        update = ProposalUpdate(status=status, review_notes=notes, title=title, hook=hook)
        proposal = review.update_proposal(store, proposal_id, user, update)
    except PydanticValidationError as exc:
        _fail(ValidationError(str(exc)))
        return
    except TopicgenError as exc:
        _fail(exc)
        return
    console.print(f"[green]Updated:[/green] {proposal.title} ({proposal.status})")


@app.command()
def stats(
    ctx: typer.Context,
    project: Annotated[str, typer.Option("--project", "-p", help="Project ID.")],
) -> None:
    """Show proposal counts by status and trigger."""
    result = review.proposal_stats(_store(ctx), project)
    console.print(f"[bold]Total:[/bold] {result.total}")
    for status, count in sorted(result.by_status.items()):
        console.print(f"  {status}: {count}")
    for trigger, count in sorted(result.by_trigger.items()):
        console.print(f"  {trigger}: {count}")
    if result.last_auto_generation:
        console.print(f"Last auto generation: {result.last_auto_generation:%Y-%m-%d %H:%M}")


def _parse_assignment(raw: str) -> tuple[str, Any]:
    key, sep, value = raw.partition("=")
    if not sep:
        raise typer.BadParameter(f"Expected key=value, got {raw!r}")
    try:
        return key.strip(), json.loads(value)
    except json.JSONDecodeError:
        return key.strip(), value


@app.command()
def settings(
    ctx: typer.Context,
    project: Annotated[str, typer.Option("--project", "-p", help="Project ID.")],
    user: Annotated[
        str | None, typer.Option("--user", "-u", help="Acting user ID (required to update).")
    ] = None,
    assignments: Annotated[
        list[str] | None,
        typer.Option("--set", help="Setting to change as key=value (repeatable)."),
    ] = None,
) -> None:
    """Show or update a project's generator settings."""
    cfg: TopicgenConfig = ctx.obj
    store = _store(ctx)
    defaults = cfg.to_generator_defaults()
    try:
        if assignments:
            if not user:
                raise typer.BadParameter("--user is required with --set")
            changes = dict(_parse_assignment(a) for a in assignments)
            current = review.update_settings(store, project, user, changes, defaults)
        else:
            current = review.get_settings(store, project, defaults)
    except TopicgenError as exc:
        _fail(exc)
        return
    console.print_json(current.model_dump_json())


if __name__ == "__main__":
    app()
