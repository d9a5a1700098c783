"""Command-line interface for the contribution attribution pipeline."""

import asyncio
import json
from datetime import datetime
from typing import Any, List, Optional
import typer
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TimeElapsedColumn

from . import __version__
from .analysis.dispatcher import ModeDispatcher
from .analysis.models import AnalysisMode, AnalysisRequest, AnalysisResponse
from .config import config
from .exceptions import AttributionError
from .progress.emitter import ProgressEvent


app = typer.Typer(
    name="contrib-attr",
    help="Contribution attribution: commit statistics and line ownership per contributor",
    add_completion=False
)
console = Console()

DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M:%S%z"]


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"[green]Contribution Attribution v{__version__}[/green]")


@app.command()
def analyze(
    mode: AnalysisMode = typer.Option(AnalysisMode.BLAME, "--mode", "-m", help="Analysis mode"),
    repo_path: Optional[str] = typer.Option(None, "--path", "-p", help="Local repository path"),
    owner: Optional[str] = typer.Option(None, "--owner", help="GitHub repository owner"),
    repo: Optional[str] = typer.Option(None, "--repo", help="GitHub repository name"),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help="Branch to analyze"),
    since: Optional[datetime] = typer.Option(None, "--since", formats=DATE_FORMATS, help="Only commits after this date"),
    until: Optional[datetime] = typer.Option(None, "--until", formats=DATE_FORMATS, help="Only commits before this date"),
    token: Optional[str] = typer.Option(None, "--token", envvar="GITHUB_TOKEN", help="GitHub access token"),
    max_commits: Optional[int] = typer.Option(None, "--max-commits", help="Maximum commits to analyze"),
    include_merges: bool = typer.Option(False, "--include-merges", help="Count merge commits"),
    include_bots: bool = typer.Option(False, "--include-bots", help="Keep bot accounts in legacy results"),
    mailmap: bool = typer.Option(True, "--mailmap/--no-mailmap", help="Normalize identities through .mailmap"),
    ignore_revs: bool = typer.Option(True, "--ignore-revs/--no-ignore-revs", help="Honor .git-blame-ignore-revs"),
    output: str = typer.Option("table", "--output", "-o", help="Output format (table, json)"),
) -> None:
    """Run an analysis in-process and print the result."""
    try:
        request = AnalysisRequest(
            mode=mode,
            repo_path=repo_path,
            owner=owner,
            repo=repo,
            branch=branch,
            since=since,
            until=until,
            blame_options={"use_mailmap": mailmap, "respect_ignore_revs_file": ignore_revs},
            commit_options={
                "exclude_merges": not include_merges,
                "include_bots": include_bots,
                "max_commits": max_commits,
            },
        )
        response = asyncio.run(_run(request, token or config.github.token, show_progress=output == "table"))
    except AttributionError as e:
        console.print(f"[red]{e.message}[/red]")
        if e.details:
            console.print(f"[dim]{json.dumps(e.details, default=str)}[/dim]")
        raise typer.Exit(1)

    if output == "json":
        console.print_json(json.dumps(response.to_wire()))
        return
    display_result(response)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Port"),
) -> None:
    """Start the HTTP API server."""
    import uvicorn

    uvicorn.run(
        "contrib_attribution.api.main:app",
        host=host or config.app.api_host,
        port=port or config.app.api_port,
        log_level=config.app.log_level.lower(),
    )


async def _run(request: AnalysisRequest, token: Optional[str], show_progress: bool = True) -> AnalysisResponse:
    dispatcher = ModeDispatcher()
    if not show_progress:
        return await dispatcher.dispatch(request, token)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Starting analysis...", total=100)

        def on_event(event: ProgressEvent) -> None:
            progress.update(task, completed=event.percent, description=event.message)

        dispatcher.emitter.subscribe(on_event)
        return await dispatcher.dispatch(request, token)


def display_result(response: AnalysisResponse) -> None:
    """Print a result as rich tables."""
    data = response.to_wire()
    mode = data["mode"]

    if mode == "blame":
        _print_table(
            f"Line ownership ({data['totalLines']} lines, {data['filesProcessed']} files)",
            ["Author", "Email", "Lines", "Share"],
            [
                [a["identity"]["canonicalName"], a["identity"]["canonicalEmail"], a["lines"],
                 _share(a["lines"], data["totalLines"])]
                for a in data["authors"]
            ],
        )
    elif mode == "commits":
        _print_table(
            f"Commit activity ({data['totalCommits']} commits)",
            ["Author", "Email", "Commits", "Additions", "Deletions", "Net"],
            [
                [a["identity"]["canonicalName"], a["identity"]["canonicalEmail"], a["commits"],
                 a["additions"], a["deletions"], a["netLines"]]
                for a in data["authors"]
            ],
        )
    elif mode == "remote-metadata":
        console.print(f"[blue]Pull requests:[/blue] {data['pullRequests']}  [blue]Issues:[/blue] {data['issues']}")
        _print_table(
            "Contributors",
            ["Login", "Contributions"],
            [[c["login"], c["contributions"]] for c in data["contributors"]],
        )
    elif mode == "hybrid":
        console.print(f"[blue]Pull requests:[/blue] {data['pullRequests']}  [blue]Issues:[/blue] {data['issues']}")
        _print_table(
            f"Contributors ({data['totalLines']} lines)",
            ["Author", "Lines owned", "Commits", "Additions", "Deletions"],
            [
                [c["identity"]["canonicalName"], c["lineOwnership"], c["commitCount"], c["additions"], c["deletions"]]
                for c in data["contributors"]
            ],
        )
    else:
        meta = data["metadata"]
        _print_table(
            f"Contributors ({meta['analyzedCommits']} of {meta['totalCommits']} commits)",
            ["Author", "Commits", "Additions", "Deletions", "Net", "Active days"],
            [
                [c["identity"]["canonicalName"], c["commitCount"], c["additions"], c["deletions"],
                 c["netLines"], c["activeDays"]]
                for c in data["contributors"]
            ],
        )

    for warning in data.get("warnings", []):
        console.print(f"[yellow]Warning ({warning['code']}): {warning['message']}[/yellow]")


def _print_table(title: str, columns: List[str], rows: List[List[Any]]) -> None:
    table = Table(title=title)
    for index, column in enumerate(columns):
        table.add_column(column, style="cyan" if index == 0 else "green")
    for row in rows:
        table.add_row(*(str(value) for value in row))
    console.print(table)


def _share(lines: int, total: int) -> str:
    return f"{lines / total * 100:.1f}%" if total else "0.0%"


if __name__ == "__main__":
    app()
