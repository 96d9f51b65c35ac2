"""StoryFriends CLI - typer application entry point."""

from __future__ import annotations

import asyncio
import atexit
from collections.abc import Awaitable, Callable
from typing import Annotated, TypeVar

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from storyfriends.config import ConfigError, WorkflowSettings
from storyfriends.errors import SessionNotFoundError
from storyfriends.models import (
    Action,
    CharacterSelectionOutput,
    ErrorOutput,
    FinishedOutput,
    PhaseOutput,
    ScenarioSelectionOutput,
    SynopsisSelectionOutput,
)
from storyfriends.observability import (
    bind_request_context,
    close_file_logging,
    configure_logging,
    get_logger,
)
from storyfriends.providers.base import ProviderError
from storyfriends.services import StoryServices, build_services
from storyfriends.workflow.fanout import JobResult, fan_out
from storyfriends.workflow.sessions import create_session, load_session, load_story
from storyfriends.workflow.state_machine import AdvanceRequest

# Load environment variables from .env file
load_dotenv()

T = TypeVar("T")

app = typer.Typer(
    name="storyfriends",
    help="StoryFriends: guided story creation with a child's own friends.",
    no_args_is_help=True,
)
console = Console()
log = get_logger(__name__)

_verbose: int = 0
_log_enabled: bool = False
_json_console: bool = False


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log_to_file: Annotated[
        bool,
        typer.Option(
            "--log",
            help="Enable file logging to the trace directory (debug.jsonl).",
        ),
    ] = False,
) -> None:
    """StoryFriends: guided story creation with a child's own friends."""
    global _verbose, _log_enabled
    _verbose = verbose
    _log_enabled = log_to_file
    configure_logging(verbosity=verbose)


def _load_settings() -> WorkflowSettings:
    try:
        settings = WorkflowSettings.from_env()
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    if _log_enabled:
        configure_logging(
            verbosity=_verbose,
            log_to_file=True,
            log_dir=settings.trace_dir,
            json_console=_json_console,
        )
        atexit.register(close_file_logging)
    return settings


def _run(fn: Callable[[StoryServices], Awaitable[T]]) -> T:
    """Build services, run ``fn`` on an event loop, and close the store."""
    settings = _load_settings()
    bind_request_context()

    async def _main() -> T:
        services = await build_services(settings)
        try:
            return await fn(services)
        finally:
            services.close()

    try:
        return asyncio.run(_main())
    except (ConfigError, ProviderError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def _print_output(output: PhaseOutput) -> None:
    if isinstance(output, ErrorOutput):
        label = "in progress" if output.in_progress else output.kind.value
        console.print(f"[red]✗[/red] {output.error} [dim]({label})[/dim]")
        return

    if isinstance(output, CharacterSelectionOutput):
        console.print(f"[bold]{output.question}[/bold]")
        table = Table()
        table.add_column("Id", style="cyan")
        table.add_column("Name")
        table.add_column("Kind", style="dim")
        table.add_column("Proposed")
        for companion in output.companions:
            proposed = "[green]✓[/green]" if companion.id in output.proposed_companion_ids else ""
            table.add_row(companion.id, companion.display_name, companion.kind, proposed)
        console.print(table)
        console.print(
            "Run: [cyan]storyfriends advance SESSION --action confirm_companions[/cyan]"
        )
        return

    if isinstance(output, ScenarioSelectionOutput | SynopsisSelectionOutput):
        console.print(f"[bold]{output.question}[/bold]")
        if isinstance(output, ScenarioSelectionOutput):
            rows = [(s.id, s.title, s.description) for s in output.scenarios]
        else:
            rows = [(s.id, s.title, s.summary) for s in output.synopses]
        table = Table()
        table.add_column("Id", style="cyan")
        table.add_column("Title", style="bold")
        table.add_column("Description")
        for row in rows:
            table.add_row(*row)
        console.print(table)
        console.print("Run: [cyan]storyfriends advance SESSION --option ID[/cyan]")
        return

    if isinstance(output, FinishedOutput):
        subtitle = "already completed" if output.already_completed else output.mood
        console.print(Panel(output.text, title=output.title, subtitle=subtitle))


def _print_job_results(results: list[JobResult]) -> None:
    for result in results:
        if result.ok:
            console.print(f"  [green]✓[/green] {result.name} [dim]({result.duration_ms} ms)[/dim]")
        else:
            console.print(f"  [red]✗[/red] {result.name}: {result.error}")


@app.command()
def start(
    child_id: Annotated[str, typer.Argument(help="Primary child profile id.")],
    parent_uid: Annotated[
        str,
        typer.Option("--parent", "-p", help="Owning parent account id."),
    ],
    session_id: Annotated[
        str | None,
        typer.Option("--session", "-s", help="Session id (generated when omitted)."),
    ] = None,
) -> None:
    """Create a new story session for a child."""

    async def _start(services: StoryServices) -> str:
        return await create_session(services.store, child_id, parent_uid, session_id)

    sid = _run(_start)
    console.print(f"[green]✓[/green] Created session: [bold]{sid}[/bold]")
    console.print(f"Run: [cyan]storyfriends advance {sid}[/cyan]")


@app.command()
def advance(
    session_id: Annotated[str, typer.Argument(help="Session to advance.")],
    action: Annotated[
        Action | None,
        typer.Option("--action", "-a", help="Explicit action."),
    ] = None,
    companions: Annotated[
        list[str] | None,
        typer.Option("--companion", "-c", help="Companion id for confirm (repeatable)."),
    ] = None,
    option: Annotated[
        str | None,
        typer.Option("--option", "-o", help="Scenario or synopsis id to select."),
    ] = None,
    style: Annotated[
        str | None,
        typer.Option("--style", help="Output style id recorded on the story."),
    ] = None,
    enrich: Annotated[
        bool,
        typer.Option("--enrich/--no-enrich", help="Run enrichment after a fresh story."),
    ] = True,
) -> None:
    """Advance a session by one step."""

    async def _advance(services: StoryServices) -> PhaseOutput:
        output = await services.state_machine.advance(
            AdvanceRequest(
                session_id=session_id,
                action=action,
                selected_companion_ids=companions,
                selected_option_id=option,
                output_style_id=style,
            )
        )
        _print_output(output)
        if enrich and isinstance(output, FinishedOutput) and output.fresh:
            console.print("[dim]Enriching story...[/dim]")
            _print_job_results(await fan_out(output.story_id, services.enrichment_jobs()))
        return output

    output = _run(_advance)
    if isinstance(output, ErrorOutput):
        raise typer.Exit(1)


@app.command("compile")
def compile_story(
    session_id: Annotated[str, typer.Argument(help="Session to compile.")],
    style: Annotated[
        str | None,
        typer.Option("--style", help="Output style id recorded on the story."),
    ] = None,
    enrich: Annotated[
        bool,
        typer.Option("--enrich/--no-enrich", help="Run enrichment after a fresh story."),
    ] = True,
) -> None:
    """Compile the story for a session with a chosen synopsis."""

    async def _compile(services: StoryServices) -> bool:
        outcome = await services.compile_service.compile(session_id, output_style_id=style)
        if not outcome.ok:
            console.print(f"[red]✗[/red] {outcome.error_message}")
            return False
        if outcome.already_completed:
            console.print(f"[yellow]Already completed:[/yellow] {outcome.story_id}")
        else:
            console.print(f"[green]✓[/green] Story created: [bold]{outcome.story_id}[/bold]")
        if enrich and outcome.fresh and outcome.story_id:
            _print_job_results(await fan_out(outcome.story_id, services.enrichment_jobs()))
        return True

    if not _run(_compile):
        raise typer.Exit(1)


@app.command()
def show(
    session_id: Annotated[str, typer.Argument(help="Session to show.")],
) -> None:
    """Show a session's phase, choices, and story status."""

    async def _show(services: StoryServices) -> None:
        session = await load_session(services.store, session_id)
        story = await load_story(services.store, session_id)

        table = Table(title=f"Session: {session.id}")
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        table.add_row("Child", session.child_id)
        table.add_row("Phase", session.phase or "-")
        table.add_row("Status", session.status)
        table.add_row("Companions", ", ".join(session.selected_companion_ids) or "-")
        scenario = session.selected_scenario()
        table.add_row("Scenario", scenario.title if scenario else "-")
        synopsis = session.selected_synopsis()
        table.add_row("Synopsis", synopsis.title if synopsis else "-")
        if session.last_compile_error:
            table.add_row("Last compile error", f"[red]{session.last_compile_error}[/red]")
        console.print(table)

        if story is None:
            return
        status_icons = {
            "idle": "[dim]○[/dim] idle",
            "running": "[yellow]…[/yellow] running",
            "ready": "[green]✓[/green] ready",
            "error": "[red]✗[/red] error",
        }
        jobs = Table(title=f"Story: {story.refined_title or story.title}")
        jobs.add_column("Job", style="cyan")
        jobs.add_column("Status", style="bold")
        jobs.add_column("Detail", style="dim")
        for name, state, detail in (
            ("narration", story.narration_generation, story.narration_url),
            ("avatar", story.avatar_generation, story.avatar_url),
            ("title", story.title_generation, story.refined_title),
        ):
            jobs.add_row(
                name,
                status_icons.get(state.status, state.status),
                state.last_error_message or detail or "-",
            )
        console.print(jobs)

    try:
        _run(_show)
    except SessionNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


@app.command()
def serve(
    host: Annotated[str, typer.Option("--host", help="Bind address.")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", help="Bind port.")] = 8000,
    json_logs: Annotated[
        bool,
        typer.Option("--json-logs", help="Write console logs as JSON lines."),
    ] = False,
) -> None:
    """Run the HTTP API."""
    import uvicorn

    from storyfriends.api import create_app

    global _json_console
    if json_logs:
        _json_console = True
        configure_logging(verbosity=max(_verbose, 1), json_console=True)
    settings = _load_settings()
    try:
        services = asyncio.run(build_services(settings))
    except (ConfigError, ProviderError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    console.print(f"[dim]Serving on http://{host}:{port}[/dim]")
    uvicorn.run(create_app(services), host=host, port=port, log_config=None)


@app.command()
def version() -> None:
    """Show version information."""
    from storyfriends import __version__

    console.print(f"StoryFriends v{__version__}")
