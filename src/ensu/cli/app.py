"""Main CLI application using Typer."""
import asyncio
import logging
import signal
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..chat import StreamCoordinator, StreamRun
from ..config import AppConfig, configure_logging, load_config
from ..llm import StreamChunk
from ..runtime import LoadProgress
from ..session import SessionStore
from .providers import default_model, get_session_repository, require_provider

logger = logging.getLogger(__name__)

# Create Typer app
app = typer.Typer(
    name="ensu",
    help="Streaming chat with local and remote language models",
    no_args_is_help=True,
    add_completion=True,
)

sessions_app = typer.Typer(help="Manage saved chat sessions", no_args_is_help=True)
app.add_typer(sessions_app, name="sessions")

# Console for rich output
console = Console()

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    exists=True,
    dir_okay=False,
    help="YAML configuration file"
)

DbOption = typer.Option(
    None,
    "--db",
    envvar="ENSU_SESSIONS_DB",
    help="Session database file (default: ~/.ensu/sessions.db)"
)


def _load(config_path: Path | None) -> AppConfig:
    config = load_config(config_path)
    configure_logging(config.log_level)
    return config


async def _render(run: StreamRun) -> None:
    """Print a turn's events as they arrive."""
    in_thinking = False
    async for event in run:
        if isinstance(event, LoadProgress):
            console.print(f"[dim]{event.status_text}[/dim]")
        elif isinstance(event, StreamChunk):
            if event.thinking:
                if not in_thinking:
                    console.print("[dim italic]thinking…[/dim italic]")
                    in_thinking = True
                console.print(event.thinking, style="dim", end="")
            elif event.delta:
                if in_thinking:
                    console.print()
                    in_thinking = False
                console.print(event.delta, end="", markup=False, highlight=False)
    console.print()


def _watch_interrupt(run: StreamRun) -> bool:
    """Make Ctrl-C cancel ``run`` instead of the program."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, run.cancel)
    except (NotImplementedError, RuntimeError):
        return False
    return True


@app.command()
def chat(
    model: str | None = typer.Option(
        None,
        "--model",
        "-m",
        help="Model identifier (default: from config)"
    ),
    provider: str = typer.Option(
        "remote",
        "--provider",
        "-p",
        help="Backend to use: remote or ollama"
    ),
    session_id: str | None = typer.Option(
        None,
        "--session",
        "-s",
        help="Continue a saved session"
    ),
    config_path: Path | None = ConfigOption,
    db: Path | None = DbOption,
):
    """Interactive streaming chat. Ctrl-C stops the current reply."""
    config = _load(config_path)

    async def _chat():
        llm = require_provider(config, provider, console)
        repository = get_session_repository(db)
        coordinator = StreamCoordinator(system_prompt=config.defaults.system_prompt)

        try:
            await repository.connect()

            if session_id:
                saved = await repository.get(session_id)
                if saved is None:
                    console.print(f"[red]Error: no saved session {session_id}[/red]")
                    raise typer.Exit(code=1)
                store = SessionStore(saved, config)
                if model:
                    store.session.model = model
            else:
                store = SessionStore.create_session(
                    config,
                    provider=provider,
                    model=model or default_model(config, provider),
                )

            console.print(Panel(
                f"[bold]{store.session.name or 'New chat'}[/bold]\n"
                f"[dim]{provider} · {store.session.model} · session {store.id}[/dim]",
                title="ensu",
                border_style="cyan",
            ))
            console.print("[dim]Type 'exit', 'quit', or 'q' to leave[/dim]\n")

            while True:
                # Blocking prompt: no turn is running here, and Ctrl-C must raise KeyboardInterrupt
                try:
                    user_input = console.input("[bold yellow]You:[/bold yellow] ")
                except (KeyboardInterrupt, EOFError):
                    console.print("\n[dim]Goodbye![/dim]")
                    break

                if not user_input.strip():
                    continue
                if user_input.strip().lower() in ("exit", "quit", "q"):
                    console.print("[dim]Goodbye![/dim]")
                    break

                run = await coordinator.run(llm, store, user_input)
                watching = _watch_interrupt(run)
                try:
                    await _render(run)
                    outcome = await run.wait()
                finally:
                    if watching:
                        asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)

                if outcome.cancelled:
                    console.print("[dim]Stopped[/dim]")
                elif outcome.error:
                    console.print(f"[red]Error: {outcome.error}[/red]")
                elif outcome.message is not None and outcome.message.sentinel:
                    console.print(f"[dim]{outcome.message.content}[/dim]")

                if outcome.context_warning is not None:
                    warning = outcome.context_warning
                    console.print(
                        f"[yellow]Context is {warning.percent}% full "
                        f"({warning.usage.prompt_tokens}/{warning.usage.limit} tokens). "
                        f"Consider starting a new chat.[/yellow]"
                    )
                    store.acknowledge_context_warning()

                if not outcome.rolled_back:
                    await repository.save(store.session)
                console.print()

        finally:
            await repository.disconnect()
            await llm.close()

    asyncio.run(_chat())


@app.command()
def models(
    provider: str | None = typer.Option(
        None,
        "--provider",
        "-p",
        help="Only show models for this provider"
    ),
    config_path: Path | None = ConfigOption,
):
    """List registered models."""
    config = _load(config_path)
    registry = config.models_for_provider(provider) if provider else config.models

    table = Table(title="Models")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Provider")
    table.add_column("Context", justify="right")
    table.add_column("Size", justify="right")

    for info in registry:
        table.add_row(
            info.id,
            info.name or "",
            info.provider,
            str(info.context),
            f"{info.vram_required_mb} MB" if info.vram_required_mb else "-",
        )

    console.print(table)


@sessions_app.command("list")
def sessions_list(db: Path | None = DbOption):
    """List saved sessions, most recent first."""
    async def _list():
        async with get_session_repository(db) as repository:
            return await repository.list()

    summaries = asyncio.run(_list())
    if not summaries:
        console.print("[dim]No saved sessions[/dim]")
        return

    table = Table(title="Sessions")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Model")
    table.add_column("Messages", justify="right")
    table.add_column("Updated")

    for summary in summaries:
        table.add_row(
            summary.id,
            summary.name or "[dim]untitled[/dim]",
            summary.model or "-",
            str(summary.message_count),
            summary.updated_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@sessions_app.command("show")
def sessions_show(
    session_id: str = typer.Argument(..., help="Session to show"),
    db: Path | None = DbOption,
):
    """Print a saved conversation."""
    async def _get():
        async with get_session_repository(db) as repository:
            return await repository.get(session_id)

    session = asyncio.run(_get())
    if session is None:
        console.print(f"[red]Error: no saved session {session_id}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[bold cyan]{session.name or 'Untitled'}[/bold cyan] [dim]({session.model})[/dim]\n")
    for message in session.messages:
        if message.sentinel:
            console.print(f"[dim]{message.content}[/dim]\n")
            continue
        style = "bold yellow" if message.role == "user" else "bold green"
        console.print(f"[{style}]{message.role.title()}:[/{style}] ", end="")
        console.print(message.content, markup=False)
        if message.images:
            console.print(f"[dim]({len(message.images)} image(s) attached)[/dim]")
        console.print()


@sessions_app.command("delete")
def sessions_delete(
    session_id: str = typer.Argument(..., help="Session to delete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    db: Path | None = DbOption,
):
    """Delete a saved session."""
    if not yes and not typer.confirm(f"Delete session {session_id}?"):
        console.print("[dim]Aborted.[/dim]")
        return

    async def _delete():
        async with get_session_repository(db) as repository:
            return await repository.delete(session_id)

    if asyncio.run(_delete()):
        console.print(f"[green]Deleted session {session_id}[/green]")
    else:
        console.print(f"[yellow]No saved session {session_id}[/yellow]")
        raise typer.Exit(code=1)
