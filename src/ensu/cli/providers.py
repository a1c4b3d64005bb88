"""Provider factory functions for CLI.

Centralizes creation of chat providers and the session repository from
the application config. Hides configuration details from command
implementations.
"""

from pathlib import Path

import typer
from rich.console import Console

from ..config import AppConfig
from ..llm import LLMProvider, create_llm_provider
from ..session import SessionRepository, create_session_repository

# Default console for output
_console = Console()

DEFAULT_SESSIONS_DB = Path.home() / ".ensu" / "sessions.db"

CLI_PROVIDERS = ("remote", "ollama")


def get_session_repository(path: Path | None = None) -> SessionRepository:
    """Create the SQLite session repository.

    Args:
        path: Database file (default: ~/.ensu/sessions.db)
    """
    return create_session_repository("sqlite", path=path or DEFAULT_SESSIONS_DB)


def default_model(config: AppConfig, provider: str) -> str:
    """First registered model for ``provider``, or a well-known fallback."""
    if config.defaults.provider == provider and config.defaults.model:
        return config.defaults.model
    registered = config.models_for_provider(provider)
    if registered:
        return registered[0].id
    return "gpt-4o-mini" if provider == "remote" else "llama3.2"


def require_provider(
    config: AppConfig,
    provider: str,
    console: Console | None = None,
) -> LLMProvider:
    """Create a chat provider, exiting with a message if it is not configured.

    Raises:
        typer.Exit: Unknown provider, or no API key for the remote backend

    Environment variables:
        ENSU_REMOTE_BASE_URL: OpenAI-compatible base URL
        ENSU_REMOTE_API_KEY: API key for the remote backend
        ENSU_OLLAMA_HOST: Ollama host (default: http://localhost:11434)
    """
    con = console or _console

    if provider == "remote":
        if not config.remote.api_key:
            con.print("[red]Error: ENSU_REMOTE_API_KEY not set in environment[/red]")
            raise typer.Exit(code=1)
        api_types = {m.id: m.api_type for m in config.models_for_provider("remote") if m.api_type}
        return create_llm_provider(
            "remote",
            api_key=config.remote.api_key,
            base_url=config.remote.base_url,
            api_types=api_types,
        )

    if provider == "ollama":
        return create_llm_provider("ollama", host=config.ollama.host)

    if provider == "local":
        con.print("[red]Error: the on-device engine is not available from the command line[/red]")
    else:
        con.print(f"[red]Error: Unknown provider: {provider}[/red]")
    con.print(f"[dim]Use one of: {', '.join(CLI_PROVIDERS)}[/dim]")
    raise typer.Exit(code=1)
