"""CLI commands for chatrelay."""

import asyncio
import json
import signal
import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from chatrelay import __version__, __logo__

app = typer.Typer(
    name="chatrelay",
    help=f"{__logo__} chatrelay - LLM chat context and streaming gateway",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} chatrelay v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """chatrelay - LLM chat context and streaming gateway."""
    pass


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level)


@app.command()
def onboard():
    """Initialize chatrelay configuration."""
    from chatrelay.config.loader import get_config_path, save_config
    from chatrelay.config.schema import Config

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    save_config(Config())
    console.print(f"[green]✓[/green] Created config at {config_path}")

    console.print(f"\n{__logo__} chatrelay is ready!")
    console.print("\nNext steps:")
    console.print("  1. Add your API key to [cyan]~/.chatrelay/config.json[/cyan]")
    console.print("     under providers.novita.apiKey (or openrouter/anthropic/openai)")
    console.print("  2. Start the gateway: [cyan]chatrelay gateway[/cyan]")


@app.command()
def gateway(
    host: str = typer.Option(None, "--host", help="Gateway host"),
    port: int = typer.Option(None, "--port", "-p", help="Gateway port"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Start the chatrelay gateway."""
    from chatrelay.chat.service import ChatService
    from chatrelay.config.loader import load_config
    from chatrelay.gateway.server import GatewayServer
    from chatrelay.providers.litellm_provider import LiteLLMProvider
    from chatrelay.session.store import InMemoryHistoryStore

    config = load_config()
    _configure_logging("DEBUG" if verbose else config.logging.level)

    api_key = config.get_api_key()
    if not api_key:
        console.print("[red]Error: No API key configured.[/red]")
        console.print("Set one in ~/.chatrelay/config.json under providers.novita.apiKey")
        raise typer.Exit(1)

    provider = LiteLLMProvider.from_config(config)
    chat = ChatService(provider, InMemoryHistoryStore(), config)
    server = GatewayServer(
        chat,
        host=host or config.gateway.host,
        port=port or config.gateway.port,
    )

    console.print(f"{__logo__} Starting gateway on {server.host}:{server.port}...")

    async def run() -> None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                pass  # Windows
        await server.start()
        try:
            await stop.wait()
        finally:
            await server.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\nGoodbye!")


@app.command()
def context(
    history_file: Path = typer.Argument(..., help="JSON file with a list of messages"),
    policy: str = typer.Option("auto", "--policy", help="auto, recency, priority or summarized"),
    max_tokens: int = typer.Option(None, "--max-tokens", help="Token budget"),
    max_messages: int = typer.Option(None, "--max-messages", help="Message limit"),
):
    """Preview which messages a context policy would select."""
    from chatrelay.config.loader import load_config
    from chatrelay.context.selector import select_context
    from chatrelay.context.types import Message, SelectionConstraints

    config = load_config()
    _configure_logging(config.logging.level)

    try:
        raw = json.loads(history_file.read_text(encoding="utf-8"))
        history = [Message.from_dict(item) for item in raw]
    except (OSError, ValueError, KeyError, TypeError) as e:
        console.print(f"[red]Could not read history: {e}[/red]")
        raise typer.Exit(1)

    constraints = SelectionConstraints(
        max_tokens=max_tokens or config.context.max_tokens,
        max_messages=max_messages or config.context.max_messages,
    )
    window = select_context(history, constraints, policy, config.context)

    table = Table(title=f"Context ({window.policy.value}, ~{window.total_tokens} tokens)")
    table.add_column("#", style="dim")
    table.add_column("Role", style="cyan")
    table.add_column("Content")
    table.add_column("Attachments", style="magenta")
    for i, message in enumerate(window.messages, 1):
        preview = message.content if len(message.content) <= 80 else message.content[:77] + "..."
        table.add_row(str(i), message.role, preview, str(len(message.attachments)))
    console.print(table)

    if window.summary:
        console.print(f"\n[bold]Summary:[/bold] {window.summary}")
    console.print(f"\n{len(window.messages)} of {len(history)} messages selected")
