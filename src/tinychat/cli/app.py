"""Main CLI application using Typer."""
import asyncio
import contextlib
import signal
from pathlib import Path

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.markup import escape
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn

from ..config import ChatSettings
from ..errors import LoadError
from ..session import ChatController, ModelLoader, OutcomeStatus
from ..store import Message, Role
from .providers import configure_logging, get_backend, get_controller, get_store

# Load environment variables
load_dotenv()

# Create Typer app
app = typer.Typer(
    name="tinychat",
    help="Local chat with an on-device language model",
    no_args_is_help=True,
    add_completion=True,
)

# Console for rich output
console = Console()

EXIT_COMMANDS = ("/exit", "/quit", "/q")


def _settings(**overrides) -> ChatSettings:
    try:
        return ChatSettings.from_env(**overrides)
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red] {escape(str(e))}")
        raise typer.Exit(code=1)


def _print_message(message: Message) -> None:
    if message.role is Role.USER:
        console.print(f"[bold yellow]You:[/bold yellow] {escape(message.content)}")
    else:
        console.print("[bold green]Assistant:[/bold green]")
        console.print(Markdown(message.content))
    console.print()


def _print_history(messages: list[Message]) -> None:
    if not messages:
        console.print("[dim]No messages yet.[/dim]")
        return
    for message in messages:
        _print_message(message)


async def _load_with_progress(load) -> bool:
    """Run a load coroutine function behind a progress bar."""
    with Progress(
        TextColumn("[dim]Loading model[/dim]"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("load", total=1.0)
        try:
            await load(lambda fraction: progress.update(task, completed=fraction))
        except LoadError as e:
            console.print(f"[red]{escape(str(e))}[/red]")
            return False
    return True


async def _generate(controller: ChatController, text: str) -> None:
    """Stream one answer; Ctrl-C cancels it and keeps the partial text."""
    loop = asyncio.get_running_loop()
    pending: set[asyncio.Task] = set()

    def on_interrupt() -> None:
        task = loop.create_task(controller.cancel())
        pending.add(task)
        task.add_done_callback(pending.discard)

    installed = False
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
        installed = True

    console.print("[bold green]Assistant:[/bold green]")
    try:
        with Live(Markdown(""), console=console, refresh_per_second=12) as live:
            outcome = await controller.submit(
                text, on_partial=lambda snapshot: live.update(Markdown(snapshot))
            )
            if outcome is not None:
                live.update(Markdown(outcome.display_text))
        if pending:
            await asyncio.gather(*pending)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)

    if outcome is None:
        console.print("[yellow]Busy: a generation is already running.[/yellow]")
    elif outcome.status is OutcomeStatus.CANCELLED:
        console.print("[yellow]Generation cancelled; partial answer kept.[/yellow]")
    elif outcome.status is OutcomeStatus.FAILED:
        console.print(f"[red]Generation failed: {escape(outcome.error or '')}[/red]")
    console.print()


async def _run_slash_command(controller: ChatController, command: str) -> None:
    name, _, argument = command.partition(" ")
    if name == "/clear":
        await controller.clear()
        console.print("[dim]Conversation cleared.[/dim]")
    elif name == "/system":
        if argument.strip():
            controller.system_prompt = argument.strip()
            console.print("[dim]System prompt updated.[/dim]")
        else:
            console.print(f"[dim]System prompt:[/dim] {escape(controller.system_prompt)}")
    elif name == "/history":
        _print_history(controller.messages)
    else:
        console.print(f"[yellow]Unknown command: {escape(name)}[/yellow]")
        console.print("[dim]Commands: /clear, /system \\[prompt], /history, /exit[/dim]")


@app.command()
def chat(
    system_prompt: str | None = typer.Option(
        None,
        "--system-prompt",
        "-p",
        help="Instructions prepended to every prompt"
    ),
    db: Path | None = typer.Option(
        None,
        "--db",
        help="SQLite file holding the conversation"
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level (debug, info, warning, error)"
    ),
):
    """Interactive chat with the local model."""
    settings = _settings(system_prompt=system_prompt, db_path=db, log_level=log_level)
    configure_logging(settings.log_level, console)

    async def _chat():
        store = get_store(settings)
        backend = get_backend(settings, console)
        controller = get_controller(settings, store, backend)

        try:
            await store.connect()
            _print_history(await controller.refresh())

            if not await _load_with_progress(controller.load):
                raise typer.Exit(code=1)

            console.print("[bold cyan]Tinychat[/bold cyan]")
            console.print("[dim]Ctrl-C stops an answer. Type /exit to leave, /clear to start over.[/dim]\n")

            while True:
                try:
                    user_input = console.input("[bold yellow]You:[/bold yellow] ")
                except (KeyboardInterrupt, EOFError):
                    console.print("\n[dim]Goodbye![/dim]")
                    break

                stripped = user_input.strip()
                if not stripped:
                    continue
                if stripped.lower() in EXIT_COMMANDS:
                    console.print("[dim]Goodbye![/dim]")
                    break
                if stripped.startswith("/"):
                    await _run_slash_command(controller, stripped)
                    continue

                try:
                    await _generate(controller, user_input)
                except LoadError as e:
                    console.print(f"[red]{escape(str(e))}[/red]")

        finally:
            await store.disconnect()
            controller.close()

    asyncio.run(_chat())


@app.command()
def download(
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level (debug, info, warning, error)"
    ),
):
    """Fetch and load the model once, so later chats start offline."""
    settings = _settings(log_level=log_level)
    configure_logging(settings.log_level, console)

    async def _download():
        loader = ModelLoader(get_backend(settings, console), settings.resource_limit_bytes)
        try:
            if not await _load_with_progress(loader.load):
                raise typer.Exit(code=1)
            console.print(f"[green]Model ready:[/green] {settings.model_repo}")
        finally:
            loader.close()

    asyncio.run(_download())


@app.command()
def history(
    db: Path | None = typer.Option(None, "--db", help="SQLite file holding the conversation"),
):
    """Print the stored conversation."""
    settings = _settings(db_path=db)

    async def _history():
        store = get_store(settings)
        try:
            await store.connect()
            _print_history(await store.list_ordered())
        finally:
            await store.disconnect()

    asyncio.run(_history())


@app.command()
def clear(
    db: Path | None = typer.Option(None, "--db", help="SQLite file holding the conversation"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete every stored message."""
    settings = _settings(db_path=db)

    if not yes and not typer.confirm("Delete the whole conversation?"):
        console.print("[dim]Aborted.[/dim]")
        raise typer.Exit()

    async def _clear():
        store = get_store(settings)
        try:
            await store.connect()
            await store.delete_all()
            console.print("[green]Conversation cleared.[/green]")
        finally:
            await store.disconnect()

    asyncio.run(_clear())


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
