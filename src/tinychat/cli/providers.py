"""Provider factory functions for CLI.

Centralizes creation of the settings, message store, backend and controller.
Hides configuration details from command implementations.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from ..backend import InferenceBackend, create_inference_backend
from ..config import ChatSettings
from ..session import ChatController, GenerationSession, ModelLoader
from ..store import MessageStore, create_message_store

# Default console for output
_console = Console()


def configure_logging(level: str, console: Console | None = None) -> None:
    """Route the ``tinychat`` logger hierarchy to a Rich handler."""
    handler = RichHandler(console=console or _console, show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    root = logging.getLogger("tinychat")
    root.handlers[:] = [handler]
    root.setLevel(level.upper())
    root.propagate = False


def get_store(settings: ChatSettings) -> MessageStore:
    """Create the message store selected by settings.

    Environment variables:
        TINYCHAT_STORE_BACKEND: 'sqlite' (default) or 'memory'
        TINYCHAT_DB_PATH: SQLite file (default: ./tinychat.db)
    """
    if settings.store_backend == "sqlite":
        return create_message_store("sqlite", path=settings.db_path)
    return create_message_store(settings.store_backend)


def get_backend(settings: ChatSettings, console: Console | None = None) -> InferenceBackend:
    """Create the inference backend.

    Raises:
        SystemExit: If the backend's libraries are not installed

    Environment variables:
        TINYCHAT_MODEL_REPO: Hugging Face repo id or local .gguf path
        TINYCHAT_MODEL_FILE: Exact GGUF file name (optional)
        TINYCHAT_MODELS_DIR: Download directory (default: ./models)
        TINYCHAT_CONTEXT_SIZE, TINYCHAT_GPU_LAYERS, TINYCHAT_TEMPERATURE
    """
    import typer

    con = console or _console
    try:
        return create_inference_backend(
            "llama_cpp",
            model_repo=settings.model_repo,
            model_file=settings.model_file,
            models_dir=settings.models_dir,
            context_size=settings.context_size,
            gpu_layers=settings.gpu_layers,
            temperature=settings.temperature,
        )
    except ImportError as e:
        con.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)


def get_controller(
    settings: ChatSettings,
    store: MessageStore,
    backend: InferenceBackend,
) -> ChatController:
    """Wire loader, session and controller from settings."""
    loader = ModelLoader(backend, resource_limit_bytes=settings.resource_limit_bytes)
    session = GenerationSession(
        max_tokens=settings.max_tokens,
        flush_every=settings.flush_every,
    )
    return ChatController(
        store=store,
        loader=loader,
        session=session,
        system_prompt=settings.system_prompt,
        max_history_messages=settings.max_history_messages,
    )
