"""Command-line interface."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer

from nimbridge import __version__
from nimbridge.config.loader import load_config
from nimbridge.logging import setup_logging
from nimbridge.memory.store import MemoryStore, build_memory_store

app = typer.Typer(name="nimbridge", help="OpenAI-compatible NIM relay with roleplay memory.", no_args_is_help=True)
memory_app = typer.Typer(help="Inspect and wipe conversation memory.", no_args_is_help=True)
app.add_typer(memory_app, name="memory")

ConfigOption = typer.Option(None, "--config", "-c", help="Path to config JSON.")


def _store(config_path: Path | None) -> MemoryStore:
    config = load_config(config_path)
    return build_memory_store(config.memory)


@app.command()
def version() -> None:
    """Print the version."""
    typer.echo(f"nimbridge v{__version__}")


@app.command()
def serve(
    config_path: Optional[Path] = ConfigOption,
    host: Optional[str] = typer.Option(None, "--host", help="Bind address."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Listen port."),
) -> None:
    """Run the HTTP relay."""
    import uvicorn

    from nimbridge.server.app import create_app

    config = load_config(config_path)
    setup_logging(json_output=config.logging.json_output, level=config.logging.level)
    uvicorn.run(
        create_app(config),
        host=host or config.server.host,
        port=port or config.server.port,
        log_level=config.logging.level.lower(),
    )


@memory_app.command("list")
def memory_list(config_path: Optional[Path] = ConfigOption) -> None:
    """List conversation ids that have stored memory."""
    ids = asyncio.run(_store(config_path).list_ids())
    if not ids:
        typer.echo("No stored conversations.")
        return
    for conversation_id in ids:
        typer.echo(conversation_id)


@memory_app.command("show")
def memory_show(
    conversation_id: str = typer.Argument(..., help="Conversation id."),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Print the stored memory of one conversation."""
    record = asyncio.run(_store(config_path).peek(conversation_id))
    if record is None:
        typer.echo(f"No memory for {conversation_id}.")
        raise typer.Exit(code=1)
    typer.echo(f"core: {record.core}")
    typer.echo(f"summary: {record.summary or '(empty)'}")
    typer.echo(f"scene: {record.scene or '(empty)'}")
    typer.echo(f"last_summary_at: {record.last_summary_at}")


@memory_app.command("wipe")
def memory_wipe(
    conversation_id: str = typer.Argument(..., help="Conversation id."),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Delete one conversation's memory."""
    removed = asyncio.run(_store(config_path).delete(conversation_id))
    typer.echo(f"Wiped {conversation_id}." if removed else f"No memory for {conversation_id}.")


@memory_app.command("wipe-all")
def memory_wipe_all(
    config_path: Optional[Path] = ConfigOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Delete every conversation's memory."""
    if not yes:
        typer.confirm("Wipe memory for ALL conversations?", abort=True)
    count = asyncio.run(_store(config_path).clear())
    typer.echo(f"Wiped {count} conversation(s).")
