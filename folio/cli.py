"""CLI entry points: `folio configure`, `folio new`, `folio show`, `folio run-all`, `folio clear`, `folio start`."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from folio.config import BackendFormat, StoreKind, ViewMode, ensure_dirs, load_config, notebooks_dir, save_config
from folio.core import Result
from folio.notebook.controller import NotebookController, NotebookSnapshot
from folio.store.base import StoreRequestError
from folio.store.factory import close_store, create_store
from folio.store.local import LocalParagraphStore

app = typer.Typer(name="folio", help="Notebook session core: paragraphs, runs and views.")
console = Console()

_PREVIEW_WIDTH = 60


@app.command()
def configure(
    backend_format: BackendFormat | None = typer.Option(None, "--format", "-f", help="Raw paragraph format"),
    kind: StoreKind | None = typer.Option(None, "--store", "-s", help="Paragraph store kind"),
    base_url: str | None = typer.Option(None, "--url", help="Base URL of the notebooks API"),
    api_prefix: str | None = typer.Option(None, "--prefix", help="API prefix of the notebooks API"),
    view_mode: ViewMode | None = typer.Option(None, "--view-mode", help="Default view mode"),
    concurrency: int | None = typer.Option(None, "--concurrency", help="Run-all concurrency limit (0 = unlimited)"),
    cors_origins: list[str] | None = typer.Option(
        None, "--cors-origin", help="Origin allowed to call the API server (repeatable)"
    ),
) -> None:
    """Update ~/.folio/config.json and print the result."""
    config = load_config()
    if backend_format is not None:
        config.backend.format = backend_format
    if kind is not None:
        config.backend.kind = kind
    if base_url is not None:
        config.backend.base_url = base_url
    if api_prefix is not None:
        config.backend.api_prefix = api_prefix
    if view_mode is not None:
        config.settings.view_mode = view_mode
    if concurrency is not None:
        config.settings.run_all_concurrency = concurrency or None
    if cors_origins is not None:
        config.settings.cors_origins = cors_origins
    save_config(config)

    t = Table(title="Folio configuration", show_header=False)
    t.add_column("Key", style="cyan")
    t.add_column("Value")
    t.add_row("format", config.backend.format.value)
    t.add_row("store", config.backend.kind.value)
    t.add_row("url", f"{config.backend.base_url}{config.backend.api_prefix}")
    t.add_row("view mode", config.settings.view_mode.value)
    t.add_row("run-all concurrency", str(config.settings.run_all_concurrency or "unlimited"))
    t.add_row("CORS origins", ", ".join(config.settings.cors_origins) or "none")
    console.print(t)


@app.command()
def new(name: str = typer.Argument("Untitled", help="Notebook name")) -> None:
    """Create an empty notebook in the local store."""
    ensure_dirs()
    try:
        notebook = LocalParagraphStore(notebooks_dir()).create_notebook(name)
    except StoreRequestError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1) from e
    console.print(f"[green]Created notebook [bold]{notebook.path}[/bold][/green] ({notebook.id})")


@app.command()
def show(
    notebook_id: str = typer.Argument(help="Notebook ID"),
    view_mode: ViewMode | None = typer.Option(None, "--view-mode", help="Override the view mode"),
) -> None:
    """Load a notebook and print its paragraphs."""

    async def _show(controller: NotebookController) -> Result[Any]:
        result = await controller.load(notebook_id)
        if view_mode is not None:
            controller.set_view_mode(view_mode)
        return result

    _print_snapshot(_with_controller(_show))


@app.command("run-all")
def run_all(notebook_id: str = typer.Argument(help="Notebook ID")) -> None:
    """Run every paragraph of a notebook and print the outputs."""

    async def _run_all(controller: NotebookController) -> Result[Any]:
        loaded = await controller.load(notebook_id)
        if not loaded.ok:
            return loaded
        return await controller.run_all()

    _print_snapshot(_with_controller(_run_all))


@app.command()
def clear(notebook_id: str = typer.Argument(help="Notebook ID")) -> None:
    """Clear the outputs of every paragraph of a notebook."""

    async def _clear(controller: NotebookController) -> Result[Any]:
        loaded = await controller.load(notebook_id)
        if not loaded.ok:
            return loaded
        return await controller.clear_all_outputs()

    _print_snapshot(_with_controller(_clear))


def _with_controller(
    action: Callable[[NotebookController], Awaitable[Result[Any]]],
) -> NotebookSnapshot:
    config = load_config()
    try:
        store = create_store(config.backend)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    async def _run() -> tuple[Result[Any], NotebookSnapshot]:
        controller = NotebookController.from_config(
            config, store, notifier=lambda message: console.print(f"[yellow]{message}[/yellow]")
        )
        try:
            result = await action(controller)
            return result, controller.snapshot()
        finally:
            await close_store(store)

    result, snapshot = asyncio.run(_run())
    if not result.ok:
        for d in result.diagnostics:
            console.print(f"[red]Error:[/red] {d.message}")
            if d.hint:
                console.print(f"  Hint: {d.hint}")
        raise typer.Exit(1)
    return snapshot


def _preview(value: Any) -> str:
    text = value if isinstance(value, str) else str(value)
    text = text.replace("\n", " ⏎ ")
    return text if len(text) <= _PREVIEW_WIDTH else text[: _PREVIEW_WIDTH - 1] + "…"


def _print_snapshot(snapshot: NotebookSnapshot) -> None:
    console.print(f"\n[bold]{snapshot.path}[/bold] [dim]({snapshot.notebook_id})[/dim]")
    console.print(f"Created: {snapshot.date_created} | Last updated: {snapshot.date_modified}")

    t = Table(show_lines=False)
    t.add_column("#", justify="right")
    t.add_column("Type", style="cyan")
    t.add_column("Input")
    t.add_column("Output")
    t.add_column("State", style="green")

    for view in snapshot.paragraphs:
        para, state = view.paragraph, view.state
        source = "" if state.is_input_hidden else _preview(para.input_text)
        output = "" if state.is_output_hidden else _preview(" ".join(str(o.result) for o in para.outputs))
        t.add_row(str(para.position), para.input_type.value, source, output, state.execution.value)

    console.print(t)


@app.command()
def start(
    port: int = typer.Option(8000, "--port", "-p", help="Port to serve on"),
) -> None:
    """Start the Folio API server."""
    import logging

    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    console.print(f"[bold]Starting Folio on port {port}...[/bold]")

    uvicorn.run("folio.server:app", host="0.0.0.0", port=port, reload=False)


def main() -> None:
    app()
