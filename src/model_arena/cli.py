"""CLI interface for Model Arena: serve the API or compare models live."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import click
import httpx
from rich.console import Console, Group
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from model_arena import __version__
from model_arena.client.reconstructor import ModelState, StreamReconstructor
from model_arena.client.session import ArenaClient, GenerationRequestError
from model_arena.config import ArenaConfig, ConfigError, load_config

console = Console()


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _footer(state: ModelState) -> Text:
    parts = []
    if state.ttfb_ms is not None:
        parts.append(f"TTFB {state.ttfb_ms} ms")
    if state.latency_ms is not None:
        parts.append(f"latency {state.latency_ms} ms")
    if state.tokens is not None:
        t = state.tokens
        parts.append(
            "tokens "
            f"{t.prompt_tokens if t.prompt_tokens is not None else '-'} in / "
            f"{t.completion_tokens if t.completion_tokens is not None else '-'} out / "
            f"{t.total_tokens if t.total_tokens is not None else '-'} total"
        )
    return Text("  ".join(parts) or "waiting...", style="dim")


def _model_panel(model_id: str, state: ModelState) -> Panel:
    if state.error:
        body = Text(state.error, style="red")
        border = "red"
    else:
        body = Markdown(state.content) if state.content else Text("...", style="dim")
        border = "green" if state.is_complete else "yellow"
    return Panel(
        Group(body, Text(""), _footer(state)),
        title=f"[bold]{model_id}[/bold]",
        border_style=border,
    )


def render_comparison(recon: StreamReconstructor) -> Group:
    """One panel per model, fastest finished model first."""
    panels = [_model_panel(m, recon.states[m]) for m in recon.sorted_model_ids()]
    if recon.error:
        panels.insert(0, Text(f"Streaming error: {recon.error}", style="bold red"))
    if recon.total_ms is not None:
        panels.append(Text(f"Total time: {recon.total_ms / 1000:.1f}s", style="dim"))
    return Group(*panels)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@click.group()
@click.option("--config", "-c", "config_path", default=None,
              help="Path to model_arena.yaml (auto-detected from CWD or ~/.config/model-arena/)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.version_option(__version__, prog_name="model-arena")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool):
    """Model Arena - compare LLM responses side by side."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    try:
        ctx.obj["config"] = load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)


@main.command()
@click.option("--host", default=None, help="Bind address (default from config)")
@click.option("--port", "-p", type=int, default=None, help="Port (default from config)")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None):
    """Run the streaming API server."""
    import uvicorn

    from model_arena.server.app import create_app

    config: ArenaConfig = ctx.obj["config"]
    logging.basicConfig(level=logging.DEBUG if ctx.obj["verbose"] else logging.INFO)
    try:
        app = create_app(config)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    uvicorn.run(
        app,
        host=host or config.server.host,
        port=port or config.server.port,
    )


@main.command()
@click.argument("prompt")
@click.option("--model", "-m", "models", multiple=True, required=True,
              help="Model id to compare (repeatable)")
@click.option("--temperature", "-t", type=float, default=None,
              help="Sampling temperature, 0 to 2")
@click.option("--server", "server_url", default=None, help="Arena server URL")
@click.pass_context
def compare(ctx: click.Context, prompt: str, models: tuple[str, ...],
            temperature: float | None, server_url: str | None):
    """Stream PROMPT to every --model and render the answers live."""
    config: ArenaConfig = ctx.obj["config"]
    logging.basicConfig(level=logging.DEBUG if ctx.obj["verbose"] else logging.WARNING)
    if temperature is None:
        temperature = config.stream.default_temperature
    try:
        recon = asyncio.run(_compare(
            server_url or config.client.server_url,
            config.client.watchdog_seconds,
            prompt, list(models), temperature,
        ))
    except GenerationRequestError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    if recon.error or any(s.error for s in recon.states.values()):
        sys.exit(1)


async def _compare(
    server_url: str,
    watchdog_seconds: float,
    prompt: str,
    models: list[str],
    temperature: float,
) -> StreamReconstructor:
    async with ArenaClient(server_url, watchdog_seconds) as client:
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, client.reset)
        except (NotImplementedError, RuntimeError):
            pass  # signal handlers are unavailable on this platform

        with Live(console=console, refresh_per_second=8) as live:
            recon = await client.generate(
                prompt, models, temperature,
                on_update=lambda r: live.update(render_comparison(r)),
            )
        return recon


@main.command(name="models")
@click.option("--server", "server_url", default=None, help="Arena server URL")
@click.pass_context
def list_models(ctx: click.Context, server_url: str | None):
    """List the chat models the server can compare."""
    config: ArenaConfig = ctx.obj["config"]

    async def _fetch() -> list[dict[str, str]]:
        async with ArenaClient(server_url or config.client.server_url) as client:
            return await client.list_models()

    try:
        models = asyncio.run(_fetch())
    except (GenerationRequestError, httpx.HTTPError) as e:
        console.print(f"[red]Failed to load models: {e}[/red]")
        sys.exit(1)

    if not models:
        console.print("[dim]No models available.[/dim]")
        return
    table = Table(title="Models", border_style="dim")
    table.add_column("ID", style="bold")
    table.add_column("Name")
    for m in models:
        table.add_row(m["id"], m["name"])
    console.print(table)


if __name__ == "__main__":
    main()
