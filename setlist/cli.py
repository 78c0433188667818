"""Command line interface for running and inspecting the setlist orchestrator."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer

from setlist import build_engine, get_store
from setlist.cli_utils.catalog import _seed_catalog
from setlist.config import load_config
from setlist.errors import NotFoundError, SetlistError
from setlist.network import host_and_port
from setlist.rpc import ORCHESTRATOR_SERVICE, RpcClientPool
from setlist.rpc.contracts import PlaylistRequest, PlaylistSegue

app = typer.Typer(help="CLI for the setlist orchestrator")

# Command groups
playlist_app = typer.Typer(help="Commands for inspecting playlists")
strategy_app = typer.Typer(help="Commands for inspecting strategies")
plugin_app = typer.Typer(help="Commands for inspecting plugins")
catalog_app = typer.Typer(help="Commands for managing the strategy catalog")

app.add_typer(playlist_app, name="playlist")
app.add_typer(strategy_app, name="strategy")
app.add_typer(plugin_app, name="plugin")
app.add_typer(catalog_app, name="catalog")


@app.callback()
def main() -> None:
    """setlist CLI entry point."""
    pass


@app.command("serve")
def serve(
    host: Optional[str] = None,
    port: Optional[int] = None,
    log_level: str = typer.Option("info", help="Python logging level"),
) -> None:
    """
    Run the orchestrator service.

    Serves TriggerPlaylist and SeguePlaylist plus the read-only playlist
    views. Host and port default to the ``server`` section of the config.

    Example:
        setlist serve --port 50051
    """
    import uvicorn

    from setlist.rpc.server import create_app

    logging.basicConfig(level=log_level.upper())
    config = load_config()
    uvicorn.run(
        create_app(build_engine(config)),
        host=host or config.server.host,
        port=port or config.server.port,
        log_level=log_level.lower(),
    )


async def _call_orchestrator(url: str, procedure: str, request):
    host, port = host_and_port(url)
    config = load_config()
    pool = RpcClientPool(timeout=config.rpc.timeout, probe_timeout=config.rpc.probe_timeout)
    try:
        client = await pool.get(host, port, ORCHESTRATOR_SERVICE)
        if client is None:
            raise SetlistError(f"Could not reach orchestrator at {url}")
        return await client.invoke(procedure, request)
    finally:
        await pool.aclose()


@app.command("trigger")
def trigger(
    strategy: str,
    context: str = typer.Option("{}", help="JSON metadata for the run"),
    origin: str = typer.Option("", help="URL that receives Deliver calls"),
    url: str = typer.Option("http://localhost:50051", help="Orchestrator URL"),
) -> None:
    """
    Start a playlist for STRATEGY on a running orchestrator.

    Example:
        setlist trigger nightly-report --context '{"day": "monday"}' --origin http://me:7000
    """
    try:
        response = asyncio.run(
            _call_orchestrator(
                url,
                "TriggerPlaylist",
                PlaylistRequest(slug=strategy, context=context, origin=origin),
            )
        )
    except SetlistError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"{response.slug}\t{response.status}")


@app.command("segue")
def segue(
    slug: str,
    output: str = typer.Option("null", help="JSON output of the current step"),
    step_id: Optional[int] = typer.Option(None, help="Step the output belongs to"),
    url: str = typer.Option("http://localhost:50051", help="Orchestrator URL"),
) -> None:
    """Report a step's output for playlist SLUG, as a worker would."""
    try:
        response = asyncio.run(
            _call_orchestrator(
                url,
                "SeguePlaylist",
                PlaylistSegue(slug=slug, output=output, step_id=step_id),
            )
        )
    except SetlistError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo("ok" if response.success else "rejected")


@playlist_app.command("list")
def playlist_list() -> None:
    """
    List all playlists with their current status.

    Example:
        setlist playlist list
        # Output: V1StGXR8Z5jdHi6BmyT2x    RUNNING    step 2
    """
    engine = build_engine()
    playlists = asyncio.run(engine.list_playlists())
    if not playlists:
        typer.echo("No playlists found")
        return
    for playlist in playlists:
        step = (
            f"step {playlist.current_step_id}"
            if playlist.current_step_id is not None
            else "-"
        )
        typer.echo(f"{playlist.slug}\t{playlist.status.value}\t{step}")


@playlist_app.command("show")
def playlist_show(slug: str) -> None:
    """
    Show a playlist, its metadata and the output of every step so far.

    Example:
        setlist playlist show V1StGXR8Z5jdHi6BmyT2x
    """
    engine = build_engine()
    try:
        playlist, context = asyncio.run(engine.get_playlist(slug))
    except NotFoundError:
        typer.echo("Playlist not found")
        raise typer.Exit(code=1)
    except SetlistError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Playlist {playlist.slug}: {playlist.status.value}")
    if context is None:
        typer.echo("No context recorded")
        return
    if context.metadata:
        typer.echo(f"Metadata: {context.metadata}")
    typer.echo(f"Origin: {context.origin or '-'}")
    for step in context.sequence:
        marker = "*" if step.id == playlist.current_step_id else "-"
        label = step.name or (step.plugin.slug if step.plugin else str(step.plugin_id))
        typer.echo(
            f"{marker} {step.id} {label}"
            + (f": {step.output}" if step.has_output else "")
        )


@playlist_app.command("crash")
def playlist_crash(slug: str) -> None:
    """Mark playlist SLUG as FAILED."""
    engine = build_engine()
    try:
        playlist = asyncio.run(engine.crash(slug))
    except SetlistError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"{playlist.slug}\t{playlist.status.value}")


@strategy_app.command("list")
def strategy_list() -> None:
    """List strategies and their step chains."""
    store = get_store()
    strategies = asyncio.run(store.list_strategies())
    if not strategies:
        typer.echo("No strategies found")
        return
    for strategy in strategies:
        try:
            chain = " -> ".join(str(step.id) for step in strategy.chain())
        except ValueError as e:
            chain = f"invalid: {e}"
        typer.echo(f"{strategy.slug}\t{chain}")


@plugin_app.command("list")
def plugin_list() -> None:
    """
    List registered plugins and the address each one is served at.

    Example:
        setlist plugin list
        # Output: fetch    fetcher:7001
    """
    store = get_store()
    plugins = asyncio.run(store.list_plugins())
    if not plugins:
        typer.echo("No plugins found")
        return
    for plugin in plugins:
        typer.echo(f"{plugin.slug}\t{plugin.host}:{plugin.port}")


@catalog_app.command("load")
def catalog_load(path: Path) -> None:
    """
    Load plugins and strategies from a YAML file into the configured store.

    Example:
        setlist catalog load catalog.yaml
    """
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        plugins, strategies = asyncio.run(_seed_catalog(get_store(), path))
    except ValueError as e:
        typer.secho(f"Invalid catalog: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Loaded {plugins} plugins and {strategies} strategies")
