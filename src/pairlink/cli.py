"""CLI entry point for the pairlink relay."""

from pathlib import Path

import click

from pairlink import __version__
from pairlink.config import load_config
from pairlink.errors import ConfigError
from pairlink.logging import setup_logging


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.pass_context
def main(ctx: click.Context, config: Path | None) -> None:
    """pairlink - Device pairing signaling relay."""
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config(config)
    except ConfigError as e:
        raise click.ClickException(str(e))
    ctx.obj["logger"] = setup_logging(ctx.obj["config"])


@main.command()
@click.option("--host", default=None, help="Bind address (overrides config).")
@click.option("--port", "-p", type=int, default=None, help="Listening port (overrides config).")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the relay until interrupted."""
    import asyncio

    from pairlink.relay import Relay, StartupError

    config = ctx.obj["config"]
    if host is not None:
        config.bind_address = host
    if port is not None:
        config.port = port

    async def _serve():
        relay = Relay(config=config)
        try:
            await relay.start()
        except StartupError as e:
            click.echo(f"Startup error: {e}", err=True)
            raise SystemExit(1)

        click.echo(f"Relay running on port {relay.server.get_port()}")
        click.echo("Press Ctrl+C to stop")
        await relay.run_forever()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        pass


@main.command()
@click.option(
    "--url",
    default=None,
    help="Relay base URL (defaults to the configured local port).",
)
@click.pass_context
def status(ctx: click.Context, url: str | None) -> None:
    """Query a running relay's health endpoint."""
    import asyncio

    import aiohttp

    base = (url or f"http://localhost:{ctx.obj['config'].port}").rstrip("/")

    async def _fetch() -> dict:
        timeout = aiohttp.ClientTimeout(total=5)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(f"{base}/health") as resp:
                resp.raise_for_status()
                return await resp.json()

    try:
        health = asyncio.run(_fetch())
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        click.echo(f"Relay status: unreachable ({e})", err=True)
        raise SystemExit(1)

    click.echo(f"Relay status: {health.get('status')}")
    click.echo(f"Connected devices: {health.get('connectedDevices')}")
    click.echo(f"Uptime: {health.get('uptime', 0):.0f}s")


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"pairlink version {__version__}")
