"""CLI handler for running the actuator in the foreground."""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path

import click

from hostactuator.config import ActuatorConfig, load_config


def _run(coro):
    return asyncio.run(coro)


def _apply_overrides(
    config: ActuatorConfig,
    actuator_id: str | None,
    cwd: str | None,
    capabilities: str | None,
    brain: bool,
    webhook_port: int | None,
) -> None:
    if actuator_id:
        config.actuator_id = actuator_id
    if cwd:
        config.cwd = cwd
    if capabilities:
        config.capabilities = [c.strip() for c in capabilities.split(",") if c.strip()]
    if brain:
        config.brain_mode = True
    if webhook_port is not None:
        config.webhook.port = webhook_port


@click.command("run")
@click.option("--id", "actuator_id", default=None, help="Actuator ID (default: hostname)")
@click.option("--cwd", default=None, help="Root directory for commands and file operations")
@click.option("--capabilities", default=None, help="Comma-separated capabilities (informational)")
@click.option("--brain", is_flag=True, help="Brain mode: accept wake events, refuse commands")
@click.option("--webhook-port", type=int, default=None, help="Local port receiving wake events")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file path",
)
def run_command(
    actuator_id: str | None,
    cwd: str | None,
    capabilities: str | None,
    brain: bool,
    webhook_port: int | None,
    config_path: Path | None,
):
    """Connect to the broker and execute commands until interrupted.

    Broker URL and token come from the config file or the
    ACTUATOR_BROKER_URL / ACTUATOR_BROKER_TOKEN environment variables.
    """
    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    _apply_overrides(config, actuator_id, cwd, capabilities, brain, webhook_port)

    if not config.broker.url:
        raise click.UsageError("Broker URL required: set ACTUATOR_BROKER_URL or broker.url")
    if not config.broker.token:
        raise click.UsageError("Broker token required: set ACTUATOR_BROKER_TOKEN or broker.token")
    if not config.resolved_cwd.is_dir():
        raise click.UsageError(f"Working directory does not exist: {config.resolved_cwd}")

    async def _start():
        from hostactuator.context import ActuatorContext

        ctx = ActuatorContext(config)
        try:
            click.echo(f"Actuator {config.resolved_actuator_id} starting (root={ctx.root})")
            await ctx.start()

            stop_event = asyncio.Event()
            loop = asyncio.get_running_loop()

            def _handle_signal(signum):
                click.echo(f"\nReceived signal {signum}, shutting down...")
                stop_event.set()

            for signum in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(signum, _handle_signal, signum)

            await stop_event.wait()
        finally:
            await ctx.close()
            click.echo("Actuator stopped")

    _run(_start())
