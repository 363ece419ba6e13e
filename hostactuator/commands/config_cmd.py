"""CLI handlers for config commands."""

from __future__ import annotations

import json
from pathlib import Path

import click
import tomli_w

from hostactuator.config import DEFAULT_CONFIG_PATH, init_config, load_config

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore[no-redef]

_CONFIG_OPTION = click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file path",
)


def _mask(secret: str) -> str:
    if not secret:
        return "not set"
    return "configured"


def _coerce(value: str):
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    if value.isdigit():
        return int(value)
    if value.startswith("[") or value.startswith("{"):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


@click.group("config")
def config_group():
    """Manage configuration."""
    pass


@config_group.command("init")
@_CONFIG_OPTION
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def config_init(config_path: Path | None, force: bool):
    """Create default configuration file."""
    path = config_path or DEFAULT_CONFIG_PATH
    if path.exists() and not force:
        click.echo(f"Configuration already exists at: {path} (use --force to overwrite)")
        return
    path = init_config(path)
    click.echo(f"Configuration created at: {path}")


@config_group.command("show")
@_CONFIG_OPTION
def config_show(config_path: Path | None):
    """Show current configuration."""
    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Config file: {config.config_path}")
    click.echo(f"  Actuator ID: {config.resolved_actuator_id}")
    click.echo(f"  Root: {config.resolved_cwd}")
    click.echo(f"  Capabilities: {', '.join(config.capabilities)}")
    click.echo(f"  Brain mode: {'enabled' if config.brain_mode else 'disabled'}")
    click.echo(f"  Broker: {config.broker.url or 'not set'} (token={_mask(config.broker.token)})")
    max_attempts = config.reconnect.max_attempts or "unbounded"
    click.echo(
        f"  Reconnect: base={config.reconnect.base_ms}ms, max={config.reconnect.max_ms}ms, "
        f"attempts={max_attempts}"
    )
    click.echo(
        f"  Execution: timeout={config.execution.default_timeout}s "
        f"(max {config.execution.max_timeout}s), kill grace={config.execution.kill_grace}s"
    )
    if config.webhook.port:
        click.echo(f"  Webhook: http://localhost:{config.webhook.port}/hooks/wake")
    else:
        click.echo("  Webhook: disabled")


@config_group.command("set")
@_CONFIG_OPTION
@click.argument("key")
@click.argument("value")
def config_set(config_path: Path | None, key: str, value: str):
    """Set a configuration value.

    Modifies the TOML config file. Key uses dot notation, e.g.:
    broker.url, general.brain_mode, reconnect.max_attempts
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        click.echo("No config file found. Run 'hostactuator config init' first.", err=True)
        return

    with open(path, "rb") as f:
        data = tomllib.load(f)

    # Navigate dot-separated key
    parts = key.split(".")
    target = data
    for part in parts[:-1]:
        if part not in target:
            target[part] = {}
        target = target[part]

    target[parts[-1]] = _coerce(value)

    with open(path, "wb") as f:
        tomli_w.dump(data, f)

    click.echo(f"Set {key} = {value}")
