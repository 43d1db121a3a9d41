"""CLI entry point for oidcflow."""

from pathlib import Path

import click

from oidcflow import __version__
from oidcflow.cli import config as config_commands
from oidcflow.cli import flow as flow_commands
from oidcflow.core.config import load_config
from oidcflow.core.logging import configure_logging


@click.group()
@click.version_option(version=__version__, prog_name="oidcflow")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="OIDCFLOW_CONFIG",
    help="Path to config.yaml",
)
@click.option(
    "--log-level",
    type=click.Choice(["ERROR", "INFO", "DEBUG", "TRACE"], case_sensitive=False),
    default="ERROR",
    show_default=True,
    help="Protocol log level",
)
@click.option("--trace", "trace_enabled", is_flag=True, help="Allow TRACE logs to include secrets")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str, trace_enabled: bool) -> None:
    """oidcflow - OAuth2 Authorization Code / OpenID Connect client."""
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config(config_path)
    except ValueError as e:
        raise click.ClickException(str(e)) from None
    ctx.obj["protocol_logger"] = configure_logging(log_level, trace_enabled=trace_enabled)


cli.add_command(config_commands.config)
cli.add_command(flow_commands.authorize_url)
cli.add_command(flow_commands.callback)
cli.add_command(flow_commands.exchange)
cli.add_command(flow_commands.refresh)
cli.add_command(flow_commands.decode)
cli.add_command(flow_commands.verify)
cli.add_command(flow_commands.userinfo)
