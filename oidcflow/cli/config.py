"""Configuration CLI commands."""

from __future__ import annotations

from pathlib import Path

import click

from oidcflow.core.config import DEFAULT_CONFIG_FILE, AppConfig, get_default_config_yaml
from oidcflow.cli.output import json_option, output_result


@click.group()
def config() -> None:
    """Manage oidcflow configuration."""
    pass


@config.command("show")
@click.option("--show-secret", is_flag=True, help="Include the client secret in the output")
@json_option
@click.pass_context
def config_show(ctx: click.Context, show_secret: bool, output_json: bool) -> None:
    """Show the effective configuration (file plus environment)."""
    app_config: AppConfig = ctx.obj["config"]
    data = app_config.to_dict(include_secret=show_secret)
    data["config_path"] = str(app_config.config_path) if app_config.config_path else None
    output_result(data, output_json)


@config.command("init")
@click.option(
    "--path",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help=f"Where to write the file (default: {DEFAULT_CONFIG_FILE})",
)
@click.option("--force", is_flag=True, help="Overwrite an existing config file.")
@json_option
def config_init(config_path: Path | None, force: bool, output_json: bool) -> None:
    """Write an example config.yaml.

    Examples:

        # Write ~/.oidcflow/config.yaml
        oidcflow config init

        # Write somewhere else
        oidcflow config init --path ./oidcflow.yaml
    """
    path = config_path or DEFAULT_CONFIG_FILE

    if path.exists() and not force:
        if output_json:
            output_result({"status": "exists", "config_path": str(path)}, as_json=True)
            return
        click.echo(f"Config file already exists: {path}")
        click.echo("Use --force to overwrite it")
        return

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_default_config_yaml())

    if output_json:
        output_result({"status": "created", "config_path": str(path)}, as_json=True)
        return
    click.echo(f"Config file written to: {path}")
    click.echo("Set client.client_id, client.client_secret and client.redirect_uri before use.")
