"""Click CLI group for trustcore."""

from pathlib import Path

import click

from trustcore.config import TrustSettings, load_settings
from trustcore.errors import ConfigError
from trustcore.log import configure_logging


@click.group()
@click.version_option(package_name="trustcore")
@click.option(
    "--config",
    "config_file",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    envvar="TRUSTCORE_CONFIG",
    help="YAML file overriding environment settings",
)
@click.pass_context
def cli(ctx: click.Context, config_file: Path | None) -> None:
    """trustcore: signing, timestamping and audit evidence for e-signatures."""
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file


def load_cli_settings(ctx: click.Context) -> TrustSettings:
    """Load settings for a command and configure logging from them."""
    try:
        settings = load_settings(ctx.obj.get("config_file"))
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    configure_logging(settings)
    return settings
