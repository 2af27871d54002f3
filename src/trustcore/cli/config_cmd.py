"""trustcore config: inspect the effective configuration."""

import click

from trustcore.cli.main import cli, load_cli_settings


@cli.group()
def config() -> None:
    """Configuration commands."""


@config.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Validate the configuration and print the active providers."""
    settings = load_cli_settings(ctx)

    click.echo(f"Environment:   {settings.trust_environment}")
    click.echo(f"Signer:        {settings.hsm_provider}")
    if settings.hsm_provider == "external_cli":
        click.echo(f"  cli:         {settings.signer_cli_path} ({settings.signer_mode})")
    click.echo(f"TSA:           {settings.tsa_provider}")
    if settings.tsa_provider == "rfc3161":
        click.echo(f"  url:         {settings.tsa_url}")
        click.echo(f"  encoder:     {settings.tsa_tsq_encoder}")
        click.echo(f"  dev fallback: {'on' if settings.tsa_dev_fallback else 'off'}")
    click.echo(f"Policy OID:    {settings.tsa_policy_oid}")
    click.echo(f"Database:      {settings.database_url}")

    if settings.hsm_provider == "dev":
        click.echo("Warning: dev signer in use; signatures are not production evidence.")
    if settings.tsa_provider in ("none", "clock", "dev"):
        click.echo(f"Warning: TSA mode {settings.tsa_provider} gives no trusted timestamp.")
    click.echo("Configuration OK.")
