"""trustcore keys: development key management."""

from pathlib import Path

import click

from trustcore.cli.main import cli


@cli.group()
def keys() -> None:
    """Development key commands."""


@keys.command()
@click.option(
    "--out",
    "out_dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=Path("."),
    help="Directory for dev_key.pem and dev_key.pub.pem",
)
@click.option("--force", is_flag=True, help="Overwrite an existing key pair")
def generate(out_dir: Path, force: bool) -> None:
    """Generate an RSA-2048 dev key pair (usable as DEV_KEY_PATH)."""
    from trustcore.signers.keys import (
        generate_rsa_key,
        key_fingerprint,
        write_private_key,
        write_public_key,
    )

    private_path = out_dir / "dev_key.pem"
    public_path = out_dir / "dev_key.pub.pem"
    if private_path.exists():
        if not force:
            raise click.ClickException(f"Key already exists at {private_path} (use --force)")
        private_path.unlink()

    key = generate_rsa_key()
    write_private_key(key, private_path)
    write_public_key(key.public_key(), public_path)

    click.echo(f"Private key: {private_path} (owner-read only)")
    click.echo(f"Public key:  {public_path}")
    click.echo(f"Key id:      {key_fingerprint(key.public_key())}")
