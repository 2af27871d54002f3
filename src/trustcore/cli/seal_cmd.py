"""trustcore seal: seal a signing request from a file."""

import json
from pathlib import Path

import click
from pydantic import ValidationError

from trustcore.cli.main import cli, load_cli_settings
from trustcore.errors import TrustCoreError


def _read_request(path: Path) -> dict:
    text = path.read_text()
    if path.suffix in (".yaml", ".yml"):
        import yaml

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise click.ClickException(f"Cannot parse {path}: {e}") from e
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise click.ClickException(f"{path} must contain a JSON object")
    return data


@cli.command()
@click.argument("request_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--deadline", type=float, default=None, help="Seconds allowed for the whole seal")
@click.option("--output", "output_path", default=None, help="Write the evidence JSON to this file")
@click.pass_context
def seal(
    ctx: click.Context, request_file: Path, deadline: float | None, output_path: str | None
) -> None:
    """Sign, timestamp and chain a signing request; print the evidence JSON."""
    from trustcore.sealing.models import SigningRequest
    from trustcore.sealing.service import build_sealing_service

    settings = load_cli_settings(ctx)
    try:
        request = SigningRequest.model_validate(_read_request(request_file))
    except (ValueError, ValidationError) as e:
        raise click.ClickException(f"Invalid signing request: {e}") from e

    try:
        service = build_sealing_service(settings)
        evidence = service.seal(request, deadline=deadline)
    except TrustCoreError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}") from e

    content = json.dumps(evidence.to_json_dict(), indent=2)
    if output_path:
        with open(output_path, "w") as f:
            f.write(content)
        click.echo(f"Sealed {request.envelope_id} at seq {evidence.event.seq}; evidence written to {output_path}")
    else:
        click.echo(content)
