"""trustcore audit: audit chain commands."""

import click

from trustcore.cli.main import cli, load_cli_settings
from trustcore.errors import StoreUnavailable


def _chain(ctx: click.Context):
    from trustcore.audit.chain import AuditChain
    from trustcore.audit.store import EvidenceStore

    settings = load_cli_settings(ctx)
    store = EvidenceStore.from_url(settings.database_url)
    try:
        store.create_schema()
    except StoreUnavailable as e:
        raise click.ClickException(str(e)) from e
    return AuditChain(store)


@cli.group()
def audit() -> None:
    """Audit chain commands."""


@audit.command()
@click.argument("envelope_id")
@click.pass_context
def verify(ctx: click.Context, envelope_id: str) -> None:
    """Verify an envelope's audit chain."""
    result = _chain(ctx).verify(envelope_id)

    if result.events_checked == 0 and result.ok:
        click.echo(f"No audit events for envelope {envelope_id}")
        return
    if result.ok:
        click.echo(f"Audit chain verified: {result.events_checked} events, chain intact.")
        for warning in result.warnings:
            click.echo(f"  warning: {warning}")
    else:
        click.echo(f"VERIFICATION FAILED at seq {result.first_bad_seq}")
        click.echo(f"Error: {result.error}")
        raise SystemExit(1)


@audit.command()
@click.argument("envelope_id")
@click.option("--last", "n", default=20, type=int, help="Number of events to show")
@click.pass_context
def show(ctx: click.Context, envelope_id: str, n: int) -> None:
    """Print recent audit events."""
    events = _chain(ctx).export_chain(envelope_id)
    if not events:
        click.echo(f"No audit events for envelope {envelope_id}")
        return

    for event in events[-n:]:
        click.echo(f"  {event.seq:>4}  {event.occurred_at}  {event.kind:<20} {event.event_hash[:16]}")


@audit.command()
@click.argument("envelope_id")
@click.option("--output", "output_path", default=None, help="Output file path")
@click.option(
    "--no-record",
    is_flag=True,
    help="Do not chain an evidence_retrieved event for this export",
)
@click.pass_context
def export(ctx: click.Context, envelope_id: str, output_path: str | None, no_record: bool) -> None:
    """Export the evidence bundle as canonical JSON."""
    from trustcore.sealing.service import export_bundle, export_json

    chain = _chain(ctx)
    if chain.head(envelope_id) is None:
        click.echo(f"No audit events for envelope {envelope_id}")
        return

    bundle = export_bundle(chain, envelope_id, record_retrieval=not no_record)
    content = export_json(bundle)

    if output_path:
        with open(output_path, "wb") as f:
            f.write(content)
        click.echo(f"Exported {len(bundle.chain)} events to {output_path}")
    else:
        click.echo(content.decode("utf-8"))
