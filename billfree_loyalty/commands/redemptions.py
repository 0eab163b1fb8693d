"""
CLI Commands for inspecting redemption attempts.

Failed attempts after a successful BillFree redeem (points debited, no
discount delivered) need manual reconciliation:

    flask redemptions list --domain mystore.myshopify.com --status failed
"""
import click
from flask.cli import with_appcontext

from ..models import RedemptionStatus
from ..services.redemption_ledger import RedemptionLedger


@click.group('redemptions')
def redemptions_cli():
    """Redemption ledger commands."""
    pass


@redemptions_cli.command('list')
@click.option('--domain', required=True, help='Shop domain')
@click.option('--status', type=click.Choice([s.value for s in RedemptionStatus]), help='Filter by status')
@click.option('--limit', type=int, default=50, help='Maximum rows (default: 50)')
@with_appcontext
def list_redemptions(domain, status, limit):
    """List recent redemption attempts for a shop."""
    attempts = RedemptionLedger().list_for_shop(domain, status=status, limit=limit)

    if not attempts:
        click.echo("No redemption attempts found")
        return

    for attempt in attempts:
        amount = f"{attempt.capped_amount:.2f}" if attempt.capped_amount is not None else '-'
        line = (
            f"{attempt.created_at:%Y-%m-%d %H:%M} {attempt.status:<9} {attempt.channel:<11} "
            f"{attempt.invoice_ref} customer={attempt.shopify_customer_id} amount={amount}"
        )
        if attempt.discount_code:
            line += f" code={attempt.discount_code}"
        if attempt.error_code:
            line += f" error={attempt.error_code}"
        click.echo(line)

    click.echo(f"\n{len(attempts)} attempt(s)")


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(redemptions_cli)
