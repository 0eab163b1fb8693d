"""
CLI Commands for shop administration.

There is no OAuth install flow in this service; shops are registered with
their offline access token and then configured for BillFree:

    flask shops register mystore.myshopify.com --access-token shpat_xxx
    flask shops configure-billfree mystore.myshopify.com --auth-token xxx --enable
"""
import click
from flask import current_app
from flask.cli import with_appcontext

from ..extensions import db
from ..models import Shop, normalize_shop_domain


@click.group('shops')
def shops_cli():
    """Shop registration and BillFree configuration."""
    pass


@shops_cli.command('register')
@click.argument('domain')
@click.option('--access-token', required=True, help='Shopify offline Admin API access token')
@click.option('--name', help='Display name for the shop')
@with_appcontext
def register_shop(domain, access_token, name):
    """Create or update a shop and its Shopify access token."""
    domain = normalize_shop_domain(domain)
    shop = Shop.find_by_domain(domain)
    created = shop is None

    if created:
        shop = Shop(
            shopify_domain=domain,
            shop_name=name or domain.split('.')[0],
            default_dial_code=current_app.config.get('BILLFREE_DEFAULT_DIAL_CODE') or '91'
        )
        db.session.add(shop)
    elif name:
        shop.shop_name = name

    shop.shopify_access_token = access_token
    shop.is_active = True
    db.session.commit()

    click.echo(f"{'Registered' if created else 'Updated'} shop {domain} (id={shop.id})")


@shops_cli.command('configure-billfree')
@click.argument('domain')
@click.option('--auth-token', help='BillFree auth token')
@click.option('--dial-code', help='Default dial code, e.g. 91')
@click.option('--enable/--disable', default=None, help='Turn the integration on or off')
@with_appcontext
def configure_billfree(domain, auth_token, dial_code, enable):
    """Set the BillFree token, dial code and enabled flag for a shop."""
    shop = Shop.find_by_domain(domain)
    if not shop:
        raise click.ClickException(f"Shop {domain} not found")

    if auth_token is not None:
        if not auth_token.strip():
            raise click.ClickException("--auth-token cannot be empty")
        shop.billfree_auth_token = auth_token.strip()

    if dial_code is not None:
        dial_code = dial_code.lstrip('+')
        if not dial_code.isdigit() or len(dial_code) > 4:
            raise click.ClickException("--dial-code must be 1-4 digits")
        shop.default_dial_code = dial_code

    if enable is not None:
        if enable and not shop.billfree_auth_token:
            raise click.ClickException("Set --auth-token before enabling BillFree")
        shop.is_billfree_configured = enable

    db.session.commit()

    status = 'enabled' if shop.is_billfree_configured else 'disabled'
    click.echo(f"BillFree {status} for {shop.shopify_domain}")


@shops_cli.command('show')
@click.argument('domain')
@with_appcontext
def show_shop(domain):
    """Show a shop's integration status. Tokens are never printed."""
    shop = Shop.find_by_domain(domain)
    if not shop:
        raise click.ClickException(f"Shop {domain} not found")

    info = shop.to_dict()
    click.echo(f"Shop: {info['shopify_domain']} (id={info['id']})")
    click.echo(f"  Active: {info['is_active']}")
    click.echo(f"  Shopify token: {'set' if shop.shopify_access_token else 'MISSING'}")
    click.echo(f"  BillFree configured: {info['is_billfree_configured']}")
    click.echo(f"  BillFree token: {'set' if info['has_billfree_auth_token'] else 'missing'}")
    click.echo(f"  Default dial code: +{info['default_dial_code']}")
    if info['field_mappings']:
        click.echo("  Field mappings:")
        for billfree_field, shopify_field in sorted(info['field_mappings'].items()):
            click.echo(f"    {billfree_field} <- {shopify_field}")


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(shops_cli)
