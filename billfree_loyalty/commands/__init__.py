"""
CLI Commands for BillFree Loyalty.

Usage:
    flask shops register mystore.myshopify.com --access-token shpat_...
    flask shops configure-billfree mystore.myshopify.com --auth-token ... --enable
    flask shops show mystore.myshopify.com

    flask redemptions list --domain mystore.myshopify.com --status failed
"""
from .shops import init_app as init_shop_commands
from .redemptions import init_app as init_redemption_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_shop_commands(app)
    init_redemption_commands(app)
