"""Create shops and redemption_attempts tables

Revision ID: b1f2e3d4c5a6
Revises:
Create Date: 2026-10-12 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b1f2e3d4c5a6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create shops and the redemption attempt ledger."""
    op.create_table(
        'shops',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_name', sa.String(255), nullable=True),
        sa.Column('shopify_domain', sa.String(255), nullable=False),
        sa.Column('shopify_access_token', sa.Text(), nullable=True),
        sa.Column('billfree_auth_token', sa.Text(), nullable=True),
        sa.Column('is_billfree_configured', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('default_dial_code', sa.String(5), nullable=False, server_default='91'),
        sa.Column('field_mappings', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_shops_shopify_domain', 'shops', ['shopify_domain'], unique=True)

    op.create_table(
        'redemption_attempts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('invoice_ref', sa.String(150), nullable=False),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('shopify_customer_id', sa.String(50), nullable=False),
        sa.Column('bill_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('discount_value', sa.Numeric(12, 2), nullable=True),
        sa.Column('capped_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('points_redeemed', sa.Numeric(12, 2), nullable=True),
        sa.Column('discount_code', sa.String(64), nullable=True),
        sa.Column('provider_message', sa.String(500), nullable=True),
        sa.Column('error_code', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_ref')
    )

    op.create_index('ix_redemption_attempts_shop_status', 'redemption_attempts', ['shop_id', 'status'])
    op.create_index('ix_redemption_attempts_shop_customer', 'redemption_attempts', ['shop_id', 'shopify_customer_id'])


def downgrade():
    """Drop redemption_attempts and shops."""
    op.drop_index('ix_redemption_attempts_shop_customer', table_name='redemption_attempts')
    op.drop_index('ix_redemption_attempts_shop_status', table_name='redemption_attempts')
    op.drop_table('redemption_attempts')
    op.drop_index('ix_shops_shopify_domain', table_name='shops')
    op.drop_table('shops')
