"""initial entitlement schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create entitlement tables."""

    # ========================================================================
    # Per-product entitlements (Stripe, Paystack)
    # ========================================================================
    op.create_table(
        'entitlements',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('product_id', sa.String(255), nullable=False),
        sa.Column('platform', sa.String(20), nullable=False),
        sa.Column('purchase_token', sa.String(255), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('raw_response', JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # No unique key on (user_id, product_id): one-time Stripe purchases are insert-only
        sa.CheckConstraint("platform IN ('stripe', 'paystack', 'revenuecat')", name='ck_entitlement_platform'),
    )

    op.create_index('idx_entitlements_user_product', 'entitlements', ['user_id', 'product_id'])
    op.create_index('idx_entitlements_purchase_token', 'entitlements', ['purchase_token'])
    op.create_index(
        'idx_entitlements_active_user',
        'entitlements',
        ['user_id'],
        postgresql_where=sa.text('is_active'),
    )

    # ========================================================================
    # Per-user subscription state (RevenueCat)
    # ========================================================================
    op.create_table(
        'user_subscriptions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('tier', sa.String(20), nullable=False, server_default='free'),
        sa.Column('status', sa.String(20), nullable=False, server_default='inactive'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('billing_cycle', sa.String(20), nullable=True),
        sa.Column('transaction_id', sa.String(255), nullable=True),
        sa.Column('payment_provider', sa.String(20), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('user_id', name='uq_user_subscriptions_user_id'),
    )


def downgrade() -> None:
    """Drop entitlement tables."""
    op.drop_table('user_subscriptions')
    op.drop_index('idx_entitlements_active_user', table_name='entitlements')
    op.drop_index('idx_entitlements_purchase_token', table_name='entitlements')
    op.drop_index('idx_entitlements_user_product', table_name='entitlements')
    op.drop_table('entitlements')
