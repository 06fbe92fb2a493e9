"""initial schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 00:00:00.000000

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
    """Create products, users and purchases."""

    # ========================================================================
    # Create products table
    # ========================================================================
    op.create_table(
        'products',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('product_id', sa.String(255), nullable=False),
        sa.Column('type', sa.Integer(), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('platform', sa.String(20), nullable=True),
        sa.Column('point', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ai_point', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('period_days', sa.Integer(), nullable=True, server_default='30'),
        sa.Column('renewal_period_days', sa.Integer(), nullable=True, server_default='30'),
        sa.Column('event_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.UniqueConstraint('product_id', name='uq_products_product_id'),
        sa.CheckConstraint('type IN (0, 1)', name='ck_product_type'),
        sa.CheckConstraint('point >= 0', name='ck_product_point_non_negative'),
        sa.CheckConstraint('ai_point >= 0', name='ck_product_ai_point_non_negative'),
    )

    op.create_index('idx_products_platform_type', 'products', ['platform', 'type'])

    # ========================================================================
    # Create users table (entitlement columns)
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('point', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('ai_point', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('membership_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('membership_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_membership_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_membership_product_id', sa.String(255), nullable=True),
        sa.Column('event_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('point >= 0', name='ck_user_point_non_negative'),
        sa.CheckConstraint('ai_point >= 0', name='ck_user_ai_point_non_negative'),
        sa.CheckConstraint(
            '(membership_at IS NULL AND membership_expires_at IS NULL '
            'AND last_membership_at IS NULL AND current_membership_product_id IS NULL) '
            'OR (membership_at IS NOT NULL AND membership_expires_at IS NOT NULL '
            'AND last_membership_at IS NOT NULL AND current_membership_product_id IS NOT NULL)',
            name='ck_user_membership_all_or_none',
        ),
    )

    op.create_index(
        'idx_users_membership_expires_at',
        'users',
        ['membership_expires_at'],
        postgresql_where=sa.text('membership_at IS NOT NULL'),
    )

    # ========================================================================
    # Create purchases table
    # ========================================================================
    op.create_table(
        'purchases',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('product', JSONB(), nullable=False),
        sa.Column('receipt', JSONB(), nullable=True),
        sa.Column('transaction_id', sa.String(255), nullable=False),
        sa.Column('original_transaction_id', sa.String(255), nullable=True),
        sa.Column('verified_by', sa.String(20), nullable=False),
        sa.Column('is_expired', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_by_admin', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint("verified_by IN ('iap', 'google-api', 'admin')", name='ck_purchase_verified_by'),

        # Foreign key
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_purchases_user', ondelete='CASCADE'),
    )

    op.create_index('idx_purchases_user_id', 'purchases', ['user_id'])
    op.create_index(
        'idx_purchases_unexpired',
        'purchases',
        ['created_at'],
        postgresql_where=sa.text('is_expired = false'),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('purchases')
    op.drop_table('users')
    op.drop_table('products')
