"""create_bestowals_tables

Revision ID: b7e41c2d9a10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = 'b7e41c2d9a10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUMS = {
    'orchard_status_enum': ('draft', 'active', 'paused', 'completed'),
    'orchard_type_enum': ('standard', 'full_value'),
    'product_type_enum': ('digital', 'physical'),
    'payment_method_enum': ('binance_pay', 'cryptomus'),
    'payment_status_enum': ('pending', 'completed', 'failed', 'expired', 'distributed'),
    'release_status_enum': ('held', 'released'),
    'recipient_role_enum': ('tithing', 'sower', 'grower'),
    'transfer_status_enum': ('attempted', 'succeeded', 'failed', 'held', 'released'),
    'idempotency_status_enum': ('in_progress', 'completed'),
    'notification_kind_enum': (
        'bestowal_proof', 'sower_thank_you', 'sower_notification', 'escrow_released'
    ),
    'notification_status_enum': ('pending', 'sent', 'failed'),
    'app_role_enum': ('gosat', 'courier', 'admin'),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    """Upgrade schema - Create bestowal, ledger and bookkeeping tables."""
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        'orchards',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('status', _enum('orchard_status_enum'), nullable=False),
        sa.Column('orchard_type', _enum('orchard_type_enum'), nullable=False),
        sa.Column('product_type', _enum('product_type_enum'), nullable=True),
        sa.Column('currency', sa.String(length=16), nullable=False),
        sa.Column('pocket_price', sa.Numeric(18, 2), nullable=True),
        sa.Column('courier_cost', sa.Numeric(18, 2), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_orchards_user_id', 'orchards', ['user_id'])

    op.create_table(
        'bestowals',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('orchard_id', UUID(as_uuid=True), nullable=False),
        sa.Column('bestower_id', sa.String(), nullable=False),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('currency', sa.String(length=16), nullable=False),
        sa.Column('pockets_count', sa.Integer(), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('payment_method', _enum('payment_method_enum'), nullable=False),
        sa.Column('payment_status', _enum('payment_status_enum'), nullable=False),
        sa.Column('payment_reference', sa.String(length=128), nullable=True),
        sa.Column('distribution_data', JSONB(), nullable=False),
        sa.Column('release_status', _enum('release_status_enum'), nullable=True),
        _timestamp('released_at', nullable=True),
        _timestamp('distributed_at', nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['orchard_id'], ['orchards.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_bestowals_orchard_id', 'bestowals', ['orchard_id'])
    op.create_index('ix_bestowals_bestower_id', 'bestowals', ['bestower_id'])
    op.create_index('ix_bestowals_payment_status', 'bestowals', ['payment_status'])
    op.create_index(
        'ix_bestowals_payment_reference', 'bestowals', ['payment_reference']
    )

    op.create_table(
        'products',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('sower_id', sa.String(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('product_type', _enum('product_type_enum'), nullable=False),
        sa.Column('currency', sa.String(length=16), nullable=False),
        sa.Column('bestowal_count', sa.Integer(), nullable=False),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_products_sower_id', 'products', ['sower_id'])

    op.create_table(
        'product_bestowals',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), nullable=False),
        sa.Column('product_title', sa.String(length=255), nullable=True),
        sa.Column('bestower_id', sa.String(), nullable=False),
        sa.Column('sower_id', sa.String(), nullable=False),
        sa.Column('sower_wallet', sa.String(length=255), nullable=False),
        sa.Column('grower_id', sa.String(), nullable=True),
        sa.Column('grower_wallet', sa.String(length=255), nullable=True),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('sower_amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('grower_amount', sa.Numeric(18, 2), nullable=True),
        sa.Column('currency', sa.String(length=16), nullable=False),
        sa.Column('payment_reference', sa.String(length=128), nullable=True),
        sa.Column('release_status', _enum('release_status_enum'), nullable=False),
        sa.Column('hold_reason', sa.Text(), nullable=True),
        _timestamp('released_at', nullable=True),
        _timestamp('delivery_confirmed_at', nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'payment_reference', name='uq_product_bestowal_reference'
        ),
    )
    op.create_index(
        'ix_product_bestowals_product_id', 'product_bestowals', ['product_id']
    )
    op.create_index(
        'ix_product_bestowals_bestower_id', 'product_bestowals', ['bestower_id']
    )
    op.create_index('ix_product_bestowals_sower_id', 'product_bestowals', ['sower_id'])

    op.create_table(
        'payment_transactions',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('bestowal_id', UUID(as_uuid=True), nullable=False),
        sa.Column('payment_method', _enum('payment_method_enum'), nullable=False),
        sa.Column('payment_provider_id', sa.String(length=128), nullable=True),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('currency', sa.String(length=16), nullable=False),
        sa.Column('status', _enum('payment_status_enum'), nullable=False),
        sa.Column('provider_response', JSONB(), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['bestowal_id'], ['bestowals.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_payment_transactions_bestowal_id', 'payment_transactions', ['bestowal_id']
    )
    op.create_index(
        'ix_payment_transactions_payment_provider_id',
        'payment_transactions',
        ['payment_provider_id'],
    )

    op.create_table(
        'organization_wallets',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('wallet_name', sa.String(length=64), nullable=False),
        sa.Column('wallet_address', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=False),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_organization_wallets_wallet_name',
        'organization_wallets',
        ['wallet_name'],
        unique=True,
    )

    op.create_table(
        'user_wallets',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('wallet_address', sa.String(length=255), nullable=False),
        sa.Column('wallet_type', sa.String(length=32), nullable=False),
        sa.Column('is_primary', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=False),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_user_wallets_user_id', 'user_wallets', ['user_id'])

    op.create_table(
        'wallet_balances',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('wallet_address', sa.String(length=255), nullable=False),
        sa.Column('currency', sa.String(length=16), nullable=False),
        sa.Column('available_balance', sa.Numeric(18, 2), nullable=False),
        sa.Column('pending_balance', sa.Numeric(18, 2), nullable=False),
        sa.Column('total_earned', sa.Numeric(18, 2), nullable=False),
        _timestamp('updated_at'),
        sa.CheckConstraint('available_balance >= 0', name='ck_available_non_negative'),
        sa.CheckConstraint('pending_balance >= 0', name='ck_pending_non_negative'),
        sa.CheckConstraint('total_earned >= 0', name='ck_total_earned_non_negative'),
        sa.UniqueConstraint('user_id', 'wallet_address', name='uq_wallet_balance_owner'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_wallet_balances_user_id', 'wallet_balances', ['user_id'])

    op.create_table(
        'distribution_transfers',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('bestowal_id', UUID(as_uuid=True), nullable=False),
        sa.Column('recipient_role', _enum('recipient_role_enum'), nullable=False),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('wallet_address', sa.String(length=255), nullable=False),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('currency', sa.String(length=16), nullable=False),
        sa.Column('status', _enum('transfer_status_enum'), nullable=False),
        sa.Column('request_id', sa.String(length=128), nullable=True),
        sa.Column('provider_transfer_id', sa.String(length=128), nullable=True),
        sa.Column('provider_response', JSONB(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), server_default='0', nullable=False),
        _timestamp('balance_credited_at', nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['bestowal_id'], ['bestowals.id']),
        sa.UniqueConstraint(
            'bestowal_id', 'recipient_role', name='uq_distribution_transfer_role'
        ),
        sa.UniqueConstraint('request_id'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_distribution_transfers_bestowal_id',
        'distribution_transfers',
        ['bestowal_id'],
    )

    op.create_table(
        'webhook_events',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('webhook_id', sa.String(length=255), nullable=False),
        sa.Column('event_kind', sa.String(length=32), nullable=False),
        sa.Column('payload_hash', sa.String(length=64), nullable=False),
        sa.Column('bestowal_id', UUID(as_uuid=True), nullable=True),
        _timestamp('created_at'),
        sa.UniqueConstraint('provider', 'webhook_id', name='uq_webhook_event_provider'),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'idempotency_records',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('status', _enum('idempotency_status_enum'), nullable=False),
        sa.Column('response_body', sa.Text(), nullable=True),
        _timestamp('created_at'),
        _timestamp('completed_at', nullable=True),
        sa.UniqueConstraint(
            'idempotency_key', 'user_id', name='uq_idempotency_key_user'
        ),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'payment_audit_log',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('amount', sa.Numeric(18, 2), nullable=True),
        sa.Column('currency', sa.String(length=16), nullable=True),
        sa.Column('bestowal_id', UUID(as_uuid=True), nullable=True),
        sa.Column('transaction_id', sa.String(length=128), nullable=True),
        sa.Column('metadata', JSONB(), nullable=True),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_payment_audit_log_user_id', 'payment_audit_log', ['user_id'])
    op.create_index('ix_payment_audit_log_action', 'payment_audit_log', ['action'])
    op.create_index(
        'ix_payment_audit_log_bestowal_id', 'payment_audit_log', ['bestowal_id']
    )

    op.create_table(
        'notification_outbox',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('bestowal_id', UUID(as_uuid=True), nullable=False),
        sa.Column('kind', _enum('notification_kind_enum'), nullable=False),
        sa.Column('recipient_id', sa.String(), nullable=False),
        sa.Column('sender_id', sa.String(), nullable=True),
        sa.Column('payload', JSONB(), nullable=False),
        sa.Column('status', _enum('notification_status_enum'), nullable=False),
        sa.Column('attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        _timestamp('sent_at', nullable=True),
        _timestamp('created_at'),
        sa.UniqueConstraint('bestowal_id', 'kind', name='uq_notification_bestowal_kind'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_notification_outbox_bestowal_id', 'notification_outbox', ['bestowal_id']
    )
    op.create_index(
        'ix_notification_outbox_status', 'notification_outbox', ['status']
    )

    op.create_table(
        'user_roles',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('role', _enum('app_role_enum'), nullable=False),
        _timestamp('created_at'),
        sa.UniqueConstraint('user_id', 'role', name='uq_user_role'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_user_roles_user_id', 'user_roles', ['user_id'])


def downgrade() -> None:
    """Downgrade schema."""
    for table in (
        'user_roles',
        'notification_outbox',
        'payment_audit_log',
        'idempotency_records',
        'webhook_events',
        'distribution_transfers',
        'wallet_balances',
        'user_wallets',
        'organization_wallets',
        'payment_transactions',
        'product_bestowals',
        'products',
        'bestowals',
        'orchards',
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for name in ENUMS:
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
