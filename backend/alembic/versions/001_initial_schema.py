"""Initial schema: events, tickets, tips, transactions, affiliates, payouts, webhook ledger.

Revision ID: 001
Revises:
Create Date: 2026-10-16
"""
from alembic import op
import sqlalchemy as sa

revision = '001'
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_TICKET_CLAUSE = sa.text("status IN ('pending', 'confirmed', 'used')")


def upgrade():
    op.create_table(
        'users',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('status', sa.String(50), nullable=True),
        sa.Column('user_role', sa.String(50), nullable=True),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_connect_account_id', sa.String(255), nullable=True),
        sa.Column('stripe_connect_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('idx_user_status', 'users', ['status'])
    op.create_index('idx_user_connect_account', 'users', ['stripe_connect_account_id'])

    op.create_table(
        'events',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('artist_id', sa.String(36), sa.ForeignKey('users.uuid'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('ticket_price', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='eur'),
        sa.Column('capacity', sa.Integer(), nullable=True),
        sa.Column('tickets_sold', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('starts_at', sa.DateTime(), nullable=True),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('tickets_sold >= 0', name='ck_events_tickets_sold_non_negative'),
    )
    op.create_index('idx_event_artist_id', 'events', ['artist_id'])
    op.create_index('idx_event_status_ended_at', 'events', ['status', 'ended_at'])

    op.create_table(
        'affiliates',
        sa.Column('uuid', sa.String(36), sa.ForeignKey('users.uuid'), primary_key=True),
        sa.Column('referral_code', sa.String(8), nullable=False, unique=True),
        sa.Column('parent_affiliate_id', sa.String(36), sa.ForeignKey('affiliates.uuid'), nullable=True),
        sa.Column('grandparent_affiliate_id', sa.String(36), sa.ForeignKey('affiliates.uuid'), nullable=True),
        sa.Column('total_referrals', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_earnings', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('idx_affiliate_parent_id', 'affiliates', ['parent_affiliate_id'])

    op.create_table(
        'tickets',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('event_id', sa.String(36), sa.ForeignKey('events.uuid'), nullable=False),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.uuid'), nullable=False),
        sa.Column('affiliate_id', sa.String(36), sa.ForeignKey('affiliates.uuid'), nullable=True),
        sa.Column('purchase_price', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('payment_intent_id', sa.String(255), nullable=True, unique=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('purchased_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index(
        'uq_ticket_event_user_active', 'tickets', ['event_id', 'user_id'],
        unique=True, postgresql_where=ACTIVE_TICKET_CLAUSE,
    )
    op.create_index('idx_ticket_affiliate_id', 'tickets', ['affiliate_id'])
    op.create_index('idx_ticket_status_created_at', 'tickets', ['status', 'created_at'])

    op.create_table(
        'tips',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('from_user_id', sa.String(36), sa.ForeignKey('users.uuid'), nullable=False),
        sa.Column('to_artist_id', sa.String(36), sa.ForeignKey('users.uuid'), nullable=False),
        sa.Column('event_id', sa.String(36), sa.ForeignKey('events.uuid'), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('payment_intent_id', sa.String(255), nullable=True, unique=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('idx_tip_to_artist_id', 'tips', ['to_artist_id'])
    op.create_index('idx_tip_status_created_at', 'tips', ['status', 'created_at'])

    op.create_table(
        'transactions',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('transaction_type', sa.String(50), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('platform_fee', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('artist_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stripe_payment_id', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=True),
        sa.Column('artist_id', sa.String(36), nullable=True),
        sa.Column('event_id', sa.String(36), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('idx_transaction_stripe_payment_id', 'transactions', ['stripe_payment_id'])
    op.create_index('idx_transaction_event_type_status', 'transactions', ['event_id', 'transaction_type', 'status'])

    op.create_table(
        'affiliate_commissions',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('affiliate_id', sa.String(36), sa.ForeignKey('affiliates.uuid'), nullable=False),
        sa.Column('ticket_id', sa.String(36), sa.ForeignKey('tickets.uuid'), nullable=False),
        sa.Column('commission_level', sa.Integer(), nullable=False),
        sa.Column('commission_rate', sa.Numeric(6, 4), nullable=False),
        sa.Column('commission_amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('stripe_transfer_id', sa.String(255), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('ticket_id', 'affiliate_id', 'commission_level', name='uq_commission_ticket_affiliate_level'),
    )
    op.create_index('idx_commission_affiliate_status', 'affiliate_commissions', ['affiliate_id', 'status'])

    op.create_table(
        'payouts',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('artist_id', sa.String(36), sa.ForeignKey('users.uuid'), nullable=False),
        sa.Column('event_id', sa.String(36), sa.ForeignKey('events.uuid'), nullable=False, unique=True),
        sa.Column('gross_revenue', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('platform_fee', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('stripe_transfer_id', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='processing'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('payout_date', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('idx_payout_artist_id', 'payouts', ['artist_id'])

    op.create_table(
        'webhook_events',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('stripe_event_id', sa.String(255), nullable=False, unique=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='processing'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
    )


def downgrade():
    op.drop_table('webhook_events')
    op.drop_index('idx_payout_artist_id', table_name='payouts')
    op.drop_table('payouts')
    op.drop_index('idx_commission_affiliate_status', table_name='affiliate_commissions')
    op.drop_table('affiliate_commissions')
    op.drop_index('idx_transaction_event_type_status', table_name='transactions')
    op.drop_index('idx_transaction_stripe_payment_id', table_name='transactions')
    op.drop_table('transactions')
    op.drop_index('idx_tip_status_created_at', table_name='tips')
    op.drop_index('idx_tip_to_artist_id', table_name='tips')
    op.drop_table('tips')
    op.drop_index('idx_ticket_status_created_at', table_name='tickets')
    op.drop_index('idx_ticket_affiliate_id', table_name='tickets')
    op.drop_index('uq_ticket_event_user_active', table_name='tickets')
    op.drop_table('tickets')
    op.drop_index('idx_affiliate_parent_id', table_name='affiliates')
    op.drop_table('affiliates')
    op.drop_index('idx_event_status_ended_at', table_name='events')
    op.drop_index('idx_event_artist_id', table_name='events')
    op.drop_table('events')
    op.drop_index('idx_user_connect_account', table_name='users')
    op.drop_index('idx_user_status', table_name='users')
    op.drop_table('users')
