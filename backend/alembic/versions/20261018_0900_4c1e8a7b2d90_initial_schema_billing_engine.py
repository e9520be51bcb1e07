"""Initial schema: businesses, customers, payment plans, subscriptions, payments, notifications

Revision ID: 4c1e8a7b2d90
Revises: 
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '4c1e8a7b2d90'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables for the billing engine."""
    # Enable UUID extension
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # Create enums
    op.execute("CREATE TYPE periodtype AS ENUM ('daily', 'weekly', 'monthly', 'quarterly', 'semi_annual', 'yearly')")
    op.execute("CREATE TYPE subscriptionstatus AS ENUM ('pending', 'active', 'overdue', 'cancelled', 'expired')")
    op.execute("CREATE TYPE paymentstatus AS ENUM ('pending', 'success', 'failed', 'refunded')")
    op.execute("CREATE TYPE notificationtype AS ENUM ('payment_reminder', 'overdue_notice', 'payment_success', 'subscription_expired', 'expiry_reminder')")
    op.execute("CREATE TYPE notificationstatus AS ENUM ('pending', 'sent', 'failed')")

    # 1. Businesses table (no dependencies)
    op.create_table(
        'businesses',
        sa.Column('id', sa.UUID(), server_default=sa.text('uuid_generate_v4()'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('owner_name', sa.String(), nullable=True),
        sa.Column('phone_number', sa.String(), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='IRR'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_businesses_created_at'), 'businesses', ['created_at'])

    # 2. Customers table (depends on businesses)
    op.create_table(
        'customers',
        sa.Column('id', sa.UUID(), server_default=sa.text('uuid_generate_v4()'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('business_id', sa.UUID(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=False),
        sa.Column('last_name', sa.String(), nullable=False),
        sa.Column('phone_number', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_customers_business_id'), 'customers', ['business_id'])
    op.create_index(op.f('ix_customers_created_at'), 'customers', ['created_at'])

    # 3. Payment plans table (depends on businesses)
    op.create_table(
        'payment_plans',
        sa.Column('id', sa.UUID(), server_default=sa.text('uuid_generate_v4()'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('business_id', sa.UUID(), nullable=False),
        sa.Column('plan_name', sa.String(), nullable=False),
        sa.Column('period_type', postgresql.ENUM(name='periodtype', create_type=False), nullable=False),
        sa.Column('period_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('base_amount', sa.Numeric(19, 2), nullable=False),
        sa.Column('discount_percentage', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('late_fee_per_day', sa.Numeric(19, 2), nullable=False, server_default='0'),
        sa.Column('grace_period_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.CheckConstraint('period_count >= 1', name='ck_payment_plans_period_count'),
        sa.CheckConstraint('base_amount > 0', name='ck_payment_plans_base_amount'),
        sa.CheckConstraint('discount_percentage BETWEEN 0 AND 100', name='ck_payment_plans_discount'),
        sa.CheckConstraint('late_fee_per_day >= 0', name='ck_payment_plans_late_fee'),
        sa.CheckConstraint('grace_period_days >= 0', name='ck_payment_plans_grace_period'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_payment_plans_business_id'), 'payment_plans', ['business_id'])
    op.create_index(op.f('ix_payment_plans_is_active'), 'payment_plans', ['is_active'])
    op.create_index(op.f('ix_payment_plans_created_at'), 'payment_plans', ['created_at'])

    # 4. Subscriptions table (depends on customers, payment_plans)
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.UUID(), server_default=sa.text('uuid_generate_v4()'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('customer_id', sa.UUID(), nullable=False),
        sa.Column('payment_plan_id', sa.UUID(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('status', postgresql.ENUM(name='subscriptionstatus', create_type=False), nullable=False, server_default='pending'),
        sa.Column('total_amount', sa.Numeric(19, 2), nullable=False),
        sa.Column('discount_applied', sa.Numeric(19, 2), nullable=False, server_default='0'),
        sa.Column('next_payment_date', sa.Date(), nullable=False),
        sa.Column('last_payment_date', sa.Date(), nullable=True),
        sa.Column('last_reminder_sent', sa.DateTime(), nullable=True),
        sa.Column('last_expiry_reminder_sent', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['payment_plan_id'], ['payment_plans.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_subscriptions_customer_id'), 'subscriptions', ['customer_id'])
    op.create_index(op.f('ix_subscriptions_payment_plan_id'), 'subscriptions', ['payment_plan_id'])
    op.create_index(op.f('ix_subscriptions_status'), 'subscriptions', ['status'])
    op.create_index(op.f('ix_subscriptions_next_payment_date'), 'subscriptions', ['next_payment_date'])
    op.create_index(op.f('ix_subscriptions_created_at'), 'subscriptions', ['created_at'])
    # Overdue scan pages non-terminal subscriptions by id
    op.create_index('ix_subscriptions_status_id', 'subscriptions', ['status', 'id'])

    # 5. Subscription history table (depends on subscriptions)
    op.create_table(
        'subscription_history',
        sa.Column('id', sa.UUID(), server_default=sa.text('uuid_generate_v4()'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('subscription_id', sa.UUID(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('old_value', sa.String(), nullable=True),
        sa.Column('new_value', sa.String(), nullable=False),
        sa.Column('reason', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_subscription_history_subscription_id'), 'subscription_history', ['subscription_id'])
    op.create_index(op.f('ix_subscription_history_created_at'), 'subscription_history', ['created_at'])

    # 6. Payments table (depends on subscriptions)
    op.create_table(
        'payments',
        sa.Column('id', sa.UUID(), server_default=sa.text('uuid_generate_v4()'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('subscription_id', sa.UUID(), nullable=False),
        sa.Column('amount', sa.Numeric(19, 2), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('payment_date', sa.DateTime(), nullable=True),
        sa.Column('status', postgresql.ENUM(name='paymentstatus', create_type=False), nullable=False, server_default='pending'),
        sa.Column('transaction_id', sa.String(), nullable=False),
        sa.Column('late_fee', sa.Numeric(19, 2), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_payments_subscription_id'), 'payments', ['subscription_id'])
    op.create_index(op.f('ix_payments_status'), 'payments', ['status'])
    op.create_index(op.f('ix_payments_transaction_id'), 'payments', ['transaction_id'], unique=True)
    op.create_index(op.f('ix_payments_created_at'), 'payments', ['created_at'])

    # 7. Notifications outbox (depends on customers, subscriptions)
    op.create_table(
        'notifications',
        sa.Column('id', sa.UUID(), server_default=sa.text('uuid_generate_v4()'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('customer_id', sa.UUID(), nullable=False),
        sa.Column('subscription_id', sa.UUID(), nullable=True),
        sa.Column('notification_type', postgresql.ENUM(name='notificationtype', create_type=False), nullable=False),
        sa.Column('params', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('status', postgresql.ENUM(name='notificationstatus', create_type=False), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_notifications_customer_id'), 'notifications', ['customer_id'])
    op.create_index(op.f('ix_notifications_subscription_id'), 'notifications', ['subscription_id'])
    op.create_index(op.f('ix_notifications_created_at'), 'notifications', ['created_at'])
    # Delivery worker reads pending rows oldest first
    op.create_index('ix_notifications_status_created_at', 'notifications', ['status', 'created_at'])


def downgrade() -> None:
    """Drop all tables."""
    # Drop tables in reverse dependency order
    op.drop_table('notifications')
    op.drop_table('payments')
    op.drop_table('subscription_history')
    op.drop_table('subscriptions')
    op.drop_table('payment_plans')
    op.drop_table('customers')
    op.drop_table('businesses')

    # Drop enums
    op.execute("DROP TYPE IF EXISTS notificationstatus")
    op.execute("DROP TYPE IF EXISTS notificationtype")
    op.execute("DROP TYPE IF EXISTS paymentstatus")
    op.execute("DROP TYPE IF EXISTS subscriptionstatus")
    op.execute("DROP TYPE IF EXISTS periodtype")
