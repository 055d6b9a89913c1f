"""create billing, moderation and engagement tables

Revision ID: a1c3e5f70001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = 'a1c3e5f70001'
down_revision = None
branch_labels = None
depends_on = None

json_type = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade():
    op.create_table(
        'credit_plans',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('credit_amount', sa.Integer(), nullable=False),
        sa.Column('original_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('is_discounted', sa.Boolean(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('billing_cycle', sa.String(length=20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('credit_amount > 0', name='ck_credit_plans_credit_amount_positive'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_credit_plans_is_active'), 'credit_plans', ['is_active'], unique=False)

    op.create_table(
        'credit_orders',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('business_account_id', sa.String(length=64), nullable=False),
        sa.Column('plan_id', sa.String(length=36), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('total_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('payment_provider', sa.String(length=20), nullable=True),
        sa.Column('payment_reference', sa.String(length=255), nullable=True),
        sa.Column('payment_currency', sa.String(length=3), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('failure_reason', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_credit_orders_quantity_positive'),
        sa.CheckConstraint('total_price > 0', name='ck_credit_orders_total_price_positive'),
        sa.ForeignKeyConstraint(['plan_id'], ['credit_plans.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_credit_orders_business_account_id'), 'credit_orders', ['business_account_id'], unique=False)
    op.create_index(op.f('ix_credit_orders_plan_id'), 'credit_orders', ['plan_id'], unique=False)
    op.create_index(op.f('ix_credit_orders_status'), 'credit_orders', ['status'], unique=False)
    op.create_index(op.f('ix_credit_orders_payment_reference'), 'credit_orders', ['payment_reference'], unique=False)
    op.create_index('idx_credit_orders_account_created', 'credit_orders', ['business_account_id', 'created_at'], unique=False)

    op.create_table(
        'business_credits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_account_id', sa.String(length=64), nullable=False),
        sa.Column('total_credits', sa.Integer(), nullable=False),
        sa.Column('used_credits', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('used_credits >= 0', name='ck_business_credits_used_non_negative'),
        sa.CheckConstraint('used_credits <= total_credits', name='ck_business_credits_used_within_total'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_business_credits_id'), 'business_credits', ['id'], unique=False)
    op.create_index(op.f('ix_business_credits_business_account_id'), 'business_credits', ['business_account_id'], unique=True)

    op.create_table(
        'credit_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_account_id', sa.String(length=64), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=True),
        sa.Column('type', sa.String(length=10), nullable=False),
        sa.Column('credit_change', sa.Integer(), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['credit_orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'type', name='uq_credit_transactions_order_type')
    )
    op.create_index(op.f('ix_credit_transactions_id'), 'credit_transactions', ['id'], unique=False)
    op.create_index(op.f('ix_credit_transactions_business_account_id'), 'credit_transactions', ['business_account_id'], unique=False)
    op.create_index(op.f('ix_credit_transactions_order_id'), 'credit_transactions', ['order_id'], unique=False)
    op.create_index(op.f('ix_credit_transactions_created_at'), 'credit_transactions', ['created_at'], unique=False)
    op.create_index('idx_credit_transactions_account_created', 'credit_transactions', ['business_account_id', 'created_at'], unique=False)

    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=50), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('business_account_id', sa.String(length=64), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('business_name', sa.String(length=200), nullable=False),
        sa.Column('business_tax_id', sa.String(length=50), nullable=True),
        sa.Column('billing_address', sa.String(length=500), nullable=True),
        sa.Column('document_url', sa.String(length=500), nullable=True),
        sa.Column('issued_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['credit_orders.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_invoices_id'), 'invoices', ['id'], unique=False)
    op.create_index(op.f('ix_invoices_invoice_number'), 'invoices', ['invoice_number'], unique=True)
    op.create_index(op.f('ix_invoices_order_id'), 'invoices', ['order_id'], unique=True)
    op.create_index(op.f('ix_invoices_business_account_id'), 'invoices', ['business_account_id'], unique=False)
    op.create_index('idx_invoices_account_issued', 'invoices', ['business_account_id', 'issued_at'], unique=False)

    op.create_table(
        'business_profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_account_id', sa.String(length=64), nullable=False),
        sa.Column('company_name', sa.String(length=200), nullable=True),
        sa.Column('company_address', sa.String(length=500), nullable=True),
        sa.Column('tax_id', sa.String(length=50), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_business_profiles_id'), 'business_profiles', ['id'], unique=False)
    op.create_index(op.f('ix_business_profiles_business_account_id'), 'business_profiles', ['business_account_id'], unique=True)

    op.create_table(
        'billing_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('provider', sa.String(length=20), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('provider_event_id', sa.String(length=255), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=True),
        sa.Column('payload_json', json_type, nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'provider_event_id', name='uq_billing_events_provider_event_id')
    )
    op.create_index(op.f('ix_billing_events_id'), 'billing_events', ['id'], unique=False)
    op.create_index(op.f('ix_billing_events_provider'), 'billing_events', ['provider'], unique=False)
    op.create_index(op.f('ix_billing_events_event_type'), 'billing_events', ['event_type'], unique=False)
    op.create_index(op.f('ix_billing_events_provider_event_id'), 'billing_events', ['provider_event_id'], unique=False)
    op.create_index(op.f('ix_billing_events_order_id'), 'billing_events', ['order_id'], unique=False)
    op.create_index(op.f('ix_billing_events_created_at'), 'billing_events', ['created_at'], unique=False)

    op.create_table(
        'posts',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('author_id', sa.String(length=64), nullable=False),
        sa.Column('post_type', sa.String(length=20), nullable=False),
        sa.Column('visibility', sa.String(length=20), nullable=False),
        sa.Column('like_count', sa.Integer(), nullable=False),
        sa.Column('vote_count', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_posts_author_id'), 'posts', ['author_id'], unique=False)
    op.create_index(op.f('ix_posts_visibility'), 'posts', ['visibility'], unique=False)

    op.create_table(
        'engagement_applied',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=10), nullable=False),
        sa.Column('target_id', sa.String(length=36), nullable=False),
        sa.Column('actor_id', sa.String(length=64), nullable=False),
        sa.Column('applied_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_type', 'target_id', 'actor_id', name='uq_engagement_applied_key')
    )
    op.create_index(op.f('ix_engagement_applied_id'), 'engagement_applied', ['id'], unique=False)
    op.create_index(op.f('ix_engagement_applied_target_id'), 'engagement_applied', ['target_id'], unique=False)

    op.create_table(
        'moderation_jobs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('post_id', sa.String(length=36), nullable=False),
        sa.Column('media_url', sa.String(length=1000), nullable=False),
        sa.Column('submitter_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.String(length=1000), nullable=True),
        sa.Column('next_attempt_at', sa.DateTime(), nullable=True),
        sa.Column('result', json_type, nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['post_id'], ['posts.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_moderation_jobs_post_id'), 'moderation_jobs', ['post_id'], unique=False)
    op.create_index(op.f('ix_moderation_jobs_submitter_id'), 'moderation_jobs', ['submitter_id'], unique=False)
    op.create_index(op.f('ix_moderation_jobs_status'), 'moderation_jobs', ['status'], unique=False)
    op.create_index('idx_moderation_jobs_status_next_attempt', 'moderation_jobs', ['status', 'next_attempt_at'], unique=False)


def downgrade():
    op.drop_table('moderation_jobs')
    op.drop_table('engagement_applied')
    op.drop_table('posts')
    op.drop_table('billing_events')
    op.drop_table('business_profiles')
    op.drop_table('invoices')
    op.drop_table('credit_transactions')
    op.drop_table('business_credits')
    op.drop_table('credit_orders')
    op.drop_table('credit_plans')
