"""initial generation job and ledger schema

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19 09:00:00

Creates capabilities, jobs, transactions, balances and platform_settings.
transactions.job_id is unique: at most one ledger entry per job.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None

job_status = sa.Enum('STARTING', 'PROCESSING', 'SUCCEEDED', 'FAILED', 'CANCELED', name='jobstatus')
billing_state = sa.Enum('PENDING', 'COMPLETE', name='billingstate')
transaction_kind = sa.Enum('USAGE', 'TOPUP', 'ADJUSTMENT', name='transactionkind')
quote_mode = sa.Enum('PER_RUN', 'PER_SECOND', name='quotemode')
settlement_rule = sa.Enum('FLAT', 'PER_UNIT', name='settlementrule')


def _base_columns() -> list:
    return [
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    """Create generation engine tables."""
    op.create_table(
        'capabilities',
        *_base_columns(),
        sa.Column('slug', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('provider_model', sa.String(), nullable=False),
        sa.Column('quote_mode', quote_mode, nullable=False),
        sa.Column('cost_per_run_cents', sa.Integer(), nullable=False),
        sa.Column('rate_cents_per_second', sa.Integer(), nullable=True),
        sa.Column('audio_rate_cents_per_second', sa.Integer(), nullable=True),
        sa.Column('default_duration_seconds', sa.Integer(), nullable=True),
        sa.Column('resolution_multipliers', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('settlement_rule', settlement_rule, nullable=False),
        sa.Column('default_parameters', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_capabilities_slug', 'capabilities', ['slug'], unique=True)

    op.create_table(
        'jobs',
        *_base_columns(),
        sa.Column('owner_id', sa.String(length=255), nullable=False),
        sa.Column('capability', sa.String(length=100), nullable=False),
        sa.Column('provider_ref', sa.String(length=255), nullable=True),
        sa.Column('status', job_status, nullable=False),
        sa.Column('params', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('cost_basis_cents', sa.Integer(), nullable=False),
        sa.Column('settled_cost_cents', sa.Integer(), nullable=True),
        sa.Column('raw_output_urls', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('output_refs', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('materialized_at', sa.DateTime(), nullable=True),
        sa.Column('placeholder_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('billing_state', billing_state, nullable=False),
        sa.Column('billed_amount_cents', sa.Integer(), nullable=True),
        sa.Column('billed_via', sa.String(length=20), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_jobs_owner_id', 'jobs', ['owner_id'])
    op.create_index('ix_jobs_provider_ref', 'jobs', ['provider_ref'], unique=True)
    op.create_index('ix_jobs_created_at', 'jobs', ['created_at'])
    op.create_index('ix_jobs_billing_state', 'jobs', ['billing_state'])
    # Sweep query: status IN (...) AND created_at < cutoff
    op.create_index('ix_jobs_status_created_at', 'jobs', ['status', 'created_at'])

    op.create_table(
        'transactions',
        *_base_columns(),
        sa.Column('owner_id', sa.String(length=255), nullable=False),
        sa.Column('job_id', sa.Uuid(), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('kind', transaction_kind, nullable=False),
        sa.Column('trigger', sa.String(length=20), nullable=True),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('extra_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('balance_applied_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('job_id', name='uq_transactions_job_id'),
    )
    op.create_index('ix_transactions_owner_id', 'transactions', ['owner_id'])
    op.create_index('ix_transactions_created_at', 'transactions', ['created_at'])
    op.create_index('ix_transactions_balance_applied_at', 'transactions', ['balance_applied_at'])

    op.create_table(
        'balances',
        *_base_columns(),
        sa.Column('owner_id', sa.String(length=255), nullable=False),
        sa.Column('balance_cents', sa.Integer(), nullable=False),
        sa.Column('unlimited_access', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_balances_owner_id', 'balances', ['owner_id'], unique=True)

    op.create_table(
        'platform_settings',
        *_base_columns(),
        sa.Column('key', sa.String(length=100), nullable=False),
        sa.Column('value', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_platform_settings_key', 'platform_settings', ['key'], unique=True)


def downgrade() -> None:
    """Drop generation engine tables."""
    op.drop_index('ix_platform_settings_key', table_name='platform_settings')
    op.drop_table('platform_settings')
    op.drop_index('ix_balances_owner_id', table_name='balances')
    op.drop_table('balances')
    op.drop_index('ix_transactions_balance_applied_at', table_name='transactions')
    op.drop_index('ix_transactions_created_at', table_name='transactions')
    op.drop_index('ix_transactions_owner_id', table_name='transactions')
    op.drop_table('transactions')
    op.drop_index('ix_jobs_status_created_at', table_name='jobs')
    op.drop_index('ix_jobs_billing_state', table_name='jobs')
    op.drop_index('ix_jobs_created_at', table_name='jobs')
    op.drop_index('ix_jobs_provider_ref', table_name='jobs')
    op.drop_index('ix_jobs_owner_id', table_name='jobs')
    op.drop_table('jobs')
    op.drop_table('capabilities')
    for enum_type in (settlement_rule, quote_mode, transaction_kind, billing_state, job_status):
        enum_type.drop(op.get_bind(), checkfirst=True)
