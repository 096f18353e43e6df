"""create vault ledger tables

Revision ID: create_vault_ledger_tables
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'create_vault_ledger_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'goals',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False, index=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.String, nullable=True),
        sa.Column('category', sa.String(64), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('current_amount', sa.String(78), nullable=False),
        sa.Column('target_amount', sa.String(78), nullable=False),
        sa.Column('progress', sa.Float, nullable=False),
        sa.Column('token_address', sa.String(64), nullable=False),
        sa.Column('token_symbol', sa.String(16), nullable=False),
        sa.Column('token_decimals', sa.Integer, nullable=False),
        sa.Column('interest_rate', sa.Float, nullable=False),
        sa.Column('total_interest_earned', sa.String(78), nullable=False),
        sa.Column('is_quick_save', sa.Boolean, nullable=False),
        sa.Column('is_public', sa.Boolean, nullable=False),
        sa.Column('target_date', sa.DateTime, nullable=True),
        sa.Column('completed_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('version', sa.Integer, nullable=False),
    )

    op.create_table(
        'group_goals',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('owner_id', sa.String(64), nullable=False, index=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.String, nullable=True),
        sa.Column('category', sa.String(64), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('visibility', sa.String(16), nullable=False),
        sa.Column('current_amount', sa.String(78), nullable=False),
        sa.Column('target_amount', sa.String(78), nullable=False),
        sa.Column('progress', sa.Float, nullable=False),
        sa.Column('token_address', sa.String(64), nullable=False),
        sa.Column('token_symbol', sa.String(16), nullable=False),
        sa.Column('token_decimals', sa.Integer, nullable=False),
        sa.Column('total_members', sa.Integer, nullable=False),
        sa.Column('active_members', sa.Integer, nullable=False),
        sa.Column('max_members', sa.Integer, nullable=True),
        sa.Column('require_approval', sa.Boolean, nullable=False),
        sa.Column('interest_rate', sa.Float, nullable=False),
        sa.Column('total_interest_earned', sa.String(78), nullable=False),
        sa.Column('total_contributions', sa.Integer, nullable=False),
        sa.Column('target_date', sa.DateTime, nullable=True),
        sa.Column('completed_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('version', sa.Integer, nullable=False),
    )

    op.create_table(
        'group_goal_members',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('group_goal_id', sa.Uuid(as_uuid=True), sa.ForeignKey('group_goals.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('user_id', sa.String(64), nullable=False, index=True),
        sa.Column('position', sa.Integer, nullable=False),
        sa.Column('role', sa.String(16), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('target_contribution', sa.String(78), nullable=True),
        sa.Column('current_contribution', sa.String(78), nullable=False),
        sa.Column('contribution_percentage', sa.Float, nullable=False),
        sa.Column('joined_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('last_active_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('left_at', sa.DateTime, nullable=True),
    )

    op.create_table(
        'vault_events',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('network', sa.String(32), nullable=False),
        sa.Column('vault_address', sa.String(64), nullable=False),
        sa.Column('transaction_hash', sa.String(80), nullable=False),
        sa.Column('event_kind', sa.String(32), nullable=False),
        sa.Column('log_index', sa.Integer, nullable=False),
        sa.Column('block_number', sa.BigInteger, nullable=False, index=True),
        sa.Column('user_address', sa.String(64), nullable=True, index=True),
        sa.Column('correlation_id', sa.String(78), nullable=True),
        sa.Column('amount', sa.String(78), nullable=False),
        sa.Column('extra', sa.JSON, nullable=False),
        sa.Column('token_symbol', sa.String(16), nullable=True),
        sa.Column('status', sa.String(16), nullable=False, index=True),
        sa.Column('transaction_id', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('matched_at', sa.DateTime, nullable=True),
        sa.UniqueConstraint(
            'network', 'vault_address', 'transaction_hash', 'event_kind', 'log_index',
            name='uq_vault_event_identity',
        ),
    )

    op.create_table(
        'savings_transactions',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('transaction_id', sa.String(64), nullable=False, unique=True, index=True),
        sa.Column('transaction_hash', sa.String(80), nullable=True, index=True),
        sa.Column('user_id', sa.String(64), nullable=False, index=True),
        sa.Column('goal_id', sa.Uuid(as_uuid=True), sa.ForeignKey('goals.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('group_goal_id', sa.Uuid(as_uuid=True), sa.ForeignKey('group_goals.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('from_goal_id', sa.Uuid(as_uuid=True), sa.ForeignKey('goals.id', ondelete='SET NULL'), nullable=True),
        sa.Column('to_goal_id', sa.Uuid(as_uuid=True), sa.ForeignKey('goals.id', ondelete='SET NULL'), nullable=True),
        sa.Column('type', sa.String(16), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('payment_method', sa.String(32), nullable=False),
        sa.Column('amount', sa.String(78), nullable=False),
        sa.Column('token_address', sa.String(64), nullable=False),
        sa.Column('token_symbol', sa.String(16), nullable=False),
        sa.Column('token_decimals', sa.Integer, nullable=False),
        sa.Column('vault_address', sa.String(64), nullable=True, index=True),
        sa.Column('deposit_id', sa.String(78), nullable=True),
        sa.Column('shares', sa.String(78), nullable=True),
        sa.Column('lock_tier', sa.Integer, nullable=True),
        sa.Column('lock_period', sa.BigInteger, nullable=True),
        sa.Column('lock_end', sa.DateTime, nullable=True),
        sa.Column('yield_earned', sa.String(78), nullable=True),
        sa.Column('shares_burned', sa.String(78), nullable=True),
        sa.Column('accrual_date', sa.Date, nullable=True),
        sa.Column('vault_event_id', sa.Uuid(as_uuid=True), sa.ForeignKey('vault_events.id', ondelete='SET NULL'), nullable=True),
        sa.Column('description', sa.String(255), nullable=True),
        sa.Column('error_message', sa.String, nullable=True),
        sa.Column('initiated_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('confirmed_at', sa.DateTime, nullable=True),
        sa.Column('completed_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('goal_id', 'accrual_date', name='uq_interest_accrual_per_day'),
    )

    op.create_table(
        'scan_checkpoints',
        sa.Column('network', sa.String(32), primary_key=True),
        sa.Column('vault_address', sa.String(64), primary_key=True),
        sa.Column('last_block', sa.BigInteger, nullable=False),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )


def downgrade():
    op.drop_table('scan_checkpoints')
    op.drop_table('savings_transactions')
    op.drop_table('vault_events')
    op.drop_table('group_goal_members')
    op.drop_table('group_goals')
    op.drop_table('goals')
