"""create_enrollment_and_settlement_tables

Revision ID: 3f9a2c71d4e8
Revises:
Create Date: 2026-10-12 09:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a2c71d4e8'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


enrollment_status = sa.Enum('active', 'completed', name='enrollment_status_enum')
payout_status = sa.Enum(
    'scheduled', 'processing', 'paid', 'cancelled', name='payout_status_enum'
)
payout_method = sa.Enum(
    'razorpay_payout', 'bank_transfer', 'manual', name='payout_method_enum'
)


def upgrade() -> None:
    """Upgrade schema - enrollments, coach payouts, TDS ledger and audit log."""

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('actor', sa.String(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('target_ids', sa.JSON(), nullable=False),
        sa.Column('amounts', sa.JSON(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_audit_logs_actor', 'audit_logs', ['actor'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])

    op.create_table(
        'enrollments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('child_id', sa.Uuid(), nullable=True),
        sa.Column('coach_id', sa.Uuid(), nullable=True),
        sa.Column('program_start', sa.Date(), nullable=False),
        sa.Column('program_end', sa.Date(), nullable=False),
        sa.Column('extension_days', sa.Integer(), server_default='0', nullable=False),
        sa.Column('total_sessions', sa.Integer(), nullable=False),
        sa.Column('sessions_completed', sa.Integer(), server_default='0', nullable=False),
        sa.Column('last_session_date', sa.Date(), nullable=True),
        sa.Column('has_initial_assessment', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('has_final_assessment', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('final_assessment_sent', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('nps_submitted', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('nps_score', sa.Integer(), nullable=True),
        sa.Column('status', enrollment_status, nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('certificate_number', sa.String(length=50), nullable=True),
        sa.Column('completion_forced', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('program_end >= program_start', name='ck_enrollment_window'),
        sa.CheckConstraint('total_sessions > 0', name='ck_enrollment_total_sessions'),
        sa.CheckConstraint('sessions_completed >= 0', name='ck_enrollment_sessions_done'),
        sa.CheckConstraint('nps_score BETWEEN 0 AND 10', name='ck_enrollment_nps_range'),
        sa.CheckConstraint(
            '(completed_at IS NULL) = (certificate_number IS NULL)',
            name='ck_enrollment_completion_markers',
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('certificate_number')
    )
    op.create_index('ix_enrollments_child_id', 'enrollments', ['child_id'])
    op.create_index('ix_enrollments_coach_id', 'enrollments', ['coach_id'])
    op.create_index('ix_enrollments_program_end', 'enrollments', ['program_end'])

    op.create_table(
        'coach_payouts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('coach_id', sa.Uuid(), nullable=False),
        sa.Column('enrollment_id', sa.Uuid(), nullable=True),
        sa.Column('payout_month', sa.String(length=7), nullable=False),
        sa.Column('gross_amount', sa.Integer(), nullable=False),
        sa.Column('tds_rate', sa.Integer(), server_default='0', nullable=False),
        sa.Column('tds_amount', sa.Integer(), nullable=False),
        sa.Column('net_amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('status', payout_status, nullable=False),
        sa.Column('scheduled_date', sa.Date(), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_method', payout_method, nullable=True),
        sa.Column('payment_reference', sa.String(length=100), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('tds_amount >= 0', name='ck_payout_tds_non_negative'),
        sa.CheckConstraint('tds_rate >= 0 AND tds_rate <= 100', name='ck_payout_tds_rate_range'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_coach_payouts_coach_id', 'coach_payouts', ['coach_id'])
    op.create_index('ix_coach_payouts_status', 'coach_payouts', ['status'])
    op.create_index('ix_coach_payouts_scheduled_date', 'coach_payouts', ['scheduled_date'])

    op.create_table(
        'tds_ledger',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('payout_id', sa.Uuid(), nullable=False),
        sa.Column('coach_id', sa.Uuid(), nullable=False),
        sa.Column('financial_year', sa.String(length=7), nullable=False),
        sa.Column('quarter', sa.String(length=2), nullable=False),
        sa.Column('section', sa.String(length=10), nullable=False),
        sa.Column('gross_amount', sa.Integer(), nullable=False),
        sa.Column('tds_rate', sa.Integer(), nullable=False),
        sa.Column('tds_amount', sa.Integer(), nullable=False),
        sa.Column('deposited', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('deposit_date', sa.Date(), nullable=True),
        sa.Column('challan_number', sa.String(length=50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['payout_id'], ['coach_payouts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payout_id')
    )
    op.create_index('ix_tds_ledger_coach_id', 'tds_ledger', ['coach_id'])
    op.create_index('ix_tds_ledger_financial_year', 'tds_ledger', ['financial_year'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_tds_ledger_financial_year', table_name='tds_ledger')
    op.drop_index('ix_tds_ledger_coach_id', table_name='tds_ledger')
    op.drop_table('tds_ledger')

    op.drop_index('ix_coach_payouts_scheduled_date', table_name='coach_payouts')
    op.drop_index('ix_coach_payouts_status', table_name='coach_payouts')
    op.drop_index('ix_coach_payouts_coach_id', table_name='coach_payouts')
    op.drop_table('coach_payouts')

    op.drop_index('ix_enrollments_program_end', table_name='enrollments')
    op.drop_index('ix_enrollments_coach_id', table_name='enrollments')
    op.drop_index('ix_enrollments_child_id', table_name='enrollments')
    op.drop_table('enrollments')

    op.drop_index('ix_audit_logs_action', table_name='audit_logs')
    op.drop_index('ix_audit_logs_actor', table_name='audit_logs')
    op.drop_table('audit_logs')

    bind = op.get_bind()
    payout_method.drop(bind, checkfirst=True)
    payout_status.drop(bind, checkfirst=True)
    enrollment_status.drop(bind, checkfirst=True)
