"""add reminder_logs ledger

Revision ID: 001_add_reminder_logs
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_add_reminder_logs'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'reminder_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('reminder_id', sa.Uuid(), nullable=False),
        sa.Column('patient_id', sa.Uuid(), nullable=True),
        sa.Column('occurrence_date', sa.Date(), nullable=False),
        sa.Column('slot_time', sa.Time(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('channel', sa.String(length=16), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.UniqueConstraint('reminder_id', 'occurrence_date', 'slot_time', name='uq_reminder_logs_occurrence'),
    )
    op.create_index('ix_reminder_logs_patient_id', 'reminder_logs', ['patient_id'])
    op.create_index('ix_reminder_logs_reminder_sent', 'reminder_logs', ['reminder_id', 'sent_at'])
    op.create_index('ix_reminder_logs_date_status', 'reminder_logs', ['occurrence_date', 'status'])


def downgrade() -> None:
    op.drop_index('ix_reminder_logs_date_status', table_name='reminder_logs')
    op.drop_index('ix_reminder_logs_reminder_sent', table_name='reminder_logs')
    op.drop_index('ix_reminder_logs_patient_id', table_name='reminder_logs')
    op.drop_table('reminder_logs')
