"""add missed_activity_alerts ledger

Revision ID: 002_add_missed_activity_alerts
Revises: 001_add_reminder_logs
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '002_add_missed_activity_alerts'
down_revision = '001_add_reminder_logs'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'missed_activity_alerts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('patient_id', sa.Uuid(), nullable=False),
        sa.Column('alert_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('channel', sa.String(length=16), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('last_activity_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.UniqueConstraint('patient_id', 'alert_date', name='uq_missed_activity_alerts_patient_day'),
    )
    op.create_index('ix_missed_activity_alerts_date_status', 'missed_activity_alerts', ['alert_date', 'status'])


def downgrade() -> None:
    op.drop_index('ix_missed_activity_alerts_date_status', table_name='missed_activity_alerts')
    op.drop_table('missed_activity_alerts')
