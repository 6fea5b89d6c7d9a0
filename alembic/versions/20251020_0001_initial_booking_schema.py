"""initial booking schema: appointments, meetings, notification logs, reminders

Revision ID: 20251020_0001
Revises:
Create Date: 2025-10-20 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20251020_0001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BIGINT_ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'appointments',
        sa.Column('id', BIGINT_ID, primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('user_email', sa.String(255), nullable=False),
        sa.Column('user_name', sa.String(120), nullable=False),
        sa.Column('practitioner_id', sa.BigInteger(), nullable=False),
        sa.Column('practitioner_name', sa.String(120), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('time', sa.String(16), nullable=False),
        sa.Column('duration', sa.Integer(), nullable=False, server_default='50'),
        sa.Column('session_type', sa.String(64), nullable=False),
        sa.Column('status', sa.String(32), nullable=False, server_default='confirmed'),
        sa.Column('notes', sa.Text()),
        sa.Column('calendar_event_id', sa.String(255)),
        sa.Column('cancellation_reason', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('cancelled_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_appointments_user_id', 'appointments', ['user_id'])
    op.create_index('ix_appointments_practitioner_id', 'appointments', ['practitioner_id'])
    op.create_index('ix_appointments_date', 'appointments', ['date'])

    op.create_table(
        'appointment_meetings',
        sa.Column('id', BIGINT_ID, primary_key=True, autoincrement=True),
        sa.Column('appointment_id', sa.BigInteger(),
                  sa.ForeignKey('appointments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('platform', sa.String(32), nullable=False),
        sa.Column('meeting_url', sa.String(512), nullable=False),
        sa.Column('meeting_id', sa.String(255)),
        sa.Column('meeting_password', sa.String(64)),
        sa.Column('host_email', sa.String(255)),
        sa.Column('guest_email', sa.String(255)),
        sa.Column('status', sa.String(16), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('appointment_id', name='uq_appointment_meetings_appointment_id'),
    )

    op.create_table(
        'notification_logs',
        sa.Column('id', BIGINT_ID, primary_key=True, autoincrement=True),
        sa.Column('appointment_id', sa.BigInteger()),
        sa.Column('recipient_email', sa.String(255), nullable=False),
        sa.Column('notification_type', sa.String(32)),
        sa.Column('subject', sa.String(255), nullable=False),
        sa.Column('provider', sa.String(32), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('error_message', sa.Text()),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_notification_logs_appointment_id', 'notification_logs', ['appointment_id'])

    op.create_table(
        'appointment_reminders',
        sa.Column('id', BIGINT_ID, primary_key=True, autoincrement=True),
        sa.Column('appointment_id', sa.BigInteger(),
                  sa.ForeignKey('appointments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('recipient_email', sa.String(255), nullable=False),
        sa.Column('recipient_name', sa.String(120), nullable=False),
        sa.Column('practitioner_name', sa.String(120), nullable=False),
        sa.Column('appointment_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('reminder_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('session_type', sa.String(64), nullable=False),
        sa.Column('meeting_url', sa.String(512)),
        sa.Column('sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sent_at', sa.DateTime(timezone=True)),
        sa.Column('voided_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    # worker poll: unsent rows ordered by fire time
    op.create_index('ix_appointment_reminders_due', 'appointment_reminders', ['sent', 'reminder_date'])
    op.create_index('ix_appointment_reminders_appointment_id', 'appointment_reminders', ['appointment_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_appointment_reminders_appointment_id', table_name='appointment_reminders')
    op.drop_index('ix_appointment_reminders_due', table_name='appointment_reminders')
    op.drop_table('appointment_reminders')

    op.drop_index('ix_notification_logs_appointment_id', table_name='notification_logs')
    op.drop_table('notification_logs')

    op.drop_table('appointment_meetings')

    op.drop_index('ix_appointments_date', table_name='appointments')
    op.drop_index('ix_appointments_practitioner_id', table_name='appointments')
    op.drop_index('ix_appointments_user_id', table_name='appointments')
    op.drop_table('appointments')
