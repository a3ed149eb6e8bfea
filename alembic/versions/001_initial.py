"""Initial schema - rooms, bookings, booking attendees

Revision ID: 001_initial
Revises:
Create Date: 2026-10-16

Timestamps are stored as naive UTC; the ORM layer (UTCDateTime) converts
to and from timezone-aware values.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'rooms',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('min_capacity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('max_capacity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('features', sa.Text(), nullable=True),
    )

    op.create_table(
        'bookings',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('room_id', sa.String(36), sa.ForeignKey('rooms.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('owner_name', sa.String(200), nullable=False),
        sa.Column('owner_email', sa.String(255), nullable=True),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='CONFIRMED'),
        sa.Column('purpose', sa.Text(), nullable=True),
        sa.Column('reminder_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('cancelled_by_id', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('start_time < end_time', name='ck_booking_interval'),
    )

    op.create_index('ix_bookings_owner_id', 'bookings', ['owner_id'])
    op.create_index('ix_booking_room_window', 'bookings', ['room_id', 'status', 'start_time', 'end_time'])
    op.create_index('ix_booking_status_start', 'bookings', ['status', 'start_time'])

    op.create_table(
        'booking_attendees',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('booking_id', sa.String(36), sa.ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('student_id', sa.String(64), nullable=True),
        sa.Column('is_companion', sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_index('ix_booking_attendees_booking_id', 'booking_attendees', ['booking_id'])


def downgrade() -> None:
    op.drop_index('ix_booking_attendees_booking_id', 'booking_attendees')
    op.drop_table('booking_attendees')

    op.drop_index('ix_booking_status_start', 'bookings')
    op.drop_index('ix_booking_room_window', 'bookings')
    op.drop_index('ix_bookings_owner_id', 'bookings')
    op.drop_table('bookings')

    op.drop_table('rooms')
