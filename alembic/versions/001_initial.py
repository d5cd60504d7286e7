"""001 Initial schema - bookings, night claims, idempotency, webhook events, tickets

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'units',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False, server_default=''),
        sa.Column('daily_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('monthly_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False, server_default='SAR'),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'bookings',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('brand', sa.String(30), nullable=False),
        sa.Column('unit_id', sa.String(64), sa.ForeignKey('units.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('guest_name', sa.String(200), nullable=False),
        sa.Column('guest_email', sa.String(255), nullable=False),
        sa.Column('guest_phone', sa.String(20), nullable=False),
        sa.Column('guests', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('check_in_date', sa.Date(), nullable=False),
        sa.Column('check_out_date', sa.Date(), nullable=False),
        sa.Column('nights', sa.Integer(), nullable=False),
        sa.Column('price_per_night', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='SAR'),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('payment_method', sa.String(20), nullable=False),
        sa.Column('payment_status', sa.String(30), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('idempotency_key', sa.String(128), nullable=False),
        sa.Column('idempotency_hash', sa.String(64), nullable=False),
        sa.Column('external_booking_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('idempotency_key', name='uq_booking_idempotency_key'),
    )
    op.create_index('ix_booking_unit_dates', 'bookings', ['unit_id', 'check_in_date', 'check_out_date'])
    op.create_index('ix_booking_external_id', 'bookings', ['external_booking_id'])

    # One row per occupied night; the unique key rejects overlapping inserts
    op.create_table(
        'booking_nights',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('booking_id', sa.String(36), sa.ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False),
        sa.Column('unit_id', sa.String(64), nullable=False),
        sa.Column('night', sa.Date(), nullable=False),
        sa.UniqueConstraint('unit_id', 'night', name='uq_booking_night_unit_night'),
    )
    op.create_index('ix_booking_nights_booking_id', 'booking_nights', ['booking_id'])

    op.create_table(
        'idempotency_records',
        sa.Column('key', sa.String(128), primary_key=True),
        sa.Column('request_hash', sa.String(64), nullable=False),
        sa.Column('response_status', sa.Integer(), nullable=False),
        sa.Column('response_body', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_idempotency_expires', 'idempotency_records', ['expires_at'])

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('source', sa.String(50), nullable=False, server_default='channel'),
        sa.Column('event_id', sa.String(255), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('payload_json', sa.Text(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_retries', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('next_retry_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('error_code', sa.String(20), nullable=True),
        sa.Column('result_action', sa.String(50), nullable=True),
        sa.Column('received_at', sa.DateTime(), nullable=False),
        sa.Column('processing_started_at', sa.DateTime(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('event_id', name='uq_webhook_event_event_id'),
    )
    op.create_index('ix_webhook_event_retry', 'webhook_events', ['status', 'next_retry_at'])
    op.create_index('ix_webhook_event_received', 'webhook_events', ['status', 'received_at'])

    op.create_table(
        'tickets',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('ticket_type', sa.String(30), nullable=False),
        sa.Column('status', sa.String(20), server_default='OPEN'),
        sa.Column('external_booking_id', sa.String(255), nullable=False),
        sa.Column('unit_id', sa.String(64), nullable=True),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('external_booking_id', 'ticket_type', name='uq_ticket_booking_type'),
    )


def downgrade():
    op.drop_table('tickets')
    op.drop_index('ix_webhook_event_received', table_name='webhook_events')
    op.drop_index('ix_webhook_event_retry', table_name='webhook_events')
    op.drop_table('webhook_events')
    op.drop_index('ix_idempotency_expires', table_name='idempotency_records')
    op.drop_table('idempotency_records')
    op.drop_index('ix_booking_nights_booking_id', table_name='booking_nights')
    op.drop_table('booking_nights')
    op.drop_index('ix_booking_external_id', table_name='bookings')
    op.drop_index('ix_booking_unit_dates', table_name='bookings')
    op.drop_table('bookings')
    op.drop_table('units')
