"""bookings, cancellation requests, refund ledger, download and activity logs

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa

revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None

_ts = lambda name, nullable=True: sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)  # noqa: E731


def upgrade():
    op.create_table(
        'bookings',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('booking_ref', sa.String(length=32), nullable=False),
        sa.Column('customer_id', sa.String(length=36), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='confirmed'),
        sa.Column('payment_status', sa.String(length=30), nullable=False, server_default='paid'),
        sa.Column('payment_reference', sa.String(length=120), nullable=True),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='EUR'),
        sa.Column('event_id', sa.String(length=64), nullable=True),
        sa.Column('event_name', sa.String(length=255), nullable=False, server_default=''),
        _ts('event_date'),
        sa.Column('ticket_type_id', sa.String(length=64), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('customer_email', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('customer_first_name', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('customer_last_name', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('customer_phone', sa.String(length=40), nullable=False, server_default=''),
        sa.Column('guest_details', sa.JSON(), nullable=True),
        sa.Column('provider_reservation_id', sa.String(length=64), nullable=True),
        sa.Column('provider_booking_id', sa.String(length=64), nullable=True),
        sa.Column('provider_booking_code', sa.String(length=64), nullable=True),
        sa.Column('provider_financial_status', sa.String(length=40), nullable=True),
        sa.Column('provider_logistic_status', sa.String(length=40), nullable=True),
        sa.Column('distribution_channel', sa.String(length=20), nullable=True),
        sa.Column('provider_response', sa.JSON(), nullable=True),
        sa.Column('sync_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_sync_error', sa.Text(), nullable=True),
        _ts('synced_at'),
        sa.Column('cancellation_status', sa.String(length=20), nullable=False, server_default='none'),
        _ts('cancellation_date'),
        sa.Column('eticket_status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('eticket_urls', sa.JSON(), nullable=True),
        sa.Column('zip_download_url', sa.String(length=1024), nullable=True),
        sa.Column('ticket_checksums', sa.JSON(), nullable=True),
        _ts('eticket_available_at'),
        _ts('eticket_checked_at'),
        sa.Column('download_count', sa.Integer(), nullable=False, server_default='0'),
        _ts('first_downloaded_at'),
        _ts('last_download_attempt_at'),
        sa.Column('download_error', sa.Text(), nullable=True),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
    )
    op.create_index('ix_bookings_booking_ref', 'bookings', ['booking_ref'], unique=True)
    op.create_index('ix_bookings_customer_id', 'bookings', ['customer_id'])
    op.create_index('ix_bookings_provider_booking_id', 'bookings', ['provider_booking_id'])

    op.create_table(
        'cancellation_requests',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('booking_id', sa.String(length=36), nullable=False),
        sa.Column('customer_id', sa.String(length=36), nullable=False),
        sa.Column('reason', sa.String(length=500), nullable=False, server_default=''),
        sa.Column('customer_notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('admin_id', sa.String(length=36), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        _ts('reviewed_at'),
        _ts('completed_at'),
        sa.Column('refund_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('refund_status', sa.String(length=20), nullable=False, server_default='not_applicable'),
        sa.Column('refund_reference', sa.String(length=64), nullable=True),
        _ts('refund_date'),
        _ts('requested_at', nullable=False),
        _ts('updated_at', nullable=False),
    )
    op.create_index('ix_cancellation_requests_booking_id', 'cancellation_requests', ['booking_id'])
    op.create_index('ix_cancellation_requests_customer_id', 'cancellation_requests', ['customer_id'])
    op.create_index('ix_cancellation_requests_status', 'cancellation_requests', ['status'])
    active = sa.text("status IN ('pending', 'approved')")
    op.create_index(
        'uq_cancellation_requests_active_booking', 'cancellation_requests', ['booking_id'],
        unique=True, postgresql_where=active, sqlite_where=active,
    )

    op.create_table(
        'refund_logs',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('reference', sa.String(length=40), nullable=False),
        sa.Column('booking_id', sa.String(length=36), nullable=False),
        sa.Column('customer_id', sa.String(length=36), nullable=False),
        sa.Column('requested_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('approved_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('processing_fee', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('net_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('reason', sa.String(length=500), nullable=False),
        sa.Column('refund_type', sa.String(length=10), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='processed'),
        sa.Column('processed_by', sa.String(length=36), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('processor_reference', sa.String(length=64), nullable=True),
        sa.Column('processor_status', sa.String(length=40), nullable=True),
        _ts('requested_at', nullable=False),
        _ts('reviewed_at', nullable=False),
        _ts('approved_at', nullable=False),
        _ts('processed_at', nullable=False),
        _ts('completed_at'),
        _ts('created_at', nullable=False),
        _ts('updated_at', nullable=False),
        sa.CheckConstraint('net_amount >= 0', name='ck_refund_logs_net_non_negative'),
    )
    op.create_index('ix_refund_logs_reference', 'refund_logs', ['reference'], unique=True)
    op.create_index('ix_refund_logs_booking_id', 'refund_logs', ['booking_id'])
    op.create_index('ix_refund_logs_customer_id', 'refund_logs', ['customer_id'])
    op.create_index('ix_refund_logs_status', 'refund_logs', ['status'])
    op.create_index('ix_refund_logs_processor_reference', 'refund_logs', ['processor_reference'])

    op.create_table(
        'ticket_download_logs',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('booking_id', sa.String(length=36), nullable=False),
        sa.Column('kind', sa.String(length=10), nullable=False, server_default='single'),
        sa.Column('order_item_id', sa.String(length=64), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('attempted_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_ticket_download_logs_booking_id', 'ticket_download_logs', ['booking_id'])

    op.create_table(
        'activity_logs',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('actor_id', sa.String(length=36), nullable=False),
        sa.Column('action', sa.String(length=80), nullable=False),
        sa.Column('entity_type', sa.String(length=40), nullable=False),
        sa.Column('entity_id', sa.String(length=36), nullable=False),
        sa.Column('details_json', sa.Text(), nullable=False, server_default='{}'),
        _ts('created_at', nullable=False),
    )
    op.create_index('ix_activity_logs_actor_id', 'activity_logs', ['actor_id'])
    op.create_index('ix_activity_logs_action', 'activity_logs', ['action'])
    op.create_index('ix_activity_logs_entity_type', 'activity_logs', ['entity_type'])
    op.create_index('ix_activity_logs_entity_id', 'activity_logs', ['entity_id'])


def downgrade():
    op.drop_table('activity_logs')
    op.drop_table('ticket_download_logs')
    op.drop_table('refund_logs')
    op.drop_index('uq_cancellation_requests_active_booking', table_name='cancellation_requests')
    op.drop_table('cancellation_requests')
    op.drop_table('bookings')
