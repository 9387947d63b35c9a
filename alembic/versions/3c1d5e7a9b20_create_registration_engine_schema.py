"""create registration engine schema

Revision ID: 3c1d5e7a9b20
Revises:
Create Date: 2026-10-19 10:12:44.518204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3c1d5e7a9b20'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


PAYMENT_STATUS = postgresql.ENUM(
    'PENDING', 'SUCCEEDED', 'FAILED', 'REFUNDED', 'PARTIALLY_REFUNDED',
    name='payment_status', create_type=False
)
REGISTRATION_PAYMENT_STATUS = postgresql.ENUM(
    'NOT_REQUIRED', 'PENDING', 'PAID', 'FAILED', 'REFUNDED', 'PARTIALLY_REFUNDED',
    name='registration_payment_status', create_type=False
)


def upgrade():
    PAYMENT_STATUS.create(op.get_bind(), checkfirst=True)
    REGISTRATION_PAYMENT_STATUS.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'events',
        sa.Column('id', sa.Integer(), sa.Identity(always=True), primary_key=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('organizer_id', sa.Integer(), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=True),
        sa.Column('committed', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('capacity IS NULL OR capacity >= 0', name='chk_event_capacity_nonneg'),
        sa.CheckConstraint('committed >= 0', name='chk_event_committed_nonneg'),
        sa.CheckConstraint('capacity IS NULL OR committed <= capacity', name='chk_event_not_oversold'),
    )
    op.create_index('ix_events_organizer_id', 'events', ['organizer_id'])

    op.create_table(
        'ticket_types',
        sa.Column('id', sa.Integer(), sa.Identity(always=True), primary_key=True),
        sa.Column('event_id', sa.Integer(), sa.ForeignKey('events.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('price', sa.Integer(), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=True),
        sa.Column('committed', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('deleted_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint('price >= 0', name='chk_ticket_price_nonneg'),
        sa.CheckConstraint('capacity IS NULL OR capacity >= 0', name='chk_ticket_capacity_nonneg'),
        sa.CheckConstraint('committed >= 0', name='chk_ticket_committed_nonneg'),
        sa.CheckConstraint('capacity IS NULL OR committed <= capacity', name='chk_ticket_not_oversold'),
    )
    op.create_index('ix_ticket_types_event_id', 'ticket_types', ['event_id'])
    op.create_index(
        'uq_ticket_type_event_name_live', 'ticket_types', ['event_id', 'name'],
        unique=True, postgresql_where=sa.text('deleted_at IS NULL')
    )

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), sa.Identity(always=True), primary_key=True),
        sa.Column('event_id', sa.Integer(), sa.ForeignKey('events.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('checkout_reference', sa.Uuid(), nullable=False),
        sa.Column('gateway_payment_id', sa.Text(), nullable=True),
        sa.Column('amount_total', sa.Integer(), nullable=False),
        sa.Column('platform_fee', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('status', PAYMENT_STATUS, nullable=False, server_default='PENDING'),
        sa.Column('refund_amount', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('gateway_refund_id', sa.Text(), nullable=True),
        sa.Column('refund_reason', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('paid_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint('amount_total >= 0', name='chk_payment_amount_nonneg'),
        sa.CheckConstraint('platform_fee >= 0 AND platform_fee <= amount_total', name='chk_payment_fee_range'),
        sa.CheckConstraint('quantity >= 1', name='chk_payment_quantity_pos'),
        sa.CheckConstraint('refund_amount >= 0 AND refund_amount <= amount_total', name='chk_payment_refund_range'),
    )
    op.create_index('ix_payments_event_id', 'payments', ['event_id'])
    op.create_index('ix_payments_user_id', 'payments', ['user_id'])
    op.create_index('ix_payments_checkout_reference', 'payments', ['checkout_reference'])
    op.create_index('ix_payments_expires_at', 'payments', ['expires_at'])

    op.create_table(
        'registrations',
        sa.Column('id', sa.Integer(), sa.Identity(always=True), primary_key=True),
        sa.Column('uuid', sa.Uuid(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('event_id', sa.Integer(), sa.ForeignKey('events.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('ticket_type_id', sa.Integer(), sa.ForeignKey('ticket_types.id', ondelete='RESTRICT'),
                  nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('payment_required', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('payment_status', REGISTRATION_PAYMENT_STATUS, nullable=False, server_default='NOT_REQUIRED'),
        sa.Column('payment_id', sa.Integer(), sa.ForeignKey('payments.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('is_cancelled', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('cancelled_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('uuid', name='uq_registrations_uuid'),
        sa.UniqueConstraint('payment_id', name='uq_registrations_payment_id'),
        sa.CheckConstraint('quantity >= 1', name='chk_registration_quantity_pos'),
        sa.CheckConstraint('is_cancelled OR cancelled_at IS NULL', name='chk_registration_cancelled_at'),
    )
    op.create_index('ix_registrations_event_id', 'registrations', ['event_id'])
    op.create_index('ix_registrations_user_id', 'registrations', ['user_id'])
    op.create_index('ix_registrations_ticket_type_id', 'registrations', ['ticket_type_id'])
    op.create_index(
        'uq_registrations_user_ticket_type_active', 'registrations', ['user_id', 'ticket_type_id'],
        unique=True, postgresql_where=sa.text('NOT is_cancelled')
    )


def downgrade():
    op.drop_index('uq_registrations_user_ticket_type_active', table_name='registrations')
    op.drop_index('ix_registrations_ticket_type_id', table_name='registrations')
    op.drop_index('ix_registrations_user_id', table_name='registrations')
    op.drop_index('ix_registrations_event_id', table_name='registrations')
    op.drop_table('registrations')

    op.drop_index('ix_payments_expires_at', table_name='payments')
    op.drop_index('ix_payments_checkout_reference', table_name='payments')
    op.drop_index('ix_payments_user_id', table_name='payments')
    op.drop_index('ix_payments_event_id', table_name='payments')
    op.drop_table('payments')

    op.drop_index('uq_ticket_type_event_name_live', table_name='ticket_types')
    op.drop_index('ix_ticket_types_event_id', table_name='ticket_types')
    op.drop_table('ticket_types')

    op.drop_index('ix_events_organizer_id', table_name='events')
    op.drop_table('events')

    REGISTRATION_PAYMENT_STATUS.drop(op.get_bind(), checkfirst=True)
    PAYMENT_STATUS.drop(op.get_bind(), checkfirst=True)
