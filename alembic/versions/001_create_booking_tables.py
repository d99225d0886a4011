"""Create kitchen_bookings, storage_bookings and equipment_bookings tables.

Revision ID: 001
Revises:
Create Date: 2026-10-16

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create booking tables."""
    # Kitchen bookings table
    op.create_table(
        'kitchen_bookings',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('chef_id', sa.Integer(), nullable=True, index=True),
        sa.Column('manager_id', sa.Integer(), nullable=False, index=True),
        sa.Column('kitchen_id', sa.Integer(), nullable=False, index=True),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', index=True),
        sa.Column('booking_date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.String(5), nullable=False),
        sa.Column('end_time', sa.String(5), nullable=False),
        sa.Column('timezone', sa.String(64), nullable=False, server_default='America/St_Johns'),
        sa.Column('total_price_cents', sa.Integer(), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False, server_default='CAD'),
        sa.Column('payment_intent_id', sa.String(100), nullable=True, index=True),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('captured_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('charge_id', sa.String(100), nullable=True),
        sa.Column('kitchen_name', sa.String(255), nullable=False, server_default=''),
        sa.Column('chef_name', sa.String(255), nullable=False, server_default=''),
        sa.Column('decision_lock_token', sa.String(64), nullable=True),
        sa.Column('decision_locked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )

    # Storage bookings table
    op.create_table(
        'storage_bookings',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('kitchen_booking_id', sa.Integer(),
                  sa.ForeignKey('kitchen_bookings.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('storage_listing_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('storage_type', sa.String(20), nullable=False, server_default='dry'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', index=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('total_price_cents', sa.Integer(), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False, server_default='CAD'),
        sa.Column('payment_intent_id', sa.String(100), nullable=True),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('captured_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('charge_id', sa.String(100), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )

    # Equipment bookings table
    op.create_table(
        'equipment_bookings',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('kitchen_booking_id', sa.Integer(),
                  sa.ForeignKey('kitchen_bookings.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('equipment_listing_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('total_price_cents', sa.Integer(), nullable=True),
    )


def downgrade() -> None:
    """Drop booking tables."""
    op.drop_table('equipment_bookings')
    op.drop_table('storage_bookings')
    op.drop_table('kitchen_bookings')
