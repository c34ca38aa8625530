"""create scheduling tables

Revision ID: 5b2f0c7e91a4
Revises:
Create Date: 2025-11-18 10:12:41.503221

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5b2f0c7e91a4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""

    # 1. Recurring rules
    op.create_table(
        'recurring_rules',
        sa.Column('id', sa.Uuid(), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('client_id', sa.Uuid(), nullable=False),
        sa.Column('provider_id', sa.Uuid(), nullable=False),
        sa.Column('listing_id', sa.Uuid(), nullable=False),
        sa.Column('recurrence_type', sa.String(20), nullable=False),
        sa.Column('start_date', sa.Date, nullable=False),
        sa.Column('start_time', sa.Time, nullable=False),
        sa.Column('end_time', sa.Time, nullable=False),
        sa.Column('day_of_week', sa.Integer, nullable=True),
        sa.Column('day_of_month', sa.Integer, nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.text('true')),
        sa.Column('client_name', sa.String, nullable=True),
        sa.Column('client_phone', sa.String, nullable=True),
        sa.Column('client_email', sa.String, nullable=True),
        sa.Column('client_address', sa.Text, nullable=True),
        sa.Column('apartment', sa.String, nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.CheckConstraint('day_of_week IS NULL OR day_of_week BETWEEN 0 AND 6', name='ck_recurring_rules_day_of_week'),
        sa.CheckConstraint('day_of_month IS NULL OR day_of_month BETWEEN 1 AND 31', name='ck_recurring_rules_day_of_month'),
    )
    op.create_index('ix_recurring_rules_client_id', 'recurring_rules', ['client_id'])
    op.create_index('ix_recurring_rules_provider_id', 'recurring_rules', ['provider_id'])
    op.create_index('ix_recurring_rules_provider_active', 'recurring_rules', ['provider_id', 'is_active'])

    # 2. Appointments
    op.create_table(
        'appointments',
        sa.Column('id', sa.Uuid(), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('provider_id', sa.Uuid(), nullable=False),
        sa.Column('client_id', sa.Uuid(), nullable=True),
        sa.Column('listing_id', sa.Uuid(), nullable=True),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('recurrence', sa.String(20), nullable=False, server_default='none'),
        sa.Column('is_recurring_instance', sa.Boolean, nullable=False, server_default=sa.text('false')),
        sa.Column('recurring_rule_id', sa.Uuid(), sa.ForeignKey('recurring_rules.id'), nullable=True),
        sa.Column('recurrence_group_id', sa.Uuid(), nullable=True),
        sa.Column('external_booking', sa.Boolean, nullable=False, server_default=sa.text('false')),
        sa.Column('final_price', sa.Numeric(10, 2), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('client_name', sa.String, nullable=True),
        sa.Column('provider_name', sa.String, nullable=True),
        sa.Column('client_address', sa.Text, nullable=True),
        sa.Column('residence_name', sa.String, nullable=True),
        sa.Column('condominium_name', sa.String, nullable=True),
        sa.Column('condominium_text', sa.String, nullable=True),
        sa.Column('house_number', sa.String, nullable=True),
        sa.Column('apartment', sa.String, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text, nullable=True),
        sa.CheckConstraint('end_time > start_time', name='ck_appointments_time_range'),
    )
    op.create_index('ix_appointments_provider_id', 'appointments', ['provider_id'])
    op.create_index('ix_appointments_client_id', 'appointments', ['client_id'])
    op.create_index('ix_appointments_provider_start', 'appointments', ['provider_id', 'start_time'])

    # One active appointment per provider slot
    op.create_index(
        'unique_active_appointment_slot',
        'appointments',
        ['provider_id', 'start_time'],
        unique=True,
        postgresql_where=sa.text("status NOT IN ('cancelled', 'rejected')"),
    )

    # 3. Per-date exceptions of a series
    op.create_table(
        'recurring_exceptions',
        sa.Column('id', sa.Uuid(), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('appointment_id', sa.Uuid(), nullable=False),
        sa.Column('exception_date', sa.Date, nullable=False),
        sa.Column('original_date', sa.Date, nullable=True),
        sa.Column('action_type', sa.String(20), nullable=False),
        sa.Column('new_start_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('new_end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.UniqueConstraint('appointment_id', 'exception_date', name='uq_recurring_exception_date'),
    )
    op.create_index('ix_recurring_exceptions_appointment_id', 'recurring_exceptions', ['appointment_id'])

    # 4. Bookable slots
    op.create_table(
        'provider_time_slots',
        sa.Column('id', sa.Uuid(), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('provider_id', sa.Uuid(), nullable=False),
        sa.Column('listing_id', sa.Uuid(), nullable=False),
        sa.Column('slot_date', sa.Date, nullable=False),
        sa.Column('slot_datetime_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('slot_datetime_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_available', sa.Boolean, nullable=False, server_default=sa.text('true')),
        sa.Column('is_reserved', sa.Boolean, nullable=False, server_default=sa.text('false')),
        sa.Column('is_manually_disabled', sa.Boolean, nullable=True, server_default=sa.text('false')),
        sa.Column('recurring_blocked', sa.Boolean, nullable=True, server_default=sa.text('false')),
        sa.Column('blocked_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('locked_by', sa.String(64), nullable=True),
        sa.Column('slot_type', sa.String(20), server_default='normal'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.CheckConstraint('NOT (is_available AND is_reserved)', name='ck_provider_time_slots_state'),
    )
    op.create_index('ix_provider_time_slots_lookup', 'provider_time_slots', ['provider_id', 'listing_id', 'slot_date'])

    # 5. Manual blocks
    op.create_table(
        'blocked_time_slots',
        sa.Column('id', sa.Uuid(), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('provider_id', sa.Uuid(), nullable=False),
        sa.Column('day', sa.Integer, nullable=False),
        sa.Column('start_hour', sa.Integer, nullable=False),
        sa.Column('end_hour', sa.Integer, nullable=False),
        sa.Column('note', sa.Text, nullable=True),
        sa.Column('is_recurring', sa.Boolean, server_default=sa.text('true')),
        sa.Column('recurrence_type', sa.String(20), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )
    op.create_index('ix_blocked_time_slots_provider_id', 'blocked_time_slots', ['provider_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('blocked_time_slots')
    op.drop_table('provider_time_slots')
    op.drop_table('recurring_exceptions')
    op.drop_index('unique_active_appointment_slot', table_name='appointments')
    op.drop_table('appointments')
    op.drop_table('recurring_rules')
