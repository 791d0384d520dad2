"""Create agency sales settlement schema

Revision ID: 20261019_settlement
Revises:
Create Date: 2026-10-19

Creates:
- agencies, branches: commission rates and balances
- customers, vehicles: sale parties (vehicles unique by plate)
- packages: sellable catalog
- sales: sale with frozen commission split and refund columns
- payments: BALANCE / GATEWAY payments and their provider details
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy import text


# revision identifiers, used by Alembic.
revision = '20261019_settlement'
down_revision = None
branch_labels = None
depends_on = None


def table_exists(table_name: str) -> bool:
    """Check if a table exists."""
    conn = op.get_bind()
    result = conn.execute(text(f"""
        SELECT EXISTS (
            SELECT 1 FROM information_schema.tables
            WHERE table_name = '{table_name}'
        )
    """))
    return result.scalar()


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    ]


def upgrade() -> None:
    """Create settlement tables."""

    if not table_exists('agencies'):
        op.create_table(
            'agencies',
            sa.Column('id', UUID(as_uuid=True), primary_key=True),
            sa.Column('name', sa.String(200), nullable=False),
            sa.Column('tax_number', sa.String(20), nullable=True),
            sa.Column('address', sa.Text, nullable=True),
            sa.Column('phone', sa.String(20), nullable=True),
            sa.Column('email', sa.String(200), nullable=True),
            sa.Column('commission_rate', sa.Numeric(5, 2), nullable=False, server_default='20'),
            sa.Column('status', sa.String(20), nullable=False, server_default='ACTIVE'),
            sa.Column('balance', sa.Numeric(10, 2), nullable=False, server_default='0'),
            sa.Column('account_name', sa.String(200), nullable=True),
            sa.Column('iban', sa.String(34), nullable=True),
            *_timestamps(),
            sa.CheckConstraint('commission_rate >= 0 AND commission_rate <= 100', name='ck_agency_rate_range'),
            sa.CheckConstraint('balance >= 0', name='ck_agency_balance_non_negative'),
        )

    if not table_exists('branches'):
        op.create_table(
            'branches',
            sa.Column('id', UUID(as_uuid=True), primary_key=True),
            sa.Column('agency_id', UUID(as_uuid=True), sa.ForeignKey('agencies.id', ondelete='CASCADE'), nullable=False, index=True),
            sa.Column('name', sa.String(200), nullable=False),
            sa.Column('address', sa.Text, nullable=True),
            sa.Column('phone', sa.String(20), nullable=True),
            sa.Column('status', sa.String(20), nullable=False, server_default='ACTIVE'),
            sa.Column('commission_rate', sa.Numeric(5, 2), nullable=False),
            sa.Column('balance', sa.Numeric(10, 2), nullable=False, server_default='0'),
            sa.Column('account_name', sa.String(200), nullable=True),
            sa.Column('iban', sa.String(34), nullable=True),
            *_timestamps(),
            sa.CheckConstraint('commission_rate >= 0 AND commission_rate <= 100', name='ck_branch_rate_range'),
            sa.CheckConstraint('balance >= 0', name='ck_branch_balance_non_negative'),
        )

    if not table_exists('customers'):
        op.create_table(
            'customers',
            sa.Column('id', UUID(as_uuid=True), primary_key=True),
            sa.Column('agency_id', UUID(as_uuid=True), sa.ForeignKey('agencies.id', ondelete='SET NULL'), nullable=True, index=True),
            sa.Column('branch_id', UUID(as_uuid=True), sa.ForeignKey('branches.id', ondelete='SET NULL'), nullable=True, index=True),
            sa.Column('created_by', UUID(as_uuid=True), nullable=True),
            sa.Column('is_corporate', sa.Boolean, nullable=False, server_default='false'),
            sa.Column(
                'identity_number',
                sa.String(11),
                nullable=False,
                index=True,
                comment='National ID (individual) or tax number (corporate)'
            ),
            sa.Column('name', sa.String(200), nullable=False),
            sa.Column('surname', sa.String(100), nullable=True),
            sa.Column('tax_office', sa.String(100), nullable=True),
            sa.Column('birth_date', sa.Date, nullable=True),
            sa.Column('phone', sa.String(20), nullable=False),
            sa.Column('email', sa.String(200), nullable=True),
            sa.Column('city', sa.String(100), nullable=True),
            sa.Column('district', sa.String(100), nullable=True),
            sa.Column('address', sa.Text, nullable=True),
            *_timestamps(),
        )

    if not table_exists('vehicles'):
        op.create_table(
            'vehicles',
            sa.Column('id', UUID(as_uuid=True), primary_key=True),
            sa.Column('customer_id', UUID(as_uuid=True), sa.ForeignKey('customers.id', ondelete='SET NULL'), nullable=True, index=True),
            sa.Column('agency_id', UUID(as_uuid=True), sa.ForeignKey('agencies.id', ondelete='SET NULL'), nullable=True),
            sa.Column('branch_id', UUID(as_uuid=True), sa.ForeignKey('branches.id', ondelete='SET NULL'), nullable=True),
            sa.Column('is_foreign_plate', sa.Boolean, nullable=False, server_default='false'),
            sa.Column('plate', sa.String(20), nullable=False, unique=True, comment='Uppercase, whitespace stripped'),
            sa.Column('registration_serial', sa.String(10), nullable=True),
            sa.Column('registration_number', sa.String(20), nullable=True),
            sa.Column('brand_id', sa.Integer, nullable=True),
            sa.Column('model_id', sa.Integer, nullable=True),
            sa.Column('model_year', sa.Integer, nullable=False),
            sa.Column('usage_type', sa.String(20), nullable=False, server_default='PRIVATE'),
            *_timestamps(),
        )

    if not table_exists('packages'):
        op.create_table(
            'packages',
            sa.Column('id', UUID(as_uuid=True), primary_key=True),
            sa.Column('name', sa.String(200), nullable=False),
            sa.Column('description', sa.Text, nullable=True),
            sa.Column('vehicle_type', sa.String(50), nullable=False),
            sa.Column('price', sa.Numeric(10, 2), nullable=False),
            sa.Column('max_vehicle_age', sa.Integer, nullable=False, server_default='20'),
            sa.Column('status', sa.String(20), nullable=False, server_default='ACTIVE'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        )

    if not table_exists('sales'):
        op.create_table(
            'sales',
            sa.Column('id', UUID(as_uuid=True), primary_key=True),
            sa.Column('customer_id', UUID(as_uuid=True), sa.ForeignKey('customers.id', ondelete='CASCADE'), nullable=True, index=True),
            sa.Column('vehicle_id', UUID(as_uuid=True), sa.ForeignKey('vehicles.id', ondelete='CASCADE'), nullable=False, index=True),
            sa.Column('agency_id', UUID(as_uuid=True), sa.ForeignKey('agencies.id', ondelete='CASCADE'), nullable=True, index=True),
            sa.Column('branch_id', UUID(as_uuid=True), sa.ForeignKey('branches.id', ondelete='CASCADE'), nullable=True, index=True),
            sa.Column('user_id', UUID(as_uuid=True), nullable=True),
            sa.Column('package_id', UUID(as_uuid=True), sa.ForeignKey('packages.id', ondelete='RESTRICT'), nullable=False),
            sa.Column('price', sa.Numeric(10, 2), nullable=False),
            sa.Column('commission', sa.Numeric(10, 2), nullable=False, server_default='0'),
            sa.Column('branch_commission', sa.Numeric(10, 2), nullable=True),
            sa.Column('agency_commission', sa.Numeric(10, 2), nullable=True),
            sa.Column('start_date', sa.Date, nullable=False),
            sa.Column('end_date', sa.Date, nullable=False),
            sa.Column('policy_number', sa.String(50), nullable=True, index=True),
            sa.Column('is_refunded', sa.Boolean, nullable=False, server_default='false'),
            sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('refund_amount', sa.Numeric(10, 2), nullable=True),
            sa.Column('refund_reason', sa.Text, nullable=True),
            sa.Column('refunded_by', UUID(as_uuid=True), nullable=True),
            *_timestamps(),
        )

    if not table_exists('payments'):
        op.create_table(
            'payments',
            sa.Column('id', UUID(as_uuid=True), primary_key=True),
            sa.Column('sale_id', UUID(as_uuid=True), sa.ForeignKey('sales.id', ondelete='CASCADE'), nullable=False, index=True),
            sa.Column('agency_id', UUID(as_uuid=True), sa.ForeignKey('agencies.id', ondelete='SET NULL'), nullable=True),
            sa.Column('amount', sa.Numeric(10, 2), nullable=False),
            sa.Column('type', sa.String(20), nullable=False, comment='GATEWAY, BALANCE'),
            sa.Column(
                'status',
                sa.String(20),
                nullable=False,
                server_default='PENDING',
                index=True,
                comment='PENDING, COMPLETED, FAILED, REFUNDED'
            ),
            sa.Column('transaction_id', sa.String(100), nullable=True),
            sa.Column('payment_details', sa.JSON, nullable=True, comment='Opaque provider details'),
            *_timestamps(),
        )


def downgrade() -> None:
    """Drop settlement tables."""

    for table_name in ('payments', 'sales', 'packages', 'vehicles', 'customers', 'branches', 'agencies'):
        if table_exists(table_name):
            op.drop_table(table_name)
