"""Add payments, appointments and payment_ledger tables.

Revision ID: add_payment_reconciliation
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = 'add_payment_reconciliation'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'payments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('provider_transaction_id', sa.String(255), nullable=False, index=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', index=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='GHS'),
        sa.Column('payment_method', sa.String(50), nullable=True),
        sa.Column('appointment_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('metadata', postgresql.JSON(), nullable=False, server_default=sa.text("'{}'::json")),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('provider', 'provider_transaction_id',
                            name='uq_payments_provider_transaction'),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name='ck_payments_status',
        ),
    )

    op.create_table(
        'appointments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('branch_id', sa.String(64), nullable=False),
        sa.Column('appointment_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('treatment_type', sa.String(255), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('payment_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
    )

    # One appointment per payment, even if two links race
    op.create_index(
        'uq_appointments_payment_id',
        'appointments',
        ['payment_id'],
        unique=True,
        postgresql_where=sa.text("payment_id IS NOT NULL"),
    )

    op.create_table(
        'payment_ledger',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('payment_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('payments.id', ondelete='RESTRICT'),
                  nullable=False, index=True),
        sa.Column('transaction_type', sa.String(50), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('balance_after', sa.Numeric(10, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False, index=True),
    )

    # Ledger rows are append-only at the database level too
    op.execute("""
        CREATE OR REPLACE FUNCTION payment_ledger_immutable() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'payment_ledger rows are immutable';
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER payment_ledger_no_update_delete
        BEFORE UPDATE OR DELETE ON payment_ledger
        FOR EACH ROW EXECUTE FUNCTION payment_ledger_immutable()
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS payment_ledger_no_update_delete ON payment_ledger")
    op.execute("DROP FUNCTION IF EXISTS payment_ledger_immutable()")
    op.drop_table('payment_ledger')
    op.drop_index('uq_appointments_payment_id', table_name='appointments')
    op.drop_table('appointments')
    op.drop_table('payments')
