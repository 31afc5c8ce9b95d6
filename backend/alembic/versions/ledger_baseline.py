"""ledger_baseline

Revision ID: ledger_baseline
Revises:
Create Date: 2026-10-19 09:00:00.000000

Baseline schema for the clinic ledger:
- organizations
- invoices and invoice_items
- payment_plans and payment_plan_installments
- payments
- invoice_adjustments
- audit_logs with immutability trigger
- activity_log
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'ledger_baseline'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create the ledger schema.

    The audit_logs table gets a BEFORE UPDATE OR DELETE trigger so audit
    entries stay append-only even for writes that bypass the ORM.
    """
    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index('ix_organizations_id', 'organizations', ['id'])

    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('patient_id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('discount_type', sa.String(20), nullable=False, server_default='none'),
        sa.Column('discount_value', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('final_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('paid_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('issued_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        sa.Column('sent_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('canceled_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('cancel_reason', sa.String(500), nullable=True),
        sa.Column('idempotency_key', sa.String(255), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.UniqueConstraint('organization_id', 'invoice_number', name='uq_invoices_organization_number'),
        sa.UniqueConstraint('organization_id', 'idempotency_key', name='uq_invoices_organization_idempotency_key'),
        sa.CheckConstraint('final_amount >= 0', name='chk_invoices_final_amount_non_negative'),
        sa.CheckConstraint('total_amount >= 0', name='chk_invoices_total_amount_non_negative'),
    )
    op.create_index('ix_invoices_id', 'invoices', ['id'])
    op.create_index('idx_invoices_organization', 'invoices', ['organization_id'])
    op.create_index('idx_invoices_organization_patient', 'invoices', ['organization_id', 'patient_id'])
    op.create_index('idx_invoices_status', 'invoices', ['status'])

    op.create_table(
        'invoice_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('invoice_id', sa.Integer(), sa.ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False),
        sa.Column('description', sa.String(255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('total_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('display_order', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint('quantity >= 1', name='chk_invoice_items_quantity_positive'),
        sa.CheckConstraint('unit_price >= 0', name='chk_invoice_items_unit_price_non_negative'),
    )
    op.create_index('ix_invoice_items_id', 'invoice_items', ['id'])
    op.create_index('idx_invoice_items_invoice', 'invoice_items', ['invoice_id'])

    op.create_table(
        'payment_plans',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('invoice_id', sa.Integer(), sa.ForeignKey('invoices.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('patient_id', sa.Integer(), nullable=False),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('frequency', sa.String(20), nullable=False),
        sa.Column('number_of_installments', sa.Integer(), nullable=False),
        sa.Column('installment_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint('number_of_installments >= 1', name='chk_payment_plans_installments_positive'),
    )
    op.create_index('ix_payment_plans_id', 'payment_plans', ['id'])
    op.create_index('idx_payment_plans_organization', 'payment_plans', ['organization_id'])
    op.create_index('idx_payment_plans_invoice', 'payment_plans', ['invoice_id'])

    op.create_table(
        'payment_plan_installments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('payment_plan_id', sa.Integer(), sa.ForeignKey('payment_plans.id', ondelete='CASCADE'), nullable=False),
        sa.Column('installment_number', sa.Integer(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('paid_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('is_paid', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('paid_date', sa.Date(), nullable=True),
        sa.UniqueConstraint('payment_plan_id', 'installment_number', name='uq_installments_plan_number'),
        sa.CheckConstraint('amount > 0', name='chk_installments_amount_positive'),
    )
    op.create_index('ix_payment_plan_installments_id', 'payment_plan_installments', ['id'])
    op.create_index('idx_installments_plan', 'payment_plan_installments', ['payment_plan_id'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('invoice_id', sa.Integer(), sa.ForeignKey('invoices.id', ondelete='RESTRICT'), nullable=False),
        sa.Column(
            'payment_plan_installment_id', sa.Integer(),
            sa.ForeignKey('payment_plan_installments.id', ondelete='RESTRICT'), nullable=True
        ),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('payment_date', sa.Date(), nullable=False),
        sa.Column('payment_method', sa.String(20), nullable=False),
        sa.Column('reference_number', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_refunded', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('refunded_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('refund_reason', sa.String(500), nullable=True),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        sa.Column('idempotency_key', sa.String(255), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.UniqueConstraint('organization_id', 'idempotency_key', name='uq_payments_organization_idempotency_key'),
        sa.CheckConstraint('amount > 0', name='chk_payments_amount_positive'),
    )
    op.create_index('ix_payments_id', 'payments', ['id'])
    op.create_index('idx_payments_invoice', 'payments', ['invoice_id'])
    op.create_index('idx_payments_organization', 'payments', ['organization_id'])
    op.create_index('idx_payments_installment', 'payments', ['payment_plan_installment_id'])

    op.create_table(
        'invoice_adjustments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('invoice_id', sa.Integer(), sa.ForeignKey('invoices.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('reason', sa.String(500), nullable=False),
        sa.Column('applied_date', sa.Date(), nullable=False),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index('ix_invoice_adjustments_id', 'invoice_adjustments', ['id'])
    op.create_index('idx_invoice_adjustments_invoice', 'invoice_adjustments', ['invoice_id'])
    op.create_index('idx_invoice_adjustments_organization', 'invoice_adjustments', ['organization_id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('user_role', sa.String(50), nullable=False),
        sa.Column('action_type', sa.String(10), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.String(100), nullable=False),
        sa.Column('previous_value', sa.JSON(), nullable=True),
        sa.Column('new_value', sa.JSON(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('timestamp', sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index('ix_audit_logs_id', 'audit_logs', ['id'])
    op.create_index('idx_audit_logs_entity', 'audit_logs', ['entity_type', 'entity_id'])
    op.create_index('idx_audit_logs_user', 'audit_logs', ['user_id'])
    op.create_index('idx_audit_logs_timestamp', 'audit_logs', ['timestamp'])

    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_audit_log_modification()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'audit_logs entries are immutable (% on id %)', TG_OP, OLD.id;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER audit_logs_immutability_trigger
            BEFORE UPDATE OR DELETE ON audit_logs
            FOR EACH ROW
            EXECUTE FUNCTION prevent_audit_log_modification();
    """)

    op.create_table(
        'activity_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.String(100), nullable=True),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index('ix_activity_log_id', 'activity_log', ['id'])
    op.create_index('idx_activity_log_organization_created', 'activity_log', ['organization_id', 'created_at'])


def downgrade() -> None:
    """Drop the ledger schema."""
    op.drop_table('activity_log')
    op.execute("DROP TRIGGER IF EXISTS audit_logs_immutability_trigger ON audit_logs;")
    op.execute("DROP FUNCTION IF EXISTS prevent_audit_log_modification();")
    op.drop_table('audit_logs')
    op.drop_table('invoice_adjustments')
    op.drop_table('payments')
    op.drop_table('payment_plan_installments')
    op.drop_table('payment_plans')
    op.drop_table('invoice_items')
    op.drop_table('invoices')
    op.drop_table('organizations')
