"""initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17

Creates the RFQ, supplier, supplier quote request, quote version and audit
log tables. Status columns are VARCHAR with CHECK constraints (non-native
enums) so the schema is identical on Postgres and SQLite.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _status(*values, name):
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True, length=32)


def upgrade() -> None:
    rfqstatus = _status('draft', 'sent', 'quotes_received', 'evaluating', 'negotiating', 'awarded', 'closed',
                        name='rfqstatus')
    supplierstatus = _status('pending', 'invited', 'responded', 'submitted', 'selected', 'rejected',
                             name='supplierstatus')
    sqrstatus = _status('draft', 'submitted', 'revised', 'accepted', 'rejected', name='sqrstatus')
    quotesource = _status('workbook', 'portal', name='quotesource')

    # Audit logs
    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('entity_type', sa.String(100)),
        sa.Column('entity_id', sa.Integer()),
        sa.Column('details', sa.JSON()),
        sa.Column('ip_address', sa.String(50)),
        sa.Column('user_agent', sa.Text()),
    )
    op.create_index('ix_audit_logs_id', 'audit_logs', ['id'])
    op.create_index('ix_audit_logs_timestamp', 'audit_logs', ['timestamp'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])

    # RFQ requests
    op.create_table('rfq_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('rfq_number', sa.String(50), nullable=False, unique=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('status', rfqstatus, nullable=False, server_default='draft'),
        sa.Column('due_date', sa.DateTime(timezone=True)),
        sa.Column('created_by', sa.Integer()),
        sa.Column('template_structure', sa.JSON()),
        sa.Column('general_details', sa.JSON()),
        sa.Column('scope_of_work', sa.Text()),
        sa.Column('questionnaire', sa.JSON()),
        sa.Column('items', sa.JSON()),
        sa.Column('terms_and_conditions', sa.JSON()),
        sa.Column('negotiation', sa.JSON()),
        sa.Column('decision_notes', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.Column('awarded_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_rfq_requests_id', 'rfq_requests', ['id'])

    # Suppliers invited to an RFQ
    op.create_table('rfq_suppliers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('rfq_id', sa.Integer(), sa.ForeignKey('rfq_requests.id'), nullable=False),
        sa.Column('supplier_id', sa.String(100), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255)),
        sa.Column('phone', sa.String(50)),
        sa.Column('address', sa.Text()),
        sa.Column('contact_person', sa.String(255)),
        sa.Column('status', supplierstatus, nullable=False, server_default='pending'),
        sa.Column('excel_uuid', sa.String(36)),
        sa.Column('excel_generated_at', sa.DateTime(timezone=True)),
        sa.Column('invited_at', sa.DateTime(timezone=True)),
        sa.Column('response_submitted_at', sa.DateTime(timezone=True)),
        sa.Column('submission_date', sa.DateTime(timezone=True)),
        sa.Column('response_data', sa.JSON()),
        sa.Column('latest_quote_version', sa.Integer()),
        sa.Column('notes', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('rfq_id', 'supplier_id', name='uq_rfq_supplier'),
    )
    op.create_index('ix_rfq_suppliers_id', 'rfq_suppliers', ['id'])
    op.create_index('ix_rfq_suppliers_rfq_id', 'rfq_suppliers', ['rfq_id'])

    # Supplier quote requests
    op.create_table('supplier_quote_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('rfq_id', sa.Integer(), sa.ForeignKey('rfq_requests.id'), nullable=False),
        sa.Column('supplier_id', sa.String(100), nullable=False),
        sa.Column('status', sqrstatus, nullable=False, server_default='draft'),
        sa.Column('sections', sa.JSON(), nullable=False),
        sa.Column('attachments', sa.JSON()),
        sa.Column('comments', sa.Text()),
        sa.Column('total_quote_value', sa.Float()),
        sa.Column('currency', sa.String(10)),
        sa.Column('evaluation_response', sa.JSON()),
        sa.Column('submission_date', sa.DateTime(timezone=True)),
        sa.Column('last_updated', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('rfq_id', 'supplier_id', name='uq_sqr_rfq_supplier'),
    )
    op.create_index('ix_supplier_quote_requests_id', 'supplier_quote_requests', ['id'])
    op.create_index('ix_supplier_quote_requests_rfq_id', 'supplier_quote_requests', ['rfq_id'])

    # Versioned quote snapshots
    op.create_table('supplier_quote_versions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('rfq_id', sa.Integer(), sa.ForeignKey('rfq_requests.id'), nullable=False),
        sa.Column('supplier_id', sa.String(100), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('source', quotesource, nullable=False, server_default='workbook'),
        sa.Column('response_data', sa.JSON(), nullable=False),
        sa.Column('diagnostics', sa.JSON()),
        sa.Column('uploaded_by', sa.Integer()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('rfq_id', 'supplier_id', 'version', name='uq_quote_version'),
    )
    op.create_index('ix_supplier_quote_versions_id', 'supplier_quote_versions', ['id'])
    op.create_index('ix_quote_versions_rfq_supplier', 'supplier_quote_versions', ['rfq_id', 'supplier_id'])


def downgrade() -> None:
    op.drop_table('supplier_quote_versions')
    op.drop_table('supplier_quote_requests')
    op.drop_table('rfq_suppliers')
    op.drop_table('rfq_requests')
    op.drop_table('audit_logs')
