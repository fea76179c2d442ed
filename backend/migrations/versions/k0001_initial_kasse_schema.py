"""initial kasse schema

Revision ID: k0001
Revises:
Create Date: 2026-10-01 00:00:00.000000

Creates the complete Kasse schema:
- users, roles, user_roles, session_tokens: authentication
- products, carts, cart_items: ordering
- cash_registers, invoices, payment_details, cash_register_transactions: money
- tse_devices, company_settings, finanzonline_submissions: fiscal compliance
- restaurant_tables: floor plan

All amounts are integer cents. Timestamps are stored as naive UTC.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'k0001'
down_revision = None
branch_labels = None
depends_on = None


def _soft_delete_columns():
    return [
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('deactivated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    # ============================================================================
    # Authentication
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('display_name', sa.String(length=128), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)

    op.create_table(
        'roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'user_roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'role_id', name='uq_user_roles_user_role'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_user_roles_user_id', 'user_roles', ['user_id'])
    op.create_index('ix_user_roles_role_id', 'user_roles', ['role_id'])

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)

    # ============================================================================
    # Catalog and carts
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('category', sa.String(length=100), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False),  # net
        sa.Column('tax_type', sa.String(length=16), nullable=False, server_default='STANDARD'),
        sa.Column('image_url', sa.String(length=500), nullable=True),
        *_soft_delete_columns(),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_is_active', 'products', ['is_active'])

    op.create_table(
        'carts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cart_id', sa.String(length=36), nullable=False),
        sa.Column('table_number', sa.Integer(), nullable=True),
        sa.Column('waiter_name', sa.String(length=100), nullable=True),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_carts_cart_id', 'carts', ['cart_id'], unique=True)
    op.create_index('ix_carts_user_id', 'carts', ['user_id'])
    op.create_index('ix_carts_status', 'carts', ['status'])
    op.create_index('ix_carts_expires_at', 'carts', ['expires_at'])
    op.create_index('ix_carts_table_status_user', 'carts', ['table_number', 'status', 'user_id'])

    op.create_table(
        'cart_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cart_pk', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=200), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('tax_type', sa.String(length=16), nullable=False),
        sa.Column('notes', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['cart_pk'], ['carts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cart_items_cart_pk', 'cart_items', ['cart_pk'])

    # ============================================================================
    # Cash registers
    # ============================================================================
    op.create_table(
        'cash_registers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('register_number', sa.String(length=16), nullable=False),
        sa.Column('location', sa.String(length=128), nullable=True),
        sa.Column('starting_balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_balance_update', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='CLOSED'),
        sa.Column('current_user_id', sa.Integer(), nullable=True),
        *_soft_delete_columns(),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['current_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('register_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_registers_status', 'cash_registers', ['status'])
    op.create_index('ix_cash_registers_is_active', 'cash_registers', ['is_active'])

    # ============================================================================
    # Invoices and credit notes
    # ============================================================================
    # source_payment_id: plain integer link to payment_details.id (backfill)
    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=50), nullable=False),
        sa.Column('invoice_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='DRAFT'),
        sa.Column('document_type', sa.String(length=16), nullable=False, server_default='INVOICE'),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('remaining_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('customer_name', sa.String(length=100), nullable=True),
        sa.Column('customer_email', sa.String(length=100), nullable=True),
        sa.Column('customer_phone', sa.String(length=20), nullable=True),
        sa.Column('customer_address', sa.String(length=200), nullable=True),
        sa.Column('customer_tax_number', sa.String(length=20), nullable=True),
        sa.Column('company_name', sa.String(length=100), nullable=False),
        sa.Column('company_tax_number', sa.String(length=20), nullable=False),
        sa.Column('company_address', sa.String(length=200), nullable=False, server_default=''),
        sa.Column('company_phone', sa.String(length=20), nullable=True),
        sa.Column('company_email', sa.String(length=100), nullable=True),
        sa.Column('tse_signature', sa.String(length=500), nullable=False, server_default=''),
        sa.Column('tse_timestamp', sa.DateTime(timezone=True), nullable=True),
        sa.Column('kassen_id', sa.String(length=50), nullable=False, server_default=''),
        sa.Column('cash_register_id', sa.Integer(), nullable=True),
        sa.Column('payment_method', sa.String(length=16), nullable=True),
        sa.Column('payment_reference', sa.String(length=50), nullable=True),
        sa.Column('payment_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('invoice_items', sa.JSON(), nullable=True),
        sa.Column('tax_details', sa.JSON(), nullable=False),
        sa.Column('cart_id', sa.String(length=36), nullable=True),
        sa.Column('source_payment_id', sa.Integer(), nullable=True),
        sa.Column('original_invoice_id', sa.Integer(), nullable=True),
        sa.Column('storno_reason_code', sa.String(length=50), nullable=True),
        sa.Column('storno_reason_text', sa.String(length=500), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        *_soft_delete_columns(),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['cash_register_id'], ['cash_registers.id'], ),
        sa.ForeignKeyConstraint(['original_invoice_id'], ['invoices.id'], ),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_payment_id', name='uq_invoices_source_payment'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoices_status', 'invoices', ['status'])
    op.create_index('ix_invoices_document_type', 'invoices', ['document_type'])
    op.create_index('ix_invoices_cash_register_id', 'invoices', ['cash_register_id'])
    op.create_index('ix_invoices_cart_id', 'invoices', ['cart_id'])
    op.create_index('ix_invoices_is_active', 'invoices', ['is_active'])
    op.create_index('ix_invoices_number_active', 'invoices', ['invoice_number', 'is_active'])
    op.create_index('ix_invoices_original_doc', 'invoices', ['original_invoice_id', 'document_type'])

    # ============================================================================
    # Payments and register ledger
    # ============================================================================
    op.create_table(
        'payment_details',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='COMPLETED'),
        sa.Column('reference', sa.String(length=100), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('transaction_id', sa.String(length=100), nullable=True),
        sa.Column('receipt_number', sa.String(length=50), nullable=True),
        sa.Column('kassen_id', sa.String(length=50), nullable=True),
        sa.Column('cash_register_id', sa.Integer(), nullable=True),
        sa.Column('tse_signature', sa.String(length=500), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('cancelled_by_user_id', sa.Integer(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        *_soft_delete_columns(),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.ForeignKeyConstraint(['cash_register_id'], ['cash_registers.id'], ),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['cancelled_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payment_details_invoice_id', 'payment_details', ['invoice_id'])
    op.create_index('ix_payment_details_status', 'payment_details', ['status'])
    op.create_index('ix_payment_details_receipt_number', 'payment_details', ['receipt_number'])
    op.create_index('ix_payment_details_created_at', 'payment_details', ['created_at'])
    op.create_index('ix_payment_details_is_active', 'payment_details', ['is_active'])
    op.create_index('ix_payment_details_invoice_status', 'payment_details', ['invoice_id', 'status'])

    op.create_table(
        'cash_register_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cash_register_id', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('transaction_date', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['cash_register_id'], ['cash_registers.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['payment_id'], ['payment_details.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_register_transactions_cash_register_id', 'cash_register_transactions', ['cash_register_id'])
    op.create_index('ix_cash_register_txn_register_date', 'cash_register_transactions',
                    ['cash_register_id', 'transaction_date'])

    # ============================================================================
    # Fiscal compliance
    # ============================================================================
    op.create_table(
        'tse_devices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('serial_number', sa.String(length=100), nullable=False),
        sa.Column('device_type', sa.String(length=50), nullable=False, server_default='USB'),
        sa.Column('vendor_id', sa.String(length=20), nullable=True),
        sa.Column('product_id', sa.String(length=20), nullable=True),
        sa.Column('kassen_id', sa.String(length=50), nullable=False),
        sa.Column('is_connected', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('can_create_invoices', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('certificate_status', sa.String(length=20), nullable=False, server_default='VALID'),
        sa.Column('memory_status', sa.String(length=20), nullable=False, server_default='OK'),
        sa.Column('error_message', sa.String(length=500), nullable=True),
        sa.Column('last_connection_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_signature_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finanzonline_enabled', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('finanzonline_username', sa.String(length=100), nullable=True),
        sa.Column('pending_invoices', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pending_reports', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_finanzonline_sync', sa.DateTime(timezone=True), nullable=True),
        *_soft_delete_columns(),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('serial_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_tse_devices_is_active', 'tse_devices', ['is_active'])

    op.create_table(
        'company_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('company_name', sa.String(length=100), nullable=False),
        sa.Column('company_tax_number', sa.String(length=20), nullable=False),
        sa.Column('company_address', sa.String(length=200), nullable=False, server_default=''),
        sa.Column('company_phone', sa.String(length=20), nullable=True),
        sa.Column('company_email', sa.String(length=100), nullable=True),
        sa.Column('finanzonline_api_url', sa.String(length=255), nullable=True),
        sa.Column('finanzonline_username', sa.String(length=100), nullable=True),
        sa.Column('finanzonline_auto_submit', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('finanzonline_submit_interval', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('finanzonline_retry_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('finanzonline_enable_validation', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'finanzonline_submissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('invoice_number', sa.String(length=50), nullable=True),
        sa.Column('tse_device_id', sa.Integer(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('response', sa.JSON(), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.String(length=500), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('submitted_by_user_id', sa.Integer(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.ForeignKeyConstraint(['tse_device_id'], ['tse_devices.id'], ),
        sa.ForeignKeyConstraint(['submitted_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_finanzonline_submissions_invoice_id', 'finanzonline_submissions', ['invoice_id'])
    op.create_index('ix_finanzonline_submissions_submitted_at', 'finanzonline_submissions', ['submitted_at'])

    # ============================================================================
    # Restaurant tables
    # ============================================================================
    op.create_table(
        'restaurant_tables',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('table_number', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=True),
        sa.Column('capacity', sa.Integer(), nullable=False, server_default='4'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='FREE'),
        *_soft_delete_columns(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('table_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_restaurant_tables_is_active', 'restaurant_tables', ['is_active'])


def downgrade():
    op.drop_table('restaurant_tables')
    op.drop_table('finanzonline_submissions')
    op.drop_table('company_settings')
    op.drop_table('tse_devices')
    op.drop_table('cash_register_transactions')
    op.drop_table('payment_details')
    op.drop_table('invoices')
    op.drop_table('cash_registers')
    op.drop_table('cart_items')
    op.drop_table('carts')
    op.drop_table('products')
    op.drop_table('session_tokens')
    op.drop_table('user_roles')
    op.drop_table('roles')
    op.drop_table('users')
