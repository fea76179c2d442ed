"""register closings

Revision ID: k0002
Revises: k0001
Create Date: 2026-10-19 00:00:00.000000

Adds register_closings: signed daily, monthly and yearly totals per cash
register, unique per register, closing type and period start.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'k0002'
down_revision = 'k0001'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'register_closings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cash_register_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('closing_type', sa.String(length=16), nullable=False),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('tax_cents', sa.Integer(), nullable=False),
        sa.Column('transaction_count', sa.Integer(), nullable=False),
        sa.Column('tse_signature', sa.String(length=512), nullable=False),
        sa.Column('kassen_id', sa.String(length=50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['cash_register_id'], ['cash_registers.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('cash_register_id', 'closing_type', 'period_start',
                            name='uq_register_closings_period'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_register_closings_cash_register_id', 'register_closings', ['cash_register_id'])


def downgrade():
    op.drop_index('ix_register_closings_cash_register_id', table_name='register_closings')
    op.drop_table('register_closings')
