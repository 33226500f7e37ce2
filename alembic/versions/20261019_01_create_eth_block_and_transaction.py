"""Create eth_block and eth_transaction

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_01'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'eth_block',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('block_hash', sa.String(length=66), nullable=False),
        sa.Column('parent_hash', sa.String(length=66), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('create_time', sa.BigInteger(), nullable=False),
        sa.Column('fork', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('processed_at', sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('block_hash'),
    )
    op.create_index('ix_eth_block_parent_hash', 'eth_block', ['parent_hash'])
    op.create_index('ix_eth_block_block_number', 'eth_block', ['block_number'])
    op.create_index('ix_eth_block_fork', 'eth_block', ['fork'])
    op.create_index('ix_eth_block_fork_create_time', 'eth_block', ['fork', 'create_time'])

    op.create_table(
        'eth_transaction',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('hash', sa.String(length=66), nullable=False),
        sa.Column('nonce', sa.BigInteger(), nullable=False),
        sa.Column('block_hash', sa.String(length=66), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('transaction_index', sa.Integer(), nullable=False),
        sa.Column('from_address', sa.String(length=42), nullable=False),
        sa.Column('to_address', sa.String(length=42), nullable=True),
        sa.Column('value', sa.String(length=80), nullable=False),
        sa.Column('gas_price', sa.String(length=80), nullable=True),
        sa.Column('gas', sa.String(length=80), nullable=False),
        sa.Column('input', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('hash', 'block_hash'),
    )
    op.create_index('ix_eth_transaction_hash', 'eth_transaction', ['hash'])
    op.create_index('ix_eth_transaction_block_hash', 'eth_transaction', ['block_hash'])
    op.create_index('ix_eth_transaction_block_number', 'eth_transaction', ['block_number'])
    op.create_index('ix_eth_transaction_from_address', 'eth_transaction', ['from_address'])
    op.create_index('ix_eth_transaction_to_address', 'eth_transaction', ['to_address'])


def downgrade():
    op.drop_table('eth_transaction')
    op.drop_table('eth_block')
