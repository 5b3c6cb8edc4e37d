"""create users, food listings and listing claims

Revision ID: 3b1c9f2a7d40
Revises: 
Create Date: 2026-10-17 09:12:31.408215

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3b1c9f2a7d40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the users, food_listings and listing_claims tables."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'food_listings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('donor_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('donor_name', sa.String(length=120), nullable=False),
        sa.Column('category', sa.String(length=40), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('quantity', sa.String(length=120), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=False),
        sa.Column('image_url', sa.String(length=500), nullable=False),
        sa.Column('mfg_time', sa.DateTime(), nullable=False),
        sa.Column('expiry_time', sa.DateTime(), nullable=False),
        sa.Column('max_claims', sa.Integer(), nullable=False),
        sa.Column('claim_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_food_listings_id', 'food_listings', ['id'])
    op.create_index('ix_food_listings_donor_id', 'food_listings', ['donor_id'])
    op.create_index('ix_food_listings_expiry_time', 'food_listings', ['expiry_time'])
    op.create_index('ix_food_listings_created_at', 'food_listings', ['created_at'])

    op.create_table(
        'listing_claims',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'listing_id',
            sa.Integer(),
            sa.ForeignKey('food_listings.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('receiver_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('receiver_name', sa.String(length=120), nullable=False),
        sa.Column('claimed_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('listing_id', 'receiver_id', name='uq_listing_claims_listing_receiver'),
    )
    op.create_index('ix_listing_claims_id', 'listing_claims', ['id'])
    op.create_index('ix_listing_claims_listing_id', 'listing_claims', ['listing_id'])
    op.create_index('ix_listing_claims_receiver_id', 'listing_claims', ['receiver_id'])


def downgrade() -> None:
    """Drop all tables created in upgrade."""
    op.drop_table('listing_claims')
    op.drop_table('food_listings')
    op.drop_table('users')
