"""create auth tables

Revision ID: 3b1e7c2a9d40
Revises:
Create Date: 2026-10-18 10:12:41.204511

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from inbola_auth.schema.utils import UTCDateTime


# revision identifiers, used by Alembic.
revision: str = '3b1e7c2a9d40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PROVIDERS = ('phone', 'telegram', 'google', 'password')


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('public_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=True),
        sa.Column('profile_image_url', sa.String(length=1024), nullable=True),
        sa.Column('role', sa.Enum('customer', 'admin', name='accountrole', native_enum=False, length=16), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', UTCDateTime(), nullable=False),
        sa.Column('updated_at', UTCDateTime(), nullable=False),
    )
    op.create_index('ix_users_public_id', 'users', ['public_id'], unique=True)

    op.create_table(
        'identitybinding',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('provider', sa.Enum(*PROVIDERS, name='authprovider', native_enum=False, length=16), nullable=False),
        sa.Column('external_id', sa.String(length=255), nullable=False),
        sa.Column('profile_name', sa.String(length=256), nullable=True),
        sa.Column('profile_image_url', sa.String(length=1024), nullable=True),
        sa.Column('profile_email', sa.String(length=320), nullable=True),
        sa.Column('password_hash', sa.Text(), nullable=True),
        sa.Column('verified_at', UTCDateTime(), nullable=False),
        sa.Column('created_at', UTCDateTime(), nullable=False),
        sa.UniqueConstraint('provider', 'external_id', name='uq_identitybinding_provider_external_id'),
        sa.UniqueConstraint('account_id', 'provider', name='uq_identitybinding_account_id_provider'),
    )
    op.create_index('ix_identitybinding_account_id', 'identitybinding', ['account_id'])

    op.create_table(
        'otpchallenge',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('phone', sa.String(length=20), nullable=False),
        sa.Column('purpose', sa.Enum('registration', 'login', 'password_reset', name='otppurpose',
                                     native_enum=False, length=32), nullable=False),
        sa.Column('code_hash', sa.String(length=128), nullable=False),
        sa.Column('active_key', sa.String(length=64), nullable=True, unique=True),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('issued_at', UTCDateTime(), nullable=False),
        sa.Column('expires_at', UTCDateTime(), nullable=False),
        sa.Column('consumed_at', UTCDateTime(), nullable=True),
        sa.Column('invalidated_at', UTCDateTime(), nullable=True),
    )
    op.create_index('ix_otpchallenge_phone_purpose_issued_at', 'otpchallenge', ['phone', 'purpose', 'issued_at'])

    op.create_table(
        'authsession',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('public_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('token_hash', sa.String(length=200), nullable=False),
        sa.Column('auth_method', sa.Enum(*PROVIDERS, name='authprovider', native_enum=False, length=16), nullable=False),
        sa.Column('issued_at', UTCDateTime(), nullable=False),
        sa.Column('expires_at', UTCDateTime(), nullable=False),
        sa.Column('revoked_at', UTCDateTime(), nullable=True),
        sa.Column('revoked_by', sa.String(length=32), nullable=True),
        sa.Column('rotated_to_id', sa.Integer(), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('ip', sa.String(length=64), nullable=True),
    )
    op.create_index('ix_authsession_public_id', 'authsession', ['public_id'], unique=True)
    op.create_index('ix_authsession_account_id', 'authsession', ['account_id'])
    op.create_index('ix_authsession_token_hash', 'authsession', ['token_hash'], unique=True)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('authsession')
    op.drop_table('otpchallenge')
    op.drop_table('identitybinding')
    op.drop_table('users')
