"""Initial schema: action tokens, OTP challenges, signatures, audit, API keys.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'action_tokens',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('secret_digest', sa.String(length=64), nullable=False),
        sa.Column('purpose', sa.String(length=50), nullable=False),
        sa.Column('subject_id', sa.String(length=255), nullable=False),
        sa.Column('signer_role', sa.String(length=20), nullable=True),
        sa.Column('recipient_hint', sa.String(length=255), nullable=True),
        sa.Column('issued_by', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('used', sa.Boolean(), nullable=False),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.Column('revoked', sa.Boolean(), nullable=False),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('revoked_by', sa.String(length=255), nullable=True),
        sa.Column('expired_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_action_tokens_secret_digest', 'action_tokens', ['secret_digest'], unique=True)
    op.create_index('ix_action_tokens_purpose', 'action_tokens', ['purpose'])
    op.create_index('ix_action_tokens_subject_id', 'action_tokens', ['subject_id'])
    op.create_index('ix_action_tokens_expires_at', 'action_tokens', ['expires_at'])

    op.create_table(
        'otp_challenges',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('token_id', sa.String(length=36), nullable=False),
        sa.Column('code_hash', sa.String(length=64), nullable=False),
        sa.Column('salt', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('verified', sa.Boolean(), nullable=False),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('expired_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['token_id'], ['action_tokens.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_otp_challenges_id', 'otp_challenges', ['id'])
    op.create_index('ix_otp_challenges_token_id', 'otp_challenges', ['token_id'], unique=True)
    op.create_index('ix_otp_challenges_expires_at', 'otp_challenges', ['expires_at'])

    op.create_table(
        'contract_signatures',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('deal_id', sa.String(length=255), nullable=False),
        sa.Column('signer_role', sa.String(length=20), nullable=False),
        sa.Column('signer_name', sa.String(length=255), nullable=True),
        sa.Column('signer_email', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('signed', sa.Boolean(), nullable=False),
        sa.Column('signed_at', sa.DateTime(), nullable=True),
        sa.Column('otp_verified', sa.Boolean(), nullable=False),
        sa.Column('otp_verified_at', sa.DateTime(), nullable=True),
        sa.Column('active_token_id', sa.String(length=36), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['active_token_id'], ['action_tokens.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('deal_id', 'signer_role', name='uq_contract_signatures_deal_role'),
    )
    op.create_index('ix_contract_signatures_id', 'contract_signatures', ['id'])
    op.create_index('ix_contract_signatures_deal_id', 'contract_signatures', ['deal_id'])

    op.create_table(
        'audit_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('subject_id', sa.String(length=255), nullable=True),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('actor_hint', sa.String(length=255), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('detail', sa.JSON(), nullable=False),
        sa.Column('correlation_id', sa.String(length=255), nullable=True),
        sa.Column('event_hash', sa.String(length=64), nullable=False),
        sa.Column('previous_event_hash', sa.String(length=64), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_entries_id', 'audit_entries', ['id'])
    op.create_index('ix_audit_entries_subject_id', 'audit_entries', ['subject_id'])
    op.create_index('ix_audit_entries_event_type', 'audit_entries', ['event_type'])
    op.create_index('ix_audit_entries_timestamp', 'audit_entries', ['timestamp'])
    op.create_index('ix_audit_entries_correlation_id', 'audit_entries', ['correlation_id'])
    op.create_index('ix_audit_entries_event_hash', 'audit_entries', ['event_hash'])
    op.create_index('ix_audit_entries_previous_event_hash', 'audit_entries', ['previous_event_hash'])

    op.create_table(
        'internal_api_keys',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.String(length=255), nullable=False),
        sa.Column('label', sa.String(length=255), nullable=True),
        sa.Column('prefix', sa.String(length=16), nullable=False),
        sa.Column('digest', sa.String(length=64), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('last_used_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('digest'),
    )
    op.create_index('ix_internal_api_keys_id', 'internal_api_keys', ['id'])
    op.create_index('ix_internal_api_keys_actor_id', 'internal_api_keys', ['actor_id'])
    op.create_index('ix_internal_api_keys_prefix', 'internal_api_keys', ['prefix'])


def downgrade() -> None:
    op.drop_table('internal_api_keys')
    op.drop_table('audit_entries')
    op.drop_table('contract_signatures')
    op.drop_table('otp_challenges')
    op.drop_table('action_tokens')
