"""initial authz tables

Revision ID: 0001_initial_authz
Revises: 
Create Date: 2026-10-17
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial_authz'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('facilities',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(length=128), nullable=False, unique=True),
        sa.Column('email', sa.String(length=128), nullable=True, unique=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('user_type', sa.String(length=32), nullable=False, server_default='system_user'),
        sa.Column('role', sa.String(length=64), nullable=False),
        sa.Column('primary_facility_id', sa.Integer(), sa.ForeignKey('facilities.id'), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)
    op.create_index('ix_users_user_type', 'users', ['user_type'])
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table('user_facilities',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('facility_id', sa.Integer(), sa.ForeignKey('facilities.id', ondelete='CASCADE'), nullable=False),
        sa.UniqueConstraint('user_id', 'facility_id', name='uq_user_facility'),
    )

    op.create_table('user_permission_overrides',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('permission', sa.String(length=64), nullable=False),
        sa.Column('effect', sa.String(length=8), nullable=False),
        sa.UniqueConstraint('user_id', 'permission', name='uq_user_permission_override'),
    )

    op.create_table('auth_sessions',
        sa.Column('session_id', sa.String(length=64), primary_key=True),
        sa.Column('original_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('impersonated_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
    )
    op.create_index('ix_auth_sessions_original_user_id', 'auth_sessions', ['original_user_id'])
    op.create_index('ix_auth_sessions_impersonated_user_id', 'auth_sessions', ['impersonated_user_id'])
    op.create_index('ix_auth_sessions_expires_at', 'auth_sessions', ['expires_at'])

    op.create_table('restore_tokens',
        sa.Column('token_hash', sa.String(length=64), primary_key=True),
        sa.Column('session_id', sa.String(length=64), nullable=True),
        sa.Column('original_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('impersonated_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_restore_tokens_session_id', 'restore_tokens', ['session_id'])
    op.create_index('ix_restore_tokens_original_user_id', 'restore_tokens', ['original_user_id'])

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('seq', sa.BigInteger().with_variant(sa.Integer(), 'sqlite'), nullable=False),
        sa.Column('actor_effective_id', sa.Integer(), nullable=False),
        sa.Column('original_user_id', sa.Integer(), nullable=True),
        sa.Column('is_impersonated', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('impersonation_context', sa.JSON(), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('resource_type', sa.String(length=64), nullable=True),
        sa.Column('resource_id', sa.String(length=64), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_audit_logs_seq', 'audit_logs', ['seq'], unique=True)
    op.create_index('ix_audit_logs_actor_effective_id', 'audit_logs', ['actor_effective_id'])
    op.create_index('ix_audit_logs_original_user_id', 'audit_logs', ['original_user_id'])
    op.create_index('ix_audit_logs_is_impersonated', 'audit_logs', ['is_impersonated'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])

    op.create_table('shifts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('facility_id', sa.Integer(), sa.ForeignKey('facilities.id'), nullable=False),
        sa.Column('title', sa.String(length=120), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='open'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_shifts_facility_id', 'shifts', ['facility_id'])

    op.create_table('invoices',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('facility_id', sa.Integer(), sa.ForeignKey('facilities.id'), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='draft'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_invoices_facility_id', 'invoices', ['facility_id'])


def downgrade():
    for table in ('invoices', 'shifts', 'audit_logs', 'restore_tokens', 'auth_sessions',
                  'user_permission_overrides', 'user_facilities', 'users', 'facilities'):
        op.drop_table(table)
