"""Initial portal schema: users, lists, tags, searches, tokens, audit log

Revision ID: 20261019_000000
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

# revision identifiers, used by Alembic.
revision: str = '20261019_000000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

AUDIT_ACTIONS = (
    'REGISTER', 'LOGIN', 'LOGOUT', 'PASSWORD_CHANGE', 'CATALOG_LOGIN', 'ACCOUNT_DELETE',
    'HOLD_PLACE', 'HOLD_CANCEL', 'HOLD_UPDATE', 'OAUTH2_AUTHORIZE', 'WEBHOOK', 'TAG_DELETE',
    'MAINTENANCE',
)
TOKEN_TYPES = ('AUTH_CODE', 'ACCESS_TOKEN')


def table_exists(table_name: str) -> bool:
    """Check if a table exists in the database."""
    conn = op.get_bind()
    inspector = inspect(conn)
    return table_name in inspector.get_table_names()


def upgrade() -> None:
    if not table_exists('users'):
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
            sa.Column('username', sa.String(255), nullable=False),
            sa.Column('hashed_password', sa.String(255), nullable=True),
            sa.Column('firstname', sa.String(255), nullable=True),
            sa.Column('lastname', sa.String(255), nullable=True),
            sa.Column('email', sa.String(255), nullable=True),
            sa.Column('email_verified', sa.DateTime(timezone=True), nullable=True),
            sa.Column('cat_id', sa.String(255), nullable=True),
            sa.Column('cat_username', sa.String(255), nullable=True),
            sa.Column('cat_password_enc', sa.String(512), nullable=True),
            sa.Column('home_library', sa.String(100), nullable=True),
            sa.Column('verify_hash', sa.String(64), nullable=True),
            sa.Column('auth_method', sa.String(50), nullable=True),
            sa.Column('last_language', sa.String(30), nullable=True),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('is_superuser', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('token_version', sa.Integer(), nullable=True, server_default='0'),
            sa.Column('refresh_token_family', sa.String(64), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_users_username', 'users', ['username'], unique=True)
        op.create_index('ix_users_email', 'users', ['email'])
        op.create_index('ix_users_cat_id', 'users', ['cat_id'], unique=True)
        op.create_index('ix_users_verify_hash', 'users', ['verify_hash'])
        op.create_index('ix_users_refresh_token_family', 'users', ['refresh_token_family'])

    if not table_exists('resources'):
        op.create_table(
            'resources',
            sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
            sa.Column('record_id', sa.String(255), nullable=False),
            sa.Column('source', sa.String(50), nullable=False, server_default='Solr'),
            sa.Column('title', sa.String(255), nullable=False, server_default=''),
            sa.Column('author', sa.String(255), nullable=True),
            sa.Column('year', sa.Integer(), nullable=True),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('record_id', 'source', name='uq_resources_record_source')
        )
        op.create_index('ix_resources_record_id', 'resources', ['record_id'])

    if not table_exists('user_lists'):
        op.create_table(
            'user_lists',
            sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('title', sa.String(200), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('public', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_user_lists_user_id', 'user_lists', ['user_id'])

    if not table_exists('user_resources'):
        op.create_table(
            'user_resources',
            sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('resource_id', sa.Integer(), nullable=False),
            sa.Column('list_id', sa.Integer(), nullable=True),
            sa.Column('notes', sa.Text(), nullable=True),
            sa.Column('saved', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['resource_id'], ['resources.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['list_id'], ['user_lists.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_user_resources_user_id', 'user_resources', ['user_id'])
        op.create_index('ix_user_resources_resource_id', 'user_resources', ['resource_id'])
        op.create_index('ix_user_resources_list_id', 'user_resources', ['list_id'])

    if not table_exists('tags'):
        op.create_table(
            'tags',
            sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
            sa.Column('tag', sa.String(64), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_tags_tag', 'tags', ['tag'], unique=True)

    if not table_exists('resource_tags'):
        op.create_table(
            'resource_tags',
            sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
            sa.Column('resource_id', sa.Integer(), nullable=True),
            sa.Column('tag_id', sa.Integer(), nullable=False),
            sa.Column('list_id', sa.Integer(), nullable=True),
            sa.Column('user_id', sa.Integer(), nullable=True),
            sa.Column('posted', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(['resource_id'], ['resources.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['tag_id'], ['tags.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['list_id'], ['user_lists.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id')
        )
        for column in ('resource_id', 'tag_id', 'list_id', 'user_id'):
            op.create_index(f'ix_resource_tags_{column}', 'resource_tags', [column])

    if not table_exists('searches'):
        op.create_table(
            'searches',
            sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=True),
            sa.Column('saved', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('title', sa.String(255), nullable=True),
            sa.Column('search_params', sa.JSON(), nullable=False),
            sa.Column('result_count', sa.Integer(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_searches_user_id', 'searches', ['user_id'])
        op.create_index('ix_searches_created_at', 'searches', ['created_at'])

    if not table_exists('access_tokens'):
        op.create_table(
            'access_tokens',
            sa.Column('id', sa.String(255), nullable=False),
            sa.Column('type', sa.Enum(*TOKEN_TYPES, name='accesstokentype'), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=True),
            sa.Column('data', sa.JSON(), nullable=True),
            sa.Column('revoked', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id', 'type')
        )
        op.create_index('ix_access_tokens_user_id', 'access_tokens', ['user_id'])

    if not table_exists('audit_logs'):
        op.create_table(
            'audit_logs',
            sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=True),
            sa.Column('action', sa.Enum(*AUDIT_ACTIONS, name='auditaction'), nullable=False),
            sa.Column('resource_type', sa.String(100), nullable=True),
            sa.Column('resource_id', sa.String(255), nullable=True),
            sa.Column('ip_address', sa.String(50), nullable=True),
            sa.Column('user_agent', sa.String(500), nullable=True),
            sa.Column('endpoint', sa.String(255), nullable=True),
            sa.Column('method', sa.String(10), nullable=True),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('details', sa.JSON(), nullable=True),
            sa.Column('success', sa.String(10), nullable=False, server_default='success'),
            sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id')
        )


def downgrade() -> None:
    for table in (
        'audit_logs', 'access_tokens', 'searches', 'resource_tags', 'tags',
        'user_resources', 'user_lists', 'resources', 'users',
    ):
        if table_exists(table):
            op.drop_table(table)
    sa.Enum(name='auditaction').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='accesstokentype').drop(op.get_bind(), checkfirst=True)
