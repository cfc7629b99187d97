"""create coaching core tables

Revision ID: 20261001_create_coaching_core
Revises:
Create Date: 2026-10-01
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261001_create_coaching_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(25), primary_key=True, index=True),
        sa.Column('email', sa.String(255), nullable=True, unique=True, index=True),
        sa.Column('clerk_id', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('type', sa.String(20), nullable=False, server_default='user'),
        sa.Column('plan', sa.String(10), nullable=False, server_default='BASIC'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()')),
    )

    op.create_table(
        'coach_profiles',
        sa.Column('coach_id', sa.String(25), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('bio', sa.Text(), nullable=True),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('max_clients', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('active_clients', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('active_clients >= 0', name='chk_coach_active_clients_non_negative'),
        sa.CheckConstraint('active_clients <= max_clients', name='chk_coach_active_clients_capacity'),
    )
    op.create_index('ix_coach_profiles_listing', 'coach_profiles', ['is_available', 'active_clients', 'coach_id'])

    op.create_table(
        'coach_assignments',
        sa.Column('id', sa.String(25), primary_key=True, index=True),
        sa.Column('client_id', sa.String(25), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('coach_id', sa.String(25), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('status', sa.String(10), nullable=False, server_default='active'),
        sa.Column('assigned_at', sa.DateTime(), nullable=False),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('ended_reason', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('client_id != coach_id', name='chk_assignment_client_not_coach'),
        sa.CheckConstraint(
            "(status = 'active' AND ended_at IS NULL) OR (status = 'ended' AND ended_at IS NOT NULL)",
            name='chk_assignment_ended_at_with_status',
        ),
    )
    # At most one active coach per client
    op.create_index(
        'uq_coach_assignments_active_client',
        'coach_assignments',
        ['client_id'],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )
    op.create_index('ix_coach_assignments_coach_status', 'coach_assignments', ['coach_id', 'status'])

    op.create_table(
        'conversations',
        sa.Column('id', sa.String(25), primary_key=True, index=True),
        sa.Column('pair_key', sa.String(64), nullable=False, unique=True, index=True),
        sa.Column('client_id', sa.String(25), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('coach_id', sa.String(25), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('last_message_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('client_id != coach_id', name='chk_conversation_client_not_coach'),
    )

    op.create_table(
        'chat_attachments',
        sa.Column('storage_key', sa.String(64), primary_key=True),
        sa.Column('owner_id', sa.String(25), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('file_name', sa.String(255), nullable=False),
        sa.Column('mime', sa.String(127), nullable=False),
        sa.Column('bytes', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    )

    op.create_table(
        'chat_messages',
        sa.Column('id', sa.String(25), primary_key=True, index=True),
        sa.Column('conversation_id', sa.String(25), sa.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('pair_key', sa.String(64), nullable=False),
        sa.Column('sender_id', sa.String(25), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('role', sa.String(10), nullable=False),
        sa.Column('message_type', sa.String(10), nullable=False, server_default='text'),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('attachment_key', sa.String(64), sa.ForeignKey('chat_attachments.storage_key'), nullable=True, unique=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('read_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('body IS NOT NULL OR attachment_key IS NOT NULL', name='chk_chat_message_has_content'),
    )
    op.create_index('ix_chat_messages_pair_order', 'chat_messages', ['pair_key', 'created_at', 'id'])
    op.create_index('ix_chat_messages_pair_unread', 'chat_messages', ['pair_key', 'role', 'read_at'])

    op.create_table(
        'chatbot_messages',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('user_id', sa.String(25), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint("role IN ('user', 'assistant')", name='chk_chatbot_message_role'),
        sa.CheckConstraint('length(content) <= 8000', name='chk_chatbot_message_length'),
    )
    op.create_index('ix_chatbot_messages_user_created', 'chatbot_messages', ['user_id', 'created_at'])
    op.create_index('ix_chatbot_messages_user_expires', 'chatbot_messages', ['user_id', 'expires_at'])
    op.create_index('ix_chatbot_messages_expires', 'chatbot_messages', ['expires_at'])


def downgrade() -> None:
    op.drop_index('ix_chatbot_messages_expires', table_name='chatbot_messages')
    op.drop_index('ix_chatbot_messages_user_expires', table_name='chatbot_messages')
    op.drop_index('ix_chatbot_messages_user_created', table_name='chatbot_messages')
    op.drop_table('chatbot_messages')

    op.drop_index('ix_chat_messages_pair_unread', table_name='chat_messages')
    op.drop_index('ix_chat_messages_pair_order', table_name='chat_messages')
    op.drop_table('chat_messages')
    op.drop_table('chat_attachments')
    op.drop_table('conversations')

    op.drop_index('ix_coach_assignments_coach_status', table_name='coach_assignments')
    op.drop_index('uq_coach_assignments_active_client', table_name='coach_assignments')
    op.drop_table('coach_assignments')

    op.drop_index('ix_coach_profiles_listing', table_name='coach_profiles')
    op.drop_table('coach_profiles')
    op.drop_table('users')
