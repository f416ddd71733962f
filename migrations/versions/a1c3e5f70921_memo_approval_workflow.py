"""memo_approval_workflow

Creates the memo approval tables:
  - users                  — actor directory (role drives workflow authorization)
  - memos                  — memo content + cached workflow status + version counter
  - memo_recipients        — actors a memo is addressed to
  - memo_attachments       — pointers into the attachment store
  - memo_workflow_history  — append-only transition log (source of truth for status)
  - audit_logs             — content-edit audit trail

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: a1c3e5f70921
Revises:
Create Date: 2026-10-18 09:12:44.518203
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1c3e5f70921'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    if 'users' not in existing:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('email', sa.String(length=200), nullable=False),
            sa.Column('full_name', sa.String(length=200), nullable=True),
            sa.Column('role', sa.String(length=20), nullable=False,
                      comment='STAFF | DESK_HEAD | LEO'),
            sa.Column('department', sa.String(length=100), nullable=True),
            sa.Column('status', sa.String(length=20), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('email'),
        )
        op.create_index('ix_users_role', 'users', ['role'])

    if 'memos' not in existing:
        op.create_table(
            'memos',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('memo_number', sa.String(length=40), nullable=False),
            sa.Column('title', sa.String(length=255), nullable=False),
            sa.Column('memo_type', sa.String(length=20), nullable=False,
                      comment='GENERAL | INSTRUCTIONAL | INFORMATIONAL'),
            sa.Column('department', sa.String(length=100), nullable=False),
            sa.Column('body', sa.Text(), nullable=False),
            sa.Column('priority_level', sa.String(length=20), nullable=False,
                      comment='NORMAL | URGENT | CONFIDENTIAL'),
            sa.Column('signature', sa.String(length=255), nullable=False),
            sa.Column('date_of_issue', sa.Date(), nullable=False),
            sa.Column('tags', sa.JSON(), nullable=True),
            sa.Column('status', sa.String(length=30), nullable=False),
            sa.Column('creator_id', sa.Integer(), nullable=True),
            sa.Column('creator_name', sa.String(length=200), nullable=True),
            sa.Column('desk_head_reviewer_id', sa.Integer(), nullable=True),
            sa.Column('desk_head_reviewer_name', sa.String(length=200), nullable=True),
            sa.Column('desk_head_comment', sa.Text(), nullable=True),
            sa.Column('desk_head_reviewed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('leo_reviewer_id', sa.Integer(), nullable=True),
            sa.Column('leo_reviewer_name', sa.String(length=200), nullable=True),
            sa.Column('leo_comment', sa.Text(), nullable=True),
            sa.Column('leo_reviewed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('submitted_to_desk_head_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('submitted_to_leo_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('history_count', sa.Integer(), nullable=False),
            sa.Column('version', sa.Integer(), nullable=False),
            sa.Column('archived_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(['creator_id'], ['users.id'], ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('memo_number'),
        )
        op.create_index('idx_memo_status', 'memos', ['status'])
        op.create_index('idx_memo_department', 'memos', ['department'])
        op.create_index('idx_memo_creator', 'memos', ['creator_id'])
        op.create_index('ix_memos_archived_at', 'memos', ['archived_at'])

    if 'memo_recipients' not in existing:
        op.create_table(
            'memo_recipients',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('memo_id', sa.String(length=36), nullable=False),
            sa.Column('actor_id', sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(['memo_id'], ['memos.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('memo_id', 'actor_id', name='uq_memo_recipient'),
        )
        op.create_index('idx_memo_recipient_actor', 'memo_recipients', ['actor_id'])

    if 'memo_attachments' not in existing:
        op.create_table(
            'memo_attachments',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('memo_id', sa.String(length=36), nullable=False),
            sa.Column('file_id', sa.String(length=255), nullable=False,
                      comment='Identifier returned by the store'),
            sa.Column('file_name', sa.String(length=255), nullable=False),
            sa.Column('mime_type', sa.String(length=100), nullable=True),
            sa.Column('file_size', sa.Integer(), nullable=True, comment='Size in bytes'),
            sa.Column('uploaded_at', sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(['memo_id'], ['memos.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('memo_id', 'file_name', name='uq_memo_attachment_name'),
        )
        op.create_index('ix_memo_attachments_memo_id', 'memo_attachments', ['memo_id'])

    if 'memo_workflow_history' not in existing:
        op.create_table(
            'memo_workflow_history',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('memo_id', sa.String(length=36), nullable=False),
            sa.Column('sequence', sa.Integer(), nullable=False),
            sa.Column('action', sa.String(length=30), nullable=False,
                      comment='create | submit_to_desk_head | approve | return_to_creator | reject'),
            sa.Column('actor_id', sa.Integer(), nullable=True),
            sa.Column('actor_name_snapshot', sa.String(length=200), nullable=True),
            sa.Column('actor_role', sa.String(length=20), nullable=True),
            sa.Column('comment', sa.Text(), nullable=True),
            sa.Column('from_status', sa.String(length=30), nullable=True),
            sa.Column('resulting_status', sa.String(length=30), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(['memo_id'], ['memos.id'], ondelete='RESTRICT'),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('memo_id', 'sequence', name='uq_memo_history_sequence'),
        )
        op.create_index('idx_memo_history_memo', 'memo_workflow_history', ['memo_id'])

    if 'audit_logs' not in existing:
        op.create_table(
            'audit_logs',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('entity_type', sa.String(length=30), nullable=False),
            sa.Column('entity_id', sa.String(length=36), nullable=False),
            sa.Column('action', sa.String(length=60), nullable=False,
                      comment='memo.update | memo.attachment_detached | memo.archive'),
            sa.Column('actor_user_id', sa.Integer(), nullable=True),
            sa.Column('diff_json', sa.Text(), nullable=True),
            sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('idx_audit_entity', 'audit_logs', ['entity_type', 'entity_id'])
        op.create_index('idx_audit_actor', 'audit_logs', ['actor_user_id'])
        op.create_index('idx_audit_ts', 'audit_logs', ['timestamp'])


def downgrade():
    op.drop_table('audit_logs')
    op.drop_table('memo_workflow_history')
    op.drop_table('memo_attachments')
    op.drop_table('memo_recipients')
    op.drop_table('memos')
    op.drop_table('users')
