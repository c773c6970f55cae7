"""Initial Teamboard schema - users, projects, cards, assignment ledger, time tracking

Revision ID: a1f3c5e7b9d2
Revises:
Create Date: 2026-10-19 09:00:00.000000

Partial unique indexes guard the single-row rules:
- uq_card_single_active_assignment: one active ledger row per card
- uq_project_single_leader / uq_user_single_leadership: one LEADER each way
- uq_user_single_open_timer: one running timer per user
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = 'a1f3c5e7b9d2'
down_revision = None
branch_labels = None
depends_on = None

# Enum types store member names
global_role = sa.Enum('ADMIN', 'LEADER', 'MEMBER', name='globalrole')
project_role = sa.Enum('LEADER', 'DEVELOPER', 'DESIGNER', 'OBSERVER', name='projectrole')
card_status = sa.Enum('TODO', 'IN_PROGRESS', 'REVIEW', 'DONE', name='cardstatus')
card_priority = sa.Enum('LOW', 'MEDIUM', 'HIGH', 'CRITICAL', name='cardpriority')
subtask_status = sa.Enum('TODO', 'DONE', name='subtaskstatus')
notification_type = sa.Enum(
    'CARD_ASSIGNED', 'CARD_UPDATED', 'CARD_COMPLETED',
    'SUBTASK_COMPLETED', 'PROJECT_INVITE', 'TIME_LOG_REMINDER',
    name='notificationtype',
)


def upgrade() -> None:
    # ── Users & projects ─────────────────────────────────────────────────────
    op.create_table(
        'users',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('email', sa.String, nullable=False),
        sa.Column('name', sa.String, nullable=False),
        sa.Column('password_hash', sa.String, nullable=False),
        sa.Column('global_role', global_role, nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=True),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'projects',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('name', sa.String, nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('deadline', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('is_completed', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_projects_created_by', 'projects', ['created_by'])

    op.create_table(
        'project_members',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('project_id', sa.String, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('project_role', project_role, nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('project_id', 'user_id', name='uq_project_member'),
    )
    op.create_index('ix_project_members_project_id', 'project_members', ['project_id'])
    op.create_index('ix_project_members_user_id', 'project_members', ['user_id'])
    op.create_index(
        'uq_project_single_leader', 'project_members', ['project_id'], unique=True,
        postgresql_where=sa.text("project_role = 'LEADER'"),
        sqlite_where=sa.text("project_role = 'LEADER'"),
    )
    op.create_index(
        'uq_user_single_leadership', 'project_members', ['user_id'], unique=True,
        postgresql_where=sa.text("project_role = 'LEADER'"),
        sqlite_where=sa.text("project_role = 'LEADER'"),
    )

    # ── Boards & cards ───────────────────────────────────────────────────────
    op.create_table(
        'boards',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('project_id', sa.String, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String, nullable=False),
        sa.Column('position', sa.Integer, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_boards_project_id', 'boards', ['project_id'])

    op.create_table(
        'cards',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('board_id', sa.String, sa.ForeignKey('boards.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String, nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('status', card_status, nullable=False),
        sa.Column('priority', card_priority, nullable=False),
        sa.Column('position', sa.Integer, nullable=True),
        sa.Column('created_by', sa.String, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('assignee_id', sa.String, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_cards_board_id', 'cards', ['board_id'])
    op.create_index('ix_cards_assignee_id', 'cards', ['assignee_id'])
    op.create_index('ix_cards_assignee_status', 'cards', ['assignee_id', 'status'])

    # ── Assignment ledger ────────────────────────────────────────────────────
    op.create_table(
        'card_assignments',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('card_id', sa.String, sa.ForeignKey('cards.id', ondelete='CASCADE'), nullable=False),
        sa.Column('assigned_to', sa.String, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('assigned_by', sa.String, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column(
            'project_member_id', sa.String,
            sa.ForeignKey('project_members.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('reason', sa.Text, nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('unassigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('unassigned_by', sa.String, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
    )
    op.create_index('ix_card_assignments_card_id', 'card_assignments', ['card_id'])
    op.create_index('ix_card_assignments_assigned_to', 'card_assignments', ['assigned_to'])
    op.create_index('ix_card_assignments_assigned_at', 'card_assignments', ['assigned_at'])
    op.create_index(
        'uq_card_single_active_assignment', 'card_assignments', ['card_id'], unique=True,
        postgresql_where=sa.text('is_active'),
        sqlite_where=sa.text('is_active = 1'),
    )

    # ── Subtasks & time tracking ─────────────────────────────────────────────
    op.create_table(
        'subtasks',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('card_id', sa.String, sa.ForeignKey('cards.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String, nullable=False),
        sa.Column('status', subtask_status, nullable=False),
        sa.Column('assignee_id', sa.String, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('position', sa.Integer, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_subtasks_card_id', 'subtasks', ['card_id'])

    op.create_table(
        'time_logs',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('card_id', sa.String, sa.ForeignKey('cards.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_minutes', sa.Integer, nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
    )
    op.create_index('ix_time_logs_card_id', 'time_logs', ['card_id'])
    op.create_index('ix_time_logs_user_id', 'time_logs', ['user_id'])
    op.create_index(
        'uq_user_single_open_timer', 'time_logs', ['user_id'], unique=True,
        postgresql_where=sa.text('end_time IS NULL'),
        sqlite_where=sa.text('end_time IS NULL'),
    )

    # ── Notifications & settings ─────────────────────────────────────────────
    op.create_table(
        'notifications',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('user_id', sa.String, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', notification_type, nullable=False),
        sa.Column('title', sa.String, nullable=False),
        sa.Column('message', sa.Text, nullable=True),
        sa.Column('link', sa.String, nullable=True),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_user_unread', 'notifications', ['user_id', 'read_at'])

    op.create_table(
        'app_settings',
        sa.Column('key', sa.String, primary_key=True),
        sa.Column('value', sa.String, nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    for table in (
        'app_settings', 'notifications', 'time_logs', 'subtasks',
        'card_assignments', 'cards', 'boards', 'project_members', 'projects', 'users',
    ):
        op.drop_table(table)
    bind = op.get_bind()
    for enum in (notification_type, subtask_status, card_priority, card_status, project_role, global_role):
        enum.drop(bind, checkfirst=True)
