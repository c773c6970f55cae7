"""Card comments and overtime requests

Revision ID: c4d8e2f6a0b3
Revises: a1f3c5e7b9d2
Create Date: 2026-10-19 15:00:00.000000

- comments: discussion thread under a card
- overtime_requests: asks to keep working on a card past its due date;
  uq_overtime_single_pending keeps one PENDING request per user and card
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = 'c4d8e2f6a0b3'
down_revision = 'a1f3c5e7b9d2'
branch_labels = None
depends_on = None

NEW_NOTIFICATION_TYPES = (
    'COMMENT_ADDED', 'COMMENT_MENTION',
    'OVERTIME_REQUEST', 'OVERTIME_APPROVED', 'OVERTIME_REJECTED',
)

overtime_status = sa.Enum('PENDING', 'APPROVED', 'REJECTED', name='overtimestatus')


def upgrade() -> None:
    if op.get_bind().dialect.name == 'postgresql':
        # New enum labels cannot be used inside the transaction that adds them
        with op.get_context().autocommit_block():
            for value in NEW_NOTIFICATION_TYPES:
                op.execute(f"ALTER TYPE notificationtype ADD VALUE IF NOT EXISTS '{value}'")

    op.create_table(
        'comments',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('card_id', sa.String, sa.ForeignKey('cards.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_comments_card_id', 'comments', ['card_id'])
    op.create_index('ix_comments_user_id', 'comments', ['user_id'])

    op.create_table(
        'overtime_requests',
        sa.Column('id', sa.String, primary_key=True),
        sa.Column('card_id', sa.String, sa.ForeignKey('cards.id', ondelete='CASCADE'), nullable=False),
        sa.Column('requested_by', sa.String, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('approver_id', sa.String, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('reason', sa.Text, nullable=False),
        sa.Column('days_overdue', sa.Integer, nullable=False),
        sa.Column('status', overtime_status, nullable=False),
        sa.Column('approver_notes', sa.Text, nullable=True),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('responded_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_overtime_requests_card_id', 'overtime_requests', ['card_id'])
    op.create_index('ix_overtime_requests_requested_by', 'overtime_requests', ['requested_by'])
    op.create_index(
        'uq_overtime_single_pending', 'overtime_requests', ['card_id', 'requested_by'], unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
        sqlite_where=sa.text("status = 'PENDING'"),
    )


def downgrade() -> None:
    op.drop_table('overtime_requests')
    op.drop_table('comments')
    overtime_status.drop(op.get_bind(), checkfirst=True)
    # PostgreSQL cannot drop enum labels; the extra notificationtype values stay
