# models.py - Database models for the Teamboard API
# - UUID primary keys everywhere
# - Two-tier roles: global role on User, project role on ProjectMember
# - Append-only card assignment ledger
# - Partial unique indexes for the single-row rules:
#     one active assignment per card, one LEADER per project,
#     one LEADER project per user, one open timer per user,
#     one pending overtime request per user and card

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, Boolean, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint, text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def as_utc(dt: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


# ============================================================
# ENUMS
# ============================================================

class GlobalRole(str, PyEnum):
    ADMIN = "admin"
    LEADER = "leader"
    MEMBER = "member"


class ProjectRole(str, PyEnum):
    LEADER = "leader"
    DEVELOPER = "developer"
    DESIGNER = "designer"
    OBSERVER = "observer"


class CardStatus(str, PyEnum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    DONE = "done"


class CardPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SubtaskStatus(str, PyEnum):
    TODO = "todo"
    DONE = "done"


class NotificationType(str, PyEnum):
    CARD_ASSIGNED = "card_assigned"
    CARD_UPDATED = "card_updated"
    CARD_COMPLETED = "card_completed"
    SUBTASK_COMPLETED = "subtask_completed"
    PROJECT_INVITE = "project_invite"
    TIME_LOG_REMINDER = "time_log_reminder"
    COMMENT_ADDED = "comment_added"
    COMMENT_MENTION = "comment_mention"
    OVERTIME_REQUEST = "overtime_request"
    OVERTIME_APPROVED = "overtime_approved"
    OVERTIME_REJECTED = "overtime_rejected"


class OvertimeStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


DEFAULT_BOARDS = ["To Do", "In Progress", "Review", "Done"]


# ============================================================
# USERS & PROJECTS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    password_hash = Column(String, nullable=False)
    global_role = Column(SQLEnum(GlobalRole), nullable=False, default=GlobalRole.MEMBER)
    is_active = Column(Boolean, default=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    memberships = relationship("ProjectMember", back_populates="user", cascade="all, delete-orphan")


class Project(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    deadline = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    is_completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    members = relationship("ProjectMember", back_populates="project", cascade="all, delete-orphan")
    boards = relationship("Board", back_populates="project", cascade="all, delete-orphan",
                          order_by="Board.position")


class ProjectMember(Base):
    __tablename__ = "project_members"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    project_role = Column(SQLEnum(ProjectRole), nullable=False, default=ProjectRole.DEVELOPER)
    joined_at = Column(DateTime(timezone=True), default=utcnow)

    project = relationship("Project", back_populates="members")
    user = relationship("User", back_populates="memberships")

    # Enum columns persist the member name, hence 'LEADER'
    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_member"),
        Index(
            "uq_project_single_leader", "project_id", unique=True,
            postgresql_where=text("project_role = 'LEADER'"),
            sqlite_where=text("project_role = 'LEADER'"),
        ),
        Index(
            "uq_user_single_leadership", "user_id", unique=True,
            postgresql_where=text("project_role = 'LEADER'"),
            sqlite_where=text("project_role = 'LEADER'"),
        ),
    )


# ============================================================
# BOARDS & CARDS
# ============================================================

class Board(Base):
    __tablename__ = "boards"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    position = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    project = relationship("Project", back_populates="boards")


class Card(Base):
    """Task card. assignee_id mirrors the active CardAssignment row."""
    __tablename__ = "cards"

    id = Column(String, primary_key=True, default=new_uuid)
    board_id = Column(String, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(SQLEnum(CardStatus), nullable=False, default=CardStatus.TODO)
    priority = Column(SQLEnum(CardPriority), nullable=False, default=CardPriority.MEDIUM)
    position = Column(Integer, default=0)

    created_by = Column(String, ForeignKey("users.id"), nullable=False)
    assignee_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    due_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_cards_assignee_status", "assignee_id", "status"),
    )


class CardAssignment(Base):
    """Ledger row. Never deleted; unassignment only deactivates."""
    __tablename__ = "card_assignments"

    id = Column(String, primary_key=True, default=new_uuid)
    card_id = Column(String, ForeignKey("cards.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_to = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    project_member_id = Column(
        String, ForeignKey("project_members.id", ondelete="SET NULL"), nullable=True,
    )
    reason = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    assigned_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    unassigned_at = Column(DateTime(timezone=True), nullable=True)
    unassigned_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    __table_args__ = (
        Index(
            "uq_card_single_active_assignment", "card_id", unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("ix_card_assignments_assigned_at", "assigned_at"),
    )


class Subtask(Base):
    __tablename__ = "subtasks"

    id = Column(String, primary_key=True, default=new_uuid)
    card_id = Column(String, ForeignKey("cards.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    status = Column(SQLEnum(SubtaskStatus), nullable=False, default=SubtaskStatus.TODO)
    assignee_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    position = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class TimeLog(Base):
    __tablename__ = "time_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    card_id = Column(String, ForeignKey("cards.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    start_time = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        Index(
            "uq_user_single_open_timer", "user_id", unique=True,
            postgresql_where=text("end_time IS NULL"),
            sqlite_where=text("end_time IS NULL"),
        ),
    )


class Comment(Base):
    __tablename__ = "comments"

    id = Column(String, primary_key=True, default=new_uuid)
    card_id = Column(String, ForeignKey("cards.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    user = relationship("User")


class OvertimeRequest(Base):
    """Request to keep working on a card past its due date"""
    __tablename__ = "overtime_requests"

    id = Column(String, primary_key=True, default=new_uuid)
    card_id = Column(String, ForeignKey("cards.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_by = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    approver_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reason = Column(Text, nullable=False)
    days_overdue = Column(Integer, nullable=False)
    status = Column(SQLEnum(OvertimeStatus), nullable=False, default=OvertimeStatus.PENDING)
    approver_notes = Column(Text, nullable=True)
    requested_at = Column(DateTime(timezone=True), default=utcnow)
    responded_at = Column(DateTime(timezone=True), nullable=True)

    requester = relationship("User", foreign_keys=[requested_by])

    __table_args__ = (
        Index(
            "uq_overtime_single_pending", "card_id", "requested_by", unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )


# ============================================================
# NOTIFICATIONS & SETTINGS
# ============================================================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(SQLEnum(NotificationType), nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=True)
    link = Column(String, nullable=True)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_notifications_user_unread", "user_id", "read_at"),
    )


class AppSetting(Base):
    """Key/value overrides for runtime settings (work-hours limits)"""
    __tablename__ = "app_settings"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
