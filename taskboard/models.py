from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def _new_id() -> str:
  return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
  """Timezone-aware datetime that always round-trips as UTC, including on SQLite."""

  impl = DateTime(timezone=True)
  cache_ok = True

  def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
    if value is None:
      return None
    if value.tzinfo is None:
      return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

  def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
    if value is not None and value.tzinfo is None:
      return value.replace(tzinfo=timezone.utc)
    return value


class Base(DeclarativeBase):
  pass


class User(Base):
  __tablename__ = "users"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
  username: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  email: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  password_hash: Mapped[str] = mapped_column(String, nullable=False)
  role: Mapped[str] = mapped_column(String, nullable=False, default="member")
  avatar_url: Mapped[str | None] = mapped_column(String, nullable=True)
  notifications_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class Session(Base):
  __tablename__ = "sessions"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class Project(Base):
  __tablename__ = "projects"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
  name: Mapped[str] = mapped_column(String(100), nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  created_by: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  allow_members_to_create_tasks: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  allow_members_to_invite: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class ProjectMember(Base):
  __tablename__ = "project_members"
  __table_args__ = (UniqueConstraint("project_id", "user_id", name="ux_project_member_project_user"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
  project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  role: Mapped[str] = mapped_column(String, nullable=False, default="member")
  joined_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class ProjectColumn(Base):
  __tablename__ = "project_columns"
  __table_args__ = (UniqueConstraint("project_id", "name", name="ux_project_column_project_name"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
  project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False, index=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  color: Mapped[str] = mapped_column(String, nullable=False, default="#CBD5E0")
  position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Task(Base):
  __tablename__ = "tasks"
  __table_args__ = (Index("ix_tasks_project_column_order", "project_id", "column", "order"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
  project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False, index=True)
  title: Mapped[str] = mapped_column(String(200), nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  column: Mapped[str] = mapped_column(String, nullable=False)
  order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  assignees: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
  created_by: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
  due_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)
  priority: Mapped[str] = mapped_column(String, nullable=False, default="medium")
  labels: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
  is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class Notification(Base):
  __tablename__ = "notifications"
  __table_args__ = (
    Index("ix_notifications_user_read", "user_id", "read"),
    Index("ix_notifications_user_created", "user_id", "created_at"),
  )

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  type: Mapped[str] = mapped_column(String, nullable=False)
  title: Mapped[str] = mapped_column(String, nullable=False)
  message: Mapped[str] = mapped_column(Text, nullable=False)
  # Weak reference: no FK, the task or project may be gone before the row expires.
  related_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
  related_model: Mapped[str | None] = mapped_column(String, nullable=True)  # Task | Project
  read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  meta: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
