from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic import field_validator


Role = Literal["admin", "project_manager", "member", "viewer"]
Priority = Literal["low", "medium", "high", "critical"]
NotificationType = Literal[
  "task_assigned",
  "task_moved",
  "project_invite",
  "due_date",
  "mention",
  "task_updated",
  "project_updated",
]

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]+$")


def _check_password_strength(v: str) -> str:
  if not re.search(r"[A-Za-z]", v) or not re.search(r"\d", v):
    raise ValueError("Password must contain at least one letter and one number")
  return v


def _parse_dt_utc(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      dt = datetime.fromisoformat(s)
    else:
      dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
  else:
    return value

  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


class UserOut(BaseModel):
  id: str
  username: str
  email: str
  role: Role
  avatarUrl: str | None = None
  notificationsEnabled: bool = True


class RegisterIn(BaseModel):
  username: str = Field(min_length=3, max_length=50)
  email: str = Field(min_length=3, max_length=320)
  password: str = Field(min_length=6, max_length=200)
  role: Role = "member"

  @field_validator("username")
  @classmethod
  def _username_chars(cls, v: str) -> str:
    v = v.strip()
    if not _USERNAME_RE.fullmatch(v):
      raise ValueError("Username can only contain letters, numbers, and underscores")
    return v

  @field_validator("password")
  @classmethod
  def _password_strength(cls, v: str) -> str:
    return _check_password_strength(v)


class LoginIn(BaseModel):
  email: str
  password: str


class PasswordChangeIn(BaseModel):
  currentPassword: str = Field(min_length=1)
  newPassword: str = Field(min_length=6, max_length=200)

  @field_validator("newPassword")
  @classmethod
  def _password_strength(cls, v: str) -> str:
    return _check_password_strength(v)


class AvailabilityOut(BaseModel):
  available: bool


class AuthOut(BaseModel):
  user: UserOut
  token: str


class ProfileUpdateIn(BaseModel):
  username: str | None = Field(default=None, min_length=3, max_length=50)
  avatarUrl: str | None = None
  notificationsEnabled: bool | None = None


class PaginationOut(BaseModel):
  page: int
  limit: int
  total: int
  pages: int


class ColumnIn(BaseModel):
  name: str = Field(min_length=1, max_length=50)
  color: str = "#CBD5E0"


class ColumnOut(BaseModel):
  name: str
  color: str
  order: int


class ProjectSettings(BaseModel):
  allowMembersToCreateTasks: bool = True
  allowMembersToInvite: bool = False


class ProjectCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=100)
  description: str | None = Field(default=None, max_length=500)
  columns: list[ColumnIn] | None = Field(default=None, min_length=1)
  settings: ProjectSettings | None = None


class ProjectUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=100)
  description: str | None = Field(default=None, max_length=500)
  columns: list[ColumnIn] | None = Field(default=None, min_length=1)
  settings: ProjectSettings | None = None


class MemberOut(BaseModel):
  userId: str
  username: str
  email: str
  role: Role
  joinedAt: datetime


class ProjectOut(BaseModel):
  id: str
  name: str
  description: str
  createdBy: str
  columns: list[ColumnOut]
  settings: ProjectSettings
  members: list[MemberOut]
  isActive: bool
  createdAt: datetime
  updatedAt: datetime


class ProjectListOut(BaseModel):
  projects: list[ProjectOut]
  pagination: PaginationOut


class MemberAddIn(BaseModel):
  userId: str
  role: Role = "member"


class MemberRoleIn(BaseModel):
  role: Role


class Label(BaseModel):
  name: str = Field(min_length=1, max_length=50)
  color: str = "#CBD5E0"


class TaskCreateIn(BaseModel):
  title: str = Field(min_length=1, max_length=200)
  description: str | None = Field(default=None, max_length=1000)
  column: str | None = Field(default=None, min_length=1, max_length=50)
  assignees: list[str] = Field(default_factory=list)
  dueDate: datetime | None = None
  priority: Priority = "medium"
  labels: list[Label] = Field(default_factory=list)

  @field_validator("dueDate", mode="before")
  @classmethod
  def _due_date_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskUpdateIn(BaseModel):
  title: str | None = Field(default=None, min_length=1, max_length=200)
  description: str | None = Field(default=None, max_length=1000)
  column: str | None = Field(default=None, min_length=1, max_length=50)
  assignees: list[str] | None = None
  dueDate: datetime | None = None
  priority: Priority | None = None
  labels: list[Label] | None = None

  @field_validator("dueDate", mode="before")
  @classmethod
  def _due_date_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskPositionIn(BaseModel):
  column: str = Field(min_length=1, max_length=50)
  # Range is checked by the reordering engine so negatives surface as a 400.
  order: int
  sourceColumn: str | None = None


class TaskOut(BaseModel):
  id: str
  projectId: str
  title: str
  description: str
  column: str
  order: int
  assignees: list[str]
  createdBy: str
  dueDate: datetime | None = None
  priority: Priority
  labels: list[Label]
  isCompleted: bool
  completedAt: datetime | None = None
  createdAt: datetime
  updatedAt: datetime


class NotificationOut(BaseModel):
  id: str
  type: NotificationType
  title: str
  message: str
  relatedId: str | None = None
  relatedModel: Literal["Task", "Project"] | None = None
  read: bool
  meta: dict[str, Any] = Field(default_factory=dict)
  createdAt: datetime
  expiresAt: datetime


class NotificationListOut(BaseModel):
  notifications: list[NotificationOut]
  unreadCount: int
  pagination: PaginationOut
