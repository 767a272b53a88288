from __future__ import annotations

from datetime import datetime, timezone

from fastapi import Cookie, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.db import SessionLocal
from taskboard.errors import NotFound, PermissionDenied
from taskboard.models import Project, ProjectMember, Session as DbSession, User
from taskboard.realtime.hub import EventHub
from taskboard.security import SESSION_COOKIE_NAME

# viewer < member < project_manager < admin
ROLE_RANK = {"viewer": 0, "member": 1, "project_manager": 2, "admin": 3}


async def get_db() -> AsyncSession:
  async with SessionLocal() as session:
    yield session


def get_hub(request: Request) -> EventHub:
  return request.app.state.hub


def bearer_token(request: Request) -> str | None:
  auth = request.headers.get("authorization")
  if auth and auth.lower().startswith("bearer "):
    return auth.split(" ", 1)[1].strip() or None
  return None


async def user_for_token(db: AsyncSession, token: str | None) -> User | None:
  """Resolve a session credential to its user, or None when missing, unknown or expired."""
  if not token:
    return None
  res = await db.execute(select(DbSession).where(DbSession.id == token))
  s = res.scalar_one_or_none()
  if not s or s.expires_at < datetime.now(timezone.utc):
    return None
  ures = await db.execute(select(User).where(User.id == s.user_id))
  return ures.scalar_one_or_none()


async def get_current_user(
  request: Request,
  db: AsyncSession = Depends(get_db),
  session_id: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> User:
  token = bearer_token(request) or session_id
  if not token:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
  u = await user_for_token(db, token)
  if not u:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired session")
  return u


async def get_project_or_404(project_id: str, db: AsyncSession) -> Project:
  res = await db.execute(select(Project).where(Project.id == project_id, Project.is_active.is_(True)))
  p = res.scalar_one_or_none()
  if not p:
    raise NotFound("Project not found")
  return p


async def require_project_role(
  project_id: str,
  min_role: str,
  user: User,
  db: AsyncSession,
) -> tuple[Project, ProjectMember]:
  p = await get_project_or_404(project_id, db)
  res = await db.execute(
    select(ProjectMember).where(ProjectMember.project_id == project_id, ProjectMember.user_id == user.id)
  )
  m = res.scalar_one_or_none()
  if not m:
    raise PermissionDenied("You are not a member of this project")
  if ROLE_RANK.get(m.role, -1) < ROLE_RANK[min_role]:
    raise PermissionDenied("Insufficient permissions")
  return p, m
