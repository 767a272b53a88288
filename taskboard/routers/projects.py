from __future__ import annotations

import logging
import math

from fastapi import APIRouter, Depends, Query
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.deps import get_current_user, get_db, get_hub, require_project_role
from taskboard.errors import ConflictError, NotFound, PermissionDenied, ValidationError
from taskboard.models import Project, ProjectColumn, ProjectMember, Task, User, utcnow
from taskboard.notifications.events import notify, notify_project_members, push
from taskboard.notifications.mailer import NotificationMessage, send_email_in_background
from taskboard.realtime.hub import EventBatch, EventHub, project_channel
from taskboard.schemas import (
  ColumnIn,
  ColumnOut,
  MemberAddIn,
  MemberOut,
  MemberRoleIn,
  PaginationOut,
  ProjectCreateIn,
  ProjectListOut,
  ProjectOut,
  ProjectSettings,
  ProjectUpdateIn,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])

DEFAULT_COLUMNS = [
  ("To Do", "#CBD5E0"),
  ("In Progress", "#4299E1"),
  ("Done", "#48BB78"),
]


async def _columns(db: AsyncSession, project_id: str) -> list[ProjectColumn]:
  res = await db.execute(
    select(ProjectColumn).where(ProjectColumn.project_id == project_id).order_by(ProjectColumn.position.asc())
  )
  return list(res.scalars().all())


async def _members(db: AsyncSession, project_id: str) -> list[MemberOut]:
  res = await db.execute(
    select(ProjectMember, User)
    .join(User, User.id == ProjectMember.user_id)
    .where(ProjectMember.project_id == project_id)
    .order_by(ProjectMember.joined_at.asc())
  )
  return [
    MemberOut(userId=u.id, username=u.username, email=u.email, role=m.role, joinedAt=m.joined_at)
    for m, u in res.all()
  ]


async def project_out(db: AsyncSession, p: Project) -> ProjectOut:
  cols = await _columns(db, p.id)
  return ProjectOut(
    id=p.id,
    name=p.name,
    description=p.description or "",
    createdBy=p.created_by,
    columns=[ColumnOut(name=c.name, color=c.color, order=c.position) for c in cols],
    settings=ProjectSettings(
      allowMembersToCreateTasks=bool(p.allow_members_to_create_tasks),
      allowMembersToInvite=bool(p.allow_members_to_invite),
    ),
    members=await _members(db, p.id),
    isActive=bool(p.is_active),
    createdAt=p.created_at,
    updatedAt=p.updated_at,
  )


def _clean_columns(columns: list[ColumnIn]) -> list[tuple[str, str]]:
  out: list[tuple[str, str]] = []
  seen: set[str] = set()
  for c in columns:
    name = c.name.strip()
    if not name:
      raise ValidationError("Column name is required")
    if name in seen:
      raise ValidationError(f"Duplicate column name: {name}")
    seen.add(name)
    out.append((name, c.color))
  return out


async def _admin_count(db: AsyncSession, project_id: str) -> int:
  res = await db.execute(
    select(func.count()).select_from(ProjectMember).where(ProjectMember.project_id == project_id, ProjectMember.role == "admin")
  )
  return int(res.scalar_one() or 0)


async def _member_or_404(db: AsyncSession, project_id: str, user_id: str) -> ProjectMember:
  res = await db.execute(
    select(ProjectMember).where(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
  )
  m = res.scalar_one_or_none()
  if not m:
    raise NotFound("Member not found")
  return m


@router.post("", response_model=ProjectOut)
async def create_project(payload: ProjectCreateIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> ProjectOut:
  name = payload.name.strip()
  if not name:
    raise ValidationError("Project name is required")
  columns = _clean_columns(payload.columns) if payload.columns else DEFAULT_COLUMNS
  s = payload.settings or ProjectSettings()

  p = Project(
    name=name,
    description=(payload.description or "").strip(),
    created_by=user.id,
    allow_members_to_create_tasks=s.allowMembersToCreateTasks,
    allow_members_to_invite=s.allowMembersToInvite,
  )
  db.add(p)
  await db.flush()
  db.add(ProjectMember(project_id=p.id, user_id=user.id, role="admin"))
  for idx, (col_name, color) in enumerate(columns):
    db.add(ProjectColumn(project_id=p.id, name=col_name, color=color, position=idx))
  await db.commit()
  logger.info("project created id=%s by=%s", p.id, user.id)
  return await project_out(db, p)


@router.get("", response_model=ProjectListOut)
async def list_projects(
  page: int = Query(default=1, ge=1),
  limit: int = Query(default=10, ge=1, le=100),
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ProjectListOut:
  base = (
    select(Project)
    .join(ProjectMember, ProjectMember.project_id == Project.id)
    .where(ProjectMember.user_id == user.id, Project.is_active.is_(True))
  )
  total_res = await db.execute(select(func.count()).select_from(base.subquery()))
  total = int(total_res.scalar_one() or 0)
  res = await db.execute(base.order_by(Project.updated_at.desc()).offset((page - 1) * limit).limit(limit))
  projects = [await project_out(db, p) for p in res.scalars().all()]
  return ProjectListOut(
    projects=projects,
    pagination=PaginationOut(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
  )


@router.get("/{project_id}", response_model=ProjectOut)
async def get_project(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> ProjectOut:
  p, _ = await require_project_role(project_id, "viewer", user, db)
  return await project_out(db, p)


@router.patch("/{project_id}", response_model=ProjectOut)
async def update_project(
  project_id: str,
  payload: ProjectUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  hub: EventHub = Depends(get_hub),
) -> ProjectOut:
  p, _ = await require_project_role(project_id, "project_manager", user, db)
  fields_set = payload.model_fields_set

  if "name" in fields_set and payload.name is not None:
    name = payload.name.strip()
    if not name:
      raise ValidationError("Project name is required")
    p.name = name
  if "description" in fields_set:
    p.description = (payload.description or "").strip()
  if "settings" in fields_set and payload.settings is not None:
    p.allow_members_to_create_tasks = payload.settings.allowMembersToCreateTasks
    p.allow_members_to_invite = payload.settings.allowMembersToInvite

  if "columns" in fields_set and payload.columns is not None:
    columns = _clean_columns(payload.columns)
    keep = {name for name, _ in columns}
    for c in await _columns(db, p.id):
      if c.name in keep:
        continue
      tres = await db.execute(
        select(func.count()).select_from(Task).where(Task.project_id == p.id, Task.column == c.name)
      )
      if (tres.scalar_one() or 0) > 0:
        raise ValidationError(f"Column '{c.name}' has tasks; move them first")
    await db.execute(delete(ProjectColumn).where(ProjectColumn.project_id == p.id))
    for idx, (col_name, color) in enumerate(columns):
      db.add(ProjectColumn(project_id=p.id, name=col_name, color=color, position=idx))

  p.updated_at = utcnow()
  batch = EventBatch()
  for n in await notify_project_members(
    db,
    project_id=p.id,
    exclude_user_id=user.id,
    type="project_updated",
    title="Project updated",
    message=f'{user.username} updated project "{p.name}"',
    related_id=p.id,
    related_model="Project",
  ):
    push(batch, n)
  await db.commit()

  out = await project_out(db, p)
  batch.to_project(p.id, "projectUpdated", out)
  await batch.publish(hub)
  return out


@router.delete("/{project_id}")
async def delete_project(
  project_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  hub: EventHub = Depends(get_hub),
) -> dict:
  p, _ = await require_project_role(project_id, "admin", user, db)
  p.is_active = False
  p.updated_at = utcnow()
  await db.commit()
  logger.info("project deleted id=%s by=%s", p.id, user.id)
  await hub.publish_to_project(p.id, "projectDeleted", {"projectId": p.id})
  hub.close_channel(project_channel(p.id))
  return {"ok": True}


@router.get("/{project_id}/members", response_model=list[MemberOut])
async def list_members(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[MemberOut]:
  await require_project_role(project_id, "viewer", user, db)
  return await _members(db, project_id)


@router.post("/{project_id}/members", response_model=MemberOut)
async def add_member(
  project_id: str,
  payload: MemberAddIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  hub: EventHub = Depends(get_hub),
) -> MemberOut:
  p, actor = await require_project_role(project_id, "project_manager", user, db)
  if payload.role == "admin" and actor.role != "admin":
    raise PermissionDenied("Only project admins can grant the admin role")

  ures = await db.execute(select(User).where(User.id == payload.userId))
  u = ures.scalar_one_or_none()
  if not u:
    raise NotFound("User not found")
  existing = await db.execute(
    select(ProjectMember.id).where(ProjectMember.project_id == p.id, ProjectMember.user_id == u.id)
  )
  if existing.scalar_one_or_none():
    raise ConflictError("User is already a member of this project")

  m = ProjectMember(project_id=p.id, user_id=u.id, role=payload.role, joined_at=utcnow())
  db.add(m)
  batch = EventBatch()
  n = await notify(
    db,
    user_id=u.id,
    type="project_invite",
    title="Added to project",
    message=f'{user.username} added you to project "{p.name}"',
    related_id=p.id,
    related_model="Project",
    meta={"role": payload.role},
  )
  push(batch, n)
  await db.commit()
  logger.info("member added project=%s user=%s role=%s", p.id, u.id, payload.role)

  out = MemberOut(userId=u.id, username=u.username, email=u.email, role=m.role, joinedAt=m.joined_at)
  batch.to_project(p.id, "memberAdded", {"projectId": p.id, "member": out})
  await batch.publish(hub)
  if u.notifications_enabled:
    send_email_in_background(
      NotificationMessage(
        to=u.email,
        subject=f"You were added to {p.name}",
        body=f'{user.username} added you to project "{p.name}" as {payload.role}.',
      )
    )
  return out


@router.patch("/{project_id}/members/{user_id}", response_model=MemberOut)
async def update_member_role(
  project_id: str,
  user_id: str,
  payload: MemberRoleIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  hub: EventHub = Depends(get_hub),
) -> MemberOut:
  p, actor = await require_project_role(project_id, "project_manager", user, db)
  m = await _member_or_404(db, p.id, user_id)
  if m.role == payload.role:
    return next(x for x in await _members(db, p.id) if x.userId == user_id)

  if m.role == "admin" and await _admin_count(db, p.id) <= 1:
    raise ConflictError("Cannot demote the only admin of the project")
  if "admin" in (m.role, payload.role) and actor.role != "admin":
    raise PermissionDenied("Only project admins can change admin roles")

  m.role = payload.role
  await db.commit()
  out = next(x for x in await _members(db, p.id) if x.userId == user_id)
  await hub.publish_to_project(p.id, "memberUpdated", {"projectId": p.id, "member": out})
  return out


@router.delete("/{project_id}/members/{user_id}")
async def remove_member(
  project_id: str,
  user_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  hub: EventHub = Depends(get_hub),
) -> dict:
  p, actor = await require_project_role(project_id, "project_manager", user, db)
  m = await _member_or_404(db, p.id, user_id)
  if m.role == "admin" and await _admin_count(db, p.id) <= 1:
    raise ConflictError("Cannot remove the only admin of the project")
  if m.role == "admin" and actor.role != "admin":
    raise PermissionDenied("Only project admins can remove an admin")

  await db.delete(m)
  now = utcnow()
  tres = await db.execute(select(Task).where(Task.project_id == p.id))
  for t in tres.scalars().all():
    if user_id in (t.assignees or []):
      t.assignees = [a for a in t.assignees if a != user_id]
      t.updated_at = now
  await db.commit()
  logger.info("member removed project=%s user=%s by=%s", p.id, user_id, user.id)

  batch = EventBatch()
  batch.to_project(p.id, "memberRemoved", {"projectId": p.id, "userId": user_id})
  batch.to_user(user_id, "memberRemoved", {"projectId": p.id, "userId": user_id})
  await batch.publish(hub)
  hub.remove_user_from_channel(user_id, project_channel(p.id))
  return {"ok": True}
