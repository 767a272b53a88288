from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.deps import ROLE_RANK, get_current_user, get_db, get_hub, require_project_role
from taskboard.derived import apply_task_derived
from taskboard.errors import ConflictError, NotFound, PermissionDenied, ValidationError
from taskboard.models import ProjectColumn, ProjectMember, Task, User
from taskboard.notifications.events import notify, push
from taskboard.ordering import close_gap, column_locks, column_size, lock_project_row, move_task, next_order
from taskboard.realtime.hub import EventBatch, EventHub
from taskboard.schemas import TaskCreateIn, TaskOut, TaskPositionIn, TaskUpdateIn

logger = logging.getLogger(__name__)

router = APIRouter(tags=["tasks"])


def _task_out(t: Task) -> TaskOut:
  return TaskOut(
    id=t.id,
    projectId=t.project_id,
    title=t.title,
    description=t.description or "",
    column=t.column,
    order=t.order,
    assignees=list(t.assignees or []),
    createdBy=t.created_by,
    dueDate=t.due_date,
    priority=t.priority,
    labels=list(t.labels or []),
    isCompleted=bool(t.is_completed),
    completedAt=t.completed_at,
    createdAt=t.created_at,
    updatedAt=t.updated_at,
  )


async def _column_names(db: AsyncSession, project_id: str) -> list[str]:
  res = await db.execute(
    select(ProjectColumn.name).where(ProjectColumn.project_id == project_id).order_by(ProjectColumn.position.asc())
  )
  return list(res.scalars().all())


async def _require_column(db: AsyncSession, project_id: str, column: str) -> str:
  name = column.strip()
  if name not in await _column_names(db, project_id):
    raise ValidationError(f"Column '{name}' does not exist in this project")
  return name


async def _validate_assignees(db: AsyncSession, project_id: str, assignees: list[str]) -> list[str]:
  ids = list(dict.fromkeys(a.strip() for a in assignees if a and a.strip()))
  if not ids:
    return []
  res = await db.execute(
    select(ProjectMember.user_id).where(ProjectMember.project_id == project_id, ProjectMember.user_id.in_(ids))
  )
  found = set(res.scalars().all())
  missing = [a for a in ids if a not in found]
  if missing:
    raise ValidationError("Assignees must be members of the project")
  return ids


async def _task_or_404(db: AsyncSession, task_id: str) -> Task:
  res = await db.execute(select(Task).where(Task.id == task_id))
  t = res.scalar_one_or_none()
  if not t:
    raise NotFound("Task not found")
  return t


async def _refresh_locked(db: AsyncSession, t: Task, locked_column: str) -> None:
  # Re-read under the column lock; another request may have moved or deleted the task meanwhile.
  res = await db.execute(select(Task).where(Task.id == t.id).execution_options(populate_existing=True))
  if res.scalar_one_or_none() is None:
    raise NotFound("Task not found")
  if t.column != locked_column:
    raise ConflictError("Task was moved by another request; refresh and retry")


async def _notify_assigned(db: AsyncSession, batch: EventBatch, t: Task, user_ids: list[str], actor: User) -> None:
  for uid in user_ids:
    if uid == actor.id:
      continue
    n = await notify(
      db,
      user_id=uid,
      type="task_assigned",
      title="Task assigned",
      message=f'{actor.username} assigned you to "{t.title}"',
      related_id=t.id,
      related_model="Task",
      meta={"projectId": t.project_id},
    )
    push(batch, n)


async def _notify_moved(db: AsyncSession, batch: EventBatch, t: Task, source_column: str, actor: User) -> None:
  if t.created_by == actor.id:
    return
  n = await notify(
    db,
    user_id=t.created_by,
    type="task_moved",
    title="Task moved",
    message=f'{actor.username} moved "{t.title}" from {source_column} to {t.column}',
    related_id=t.id,
    related_model="Task",
    meta={"projectId": t.project_id, "from": source_column, "to": t.column},
  )
  push(batch, n)


@router.post("/projects/{project_id}/tasks", response_model=TaskOut)
async def create_task(
  project_id: str,
  payload: TaskCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  hub: EventHub = Depends(get_hub),
) -> TaskOut:
  p, m = await require_project_role(project_id, "member", user, db)
  if not p.allow_members_to_create_tasks and ROLE_RANK[m.role] < ROLE_RANK["project_manager"]:
    raise PermissionDenied("Members are not allowed to create tasks in this project")

  title = payload.title.strip()
  if not title:
    raise ValidationError("Task title is required")
  if payload.column is not None:
    column = await _require_column(db, p.id, payload.column)
  else:
    columns = await _column_names(db, p.id)
    if not columns:
      raise ValidationError("Project has no columns")
    column = columns[0]
  assignees = await _validate_assignees(db, p.id, payload.assignees)

  batch = EventBatch()
  async with column_locks.hold(p.id, column):
    await lock_project_row(db, p.id)
    t = Task(
      project_id=p.id,
      title=title,
      description=(payload.description or "").strip(),
      column=column,
      order=await next_order(db, p.id, column),
      assignees=assignees,
      created_by=user.id,
      due_date=payload.dueDate,
      priority=payload.priority,
      labels=[label.model_dump() for label in payload.labels],
    )
    apply_task_derived(t)
    db.add(t)
    await db.flush()
    await _notify_assigned(db, batch, t, assignees, user)
    await db.commit()

  logger.info("task created id=%s project=%s column=%s order=%s", t.id, p.id, t.column, t.order)
  out = _task_out(t)
  batch.to_project(p.id, "taskCreated", out)
  await batch.publish(hub)
  return out


@router.get("/projects/{project_id}/tasks", response_model=list[TaskOut])
async def list_tasks(
  project_id: str,
  column: str | None = None,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[TaskOut]:
  await require_project_role(project_id, "viewer", user, db)
  q = select(Task).where(Task.project_id == project_id)
  if column:
    q = q.where(Task.column == column)
  res = await db.execute(q)
  position = {name: idx for idx, name in enumerate(await _column_names(db, project_id))}
  tasks = sorted(res.scalars().all(), key=lambda t: (position.get(t.column, len(position)), t.order))
  return [_task_out(t) for t in tasks]


@router.get("/tasks/{task_id}", response_model=TaskOut)
async def get_task(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  t = await _task_or_404(db, task_id)
  await require_project_role(t.project_id, "viewer", user, db)
  return _task_out(t)


@router.patch("/tasks/{task_id}", response_model=TaskOut)
async def update_task(
  task_id: str,
  payload: TaskUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  hub: EventHub = Depends(get_hub),
) -> TaskOut:
  t = await _task_or_404(db, task_id)
  await require_project_role(t.project_id, "member", user, db)
  fields_set = payload.model_fields_set

  target_column: str | None = None
  if "column" in fields_set and payload.column is not None:
    target_column = await _require_column(db, t.project_id, payload.column)
    if target_column == t.column:
      target_column = None
  new_assignees: list[str] | None = None
  if "assignees" in fields_set and payload.assignees is not None:
    new_assignees = await _validate_assignees(db, t.project_id, payload.assignees)

  batch = EventBatch()
  source_column = t.column
  lock_columns = (source_column, target_column) if target_column else ()
  async with column_locks.hold(t.project_id, *lock_columns):
    if target_column:
      await lock_project_row(db, t.project_id)
      await _refresh_locked(db, t, source_column)
      # A column change through the plain update lands at the tail.
      await move_task(db, t, target_column, await column_size(db, t.project_id, target_column))

    if "title" in fields_set and payload.title is not None:
      title = payload.title.strip()
      if not title:
        raise ValidationError("Task title is required")
      t.title = title
    if "description" in fields_set:
      t.description = (payload.description or "").strip()
    if "priority" in fields_set and payload.priority is not None:
      t.priority = payload.priority
    if "dueDate" in fields_set:
      t.due_date = payload.dueDate
    if "labels" in fields_set and payload.labels is not None:
      t.labels = [label.model_dump() for label in payload.labels]

    added: list[str] = []
    if new_assignees is not None:
      previous = set(t.assignees or [])
      added = [a for a in new_assignees if a not in previous]
      t.assignees = new_assignees

    apply_task_derived(t)
    await _notify_assigned(db, batch, t, added, user)
    if target_column:
      await _notify_moved(db, batch, t, source_column, user)
    await db.commit()

  out = _task_out(t)
  batch.to_project(t.project_id, "taskUpdated", out)
  if target_column:
    batch.to_project(
      t.project_id, "taskMoved", {"taskId": t.id, "column": t.column, "order": t.order, "sourceColumn": source_column}
    )
  await batch.publish(hub)
  return out


@router.patch("/tasks/{task_id}/position", response_model=TaskOut)
async def move_task_position(
  task_id: str,
  payload: TaskPositionIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  hub: EventHub = Depends(get_hub),
) -> TaskOut:
  t = await _task_or_404(db, task_id)
  await require_project_role(t.project_id, "member", user, db)
  target_column = await _require_column(db, t.project_id, payload.column)

  batch = EventBatch()
  source_column = t.column
  async with column_locks.hold(t.project_id, source_column, target_column):
    await lock_project_row(db, t.project_id)
    await _refresh_locked(db, t, source_column)
    if payload.sourceColumn is not None and payload.sourceColumn != t.column:
      raise ConflictError("Task is no longer in the source column; refresh and retry")

    current = t.order
    final = await move_task(db, t, target_column, payload.order)
    if target_column == source_column and final == current:
      return _task_out(t)

    apply_task_derived(t)
    if target_column != source_column:
      await _notify_moved(db, batch, t, source_column, user)
    await db.commit()

  logger.info(
    "task moved id=%s %s[%s] -> %s[%s]", t.id, source_column, current, t.column, t.order
  )
  batch.to_project(
    t.project_id, "taskMoved", {"taskId": t.id, "column": t.column, "order": t.order, "sourceColumn": source_column}
  )
  await batch.publish(hub)
  return _task_out(t)


@router.delete("/tasks/{task_id}")
async def delete_task(
  task_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  hub: EventHub = Depends(get_hub),
) -> dict:
  t = await _task_or_404(db, task_id)
  await require_project_role(t.project_id, "member", user, db)

  project_id, column = t.project_id, t.column
  async with column_locks.hold(project_id, column):
    await lock_project_row(db, project_id)
    await _refresh_locked(db, t, column)
    order = t.order
    await db.delete(t)
    await db.flush()
    await close_gap(db, project_id, column, order)
    await db.commit()

  logger.info("task deleted id=%s project=%s column=%s order=%s", task_id, project_id, column, order)
  await hub.publish_to_project(project_id, "taskDeleted", {"taskId": task_id, "column": column})
  return {"ok": True}
