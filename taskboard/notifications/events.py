from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.config import settings
from taskboard.derived import notification_expiry
from taskboard.models import Notification, ProjectMember
from taskboard.realtime.hub import EventBatch
from taskboard.schemas import NotificationOut


def _now() -> datetime:
  return datetime.now(timezone.utc)


def notification_out(n: Notification) -> NotificationOut:
  return NotificationOut(
    id=n.id,
    type=n.type,
    title=n.title,
    message=n.message,
    relatedId=n.related_id,
    relatedModel=n.related_model,
    read=bool(n.read),
    meta=dict(n.meta or {}),
    createdAt=n.created_at,
    expiresAt=n.expires_at,
  )


async def notify(
  db: AsyncSession,
  *,
  user_id: str,
  type: str,
  title: str,
  message: str,
  related_id: str | None = None,
  related_model: str | None = None,
  meta: dict[str, Any] | None = None,
) -> Notification:
  now = _now()
  n = Notification(
    user_id=user_id,
    type=type,
    title=title,
    message=message,
    related_id=related_id,
    related_model=related_model,
    read=False,
    meta=dict(meta or {}),
    created_at=now,
    expires_at=notification_expiry(now, settings.notification_ttl_days),
  )
  db.add(n)
  await db.flush()
  return n


async def notify_project_members(
  db: AsyncSession,
  *,
  project_id: str,
  exclude_user_id: str | None,
  type: str,
  title: str,
  message: str,
  related_id: str | None = None,
  related_model: str | None = None,
) -> list[Notification]:
  res = await db.execute(select(ProjectMember.user_id).where(ProjectMember.project_id == project_id))
  out: list[Notification] = []
  for uid in res.scalars().all():
    if exclude_user_id and uid == exclude_user_id:
      continue
    out.append(
      await notify(
        db,
        user_id=uid,
        type=type,
        title=title,
        message=message,
        related_id=related_id,
        related_model=related_model,
      )
    )
  return out


async def purge_expired(db: AsyncSession) -> int:
  res = await db.execute(delete(Notification).where(Notification.expires_at <= _now()))
  return int(res.rowcount or 0)


def push(batch: EventBatch, n: Notification) -> None:
  batch.to_user(n.user_id, "notification", notification_out(n))
