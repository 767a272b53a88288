from __future__ import annotations

import math
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.deps import get_current_user, get_db
from taskboard.errors import NotFound
from taskboard.models import Notification, User
from taskboard.notifications.events import notification_out
from taskboard.schemas import NotificationListOut, NotificationOut, PaginationOut

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _live(user_id: str):
  return (Notification.user_id == user_id, Notification.expires_at > datetime.now(timezone.utc))


async def _unread_count(db: AsyncSession, user_id: str) -> int:
  res = await db.execute(
    select(func.count()).select_from(Notification).where(*_live(user_id), Notification.read.is_(False))
  )
  return int(res.scalar_one() or 0)


async def _owned_or_404(db: AsyncSession, notification_id: str, user_id: str) -> Notification:
  res = await db.execute(select(Notification).where(Notification.id == notification_id, *_live(user_id)))
  n = res.scalar_one_or_none()
  if not n:
    raise NotFound("Notification not found")
  return n


@router.get("", response_model=NotificationListOut)
async def list_notifications(
  page: int = Query(default=1, ge=1),
  limit: int = Query(default=20, ge=1, le=100),
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> NotificationListOut:
  total_res = await db.execute(select(func.count()).select_from(Notification).where(*_live(user.id)))
  total = int(total_res.scalar_one() or 0)
  res = await db.execute(
    select(Notification)
    .where(*_live(user.id))
    .order_by(Notification.created_at.desc())
    .offset((page - 1) * limit)
    .limit(limit)
  )
  return NotificationListOut(
    notifications=[notification_out(n) for n in res.scalars().all()],
    unreadCount=await _unread_count(db, user.id),
    pagination=PaginationOut(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
  )


@router.get("/unread-count")
async def unread_count(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  return {"count": await _unread_count(db, user.id)}


@router.patch("/read-all")
async def mark_all_read(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  res = await db.execute(
    update(Notification).where(*_live(user.id), Notification.read.is_(False)).values(read=True)
  )
  await db.commit()
  return {"ok": True, "updated": int(res.rowcount or 0)}


@router.patch("/{notification_id}/read", response_model=NotificationOut)
async def mark_read(notification_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> NotificationOut:
  n = await _owned_or_404(db, notification_id, user.id)
  n.read = True
  await db.commit()
  return notification_out(n)


@router.delete("/{notification_id}")
async def delete_notification(notification_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  n = await _owned_or_404(db, notification_id, user.id)
  await db.execute(delete(Notification).where(Notification.id == n.id))
  await db.commit()
  return {"ok": True}
