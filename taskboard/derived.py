from __future__ import annotations

from datetime import datetime, timedelta

from taskboard.models import Task, utcnow

DONE_COLUMN = "Done"


def completion_for(column: str, *, is_completed: bool, completed_at: datetime | None, now: datetime) -> tuple[bool, datetime | None]:
  """Completion flag and timestamp a task should carry once it sits in `column`."""
  if column == DONE_COLUMN:
    return True, (completed_at if is_completed and completed_at else now)
  return False, None


def apply_task_derived(t: Task, *, now: datetime | None = None) -> None:
  now = now or utcnow()
  t.is_completed, t.completed_at = completion_for(
    t.column, is_completed=bool(t.is_completed), completed_at=t.completed_at, now=now
  )
  t.updated_at = now


def notification_expiry(created_at: datetime, ttl_days: int) -> datetime:
  return created_at + timedelta(days=ttl_days)
