"""
Dense per-column task ordering.

For every (project, column) the `order` values of its tasks are exactly
0..n-1. Each operation below shifts siblings with bulk UPDATEs inside the
caller's transaction; callers hold `column_locks` for every column they touch
until the transaction commits, so concurrent moves cannot interleave their
read-modify-write steps.
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from threading import Lock
from typing import AsyncIterator

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.errors import ValidationError
from taskboard.models import Project, Task


class ColumnLocks:
  def __init__(self) -> None:
    self._guard = Lock()
    self._locks: dict[tuple[str, str], asyncio.Lock] = {}

  def _lock_for(self, key: tuple[str, str]) -> asyncio.Lock:
    with self._guard:
      lock = self._locks.get(key)
      if lock is None:
        lock = self._locks[key] = asyncio.Lock()
      return lock

  @asynccontextmanager
  async def hold(self, project_id: str, *columns: str) -> AsyncIterator[None]:
    # Sorted acquisition keeps two-column moves deadlock free.
    keys = sorted({(project_id, c) for c in columns})
    async with AsyncExitStack() as stack:
      for key in keys:
        await stack.enter_async_context(self._lock_for(key))
      yield


column_locks = ColumnLocks()


async def lock_project_row(db: AsyncSession, project_id: str) -> None:
  # Cross-process serialization on PostgreSQL; SQLite drops FOR UPDATE.
  await db.execute(select(Project.id).where(Project.id == project_id).with_for_update())


async def column_size(db: AsyncSession, project_id: str, column: str) -> int:
  res = await db.execute(select(func.count()).select_from(Task).where(Task.project_id == project_id, Task.column == column))
  return int(res.scalar_one() or 0)


async def next_order(db: AsyncSession, project_id: str, column: str) -> int:
  res = await db.execute(select(func.max(Task.order)).where(Task.project_id == project_id, Task.column == column))
  max_order = res.scalar_one()
  return (max_order + 1) if max_order is not None else 0


async def _shift(db: AsyncSession, project_id: str, column: str, delta: int, *conditions) -> None:
  await db.execute(
    update(Task)
    .where(Task.project_id == project_id, Task.column == column, *conditions)
    .values(order=Task.order + delta)
  )


async def close_gap(db: AsyncSession, project_id: str, column: str, order: int) -> None:
  """Compact a column after the task at `order` left it."""
  await _shift(db, project_id, column, -1, Task.order > order)


async def move_task(db: AsyncSession, t: Task, target_column: str, target_order: int) -> int:
  """
  Move `t` to `target_order` in `target_column`, shifting siblings.

  Returns the order the task ended up with; indexes past the end of the
  column are clamped to the tail.
  """
  if target_order < 0:
    raise ValidationError("Order must be a non-negative integer")

  cur = t.order
  source_column = t.column

  if source_column == target_column:
    size = await column_size(db, t.project_id, target_column)
    dst = min(target_order, max(size - 1, 0))
    if dst == cur:
      return cur
    if dst > cur:
      await _shift(db, t.project_id, target_column, -1, Task.order > cur, Task.order <= dst)
    else:
      await _shift(db, t.project_id, target_column, 1, Task.order >= dst, Task.order < cur)
  else:
    size = await column_size(db, t.project_id, target_column)
    dst = min(target_order, size)
    await close_gap(db, t.project_id, source_column, cur)
    await _shift(db, t.project_id, target_column, 1, Task.order >= dst)

  t.column = target_column
  t.order = dst
  return dst

