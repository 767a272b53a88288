from __future__ import annotations

import asyncio

import pytest

from taskboard import main


@pytest.mark.anyio
async def test_shutdown_cancels_purge_loop() -> None:
  task = asyncio.create_task(main._notification_purge_loop())
  main._purge_loop_task = task
  await asyncio.sleep(0)

  await main._shutdown()
  assert task.cancelled()
  assert main._purge_loop_task is None


@pytest.mark.anyio
async def test_shutdown_without_purge_loop_is_noop() -> None:
  main._purge_loop_task = None
  await main._shutdown()
  assert main._purge_loop_task is None
