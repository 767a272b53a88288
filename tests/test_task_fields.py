from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from conftest import create_project, login, register
from taskboard.derived import completion_for


@pytest.mark.anyio
async def test_create_then_list_round_trip(client: AsyncClient) -> None:
  owner = await register(client, "owner")
  await login(client, "owner")
  p = await create_project(client)

  payload = {
    "title": "Design review",
    "description": "Walk through the mockups",
    "column": "In Progress",
    "assignees": [owner["id"], owner["id"]],
    "dueDate": "2026-11-02",
    "priority": "high",
    "labels": [{"name": "design", "color": "#FF00FF"}, {"name": "ux"}],
  }
  res = await client.post(f"/projects/{p['id']}/tasks", json=payload)
  assert res.status_code == 200, res.text
  created = res.json()

  listed = (await client.get(f"/projects/{p['id']}/tasks")).json()
  assert listed == [created]

  assert created["title"] == payload["title"]
  assert created["description"] == payload["description"]
  assert created["column"] == "In Progress"
  assert created["assignees"] == [owner["id"]]
  assert created["dueDate"].startswith("2026-11-02T00:00:00")
  assert created["priority"] == "high"
  assert created["labels"] == [{"name": "design", "color": "#FF00FF"}, {"name": "ux", "color": "#CBD5E0"}]
  assert created["createdBy"] == owner["id"]
  assert created["isCompleted"] is False
  assert created["completedAt"] is None


@pytest.mark.anyio
async def test_list_filters_by_column_and_orders_by_board_position(client: AsyncClient) -> None:
  await register(client, "owner")
  await login(client, "owner")
  p = await create_project(client)
  for title, column in [("d", "Done"), ("a", "To Do"), ("p", "In Progress"), ("b", "To Do")]:
    assert (await client.post(f"/projects/{p['id']}/tasks", json={"title": title, "column": column})).status_code == 200

  all_tasks = (await client.get(f"/projects/{p['id']}/tasks")).json()
  assert [t["title"] for t in all_tasks] == ["a", "b", "p", "d"]

  todo = (await client.get(f"/projects/{p['id']}/tasks", params={"column": "To Do"})).json()
  assert [t["title"] for t in todo] == ["a", "b"]


@pytest.mark.anyio
async def test_done_column_drives_completion(client: AsyncClient) -> None:
  await register(client, "owner")
  await login(client, "owner")
  p = await create_project(client)
  t = (await client.post(f"/projects/{p['id']}/tasks", json={"title": "finish"})).json()

  done = (await client.patch(f"/tasks/{t['id']}/position", json={"column": "Done", "order": 0})).json()
  assert done["isCompleted"] is True
  assert done["completedAt"] is not None

  back = (await client.patch(f"/tasks/{t['id']}", json={"column": "To Do"})).json()
  assert back["isCompleted"] is False
  assert back["completedAt"] is None


@pytest.mark.anyio
async def test_missing_task_is_not_found(client: AsyncClient) -> None:
  await register(client, "owner")
  await login(client, "owner")
  assert (await client.get("/tasks/nope")).status_code == 404
  assert (await client.patch("/tasks/nope/position", json={"column": "Done", "order": 0})).status_code == 404
  assert (await client.delete("/tasks/nope")).status_code == 404


@pytest.mark.anyio
async def test_completion_for_keeps_first_completion_time() -> None:
  first = datetime(2026, 1, 1, tzinfo=timezone.utc)
  later = first + timedelta(days=3)

  assert completion_for("Done", is_completed=False, completed_at=None, now=first) == (True, first)
  assert completion_for("Done", is_completed=True, completed_at=first, now=later) == (True, first)
  assert completion_for("To Do", is_completed=True, completed_at=first, now=later) == (False, None)
