from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import delete

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{ROOT / 'taskboard_test.db'}")

from taskboard.config import settings
from taskboard.db import SessionLocal, engine
from taskboard.main import app
from taskboard.models import Base, Notification, Project, ProjectColumn, ProjectMember, Session, Task, User

PASSWORD = "secret123"


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


async def _reset_db() -> None:
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.create_all)
  async with SessionLocal() as db:
    await db.execute(delete(Notification))
    await db.execute(delete(Task))
    await db.execute(delete(ProjectColumn))
    await db.execute(delete(ProjectMember))
    await db.execute(delete(Project))
    await db.execute(delete(Session))
    await db.execute(delete(User))
    await db.commit()
  await engine.dispose()


@pytest.fixture(autouse=True)
async def _clean_between_tests() -> None:
  if not settings.is_test_database():
    raise RuntimeError(
      "Refusing to run destructive tests against non-test DB. "
      "Set DATABASE_URL to a *_test database (e.g. taskboard_test)."
    )
  await _reset_db()
  yield
  await _reset_db()


@pytest.fixture
async def client() -> AsyncClient:
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c


async def register(client: AsyncClient, username: str, *, role: str = "member") -> dict:
  res = await client.post(
    "/auth/register",
    json={"username": username, "email": f"{username}@example.com", "password": PASSWORD, "role": role},
  )
  assert res.status_code == 200, res.text
  return res.json()["user"]


async def login(client: AsyncClient, username: str) -> dict:
  res = await client.post("/auth/login", json={"email": f"{username}@example.com", "password": PASSWORD})
  assert res.status_code == 200, res.text
  cookie = res.headers.get("set-cookie")
  assert cookie and "tb_session=" in cookie
  return res.json()


async def create_project(client: AsyncClient, name: str = "Board", **extra) -> dict:
  res = await client.post("/projects", json={"name": name, **extra})
  assert res.status_code == 200, res.text
  return res.json()


async def create_task(client: AsyncClient, project_id: str, title: str, **extra) -> dict:
  res = await client.post(f"/projects/{project_id}/tasks", json={"title": title, **extra})
  assert res.status_code == 200, res.text
  return res.json()


async def orders_by_column(client: AsyncClient, project_id: str) -> dict[str, list[tuple[str, int]]]:
  res = await client.get(f"/projects/{project_id}/tasks")
  assert res.status_code == 200, res.text
  out: dict[str, list[tuple[str, int]]] = {}
  for t in res.json():
    out.setdefault(t["column"], []).append((t["title"], t["order"]))
  return out
