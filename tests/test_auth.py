from __future__ import annotations

import pytest
from httpx import AsyncClient

from conftest import PASSWORD, login, register


@pytest.mark.anyio
async def test_register_login_me_logout(client: AsyncClient) -> None:
  user = await register(client, "alice")
  assert user["username"] == "alice"
  assert user["role"] == "member"
  assert user["notificationsEnabled"] is True

  assert (await client.get("/auth/me")).status_code == 401

  body = await login(client, "alice")
  assert body["user"]["id"] == user["id"]
  me = await client.get("/auth/me")
  assert me.status_code == 200, me.text
  assert me.json()["email"] == "alice@example.com"

  out = await client.post("/auth/logout")
  assert out.status_code == 200, out.text
  client.cookies.clear()
  assert (await client.get("/auth/me", headers={"Authorization": f"Bearer {body['token']}"})).status_code == 401


@pytest.mark.anyio
async def test_bearer_token_from_register_works(client: AsyncClient) -> None:
  res = await client.post(
    "/auth/register", json={"username": "bob", "email": "Bob@Example.com", "password": PASSWORD}
  )
  assert res.status_code == 200, res.text
  token = res.json()["token"]
  me = await client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
  assert me.status_code == 200, me.text
  assert me.json()["email"] == "bob@example.com"


@pytest.mark.anyio
@pytest.mark.parametrize(
  "payload",
  [
    {"username": "bad name", "email": "x@example.com", "password": PASSWORD},
    {"username": "ok_name", "email": "x@example.com", "password": "lettersonly"},
    {"username": "ok_name", "email": "x@example.com", "password": "12345678"},
    {"username": "ok_name", "email": "x@example.com", "password": "a1"},
  ],
)
async def test_register_validation(client: AsyncClient, payload: dict) -> None:
  res = await client.post("/auth/register", json=payload)
  assert res.status_code == 422, res.text


@pytest.mark.anyio
async def test_duplicate_registration_conflicts(client: AsyncClient) -> None:
  await register(client, "alice")
  res = await client.post(
    "/auth/register", json={"username": "alice2", "email": "alice@example.com", "password": PASSWORD}
  )
  assert res.status_code == 409, res.text


@pytest.mark.anyio
async def test_wrong_password_is_unauthorized(client: AsyncClient) -> None:
  await register(client, "alice")
  res = await client.post("/auth/login", json={"email": "alice@example.com", "password": "wrong1234"})
  assert res.status_code == 401


@pytest.mark.anyio
async def test_update_profile(client: AsyncClient) -> None:
  await register(client, "alice")
  await register(client, "bob")
  await login(client, "alice")

  res = await client.patch("/auth/me", json={"notificationsEnabled": False, "avatarUrl": "https://img/a.png"})
  assert res.status_code == 200, res.text
  assert res.json()["notificationsEnabled"] is False
  assert res.json()["avatarUrl"] == "https://img/a.png"

  taken = await client.patch("/auth/me", json={"username": "bob"})
  assert taken.status_code == 409, taken.text


@pytest.mark.anyio
async def test_user_search_requires_elevated_global_role(client: AsyncClient) -> None:
  await register(client, "alice")
  await register(client, "boss", role="admin")

  await login(client, "alice")
  assert (await client.get("/auth/users")).status_code == 403

  await login(client, "boss")
  res = await client.get("/auth/users", params={"search": "ali"})
  assert res.status_code == 200, res.text
  assert [u["username"] for u in res.json()] == ["alice"]


@pytest.mark.anyio
async def test_change_password(client: AsyncClient) -> None:
  res = await client.post(
    "/auth/register",
    json={"username": "alice", "email": "alice@example.com", "password": PASSWORD},
  )
  other_device = {"Authorization": f"Bearer {res.json()['token']}"}
  await login(client, "alice")

  wrong = await client.put("/auth/change-password", json={"currentPassword": "nope1234", "newPassword": "fresh123"})
  assert wrong.status_code == 400, wrong.text
  weak = await client.put("/auth/change-password", json={"currentPassword": PASSWORD, "newPassword": "onlyletters"})
  assert weak.status_code == 422, weak.text

  ok = await client.put("/auth/change-password", json={"currentPassword": PASSWORD, "newPassword": "fresh123"})
  assert ok.status_code == 200, ok.text
  assert (await client.get("/auth/me")).status_code == 200
  assert (await client.get("/auth/me", headers=other_device)).status_code == 401

  old = await client.post("/auth/login", json={"email": "alice@example.com", "password": PASSWORD})
  assert old.status_code == 401
  new = await client.post("/auth/login", json={"email": "alice@example.com", "password": "fresh123"})
  assert new.status_code == 200, new.text


@pytest.mark.anyio
async def test_get_user_by_id(client: AsyncClient) -> None:
  bob = await register(client, "bob")
  await register(client, "alice")
  await login(client, "alice")

  res = await client.get(f"/auth/users/{bob['id']}")
  assert res.status_code == 200, res.text
  assert res.json()["username"] == "bob"
  assert (await client.get("/auth/users/missing")).status_code == 404


@pytest.mark.anyio
async def test_username_and_email_availability(client: AsyncClient) -> None:
  await register(client, "alice")

  assert (await client.get("/auth/check-username", params={"username": "alice"})).json() == {"available": False}
  assert (await client.get("/auth/check-username", params={"username": "carol"})).json() == {"available": True}
  assert (await client.get("/auth/check-email", params={"email": "ALICE@example.com"})).json() == {"available": False}
  assert (await client.get("/auth/check-email", params={"email": "carol@example.com"})).json() == {"available": True}
