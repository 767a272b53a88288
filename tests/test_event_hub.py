from __future__ import annotations

import asyncio
from typing import Any

import pytest

from taskboard.realtime.hub import EventBatch, EventHub, project_channel, user_channel


class FakeConnection:
  def __init__(self) -> None:
    self.sent: list[Any] = []

  async def send_json(self, data: Any) -> None:
    self.sent.append(data)


class BrokenConnection:
  async def send_json(self, data: Any) -> None:
    raise RuntimeError("socket closed")


@pytest.mark.anyio
async def test_project_events_reach_only_joined_connections() -> None:
  hub = EventHub()
  a, b = FakeConnection(), FakeConnection()
  hub.connect(a, "u1")
  hub.connect(b, "u2")

  assert await hub.publish_to_project("p1", "taskCreated", {"id": "t1"}) == 0
  assert a.sent == [] and b.sent == []

  hub.join(a, project_channel("p1"))
  assert await hub.publish_to_project("p1", "taskCreated", {"id": "t2"}) == 1
  assert a.sent == [{"event": "taskCreated", "data": {"id": "t2"}}]
  assert b.sent == []


@pytest.mark.anyio
async def test_user_events_reach_every_connection_of_that_user() -> None:
  hub = EventHub()
  phone, laptop, other = FakeConnection(), FakeConnection(), FakeConnection()
  hub.connect(phone, "u1")
  hub.connect(laptop, "u1")
  hub.connect(other, "u2")

  assert await hub.publish_to_user("u1", "notification", {"id": "n1"}) == 2
  assert phone.sent == laptop.sent == [{"event": "notification", "data": {"id": "n1"}}]
  assert other.sent == []


@pytest.mark.anyio
async def test_join_and_leave_are_idempotent() -> None:
  hub = EventHub()
  conn = FakeConnection()
  hub.connect(conn, "u1")
  channel = project_channel("p1")

  hub.join(conn, channel)
  once = hub.channels_of(conn)
  hub.join(conn, channel)
  assert hub.channels_of(conn) == once
  assert hub.subscriber_count(channel) == 1

  hub.leave(conn, project_channel("never-joined"))
  assert hub.channels_of(conn) == once

  hub.leave(conn, channel)
  hub.leave(conn, channel)
  assert hub.channels_of(conn) == {user_channel("u1")}
  assert hub.subscriber_count(channel) == 0


@pytest.mark.anyio
async def test_disconnect_unsubscribes_everywhere() -> None:
  hub = EventHub()
  conn = FakeConnection()
  hub.connect(conn, "u1")
  hub.join(conn, project_channel("p1"))
  hub.join(conn, project_channel("p2"))

  hub.disconnect(conn)
  assert hub.channels_of(conn) == set()
  assert hub.subscriber_count(user_channel("u1")) == 0
  assert hub.subscriber_count(project_channel("p1")) == 0


@pytest.mark.anyio
async def test_failed_send_drops_connection_but_others_receive() -> None:
  hub = EventHub()
  good, broken = FakeConnection(), BrokenConnection()
  for conn in (good, broken):
    hub.join(conn, project_channel("p1"))

  assert await hub.publish_to_project("p1", "taskDeleted", {"taskId": "t1", "column": "To Do"}) == 1
  assert good.sent == [{"event": "taskDeleted", "data": {"taskId": "t1", "column": "To Do"}}]
  assert hub.subscriber_count(project_channel("p1")) == 1
  assert hub.channels_of(broken) == set()


@pytest.mark.anyio
async def test_event_batch_publishes_in_order_once() -> None:
  hub = EventHub()
  conn = FakeConnection()
  hub.connect(conn, "u1")
  hub.join(conn, project_channel("p1"))

  batch = EventBatch()
  batch.to_user("u1", "notification", {"id": "n1"})
  batch.to_project("p1", "taskMoved", {"taskId": "t1"})
  assert conn.sent == []

  await batch.publish(hub)
  await batch.publish(hub)
  assert [m["event"] for m in conn.sent] == ["notification", "taskMoved"]


class SlowConnection:
  async def send_json(self, data: Any) -> None:
    await asyncio.sleep(10)


@pytest.mark.anyio
async def test_removing_user_from_channel_covers_all_their_connections() -> None:
  hub = EventHub()
  phone, laptop, teammate = FakeConnection(), FakeConnection(), FakeConnection()
  hub.connect(phone, "u1")
  hub.connect(laptop, "u1")
  hub.connect(teammate, "u2")
  channel = project_channel("p1")
  for conn in (phone, laptop, teammate):
    hub.join(conn, channel)

  assert hub.remove_user_from_channel("u1", channel) == 2
  await hub.publish_to_project("p1", "taskCreated", {"id": "t1"})
  assert phone.sent == [] and laptop.sent == []
  assert len(teammate.sent) == 1
  assert hub.channels_of(phone) == {user_channel("u1")}

  assert hub.close_channel(channel) == 1
  assert hub.subscriber_count(channel) == 0
  assert hub.channels_of(teammate) == {user_channel("u2")}


@pytest.mark.anyio
async def test_publish_can_skip_the_sender() -> None:
  hub = EventHub()
  sender, other = FakeConnection(), FakeConnection()
  for conn in (sender, other):
    hub.join(conn, project_channel("p1"))

  assert await hub.publish(project_channel("p1"), "userTyping", {"userId": "u1"}, exclude=sender) == 1
  assert sender.sent == []
  assert other.sent == [{"event": "userTyping", "data": {"userId": "u1"}}]


@pytest.mark.anyio
async def test_slow_subscriber_times_out_without_blocking_others() -> None:
  hub = EventHub(send_timeout=0.05)
  fast, slow = FakeConnection(), SlowConnection()
  for conn in (fast, slow):
    hub.join(conn, project_channel("p1"))

  delivered = await asyncio.wait_for(hub.publish_to_project("p1", "taskMoved", {"taskId": "t1"}), timeout=2)
  assert delivered == 1
  assert fast.sent == [{"event": "taskMoved", "data": {"taskId": "t1"}}]
  assert hub.subscriber_count(project_channel("p1")) == 1
