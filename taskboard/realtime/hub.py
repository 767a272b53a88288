from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Protocol

from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)


class Connection(Protocol):
  async def send_json(self, data: Any) -> None: ...


def project_channel(project_id: str) -> str:
  return f"project:{project_id}"


def user_channel(user_id: str) -> str:
  return f"user:{user_id}"


class EventHub:
  """
  Room-based fan-out for live connections.

  Delivery is at-most-once and best effort: nothing is persisted or replayed,
  and publishing to a channel nobody listens on is a no-op. Clients that were
  offline reconcile by re-fetching over REST.
  """

  def __init__(self, send_timeout: float = 5.0) -> None:
    self.send_timeout = send_timeout
    self._lock = Lock()
    self._channels: dict[str, set[Connection]] = {}
    self._joined: dict[Connection, set[str]] = {}

  def connect(self, conn: Connection, user_id: str) -> None:
    self.join(conn, user_channel(user_id))

  def join(self, conn: Connection, channel: str) -> None:
    with self._lock:
      self._channels.setdefault(channel, set()).add(conn)
      self._joined.setdefault(conn, set()).add(channel)

  def leave(self, conn: Connection, channel: str) -> None:
    with self._lock:
      self._discard_locked(conn, channel)

  def disconnect(self, conn: Connection) -> None:
    with self._lock:
      for channel in list(self._joined.get(conn, ())):
        self._discard_locked(conn, channel)
      self._joined.pop(conn, None)

  def _discard_locked(self, conn: Connection, channel: str) -> None:
    members = self._channels.get(channel)
    if members is not None:
      members.discard(conn)
      if not members:
        del self._channels[channel]
    joined = self._joined.get(conn)
    if joined is not None:
      joined.discard(channel)

  def channels_of(self, conn: Connection) -> set[str]:
    with self._lock:
      return set(self._joined.get(conn, ()))

  def subscriber_count(self, channel: str) -> int:
    with self._lock:
      return len(self._channels.get(channel, ()))

  def remove_user_from_channel(self, user_id: str, channel: str) -> int:
    """Unsubscribe every live connection of `user_id` from `channel`."""
    with self._lock:
      conns = [c for c in self._channels.get(user_channel(user_id), ()) if channel in self._joined.get(c, ())]
      for conn in conns:
        self._discard_locked(conn, channel)
    return len(conns)

  def close_channel(self, channel: str) -> int:
    with self._lock:
      conns = list(self._channels.get(channel, ()))
      for conn in conns:
        self._discard_locked(conn, channel)
    return len(conns)

  async def _send(self, conn: Connection, message: dict, channel: str) -> bool:
    try:
      await asyncio.wait_for(conn.send_json(message), timeout=self.send_timeout)
      return True
    except Exception:
      logger.warning("dropping connection after failed send of %s on %s", message["event"], channel, exc_info=True)
      self.disconnect(conn)
      return False

  async def publish(self, channel: str, event: str, payload: Any, *, exclude: Connection | None = None) -> int:
    with self._lock:
      targets = [c for c in self._channels.get(channel, ()) if c is not exclude]
    if not targets:
      return 0
    message = {"event": event, "data": jsonable_encoder(payload)}
    # A slow subscriber costs at most one send_timeout and does not hold up the others.
    results = await asyncio.gather(*(self._send(conn, message, channel) for conn in targets))
    return sum(results)

  async def publish_to_project(self, project_id: str, event: str, payload: Any) -> int:
    return await self.publish(project_channel(project_id), event, payload)

  async def publish_to_user(self, user_id: str, event: str, payload: Any) -> int:
    return await self.publish(user_channel(user_id), event, payload)


@dataclass
class EventBatch:
  """Events collected during a request and published once the transaction commits."""

  items: list[tuple[str, str, Any]] = field(default_factory=list)

  def to_project(self, project_id: str, event: str, payload: Any) -> None:
    self.items.append((project_channel(project_id), event, payload))

  def to_user(self, user_id: str, event: str, payload: Any) -> None:
    self.items.append((user_channel(user_id), event, payload))

  async def publish(self, hub: EventHub) -> None:
    items, self.items = self.items, []
    for channel, event, payload in items:
      await hub.publish(channel, event, payload)
