from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from taskboard.db import SessionLocal
from taskboard.deps import require_project_role, user_for_token
from taskboard.errors import TaskboardError
from taskboard.models import User
from taskboard.realtime.hub import EventHub, project_channel
from taskboard.security import SESSION_COOKIE_NAME

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

# Application-defined close code (4000-4999) for a rejected credential.
CLOSE_UNAUTHORIZED = 4401


async def _send_error(websocket: WebSocket, message: str) -> None:
  await websocket.send_json({"event": "error", "data": {"message": message}})


async def _join_project(websocket: WebSocket, hub: EventHub, user: User, project_id: str) -> None:
  async with SessionLocal() as db:
    try:
      await require_project_role(project_id, "viewer", user, db)
    except TaskboardError as e:
      await _send_error(websocket, e.message)
      return
  hub.join(websocket, project_channel(project_id))
  await websocket.send_json({"event": "joinedProject", "data": {"projectId": project_id}})


async def _relay_typing(websocket: WebSocket, hub: EventHub, user: User, project_id: str, is_typing: Any) -> None:
  channel = project_channel(project_id)
  if channel not in hub.channels_of(websocket):
    await _send_error(websocket, "Join the project before sending typing events")
    return
  # Sender identity comes from the authenticated connection.
  await hub.publish(channel, "userTyping", {"userId": user.id, "isTyping": bool(is_typing)}, exclude=websocket)


async def _handle(websocket: WebSocket, hub: EventHub, user: User, msg: Any) -> None:
  if not isinstance(msg, dict):
    await _send_error(websocket, "Messages must be JSON objects")
    return
  event = msg.get("event")
  if event == "ping":
    await websocket.send_json({"event": "pong"})
    return

  project_id = msg.get("projectId")
  if event in ("joinProject", "leaveProject", "typing") and not (isinstance(project_id, str) and project_id):
    await _send_error(websocket, "projectId is required")
    return
  if event == "joinProject":
    await _join_project(websocket, hub, user, project_id)
  elif event == "leaveProject":
    hub.leave(websocket, project_channel(project_id))
    await websocket.send_json({"event": "leftProject", "data": {"projectId": project_id}})
  elif event == "typing":
    await _relay_typing(websocket, hub, user, project_id, msg.get("isTyping"))
  else:
    await _send_error(websocket, f"Unknown event: {event}")


@router.websocket("/ws")
async def events_socket(websocket: WebSocket, token: str | None = None) -> None:
  hub: EventHub = websocket.app.state.hub
  credential = token or websocket.cookies.get(SESSION_COOKIE_NAME)
  async with SessionLocal() as db:
    user = await user_for_token(db, credential)
  if not user:
    logger.warning("rejected realtime connection: missing or invalid credential")
    await websocket.close(code=CLOSE_UNAUTHORIZED)
    return

  await websocket.accept()
  hub.connect(websocket, user.id)
  logger.info("realtime connection opened user=%s", user.id)
  try:
    while True:
      raw = await websocket.receive_text()
      try:
        msg = json.loads(raw)
      except ValueError:
        await _send_error(websocket, "Invalid JSON")
        continue
      await _handle(websocket, hub, user, msg)
  except WebSocketDisconnect:
    pass
  finally:
    hub.disconnect(websocket)
    logger.info("realtime connection closed user=%s", user.id)
