from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from taskboard.config import settings
from taskboard.db import SessionLocal
from taskboard.errors import TaskboardError
from taskboard.notifications.events import purge_expired
from taskboard.realtime.hub import EventHub
from taskboard.realtime.socket import router as socket_router
from taskboard.routers.auth import router as auth_router
from taskboard.routers.notifications import router as notifications_router
from taskboard.routers.projects import router as projects_router
from taskboard.routers.tasks import router as tasks_router

logging.basicConfig(
  level=settings.log_level.upper(),
  format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Taskboard API", version="0.1.0")
app.state.hub = EventHub(send_timeout=settings.realtime_send_timeout_seconds)


@app.exception_handler(TaskboardError)
async def _taskboard_error_handler(_: Request, exc: TaskboardError) -> JSONResponse:
  return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(SQLAlchemyError)
async def _store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
  logger.exception("store error on %s %s", request.method, request.url.path, exc_info=exc)
  return JSONResponse(status_code=500, content={"detail": "Internal error"})


app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(projects_router)
app.include_router(tasks_router)
app.include_router(notifications_router)
app.include_router(socket_router)


@app.get("/health")
async def health() -> dict:
  return {"ok": True}


@app.get("/version")
async def version() -> dict:
  return {"version": settings.app_version}


_purge_loop_task: asyncio.Task | None = None


async def _notification_purge_loop() -> None:
  while True:
    await asyncio.sleep(max(60, int(settings.notification_purge_interval_seconds)))
    try:
      async with SessionLocal() as db:
        removed = await purge_expired(db)
        await db.commit()
      if removed:
        logger.info("purged %s expired notifications", removed)
    except SQLAlchemyError:
      logger.exception("notification purge failed")


@app.on_event("startup")
async def _startup() -> None:
  global _purge_loop_task
  if settings.is_test_database():
    return
  if _purge_loop_task is None:
    _purge_loop_task = asyncio.create_task(_notification_purge_loop())


@app.on_event("shutdown")
async def _shutdown() -> None:
  global _purge_loop_task
  if _purge_loop_task is None:
    return
  _purge_loop_task.cancel()
  try:
    await _purge_loop_task
  except asyncio.CancelledError:
    pass
  _purge_loop_task = None
