from __future__ import annotations

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage

from taskboard.config import settings

logger = logging.getLogger(__name__)

_pending: set[asyncio.Task] = set()


@dataclass(frozen=True)
class NotificationMessage:
  to: str
  subject: str
  body: str


def smtp_configured() -> bool:
  return bool((settings.smtp_host or "").strip() and (settings.smtp_from or "").strip())


async def send_email(msg: NotificationMessage) -> bool:
  if not smtp_configured():
    logger.warning("SMTP not configured; skipping email to %s", msg.to)
    return False

  host = str(settings.smtp_host).strip()
  from_addr = str(settings.smtp_from).strip()
  username = (settings.smtp_username or "").strip()
  password = (settings.smtp_password or "").strip()

  def _send_sync() -> None:
    m = EmailMessage()
    m["Subject"] = f"Taskboard: {msg.subject}"
    m["From"] = from_addr
    m["To"] = msg.to
    m.set_content(msg.body)
    with smtplib.SMTP(host=host, port=int(settings.smtp_port), timeout=15) as s:
      s.ehlo()
      if settings.smtp_starttls:
        s.starttls()
        s.ehlo()
      if username and password:
        s.login(username, password)
      s.send_message(m)

  await asyncio.to_thread(_send_sync)
  logger.info("email sent to %s: %s", msg.to, msg.subject)
  return True


async def _send_logged(msg: NotificationMessage) -> None:
  try:
    await send_email(msg)
  except Exception:
    logger.exception("email to %s failed", msg.to)


def send_email_in_background(msg: NotificationMessage) -> None:
  # Email must never block or fail the request that triggered it.
  task = asyncio.create_task(_send_logged(msg))
  _pending.add(task)
  task.add_done_callback(_pending.discard)
