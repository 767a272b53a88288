from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.config import settings
from taskboard.deps import bearer_token, get_current_user, get_db
from taskboard.errors import ConflictError, NotFound, PermissionDenied, ValidationError
from taskboard.models import Session as DbSession, User, utcnow
from taskboard.schemas import AuthOut, AvailabilityOut, LoginIn, PasswordChangeIn, ProfileUpdateIn, RegisterIn, UserOut
from taskboard.security import SESSION_COOKIE_NAME, hash_password, new_session_expires_at, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def user_out(u: User) -> UserOut:
  return UserOut(
    id=u.id,
    username=u.username,
    email=u.email,
    role=u.role,
    avatarUrl=u.avatar_url,
    notificationsEnabled=bool(u.notifications_enabled),
  )


async def _new_session(db: AsyncSession, u: User) -> DbSession:
  s = DbSession(user_id=u.id, expires_at=new_session_expires_at())
  db.add(s)
  await db.flush()
  return s


@router.post("/register", response_model=AuthOut)
async def register(payload: RegisterIn, db: AsyncSession = Depends(get_db)) -> AuthOut:
  email = payload.email.strip().lower()
  exists = await db.execute(select(User.id).where(or_(User.email == email, User.username == payload.username)))
  if exists.scalars().first():
    raise ConflictError("User already exists with this email or username")

  u = User(
    username=payload.username,
    email=email,
    password_hash=hash_password(payload.password),
    role=payload.role,
  )
  db.add(u)
  await db.flush()
  s = await _new_session(db, u)
  await db.commit()
  logger.info("user registered id=%s username=%s", u.id, u.username)
  return AuthOut(user=user_out(u), token=s.id)


@router.post("/login", response_model=AuthOut)
async def login(payload: LoginIn, response: Response, db: AsyncSession = Depends(get_db)) -> AuthOut:
  email = (payload.email or "").strip().lower()
  res = await db.execute(select(User).where(User.email == email))
  u = res.scalar_one_or_none()
  if not u or not verify_password(payload.password, u.password_hash):
    logger.info("failed login for %s", email)
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

  s = await _new_session(db, u)
  await db.commit()
  response.set_cookie(
    key=SESSION_COOKIE_NAME,
    value=s.id,
    httponly=True,
    samesite="lax",
    secure=settings.cookie_secure,
    max_age=settings.session_ttl_days * 24 * 3600,
    path="/",
  )
  return AuthOut(user=user_out(u), token=s.id)


@router.post("/logout")
async def logout(
  request: Request,
  response: Response,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  token = bearer_token(request) or request.cookies.get(SESSION_COOKIE_NAME)
  await db.execute(delete(DbSession).where(DbSession.id == token, DbSession.user_id == user.id))
  response.delete_cookie(key=SESSION_COOKIE_NAME, path="/")
  await db.commit()
  return {"ok": True}


@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)) -> UserOut:
  return user_out(user)


@router.patch("/me", response_model=UserOut)
async def update_me(payload: ProfileUpdateIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> UserOut:
  fields_set = payload.model_fields_set
  if "username" in fields_set and payload.username is not None:
    username = payload.username.strip()
    taken = await db.execute(select(User.id).where(User.username == username, User.id != user.id))
    if taken.scalar_one_or_none():
      raise ConflictError("Username already taken")
    user.username = username
  if "avatarUrl" in fields_set:
    user.avatar_url = (payload.avatarUrl or "").strip() or None
  if "notificationsEnabled" in fields_set and payload.notificationsEnabled is not None:
    user.notifications_enabled = bool(payload.notificationsEnabled)
  user.updated_at = utcnow()
  await db.commit()
  return user_out(user)


@router.get("/users", response_model=list[UserOut])
async def search_users(
  search: str | None = None,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[UserOut]:
  if user.role not in ("admin", "project_manager"):
    raise PermissionDenied("Insufficient permissions")
  q = select(User).order_by(User.username.asc()).limit(50)
  term = (search or "").strip()
  if term:
    like = f"%{term.lower()}%"
    q = q.where(or_(User.username.ilike(like), User.email.ilike(like)))
  res = await db.execute(q)
  return [user_out(u) for u in res.scalars().all()]


@router.get("/users/{user_id}", response_model=UserOut)
async def get_user(user_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> UserOut:
  res = await db.execute(select(User).where(User.id == user_id))
  u = res.scalar_one_or_none()
  if not u:
    raise NotFound("User not found")
  return user_out(u)


@router.put("/change-password")
async def change_password(
  payload: PasswordChangeIn,
  request: Request,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  if not verify_password(payload.currentPassword, user.password_hash):
    raise ValidationError("Current password is incorrect")
  user.password_hash = hash_password(payload.newPassword)
  user.updated_at = utcnow()
  # Other devices have to sign in again with the new password.
  current = bearer_token(request) or request.cookies.get(SESSION_COOKIE_NAME)
  await db.execute(delete(DbSession).where(DbSession.user_id == user.id, DbSession.id != current))
  await db.commit()
  logger.info("password changed user=%s", user.id)
  return {"ok": True}


@router.get("/check-username", response_model=AvailabilityOut)
async def check_username(username: str, db: AsyncSession = Depends(get_db)) -> AvailabilityOut:
  res = await db.execute(select(User.id).where(User.username == username.strip()))
  return AvailabilityOut(available=res.scalar_one_or_none() is None)


@router.get("/check-email", response_model=AvailabilityOut)
async def check_email(email: str, db: AsyncSession = Depends(get_db)) -> AvailabilityOut:
  res = await db.execute(select(User.id).where(User.email == email.strip().lower()))
  return AvailabilityOut(available=res.scalar_one_or_none() is None)
