# carelog/api/deps.py
from __future__ import annotations

from typing import Generator, Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session, joinedload

from carelog.core.rbac import actor_from_user
from carelog.db.session import SessionLocal
from carelog.models.role import Role
from carelog.models.user import User
from carelog.services.dose_slots import Actor
from carelog.utils.jwt import decode_token


# =========================================================
# DB (one session per request)
# =========================================================
def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# =========================================================
# AUTH HELPERS
# =========================================================
def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def get_user_from_token(raw_token: Optional[str], db: Session) -> User:
    if not raw_token:
        raise HTTPException(status_code=401, detail="Missing token")

    payload = decode_token(raw_token)
    if payload is None:
        raise HTTPException(status_code=401, detail="Invalid token")

    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    user: Optional[User] = (
        db.query(User)
        .options(joinedload(User.roles).joinedload(Role.permissions))
        .filter(User.email == email)
        .first()
    )
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="User inactive")
    return user


def current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> User:
    return get_user_from_token(_extract_bearer(authorization), db)


def current_actor(user: User = Depends(current_user)) -> Actor:
    return actor_from_user(user)
