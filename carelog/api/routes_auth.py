# carelog/api/routes_auth.py
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from carelog.api.deps import get_db, current_user
from carelog.core.rbac import actor_from_user, iter_user_perm_codes
from carelog.core.security import verify_password
from carelog.models.user import User
from carelog.schemas.auth import LoginIn, MeOut, TokenOut
from carelog.utils.jwt import create_access_token
from carelog.utils.resp import ok

router = APIRouter()
log = logging.getLogger(__name__)


@router.post("/login")
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == payload.email).first()
    if not user or not verify_password(payload.password, user.password_hash):
        log.info("Failed login for %s", payload.email)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="User inactive")

    return ok(TokenOut(access_token=create_access_token(user.email)))


@router.get("/me")
def me(user: User = Depends(current_user)):
    actor = actor_from_user(user)
    return ok(MeOut(
        id=user.id,
        name=user.name,
        email=user.email,
        role=actor.role.value,
        permissions=sorted(iter_user_perm_codes(user)),
    ))
