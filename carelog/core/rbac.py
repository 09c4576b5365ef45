from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, Optional, Set

from fastapi import HTTPException, status

from carelog.services.dose_slots import Actor, ActorRole

# Permission codes used by the MAR screens
MAR_VIEW = "mar.view"
MAR_WRITE = "mar.write"

ADMIN_ROLE_NAMES = {"ADMIN", "SUPER_ADMIN", "ROOT", "SUPERUSER"}
NURSE_ROLE_NAMES = {"NURSE", "ENFERMERA", "ENFERMERO"}


def _code(x: Any) -> str:
    """
    Normalize permission code safely.
    Supports:
      - Enum -> enum.value
      - str  -> str
      - object with .code -> str/Enum
      - dict {"code": ...}
    """
    if x is None:
        return ""

    if isinstance(x, Enum):
        return str(x.value)

    if isinstance(x, str):
        return x

    if isinstance(x, dict) and "code" in x:
        return _code(x["code"])

    if hasattr(x, "code"):
        c = getattr(x, "code")
        if isinstance(c, Enum):
            return str(c.value)
        return str(c)

    return str(x)


def _role_names(user: Any) -> Set[str]:
    return {
        (getattr(r, "name", None) or "").strip().upper()
        for r in (getattr(user, "roles", None) or [])
    }


def is_admin_user(user: Any) -> bool:
    """
    Admin bypass: `is_admin` flag or an admin role.
    """
    if not user:
        return False
    if bool(getattr(user, "is_admin", False)):
        return True
    return bool(_role_names(user) & ADMIN_ROLE_NAMES)


def iter_user_perm_codes(user: Any) -> Set[str]:
    """
    Collect permission codes from user.roles[*].permissions.
    Works even if some attributes are missing.
    """
    out: Set[str] = set()
    if not user:
        return out

    roles = getattr(user, "roles", None)
    if roles:
        for r in roles:
            perms = getattr(r, "permissions", None)
            if not perms:
                continue
            for p in perms:
                c = _code(p).strip()
                if c:
                    out.add(c)

    return out


def require_any(user: Any, required: Iterable[Any], *, message: Optional[str] = None) -> None:
    """
    Raise 403 if user doesn't have at least one permission from 'required'.
    """
    if is_admin_user(user):
        return

    required_set = {_code(x).strip() for x in required if _code(x).strip()}
    if not required_set:
        return

    if iter_user_perm_codes(user).intersection(required_set):
        return

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=message or "You do not have permission to perform this action.",
    )


def actor_from_user(user: Any) -> Actor:
    if is_admin_user(user):
        role = ActorRole.ADMIN
    elif _role_names(user) & NURSE_ROLE_NAMES:
        role = ActorRole.NURSE
    else:
        role = ActorRole.OTHER
    return Actor(user_id=user.id, role=role, name=getattr(user, "name", "") or "")
