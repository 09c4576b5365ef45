# FILE: carelog/services/mar_lock.py
"""
Verification lock policy for dose slots.

Pure functions: the caller passes `now`, nothing here reads a clock or the
database.

  1. An unverified slot may be checked by anyone with write access.
  2. An admin may always change a slot.
  3. A slot verified by someone else is locked.
  4. A slot verified by the same actor stays editable for the correction
     window (default 2h, boundary inclusive), then locks.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from carelog.core.config import settings
from carelog.services.dose_slots import Actor, DoseSlot


class LockRule(str, Enum):
    UNVERIFIED = "unverified"
    ADMIN_OVERRIDE = "admin_override"
    OTHER_VERIFIER = "other_verifier"
    OWN_WINDOW_OPEN = "own_window_open"
    OWN_WINDOW_EXPIRED = "own_window_expired"


@dataclass(frozen=True)
class LockDecision:
    allowed: bool
    rule: LockRule
    reason: str = ""
    locked_by: Optional[int] = None
    locked_at: Optional[datetime] = None
    window_ends_at: Optional[datetime] = None


def lock_window() -> timedelta:
    return timedelta(minutes=settings.MAR_LOCK_WINDOW_MINUTES)


def _fmt(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%d %H:%M")


def evaluate_lock(
    slot: DoseSlot,
    actor: Actor,
    now: datetime,
    *,
    window: Optional[timedelta] = None,
    verifier_name: Optional[str] = None,
) -> LockDecision:
    if not slot.checked:
        return LockDecision(allowed=True, rule=LockRule.UNVERIFIED)

    window = lock_window() if window is None else window
    ends_at = slot.verified_at + window

    if actor.is_admin:
        return LockDecision(
            allowed=True,
            rule=LockRule.ADMIN_OVERRIDE,
            locked_by=slot.verified_by,
            locked_at=slot.verified_at,
            window_ends_at=ends_at,
        )

    if slot.verified_by != actor.user_id:
        who = verifier_name or f"user #{slot.verified_by}"
        return LockDecision(
            allowed=False,
            rule=LockRule.OTHER_VERIFIER,
            reason=f"locked by {who} at {_fmt(slot.verified_at)}",
            locked_by=slot.verified_by,
            locked_at=slot.verified_at,
            window_ends_at=ends_at,
        )

    if now - slot.verified_at > window:
        return LockDecision(
            allowed=False,
            rule=LockRule.OWN_WINDOW_EXPIRED,
            reason=f"correction window expired at {_fmt(ends_at)}",
            locked_by=slot.verified_by,
            locked_at=slot.verified_at,
            window_ends_at=ends_at,
        )

    return LockDecision(
        allowed=True,
        rule=LockRule.OWN_WINDOW_OPEN,
        locked_by=slot.verified_by,
        locked_at=slot.verified_at,
        window_ends_at=ends_at,
    )


def can_mutate(
    slot: DoseSlot,
    actor: Actor,
    now: datetime,
    *,
    window: Optional[timedelta] = None,
) -> bool:
    return evaluate_lock(slot, actor, now, window=window).allowed
