# FILE: carelog/services/mar_toggle.py
"""
Dose slot mutations: check-off toggle and scheduled time edits.

Both run the lock policy against a fresh read of the slot, apply the new
state tentatively to the caller's sheet (if any), then persist only that
slot's columns with a conditional write. A failed write reverts the
tentative state; nothing is retried automatically.
"""
from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from carelog.services.audit_logger import log_audit
from carelog.services.dose_slots import Actor, DoseSlot, MarSheet, slot_columns
from carelog.services.mar_errors import (
    LockDenied,
    MarValidationError,
    PersistenceError,
    StaleSlotError,
)
from carelog.services.mar_lock import LockDecision, evaluate_lock
from carelog.services.mar_store import (
    TABLE,
    commit,
    load_slot,
    update_dose_time,
    update_dose_verification,
    user_names,
)

log = logging.getLogger(__name__)


def check_lock(
    db: Session,
    order_id: int,
    slot_number: int,
    actor: Actor,
    now: datetime,
    *,
    window: Optional[timedelta] = None,
) -> LockDecision:
    """Lock decision for the stored slot, for UI pre-filtering."""
    _row, current = load_slot(db, order_id, slot_number)
    return _decide(db, current, actor, now, window)


def _decide(db: Session, current: DoseSlot, actor: Actor, now: datetime,
            window: Optional[timedelta]) -> LockDecision:
    name = None
    if current.checked and current.verified_by != actor.user_id:
        name = user_names(db, [current.verified_by]).get(current.verified_by)
    return evaluate_lock(current, actor, now, window=window, verifier_name=name)


def _guard(
    db: Session,
    order_id: int,
    current: DoseSlot,
    actor: Actor,
    now: datetime,
    window: Optional[timedelta],
    sheet: Optional[MarSheet],
) -> None:
    decision = _decide(db, current, actor, now, window)
    if not decision.allowed:
        if sheet is not None:
            sheet.confirm(order_id, current)
        log.info("MAR lock denied: order=%s dose=%s user=%s rule=%s",
                 order_id, current.number, actor.user_id, decision.rule.value)
        raise LockDenied(decision)

    if sheet is not None:
        known = sheet.slot(order_id, current.number)
        if known is not None and (not known.same_stamp(current)
                                  or known.scheduled_time != current.scheduled_time):
            # the session would act on a state that no longer exists
            sheet.confirm(order_id, current)
            raise StaleSlotError(
                f"Dose {current.number} changed since the sheet was loaded; review it and try again")


def _persist(
    db: Session,
    order_id: int,
    target: DoseSlot,
    sheet: Optional[MarSheet],
    write,
) -> DoseSlot:
    if sheet is not None:
        sheet.apply(order_id, target)
    try:
        write()
        commit(db, f"dose {target.number} of order {order_id}")
    except PersistenceError:
        db.rollback()
        if sheet is not None:
            sheet.revert(order_id, target.number)
        log.warning("MAR write failed: order=%s dose=%s", order_id, target.number, exc_info=True)
        raise
    if sheet is not None:
        sheet.confirm(order_id, target)
    return target


def toggle_verification(
    db: Session,
    order_id: int,
    slot_number: int,
    actor: Actor,
    now: datetime,
    *,
    sheet: Optional[MarSheet] = None,
    window: Optional[timedelta] = None,
) -> DoseSlot:
    """
    Check off an unverified dose, or clear a verified one.

    Raises LockDenied, MarValidationError, OrderNotFound or PersistenceError
    (StaleSlotError when another session changed the slot first).
    """
    _row, current = load_slot(db, order_id, slot_number)
    _guard(db, order_id, current, actor, now, window, sheet)

    if current.checked:
        target = current.cleared()
        action = "UNVERIFY"
    else:
        if not current.active:
            log.info("MAR verify rejected: order=%s dose=%s has no scheduled time",
                     order_id, slot_number)
            raise MarValidationError(f"Dose {slot_number} has no scheduled time and cannot be checked off")
        target = current.verified(actor, now)
        action = "VERIFY"

    def write():
        update_dose_verification(db, order_id, slot_number, target, expected=current)
        cols = slot_columns(slot_number)
        log_audit(
            db,
            user_id=actor.user_id,
            action=action,
            table_name=TABLE,
            record_id=order_id,
            old_values={
                cols.checker: current.verified_by,
                cols.check_time: current.verified_at.isoformat() if current.verified_at else None,
                cols.status: current.checked,
            },
            new_values={
                cols.checker: target.verified_by,
                cols.check_time: target.verified_at.isoformat() if target.verified_at else None,
                cols.status: target.checked,
            },
            at=now,
        )

    slot = _persist(db, order_id, target, sheet, write)
    log.info("MAR %s: order=%s dose=%s user=%s", action.lower(), order_id, slot_number, actor.user_id)
    return slot


def edit_dose_time(
    db: Session,
    order_id: int,
    slot_number: int,
    scheduled_time: Optional[time],
    actor: Actor,
    now: datetime,
    *,
    sheet: Optional[MarSheet] = None,
    window: Optional[timedelta] = None,
) -> DoseSlot:
    """
    Change the scheduled time of one slot. Gated by the same lock as the
    check-off, since retiming an attested dose alters the record.
    """
    _row, current = load_slot(db, order_id, slot_number)
    _guard(db, order_id, current, actor, now, window, sheet)

    if scheduled_time is None and current.checked:
        raise MarValidationError(f"Dose {slot_number} is checked off; its time cannot be cleared")
    if scheduled_time == current.scheduled_time:
        return current

    target = current.retimed(scheduled_time)
    col = slot_columns(slot_number).time

    def write():
        update_dose_time(db, order_id, slot_number, scheduled_time, expected=current)
        log_audit(
            db,
            user_id=actor.user_id,
            action="RETIME",
            table_name=TABLE,
            record_id=order_id,
            old_values={col: current.scheduled_time.isoformat() if current.scheduled_time else None},
            new_values={col: scheduled_time.isoformat() if scheduled_time else None},
            at=now,
        )

    return _persist(db, order_id, target, sheet, write)
