# FILE: carelog/api/routes_mar.py
from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import date
from typing import Dict, Iterable, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from carelog.api.deps import current_actor, current_user, get_db
from carelog.core.rbac import MAR_VIEW, MAR_WRITE, require_any
from carelog.models.user import User as UserModel
from carelog.schemas.medication import (
    AuditEntryOut,
    DoseSlotOut,
    DoseTimeIn,
    HistoryDayOut,
    LockOut,
    MarSheetOut,
    MedicationOrderCreate,
    MedicationOrderFields,
    MedicationOrderOut,
)
from carelog.services.audit_logger import audit_trail
from carelog.services.dose_slots import Actor, DoseSlot, MedicationOrderView
from carelog.services.mar_errors import (
    LockDenied,
    MarError,
    MarValidationError,
    PersistenceError,
    RecordNotFound,
)
from carelog.services.mar_history import build_history
from carelog.services.mar_store import (
    TABLE,
    commit,
    get_order_row,
    load_sheet,
    upsert_order_fields,
    user_names,
)
from carelog.services.mar_toggle import check_lock, edit_dose_time, toggle_verification
from carelog.utils.resp import err, ok
from carelog.utils.timezone import now_facility, today_facility

router = APIRouter(prefix="/mar", tags=["MAR - Medication Administration"])
log = logging.getLogger(__name__)


# =========================================================
# HELPERS
# =========================================================
def _fail(e: MarError):
    if isinstance(e, LockDenied):
        return err(str(e), 409, code=e.code)
    if isinstance(e, MarValidationError):
        return err(str(e), 422, code=e.code)
    if isinstance(e, RecordNotFound):
        return err(str(e), 404, code=e.code)
    if isinstance(e, PersistenceError):
        return err(str(e), 503, code=e.code)
    log.error("Unmapped MAR error: %r", e)
    return err(str(e), 400, code=e.code)


def _slot_out(slot: DoseSlot, names: Dict[int, str]) -> DoseSlotOut:
    return DoseSlotOut(
        number=slot.number,
        scheduled_time=slot.scheduled_time,
        checked=slot.checked,
        verified_by=slot.verified_by,
        verified_by_name=names.get(slot.verified_by),
        verified_at=slot.verified_at,
    )


def _order_out(view: MedicationOrderView, names: Dict[int, str]) -> MedicationOrderOut:
    return MedicationOrderOut(
        id=view.id,
        resident_id=view.resident_id,
        date=view.date,
        drug_name=view.drug_name,
        dose=view.dose,
        route=view.route,
        notes=view.notes,
        dose4_enabled=view.dose4_enabled,
        recorded_by=view.recorded_by,
        slots=[_slot_out(view.slots[n], names) for n in sorted(view.slots)],
    )


def _names_for(db: Session, views: Iterable[MedicationOrderView]) -> Dict[int, str]:
    return user_names(db, (s.verified_by for v in views for s in v.slots.values()))


# =========================================================
# DAILY SHEET
# =========================================================
@router.get("/residents/{resident_id}/days/{day}")
def get_daily_sheet(
    resident_id: int,
    day: date,
    db: Session = Depends(get_db),
    user: UserModel = Depends(current_user),
):
    """Medication rows of one resident for one day, with their dose slots."""
    require_any(user, [MAR_VIEW, MAR_WRITE])

    sheet = load_sheet(db, resident_id, day)
    views = sheet.views()
    names = _names_for(db, views)
    return ok(MarSheetOut(
        resident_id=resident_id,
        date=day,
        slot4_active=sheet.slot4_active,
        orders=[_order_out(v, names) for v in views],
    ))


@router.post("/residents/{resident_id}/days/{day}/orders")
def create_medication_order(
    resident_id: int,
    day: date,
    payload: MedicationOrderCreate,
    db: Session = Depends(get_db),
    user: UserModel = Depends(current_user),
    actor: Actor = Depends(current_actor),
):
    """
    Save a new medication row. Rows are only created once a drug name exists;
    an empty row stays a draft on the client.
    """
    require_any(user, [MAR_WRITE])

    fields = payload.model_dump(exclude_unset=True, exclude={"dose_times"})
    try:
        order_id = upsert_order_fields(
            db, None, fields,
            actor=actor,
            now=now_facility(),
            resident_id=resident_id,
            day=day,
            dose_times=payload.dose_times,
        )
        commit(db, "medication")
        view = MedicationOrderView.from_row(get_order_row(db, order_id))
    except MarError as e:
        db.rollback()
        return _fail(e)
    return ok(_order_out(view, {}), status_code=201)


@router.put("/orders/{order_id}")
def update_medication_order(
    order_id: int,
    payload: MedicationOrderFields,
    db: Session = Depends(get_db),
    user: UserModel = Depends(current_user),
    actor: Actor = Depends(current_actor),
):
    """
    Edit drug name / dose / route / notes / 4th dose flag.
    Dose check-offs are never touched from here.
    """
    require_any(user, [MAR_WRITE])

    fields = payload.model_dump(exclude_unset=True)
    try:
        upsert_order_fields(db, order_id, fields, actor=actor, now=now_facility())
        commit(db, f"medication {order_id}")
        view = MedicationOrderView.from_row(get_order_row(db, order_id))
    except MarError as e:
        db.rollback()
        return _fail(e)
    return ok(_order_out(view, _names_for(db, [view])))


# =========================================================
# DOSE SLOTS
# =========================================================
@router.post("/orders/{order_id}/slots/{slot_number}/toggle")
def toggle_dose(
    order_id: int,
    slot_number: int,
    db: Session = Depends(get_db),
    user: UserModel = Depends(current_user),
    actor: Actor = Depends(current_actor),
):
    """Check off a dose, or clear a check-off the caller may still amend."""
    require_any(user, [MAR_WRITE])

    try:
        slot = toggle_verification(db, order_id, slot_number, actor, now_facility())
    except MarError as e:
        return _fail(e)
    return ok(_slot_out(slot, {actor.user_id: actor.name}))


@router.put("/orders/{order_id}/slots/{slot_number}/time")
def set_dose_time(
    order_id: int,
    slot_number: int,
    payload: DoseTimeIn,
    db: Session = Depends(get_db),
    user: UserModel = Depends(current_user),
    actor: Actor = Depends(current_actor),
):
    require_any(user, [MAR_WRITE])

    try:
        slot = edit_dose_time(db, order_id, slot_number, payload.scheduled_time, actor, now_facility())
    except MarError as e:
        return _fail(e)
    return ok(_slot_out(slot, user_names(db, [slot.verified_by])))


@router.get("/orders/{order_id}/slots/{slot_number}/lock")
def get_dose_lock(
    order_id: int,
    slot_number: int,
    db: Session = Depends(get_db),
    user: UserModel = Depends(current_user),
    actor: Actor = Depends(current_actor),
):
    """
    Whether the caller could change this dose right now.
    For greying out controls only; the write endpoints enforce it again.
    """
    require_any(user, [MAR_VIEW, MAR_WRITE])

    try:
        decision = check_lock(db, order_id, slot_number, actor, now_facility())
    except MarError as e:
        return _fail(e)
    return ok(LockOut(
        allowed=decision.allowed,
        rule=decision.rule.value,
        reason=decision.reason,
        locked_by=decision.locked_by,
        locked_at=decision.locked_at,
        window_ends_at=decision.window_ends_at,
    ))


# =========================================================
# HISTORY / AUDIT (read-only)
# =========================================================
@router.get("/residents/{resident_id}/history")
def get_medication_history(
    resident_id: int,
    current_date: Optional[date] = Query(None, description="Defaults to today (facility time)"),
    days: Optional[int] = Query(None, ge=1, le=90),
    db: Session = Depends(get_db),
    user: UserModel = Depends(current_user),
):
    require_any(user, [MAR_VIEW, MAR_WRITE])

    history = build_history(db, resident_id, current_date or today_facility(), days)
    return ok([HistoryDayOut.model_validate(asdict(d)) for d in history])


@router.get("/orders/{order_id}/audit")
def get_order_audit(
    order_id: int,
    db: Session = Depends(get_db),
    user: UserModel = Depends(current_user),
):
    require_any(user, [MAR_VIEW, MAR_WRITE])

    try:
        get_order_row(db, order_id)
    except MarError as e:
        return _fail(e)
    rows = audit_trail(db, table_name=TABLE, record_id=order_id)
    return ok([AuditEntryOut.model_validate(r) for r in rows])
