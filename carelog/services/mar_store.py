# FILE: carelog/services/mar_store.py
from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from carelog.models.medication import MedicationOrder
from carelog.models.resident import Resident
from carelog.models.user import User
from carelog.services.audit_logger import log_audit
from carelog.services.dose_slots import (
    ALWAYS_ON_SLOTS,
    OPTIONAL_SLOT,
    Actor,
    DoseSlot,
    MarSheet,
    MedicationOrderView,
    MedicationRoute,
    slot_columns,
    slot_enabled,
    slot_from_row,
    verification_values,
)
from carelog.services.mar_errors import (
    MarValidationError,
    OrderNotFound,
    PersistenceError,
    ResidentNotFound,
    StaleSlotError,
)

log = logging.getLogger(__name__)

TABLE = MedicationOrder.__tablename__

# Order-level fields a form may edit, mapped to their columns.
ORDER_FIELD_COLUMNS: Dict[str, str] = {
    "drug_name": "medicamento",
    "dose": "dosis",
    "route": "via",
    "notes": "observacion",
    "dose4_enabled": "dose4_enabled",
}


# --------------------------
# Reads
# --------------------------
def get_order_row(db: Session, order_id: int) -> MedicationOrder:
    """Fresh read of one order row, bypassing whatever the session cached."""
    row = (
        db.query(MedicationOrder)
        .populate_existing()
        .filter(MedicationOrder.id == order_id)
        .first()
    )
    if not row:
        raise OrderNotFound(f"Medication order {order_id} not found")
    return row


def load_slot(db: Session, order_id: int, slot_number: int) -> Tuple[MedicationOrder, DoseSlot]:
    row = get_order_row(db, order_id)
    if slot_number not in ALWAYS_ON_SLOTS and slot_number != OPTIONAL_SLOT:
        raise MarValidationError(f"Slot number must be 1-4, got {slot_number}")
    if not slot_enabled(row, slot_number):
        raise MarValidationError(f"Dose {slot_number} is not enabled for this medication")
    try:
        return row, slot_from_row(row, slot_number)
    except ValueError as e:
        # half-written stamp: never produced by this service
        log.error("Order %s slot %s has an inconsistent stamp: %s", order_id, slot_number, e)
        raise PersistenceError(f"Dose {slot_number} of order {order_id} has an incomplete verification stamp") from e


def load_orders(db: Session, resident_id: int, day: date) -> List[MedicationOrderView]:
    rows = (
        db.query(MedicationOrder)
        .populate_existing()
        .filter(MedicationOrder.resident_id == resident_id,
                MedicationOrder.date == day)
        .order_by(MedicationOrder.id.asc())
        .all()
    )
    return [MedicationOrderView.from_row(r) for r in rows]


def load_sheet(db: Session, resident_id: int, day: date) -> MarSheet:
    sheet = MarSheet(resident_id, day, load_orders(db, resident_id, day))
    legacy = (
        db.query(MedicationOrder.id)
        .filter(MedicationOrder.resident_id == resident_id,
                MedicationOrder.date == day,
                MedicationOrder.dose4_time.isnot(None))
        .first()
    )
    if legacy:
        sheet.mark_legacy_slot4()
    return sheet


def load_history_rows(db: Session, resident_id: int, start: date, end: date) -> List[MedicationOrder]:
    return (
        db.query(MedicationOrder)
        .filter(MedicationOrder.resident_id == resident_id,
                MedicationOrder.date >= start,
                MedicationOrder.date <= end)
        .order_by(MedicationOrder.date.desc(), MedicationOrder.id.asc())
        .all()
    )


def user_names(db: Session, user_ids: Iterable[Optional[int]]) -> Dict[int, str]:
    ids = {i for i in user_ids if i is not None}
    if not ids:
        return {}
    rows = db.query(User.id, User.name).filter(User.id.in_(ids)).all()
    return {r.id: r.name for r in rows}


# --------------------------
# Order fields (never verification columns)
# --------------------------
def _clean_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    unknown = set(fields) - set(ORDER_FIELD_COLUMNS)
    if unknown:
        raise MarValidationError(f"Fields not editable here: {', '.join(sorted(unknown))}")

    out: Dict[str, Any] = {}
    for key, value in fields.items():
        col = ORDER_FIELD_COLUMNS[key]
        if key == "drug_name":
            value = (value or "").strip()
            if not value:
                raise MarValidationError(
                    "Drug name is required; a row without one is a draft and is not saved")
        elif key == "route":
            try:
                value = MedicationRoute.parse(value).value
            except ValueError as e:
                raise MarValidationError(str(e)) from e
        elif key == "dose4_enabled":
            if value is None:
                raise MarValidationError("dose4_enabled must be true or false")
            value = bool(value)
        else:
            value = (value or "").strip()
        out[col] = value
    return out


def _snapshot(row: MedicationOrder, columns: Iterable[str]) -> Dict[str, Any]:
    out = {}
    for c in columns:
        v = getattr(row, c)
        out[c] = v.isoformat() if isinstance(v, (date, datetime, time)) else v
    return out


def upsert_order_fields(
    db: Session,
    order_id: Optional[int],
    fields: Mapping[str, Any],
    *,
    actor: Actor,
    now: datetime,
    resident_id: Optional[int] = None,
    day: Optional[date] = None,
    dose_times: Optional[Mapping[int, Optional[time]]] = None,
) -> int:
    """
    Create an order row on first edit, or update its descriptive fields.

    Only `medicamento / dosis / via / observacion / dose4_enabled` are ever
    written for an existing row. Initial dose times are accepted on creation
    only; afterwards they go through the lock-gated dose time editor.
    Stages the change and its audit row; the caller commits.
    """
    values = _clean_fields(fields)

    if order_id is None:
        if resident_id is None or day is None:
            raise MarValidationError("resident_id and date are required to create a medication")
        if "medicamento" not in values:
            raise MarValidationError(
                "Drug name is required; a row without one is a draft and is not saved")
        if not db.get(Resident, resident_id):
            raise ResidentNotFound(f"Resident {resident_id} not found")

        row = MedicationOrder(
            resident_id=resident_id,
            date=day,
            medicamento=values["medicamento"],
            dosis=values.get("dosis", ""),
            via=values.get("via", MedicationRoute.ORAL.value),
            observacion=values.get("observacion", ""),
            dose4_enabled=values.get("dose4_enabled", False),
            recorded_by=actor.user_id,
            created_at=now,
            updated_at=now,
        )
        for n, t in (dose_times or {}).items():
            if n not in ALWAYS_ON_SLOTS and n != OPTIONAL_SLOT:
                raise MarValidationError(f"Slot number must be 1-4, got {n}")
            if n == OPTIONAL_SLOT and t is not None and not row.dose4_enabled:
                raise MarValidationError("Enable dose 4 before scheduling it")
            setattr(row, slot_columns(n).time, t)

        db.add(row)
        try:
            db.flush()
        except SQLAlchemyError as e:
            raise PersistenceError("Could not save medication") from e

        log_audit(
            db,
            user_id=actor.user_id,
            action="CREATE",
            table_name=TABLE,
            record_id=row.id,
            new_values=_snapshot(row, list(values) + [slot_columns(n).time for n in (dose_times or {})]),
            at=now,
        )
        return row.id

    if dose_times:
        raise MarValidationError("Dose times of an existing medication are edited per slot")

    row = get_order_row(db, order_id)
    if values.get("dose4_enabled") is False:
        if row.dose4_checker is not None:
            raise MarValidationError("Dose 4 is already checked off and cannot be disabled")
        if row.dose4_time is not None:
            raise MarValidationError("Clear the time of dose 4 before disabling it")

    before = _snapshot(row, values)
    for col, value in values.items():
        setattr(row, col, value)
    row.updated_at = now

    changed = {c: v for c, v in _snapshot(row, values).items() if before.get(c) != v}
    if changed:
        log_audit(
            db,
            user_id=actor.user_id,
            action="UPDATE",
            table_name=TABLE,
            record_id=row.id,
            old_values={c: before[c] for c in changed},
            new_values=changed,
            at=now,
        )
    try:
        db.flush()
    except SQLAlchemyError as e:
        raise PersistenceError(f"Could not save medication {order_id}") from e
    return row.id


# --------------------------
# Per-slot conditional writes
# --------------------------
def _matches(column, value):
    return column.is_(None) if value is None else column == value


def _slot_guard(table, order_id: int, expected: DoseSlot) -> list:
    cols = slot_columns(expected.number)
    return [
        table.c.id == order_id,
        _matches(table.c[cols.time], expected.scheduled_time),
        _matches(table.c[cols.checker], expected.verified_by),
        _matches(table.c[cols.check_time], expected.verified_at),
    ]


def _execute_slot_write(db: Session, order_id: int, slot_number: int, stmt) -> None:
    try:
        result = db.execute(stmt.execution_options(synchronize_session=False))
    except SQLAlchemyError as e:
        raise PersistenceError(f"Could not save dose {slot_number} of order {order_id}") from e
    if result.rowcount != 1:
        raise StaleSlotError(
            f"Dose {slot_number} of order {order_id} changed since it was loaded; reload and try again")


def update_dose_verification(
    db: Session,
    order_id: int,
    slot_number: int,
    new_slot: DoseSlot,
    *,
    expected: DoseSlot,
) -> None:
    """
    Write the verification stamp (checker, check time, status) of one slot,
    only if the slot still holds exactly what `expected` says.
    No other column of the row is part of the statement.
    """
    if new_slot.number != slot_number or expected.number != slot_number:
        raise ValueError("slot number mismatch")
    table = MedicationOrder.__table__
    stmt = (
        update(table)
        .where(*_slot_guard(table, order_id, expected))
        .values(verification_values(new_slot))
    )
    _execute_slot_write(db, order_id, slot_number, stmt)


def update_dose_time(
    db: Session,
    order_id: int,
    slot_number: int,
    scheduled_time: Optional[time],
    *,
    expected: DoseSlot,
) -> None:
    """Write `dose{n}_time` of one slot, guarded like the verification write."""
    if expected.number != slot_number:
        raise ValueError("slot number mismatch")
    table = MedicationOrder.__table__
    stmt = (
        update(table)
        .where(*_slot_guard(table, order_id, expected))
        .values({slot_columns(slot_number).time: scheduled_time})
    )
    _execute_slot_write(db, order_id, slot_number, stmt)


def commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Could not save {what}") from e
