# FILE: carelog/services/mar_history.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from itertools import groupby
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from carelog.core.config import settings
from carelog.services.dose_slots import SLOT_NUMBERS, slot_columns, slot_enabled
from carelog.services.mar_store import load_history_rows, user_names


@dataclass(frozen=True)
class HistorySlot:
    number: int
    scheduled_time: Optional[time]
    checked: bool
    verified_by: Optional[int]
    verified_by_name: Optional[str]
    verified_at: Optional[datetime]


@dataclass(frozen=True)
class HistoryEntry:
    order_id: int
    drug_name: str
    dose: str
    route: str
    notes: str
    slots: List[HistorySlot] = field(default_factory=list)


@dataclass(frozen=True)
class HistoryDay:
    date: date
    entries: List[HistoryEntry] = field(default_factory=list)


def _history_slots(row: Any, names) -> List[HistorySlot]:
    out = []
    for n in SLOT_NUMBERS:
        if not slot_enabled(row, n):
            continue
        cols = slot_columns(n)
        checker = getattr(row, cols.checker)
        out.append(HistorySlot(
            number=n,
            scheduled_time=getattr(row, cols.time),
            # as stored, even if a legacy row disagrees with its checker column
            checked=bool(getattr(row, cols.status)),
            verified_by=checker,
            verified_by_name=names.get(checker),
            verified_at=getattr(row, cols.check_time),
        ))
    return out


def build_history(
    db: Session,
    resident_id: int,
    current_date: date,
    days: Optional[int] = None,
) -> List[HistoryDay]:
    """
    Read-only view of the `days` days before `current_date` (the current day
    itself belongs to the editable sheet), newest day first.
    """
    days = settings.MAR_HISTORY_DAYS if days is None else days
    if days <= 0:
        return []
    end = current_date - timedelta(days=1)
    start = current_date - timedelta(days=days)

    rows = load_history_rows(db, resident_id, start, end)
    names = user_names(
        db,
        (getattr(r, slot_columns(n).checker) for r in rows for n in SLOT_NUMBERS),
    )

    out: List[HistoryDay] = []
    for day, day_rows in groupby(rows, key=lambda r: r.date):
        out.append(HistoryDay(
            date=day,
            entries=[
                HistoryEntry(
                    order_id=r.id,
                    drug_name=r.medicamento,
                    dose=r.dosis or "",
                    route=r.via or "",
                    notes=r.observacion or "",
                    slots=_history_slots(r, names),
                )
                for r in day_rows
            ],
        ))
    return out
