# FILE: carelog/services/dose_slots.py
"""
In-memory dose slot model and its mapping onto the `medications` row.

A `DoseSlot` is immutable: every state change produces a new slot, which
keeps tentative (not yet persisted) changes easy to discard.
"""
from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

SLOT_NUMBERS: Tuple[int, ...] = (1, 2, 3, 4)
ALWAYS_ON_SLOTS: Tuple[int, ...] = (1, 2, 3)
OPTIONAL_SLOT = 4


class MedicationRoute(str, Enum):
    ORAL = "oral"
    INTRAMUSCULAR = "intramuscular"
    INTRAVENOUS = "intravenous"
    SUBCUTANEOUS = "subcutaneous"
    OPHTHALMIC = "ophthalmic"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "MedicationRoute":
        """
        Accepts the enum, its value, common abbreviations and the Spanish
        labels used on the paper sheets (e.g. "Intravenosa", "SC", "VO").
        """
        if isinstance(value, cls):
            return value
        raw = _fold(str(value or ""))
        if not raw:
            raise ValueError("route is required")
        for member in cls:
            if raw == member.value:
                return member
        found = _ROUTE_ALIASES.get(raw)
        if found is None:
            raise ValueError(f"Unknown route '{value}'")
        return found


def _fold(value: str) -> str:
    text = unicodedata.normalize("NFKD", value.strip().lower())
    return "".join(c for c in text if not unicodedata.combining(c))


_ROUTE_ALIASES: Dict[str, MedicationRoute] = {
    "vo": MedicationRoute.ORAL,
    "po": MedicationRoute.ORAL,
    "via oral": MedicationRoute.ORAL,
    "im": MedicationRoute.INTRAMUSCULAR,
    "intramuscular": MedicationRoute.INTRAMUSCULAR,
    "iv": MedicationRoute.INTRAVENOUS,
    "ev": MedicationRoute.INTRAVENOUS,
    "intravenosa": MedicationRoute.INTRAVENOUS,
    "endovenosa": MedicationRoute.INTRAVENOUS,
    "sc": MedicationRoute.SUBCUTANEOUS,
    "subcutanea": MedicationRoute.SUBCUTANEOUS,
    "oftalmica": MedicationRoute.OPHTHALMIC,
    "otra": MedicationRoute.OTHER,
    "otro": MedicationRoute.OTHER,
}


class ActorRole(str, Enum):
    ADMIN = "admin"
    NURSE = "nurse"
    OTHER = "other"


@dataclass(frozen=True)
class Actor:
    """The authenticated person performing a MAR action."""
    user_id: int
    role: ActorRole = ActorRole.NURSE
    name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

    @property
    def label(self) -> str:
        return self.name or f"user #{self.user_id}"


@dataclass(frozen=True)
class DoseSlot:
    """
    One scheduled administration of an order.

    `verified_by` / `verified_at` are set together; `checked` is derived
    from them and never stored separately in memory.
    """
    number: int
    scheduled_time: Optional[time] = None
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.number not in SLOT_NUMBERS:
            raise ValueError(f"Slot number must be 1-4, got {self.number}")
        if (self.verified_by is None) != (self.verified_at is None):
            raise ValueError(
                f"Slot {self.number}: verified_by and verified_at must be set together")

    @property
    def checked(self) -> bool:
        return self.verified_by is not None

    @property
    def active(self) -> bool:
        return self.scheduled_time is not None

    def verified(self, actor: Actor, now: datetime) -> "DoseSlot":
        return replace(self, verified_by=actor.user_id, verified_at=now)

    def cleared(self) -> "DoseSlot":
        return replace(self, verified_by=None, verified_at=None)

    def retimed(self, scheduled_time: Optional[time]) -> "DoseSlot":
        return replace(self, scheduled_time=scheduled_time)

    def same_stamp(self, other: "DoseSlot") -> bool:
        return (self.verified_by, self.verified_at) == (other.verified_by, other.verified_at)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "scheduled_time": self.scheduled_time.isoformat() if self.scheduled_time else None,
            "checked": self.checked,
            "verified_by": self.verified_by,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
        }


# --------------------------
# Row <-> slot mapping
# --------------------------
class SlotColumns(NamedTuple):
    time: str
    checker: str
    check_time: str
    status: str


def slot_columns(number: int) -> SlotColumns:
    if number not in SLOT_NUMBERS:
        raise ValueError(f"Slot number must be 1-4, got {number}")
    return SlotColumns(
        time=f"dose{number}_time",
        checker=f"dose{number}_checker",
        check_time=f"dose{number}_check_time",
        status=f"dose{number}_status",
    )


VERIFICATION_COLUMNS = frozenset(
    c for n in SLOT_NUMBERS for c in slot_columns(n)[1:]
)
DOSE_TIME_COLUMNS = frozenset(slot_columns(n).time for n in SLOT_NUMBERS)


def slot_enabled(row: Any, number: int) -> bool:
    if number in ALWAYS_ON_SLOTS:
        return True
    if number != OPTIONAL_SLOT:
        return False
    if getattr(row, "dose4_enabled", False):
        return True
    # rows written before the flag existed: any stored 4th dose data counts
    cols = slot_columns(OPTIONAL_SLOT)
    return any(getattr(row, c, None) is not None for c in (cols.time, cols.checker, cols.check_time))


def slot_from_row(row: Any, number: int) -> DoseSlot:
    cols = slot_columns(number)
    return DoseSlot(
        number=number,
        scheduled_time=getattr(row, cols.time),
        verified_by=getattr(row, cols.checker),
        verified_at=getattr(row, cols.check_time),
    )


def verification_values(slot: DoseSlot) -> Dict[str, Any]:
    """Column values for the verification stamp of one slot (checker, time, status)."""
    cols = slot_columns(slot.number)
    return {
        cols.checker: slot.verified_by,
        cols.check_time: slot.verified_at,
        cols.status: slot.checked,
    }


@dataclass
class MedicationOrderView:
    """A loaded `medications` row: descriptive fields plus its enabled slots."""
    id: int
    resident_id: int
    date: date
    drug_name: str
    dose: str
    route: str
    notes: str
    dose4_enabled: bool
    recorded_by: Optional[int] = None
    slots: Dict[int, DoseSlot] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Any) -> "MedicationOrderView":
        return cls(
            id=row.id,
            resident_id=row.resident_id,
            date=row.date,
            drug_name=row.medicamento,
            dose=row.dosis or "",
            route=row.via or "",
            notes=row.observacion or "",
            dose4_enabled=bool(row.dose4_enabled),
            recorded_by=row.recorded_by,
            slots={n: slot_from_row(row, n) for n in SLOT_NUMBERS if slot_enabled(row, n)},
        )


class MarSheet:
    """
    One resident's daily sheet as a client session holds it.

    Confirmed slots are what the store last acknowledged. A tentative slot
    shadows its confirmed value from the moment a toggle is applied until the
    write is confirmed or reverted.
    """

    def __init__(self, resident_id: int, day: date, orders: Iterable[MedicationOrderView]):
        self.resident_id = resident_id
        self.day = day
        self.orders: Dict[int, MedicationOrderView] = {o.id: o for o in orders}
        self._tentative: Dict[Tuple[int, int], DoseSlot] = {}
        # legacy rows carry a 4th dose time without the explicit flag
        self._legacy_slot4 = False

    @property
    def slot4_active(self) -> bool:
        return self._legacy_slot4 or any(OPTIONAL_SLOT in o.slots for o in self.orders.values())

    def mark_legacy_slot4(self) -> None:
        self._legacy_slot4 = True

    def slot(self, order_id: int, number: int) -> Optional[DoseSlot]:
        key = (order_id, number)
        if key in self._tentative:
            return self._tentative[key]
        order = self.orders.get(order_id)
        if order is None:
            return None
        return order.slots.get(number)

    def confirmed_slot(self, order_id: int, number: int) -> Optional[DoseSlot]:
        order = self.orders.get(order_id)
        return order.slots.get(number) if order else None

    def is_tentative(self, order_id: int, number: int) -> bool:
        return (order_id, number) in self._tentative

    def apply(self, order_id: int, slot: DoseSlot) -> None:
        self._tentative[(order_id, slot.number)] = slot

    def confirm(self, order_id: int, slot: DoseSlot) -> None:
        self._tentative.pop((order_id, slot.number), None)
        order = self.orders.get(order_id)
        if order is not None:
            order.slots[slot.number] = slot

    def revert(self, order_id: int, number: int) -> Optional[DoseSlot]:
        self._tentative.pop((order_id, number), None)
        return self.confirmed_slot(order_id, number)

    def views(self) -> List[MedicationOrderView]:
        return [self.orders[k] for k in sorted(self.orders)]
