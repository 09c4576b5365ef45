# FILE: carelog/schemas/medication.py
from __future__ import annotations

from datetime import date, datetime, time
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from carelog.services.dose_slots import MedicationRoute


# -------------------------
# Inputs
# -------------------------
class MedicationOrderFields(BaseModel):
    """Descriptive fields of a medication row; all optional for partial edits."""
    drug_name: Optional[str] = Field(None, max_length=255)
    dose: Optional[str] = Field(None, max_length=120)
    route: Optional[str] = None
    notes: Optional[str] = None
    dose4_enabled: Optional[bool] = None

    @field_validator("route")
    @classmethod
    def _route(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return MedicationRoute.parse(v).value


class MedicationOrderCreate(MedicationOrderFields):
    drug_name: str = Field(..., min_length=1, max_length=255)
    # initial schedule, slot number -> time
    dose_times: Dict[int, Optional[time]] = Field(default_factory=dict)

    @field_validator("dose_times")
    @classmethod
    def _slots(cls, v: Dict[int, Optional[time]]) -> Dict[int, Optional[time]]:
        bad = [n for n in v if n not in (1, 2, 3, 4)]
        if bad:
            raise ValueError(f"Slot numbers must be 1-4, got {bad}")
        return v


class DoseTimeIn(BaseModel):
    scheduled_time: Optional[time] = None


# -------------------------
# Outputs
# -------------------------
class DoseSlotOut(BaseModel):
    number: int
    scheduled_time: Optional[time] = None
    checked: bool
    verified_by: Optional[int] = None
    verified_by_name: Optional[str] = None
    verified_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LockOut(BaseModel):
    allowed: bool
    rule: str
    reason: str = ""
    locked_by: Optional[int] = None
    locked_at: Optional[datetime] = None
    window_ends_at: Optional[datetime] = None


class MedicationOrderOut(BaseModel):
    id: int
    resident_id: int
    date: date
    drug_name: str
    dose: str
    route: str
    notes: str
    dose4_enabled: bool
    recorded_by: Optional[int] = None
    slots: List[DoseSlotOut] = Field(default_factory=list)


class MarSheetOut(BaseModel):
    resident_id: int
    date: date
    slot4_active: bool
    orders: List[MedicationOrderOut] = Field(default_factory=list)


class HistoryEntryOut(BaseModel):
    order_id: int
    drug_name: str
    dose: str
    route: str
    notes: str
    slots: List[DoseSlotOut] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class HistoryDayOut(BaseModel):
    date: date
    entries: List[HistoryEntryOut] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class AuditEntryOut(BaseModel):
    id: int
    user_id: Optional[int] = None
    action: str
    record_id: str
    old_values: Optional[dict] = None
    new_values: Optional[dict] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
