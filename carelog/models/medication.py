# FILE: carelog/models/medication.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Time, Text, Boolean, ForeignKey, Index
)
from sqlalchemy.orm import relationship

from carelog.db.base import Base


def utcnow() -> datetime:
    return datetime.utcnow()


class MedicationOrder(Base):
    """
    One medication entry on one resident's daily sheet.

    Each row carries up to four dose slots. Slots 1-3 always exist, slot 4
    only when `dose4_enabled` is set. Per slot:
      dose{n}_time        scheduled time of day (NULL = inactive slot)
      dose{n}_checker     user id of the nurse who checked the dose off
      dose{n}_check_time  when it was checked off
      dose{n}_status      True when checked (mirrors dose{n}_checker IS NOT NULL)
    """
    __tablename__ = "medications"
    __table_args__ = (
        Index("ix_medications_resident_date", "resident_id", "date"),
        {
            "mysql_engine": "InnoDB",
            "mysql_charset": "utf8mb4",
            "mysql_collate": "utf8mb4_unicode_ci",
        },
    )

    id = Column(Integer, primary_key=True, index=True)
    resident_id = Column(Integer, ForeignKey("residents.id", ondelete="CASCADE"),
                         nullable=False)
    date = Column(Date, nullable=False)

    medicamento = Column(String(255), nullable=False)
    dosis = Column(String(120), nullable=False, default="")
    via = Column(String(40), nullable=False, default="oral")
    observacion = Column(Text, nullable=False, default="")

    dose4_enabled = Column(Boolean, nullable=False, default=False)

    dose1_time = Column(Time, nullable=True)
    dose1_checker = Column(Integer, ForeignKey("users.id"), nullable=True)
    dose1_check_time = Column(DateTime, nullable=True)
    dose1_status = Column(Boolean, nullable=False, default=False)

    dose2_time = Column(Time, nullable=True)
    dose2_checker = Column(Integer, ForeignKey("users.id"), nullable=True)
    dose2_check_time = Column(DateTime, nullable=True)
    dose2_status = Column(Boolean, nullable=False, default=False)

    dose3_time = Column(Time, nullable=True)
    dose3_checker = Column(Integer, ForeignKey("users.id"), nullable=True)
    dose3_check_time = Column(DateTime, nullable=True)
    dose3_status = Column(Boolean, nullable=False, default=False)

    dose4_time = Column(Time, nullable=True)
    dose4_checker = Column(Integer, ForeignKey("users.id"), nullable=True)
    dose4_check_time = Column(DateTime, nullable=True)
    dose4_status = Column(Boolean, nullable=False, default=False)

    recorded_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    # set by order-field edits only; slot writes leave it alone
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    resident = relationship("Resident", back_populates="medications")
