from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from carelog.models.audit import AuditLog
from carelog.utils.timezone import now_facility


def log_audit(
    db: Session,
    *,
    user_id: Optional[int],
    action: str,  # "CREATE" | "UPDATE" | "VERIFY" | "UNVERIFY" | "RETIME"
    table_name: str,
    record_id: Any,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    at: Optional[datetime] = None,
) -> AuditLog:
    """
    Stage one audit event in the caller's transaction.
    The caller commits it together with the change it describes, so a
    confirmed change never exists without its audit row (and vice versa).
    """
    log = AuditLog(
        user_id=user_id,
        action=action,
        table_name=table_name,
        record_id=str(record_id),
        old_values=old_values,
        new_values=new_values,
        ip_address=ip_address,
        user_agent=user_agent,
        created_at=at or now_facility(),
    )
    db.add(log)
    return log


def audit_trail(db: Session, *, table_name: str, record_id: Any) -> List[AuditLog]:
    return (
        db.query(AuditLog)
        .filter(AuditLog.table_name == table_name,
                AuditLog.record_id == str(record_id))
        .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
        .all()
    )
