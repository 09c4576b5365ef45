# carelog/db/init_db.py
from __future__ import annotations

import argparse
import logging
from typing import Dict, List, Tuple

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from carelog.core.rbac import MAR_VIEW, MAR_WRITE
from carelog.core.security import hash_password
from carelog.db.base import Base
from carelog.db.session import SessionLocal, engine

# Import all models so metadata is complete
from carelog.models import (  # noqa: F401
    AuditLog, MedicationOrder, Permission, Resident, Role, RolePermission, User, UserRole)

log = logging.getLogger(__name__)

PERMISSIONS: List[Tuple[str, str]] = [
    (MAR_VIEW, "View medication administration record"),
    (MAR_WRITE, "Record medications and check off doses"),
]

# role name -> permission codes (admin bypasses checks anyway)
ROLES: Dict[str, List[str]] = {
    "admin": [MAR_VIEW, MAR_WRITE],
    "nurse": [MAR_VIEW, MAR_WRITE],
    "caregiver": [MAR_VIEW],
}


def create_tables(bind: Engine = engine) -> None:
    Base.metadata.create_all(bind=bind)


def seed_permissions(db: Session) -> None:
    """
    Seed ONLY missing permission codes and roles; safe to run multiple times.
    """
    existing = {p.code: p for p in db.query(Permission).all()}
    for code, label in PERMISSIONS:
        if code not in existing:
            p = Permission(code=code, label=label, module=code.split(".")[0])
            db.add(p)
            existing[code] = p
    db.flush()

    roles = {r.name: r for r in db.query(Role).all()}
    for name, codes in ROLES.items():
        role = roles.get(name)
        if role is None:
            role = Role(name=name, description=f"{name.title()} (seeded)")
            db.add(role)
        have = {p.code for p in role.permissions}
        for code in codes:
            if code not in have:
                role.permissions.append(existing[code])
    db.commit()


def seed_demo_users(db: Session, password: str) -> None:
    """One admin and two nurses for trying the MAR screens locally."""
    roles = {r.name: r for r in db.query(Role).all()}
    demo = [
        ("Administración", "admin@carelog.example.com", "admin", True),
        ("Enfermera A", "nurse.a@carelog.example.com", "nurse", False),
        ("Enfermera B", "nurse.b@carelog.example.com", "nurse", False),
    ]
    for name, email, role_name, is_admin in demo:
        if db.query(User).filter(User.email == email).first():
            continue
        user = User(name=name, email=email, password_hash=hash_password(password),
                    is_active=True, is_admin=is_admin)
        user.roles.append(roles[role_name])
        db.add(user)
    if not db.query(Resident).first():
        db.add(Resident(first_name="Residente", last_name="Demo", room_number="101"))
    db.commit()


def main() -> None:
    parser = argparse.ArgumentParser(description="Create CareLog tables and seed roles")
    parser.add_argument("--demo", action="store_true", help="also create demo users and a resident")
    parser.add_argument("--demo-password", default="carelog123")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    create_tables()
    db = SessionLocal()
    try:
        seed_permissions(db)
        if args.demo:
            seed_demo_users(db, args.demo_password)
        log.info("Database ready")
    finally:
        db.close()


if __name__ == "__main__":
    main()
