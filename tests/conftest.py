# tests/conftest.py
"""
Shared fixtures: a throwaway SQLite database per test, seeded roles and
staff, and a TestClient wired to the same database.

A file database (not :memory:) so that several sessions can read and write
concurrently, which the dose race tests rely on.
"""
from __future__ import annotations

from datetime import date, datetime, time
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from carelog.api.deps import get_db
from carelog.core.rbac import actor_from_user
from carelog.db.init_db import create_tables, seed_permissions
from carelog.db.session import make_engine
from carelog.main import app
from carelog.models.resident import Resident
from carelog.models.role import Role
from carelog.models.user import User
from carelog.services.mar_store import commit, upsert_order_fields
from carelog.utils.jwt import create_access_token

DAY = date(2026, 3, 10)
T0 = datetime(2026, 3, 10, 8, 0, 0)


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'mar.db'}")
    create_tables(engine)
    factory = sessionmaker(bind=engine, autoflush=False, future=True)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def _add_user(db, name, email, role_name, *, is_admin=False):
    role = db.query(Role).filter(Role.name == role_name).one()
    user = User(name=name, email=email, password_hash="!", is_active=True, is_admin=is_admin)
    user.roles.append(role)
    db.add(user)
    return user


@pytest.fixture
def staff(db):
    seed_permissions(db)
    users = SimpleNamespace(
        admin=_add_user(db, "Admin", "admin@example.com", "admin", is_admin=True),
        nurse_a=_add_user(db, "Nurse A", "a@example.com", "nurse"),
        nurse_b=_add_user(db, "Nurse B", "b@example.com", "nurse"),
        nurse_c=_add_user(db, "Nurse C", "c@example.com", "nurse"),
        caregiver=_add_user(db, "Caregiver", "care@example.com", "caregiver"),
    )
    db.commit()
    return users


@pytest.fixture
def actors(staff):
    return SimpleNamespace(**{k: actor_from_user(v) for k, v in vars(staff).items()})


@pytest.fixture
def resident(db):
    r = Resident(first_name="Rosa", last_name="Pérez", room_number="12")
    db.add(r)
    db.commit()
    return r


@pytest.fixture
def make_order(db, actors, resident):
    """Create a medication row for the resident on DAY; returns its id."""

    def _make(drug="Paracetamol", *, day=DAY, times=None, dose4=False, **fields):
        if times is None:
            times = {1: time(8, 0), 2: time(14, 0), 3: time(20, 0)}
        order_id = upsert_order_fields(
            db, None,
            {"drug_name": drug, "dose": fields.pop("dose", "500mg"), "dose4_enabled": dose4, **fields},
            actor=actors.nurse_a,
            now=T0,
            resident_id=resident.id,
            day=day,
            dose_times=times,
        )
        commit(db, "medication")
        return order_id

    return _make


@pytest.fixture
def client(session_factory):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(user.email)}"}

    return _headers
