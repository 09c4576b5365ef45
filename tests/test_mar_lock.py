from datetime import datetime, time, timedelta

import pytest

from carelog.services.dose_slots import Actor, ActorRole, DoseSlot
from carelog.services.mar_lock import LockRule, can_mutate, evaluate_lock, lock_window

T0 = datetime(2026, 3, 10, 8, 0, 0)
TWO_HOURS = timedelta(hours=2)

NURSE_A = Actor(user_id=1, role=ActorRole.NURSE, name="A")
NURSE_B = Actor(user_id=2, role=ActorRole.NURSE, name="B")
OTHER = Actor(user_id=3, role=ActorRole.OTHER)
ADMIN = Actor(user_id=9, role=ActorRole.ADMIN, name="Admin")


def _verified_by(actor, at=T0, number=1):
    return DoseSlot(number=number, scheduled_time=time(8, 0), verified_by=actor.user_id, verified_at=at)


def test_unverified_slot_is_open_to_anyone_at_any_time():
    slot = DoseSlot(number=1, scheduled_time=time(8, 0))
    for actor in (NURSE_A, NURSE_B, OTHER, ADMIN):
        decision = evaluate_lock(slot, actor, T0 + timedelta(days=3))
        assert decision.allowed
        assert decision.rule == LockRule.UNVERIFIED


@pytest.mark.parametrize("elapsed", [
    timedelta(0),
    timedelta(minutes=5),
    TWO_HOURS,
    TWO_HOURS + timedelta(seconds=1),
    timedelta(days=30),
])
def test_other_nurse_is_always_locked_out(elapsed):
    slot = _verified_by(NURSE_A)
    decision = evaluate_lock(slot, NURSE_B, T0 + elapsed, window=TWO_HOURS)
    assert not decision.allowed
    assert decision.rule == LockRule.OTHER_VERIFIER
    assert decision.locked_by == NURSE_A.user_id
    assert not can_mutate(slot, NURSE_B, T0 + elapsed, window=TWO_HOURS)


def test_own_slot_window_boundaries():
    slot = _verified_by(NURSE_A)
    assert can_mutate(slot, NURSE_A, T0, window=TWO_HOURS)
    assert can_mutate(slot, NURSE_A, T0 + TWO_HOURS, window=TWO_HOURS)
    assert not can_mutate(slot, NURSE_A, T0 + TWO_HOURS + timedelta(seconds=1), window=TWO_HOURS)


def test_expired_window_reason_names_the_deadline():
    slot = _verified_by(NURSE_A)
    decision = evaluate_lock(slot, NURSE_A, T0 + timedelta(hours=3), window=TWO_HOURS)
    assert decision.rule == LockRule.OWN_WINDOW_EXPIRED
    assert decision.reason == "correction window expired at 2026-03-10 10:00"
    assert decision.window_ends_at == T0 + TWO_HOURS


@pytest.mark.parametrize("elapsed", [timedelta(0), TWO_HOURS + timedelta(seconds=1), timedelta(days=365)])
def test_admin_can_always_flip(elapsed):
    assert can_mutate(_verified_by(NURSE_A), ADMIN, T0 + elapsed, window=TWO_HOURS)
    assert can_mutate(_verified_by(ADMIN), ADMIN, T0 + elapsed, window=TWO_HOURS)
    assert evaluate_lock(_verified_by(NURSE_A), ADMIN, T0 + elapsed).rule == LockRule.ADMIN_OVERRIDE


def test_scenario_nurse_a_nurse_b_admin():
    slot = _verified_by(NURSE_A)

    denied = evaluate_lock(slot, NURSE_B, T0 + timedelta(minutes=5), verifier_name="Nurse A")
    assert not denied.allowed
    assert denied.reason.startswith("locked by Nurse A")

    assert can_mutate(slot, NURSE_A, T0 + timedelta(minutes=5))
    assert can_mutate(slot, ADMIN, T0.replace(hour=23))


def test_reason_falls_back_to_user_id_without_a_name():
    decision = evaluate_lock(_verified_by(NURSE_A), NURSE_B, T0)
    assert decision.reason == "locked by user #1 at 2026-03-10 08:00"


def test_window_is_configurable(monkeypatch):
    from carelog.core.config import settings

    monkeypatch.setattr(settings, "MAR_LOCK_WINDOW_MINUTES", 30)
    assert lock_window() == timedelta(minutes=30)

    slot = _verified_by(NURSE_A)
    assert can_mutate(slot, NURSE_A, T0 + timedelta(minutes=30))
    assert not can_mutate(slot, NURSE_A, T0 + timedelta(minutes=31))
