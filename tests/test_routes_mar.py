from datetime import time, timedelta

from carelog.core.security import hash_password
from carelog.services.mar_toggle import toggle_verification

from tests.conftest import DAY, T0

API = "/api"


def _sheet_url(resident_id, day=DAY):
    return f"{API}/mar/residents/{resident_id}/days/{day.isoformat()}"


def test_health(client):
    r = client.get("/")
    assert r.status_code == 200


class TestAuth:
    def test_login_and_me(self, client, db, staff):
        staff.nurse_a.password_hash = hash_password("s3cret")
        db.commit()

        r = client.post(f"{API}/auth/login", json={"email": "a@example.com", "password": "s3cret"})
        assert r.status_code == 200
        token = r.json()["data"]["access_token"]

        me = client.get(f"{API}/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        body = me.json()["data"]
        assert body["name"] == "Nurse A"
        assert body["role"] == "nurse"
        assert "mar.write" in body["permissions"]

    def test_bad_password(self, client, db, staff):
        staff.nurse_a.password_hash = hash_password("s3cret")
        db.commit()

        r = client.post(f"{API}/auth/login", json={"email": "a@example.com", "password": "nope"})
        assert r.status_code == 401
        assert r.json()["status"] is False

    def test_missing_and_bad_token(self, client, resident):
        assert client.get(_sheet_url(resident.id)).status_code == 401
        r = client.get(_sheet_url(resident.id), headers={"Authorization": "Bearer garbage"})
        assert r.status_code == 401
        assert r.json()["error"]["msg"] == "Invalid token"


class TestSheet:
    def test_create_then_read_sheet(self, client, auth, staff, resident):
        r = client.post(
            f"{_sheet_url(resident.id)}/orders",
            headers=auth(staff.nurse_a),
            json={"drug_name": "Losartán", "dose": "50mg", "route": "VO",
                  "dose_times": {"1": "08:00:00", "3": "20:00:00"}},
        )
        assert r.status_code == 201
        created = r.json()["data"]
        assert created["route"] == "oral"
        assert [s["number"] for s in created["slots"]] == [1, 2, 3]

        r = client.get(_sheet_url(resident.id), headers=auth(staff.caregiver))
        assert r.status_code == 200
        sheet = r.json()["data"]
        assert sheet["slot4_active"] is False
        (order,) = sheet["orders"]
        assert order["drug_name"] == "Losartán"
        times = {s["number"]: s["scheduled_time"] for s in order["slots"]}
        assert times == {1: "08:00:00", 2: None, 3: "20:00:00"}

    def test_blank_drug_name_is_not_saved(self, client, auth, staff, resident):
        r = client.post(f"{_sheet_url(resident.id)}/orders", headers=auth(staff.nurse_a),
                        json={"drug_name": "  ", "dose": "1 tab"})
        assert r.status_code == 422
        assert r.json()["error"]["code"] == "validation_error"

        sheet = client.get(_sheet_url(resident.id), headers=auth(staff.nurse_a)).json()["data"]
        assert sheet["orders"] == []

    def test_unknown_route_is_a_validation_error(self, client, auth, staff, make_order):
        oid = make_order()
        r = client.put(f"{API}/mar/orders/{oid}", headers=auth(staff.nurse_a), json={"route": "telepathic"})
        assert r.status_code == 422

    def test_unknown_resident(self, client, auth, staff):
        r = client.post(f"{_sheet_url(999)}/orders", headers=auth(staff.nurse_a),
                        json={"drug_name": "Paracetamol"})
        assert r.status_code == 404
        assert r.json()["error"]["code"] == "not_found"

    def test_fourth_dose_column_follows_the_flag(self, client, auth, staff, resident, make_order):
        oid = make_order()
        sheet = client.get(_sheet_url(resident.id), headers=auth(staff.nurse_a)).json()["data"]
        assert sheet["slot4_active"] is False

        r = client.put(f"{API}/mar/orders/{oid}", headers=auth(staff.nurse_a), json={"dose4_enabled": True})
        assert r.status_code == 200
        assert [s["number"] for s in r.json()["data"]["slots"]] == [1, 2, 3, 4]

        sheet = client.get(_sheet_url(resident.id), headers=auth(staff.nurse_a)).json()["data"]
        assert sheet["slot4_active"] is True

    def test_null_fourth_dose_flag_does_not_disable_it(self, client, auth, staff, resident, make_order):
        oid = make_order(dose4=True, times={4: time(22, 0)})
        r = client.put(f"{API}/mar/orders/{oid}", headers=auth(staff.nurse_a),
                       json={"notes": "x", "dose4_enabled": None})
        assert r.status_code == 422

        sheet = client.get(_sheet_url(resident.id), headers=auth(staff.nurse_a)).json()["data"]
        (order,) = sheet["orders"]
        assert order["dose4_enabled"] is True
        assert order["notes"] == ""
        assert [s["number"] for s in order["slots"]] == [1, 2, 3, 4]

    def test_field_edit_keeps_checkoffs(self, client, auth, staff, db, actors, make_order):
        oid = make_order()
        toggle_verification(db, oid, 1, actors.nurse_b, T0)

        r = client.put(f"{API}/mar/orders/{oid}", headers=auth(staff.nurse_a),
                       json={"notes": "tomar con agua"})
        assert r.status_code == 200
        slot1 = r.json()["data"]["slots"][0]
        assert slot1["checked"] is True
        assert slot1["verified_by"] == actors.nurse_b.user_id
        assert slot1["verified_by_name"] == "Nurse B"


class TestToggle:
    def test_toggle_and_lock_conflict(self, client, auth, staff, make_order):
        oid = make_order()
        url = f"{API}/mar/orders/{oid}/slots/2/toggle"

        r = client.post(url, headers=auth(staff.nurse_a))
        assert r.status_code == 200
        slot = r.json()["data"]
        assert slot["checked"] is True
        assert slot["verified_by_name"] == "Nurse A"

        r = client.post(url, headers=auth(staff.nurse_b))
        assert r.status_code == 409
        body = r.json()
        assert body["status"] is False
        assert body["error"]["code"] == "lock_denied"
        assert "locked by Nurse A" in body["error"]["msg"]

        r = client.post(url, headers=auth(staff.admin))
        assert r.status_code == 200
        assert r.json()["data"]["checked"] is False

    def test_caregiver_may_not_toggle(self, client, auth, staff, make_order):
        oid = make_order()
        r = client.post(f"{API}/mar/orders/{oid}/slots/1/toggle", headers=auth(staff.caregiver))
        assert r.status_code == 403

    def test_validation_and_not_found(self, client, auth, staff, make_order):
        oid = make_order(times={1: time(8, 0)})
        r = client.post(f"{API}/mar/orders/{oid}/slots/2/toggle", headers=auth(staff.nurse_a))
        assert r.status_code == 422
        r = client.post(f"{API}/mar/orders/{oid}/slots/4/toggle", headers=auth(staff.nurse_a))
        assert r.status_code == 422
        r = client.post(f"{API}/mar/orders/9999/slots/1/toggle", headers=auth(staff.nurse_a))
        assert r.status_code == 404

    def test_storage_failure_is_retryable(self, client, auth, staff, make_order, monkeypatch):
        from carelog.services import mar_toggle
        from carelog.services.mar_errors import PersistenceError

        def failing_write(*args, **kwargs):
            raise PersistenceError("storage unreachable")

        monkeypatch.setattr(mar_toggle, "update_dose_verification", failing_write)
        oid = make_order()

        r = client.post(f"{API}/mar/orders/{oid}/slots/1/toggle", headers=auth(staff.nurse_a))
        assert r.status_code == 503
        assert r.json()["error"]["code"] == "persistence_error"

    def test_lock_endpoint(self, client, auth, staff, make_order):
        oid = make_order()
        url = f"{API}/mar/orders/{oid}/slots/1/lock"

        r = client.get(url, headers=auth(staff.nurse_b))
        assert r.json()["data"]["allowed"] is True
        assert r.json()["data"]["rule"] == "unverified"

        client.post(f"{API}/mar/orders/{oid}/slots/1/toggle", headers=auth(staff.nurse_a))
        lock = client.get(url, headers=auth(staff.nurse_b)).json()["data"]
        assert lock["allowed"] is False
        assert lock["rule"] == "other_verifier"
        assert lock["locked_by"] == staff.nurse_a.id
        assert lock["reason"].startswith("locked by Nurse A")

    def test_dose_time_edit(self, client, auth, staff, make_order):
        oid = make_order()
        url = f"{API}/mar/orders/{oid}/slots/3/time"

        r = client.put(url, headers=auth(staff.nurse_b), json={"scheduled_time": "21:30:00"})
        assert r.status_code == 200
        assert r.json()["data"]["scheduled_time"] == "21:30:00"

        client.post(f"{API}/mar/orders/{oid}/slots/3/toggle", headers=auth(staff.nurse_a))
        r = client.put(url, headers=auth(staff.nurse_b), json={"scheduled_time": "22:00:00"})
        assert r.status_code == 409


class TestReadOnlyViews:
    def test_history(self, client, auth, staff, db, actors, resident, make_order):
        old = make_order("Atorvastatina", day=DAY - timedelta(days=2))
        make_order("Hoy", day=DAY)
        toggle_verification(db, old, 1, actors.nurse_c, T0 - timedelta(days=2))

        r = client.get(f"{API}/mar/residents/{resident.id}/history",
                       params={"current_date": DAY.isoformat()},
                       headers=auth(staff.caregiver))
        assert r.status_code == 200
        (day,) = r.json()["data"]
        assert day["date"] == (DAY - timedelta(days=2)).isoformat()
        (entry,) = day["entries"]
        assert entry["drug_name"] == "Atorvastatina"
        assert entry["slots"][0]["verified_by_name"] == "Nurse C"

    def test_history_days_bounds(self, client, auth, staff, resident):
        r = client.get(f"{API}/mar/residents/{resident.id}/history",
                       params={"days": 0}, headers=auth(staff.nurse_a))
        assert r.status_code == 422

    def test_audit_trail(self, client, auth, staff, make_order):
        oid = make_order()
        client.post(f"{API}/mar/orders/{oid}/slots/1/toggle", headers=auth(staff.nurse_a))
        client.post(f"{API}/mar/orders/{oid}/slots/1/toggle", headers=auth(staff.nurse_a))

        r = client.get(f"{API}/mar/orders/{oid}/audit", headers=auth(staff.nurse_b))
        assert r.status_code == 200
        assert [e["action"] for e in r.json()["data"]] == ["CREATE", "VERIFY", "UNVERIFY"]

        assert client.get(f"{API}/mar/orders/9999/audit", headers=auth(staff.nurse_b)).status_code == 404
