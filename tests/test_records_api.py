import sqlite3
from datetime import date, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import db
import repository
from utils import infer_status


def _create(client: TestClient, headers: dict, **payload) -> dict:
    response = client.post("/records", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def _stored(regno: int):
    return db.fetch_one("SELECT * FROM registrants WHERE regno = ?", (regno,))


# ---------- create ----------

def test_create_computes_plan_columns(client: TestClient, api_headers: dict):
    record = _create(client, api_headers, regno=101, name="Asha", plan="gold", reg_date="2024-01-01")

    assert record["amount"] == 2950
    assert record["valid_days"] == 180
    assert record["reg_date"] == "2024-01-01"
    assert record["expiry_date"] == "2024-06-29"
    assert record["plan_status"] == infer_status("2024-06-29")
    assert record["is_deleted"] is False
    assert record["created_at"]


def test_create_ignores_client_supplied_system_fields(client: TestClient, api_headers: dict):
    today = date.today()
    record = _create(
        client,
        api_headers,
        name="Ravi",
        plan="Platinum",
        reg_date=today.isoformat(),
        amount=1,
        valid_days=9999,
        plan_status="expired",
        is_deleted=True,
        created_at="1999-01-01",
        created_by="clerk",
    )

    assert record["plan"] == "platinum"
    assert record["amount"] == 4720
    assert record["valid_days"] == 365
    assert record["plan_status"] == "active"
    assert record["is_deleted"] is False
    assert record["created_at"] != "1999-01-01"
    assert record["created_by"] == "clerk"
    assert record["modified_by"] == "clerk"


def test_create_normalizes_day_first_dates(client: TestClient, api_headers: dict):
    record = _create(client, api_headers, name="Meena", reg_date="15-Mar-23", dob="5-Jan-1990")
    assert record["reg_date"] == "2023-03-15"
    assert record["dob"] == "1990-01-05"
    assert record["plan"] == "entry"
    assert record["expiry_date"] == "2023-03-25"


def test_create_defaults_reg_date_to_today_and_assigns_regno(client: TestClient, api_headers: dict):
    first = _create(client, api_headers, name="One")
    second = _create(client, api_headers, name="Two")

    assert first["reg_date"] == date.today().isoformat()
    assert (first["regno"], second["regno"]) == (1, 2)


def test_create_without_known_fields_is_rejected(client: TestClient, api_headers: dict):
    response = client.post("/records", json={"unknown": "x"}, headers=api_headers)
    assert response.status_code == 400
    assert response.json()["detail"]["message"] == "No fields provided for creation"
    assert db.fetch_one("SELECT COUNT(*) AS c FROM registrants")["c"] == 0


def test_create_rejects_nested_values(client: TestClient, api_headers: dict):
    response = client.post("/records", json={"name": {"first": "A"}}, headers=api_headers)
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "records.invalid_payload"


def test_create_rejects_non_numeric_year_of_birth(client: TestClient, api_headers: dict):
    response = client.post("/records", json={"name": "A", "yob": "abc"}, headers=api_headers)
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "records.invalid_payload"
    assert db.fetch_one("SELECT COUNT(*) AS c FROM registrants")["c"] == 0


def test_create_duplicate_regno_conflicts(client: TestClient, api_headers: dict):
    _create(client, api_headers, regno=7, name="First")
    response = client.post("/records", json={"regno": 7, "name": "Second"}, headers=api_headers)
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "records.duplicate_regno"


# ---------- shared secret / availability ----------

@pytest.mark.parametrize("headers", [{}, {"x-api-key": "wrong"}])
def test_writes_require_api_key(client: TestClient, headers: dict):
    response = client.post("/records", json={"name": "A"}, headers=headers)
    assert response.status_code == 401
    assert response.json()["detail"]["message"] == "Unauthorized: Invalid API Key"


def test_reads_do_not_require_api_key(client: TestClient):
    assert client.get("/records").status_code == 200


def test_store_unavailable_returns_503(client: TestClient, monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.setattr(db, "DB_FILE", tmp_path / "missing" / "registrants.db")

    for path in ("/records", "/records/1", "/records/renewals-due", "/health"):
        response = client.get(path)
        assert response.status_code == 503, path
        assert response.json()["detail"]["code"] == "store.unavailable"


def test_uninitialized_store_returns_503(client: TestClient, monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.setattr(db, "DB_FILE", tmp_path / "fresh.db")

    response = client.get("/records")

    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "store.unavailable"


def test_unknown_route_returns_json_404(client: TestClient):
    response = client.get("/nope")
    assert response.status_code == 404
    assert response.json()["detail"]["message"] == "Route not found: GET /nope"


# ---------- list / filters ----------

def test_list_paginates_newest_first(client: TestClient, api_headers: dict):
    for regno in range(1, 6):
        _create(client, api_headers, regno=regno, name=f"Member {regno}")

    payload = client.get("/records", params={"page": 2, "limit": 2}).json()

    assert payload["total"] == 5
    assert payload["page"] == 2
    assert payload["limit"] == 2
    assert payload["totalPages"] == 3
    assert [item["regno"] for item in payload["items"]] == [3, 2]


def test_list_search_and_filters(client: TestClient, api_headers: dict):
    _create(client, api_headers, regno=11, name="Lakshmi", caste="A", yob=1990, gender="F", current_residence="Chennai")
    _create(client, api_headers, regno=12, name="Karthik", caste="B", yob=1988, gender="M", current_residence="Madurai")
    _create(client, api_headers, regno=13, name="Priya", caste="C", yob=1990, gender="F", plan="gold")

    def regnos(**params):
        return sorted(item["regno"] for item in client.get("/records", params=params).json()["items"])

    assert regnos(q="laksh") == [11]
    assert regnos(q="12") == [12]
    assert regnos(caste="A, B") == [11, 12]
    assert regnos(yob="1990,abc") == [11, 13]
    assert regnos(gender="F", plan="GOLD") == [13]
    assert regnos(currentResidingLocation="chen") == [11]


def test_list_excludes_soft_deleted(client: TestClient, api_headers: dict):
    _create(client, api_headers, regno=1, name="Keep")
    _create(client, api_headers, regno=2, name="Drop")
    client.patch("/records/2/delete", json={"deletedBy": "admin"}, headers=api_headers)

    payload = client.get("/records").json()
    assert payload["total"] == 1
    assert [item["regno"] for item in payload["items"]] == [1]


def test_filter_options_list_distinct_values(client: TestClient, api_headers: dict):
    _create(client, api_headers, regno=1, name="A", caste="X", gender="F")
    _create(client, api_headers, regno=2, name="B", caste="Y", gender="F", plan="silver")
    _create(client, api_headers, regno=3, name="C", caste="Z")
    client.patch("/records/3/delete", json={}, headers=api_headers)

    options = client.get("/records/filters").json()

    assert options["caste"] == ["X", "Y"]
    assert options["gender"] == ["F"]
    assert options["plan"] == ["entry", "silver"]
    assert options["education"] == []


# ---------- status reconciliation ----------

def test_read_corrects_drifted_status(client: TestClient, api_headers: dict):
    created = _create(client, api_headers, regno=21, name="Old", reg_date="2020-01-01")
    db.execute("UPDATE registrants SET plan_status = 'active' WHERE regno = 21")

    record = client.get(f"/records/{created['id']}").json()

    assert record["plan_status"] == "expired"
    assert _stored(21)["plan_status"] == "expired"


def test_list_corrects_drifted_status(client: TestClient, api_headers: dict):
    _create(client, api_headers, regno=22, name="Old", reg_date="2020-01-01")
    db.execute("UPDATE registrants SET plan_status = 'ACTIVE' WHERE regno = 22")

    items = client.get("/records").json()["items"]

    assert items[0]["plan_status"] == "expired"
    assert _stored(22)["plan_status"] == "expired"


def test_reconcile_compares_status_case_insensitively(monkeypatch: pytest.MonkeyPatch):
    def unexpected_write(sql, params=()):
        raise AssertionError("status already matches, nothing to write")

    monkeypatch.setattr(repository.db, "execute", unexpected_write)
    row = {"id": 1, "expiry_date": "2020-01-01", "plan_status": "EXPIRED"}

    assert repository.reconcile_status(row, today=date(2024, 1, 1)) == "expired"


def test_failed_status_write_back_is_not_fatal(client: TestClient, api_headers: dict, monkeypatch: pytest.MonkeyPatch):
    created = _create(client, api_headers, regno=23, name="Old", reg_date="2020-01-01")
    db.execute("UPDATE registrants SET plan_status = 'active' WHERE regno = 23")

    def broken_execute(sql, params=()):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(repository.db, "execute", broken_execute)

    response = client.get(f"/records/{created['id']}")

    assert response.status_code == 200
    assert response.json()["plan_status"] == "expired"
    assert _stored(23)["plan_status"] == "active"


# ---------- fetch / check ----------

def test_fetch_by_id(client: TestClient, api_headers: dict):
    created = _create(client, api_headers, regno=31, name="Fetch", ownHouse="yes")
    record = client.get(f"/records/{created['id']}").json()
    assert record["regno"] == 31
    assert record["ownHouse"] == "yes"


def test_fetch_invalid_or_missing_id(client: TestClient):
    assert client.get("/records/abc").status_code == 400
    assert client.get("/records/999").status_code == 404


def test_check_id(client: TestClient, api_headers: dict):
    _create(client, api_headers, regno=41, name="Check")
    assert client.get("/records/check-id/41").json() == {"exists": True}
    assert client.get("/records/check-id/42").json() == {"exists": False}
    assert client.get("/records/check-id/4x").status_code == 400


# ---------- update ----------

def test_update_plan_only_uses_stored_reg_date(client: TestClient, api_headers: dict):
    _create(client, api_headers, regno=51, name="Up", plan="entry", reg_date="2024-01-01")

    response = client.put("/records/51", json={"plan": "silver", "modified_by": "desk"}, headers=api_headers)

    assert response.status_code == 200, response.text
    record = response.json()
    assert record["reg_date"] == "2024-01-01"
    assert record["amount"] == 1770
    assert record["valid_days"] == 90
    assert record["expiry_date"] == "2024-03-31"
    assert record["modified_by"] == "desk"


def test_update_reg_date_keeps_plan(client: TestClient, api_headers: dict):
    _create(client, api_headers, regno=52, name="Up", plan="gold", reg_date="2024-01-01")
    today = date.today()

    record = client.put("/records/52", json={"reg_date": today.isoformat()}, headers=api_headers).json()

    assert record["plan"] == "gold"
    assert record["expiry_date"] == (today + timedelta(days=180)).isoformat()
    assert record["plan_status"] == "active"


def test_update_plain_attribute_leaves_plan_columns(client: TestClient, api_headers: dict):
    created = _create(client, api_headers, regno=53, name="Up", plan="gold", reg_date="2024-01-01")

    record = client.put("/records/53", json={"city": "Salem", "amount": 5}, headers=api_headers).json()

    assert record["city"] == "Salem"
    assert record["amount"] == 2950
    assert record["expiry_date"] == created["expiry_date"]
    assert record["updated_at"]


def test_update_rejects_payload_without_known_fields(client: TestClient, api_headers: dict):
    _create(client, api_headers, regno=54, name="Up")
    response = client.put("/records/54", json={"is_deleted": True, "bogus": 1}, headers=api_headers)
    assert response.status_code == 400
    assert response.json()["detail"]["message"] == "No valid fields provided for update"


def test_update_missing_deleted_or_invalid(client: TestClient, api_headers: dict):
    _create(client, api_headers, regno=55, name="Gone")
    client.patch("/records/55/delete", json={"deletedBy": "admin"}, headers=api_headers)

    assert client.put("/records/55", json={"name": "Back"}, headers=api_headers).status_code == 404
    assert client.put("/records/999", json={"name": "X"}, headers=api_headers).status_code == 404
    assert client.put("/records/x1", json={"name": "X"}, headers=api_headers).status_code == 400


def test_update_to_existing_regno_conflicts(client: TestClient, api_headers: dict):
    _create(client, api_headers, regno=56, name="A")
    _create(client, api_headers, regno=57, name="B")
    response = client.put("/records/57", json={"regno": 56}, headers=api_headers)
    assert response.status_code == 409


def test_update_can_change_regno(client: TestClient, api_headers: dict):
    _create(client, api_headers, regno=58, name="Renumber")
    record = client.put("/records/58", json={"regno": "580"}, headers=api_headers).json()
    assert record["regno"] == 580


# ---------- soft delete ----------

def test_soft_delete_flags_row(client: TestClient, api_headers: dict):
    created = _create(client, api_headers, regno=61, name="Bye")

    response = client.patch("/records/61/delete", json={"deletedBy": "admin"}, headers=api_headers)

    assert response.status_code == 200
    assert response.json() == {"message": "Record successfully marked as deleted"}
    row = _stored(61)
    assert row["is_deleted"] == 1
    assert row["deleted_by"] == "admin"
    assert client.get(f"/records/{created['id']}").status_code == 404
    # regno stays reserved
    assert client.get("/records/check-id/61").json() == {"exists": True}


def test_soft_delete_unknown_regno(client: TestClient, api_headers: dict):
    assert client.patch("/records/404/delete", json={}, headers=api_headers).status_code == 404
    assert client.patch("/records/abc/delete", json={}, headers=api_headers).status_code == 400


# ---------- renewals ----------

def test_renewals_due_window(client: TestClient, api_headers: dict):
    today = date.today()
    # entry plan: 10 days validity
    _create(client, api_headers, regno=71, name="Soon", reg_date=(today - timedelta(days=5)).isoformat())
    _create(client, api_headers, regno=72, name="Lapsed", reg_date=(today - timedelta(days=11)).isoformat())
    _create(client, api_headers, regno=73, name="Today", reg_date=(today - timedelta(days=10)).isoformat())
    _create(client, api_headers, regno=74, name="Later", plan="gold", reg_date=today.isoformat())

    due = client.get("/records/renewals-due").json()

    assert [(r["regno"], r["daysLeft"], r["plan_status"]) for r in due] == [
        (73, 0, "active"),
        (71, 5, "active"),
    ]


def test_renewals_due_custom_horizon_and_no_write_back(client: TestClient, api_headers: dict):
    today = date.today()
    _create(client, api_headers, regno=75, name="Gold", plan="gold", reg_date=(today - timedelta(days=170)).isoformat())
    db.execute("UPDATE registrants SET plan_status = 'expired' WHERE regno = 75")

    assert client.get("/records/renewals-due", params={"days": 5}).json() == []
    due = client.get("/records/renewals-due", params={"days": 30}).json()

    assert due[0]["daysLeft"] == 10
    assert due[0]["plan_status"] == "active"
    assert _stored(75)["plan_status"] == "expired"


def test_renewals_due_rejects_out_of_range_horizon(client: TestClient):
    assert client.get("/records/renewals-due", params={"days": 1_000_000_000}).status_code == 422
    assert client.get("/records/renewals-due", params={"days": -1}).status_code == 422


def test_renewals_due_clamps_horizon(db_file):
    assert repository.renewals_due(days=10**9, today=date(2024, 1, 1)) == []


def test_health(client: TestClient):
    assert client.get("/health").json() == {"status": "ok"}
