"""
repository.py
Registrant record operations on top of db.py (create, list, fetch, update,
soft delete, renewals report) + lazy plan_status reconciliation on reads.
"""

from __future__ import annotations

import math
import re
import sqlite3
from datetime import date, timedelta
from typing import Any, Mapping

import db
from config import get_logger
from db import TABLE
from models import ACTIVE, COMPUTED_COLUMNS, EXPIRED, FILTER_COLUMNS, PLAN_RULES, RECORD_FIELDS, SYSTEM_COLUMNS, PlanRule
from utils import (
    FieldMapping,
    FieldMappingError,
    calc_expiry,
    infer_status,
    map_fields,
    normalize_date,
    now_iso,
    resolve_plan,
)

logger = get_logger(__name__)

_INT_RE = re.compile(r"^-?\d+$")

# Free-text search targets for the list `q` parameter
_SEARCH_COLUMNS = ("name", "email", "contact1", "current_residence", "caste")

_NEXT_REGNO_SQL = f"(SELECT COALESCE(MAX(regno), 0) + 1 FROM {TABLE})"

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000
# Upper bound on the renewals horizon, in days
MAX_RENEWAL_DAYS = 36500


class InvalidIdentifierError(ValueError):
    pass


class RecordNotFoundError(LookupError):
    pass


class DuplicateRegistrationError(Exception):
    pass


class StoreUnavailableError(RuntimeError):
    pass


def check_available() -> None:
    try:
        db.ping()
    except sqlite3.Error as exc:
        logger.error("Database unavailable: %s", exc)
        raise StoreUnavailableError("DB connection unavailable") from exc


def parse_identifier(raw: Any, label: str = "regno") -> int:
    text = str(raw).strip()
    if not _INT_RE.match(text):
        raise InvalidIdentifierError(f"Invalid {label}")
    return int(text)


def _quote(column: str) -> str:
    return f'"{column}"'


def _actor(payload: Mapping[str, Any], key: str) -> str | None:
    value = payload.get(key)
    return None if value is None else str(value)


def _is_duplicate(exc: sqlite3.IntegrityError) -> bool:
    return "UNIQUE" in str(exc).upper()


def row_to_record(row) -> dict[str, Any]:
    """Storage row -> API shape (external keys, boolean soft-delete flag)."""
    data = dict(row)
    record: dict[str, Any] = {"id": data["id"]}
    for spec in RECORD_FIELDS:
        record[spec.key] = data.get(spec.column)
    for column in COMPUTED_COLUMNS + SYSTEM_COLUMNS:
        record[column] = data.get(column)
    record["is_deleted"] = bool(record["is_deleted"])
    return record


# ---------- Status reconciliation ----------

def reconcile_status(row, today: date | None = None) -> str:
    """
    Recompute plan_status from the stored expiry date and persist it if it drifted.
    A failed write is logged and ignored; the fresh status is returned regardless.
    """
    status = infer_status(row["expiry_date"], today=today)
    if status != (row["plan_status"] or "").lower():
        try:
            db.execute(
                f"UPDATE {TABLE} SET plan_status = ?, updated_at = ? WHERE id = ?",
                (status, now_iso(), row["id"]),
            )
        except sqlite3.Error as exc:
            logger.warning("Could not persist plan_status=%s for record %s: %s", status, row["id"], exc)
    return status


def _read(row) -> dict[str, Any]:
    record = row_to_record(row)
    record["plan_status"] = reconcile_status(row)
    return record


# ---------- Writes ----------

def _plan_columns(reg_date: Any, plan: Any, rules: Mapping[str, PlanRule]) -> dict[str, Any]:
    reg = normalize_date(reg_date)
    rule = resolve_plan(plan, rules)
    expiry = calc_expiry(reg, rule.name, rules)
    return {
        "reg_date": reg.date().isoformat(),
        "plan": rule.name,
        "amount": expiry.amount,
        "valid_days": expiry.valid_days,
        "expiry_date": expiry.expiry_date.isoformat(),
        "plan_status": infer_status(expiry.expiry_date),
    }


def _insert(mapping: FieldMapping) -> int:
    columns = list(mapping.columns)
    values = list(mapping.values)
    if "regno" in columns and values[columns.index("regno")] is None:
        idx = columns.index("regno")
        del columns[idx]
        del values[idx]
    placeholders = ["?"] * len(columns)
    if "regno" not in columns:
        columns.append("regno")
        placeholders.append(_NEXT_REGNO_SQL)

    sql = f"INSERT INTO {TABLE} ({', '.join(_quote(c) for c in columns)}) VALUES ({', '.join(placeholders)})"
    try:
        return db.execute(sql, tuple(values))
    except sqlite3.IntegrityError as exc:
        if _is_duplicate(exc):
            raise DuplicateRegistrationError("Duplicate registration number (regno)") from exc
        raise


def create_record(payload: Mapping[str, Any], rules: Mapping[str, PlanRule] = PLAN_RULES) -> dict[str, Any]:
    """
    Insert a new registrant. Plan amount/validity/expiry/status are computed here,
    is_deleted and timestamps are forced.
    """
    mapping = map_fields(payload)
    actor = _actor(payload, "created_by")
    now = now_iso()
    system = _plan_columns(payload.get("reg_date"), payload.get("plan"), rules)
    system.update(
        {
            "is_deleted": 0,
            "created_at": now,
            "updated_at": now,
            "created_by": actor,
            "modified_by": actor,
        }
    )
    record_id = _insert(mapping.extend(system))
    row = db.fetch_one(f"SELECT * FROM {TABLE} WHERE id = ?", (record_id,))
    return row_to_record(row)


def update_record(raw_regno: Any, payload: Mapping[str, Any], rules: Mapping[str, PlanRule] = PLAN_RULES) -> dict[str, Any]:
    """
    Apply a partial update addressed by registration number.
    A new plan or reg_date recomputes the plan columns, falling back to the
    stored value for whichever of the two was not sent.
    """
    regno = parse_identifier(raw_regno)
    mapping = map_fields(payload)
    if "regno" in mapping.columns and mapping.values[mapping.columns.index("regno")] is None:
        raise FieldMappingError("regno cannot be empty")

    current = db.fetch_one(f"SELECT * FROM {TABLE} WHERE regno = ? AND is_deleted = 0 LIMIT 1", (regno,))
    if current is None:
        raise RecordNotFoundError("Record not found for update")

    extra: dict[str, Any] = {}
    if "plan" in payload or "reg_date" in payload:
        reg_date = payload["reg_date"] if "reg_date" in payload else current["reg_date"]
        plan = payload["plan"] if "plan" in payload else current["plan"]
        extra.update(_plan_columns(reg_date, plan, rules))
    extra["updated_at"] = now_iso()
    if "modified_by" in payload:
        extra["modified_by"] = _actor(payload, "modified_by")
    mapping = mapping.extend(extra)

    assignments = ", ".join(f"{_quote(c)} = ?" for c in mapping.columns)
    sql = f"UPDATE {TABLE} SET {assignments} WHERE regno = ? AND is_deleted = 0"
    try:
        changed = db.execute_rowcount(sql, mapping.values + (regno,))
    except sqlite3.IntegrityError as exc:
        if _is_duplicate(exc):
            raise DuplicateRegistrationError("Duplicate registration number (regno)") from exc
        raise
    if not changed:
        raise RecordNotFoundError("Record not found for update")

    new_regno = mapping.values[mapping.columns.index("regno")] if "regno" in mapping.columns else regno
    row = db.fetch_one(f"SELECT * FROM {TABLE} WHERE regno = ? AND is_deleted = 0 LIMIT 1", (new_regno,))
    return _read(row)


def soft_delete_record(raw_regno: Any, deleted_by: str | None = None) -> None:
    regno = parse_identifier(raw_regno)
    changed = db.execute_rowcount(
        f"UPDATE {TABLE} SET is_deleted = 1, updated_at = ?, deleted_by = ? WHERE regno = ?",
        (now_iso(), deleted_by, regno),
    )
    if not changed:
        raise RecordNotFoundError("Record not found")


# ---------- Reads ----------

def get_record(raw_id: Any) -> dict[str, Any]:
    record_id = parse_identifier(raw_id, label="ID")
    row = db.fetch_one(f"SELECT * FROM {TABLE} WHERE id = ? AND is_deleted = 0 LIMIT 1", (record_id,))
    if row is None:
        raise RecordNotFoundError("Record not found")
    return _read(row)


def registration_exists(raw_regno: Any) -> bool:
    regno = parse_identifier(raw_regno)
    # deleted rows still hold their regno under the unique constraint
    return db.fetch_one(f"SELECT 1 FROM {TABLE} WHERE regno = ? LIMIT 1", (regno,)) is not None


def _split_csv(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [item.strip() for item in str(raw).split(",") if item.strip()]


def list_records(
    q: str = "",
    plan: str | None = None,
    food_habits: str | None = None,
    caste: str | None = None,
    yob: str | None = None,
    current_residence: str | None = None,
    gender: str | None = None,
    education: str | None = None,
    marital_status: str | None = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> dict[str, Any]:
    clauses = ["is_deleted = 0"]
    params: list[Any] = []

    q = (q or "").strip()
    if q:
        ors = []
        if _INT_RE.match(q):
            ors.append("regno = ?")
            params.append(int(q))
        for column in _SEARCH_COLUMNS:
            ors.append(f"{_quote(column)} LIKE ?")
            params.append(f"%{q}%")
        clauses.append(f"({' OR '.join(ors)})")

    if plan:
        clauses.append(f"{_quote('plan')} = ?")
        params.append(plan.strip().lower())

    for column, value in (
        ("food_habits", food_habits),
        ("gender", gender),
        ("education", education),
        ("marital_status", marital_status),
    ):
        if value:
            clauses.append(f"{_quote(column)} = ?")
            params.append(value)

    castes = _split_csv(caste)
    if castes:
        clauses.append(f"caste IN ({', '.join('?' for _ in castes)})")
        params.extend(castes)

    years = [int(y) for y in _split_csv(yob) if _INT_RE.match(y)]
    if years:
        clauses.append(f"yob IN ({', '.join('?' for _ in years)})")
        params.extend(years)

    if current_residence:
        clauses.append("current_residence LIKE ?")
        params.append(f"%{current_residence}%")

    where = " AND ".join(clauses)
    page = max(1, page or 1)
    limit = max(1, min(MAX_PAGE_SIZE, limit or DEFAULT_PAGE_SIZE))
    offset = (page - 1) * limit

    total = db.fetch_one(f"SELECT COUNT(*) AS total FROM {TABLE} WHERE {where}", tuple(params))["total"]
    rows = db.fetch_all(
        f"SELECT * FROM {TABLE} WHERE {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
        tuple(params) + (limit, offset),
    )
    return {
        "items": [_read(r) for r in rows],
        "total": int(total),
        "page": page,
        "limit": limit,
        "totalPages": math.ceil(total / limit),
    }


def filter_options() -> dict[str, list[Any]]:
    options: dict[str, list[Any]] = {}
    for column in FILTER_COLUMNS:
        rows = db.fetch_all(
            f"SELECT DISTINCT {_quote(column)} AS value FROM {TABLE} "
            f"WHERE is_deleted = 0 AND {_quote(column)} IS NOT NULL ORDER BY {_quote(column)}"
        )
        options[column] = [r["value"] for r in rows]
    return options


def renewals_due(days: int = 10, today: date | None = None) -> list[dict[str, Any]]:
    """
    Records expiring within [today, today + days], soonest first, annotated with
    daysLeft. Read only: stored plan_status is not corrected here.
    """
    today = today or date.today()
    horizon = today + timedelta(days=min(days, MAX_RENEWAL_DAYS))
    rows = db.fetch_all(
        f"""
        SELECT * FROM {TABLE}
        WHERE is_deleted = 0 AND expiry_date IS NOT NULL AND expiry_date BETWEEN ? AND ?
        ORDER BY expiry_date ASC, id ASC
        """,
        (today.isoformat(), horizon.isoformat()),
    )

    due = []
    for row in rows:
        expiry = normalize_date(row["expiry_date"]).date()
        if not today <= expiry <= horizon:
            continue
        diff = (expiry - today).days
        record = row_to_record(row)
        record["expiry_date"] = expiry.isoformat()
        record["daysLeft"] = max(0, diff)
        record["plan_status"] = ACTIVE if diff >= 0 else EXPIRED
        due.append(record)
    return due
