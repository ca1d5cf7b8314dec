"""
utils.py
Dates, plan expiry, status, whitelist field mapping.
"""

from __future__ import annotations

import re
import warnings
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Mapping

import pandas as pd

from config import get_logger
from models import ACTIVE, DEFAULT_PLAN, EXPIRED, PLAN_RULES, RECORD_FIELDS, Expiry, FieldSpec, PlanRule

logger = get_logger(__name__)

_EPOCH_RE = re.compile(r"^-?\d+(\.\d+)?$")
# 15-03-2023, 5/3/2023
_DMY_NUMERIC_RE = re.compile(r"^(\d{1,2})[-/](\d{1,2})[-/](\d{4})$")
# 15-Mar-23, 1/March/2023
_DMY_NAMED_RE = re.compile(r"^(\d{1,2})[-/]([A-Za-z]{3,})[-/](\d{2,4})$")

# Epoch values above this are milliseconds
_MS_THRESHOLD = 1e12


def now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _from_epoch(text: str) -> datetime | None:
    num = float(text)
    millis = num if abs(num) > _MS_THRESHOLD else num * 1000
    try:
        return datetime.fromtimestamp(millis / 1000)
    except (OverflowError, OSError, ValueError):
        return None


def _parse_generic(text: str) -> datetime | None:
    with warnings.catch_warnings():
        # pandas warns when it has to guess day-first ordering
        warnings.simplefilter("ignore")
        parsed = pd.to_datetime(text, errors="coerce")
    if pd.isna(parsed):
        return None
    result = parsed.to_pydatetime()
    if result.tzinfo is not None:
        result = result.astimezone().replace(tzinfo=None)
    return result


def _parse_dmy_numeric(text: str) -> datetime | None:
    m = _DMY_NUMERIC_RE.match(text)
    if not m:
        return None
    day, month, year = m.group(1).zfill(2), m.group(2).zfill(2), m.group(3)
    try:
        return datetime.strptime(f"{year}-{month}-{day}", "%Y-%m-%d")
    except ValueError:
        return None


def _parse_dmy_named(text: str) -> datetime | None:
    m = _DMY_NAMED_RE.match(text)
    if not m:
        return None
    day, month, year = m.groups()
    if len(year) == 2:
        year = "20" + year
    return _parse_generic(f"{day} {month} {year}")


def normalize_date(value: Any) -> datetime:
    """
    Resolve any incoming date representation to a datetime.

    Accepts None/empty (=> now), datetime/date objects, epoch seconds or
    milliseconds (10+ digits), anything pandas can parse, D-M-YYYY and
    D-Mon-YY(YY). Input that matches none of these also resolves to now.
    """
    if not value:
        return datetime.now()
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())

    text = str(value).strip()
    if _EPOCH_RE.match(text) and len(text) >= 10:
        parsed = _from_epoch(text)
        if parsed is not None:
            return parsed

    for parser in (_parse_generic, _parse_dmy_numeric, _parse_dmy_named):
        parsed = parser(text)
        if parsed is not None:
            return parsed

    logger.warning("Unparseable date %r, defaulting to now", value)
    return datetime.now()


def to_iso_date(value: Any) -> str:
    return normalize_date(value).date().isoformat()


def resolve_plan(plan: Any, rules: Mapping[str, PlanRule] = PLAN_RULES) -> PlanRule:
    key = str(plan or DEFAULT_PLAN).strip().lower()
    return rules.get(key) or rules[DEFAULT_PLAN]


def calc_expiry(reg_date: Any, plan: Any, rules: Mapping[str, PlanRule] = PLAN_RULES) -> Expiry:
    """
    Expiry = registration date + plan validity, in calendar days.
    Unknown plans are priced as the entry plan.
    """
    rule = resolve_plan(plan, rules)
    start = normalize_date(reg_date).date()
    return Expiry(
        expiry_date=start + timedelta(days=rule.valid_days),
        amount=rule.amount,
        valid_days=rule.valid_days,
    )


def infer_status(expiry_date: Any, today: date | None = None) -> str:
    today = today or date.today()
    return ACTIVE if normalize_date(expiry_date).date() >= today else EXPIRED


# ---------- Field mapping ----------

class FieldMappingError(ValueError):
    """A whitelisted field carried a value that cannot be stored."""


class EmptyFieldMappingError(FieldMappingError):
    """None of the payload keys are in the whitelist."""


@dataclass(frozen=True)
class FieldMapping:
    columns: tuple[str, ...]
    values: tuple[Any, ...]

    def extend(self, extra: Mapping[str, Any]) -> "FieldMapping":
        """Append system-controlled columns; existing columns are overwritten in place."""
        columns = list(self.columns)
        values = list(self.values)
        for column, value in extra.items():
            if column in columns:
                values[columns.index(column)] = value
            else:
                columns.append(column)
                values.append(value)
        return FieldMapping(tuple(columns), tuple(values))


def _to_int(spec: FieldSpec, value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise FieldMappingError(f"{spec.key} must be an integer")
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise FieldMappingError(f"{spec.key} must be an integer")


def _transform(spec: FieldSpec, value: Any) -> Any:
    if value is not None and not isinstance(value, (str, int, float, bool)):
        raise FieldMappingError(f"{spec.key} must be a scalar value")
    if spec.transform == "int":
        return _to_int(spec, value)
    if spec.transform == "date":
        return to_iso_date(value) if value else value
    return value


def map_fields(payload: Mapping[str, Any], fields: tuple[FieldSpec, ...] = RECORD_FIELDS) -> FieldMapping:
    """
    Translate a partial payload into parallel (columns, values) in whitelist order.
    Keys outside the whitelist are dropped.
    """
    columns: list[str] = []
    values: list[Any] = []
    for spec in fields:
        if spec.key not in payload:
            continue
        columns.append(spec.column)
        values.append(_transform(spec, payload[spec.key]))
    if not columns:
        raise EmptyFieldMappingError("No valid fields provided")
    return FieldMapping(tuple(columns), tuple(values))
