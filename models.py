"""
models.py
Lightweight domain definitions (plan rules, record fields, dataclasses).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from types import MappingProxyType


@dataclass(frozen=True)
class PlanRule:
    name: str
    amount: int
    valid_days: int


# Membership plans: price + validity window in calendar days
PLAN_RULES = MappingProxyType({
    "entry": PlanRule("entry", 100, 10),
    "silver": PlanRule("silver", 1770, 90),
    "gold": PlanRule("gold", 2950, 180),
    "platinum": PlanRule("platinum", 4720, 365),
})

DEFAULT_PLAN = "entry"

ACTIVE = "active"
EXPIRED = "expired"


@dataclass(frozen=True)
class FieldSpec:
    key: str  # name used by API callers
    column: str  # storage column, never taken from input
    transform: str | None = None  # "date" | "int" | None


# Public whitelist, in column order. Used for both create and update.
RECORD_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("regno", "regno", "int"),
    FieldSpec("name", "name"),
    FieldSpec("gender", "gender"),
    FieldSpec("caste", "caste"),
    FieldSpec("caste_category", "caste_category"),
    FieldSpec("gothram", "gothram"),
    FieldSpec("food_habits", "food_habits"),
    FieldSpec("reg_date", "reg_date", "date"),
    FieldSpec("plan", "plan"),
    FieldSpec("payment_mode", "payment_mode"),
    FieldSpec("transaction_id", "transaction_id"),
    FieldSpec("new_or_renewal", "new_or_renewal"),
    FieldSpec("marital_status", "marital_status"),
    FieldSpec("dob", "dob", "date"),
    FieldSpec("yob", "yob", "int"),
    FieldSpec("age", "age", "int"),
    FieldSpec("time_of_birth", "time_of_birth"),
    FieldSpec("place_of_birth", "place_of_birth"),
    FieldSpec("height", "height"),
    FieldSpec("weight", "weight"),
    FieldSpec("star", "star"),
    FieldSpec("paadham", "paadham"),
    FieldSpec("rasi", "rasi"),
    FieldSpec("lagnam", "lagnam"),
    FieldSpec("dosham", "dosham"),
    FieldSpec("education", "education"),
    FieldSpec("ug_degree", "ug_degree"),
    FieldSpec("ug_specialization", "ug_specialization"),
    FieldSpec("pg_degree", "pg_degree"),
    FieldSpec("pg_specialization", "pg_specialization"),
    FieldSpec("occupation", "occupation"),
    FieldSpec("annual_income", "annual_income"),
    FieldSpec("father_name", "father_name"),
    FieldSpec("father_occupation", "father_occupation"),
    FieldSpec("mother_name", "mother_name"),
    FieldSpec("mother_occupation", "mother_occupation"),
    FieldSpec("sibling_details", "sibling_details"),
    FieldSpec("native_place", "native_place"),
    FieldSpec("current_residence", "current_residence"),
    FieldSpec("address", "address"),
    FieldSpec("city", "city"),
    FieldSpec("pincode", "pincode"),
    FieldSpec("state", "state"),
    FieldSpec("country", "country"),
    FieldSpec("ownHouse", "own_house"),
    FieldSpec("property_details", "property_details"),
    FieldSpec("expectations", "expectations"),
    FieldSpec("remarks", "remarks"),
    FieldSpec("flashed_date", "flashed_date", "date"),
    FieldSpec("renewal_date", "renewal_date", "date"),
    FieldSpec("renewal_amount", "renewal_amount"),
    FieldSpec("contact1", "contact1"),
    FieldSpec("contact2", "contact2"),
    FieldSpec("contact3", "contact3"),
    FieldSpec("email", "email"),
)

# Derived from the plan rule; callers cannot set these.
COMPUTED_COLUMNS = ("amount", "valid_days", "expiry_date", "plan_status")

# Stamped by the core only.
SYSTEM_COLUMNS = ("is_deleted", "created_at", "updated_at", "created_by", "modified_by", "deleted_by")

# Columns offered by the filter-options endpoint
FILTER_COLUMNS = (
    "plan",
    "gender",
    "caste",
    "food_habits",
    "yob",
    "education",
    "marital_status",
    "current_residence",
)


@dataclass(frozen=True)
class Expiry:
    expiry_date: date
    amount: int
    valid_days: int
