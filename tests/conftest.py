"""Pytest configuration and shared fixtures.

MongoDB is replaced by mongomock, so no database server is required.
"""
from __future__ import annotations

import copy
from datetime import datetime, timezone

import mongomock
import pytest

from repository import ensure_indexes
from services import ReportService, ReviewService, SettingsService, UserService

HOSPITAL = "hospital-1"
NOW = datetime(2024, 6, 15, 9, 30, tzinfo=timezone.utc)

# Revenue 5.7bn, expenses 3.5bn, assets 6bn = liabilities 2bn + equity 4bn.
LINE_ITEMS = {
    "revenue": {
        "patientCare": 2_500_000_000,
        "emergencyServices": 800_000_000,
        "surgery": 1_200_000_000,
        "laboratory": 500_000_000,
        "pharmacy": 600_000_000,
        "other": 100_000_000,
    },
    "expenses": {
        "salaries": 1_800_000_000,
        "medicalSupplies": 600_000_000,
        "equipment": 400_000_000,
        "utilities": 200_000_000,
        "maintenance": 150_000_000,
        "insurance": 250_000_000,
        "other": 100_000_000,
    },
    "assets": {
        "current": {
            "cash": 800_000_000,
            "accountsReceivable": 400_000_000,
            "inventory": 200_000_000,
            "other": 100_000_000,
        },
        "fixed": {
            "buildings": 3_000_000_000,
            "equipment": 1_000_000_000,
            "vehicles": 300_000_000,
            "other": 200_000_000,
        },
    },
    "liabilities": {
        "current": {
            "accountsPayable": 300_000_000,
            "shortTermDebt": 200_000_000,
            "accruedExpenses": 100_000_000,
            "other": 0,
        },
        "longTerm": {
            "longTermDebt": 1_400_000_000,
            "other": 0,
        },
    },
    "equity": {
        "capital": 3_000_000_000,
        "retainedEarnings": 800_000_000,
        "currentEarnings": 200_000_000,
    },
    "tax": {"rate": 0.25, "deductions": 500_000_000},
}


def report_payload(report_type: str = "monthly", year: int = 2024, month: int | None = 1,
                   quarter: int | None = None, **overrides) -> dict:
    payload = copy.deepcopy(LINE_ITEMS)
    payload.update({"reportType": report_type, "year": year})
    if report_type == "monthly":
        payload["month"] = month
    elif report_type == "quarterly":
        payload["quarter"] = quarter
    payload.update(overrides)
    return payload


def stored_report(**overrides) -> dict:
    """A report in its stored shape, ready for the derivation engine."""
    doc = copy.deepcopy(LINE_ITEMS)
    doc.update({"reportType": "monthly", "year": 2024, "month": 1, "quarter": None, "period": "January 2024"})
    doc.update(overrides)
    return doc


@pytest.fixture
def db():
    client = mongomock.MongoClient()
    database = client["hospital_finance_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def admin() -> dict:
    return {"id": "u-admin", "role": "admin", "hospitalId": HOSPITAL, "email": "admin@hospital.com"}


@pytest.fixture
def finance() -> dict:
    return {"id": "u-finance", "role": "finance", "hospitalId": HOSPITAL, "email": "finance@hospital.com"}


@pytest.fixture
def viewer() -> dict:
    return {"id": "u-viewer", "role": "viewer", "hospitalId": HOSPITAL, "email": "viewer@hospital.com"}


@pytest.fixture
def outsider() -> dict:
    return {"id": "u-outsider", "role": "admin", "hospitalId": "hospital-2", "email": "admin@other.com"}


@pytest.fixture
def reports(db, clock) -> ReportService:
    return ReportService(db, clock=clock)


@pytest.fixture
def reviews(db, clock) -> ReviewService:
    return ReviewService(db, clock=clock)


@pytest.fixture
def settings(db, clock) -> SettingsService:
    return SettingsService(db, clock=clock)


@pytest.fixture
def users(db, clock) -> UserService:
    return UserService(db, clock=clock)


@pytest.fixture
def draft(reports, finance):
    return reports.create_report(finance, report_payload())
