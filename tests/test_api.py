"""
End-to-end tests through the HTTP API.

The app's database dependency is overridden with mongomock. The client is
not used as a context manager, so the startup hook never reaches a real
MongoDB.
"""
import io

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook

from auth import token_for_user
from conftest import HOSPITAL, report_payload
from exports import XLSX_MEDIA_TYPE
from main import app, get_db
from repository import UserRepository
from services import UserService


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def accounts(db, clock):
    """An admin, a finance officer and a viewer in the same hospital."""
    users = UserService(db, clock=clock)
    admin = users.seed_admin("Administrator", "admin@hospital.com", "password", HOSPITAL).model_dump(by_alias=True)
    created = {"admin": admin}
    for role in ("finance", "viewer"):
        created[role] = users.register_user(
            admin, {"name": role.title(), "email": f"{role}@hospital.com", "password": "secret1", "role": role}
        ).model_dump(by_alias=True)
    return created


def auth_headers(user):
    return {"Authorization": f"Bearer {token_for_user(user)}"}


@pytest.fixture
def as_admin(accounts):
    return auth_headers(accounts["admin"])


@pytest.fixture
def as_finance(accounts):
    return auth_headers(accounts["finance"])


@pytest.fixture
def as_viewer(accounts):
    return auth_headers(accounts["viewer"])


class TestHealthAndAuth:
    def test_root(self, client):
        res = client.get("/")
        assert res.status_code == 200
        assert "running" in res.json()["message"]

    def test_database_check(self, client):
        res = client.get("/test")
        assert res.status_code == 200
        assert res.json()["connection_status"] == "Connected"

    def test_login_flow(self, client, accounts):
        res = client.post("/auth/login", data={"username": "finance@hospital.com", "password": "secret1"})
        assert res.status_code == 200
        token = res.json()["access_token"]
        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["role"] == "finance"
        assert me.json()["hospitalId"] == HOSPITAL

    def test_bad_credentials(self, client, accounts):
        res = client.post("/auth/login", data={"username": "finance@hospital.com", "password": "wrong"})
        assert res.status_code == 401
        assert res.headers["WWW-Authenticate"] == "Bearer"
        assert res.json()["error"]["code"] == "AUTHENTICATION_FAILED"

    def test_missing_token(self, client):
        assert client.get("/reports").status_code == 401

    def test_forged_token(self, client):
        res = client.get("/reports", headers={"Authorization": "Bearer forged"})
        assert res.status_code == 401

    def test_seed_admin_is_one_time(self, client, db):
        first = client.post("/auth/seed-admin")
        assert first.json()["message"] == "Admin seeded"
        assert client.post("/auth/seed-admin").json()["message"] == "Admin exists"
        assert UserRepository(db).count({"role": "admin"}) == 1

    def test_register_requires_admin(self, client, as_finance, as_admin):
        body = {"name": "New", "email": "new@hospital.com", "password": "secret1", "role": "viewer"}
        assert client.post("/auth/register", json=body, headers=as_finance).status_code == 403
        res = client.post("/auth/register", json=body, headers=as_admin)
        assert res.status_code == 200
        assert res.json()["isActive"] is True


class TestReportEndpoints:
    def test_create_returns_computed_report(self, client, as_finance):
        res = client.post("/reports", json=report_payload(), headers=as_finance)
        assert res.status_code == 201
        data = res.json()
        assert data["status"] == "draft"
        assert data["period"] == "January 2024"
        assert data["tax"]["amount"] == 425_000_000
        assert data["tax"]["netTaxable"] == 1_700_000_000
        assert data["balanceSheet"]["isBalanced"] is True

    def test_duplicate_period_conflict(self, client, as_finance):
        first = client.post("/reports", json=report_payload(), headers=as_finance).json()
        res = client.post("/reports", json=report_payload(), headers=as_finance)
        assert res.status_code == 409
        error = res.json()["error"]
        assert error["code"] == "DUPLICATE_PERIOD"
        assert error["details"]["existing_id"] == first["id"]

    def test_invalid_body_rejected(self, client, as_finance):
        payload = report_payload()
        payload["revenue"]["surgery"] = -10
        assert client.post("/reports", json=payload, headers=as_finance).status_code == 422

    def test_viewer_forbidden_to_create(self, client, as_viewer):
        res = client.post("/reports", json=report_payload(), headers=as_viewer)
        assert res.status_code == 403
        assert res.json()["error"]["code"] == "PERMISSION_DENIED"

    def test_full_lifecycle(self, client, as_finance, as_admin, as_viewer, accounts):
        report_id = client.post("/reports", json=report_payload(), headers=as_finance).json()["id"]

        edited = client.put(f"/reports/{report_id}", json={"notes": "ready"}, headers=as_finance)
        assert edited.status_code == 200
        assert edited.json()["notes"] == "ready"

        assert client.get(f"/reports/{report_id}/actions", headers=as_finance).json() == ["edit", "submit"]
        assert client.post(f"/reports/{report_id}/submit", headers=as_finance).json()["status"] == "submitted"

        res = client.post(f"/reports/{report_id}/approve", headers=as_finance)
        assert res.status_code == 403

        approved = client.post(f"/reports/{report_id}/approve", headers=as_admin)
        assert approved.status_code == 200
        assert approved.json()["approvedBy"] == accounts["admin"]["id"]

        late_edit = client.put(f"/reports/{report_id}", json={"notes": "oops"}, headers=as_finance)
        assert late_edit.status_code == 409
        assert late_edit.json()["error"]["code"] == "INVALID_TRANSITION"

        stats = client.get("/dashboard", headers=as_viewer).json()
        assert stats["totalRevenue"] == 5_700_000_000
        assert stats["revenueGrowth"] == 0
        assert stats["latestPeriod"] == "January 2024"

        assert client.post(f"/reports/{report_id}/archive", headers=as_admin).json()["status"] == "archived"
        assert client.post("/reports", json=report_payload(), headers=as_finance).status_code == 201

    def test_reject_and_delete(self, client, as_finance, as_admin):
        report_id = client.post("/reports", json=report_payload(), headers=as_finance).json()["id"]
        client.post(f"/reports/{report_id}/submit", headers=as_finance)
        rejected = client.post(f"/reports/{report_id}/reject", headers=as_admin)
        assert rejected.json()["status"] == "draft"
        assert client.delete(f"/reports/{report_id}", headers=as_finance).status_code == 403
        assert client.delete(f"/reports/{report_id}", headers=as_admin).json() == {"ok": True}
        missing = client.get(f"/reports/{report_id}", headers=as_admin)
        assert missing.status_code == 404
        assert missing.json()["error"]["code"] == "NOT_FOUND"

    def test_list_and_filter(self, client, as_finance, as_viewer):
        for month in (1, 2):
            client.post("/reports", json=report_payload(month=month), headers=as_finance)
        client.post("/reports", json=report_payload("annual", year=2023), headers=as_finance)

        everything = client.get("/reports", headers=as_viewer).json()
        assert [r["period"] for r in everything] == ["February 2024", "January 2024", "2023"]
        monthly = client.get("/reports", params={"report_type": "monthly"}, headers=as_viewer).json()
        assert len(monthly) == 2
        assert client.get("/reports", params={"year": 2023}, headers=as_viewer).json()[0]["reportType"] == "annual"

    def test_export_csv(self, client, as_finance, as_viewer):
        client.post("/reports", json=report_payload(), headers=as_finance)
        res = client.get("/reports/export.csv", headers=as_viewer)
        assert res.status_code == 200
        assert res.headers["content-type"].startswith("text/csv")
        assert "attachment" in res.headers["content-disposition"]
        assert len(res.content.decode("utf-8-sig").splitlines()) == 2

    def test_export_xlsx(self, client, as_finance, as_viewer):
        client.post("/reports", json=report_payload(), headers=as_finance)
        res = client.get("/reports/export.xlsx", headers=as_viewer)
        assert res.status_code == 200
        assert res.headers["content-type"] == XLSX_MEDIA_TYPE
        assert "financial_reports.xlsx" in res.headers["content-disposition"]
        wb = load_workbook(io.BytesIO(res.content))
        assert wb.sheetnames == ["Summary", "Detail 1"]
        assert wb["Summary"].cell(row=2, column=1).value == "January 2024"

    def test_export_xlsx_requires_token(self, client):
        assert client.get("/reports/export.xlsx").status_code == 401

    def test_archive_stale(self, client, as_finance, as_admin):
        report_id = client.post("/reports", json=report_payload(year=2020, month=1), headers=as_finance).json()["id"]
        client.post(f"/reports/{report_id}/submit", headers=as_finance)
        client.post(f"/reports/{report_id}/approve", headers=as_admin)
        archived = client.post("/reports/archive-stale", headers=as_admin).json()
        assert [r["id"] for r in archived] == [report_id]


class TestReviewAndSettingsEndpoints:
    def test_review_flow(self, client, as_finance, accounts):
        report_id = client.post("/reports", json=report_payload(), headers=as_finance).json()["id"]
        body = {
            "reportId": report_id,
            "scheduledDate": "2030-01-15T09:00:00+00:00",
            "reviewType": "audit",
            "assignedTo": accounts["finance"]["id"],
        }
        created = client.post("/reviews", json=body, headers=as_finance)
        assert created.status_code == 201
        review_id = created.json()["id"]
        assert created.json()["status"] == "pending"

        moved = client.put(f"/reviews/{review_id}/status", json={"status": "completed"}, headers=as_finance)
        assert moved.json()["completedAt"] is not None
        back = client.put(f"/reviews/{review_id}/status", json={"status": "pending"}, headers=as_finance)
        assert back.status_code == 409

        listed = client.get("/reviews", params={"report_id": report_id}, headers=as_finance).json()
        assert [r["id"] for r in listed] == [review_id]
        assert client.get(f"/reviews/{review_id}", headers=as_finance).json()["reviewType"] == "audit"

    def test_settings(self, client, as_admin, as_finance):
        assert client.get("/settings", headers=as_finance).status_code == 404
        body = {
            "hospitalName": "RS Sehat",
            "address": "Jl. Merdeka 1",
            "phone": "+62-21-555-0100",
            "email": "finance@rssehat.com",
            "taxId": "01.234.567.8-901.000",
            "taxSettings": {"corporateTaxRate": 0.22},
        }
        assert client.put("/settings", json=body, headers=as_finance).status_code == 403
        saved = client.put("/settings", json=body, headers=as_admin)
        assert saved.status_code == 200
        assert saved.json()["taxSettings"]["corporateTaxRate"] == 0.22

        payload = report_payload(tax={"deductions": 0})
        created = client.post("/reports", json=payload, headers=as_finance).json()
        assert created["tax"]["rate"] == 0.22

    def test_user_admin_endpoints(self, client, as_admin, accounts):
        users = client.get("/users", headers=as_admin).json()
        assert len(users) == 3
        viewer_id = accounts["viewer"]["id"]
        promoted = client.put(f"/users/{viewer_id}/role", json={"role": "finance"}, headers=as_admin)
        assert promoted.json()["role"] == "finance"
        self_demote = client.put(f"/users/{accounts['admin']['id']}/role", json={"role": "viewer"}, headers=as_admin)
        assert self_demote.status_code == 403
        gone = client.post(f"/users/{viewer_id}/deactivate", headers=as_admin)
        assert gone.json()["isActive"] is False
        assert client.get("/reports", headers=auth_headers(accounts["viewer"])).status_code == 401
