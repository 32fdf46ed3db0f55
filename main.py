import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from pymongo.database import Database

import config
import database
from dashboard import DashboardStats
from errors import AuthenticationFailed, ReportingError
from exports import XLSX_MEDIA_TYPE
from logging_config import setup_logging
from repository import ensure_indexes
from schemas import (
    FinancialReport,
    HospitalSettings,
    HospitalSettingsIn,
    ReportCreate,
    ReportUpdate,
    ReviewCreate,
    ReviewSchedule,
    ReviewStatusUpdate,
    RoleUpdate,
    Token,
    UserCreate,
    UserPublic,
)
from services import ReportService, ReviewService, SettingsService, UserService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    ensure_indexes(database.db)
    logger.info("service started", extra={"database": config.DATABASE_NAME})
    yield


# App setup
app = FastAPI(title="Hospital Financial Reporting API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


@app.exception_handler(ReportingError)
async def reporting_error_handler(request: Request, exc: ReportingError):
    logger.warning(
        "request rejected",
        extra={"path": request.url.path, "error_code": exc.code, "detail": exc.message},
    )
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationFailed) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


# Dependencies

def get_db() -> Database:
    return database.db


def get_report_service(db: Database = Depends(get_db)) -> ReportService:
    return ReportService(db)


def get_review_service(db: Database = Depends(get_db)) -> ReviewService:
    return ReviewService(db)


def get_settings_service(db: Database = Depends(get_db)) -> SettingsService:
    return SettingsService(db)


def get_user_service(db: Database = Depends(get_db)) -> UserService:
    return UserService(db)


async def get_current_user(
    token: str = Depends(oauth2_scheme), users: UserService = Depends(get_user_service)
) -> dict:
    return users.verify_token(token)


# Health endpoints
@app.get("/")
def read_root():
    return {"message": "Hospital Financial Reporting API running"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": config.DATABASE_NAME,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        cols = db.list_collection_names()
        response.update({
            "database": "✅ Connected & Working",
            "connection_status": "Connected",
            "collections": cols[:10],
        })
    except Exception as e:
        logger.exception("database check failed")
        response["database"] = f"⚠️ {str(e)[:80]}"
    return response


# Auth endpoints
@app.post("/auth/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), users: UserService = Depends(get_user_service)):
    # OAuth2PasswordRequestForm has fields username and password
    access_token, _ = users.login(form_data.username, form_data.password)
    return {"access_token": access_token, "token_type": "bearer"}


@app.get("/auth/me", response_model=UserPublic)
async def me(current_user: dict = Depends(get_current_user)):
    return current_user


@app.post("/auth/register", response_model=UserPublic)
def register_user(
    payload: UserCreate,
    current_user: dict = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    return users.register_user(current_user, payload)


# Seed admin endpoint (one-time use)
@app.post("/auth/seed-admin")
def seed_admin(users: UserService = Depends(get_user_service)):
    seeded = users.seed_admin("Administrator", "admin@hospital.com", "password", "hospital-1")
    if seeded is None:
        return {"message": "Admin exists"}
    return {"message": "Admin seeded", "email": seeded.email, "password": "password"}


# Users
@app.get("/users", response_model=List[UserPublic])
def list_users(current_user: dict = Depends(get_current_user), users: UserService = Depends(get_user_service)):
    return users.list_users(current_user)


@app.put("/users/{user_id}/role", response_model=UserPublic)
def update_user_role(
    user_id: str,
    body: RoleUpdate,
    current_user: dict = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    return users.update_user_role(current_user, user_id, body.role)


@app.post("/users/{user_id}/deactivate", response_model=UserPublic)
def deactivate_user(
    user_id: str, current_user: dict = Depends(get_current_user), users: UserService = Depends(get_user_service)
):
    return users.deactivate_user(current_user, user_id)


# Reports
@app.post("/reports", response_model=FinancialReport, status_code=201)
def create_report(
    body: ReportCreate,
    current_user: dict = Depends(get_current_user),
    reports: ReportService = Depends(get_report_service),
):
    return reports.create_report(current_user, body)


@app.get("/reports", response_model=List[FinancialReport])
def list_reports(
    report_type: Optional[str] = None,
    status: Optional[str] = None,
    year: Optional[int] = None,
    limit: int = 50,
    skip: int = 0,
    current_user: dict = Depends(get_current_user),
    reports: ReportService = Depends(get_report_service),
):
    return reports.list_reports(current_user, report_type, status, year, limit, skip)


@app.get("/reports/export.csv")
def export_reports(
    report_type: Optional[str] = None,
    status: Optional[str] = None,
    year: Optional[int] = None,
    current_user: dict = Depends(get_current_user),
    reports: ReportService = Depends(get_report_service),
):
    content = reports.export_reports_csv(current_user, report_type, status, year)
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="financial_reports.csv"'},
    )


@app.get("/reports/export.xlsx")
def export_reports_excel(
    report_type: Optional[str] = None,
    status: Optional[str] = None,
    year: Optional[int] = None,
    current_user: dict = Depends(get_current_user),
    reports: ReportService = Depends(get_report_service),
):
    content = reports.export_reports_xlsx(current_user, report_type, status, year)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="financial_reports.xlsx"'},
    )


@app.post("/reports/archive-stale", response_model=List[FinancialReport])
def archive_stale_reports(
    current_user: dict = Depends(get_current_user), reports: ReportService = Depends(get_report_service)
):
    return reports.archive_stale_reports(current_user)


@app.get("/reports/{report_id}", response_model=FinancialReport)
def get_report(
    report_id: str, current_user: dict = Depends(get_current_user), reports: ReportService = Depends(get_report_service)
):
    return reports.get_report(current_user, report_id)


@app.get("/reports/{report_id}/actions", response_model=List[str])
def report_actions(
    report_id: str, current_user: dict = Depends(get_current_user), reports: ReportService = Depends(get_report_service)
):
    return reports.available_actions(current_user, report_id)


@app.put("/reports/{report_id}", response_model=FinancialReport)
def update_report(
    report_id: str,
    body: ReportUpdate,
    current_user: dict = Depends(get_current_user),
    reports: ReportService = Depends(get_report_service),
):
    return reports.update_report(current_user, report_id, body)


@app.post("/reports/{report_id}/submit", response_model=FinancialReport)
def submit_report(
    report_id: str, current_user: dict = Depends(get_current_user), reports: ReportService = Depends(get_report_service)
):
    return reports.submit_report(current_user, report_id)


@app.post("/reports/{report_id}/approve", response_model=FinancialReport)
def approve_report(
    report_id: str, current_user: dict = Depends(get_current_user), reports: ReportService = Depends(get_report_service)
):
    return reports.approve_report(current_user, report_id)


@app.post("/reports/{report_id}/reject", response_model=FinancialReport)
def reject_report(
    report_id: str, current_user: dict = Depends(get_current_user), reports: ReportService = Depends(get_report_service)
):
    return reports.reject_report(current_user, report_id)


@app.post("/reports/{report_id}/archive", response_model=FinancialReport)
def archive_report(
    report_id: str, current_user: dict = Depends(get_current_user), reports: ReportService = Depends(get_report_service)
):
    return reports.archive_report(current_user, report_id)


@app.delete("/reports/{report_id}")
def delete_report(
    report_id: str, current_user: dict = Depends(get_current_user), reports: ReportService = Depends(get_report_service)
):
    reports.delete_report(current_user, report_id)
    return {"ok": True}


# Dashboard
@app.get("/dashboard", response_model=DashboardStats)
def dashboard(
    report_type: Optional[str] = None,
    current_user: dict = Depends(get_current_user),
    reports: ReportService = Depends(get_report_service),
):
    return reports.get_dashboard(current_user, report_type)


# Review schedules
@app.post("/reviews", response_model=ReviewSchedule, status_code=201)
def create_review(
    body: ReviewCreate,
    current_user: dict = Depends(get_current_user),
    reviews: ReviewService = Depends(get_review_service),
):
    return reviews.create_review(current_user, body)


@app.get("/reviews", response_model=List[ReviewSchedule])
def list_reviews(
    report_id: Optional[str] = None,
    assigned_to: Optional[str] = None,
    status: Optional[str] = None,
    current_user: dict = Depends(get_current_user),
    reviews: ReviewService = Depends(get_review_service),
):
    return reviews.list_reviews(current_user, report_id, assigned_to, status)


@app.post("/reviews/mark-overdue", response_model=List[ReviewSchedule])
def mark_overdue_reviews(
    current_user: dict = Depends(get_current_user), reviews: ReviewService = Depends(get_review_service)
):
    return reviews.mark_overdue_reviews(current_user)


@app.get("/reviews/{review_id}", response_model=ReviewSchedule)
def get_review(
    review_id: str, current_user: dict = Depends(get_current_user), reviews: ReviewService = Depends(get_review_service)
):
    return reviews.get_review(current_user, review_id)


@app.put("/reviews/{review_id}/status", response_model=ReviewSchedule)
def update_review_status(
    review_id: str,
    body: ReviewStatusUpdate,
    current_user: dict = Depends(get_current_user),
    reviews: ReviewService = Depends(get_review_service),
):
    return reviews.update_review_status(current_user, review_id, body.status, body.notes)


# Hospital settings
@app.get("/settings", response_model=HospitalSettings)
def get_settings(
    current_user: dict = Depends(get_current_user), settings: SettingsService = Depends(get_settings_service)
):
    return settings.get_settings(current_user)


@app.put("/settings", response_model=HospitalSettings)
def upsert_settings(
    body: HospitalSettingsIn,
    current_user: dict = Depends(get_current_user),
    settings: SettingsService = Depends(get_settings_service),
):
    return settings.upsert_settings(current_user, body)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
