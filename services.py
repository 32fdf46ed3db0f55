"""
Use-case layer for reports, review schedules, hospital settings and users.

Every operation takes the acting user (a public user document carrying
``id``, ``role`` and ``hospitalId``) and works only on records of the
actor's hospital; records of other hospitals resolve to NotFound.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError
from pymongo.database import Database

import config
import lifecycle
import permissions
from auth import decode_token, hash_password, token_for_user, verify_password
from dashboard import DashboardStats, compute_dashboard_stats
from derivation import apply_derived
from errors import AuthenticationFailed, DuplicatePeriod, NotFound, PermissionDenied, ValidationError
from exports import reports_to_csv, reports_to_xlsx
from repository import SETTINGS, REVIEWS, MongoRepository, ReportRepository, UserRepository
from schemas import (
    FinancialReport,
    HospitalSettings,
    HospitalSettingsIn,
    ReportCreate,
    ReportingSettings,
    ReportUpdate,
    ReviewCreate,
    ReviewSchedule,
    User,
    UserCreate,
    UserPublic,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # Stores that drop tzinfo hand back naive datetimes; they are UTC.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def parse(model: Type[M], data: Any) -> M:
    """Validate input against a schema, surfacing failures as ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except SchemaError as exc:
        errors = [
            {"loc": [str(p) for p in err["loc"]], "msg": err["msg"], "type": err["type"]}
            for err in exc.errors()
        ]
        raise ValidationError(f"Invalid {model.__name__} data", details={"errors": errors}) from exc


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in doc.items() if k != "passwordHash"}


def require_viewer(actor: dict) -> None:
    if not permissions.can_view_reports(actor.get("role")):
        raise PermissionDenied(
            f"Role '{actor.get('role')}' may not view reports",
            details={"role": actor.get("role"), "permission": permissions.VIEW_REPORTS},
        )


class ReportService:
    def __init__(self, db: Database, clock: Optional[Clock] = None):
        self.reports = ReportRepository(db)
        self.settings = MongoRepository(db, SETTINGS)
        self.clock = clock or utcnow

    # Helpers

    def _load(self, actor: dict, report_id: str) -> Dict[str, Any]:
        doc = self.reports.find_by_id(report_id)
        if not doc or doc.get("hospitalId") != actor.get("hospitalId"):
            raise NotFound("Report not found", details={"report_id": report_id})
        return doc

    def _hospital_settings(self, hospital_id: str) -> Optional[Dict[str, Any]]:
        return self.settings.find_one({"hospitalId": hospital_id})

    def default_tax_rate(self, hospital_id: str) -> float:
        settings = self._hospital_settings(hospital_id)
        if settings:
            rate = settings.get("taxSettings", {}).get("corporateTaxRate")
            if rate is not None:
                return rate
        return config.DEFAULT_TAX_RATE

    def _archive_after_months(self, hospital_id: str) -> int:
        settings = self._hospital_settings(hospital_id)
        if settings and settings.get("reportingSettings"):
            return ReportingSettings.model_validate(settings["reportingSettings"]).archive_after_months
        return ReportingSettings().archive_after_months

    def _transition(self, actor: dict, report_id: str, action: str, **fields: Any) -> FinancialReport:
        doc = self._load(actor, report_id)
        source = doc["status"]
        target = lifecycle.check_transition(action, actor, source)
        doc["status"] = target
        doc.update(fields)
        doc["updatedAt"] = self.clock()
        saved = self.reports.save(doc)
        logger.info(
            "report %s",
            action,
            extra={"report_id": report_id, "actor_id": actor.get("id"), "from_status": source, "to_status": target},
        )
        return FinancialReport.model_validate(saved)

    # Operations

    def create_report(self, actor: dict, data: Any) -> FinancialReport:
        permissions.require_permission(actor, permissions.CREATE_REPORT)
        payload = parse(ReportCreate, data)
        hospital_id = actor["hospitalId"]

        existing = self.reports.find_live_for_period(
            hospital_id, payload.report_type, payload.year, payload.month, payload.quarter
        )
        if existing:
            logger.warning(
                "duplicate period rejected",
                extra={"hospital_id": hospital_id, "existing_id": existing["id"], "actor_id": actor.get("id")},
            )
            raise DuplicatePeriod(
                "A report for this period already exists",
                details={"existing_id": existing["id"], "status": existing["status"]},
            )

        now = self.clock()
        rate = payload.tax.rate if payload.tax.rate is not None else self.default_tax_rate(hospital_id)
        doc = payload.model_dump(by_alias=True)
        doc.update({
            "hospitalId": hospital_id,
            "period": lifecycle.period_label(payload.report_type, payload.year, payload.month, payload.quarter),
            "tax": {"rate": rate, "deductions": payload.tax.deductions},
            "status": lifecycle.DRAFT,
            "createdBy": actor["id"],
            "approvedBy": None,
            "approvedAt": None,
            "createdAt": now,
            "updatedAt": now,
        })
        saved = self.reports.save(apply_derived(doc))
        logger.info(
            "report created",
            extra={"report_id": saved["id"], "hospital_id": hospital_id, "actor_id": actor.get("id")},
        )
        return FinancialReport.model_validate(saved)

    def get_report(self, actor: dict, report_id: str) -> FinancialReport:
        require_viewer(actor)
        return FinancialReport.model_validate(self._load(actor, report_id))

    def _query(self, actor: dict, report_type: Optional[str] = None, status: Optional[str] = None,
               year: Optional[int] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"hospitalId": actor["hospitalId"]}
        if report_type and report_type != "all":
            query["reportType"] = report_type
        if status and status != "all":
            query["status"] = status
        if year:
            query["year"] = year
        # Period order is derived from type-dependent fields, so sort here rather than in Mongo.
        return sorted(self.reports.query(query), key=lifecycle.period_sort_key, reverse=True)

    def list_reports(self, actor: dict, report_type: Optional[str] = None, status: Optional[str] = None,
                     year: Optional[int] = None, limit: int = 50, skip: int = 0) -> List[FinancialReport]:
        require_viewer(actor)
        docs = self._query(actor, report_type, status, year)
        end = skip + limit if limit else None
        return [FinancialReport.model_validate(d) for d in docs[skip:end]]

    def update_report(self, actor: dict, report_id: str, data: Any) -> FinancialReport:
        doc = self._load(actor, report_id)
        lifecycle.check_transition("edit", actor, doc["status"])
        changes = parse(ReportUpdate, data)

        for name in changes.model_fields_set:
            value = getattr(changes, name)
            if name == "notes":
                doc["notes"] = value
            elif name == "tax":
                if value is None:
                    continue
                tax = dict(doc.get("tax") or {})
                if value.rate is not None:
                    tax["rate"] = value.rate
                if "deductions" in value.model_fields_set:
                    tax["deductions"] = value.deductions
                doc["tax"] = tax
            elif value is not None:
                doc[ReportUpdate.model_fields[name].alias] = value.model_dump(by_alias=True)

        doc = apply_derived(doc)
        doc["updatedAt"] = self.clock()
        saved = self.reports.save(doc)
        logger.info(
            "report edited",
            extra={"report_id": report_id, "actor_id": actor.get("id"), "status": doc["status"],
                   "fields": sorted(changes.model_fields_set)},
        )
        return FinancialReport.model_validate(saved)

    def submit_report(self, actor: dict, report_id: str) -> FinancialReport:
        return self._transition(actor, report_id, "submit")

    def approve_report(self, actor: dict, report_id: str) -> FinancialReport:
        return self._transition(actor, report_id, "approve", approvedBy=actor["id"], approvedAt=self.clock())

    def reject_report(self, actor: dict, report_id: str) -> FinancialReport:
        return self._transition(actor, report_id, "reject", approvedBy=None, approvedAt=None)

    def archive_report(self, actor: dict, report_id: str) -> FinancialReport:
        return self._transition(actor, report_id, "archive")

    def delete_report(self, actor: dict, report_id: str) -> None:
        doc = self._load(actor, report_id)
        lifecycle.check_transition("delete", actor, doc["status"])
        self.reports.delete(report_id)
        logger.info("report deleted", extra={"report_id": report_id, "actor_id": actor.get("id")})

    def archive_stale_reports(self, actor: dict, now: Optional[datetime] = None) -> List[FinancialReport]:
        """Archive approved reports older than the hospital's archiveAfterMonths."""
        permissions.require_permission(actor, permissions.ARCHIVE_REPORTS)
        now = now or self.clock()
        months = self._archive_after_months(actor["hospitalId"])
        due = [
            doc for doc in self._query(actor, status=lifecycle.APPROVED)
            if lifecycle.is_due_for_archive(doc, months, now)
        ]
        archived = [self._transition(actor, doc["id"], "archive") for doc in due]
        logger.info(
            "stale reports archived",
            extra={"hospital_id": actor["hospitalId"], "count": len(archived), "archive_after_months": months},
        )
        return archived

    def get_dashboard(self, actor: dict, report_type: Optional[str] = None) -> DashboardStats:
        require_viewer(actor)
        return compute_dashboard_stats(self._query(actor, report_type, lifecycle.APPROVED))

    def export_reports_csv(self, actor: dict, report_type: Optional[str] = None, status: Optional[str] = None,
                           year: Optional[int] = None) -> bytes:
        permissions.require_permission(actor, permissions.EXPORT_REPORTS)
        docs = self._query(actor, report_type, status, year)
        logger.info("reports exported", extra={"hospital_id": actor["hospitalId"], "count": len(docs)})
        return reports_to_csv(docs)

    def export_reports_xlsx(self, actor: dict, report_type: Optional[str] = None, status: Optional[str] = None,
                            year: Optional[int] = None) -> bytes:
        """Excel workbook with a summary sheet and one detail sheet per report."""
        permissions.require_permission(actor, permissions.EXPORT_REPORTS)
        docs = self._query(actor, report_type, status, year)
        logger.info("reports exported", extra={"hospital_id": actor["hospitalId"], "count": len(docs),
                                                "format": "xlsx"})
        return reports_to_xlsx(docs)

    def available_actions(self, actor: dict, report_id: str) -> List[str]:
        require_viewer(actor)
        return lifecycle.available_actions(actor, self._load(actor, report_id)["status"])


class ReviewService:
    def __init__(self, db: Database, clock: Optional[Clock] = None):
        self.reviews = MongoRepository(db, REVIEWS)
        self.reports = ReportRepository(db)
        self.users = UserRepository(db)
        self.clock = clock or utcnow

    def _load(self, actor: dict, review_id: str) -> Dict[str, Any]:
        doc = self.reviews.find_by_id(review_id)
        if not doc or doc.get("hospitalId") != actor.get("hospitalId"):
            raise NotFound("Review schedule not found", details={"review_id": review_id})
        return doc

    def create_review(self, actor: dict, data: Any) -> ReviewSchedule:
        permissions.require_permission(actor, permissions.EDIT_REPORT)
        payload = parse(ReviewCreate, data)
        hospital_id = actor["hospitalId"]

        report = self.reports.find_by_id(payload.report_id)
        if not report or report.get("hospitalId") != hospital_id:
            raise NotFound("Report not found", details={"report_id": payload.report_id})
        assignee = self.users.find_by_id(payload.assigned_to)
        if not assignee or assignee.get("hospitalId") != hospital_id or not assignee.get("isActive", True):
            raise NotFound("Assigned user not found", details={"user_id": payload.assigned_to})

        now = self.clock()
        doc = payload.model_dump(by_alias=True)
        doc.update({
            "hospitalId": hospital_id,
            "status": "pending",
            "completedAt": None,
            "createdAt": now,
            "updatedAt": now,
        })
        saved = self.reviews.save(doc)
        logger.info(
            "review scheduled",
            extra={"review_id": saved["id"], "report_id": payload.report_id, "assigned_to": payload.assigned_to},
        )
        return ReviewSchedule.model_validate(saved)

    def get_review(self, actor: dict, review_id: str) -> ReviewSchedule:
        require_viewer(actor)
        return ReviewSchedule.model_validate(self._load(actor, review_id))

    def list_reviews(self, actor: dict, report_id: Optional[str] = None, assigned_to: Optional[str] = None,
                     status: Optional[str] = None) -> List[ReviewSchedule]:
        require_viewer(actor)
        query: Dict[str, Any] = {"hospitalId": actor["hospitalId"]}
        if report_id:
            query["reportId"] = report_id
        if assigned_to:
            query["assignedTo"] = assigned_to
        if status:
            query["status"] = status
        docs = sorted(self.reviews.query(query), key=lambda d: as_utc(d["scheduledDate"]))
        return [ReviewSchedule.model_validate(d) for d in docs]

    def _move(self, doc: Dict[str, Any], status: str, notes: Optional[str] = None) -> Dict[str, Any]:
        lifecycle.check_review_transition(doc["status"], status)
        now = self.clock()
        doc["status"] = status
        if status == "completed":
            doc["completedAt"] = now
        if notes is not None:
            doc["notes"] = notes
        doc["updatedAt"] = now
        return self.reviews.save(doc)

    def update_review_status(self, actor: dict, review_id: str, status: str,
                             notes: Optional[str] = None) -> ReviewSchedule:
        permissions.require_permission(actor, permissions.EDIT_REPORT)
        doc = self._load(actor, review_id)
        source = doc["status"]
        saved = self._move(doc, status, notes)
        logger.info(
            "review status changed",
            extra={"review_id": review_id, "from_status": source, "to_status": status, "actor_id": actor.get("id")},
        )
        return ReviewSchedule.model_validate(saved)

    def mark_overdue_reviews(self, actor: dict, now: Optional[datetime] = None) -> List[ReviewSchedule]:
        permissions.require_permission(actor, permissions.EDIT_REPORT)
        now = as_utc(now or self.clock())
        open_reviews = self.reviews.query({
            "hospitalId": actor["hospitalId"],
            "status": {"$in": list(lifecycle.OPEN_REVIEW_STATUSES)},
        })
        overdue = [
            ReviewSchedule.model_validate(self._move(doc, "overdue"))
            for doc in open_reviews
            if as_utc(doc["scheduledDate"]) < now
        ]
        if overdue:
            logger.info("reviews marked overdue", extra={"hospital_id": actor["hospitalId"], "count": len(overdue)})
        return overdue


class SettingsService:
    def __init__(self, db: Database, clock: Optional[Clock] = None):
        self.settings = MongoRepository(db, SETTINGS)
        self.clock = clock or utcnow

    def get_settings(self, actor: dict) -> HospitalSettings:
        doc = self.settings.find_one({"hospitalId": actor["hospitalId"]})
        if not doc:
            raise NotFound("Hospital settings not found", details={"hospital_id": actor["hospitalId"]})
        return HospitalSettings.model_validate(doc)

    def upsert_settings(self, actor: dict, data: Any) -> HospitalSettings:
        permissions.require_permission(actor, permissions.MANAGE_SETTINGS)
        payload = parse(HospitalSettingsIn, data)
        hospital_id = actor["hospitalId"]
        existing = self.settings.find_one({"hospitalId": hospital_id})
        now = self.clock()

        doc = payload.model_dump(by_alias=True)
        doc["email"] = str(doc["email"]).lower()
        doc.update({
            "hospitalId": hospital_id,
            "createdAt": existing["createdAt"] if existing else now,
            "updatedAt": now,
        })
        if existing:
            doc["id"] = existing["id"]
        saved = self.settings.save(doc)
        logger.info("hospital settings saved", extra={"hospital_id": hospital_id, "actor_id": actor.get("id")})
        return HospitalSettings.model_validate(saved)


class UserService:
    def __init__(self, db: Database, clock: Optional[Clock] = None):
        self.users = UserRepository(db)
        self.clock = clock or utcnow

    def _load(self, actor: dict, user_id: str) -> Dict[str, Any]:
        doc = self.users.find_by_id(user_id)
        if not doc or doc.get("hospitalId") != actor.get("hospitalId"):
            raise NotFound("User not found", details={"user_id": user_id})
        return doc

    def _create(self, name: str, email: str, password: str, role: str, hospital_id: str) -> Dict[str, Any]:
        email = email.lower().strip()
        if self.users.find_by_email(email):
            raise ValidationError("Email already registered", details={"email": email})
        now = self.clock()
        user = User(
            name=name.strip(),
            email=email,
            password_hash=hash_password(password),
            role=role,
            hospital_id=hospital_id.strip(),
        )
        doc = user.model_dump(by_alias=True)
        doc.update({"createdAt": now, "updatedAt": now})
        return self.users.save(doc)

    def register_user(self, actor: dict, data: Any) -> UserPublic:
        permissions.require_permission(actor, permissions.MANAGE_USERS)
        payload = parse(UserCreate, data)
        hospital_id = actor["hospitalId"]
        if payload.role == "admin" and self.users.find_one(
            {"hospitalId": hospital_id, "role": "admin", "isActive": True}
        ):
            raise ValidationError("This hospital already has an administrator", details={"hospital_id": hospital_id})
        saved = self._create(payload.name, payload.email, payload.password, payload.role, hospital_id)
        logger.info("user registered", extra={"user_id": saved["id"], "role": payload.role, "actor_id": actor.get("id")})
        return UserPublic.model_validate(saved)

    def login(self, email: str, password: str) -> Tuple[str, UserPublic]:
        doc = self.users.find_one({"email": email.lower().strip(), "isActive": True})
        if not doc or not verify_password(password, doc.get("passwordHash", "")):
            logger.warning("login failed", extra={"email": email.lower().strip()})
            raise AuthenticationFailed("Incorrect email or password")
        doc["lastLogin"] = self.clock()
        saved = self.users.save(doc)
        logger.info("login succeeded", extra={"user_id": saved["id"]})
        return token_for_user(saved), UserPublic.model_validate(saved)

    def verify_token(self, token: str) -> Dict[str, Any]:
        """Resolve a session token to the active user it was issued for."""
        payload = decode_token(token)
        doc = self.users.find_by_id(payload["sub"])
        if not doc or not doc.get("isActive", True):
            raise AuthenticationFailed("User not found or inactive")
        return public_user(doc)

    def list_users(self, actor: dict) -> List[UserPublic]:
        permissions.require_permission(actor, permissions.MANAGE_USERS)
        docs = self.users.query(
            {"hospitalId": actor["hospitalId"], "isActive": True}, sort=[("createdAt", -1)]
        )
        return [UserPublic.model_validate(d) for d in docs]

    def update_user_role(self, actor: dict, user_id: str, role: str) -> UserPublic:
        permissions.require_permission(actor, permissions.MANAGE_USERS)
        if role not in permissions.ROLES:
            raise ValidationError(f"Unknown role '{role}'", details={"role": role})
        doc = self._load(actor, user_id)
        if doc["id"] == actor.get("id") and doc["role"] == "admin":
            raise PermissionDenied("Admins cannot change their own role", details={"user_id": user_id})
        doc["role"] = role
        doc["updatedAt"] = self.clock()
        saved = self.users.save(doc)
        logger.info("user role changed", extra={"user_id": user_id, "role": role, "actor_id": actor.get("id")})
        return UserPublic.model_validate(saved)

    def deactivate_user(self, actor: dict, user_id: str) -> UserPublic:
        permissions.require_permission(actor, permissions.MANAGE_USERS)
        doc = self._load(actor, user_id)
        if doc["id"] == actor.get("id"):
            raise PermissionDenied("Admins cannot deactivate their own account", details={"user_id": user_id})
        doc["isActive"] = False
        doc["updatedAt"] = self.clock()
        saved = self.users.save(doc)
        logger.info("user deactivated", extra={"user_id": user_id, "actor_id": actor.get("id")})
        return UserPublic.model_validate(saved)

    def seed_admin(self, name: str, email: str, password: str, hospital_id: str) -> Optional[UserPublic]:
        """Create the first administrator. Returns None when an admin already exists."""
        if self.users.count({"role": "admin"}) > 0:
            return None
        saved = self._create(name, email, password, "admin", hospital_id)
        logger.info("admin seeded", extra={"user_id": saved["id"], "hospital_id": hospital_id})
        return UserPublic.model_validate(saved)
