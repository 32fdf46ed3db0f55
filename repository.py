"""
Repository layer over MongoDB collections.

Documents leave the repository with a string ``id`` in place of Mongo's
``_id`` and come back in the same shape. Each save is a single-document
write, so concurrent edits of one record are last-write-wins.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from errors import DuplicatePeriod, ValidationError
from lifecycle import LIVE_STATUSES

logger = logging.getLogger(__name__)

REPORTS = "financial_report"
USERS = "user"
SETTINGS = "hospital_settings"
REVIEWS = "review_schedule"

PERIOD_KEY = ("hospitalId", "reportType", "year", "month", "quarter")
PERIOD_INDEX = "unique_live_report_per_period"


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = dict(doc)
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    return d


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


class MongoRepository:
    """findById / save / query over one collection."""

    def __init__(self, db: Database, collection: str):
        self.collection = db[collection]

    def find_by_id(self, doc_id: Any) -> Optional[Dict[str, Any]]:
        oid = to_object_id(doc_id)
        if oid is None:
            return None
        return serialize_doc(self.collection.find_one({"_id": oid}))

    def find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return serialize_doc(self.collection.find_one(query))

    def query(
        self,
        query: Optional[Dict[str, Any]] = None,
        sort: Optional[Sequence[Tuple[str, int]]] = None,
        limit: int = 0,
        skip: int = 0,
    ) -> List[Dict[str, Any]]:
        cursor = self.collection.find(query or {})
        if sort:
            cursor = cursor.sort(list(sort))
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return [serialize_doc(d) for d in cursor]

    def count(self, query: Optional[Dict[str, Any]] = None) -> int:
        return self.collection.count_documents(query or {})

    def save(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a new document or replace the stored one with the same id."""
        body = {k: v for k, v in doc.items() if k not in ("id", "_id")}
        oid = to_object_id(doc.get("id") or doc.get("_id"))
        if oid is None:
            res = self.collection.insert_one(body)
            oid = res.inserted_id
        else:
            self.collection.replace_one({"_id": oid}, body, upsert=True)
        body.pop("_id", None)
        body["id"] = str(oid)
        return body

    def delete(self, doc_id: Any) -> bool:
        oid = to_object_id(doc_id)
        if oid is None:
            return False
        return self.collection.delete_one({"_id": oid}).deleted_count > 0


class ReportRepository(MongoRepository):
    def __init__(self, db: Database):
        super().__init__(db, REPORTS)

    @staticmethod
    def period_query(hospital_id: str, report_type: str, year: int,
                     month: Optional[int] = None, quarter: Optional[int] = None) -> Dict[str, Any]:
        return {
            "hospitalId": hospital_id,
            "reportType": report_type,
            "year": year,
            "month": month,
            "quarter": quarter,
            "status": {"$in": list(LIVE_STATUSES)},
        }

    def find_live_for_period(self, hospital_id: str, report_type: str, year: int,
                             month: Optional[int] = None, quarter: Optional[int] = None) -> Optional[Dict[str, Any]]:
        return self.find_one(self.period_query(hospital_id, report_type, year, month, quarter))

    def save(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return super().save(doc)
        except DuplicateKeyError as exc:
            # Lost a race with another writer for the same period.
            logger.warning("duplicate period rejected by index", extra={"hospital_id": doc.get("hospitalId")})
            raise DuplicatePeriod(
                "A report for this period already exists",
                details={k: doc.get(k) for k in PERIOD_KEY},
            ) from exc


class UserRepository(MongoRepository):
    def __init__(self, db: Database):
        super().__init__(db, USERS)

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.find_one({"email": email.lower()})

    def save(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return super().save(doc)
        except DuplicateKeyError as exc:
            raise ValidationError("Email already registered", details={"email": doc.get("email")}) from exc


def ensure_indexes(db: Database) -> None:
    """Create the indexes the service relies on. Safe to call repeatedly."""
    reports = db[REPORTS]
    reports.create_index(
        [(key, ASCENDING) for key in PERIOD_KEY],
        name=PERIOD_INDEX,
        unique=True,
        partialFilterExpression={"status": {"$in": list(LIVE_STATUSES)}},
    )
    reports.create_index([("hospitalId", ASCENDING), ("year", DESCENDING), ("month", DESCENDING)])
    reports.create_index([("reportType", ASCENDING), ("status", ASCENDING)])
    db[USERS].create_index([("email", ASCENDING)], unique=True)
    db[SETTINGS].create_index([("hospitalId", ASCENDING)], unique=True)
    db[REVIEWS].create_index([("assignedTo", ASCENDING), ("status", ASCENDING)])
    db[REVIEWS].create_index([("reportId", ASCENDING)])
    logger.info("indexes ensured", extra={"database": db.name})
