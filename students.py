"""Student directory: manually added students.

`StudentDirectory` is the only entry point callers use. It is built once
with one `StudentBackend`: the MongoDB collection when the remote database
is configured, otherwise the local storage list. Both backends honor the same
contract, including the errors they raise.
"""
import abc
import asyncio
import logging
import os
import re
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import requests
from pydantic import ValidationError as SchemaError
from pymongo.database import Database
from pymongo.errors import PyMongoError

from errors import BackendError, DuplicateEmailError, NotFoundError, ValidationError
from schemas import StudentCreate, StudentRecord, StudentStats, StudentStatus
from storage import LocalStorage

logger = logging.getLogger(__name__)

STUDENTS_KEY = "teacherpoli_manual_students"
STUDENTS_COLLECTION = "manual_students"

_ID_ALPHABET = string.digits + string.ascii_lowercase
_TICK = timedelta(milliseconds=1)

Clock = Callable[[], datetime]


# Utilities

def _now() -> datetime:
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def _generate_id(now: datetime) -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"student_{int(now.timestamp() * 1000)}_{suffix}"


def month_start(now: datetime) -> datetime:
    """First instant of the current calendar month, in local time."""
    # offset resolved for the 1st itself, which may differ from now's across DST
    local = datetime.fromtimestamp(now.timestamp())
    return local.replace(day=1, hour=0, minute=0, second=0, microsecond=0).astimezone()


def _bump(previous: datetime, now: datetime) -> datetime:
    # updated_at must strictly increase even within the same millisecond
    return now if now > previous else previous + _TICK


def _matches(record: StudentRecord, query: str) -> bool:
    q = query.lower()
    return q in record.name.lower() or q in record.email.lower()


def _newest_first(records: List[StudentRecord]) -> List[StudentRecord]:
    return sorted(records, key=lambda r: r.created_at, reverse=True)


# Backends

class StudentBackend(abc.ABC):
    name = "abstract"

    @abc.abstractmethod
    async def add(self, record: StudentRecord) -> StudentRecord: ...

    @abc.abstractmethod
    async def list(self) -> List[StudentRecord]: ...

    @abc.abstractmethod
    async def remove(self, student_id: str) -> None: ...

    @abc.abstractmethod
    async def set_status(self, student_id: str, status: StudentStatus, now: datetime) -> StudentRecord: ...

    @abc.abstractmethod
    async def search(self, query: str) -> List[StudentRecord]: ...

    @abc.abstractmethod
    async def stats(self, since: datetime) -> StudentStats: ...

    @abc.abstractmethod
    async def find_by_email(self, email: str) -> Optional[StudentRecord]: ...


class LocalStudentBackend(StudentBackend):
    """Keeps the directory as one JSON list in local storage, newest first."""

    name = "local"

    def __init__(self, storage: LocalStorage, key: str = STUDENTS_KEY):
        self.storage = storage
        self.key = key

    def _load(self) -> List[StudentRecord]:
        records: List[StudentRecord] = []
        for raw in self.storage.get_json(self.key, []) or []:
            try:
                records.append(StudentRecord.model_validate(raw))
            except SchemaError as e:
                logger.warning("Skipping malformed student record: %s", e)
        return records

    def _save(self, records: List[StudentRecord]) -> None:
        self.storage.set_json(self.key, [r.dump() for r in records])

    async def add(self, record: StudentRecord) -> StudentRecord:
        records = self._load()
        records.insert(0, record)
        self._save(records)
        logger.info("Student added to local storage: %s", record.email)
        return record

    async def list(self) -> List[StudentRecord]:
        return _newest_first(self._load())

    async def remove(self, student_id: str) -> None:
        records = self._load()
        remaining = [r for r in records if r.id != student_id]
        if len(remaining) == len(records):
            raise NotFoundError("Student", student_id)
        self._save(remaining)

    async def set_status(self, student_id: str, status: StudentStatus, now: datetime) -> StudentRecord:
        records = self._load()
        for i, record in enumerate(records):
            if record.id == student_id:
                updated = record.model_copy(update={"status": status, "updated_at": _bump(record.updated_at, now)})
                records[i] = updated
                self._save(records)
                return updated
        raise NotFoundError("Student", student_id)

    async def search(self, query: str) -> List[StudentRecord]:
        return _newest_first([r for r in self._load() if _matches(r, query)])

    async def stats(self, since: datetime) -> StudentStats:
        records = self._load()
        active = sum(1 for r in records if r.status == "active")
        inactive = sum(1 for r in records if r.status == "inactive")
        return StudentStats(
            total=len(records),
            active=active,
            inactive=inactive,
            added_this_month=sum(1 for r in records if r.added_at >= since),
        )

    async def find_by_email(self, email: str) -> Optional[StudentRecord]:
        email = email.lower()
        for record in self._load():
            if record.email.lower() == email and record.status == "active":
                return record
        return None


def _to_bson_dt(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class MongoStudentBackend(StudentBackend):
    """Stores the directory in the `manual_students` collection."""

    name = "remote"

    def __init__(self, database: Database, collection: str = STUDENTS_COLLECTION):
        self.collection = database[collection]

    @staticmethod
    async def _call(action: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except PyMongoError as e:
            logger.error("Remote database error while %s: %s", action, e)
            raise BackendError(action, e) from e

    @staticmethod
    def _to_doc(record: StudentRecord) -> Dict[str, Any]:
        doc = record.model_dump()
        for k in ("added_at", "created_at", "updated_at"):
            doc[k] = _to_bson_dt(doc[k])
        return doc

    @staticmethod
    def _from_doc(doc: Dict[str, Any]) -> Optional[StudentRecord]:
        doc = dict(doc)
        doc.pop("_id", None)
        try:
            return StudentRecord.model_validate(doc)
        except SchemaError as e:
            logger.warning("Skipping malformed student document: %s", e)
            return None

    async def _find(self, action: str, filt: Dict[str, Any]) -> List[StudentRecord]:
        def run() -> List[Dict[str, Any]]:
            return list(self.collection.find(filt).sort([("created_at", -1), ("_id", -1)]))

        records = (self._from_doc(d) for d in await self._call(action, run))
        return [r for r in records if r is not None]

    async def add(self, record: StudentRecord) -> StudentRecord:
        await self._call("adding student", self.collection.insert_one, self._to_doc(record))
        logger.info("Student added to remote database: %s", record.email)
        return record

    async def list(self) -> List[StudentRecord]:
        return await self._find("listing students", {})

    async def remove(self, student_id: str) -> None:
        res = await self._call("removing student", self.collection.delete_one, {"id": student_id})
        if res.deleted_count == 0:
            raise NotFoundError("Student", student_id)

    async def set_status(self, student_id: str, status: StudentStatus, now: datetime) -> StudentRecord:
        doc = await self._call("updating status", self.collection.find_one, {"id": student_id})
        record = self._from_doc(doc) if doc else None
        if record is None:
            raise NotFoundError("Student", student_id)
        updated = record.model_copy(update={"status": status, "updated_at": _bump(record.updated_at, now)})
        await self._call(
            "updating status",
            self.collection.update_one,
            {"id": student_id},
            {"$set": {"status": status, "updated_at": _to_bson_dt(updated.updated_at)}},
        )
        return updated

    async def search(self, query: str) -> List[StudentRecord]:
        pattern = {"$regex": re.escape(query), "$options": "i"}
        return await self._find("searching students", {"$or": [{"name": pattern}, {"email": pattern}]})

    async def stats(self, since: datetime) -> StudentStats:
        count = self.collection.count_documents
        action = "loading statistics"
        return StudentStats(
            total=await self._call(action, count, {}),
            active=await self._call(action, count, {"status": "active"}),
            inactive=await self._call(action, count, {"status": "inactive"}),
            added_this_month=await self._call(action, count, {"added_at": {"$gte": _to_bson_dt(since)}}),
        )

    async def find_by_email(self, email: str) -> Optional[StudentRecord]:
        doc = await self._call(
            "looking up student",
            self.collection.find_one,
            {"email": email.lower(), "status": "active"},
        )
        return self._from_doc(doc) if doc else None


# Purchase verification

class PurchaseVerifier:
    """Asks the external purchase service whether an email bought the product."""

    def __init__(self, url: Optional[str] = None, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> "PurchaseVerifier":
        return cls(os.getenv("PURCHASE_VERIFY_URL") or None)

    def _check(self, email: str) -> bool:
        resp = requests.get(self.url, params={"email": email}, timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json()
        return bool(data.get("has_purchase", data.get("valid", False)))

    async def has_purchase(self, email: str) -> bool:
        if not self.url:
            return False
        try:
            return await asyncio.to_thread(self._check, email)
        except (requests.RequestException, ValueError, AttributeError) as e:
            logger.warning("Purchase verification failed for %s: %s", email, e)
            return False


# Directory

class StudentDirectory:
    def __init__(
        self,
        backend: StudentBackend,
        verifier: Optional[PurchaseVerifier] = None,
        clock: Optional[Clock] = None,
    ):
        self.backend = backend
        self.verifier = verifier or PurchaseVerifier()
        self.clock = clock or _now

    @classmethod
    def create(
        cls,
        storage: LocalStorage,
        database: Optional[Database] = None,
        verifier: Optional[PurchaseVerifier] = None,
        clock: Optional[Clock] = None,
    ) -> "StudentDirectory":
        if database is not None:
            backend: StudentBackend = MongoStudentBackend(database)
        else:
            backend = LocalStudentBackend(storage)
        logger.info("Student directory using %s backend", backend.name)
        return cls(backend, verifier=verifier, clock=clock)

    @property
    def backend_name(self) -> str:
        return self.backend.name

    async def add(self, data: StudentCreate) -> StudentRecord:
        name = (data.name or "").strip()
        email = (data.email or "").strip().lower()
        if not name or not email:
            raise ValidationError("Name and email are required")
        if await self.backend.find_by_email(email):
            raise DuplicateEmailError(email)
        now = self.clock()
        record = StudentRecord(
            id=_generate_id(now),
            name=name,
            email=email,
            notes=data.notes or "",
            added_by=data.added_by,
            added_at=now,
            status="active",
            created_at=now,
            updated_at=now,
        )
        return await self.backend.add(record)

    async def list(self) -> List[StudentRecord]:
        return await self.backend.list()

    async def remove(self, student_id: str) -> None:
        await self.backend.remove(student_id)
        logger.info("Student removed: %s", student_id)

    async def set_status(self, student_id: str, status: StudentStatus) -> StudentRecord:
        return await self.backend.set_status(student_id, status, self.clock())

    async def toggle_status(self, student_id: str, current: StudentStatus) -> StudentRecord:
        return await self.set_status(student_id, "inactive" if current == "active" else "active")

    async def search(self, query: str) -> List[StudentRecord]:
        if not query.strip():
            return await self.list()
        return await self.backend.search(query)

    async def stats(self) -> StudentStats:
        return await self.backend.stats(month_start(self.clock()))

    async def find_by_email(self, email: str) -> Optional[StudentRecord]:
        return await self.backend.find_by_email(email.strip())

    async def check_email_exists(self, email: str) -> bool:
        """Manual students first, then the external purchase service."""
        if await self.find_by_email(email):
            return True
        return await self.verifier.has_purchase(email.strip().lower())
