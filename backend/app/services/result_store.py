"""
Result store for graded reviews.

The grading service only appends and looks up; nothing here updates or
deletes a stored review.
"""
import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import PersistenceError
from app.models.base import Base
from app.models.records import GradingKey, GradingRecord, RecordStatus
from app.models.review import Review

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def _as_aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ResultStore(ABC):
    """Keyed, append-only store of grading records."""

    @abstractmethod
    def find_latest(self, key: GradingKey) -> Optional[GradingRecord]:
        """Most recent record for ``key`` by creation time, or None."""

    @abstractmethod
    def insert(self, record: GradingRecord) -> GradingRecord:
        """Persist ``record``, assigning id and created_at when unset."""

    @abstractmethod
    def get(self, record_id: str) -> Optional[GradingRecord]:
        ...

    @abstractmethod
    def list_recent(self, limit: int = 50, repository_reference: Optional[str] = None,
                    branch_name: Optional[str] = None) -> List[GradingRecord]:
        ...


class InMemoryResultStore(ResultStore):
    def __init__(self):
        self._records: List[GradingRecord] = []
        self._lock = threading.Lock()

    def find_latest(self, key: GradingKey) -> Optional[GradingRecord]:
        with self._lock:
            matches = [r for r in self._records if r.key == key]
        if not matches:
            return None
        # max() keeps the first of equal timestamps, so walk newest-inserted first
        return max(reversed(matches), key=lambda r: r.created_at)

    def insert(self, record: GradingRecord) -> GradingRecord:
        stored = record.with_identity(_new_id(), _utcnow())
        with self._lock:
            self._records.append(stored)
        return stored

    def get(self, record_id: str) -> Optional[GradingRecord]:
        with self._lock:
            return next((r for r in self._records if r.id == record_id), None)

    def list_recent(self, limit: int = 50, repository_reference: Optional[str] = None,
                    branch_name: Optional[str] = None) -> List[GradingRecord]:
        with self._lock:
            records = list(reversed(self._records))
        if repository_reference is not None:
            records = [r for r in records if r.repository_reference == repository_reference]
        if branch_name is not None:
            records = [r for r in records if r.branch_name == branch_name]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def _record_from_row(row: Dict[str, Any]) -> GradingRecord:
    content = row.get("review_content")
    if isinstance(content, str):
        content = json.loads(content) if content else {}
    created_at = row.get("created_at")
    if isinstance(created_at, str):
        created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
    return GradingRecord(
        id=row.get("id"),
        repository_reference=row.get("repo_name"),
        branch_name=row.get("branch_name"),
        student_identifier=row.get("student_name"),
        score=row.get("score"),
        status=RecordStatus(row.get("status") or RecordStatus.COMPLETED.value),
        content=content or {},
        created_at=_as_aware(created_at),
    )


def _row_from_record(record: GradingRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "repo_name": record.repository_reference,
        "branch_name": record.branch_name,
        "student_name": record.student_identifier,
        "review_content": json.dumps(record.content),
        "score": record.score,
        "status": record.status.value,
        "created_at": record.created_at,
    }


class SqlAlchemyResultStore(ResultStore):
    """Reviews kept in the ``reviews`` table of a SQL database."""

    def __init__(self, session_factory, engine=None):
        self.session_factory = session_factory
        if engine is not None:
            Base.metadata.create_all(bind=engine)

    @staticmethod
    def _to_record(review: Review) -> GradingRecord:
        return _record_from_row({
            "id": review.id,
            "repo_name": review.repo_name,
            "branch_name": review.branch_name,
            "student_name": review.student_name,
            "review_content": review.review_content,
            "score": review.score,
            "status": review.status,
            "created_at": review.created_at,
        })

    def find_latest(self, key: GradingKey) -> Optional[GradingRecord]:
        query = select(Review).where(
            Review.repo_name == key.repository_reference,
            Review.branch_name == key.branch_name,
        )
        if key.student_identifier is None:
            query = query.where(Review.student_name.is_(None))
        else:
            query = query.where(Review.student_name == key.student_identifier)
        query = query.order_by(Review.created_at.desc()).limit(1)

        try:
            with self.session_factory() as db:
                review = db.execute(query).scalars().first()
                return self._to_record(review) if review else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read reviews: {e}") from e

    def insert(self, record: GradingRecord) -> GradingRecord:
        stored = record.with_identity(_new_id(), _utcnow())
        try:
            with self.session_factory() as db:
                db.add(Review(**_row_from_record(stored)))
                db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save review: {e}") from e
        logger.debug("Stored review %s in reviews table", stored.id)
        return stored

    def get(self, record_id: str) -> Optional[GradingRecord]:
        try:
            with self.session_factory() as db:
                review = db.get(Review, record_id)
                return self._to_record(review) if review else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read review {record_id}: {e}") from e

    def list_recent(self, limit: int = 50, repository_reference: Optional[str] = None,
                    branch_name: Optional[str] = None) -> List[GradingRecord]:
        query = select(Review)
        if repository_reference is not None:
            query = query.where(Review.repo_name == repository_reference)
        if branch_name is not None:
            query = query.where(Review.branch_name == branch_name)
        query = query.order_by(Review.created_at.desc()).limit(limit)
        try:
            with self.session_factory() as db:
                return [self._to_record(review) for review in db.execute(query).scalars()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list reviews: {e}") from e


class SupabaseResultStore(ResultStore):
    """Reviews kept in a Supabase table."""

    def __init__(self, supabase, table: str = "reviews"):
        self.supabase = supabase
        self.table = table

    def find_latest(self, key: GradingKey) -> Optional[GradingRecord]:
        try:
            query = self.supabase.table(self.table).select('*') \
                .eq('repo_name', key.repository_reference) \
                .eq('branch_name', key.branch_name)
            if key.student_identifier is None:
                query = query.is_('student_name', 'null')
            else:
                query = query.eq('student_name', key.student_identifier)
            result = query.order('created_at', desc=True).limit(1).execute()
        except Exception as e:
            raise PersistenceError(f"Failed to read reviews: {e}") from e
        return _record_from_row(result.data[0]) if result.data else None

    def insert(self, record: GradingRecord) -> GradingRecord:
        stored = record.with_identity(_new_id(), _utcnow())
        row = _row_from_record(stored)
        row["created_at"] = stored.created_at.isoformat()
        try:
            result = self.supabase.table(self.table).insert(row).execute()
        except Exception as e:
            raise PersistenceError(f"Failed to save review: {e}") from e
        if not result.data:
            raise PersistenceError("Supabase returned no row for the inserted review")
        logger.debug("Stored review %s in Supabase table %s", stored.id, self.table)
        return stored

    def get(self, record_id: str) -> Optional[GradingRecord]:
        try:
            result = self.supabase.table(self.table).select('*').eq('id', record_id).limit(1).execute()
        except Exception as e:
            raise PersistenceError(f"Failed to read review {record_id}: {e}") from e
        return _record_from_row(result.data[0]) if result.data else None

    def list_recent(self, limit: int = 50, repository_reference: Optional[str] = None,
                    branch_name: Optional[str] = None) -> List[GradingRecord]:
        try:
            query = self.supabase.table(self.table).select('*')
            if repository_reference is not None:
                query = query.eq('repo_name', repository_reference)
            if branch_name is not None:
                query = query.eq('branch_name', branch_name)
            result = query.order('created_at', desc=True).limit(limit).execute()
        except Exception as e:
            raise PersistenceError(f"Failed to list reviews: {e}") from e
        return [_record_from_row(row) for row in result.data or []]
