"""In-memory student record store with per-student write locks."""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

from edubeacon.models import Alert, as_utc, utcnow
from edubeacon.records import StudentRecord, find_alert, merge_roster_fields, refresh_analysis

logger = logging.getLogger(__name__)

T = TypeVar('T')


class StorageError(Exception):
    """A record could not be persisted."""


class StudentNotFound(LookupError):
    pass


class AlertNotFound(LookupError):
    pass


class StudentConflict(Exception):
    """An incoming record reuses the id of a student owned by someone else."""


class StudentStore:
    """
    Holds student records and serializes read-modify-write cycles per student.

    Records handed out are copies; changes only land through ``upsert`` or
    ``update``. Two recomputes for the same student never interleave, so the
    alert dedup check always sees the alerts the previous one stored.
    """

    def __init__(self, retry_attempts: int = 3, retry_backoff_seconds: float = 0.1):
        self._records: Dict[str, StudentRecord] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()
        self.retry_attempts = max(1, retry_attempts)
        self.retry_backoff_seconds = retry_backoff_seconds

    def _lock_for(self, student_id: str, create: bool = False) -> threading.Lock:
        """Lock for an existing student; only inserts may create one."""
        with self._guard:
            lock = self._locks.get(student_id)
            if lock is None:
                if not create:
                    raise StudentNotFound(f"Student {student_id} not found")
                lock = self._locks[student_id] = threading.Lock()
            return lock

    def _discard_lock_if_absent(self, student_id: str) -> None:
        with self._guard:
            if student_id not in self._records:
                self._locks.pop(student_id, None)

    def _write(self, record: StudentRecord) -> None:
        """Persist one record. Storage backends override this."""
        self._records[record.id] = record.model_copy(deep=True)

    def _save(self, record: StudentRecord) -> None:
        for attempt in range(1, self.retry_attempts + 1):
            try:
                self._write(record)
                return
            except StorageError as e:
                if attempt == self.retry_attempts:
                    logger.error("Giving up saving student %s after %d attempts: %s", record.id, attempt, e)
                    raise
                delay = self.retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Saving student %s failed (attempt %d/%d), retrying in %.2fs: %s",
                    record.id, attempt, self.retry_attempts, delay, e
                )
                time.sleep(delay)

    def _load(self, student_id: str) -> StudentRecord:
        record = self._records.get(student_id)
        if record is None:
            raise StudentNotFound(f"Student {student_id} not found")
        return record.model_copy(deep=True)

    def get(self, student_id: str) -> StudentRecord:
        return self._load(student_id)

    def upsert(self, record: StudentRecord) -> StudentRecord:
        try:
            with self._lock_for(record.id, create=True):
                self._save(record)
        except StorageError:
            self._discard_lock_if_absent(record.id)
            raise
        return record

    def list_for_organization(self, organization_id: str) -> List[StudentRecord]:
        records = [r for r in self._records.values() if r.organization_id == organization_id]
        return [r.model_copy(deep=True) for r in sorted(records, key=lambda r: r.name)]

    def list_for_mentor(self, organization_id: str, mentor_id: str) -> List[StudentRecord]:
        return [r for r in self.list_for_organization(organization_id) if r.mentor_id == mentor_id]

    def get_scoped(
        self,
        student_id: str,
        organization_id: str,
        mentor_id: Optional[str] = None
    ) -> StudentRecord:
        """Fetch a record only if it belongs to the organization (and mentor, when given)."""
        record = self._load(student_id)
        if record.organization_id != organization_id:
            raise StudentNotFound(f"Student {student_id} not found")
        if mentor_id is not None and record.mentor_id != mentor_id:
            raise StudentNotFound(f"Student {student_id} not found")
        return record

    def update(
        self,
        student_id: str,
        mutate: Callable[[StudentRecord], T],
        as_of: Optional[datetime] = None,
        recalculate: bool = True
    ) -> Tuple[StudentRecord, T]:
        """
        Apply ``mutate`` to a fresh copy of the record, rescore it and save it.

        Args:
            student_id: Record to change
            mutate: Called with the record; its return value is passed back
            as_of: Reference time for the analysis
            recalculate: Rescore after mutating (off for changes that do not
                touch analyzer inputs)

        Returns:
            Tuple of (saved record, mutate's return value)
        """
        with self._lock_for(student_id):
            record = self._load(student_id)
            outcome = mutate(record)
            if recalculate:
                refresh_analysis(record, as_of)
            self._save(record)
        return record, outcome

    def recompute(self, student_id: str, as_of: Optional[datetime] = None) -> StudentRecord:
        record, _ = self.update(student_id, lambda r: None, as_of=as_of)
        return record

    def _check_owner(self, existing: StudentRecord, incoming: StudentRecord) -> None:
        if (existing.organization_id != incoming.organization_id
                or existing.mentor_id != incoming.mentor_id):
            raise StudentConflict(
                f"Student id {incoming.id} is already assigned to another organization or mentor"
            )

    def import_record(self, record: StudentRecord, as_of: Optional[datetime] = None) -> Tuple[StudentRecord, bool]:
        """
        Insert a roster record, or merge it into the stored student with the same id.

        A merge only overwrites roster fields; histories, payments and alerts
        already on the stored record are kept, so an unacknowledged alert is not
        raised twice.

        Returns:
            Tuple of (saved record, True when the student is new)
        """
        try:
            with self._lock_for(record.id, create=True):
                stored = self._records.get(record.id)
                if stored is None:
                    refresh_analysis(record, as_of)
                    self._save(record)
                    return record, True

                current = stored.model_copy(deep=True)
                self._check_owner(current, record)
                merge_roster_fields(current, record)
                refresh_analysis(current, as_of)
                self._save(current)
                return current, False
        except StorageError:
            self._discard_lock_if_absent(record.id)
            raise

    def import_records(
        self,
        records: List[StudentRecord],
        as_of: Optional[datetime] = None
    ) -> List[Tuple[StudentRecord, bool]]:
        """Import a whole roster. Nothing is written if any id belongs to someone else."""
        for record in records:
            stored = self._records.get(record.id)
            if stored is not None:
                self._check_owner(stored, record)
        return [self.import_record(record, as_of) for record in records]

    def acknowledge_alert(
        self,
        student_id: str,
        alert_id: str,
        acknowledged_by: str,
        as_of: Optional[datetime] = None
    ) -> Alert:
        """Mark an alert as seen by a mentor. A later analysis may then raise a new one."""
        acknowledged_at = as_utc(as_of) if as_of is not None else utcnow()

        def _acknowledge(record: StudentRecord) -> Alert:
            alert = find_alert(record, alert_id)
            if alert is None:
                raise AlertNotFound(f"Alert {alert_id} not found for student {student_id}")
            alert.acknowledged = True
            alert.acknowledged_by = acknowledged_by
            alert.acknowledged_date = acknowledged_at
            return alert

        _, alert = self.update(student_id, _acknowledge, recalculate=False)
        logger.info("Alert %s for student %s acknowledged by %s", alert_id, student_id, acknowledged_by)
        return alert

    def __len__(self) -> int:
        return len(self._records)
