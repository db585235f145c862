"""
Persistence collaborators: assignments, audit records, weights versions,
and the contractor/job directory.

Each store has a SQLite implementation (SQLAlchemy, see database.py) and an
in-memory one with the same contract for tests and single-process use.

Assignment writes use optimistic concurrency: every contractor has a
schedule version, a commit names the version it validated against, and
only the writer that still sees that version wins.
"""

import json
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from .database import (
    AssignmentRecord,
    AuditRecord,
    ContractorSchedule,
    WeightsConfigRecord,
    get_session,
    init_database,
)
from .errors import ConcurrencyConflictError, NotFoundError
from .logger import get_logger
from .models import (
    AssignmentCommand,
    ContractorProfile,
    ExistingAssignment,
    GeoPoint,
    JobRequest,
    TimeWindow,
    sort_assignments,
)
from .schema import parse_directory
from .weights import TIE_BREAKERS, FactorWeights, RotationConfig, WeightsConfig

logger = get_logger()

Snapshot = Tuple[int, List[ExistingAssignment]]


def _new_id() -> str:
    return uuid.uuid4().hex


def _to_naive_utc(moment: datetime) -> datetime:
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def _from_naive_utc(moment: datetime) -> datetime:
    return moment.replace(tzinfo=timezone.utc)


def _in_window(assignment: ExistingAssignment, window: Optional[TimeWindow]) -> bool:
    return window is None or assignment.window.overlaps(window)


# Directory

class InMemoryDirectory:
    """Read-only contractor/job lookups."""

    def __init__(
        self,
        contractors: Iterable[ContractorProfile] = (),
        jobs: Iterable[JobRequest] = (),
        assignments: Iterable[ExistingAssignment] = (),
    ):
        self._contractors: Dict[str, ContractorProfile] = {c.contractor_id: c for c in contractors}
        self._jobs: Dict[str, JobRequest] = {j.job_id: j for j in jobs}
        # Seed assignments shipped with the document, loaded into a store by the caller
        self.assignments: List[ExistingAssignment] = list(assignments)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InMemoryDirectory":
        contractors, jobs, assignments = parse_directory(data)
        return cls(contractors, jobs, assignments)

    @classmethod
    def from_file(cls, path: Path) -> "InMemoryDirectory":
        with path.open("r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    def get_job(self, job_id: str) -> JobRequest:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError("job", job_id)
        return job

    def get_contractor(self, contractor_id: str) -> ContractorProfile:
        contractor = self._contractors.get(contractor_id)
        if contractor is None:
            raise NotFoundError("contractor", contractor_id)
        return contractor

    def list_contractors(self) -> List[ContractorProfile]:
        return list(self._contractors.values())

    def list_jobs(self) -> List[JobRequest]:
        return list(self._jobs.values())


# Assignments

class InMemoryAssignmentStore:
    """Assignment store guarded by one lock; same contract as SqlAssignmentStore."""

    def __init__(self, assignments: Iterable[ExistingAssignment] = ()):
        self._lock = threading.Lock()
        self._rows: Dict[str, ExistingAssignment] = {}
        self._versions: Dict[str, int] = {}
        self.seed(assignments)

    def seed(self, assignments: Iterable[ExistingAssignment]) -> int:
        added = 0
        with self._lock:
            for a in assignments:
                assignment_id = a.assignment_id or _new_id()
                if assignment_id in self._rows:
                    continue
                self._rows[assignment_id] = replace(a, assignment_id=assignment_id)
                self._versions.setdefault(a.contractor_id, 0)
                added += 1
        return added

    def list_for_contractor(self, contractor_id: str, window: Optional[TimeWindow] = None) -> List[ExistingAssignment]:
        with self._lock:
            rows = [a for a in self._rows.values() if a.contractor_id == contractor_id]
        return sort_assignments(a for a in rows if _in_window(a, window))

    def find_for_job(self, job_id: str) -> List[ExistingAssignment]:
        with self._lock:
            return sort_assignments(a for a in self._rows.values() if a.job_id == job_id)

    def snapshot(self, contractor_id: str) -> Snapshot:
        with self._lock:
            version = self._versions.setdefault(contractor_id, 0)
            rows = [a for a in self._rows.values() if a.contractor_id == contractor_id]
        return version, sort_assignments(rows)

    def commit(
        self,
        command: AssignmentCommand,
        expected_version: int,
        location: Optional[GeoPoint] = None,
    ) -> ExistingAssignment:
        with self._lock:
            current = self._versions.get(command.contractor_id, 0)
            if current != expected_version:
                raise ConcurrencyConflictError(
                    f"schedule for {command.contractor_id} changed (version {current}, expected {expected_version})",
                    reason="concurrent booking committed first",
                )
            assignment = ExistingAssignment(
                contractor_id=command.contractor_id,
                start_utc=command.start_utc,
                end_utc=command.end_utc,
                assignment_id=_new_id(),
                job_id=command.job_id,
                location=location,
            )
            self._rows[assignment.assignment_id] = assignment
            self._versions[command.contractor_id] = current + 1
            return assignment

    def cancel(self, assignment_id: str) -> ExistingAssignment:
        with self._lock:
            existing = self._rows.get(assignment_id)
            if existing is None:
                raise NotFoundError("assignment", assignment_id)
            cancelled = replace(existing, status="cancelled")
            self._rows[assignment_id] = cancelled
            self._versions[existing.contractor_id] = self._versions.get(existing.contractor_id, 0) + 1
            return cancelled


class SqlAssignmentStore:
    """SQLite assignment store with a version compare-and-swap per contractor."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        init_database(db_path)

    @staticmethod
    def _to_model(row: AssignmentRecord) -> ExistingAssignment:
        location = None
        if row.lat is not None and row.lng is not None:
            location = GeoPoint(row.lat, row.lng)
        return ExistingAssignment(
            contractor_id=row.contractor_id,
            start_utc=_from_naive_utc(row.start_utc),
            end_utc=_from_naive_utc(row.end_utc),
            assignment_id=row.id,
            job_id=row.job_id,
            location=location,
            status=row.status,
        )

    def seed(self, assignments: Iterable[ExistingAssignment]) -> int:
        """Insert assignments that are not stored yet (matched by id)."""
        session = get_session(self.db_path)
        added = 0
        try:
            for a in assignments:
                assignment_id = a.assignment_id or _new_id()
                if session.get(AssignmentRecord, assignment_id) is not None:
                    continue
                session.add(AssignmentRecord(
                    id=assignment_id,
                    job_id=a.job_id or "",
                    contractor_id=a.contractor_id,
                    start_utc=_to_naive_utc(a.start_utc),
                    end_utc=_to_naive_utc(a.end_utc),
                    source="manual",
                    status=a.status,
                    lat=a.location.lat if a.location else None,
                    lng=a.location.lng if a.location else None,
                ))
                added += 1
            session.commit()
        finally:
            session.close()
        return added

    def list_for_contractor(self, contractor_id: str, window: Optional[TimeWindow] = None) -> List[ExistingAssignment]:
        session = get_session(self.db_path)
        try:
            query = session.query(AssignmentRecord).filter_by(contractor_id=contractor_id)
            if window is not None:
                query = query.filter(
                    AssignmentRecord.start_utc < _to_naive_utc(window.end),
                    AssignmentRecord.end_utc > _to_naive_utc(window.start),
                )
            rows = query.order_by(AssignmentRecord.start_utc, AssignmentRecord.end_utc).all()
            return [self._to_model(r) for r in rows]
        finally:
            session.close()

    def find_for_job(self, job_id: str) -> List[ExistingAssignment]:
        session = get_session(self.db_path)
        try:
            rows = (
                session.query(AssignmentRecord)
                .filter_by(job_id=job_id)
                .order_by(AssignmentRecord.start_utc)
                .all()
            )
            return [self._to_model(r) for r in rows]
        finally:
            session.close()

    def snapshot(self, contractor_id: str) -> Snapshot:
        session = get_session(self.db_path)
        try:
            schedule = session.get(ContractorSchedule, contractor_id)
            if schedule is None:
                try:
                    session.add(ContractorSchedule(contractor_id=contractor_id, version=0))
                    session.commit()
                except IntegrityError:
                    # Another writer created the row first
                    session.rollback()
                schedule = session.get(ContractorSchedule, contractor_id)
            version = schedule.version
            rows = (
                session.query(AssignmentRecord)
                .filter_by(contractor_id=contractor_id)
                .order_by(AssignmentRecord.start_utc, AssignmentRecord.end_utc)
                .all()
            )
            return version, [self._to_model(r) for r in rows]
        finally:
            session.close()

    def commit(
        self,
        command: AssignmentCommand,
        expected_version: int,
        location: Optional[GeoPoint] = None,
    ) -> ExistingAssignment:
        """
        Insert the assignment if the contractor's schedule is still at expected_version.

        Raises:
            ConcurrencyConflictError: Another booking for this contractor committed first
        """
        session = get_session(self.db_path)
        try:
            updated = (
                session.query(ContractorSchedule)
                .filter_by(contractor_id=command.contractor_id, version=expected_version)
                .update({ContractorSchedule.version: ContractorSchedule.version + 1}, synchronize_session=False)
            )
            if updated == 0:
                session.rollback()
                raise ConcurrencyConflictError(
                    f"schedule for {command.contractor_id} changed since version {expected_version}",
                    reason="concurrent booking committed first",
                )
            record = AssignmentRecord(
                id=_new_id(),
                job_id=command.job_id,
                contractor_id=command.contractor_id,
                start_utc=_to_naive_utc(command.start_utc),
                end_utc=_to_naive_utc(command.end_utc),
                source=command.source,
                status="active",
                audit_id=command.audit_id,
                lat=location.lat if location else None,
                lng=location.lng if location else None,
            )
            session.add(record)
            session.commit()
            return self._to_model(record)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def cancel(self, assignment_id: str) -> ExistingAssignment:
        session = get_session(self.db_path)
        try:
            row = session.get(AssignmentRecord, assignment_id)
            if row is None:
                raise NotFoundError("assignment", assignment_id)
            row.status = "cancelled"
            session.query(ContractorSchedule).filter_by(contractor_id=row.contractor_id).update(
                {ContractorSchedule.version: ContractorSchedule.version + 1}, synchronize_session=False
            )
            session.commit()
            return self._to_model(row)
        finally:
            session.close()


# Audit

@dataclass(frozen=True)
class AuditEntry:
    request_id: str
    job_id: str
    config_version: int
    request_payload: Dict[str, Any]
    candidates: List[Dict[str, Any]]
    created_at: datetime
    selected_contractor_id: Optional[str] = None


def _mark_selected(candidates: List[Dict[str, Any]], contractor_id: str) -> List[Dict[str, Any]]:
    return [dict(c, was_selected=(c.get("contractor_id") == contractor_id)) for c in candidates]


class InMemoryAuditStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[str, AuditEntry] = {}

    def record(self, entry: AuditEntry) -> None:
        with self._lock:
            self._entries[entry.request_id] = entry

    def get(self, request_id: str) -> AuditEntry:
        with self._lock:
            entry = self._entries.get(request_id)
        if entry is None:
            raise NotFoundError("audit record", request_id)
        return entry

    def mark_selected(self, request_id: str, contractor_id: str) -> AuditEntry:
        with self._lock:
            entry = self._entries.get(request_id)
            if entry is None:
                raise NotFoundError("audit record", request_id)
            updated = replace(
                entry,
                candidates=_mark_selected(entry.candidates, contractor_id),
                selected_contractor_id=contractor_id,
            )
            self._entries[request_id] = updated
            return updated


class SqlAuditStore:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        init_database(db_path)

    @staticmethod
    def _to_entry(row: AuditRecord) -> AuditEntry:
        return AuditEntry(
            request_id=row.request_id,
            job_id=row.job_id,
            config_version=row.config_version,
            request_payload=json.loads(row.request_payload),
            candidates=json.loads(row.candidates),
            created_at=_from_naive_utc(row.created_at),
            selected_contractor_id=row.selected_contractor_id,
        )

    def record(self, entry: AuditEntry) -> None:
        session = get_session(self.db_path)
        try:
            session.add(AuditRecord(
                request_id=entry.request_id,
                job_id=entry.job_id,
                config_version=entry.config_version,
                request_payload=json.dumps(entry.request_payload, default=str),
                candidates=json.dumps(entry.candidates, default=str),
                created_at=_to_naive_utc(entry.created_at),
            ))
            session.commit()
        finally:
            session.close()

    def get(self, request_id: str) -> AuditEntry:
        session = get_session(self.db_path)
        try:
            row = session.get(AuditRecord, request_id)
            if row is None:
                raise NotFoundError("audit record", request_id)
            return self._to_entry(row)
        finally:
            session.close()

    def mark_selected(self, request_id: str, contractor_id: str) -> AuditEntry:
        session = get_session(self.db_path)
        try:
            row = session.get(AuditRecord, request_id)
            if row is None:
                raise NotFoundError("audit record", request_id)
            row.candidates = json.dumps(_mark_selected(json.loads(row.candidates), contractor_id))
            row.selected_contractor_id = contractor_id
            session.commit()
            return self._to_entry(row)
        finally:
            session.close()


# Weights

class SqlWeightsStore:
    """Append-only weights history in SQLite. Version 1 holds the defaults."""

    def __init__(self, db_path: Path, initial: Optional[WeightsConfig] = None):
        self.db_path = db_path
        init_database(db_path)
        session = get_session(db_path)
        try:
            if session.query(WeightsConfigRecord).count() == 0:
                first = initial or WeightsConfig(version=1)
                session.add(WeightsConfigRecord(version=1, payload=json.dumps(first.to_dict())))
                session.commit()
        except IntegrityError:
            session.rollback()
        finally:
            session.close()

    @staticmethod
    def _to_config(row: WeightsConfigRecord) -> WeightsConfig:
        return WeightsConfig.from_dict(
            json.loads(row.payload),
            version=row.version,
            created_at=_from_naive_utc(row.created_at),
        )

    def active(self) -> WeightsConfig:
        session = get_session(self.db_path)
        try:
            row = session.query(WeightsConfigRecord).order_by(WeightsConfigRecord.version.desc()).first()
            return self._to_config(row)
        finally:
            session.close()

    def get(self, version: int) -> WeightsConfig:
        session = get_session(self.db_path)
        try:
            row = session.get(WeightsConfigRecord, version)
            if row is None:
                raise NotFoundError("weights config version", str(version))
            return self._to_config(row)
        finally:
            session.close()

    def history(self) -> List[WeightsConfig]:
        session = get_session(self.db_path)
        try:
            rows = session.query(WeightsConfigRecord).order_by(WeightsConfigRecord.version.desc()).all()
            return [self._to_config(r) for r in rows]
        finally:
            session.close()

    def publish(self, weights: FactorWeights, tie_breakers: Tuple[str, ...] = TIE_BREAKERS,
                rotation: Optional[RotationConfig] = None) -> WeightsConfig:
        """
        Raises:
            ConcurrencyConflictError: Another version was published at the same time
        """
        session = get_session(self.db_path)
        try:
            latest = session.query(WeightsConfigRecord).order_by(WeightsConfigRecord.version.desc()).first()
            config = WeightsConfig(
                version=latest.version + 1,
                weights=weights,
                tie_breakers=tie_breakers,
                rotation=rotation or RotationConfig(),
                created_at=datetime.now(timezone.utc),
            )
            session.add(WeightsConfigRecord(
                version=config.version,
                payload=json.dumps(config.to_dict()),
                created_at=_to_naive_utc(config.created_at),
            ))
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConcurrencyConflictError("weights version was published concurrently")
        finally:
            session.close()
        logger.info("Published weights config", version=config.version)
        return config

    def rollback(self, version: int) -> WeightsConfig:
        old = self.get(version)
        return self.publish(old.weights, old.tie_breakers, old.rotation)
