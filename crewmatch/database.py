"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for assignments, per-contractor schedule
versions, recommendation audit records and weights config versions.
Timestamps are stored as naive UTC.
"""

from datetime import datetime, timezone
from pathlib import Path
from sqlalchemy import create_engine, Column, Float, Integer, String, DateTime, Text, Index
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AssignmentRecord(Base):
    """Committed booking of one job to one contractor."""

    __tablename__ = "assignments"

    id = Column(String, primary_key=True)  # uuid4 hex
    job_id = Column(String, nullable=False)
    contractor_id = Column(String, nullable=False)
    start_utc = Column(DateTime, nullable=False)
    end_utc = Column(DateTime, nullable=False)
    source = Column(String, nullable=False, default="auto")  # auto, manual
    status = Column(String, nullable=False, default="active")  # active, cancelled
    audit_id = Column(String, nullable=True)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_assignments_contractor_start", "contractor_id", "start_utc"),
        Index("ix_assignments_job", "job_id"),
    )


class ContractorSchedule(Base):
    """Optimistic concurrency token: bumped on every committed booking."""

    __tablename__ = "contractor_schedules"

    contractor_id = Column(String, primary_key=True)
    version = Column(Integer, nullable=False, default=0)


class AuditRecord(Base):
    """One immutable record per recommendation request."""

    __tablename__ = "recommendation_audit"

    request_id = Column(String, primary_key=True)
    job_id = Column(String, nullable=False)
    config_version = Column(Integer, nullable=False)
    request_payload = Column(Text, nullable=False)  # JSON
    candidates = Column(Text, nullable=False)  # JSON list of scored candidates
    selected_contractor_id = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class WeightsConfigRecord(Base):
    """Append-only weights config history."""

    __tablename__ = "weights_configs"

    version = Column(Integer, primary_key=True)
    payload = Column(Text, nullable=False)  # JSON
    created_at = Column(DateTime, nullable=False, default=utcnow)


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    engine = create_engine(f"sqlite:///{db_path}")
    Session = sessionmaker(bind=engine)
    return Session()
