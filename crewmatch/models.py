"""
Value types shared by the availability, distance, scoring and booking layers.

All timestamps are timezone-aware UTC datetimes. Everything here is
immutable; per-request results are built fresh and never mutated.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

import pytz

from .errors import ValidationError

UTC = timezone.utc


def ensure_utc(value: datetime, field_name: str) -> datetime:
    """Return value normalised to UTC; naive datetimes are rejected."""
    if not isinstance(value, datetime):
        raise ValidationError(field_name, "must be a datetime")
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError(field_name, "must be timezone-aware")
    return value.astimezone(UTC)


def resolve_timezone(name: str, field_name: str = "time_zone"):
    """Resolve an IANA timezone name with pytz."""
    if not name or not name.strip():
        raise ValidationError(field_name, "timezone cannot be empty")
    try:
        return pytz.timezone(name.strip())
    except pytz.UnknownTimeZoneError:
        raise ValidationError(field_name, f"invalid timezone: {name}")


def normalize_skills(skills: Iterable[str]) -> FrozenSet[str]:
    return frozenset(s.strip().lower() for s in skills if s and s.strip())


class Priority(str, Enum):
    NORMAL = "Normal"
    HIGH = "High"
    RUSH = "Rush"

    @classmethod
    def parse(cls, value: str) -> "Priority":
        for p in cls:
            if p.value.lower() == str(value).strip().lower():
                return p
        raise ValidationError("priority", f"unknown priority {value!r}")


@dataclass(frozen=True)
class TimeWindow:
    """Half-open UTC interval [start, end)."""

    start: datetime
    end: datetime

    def __post_init__(self):
        object.__setattr__(self, "start", ensure_utc(self.start, "start"))
        object.__setattr__(self, "end", ensure_utc(self.end, "end"))
        if self.start >= self.end:
            raise ValidationError("start", "start must be before end")

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0

    def overlaps(self, other: "TimeWindow") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: "TimeWindow") -> bool:
        return self.start <= other.start and other.end <= self.end

    def intersect(self, other: "TimeWindow") -> Optional["TimeWindow"]:
        start = max(self.start, other.start)
        end = min(self.end, other.end)
        if start >= end:
            return None
        return TimeWindow(start, end)

    def expand(self, before_minutes: float, after_minutes: float) -> "TimeWindow":
        return TimeWindow(
            self.start - timedelta(minutes=before_minutes),
            self.end + timedelta(minutes=after_minutes),
        )


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float

    def __post_init__(self):
        if not -90.0 <= self.lat <= 90.0:
            raise ValidationError("lat", f"latitude out of range: {self.lat}")
        if not -180.0 <= self.lng <= 180.0:
            raise ValidationError("lng", f"longitude out of range: {self.lng}")

    def cache_hash(self) -> str:
        # 4 decimals is roughly 11 m
        return f"{round(self.lat, 4):.4f},{round(self.lng, 4):.4f}"


@dataclass(frozen=True)
class WorkingHours:
    """One weekly working interval. day_of_week: 0 = Sunday ... 6 = Saturday."""

    day_of_week: int
    start_time: time
    end_time: time
    time_zone: Optional[str] = None

    def __post_init__(self):
        if not 0 <= self.day_of_week <= 6:
            raise ValidationError("day_of_week", "must be between 0 (Sunday) and 6 (Saturday)")
        if self.start_time >= self.end_time:
            raise ValidationError("start_time", "start_time must be before end_time")
        if self.time_zone is not None:
            resolve_timezone(self.time_zone)


def day_of_week(day: date) -> int:
    """Sunday-based weekday index for a calendar date."""
    return (day.weekday() + 1) % 7


@dataclass(frozen=True)
class CalendarException:
    day: date
    kind: str  # holiday | override
    working_hours: Optional[WorkingHours] = None

    def __post_init__(self):
        if self.kind not in ("holiday", "override"):
            raise ValidationError("kind", f"unknown calendar exception kind {self.kind!r}")
        if self.kind == "override" and self.working_hours is None:
            raise ValidationError("working_hours", "override exceptions need working hours")


@dataclass(frozen=True)
class ContractorCalendar:
    holidays: FrozenSet[date] = frozenset()
    exceptions: Tuple[CalendarException, ...] = ()
    daily_break_minutes: int = 30

    def __post_init__(self):
        if self.daily_break_minutes < 0:
            raise ValidationError("daily_break_minutes", "cannot be negative")

    def exception_for(self, day: date) -> Optional[CalendarException]:
        if day in self.holidays:
            return CalendarException(day, "holiday")
        for exc in self.exceptions:
            if exc.day == day:
                return exc
        return None


@dataclass(frozen=True)
class ContractorProfile:
    contractor_id: str
    base_location: GeoPoint
    time_zone: str
    working_hours: Tuple[WorkingHours, ...]
    skills: FrozenSet[str]
    rating: float
    calendar: ContractorCalendar = field(default_factory=ContractorCalendar)
    max_jobs_per_day: int = 4
    name: str = ""

    def __post_init__(self):
        resolve_timezone(self.time_zone)
        object.__setattr__(self, "skills", normalize_skills(self.skills))
        object.__setattr__(self, "working_hours", tuple(self.working_hours))
        if not 0 <= self.rating <= 100:
            raise ValidationError("rating", "must be between 0 and 100")
        if self.max_jobs_per_day < 1:
            raise ValidationError("max_jobs_per_day", "must be at least 1")

    def has_skills(self, required: Iterable[str]) -> bool:
        return normalize_skills(required) <= self.skills


@dataclass(frozen=True)
class JobRequest:
    job_id: str
    location: GeoPoint
    timezone: str
    duration_minutes: int
    required_skills: FrozenSet[str] = frozenset()
    service_window: Optional[TimeWindow] = None
    priority: Priority = Priority.NORMAL
    desired_date: Optional[date] = None

    def __post_init__(self):
        resolve_timezone(self.timezone, "timezone")
        object.__setattr__(self, "required_skills", normalize_skills(self.required_skills))
        if self.duration_minutes <= 0:
            raise ValidationError("duration_minutes", "job duration must be positive")
        if self.service_window is None and self.desired_date is None:
            raise ValidationError("service_window", "a service window or desired date is required")

    @property
    def is_rush(self) -> bool:
        return self.priority == Priority.RUSH

    def search_window(self, override: Optional[TimeWindow] = None) -> TimeWindow:
        """Window in which slots are searched: explicit override, the job's own
        service window, or the whole desired date in the job's timezone."""
        if override is not None:
            return override
        if self.service_window is not None:
            return self.service_window
        tz = resolve_timezone(self.timezone)
        start = tz.localize(datetime.combine(self.desired_date, time.min))
        end = tz.localize(datetime.combine(self.desired_date + timedelta(days=1), time.min))
        return TimeWindow(start, end)


@dataclass(frozen=True)
class ExistingAssignment:
    contractor_id: str
    start_utc: datetime
    end_utc: datetime
    assignment_id: Optional[str] = None
    job_id: Optional[str] = None
    location: Optional[GeoPoint] = None
    status: str = "active"

    def __post_init__(self):
        # TimeWindow performs the UTC and ordering checks
        window = TimeWindow(self.start_utc, self.end_utc)
        object.__setattr__(self, "start_utc", window.start)
        object.__setattr__(self, "end_utc", window.end)

    @property
    def window(self) -> TimeWindow:
        return TimeWindow(self.start_utc, self.end_utc)

    @property
    def is_active(self) -> bool:
        return self.status != "cancelled"


@dataclass(frozen=True)
class CandidateSlot:
    start_utc: datetime
    end_utc: datetime
    confidence: float = 1.0
    margin_minutes: float = 0.0
    travel_minutes: float = 0.0
    leg: str = "base"  # base | job
    flags: Tuple[str, ...] = ()
    origin: Optional[GeoPoint] = None

    @property
    def window(self) -> TimeWindow:
        return TimeWindow(self.start_utc, self.end_utc)

    @property
    def time_range(self) -> Tuple[datetime, datetime]:
        return (self.start_utc, self.end_utc)


@dataclass(frozen=True)
class DistanceResult:
    distance_meters: float
    eta_minutes: float
    source: str  # haversine | refined
    cached_at: datetime

    @property
    def is_degraded(self) -> bool:
        return self.source == "haversine"


@dataclass(frozen=True)
class ScoreBreakdown:
    availability: float
    rating: float
    distance: float
    rotation: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "availability": round(self.availability, 2),
            "rating": round(self.rating, 2),
            "distance": round(self.distance, 2),
            "rotation": None if self.rotation is None else round(self.rotation, 2),
        }


@dataclass(frozen=True)
class SuggestedSlot:
    start_utc: datetime
    end_utc: datetime
    kind: str  # earliest | lowest-travel | highest-confidence
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_utc": self.start_utc.isoformat(),
            "end_utc": self.end_utc.isoformat(),
            "type": self.kind,
            "confidence": round(self.confidence, 3),
        }


@dataclass(frozen=True)
class CandidateScore:
    contractor_id: str
    final_score: float
    breakdown: ScoreBreakdown
    rationale: str
    suggested_slots: Tuple[SuggestedSlot, ...]
    distance_meters: float = 0.0
    eta_minutes: float = 0.0
    eta_source: str = "haversine"
    was_selected: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contractor_id": self.contractor_id,
            "final_score": round(self.final_score, 2),
            "breakdown": self.breakdown.to_dict(),
            "rationale": self.rationale,
            "suggested_slots": [s.to_dict() for s in self.suggested_slots],
            "distance_meters": round(self.distance_meters),
            "eta_minutes": round(self.eta_minutes, 1),
            "eta_source": self.eta_source,
            "was_selected": self.was_selected,
        }


@dataclass(frozen=True)
class RecommendationResponse:
    request_id: str
    job_id: str
    recommendations: Tuple[CandidateScore, ...]
    config_version: int
    generated_at: datetime
    message: str = ""
    degraded: bool = False

    @property
    def best_contractor_id(self) -> Optional[str]:
        return self.recommendations[0].contractor_id if self.recommendations else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "job_id": self.job_id,
            "recommendations": [r.to_dict() for r in self.recommendations],
            "best_contractor_id": self.best_contractor_id,
            "config_version": self.config_version,
            "generated_at": self.generated_at.isoformat(),
            "message": self.message,
            "degraded": self.degraded,
        }


ASSIGNMENT_SOURCES = ("auto", "manual")


@dataclass(frozen=True)
class AssignmentCommand:
    job_id: str
    contractor_id: str
    start_utc: datetime
    end_utc: datetime
    source: str = "auto"
    audit_id: Optional[str] = None

    def __post_init__(self):
        if not self.job_id:
            raise ValidationError("job_id", "required")
        if not self.contractor_id:
            raise ValidationError("contractor_id", "required")
        window = TimeWindow(self.start_utc, self.end_utc)
        object.__setattr__(self, "start_utc", window.start)
        object.__setattr__(self, "end_utc", window.end)
        source = str(self.source).strip().lower()
        if source not in ASSIGNMENT_SOURCES:
            raise ValidationError("source", f"must be one of {', '.join(ASSIGNMENT_SOURCES)}")
        object.__setattr__(self, "source", source)

    @property
    def window(self) -> TimeWindow:
        return TimeWindow(self.start_utc, self.end_utc)


@dataclass(frozen=True)
class AssignmentResult:
    assignment_id: Optional[str]
    status: str  # committed | rejected
    conflict: Optional[Dict[str, Any]] = None
    idempotent: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assignment_id": self.assignment_id,
            "status": self.status,
            "conflict": self.conflict,
            "idempotent": self.idempotent,
        }


def sort_assignments(assignments: Iterable[ExistingAssignment]) -> List[ExistingAssignment]:
    return sorted(assignments, key=lambda a: (a.start_utc, a.end_utc))
