"""
Pytest configuration and shared fixtures.
"""

import pytest
import json
from datetime import date, datetime, time, timezone
from pathlib import Path
from typing import Dict, Any

from crewmatch.availability import AvailabilityEngine
from crewmatch.models import (
    ContractorCalendar,
    ContractorProfile,
    ExistingAssignment,
    GeoPoint,
    JobRequest,
    Priority,
    WorkingHours,
)

NY = "America/New_York"

# Monday 2 June 2025, Eastern Daylight Time (UTC-4)
MONDAY = date(2025, 6, 2)

MANHATTAN = GeoPoint(40.7128, -74.0060)
BROOKLYN = GeoPoint(40.6782, -73.9442)
QUEENS = GeoPoint(40.7282, -73.7949)
PHILADELPHIA = GeoPoint(39.9526, -75.1652)


def utc(year, month, day, hour, minute=0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def weekdays(start: time, end: time, tz: str = None):
    """Monday-Friday working hours (0 = Sunday)."""
    return tuple(WorkingHours(dow, start, end, tz) for dow in range(1, 6))


def make_profile(
    contractor_id: str = "c1",
    base: GeoPoint = MANHATTAN,
    tz: str = NY,
    skills=("plumbing",),
    rating: float = 90,
    hours=None,
    calendar: ContractorCalendar = None,
    max_jobs_per_day: int = 4,
) -> ContractorProfile:
    return ContractorProfile(
        contractor_id=contractor_id,
        base_location=base,
        time_zone=tz,
        working_hours=hours if hours is not None else weekdays(time(9), time(17)),
        skills=frozenset(skills),
        rating=rating,
        calendar=calendar or ContractorCalendar(),
        max_jobs_per_day=max_jobs_per_day,
    )


def make_job(
    job_id: str = "j1",
    location: GeoPoint = BROOKLYN,
    tz: str = NY,
    duration: int = 60,
    skills=("plumbing",),
    priority: Priority = Priority.NORMAL,
    desired: date = MONDAY,
    window=None,
) -> JobRequest:
    return JobRequest(
        job_id=job_id,
        location=location,
        timezone=tz,
        duration_minutes=duration,
        required_skills=frozenset(skills),
        service_window=window,
        priority=priority,
        desired_date=desired,
    )


def make_assignment(
    start: datetime,
    end: datetime,
    contractor_id: str = "c1",
    assignment_id: str = "a1",
    job_id: str = "old-job",
    location: GeoPoint = None,
) -> ExistingAssignment:
    return ExistingAssignment(
        contractor_id=contractor_id,
        start_utc=start,
        end_utc=end,
        assignment_id=assignment_id,
        job_id=job_id,
        location=location,
    )


@pytest.fixture
def profile() -> ContractorProfile:
    """Mon-Fri 09:00-17:00 Eastern plumber based in Manhattan."""
    return make_profile()


@pytest.fixture
def job() -> JobRequest:
    """One-hour plumbing job in Brooklyn on a Monday."""
    return make_job()


@pytest.fixture
def fixed_engine() -> AvailabilityEngine:
    """Engine whose every leg takes 60 minutes, so every buffer is 15 minutes."""
    return AvailabilityEngine(eta_fn=lambda a, b: 60.0)


@pytest.fixture
def fixed_now() -> datetime:
    return utc(2025, 6, 1, 12)


@pytest.fixture
def directory_data() -> Dict[str, Any]:
    """Directory document with three contractors, two jobs and one booking."""
    hours = [{"day_of_week": d, "start": "09:00", "end": "17:00"} for d in range(1, 6)]
    return {
        "contractors": [
            {
                "id": "c1",
                "name": "Ada",
                "base_location": {"lat": MANHATTAN.lat, "lng": MANHATTAN.lng},
                "time_zone": NY,
                "working_hours": hours,
                "skills": ["Plumbing", "heating"],
                "rating": 92,
            },
            {
                "id": "c2",
                "name": "Ben",
                "base_location": {"lat": QUEENS.lat, "lng": QUEENS.lng},
                "time_zone": NY,
                "working_hours": hours,
                "skills": ["plumbing"],
                "rating": 80,
                "calendar": {"holidays": ["2025-07-04"], "daily_break_minutes": 30},
            },
            {
                "id": "c3",
                "name": "Cy",
                "base_location": {"lat": PHILADELPHIA.lat, "lng": PHILADELPHIA.lng},
                "time_zone": NY,
                "working_hours": hours,
                "skills": ["plumbing"],
                "rating": 99,
            },
        ],
        "jobs": [
            {
                "id": "j1",
                "location": {"lat": BROOKLYN.lat, "lng": BROOKLYN.lng},
                "timezone": NY,
                "duration_minutes": 60,
                "required_skills": ["plumbing"],
                "priority": "Normal",
                "desired_date": MONDAY.isoformat(),
            },
            {
                "id": "j2",
                "location": {"lat": BROOKLYN.lat, "lng": BROOKLYN.lng},
                "timezone": NY,
                "duration_minutes": 90,
                "required_skills": ["roofing"],
                "desired_date": MONDAY.isoformat(),
            },
        ],
        "assignments": [
            {
                "id": "a1",
                "contractor_id": "c1",
                "job_id": "old-job",
                "start_utc": "2025-06-02T14:00:00Z",
                "end_utc": "2025-06-02T15:00:00Z",
            },
        ],
    }


@pytest.fixture
def directory_file(tmp_path, directory_data) -> Path:
    """Directory document written to disk."""
    path = tmp_path / "directory.json"
    path.write_text(json.dumps(directory_data, indent=2))
    return path
