"""
Directory document validation and parsing.

A directory document is the JSON form of the contractor/job collaborator:

    {
      "contractors": [{"id", "base_location": {"lat", "lng"}, "time_zone",
                       "working_hours": [{"day_of_week", "start", "end"}],
                       "skills", "rating", "calendar"?, "max_jobs_per_day"?}],
      "jobs": [{"id", "location", "timezone", "duration_minutes",
                "required_skills"?, "service_window"?, "priority"?, "desired_date"?}],
      "assignments": [{"id", "contractor_id", "start_utc", "end_utc", ...}]
    }

validate_directory() reports every problem at once; the parse_* helpers
raise ValidationError on the first one.
"""

from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Tuple

from .errors import ValidationError
from .models import (
    CalendarException,
    ContractorCalendar,
    ContractorProfile,
    ExistingAssignment,
    GeoPoint,
    JobRequest,
    Priority,
    TimeWindow,
    WorkingHours,
)

REQUIRED_CONTRACTOR_FIELDS = ["id", "base_location", "time_zone", "working_hours", "rating"]
REQUIRED_JOB_FIELDS = ["id", "location", "timezone", "duration_minutes"]
REQUIRED_ASSIGNMENT_FIELDS = ["contractor_id", "start_utc", "end_utc"]


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _missing(data: Dict[str, Any], fields: List[str], label: str) -> List[str]:
    return [f"{label}: missing required field: {f}" for f in fields if f not in data]


def validate_directory(data: Dict[str, Any]) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    """
    if not isinstance(data, dict):
        return ["Directory document must be a JSON object"]

    errors: List[str] = []
    seen_contractors = set()
    for i, item in enumerate(data.get("contractors", [])):
        label = f"contractors[{i}]"
        if not isinstance(item, dict):
            errors.append(f"{label}: must be an object")
            continue
        if "id" in item:
            if item["id"] in seen_contractors:
                errors.append(f"{label}: duplicate contractor id {item['id']!r}")
            seen_contractors.add(item["id"])
        missing = _missing(item, REQUIRED_CONTRACTOR_FIELDS, label)
        if missing:
            errors.extend(missing)
            continue
        try:
            parse_contractor(item)
        except (ValidationError, TypeError, ValueError) as e:
            errors.append(f"{label}: {e}")

    seen_jobs = set()
    for i, item in enumerate(data.get("jobs", [])):
        label = f"jobs[{i}]"
        if not isinstance(item, dict):
            errors.append(f"{label}: must be an object")
            continue
        if "id" in item:
            if item["id"] in seen_jobs:
                errors.append(f"{label}: duplicate job id {item['id']!r}")
            seen_jobs.add(item["id"])
        missing = _missing(item, REQUIRED_JOB_FIELDS, label)
        if missing:
            errors.extend(missing)
            continue
        try:
            parse_job(item)
        except (ValidationError, TypeError, ValueError) as e:
            errors.append(f"{label}: {e}")

    for i, item in enumerate(data.get("assignments", [])):
        label = f"assignments[{i}]"
        if not isinstance(item, dict):
            errors.append(f"{label}: must be an object")
            continue
        missing = _missing(item, REQUIRED_ASSIGNMENT_FIELDS, label)
        if missing:
            errors.extend(missing)
            continue
        if item["contractor_id"] not in seen_contractors:
            errors.append(f"{label}: unknown contractor {item['contractor_id']!r}")
        try:
            parse_assignment(item)
        except (ValidationError, TypeError, ValueError) as e:
            errors.append(f"{label}: {e}")

    return errors


# Field parsers

def parse_point(data: Any, field: str) -> GeoPoint:
    if not isinstance(data, dict) or "lat" not in data or "lng" not in data:
        raise ValidationError(field, "must be an object with lat and lng")
    return GeoPoint(float(data["lat"]), float(data["lng"]))


def parse_clock(value: Any, field: str) -> time:
    if not _is_non_empty_str(value):
        raise ValidationError(field, "must be an HH:MM string")
    try:
        return time.fromisoformat(value.strip())
    except ValueError:
        raise ValidationError(field, f"invalid time {value!r}")


def parse_date(value: Any, field: str) -> date:
    if not _is_non_empty_str(value):
        raise ValidationError(field, "must be a YYYY-MM-DD string")
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise ValidationError(field, f"invalid date {value!r}")


def parse_instant(value: Any, field: str) -> datetime:
    """ISO-8601 timestamp with an offset; a trailing Z is accepted."""
    if not _is_non_empty_str(value):
        raise ValidationError(field, "must be an ISO-8601 timestamp")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(field, f"invalid timestamp {value!r}")
    if moment.tzinfo is None:
        raise ValidationError(field, "timestamp needs a UTC offset")
    return moment


def parse_working_hours(data: Dict[str, Any], field: str = "working_hours") -> WorkingHours:
    if not isinstance(data, dict):
        raise ValidationError(field, "must be an object")
    return WorkingHours(
        day_of_week=int(data.get("day_of_week", -1)),
        start_time=parse_clock(data.get("start"), f"{field}.start"),
        end_time=parse_clock(data.get("end"), f"{field}.end"),
        time_zone=data.get("time_zone"),
    )


def parse_calendar(data: Optional[Dict[str, Any]]) -> ContractorCalendar:
    if not data:
        return ContractorCalendar()
    holidays = frozenset(parse_date(d, "calendar.holidays") for d in data.get("holidays", []))
    exceptions = []
    for item in data.get("exceptions", []):
        day = parse_date(item.get("date"), "calendar.exceptions.date")
        kind = item.get("kind", "override")
        hours = None
        if kind == "override":
            hours = WorkingHours(
                day_of_week=(day.weekday() + 1) % 7,
                start_time=parse_clock(item.get("start"), "calendar.exceptions.start"),
                end_time=parse_clock(item.get("end"), "calendar.exceptions.end"),
                time_zone=item.get("time_zone"),
            )
        exceptions.append(CalendarException(day=day, kind=kind, working_hours=hours))
    return ContractorCalendar(
        holidays=holidays,
        exceptions=tuple(exceptions),
        daily_break_minutes=int(data.get("daily_break_minutes", 30)),
    )


def parse_contractor(data: Dict[str, Any]) -> ContractorProfile:
    if not _is_non_empty_str(data.get("id")):
        raise ValidationError("id", "must be a non-empty string")
    skills = data.get("skills", [])
    if not isinstance(skills, list):
        raise ValidationError("skills", "must be a list of strings")
    return ContractorProfile(
        contractor_id=data["id"].strip(),
        name=data.get("name", ""),
        base_location=parse_point(data.get("base_location"), "base_location"),
        time_zone=data.get("time_zone", ""),
        working_hours=tuple(parse_working_hours(wh) for wh in data.get("working_hours", [])),
        skills=frozenset(skills),
        rating=float(data.get("rating", 0)),
        calendar=parse_calendar(data.get("calendar")),
        max_jobs_per_day=int(data.get("max_jobs_per_day", 4)),
    )


def parse_job(data: Dict[str, Any]) -> JobRequest:
    if not _is_non_empty_str(data.get("id")):
        raise ValidationError("id", "must be a non-empty string")
    window = None
    if data.get("service_window"):
        sw = data["service_window"]
        window = TimeWindow(
            parse_instant(sw.get("start"), "service_window.start"),
            parse_instant(sw.get("end"), "service_window.end"),
        )
    desired = parse_date(data["desired_date"], "desired_date") if data.get("desired_date") else None
    duration = data.get("duration_minutes")
    if not isinstance(duration, int) or isinstance(duration, bool):
        raise ValidationError("duration_minutes", "must be an integer")
    return JobRequest(
        job_id=data["id"].strip(),
        location=parse_point(data.get("location"), "location"),
        timezone=data.get("timezone", ""),
        duration_minutes=duration,
        required_skills=frozenset(data.get("required_skills", [])),
        service_window=window,
        priority=Priority.parse(data.get("priority", "Normal")),
        desired_date=desired,
    )


def parse_assignment(data: Dict[str, Any]) -> ExistingAssignment:
    location = parse_point(data["location"], "location") if data.get("location") else None
    return ExistingAssignment(
        contractor_id=data["contractor_id"],
        start_utc=parse_instant(data.get("start_utc"), "start_utc"),
        end_utc=parse_instant(data.get("end_utc"), "end_utc"),
        assignment_id=data.get("id"),
        job_id=data.get("job_id"),
        location=location,
        status=data.get("status", "active"),
    )


def parse_directory(
    data: Dict[str, Any],
) -> Tuple[List[ContractorProfile], List[JobRequest], List[ExistingAssignment]]:
    """Parse a directory document, raising ValidationError listing every problem."""
    errors = validate_directory(data)
    if errors:
        raise ValidationError("directory", "; ".join(errors))
    contractors = [parse_contractor(c) for c in data.get("contractors", [])]
    jobs = [parse_job(j) for j in data.get("jobs", [])]
    assignments = [parse_assignment(a) for a in data.get("assignments", [])]
    return contractors, jobs, assignments
