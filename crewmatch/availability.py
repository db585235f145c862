"""
Availability engine: feasible start times for one contractor and one job.

For every calendar day of the search window (in the contractor's timezone)
the effective working hours are resolved from the weekly schedule and the
calendar exceptions, the daily break is cut out mid-shift, existing
assignments are cut out together with their travel buffers, and the job is
slid across what is left on a quarter-hour grid. Placements that break the
fatigue limits are dropped, except that a Rush job may exceed the soft
limits (the slot is flagged instead).

Absence of slots is a valid result, not an error.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .geo import haversine_eta
from .intervals import merge, overlap_minutes, placements, subtract
from .models import (
    CandidateSlot,
    ContractorProfile,
    ExistingAssignment,
    GeoPoint,
    JobRequest,
    TimeWindow,
    WorkingHours,
    day_of_week,
    resolve_timezone,
    sort_assignments,
)

EtaFn = Callable[[GeoPoint, GeoPoint], float]


@dataclass(frozen=True)
class TravelBufferPolicy:
    """Buffer around busy intervals: clamp(eta * multiplier, min, max) minutes."""

    min_minutes: int = 10
    multiplier: float = 0.25
    max_minutes: int = 45

    def buffer_for(self, eta_minutes: float) -> int:
        if eta_minutes <= 0:
            return self.min_minutes
        return max(self.min_minutes, min(self.max_minutes, int(round(eta_minutes * self.multiplier))))


@dataclass(frozen=True)
class FatigueLimits:
    soft_cap_minutes: int = 10 * 60
    hard_stop_minutes: int = 12 * 60
    max_consecutive_jobs: int = 4
    min_break_minutes: int = 15


@dataclass(frozen=True)
class SlotCheck:
    feasible: bool
    reason: Optional[str] = None
    conflicting_assignment_id: Optional[str] = None
    flags: Tuple[str, ...] = ()


@dataclass
class _DayPlan:
    day: date
    day_window: TimeWindow
    shifts: List[TimeWindow] = field(default_factory=list)
    free: List[TimeWindow] = field(default_factory=list)
    day_assignments: List[ExistingAssignment] = field(default_factory=list)
    blocked_reason: Optional[str] = None

    @property
    def shift_minutes(self) -> float:
        return sum(s.duration_minutes for s in self.shifts)

    @property
    def worked_minutes(self) -> float:
        return sum(overlap_minutes(a.window, self.day_window) for a in self.day_assignments)


class AvailabilityEngine:
    """Computes feasible CandidateSlots for a contractor/job pair."""

    def __init__(
        self,
        buffer_policy: Optional[TravelBufferPolicy] = None,
        fatigue: Optional[FatigueLimits] = None,
        eta_fn: Optional[EtaFn] = None,
        slot_step_minutes: int = 15,
    ):
        """
        Args:
            buffer_policy: Travel buffer clamp (defaults 10/0.25/45)
            fatigue: Daily caps and consecutive-jobs rule
            eta_fn: Travel minutes between two points; Haversine at 50 km/h by default.
                Must not block on the network: the orchestrator passes a cache-backed lookup.
            slot_step_minutes: Grid on which slot starts are placed
        """
        self.buffer_policy = buffer_policy or TravelBufferPolicy()
        self.fatigue = fatigue or FatigueLimits()
        self.eta_fn: EtaFn = eta_fn or haversine_eta
        self.slot_step_minutes = slot_step_minutes

    # Public API

    def find_slots(
        self,
        profile: ContractorProfile,
        job: JobRequest,
        assignments: Sequence[ExistingAssignment],
        search_window: Optional[TimeWindow] = None,
    ) -> List[CandidateSlot]:
        """Feasible placements of the job, earliest first. Possibly empty."""
        window = job.search_window(search_window)
        active = self._active(profile, assignments)
        buffers = self._buffers(profile, job, active)

        slots: List[CandidateSlot] = []
        for day in self._local_days(profile, window):
            plan = self._plan_day(profile, job, active, buffers, day, window)
            if plan.blocked_reason:
                continue
            for free in plan.free:
                for placement in placements(free, job.duration_minutes, self.slot_step_minutes):
                    check = self._fatigue_check(plan, placement, job)
                    if not check.feasible:
                        continue
                    slots.append(self._make_slot(profile, job, plan, free, placement, check.flags))

        slots.sort(key=lambda s: (s.start_utc, s.end_utc))
        return slots

    def check_slot(
        self,
        profile: ContractorProfile,
        job: JobRequest,
        assignments: Sequence[ExistingAssignment],
        slot: TimeWindow,
    ) -> SlotCheck:
        """Re-validate one concrete slot against current assignments."""
        if slot.duration_minutes < job.duration_minutes:
            return SlotCheck(
                False,
                f"slot is {slot.duration_minutes:.0f} minutes, job needs {job.duration_minutes}",
            )

        active = self._active(profile, assignments)
        for existing in active:
            if existing.window.overlaps(slot):
                return SlotCheck(
                    False,
                    "overlaps an existing assignment",
                    conflicting_assignment_id=existing.assignment_id,
                )

        buffers = self._buffers(profile, job, active)
        day = self._local_date(profile, slot.start)
        plan = self._plan_day(profile, job, active, buffers, day, slot)
        if plan.blocked_reason:
            return SlotCheck(False, plan.blocked_reason)

        if not any(shift.contains(slot) for shift in plan.shifts):
            return SlotCheck(False, "outside working hours")
        if not any(free.contains(slot) for free in plan.free):
            return SlotCheck(False, "conflicts with a travel buffer or the daily break")

        return self._fatigue_check(plan, slot, job)

    def day_utilization(
        self,
        profile: ContractorProfile,
        assignments: Sequence[ExistingAssignment],
        day: date,
    ) -> float:
        """Worked minutes / effective working minutes for one local day (0..1)."""
        tz = resolve_timezone(profile.time_zone)
        day_window = self._day_window(tz, day)
        shifts = self._shift_windows(profile, day)
        shift_minutes = sum(s.duration_minutes for s in shifts)
        if shift_minutes <= 0:
            return 0.0
        worked = sum(
            overlap_minutes(a.window, day_window) for a in self._active(profile, assignments)
        )
        return min(1.0, worked / shift_minutes)

    def local_date(self, profile: ContractorProfile, moment: datetime) -> date:
        return self._local_date(profile, moment)

    # Day resolution

    def _plan_day(
        self,
        profile: ContractorProfile,
        job: JobRequest,
        active: List[ExistingAssignment],
        buffers: Dict[int, int],
        day: date,
        window: TimeWindow,
    ) -> _DayPlan:
        tz = resolve_timezone(profile.time_zone)
        plan = _DayPlan(day=day, day_window=self._day_window(tz, day))

        exception = profile.calendar.exception_for(day)
        if exception is not None and exception.kind == "holiday":
            plan.blocked_reason = f"{day.isoformat()} is a holiday"
            return plan

        plan.shifts = self._shift_windows(profile, day)
        if not plan.shifts:
            plan.blocked_reason = f"no working hours on {day.isoformat()}"
            return plan

        plan.day_assignments = [a for a in active if a.window.overlaps(plan.day_window)]
        if len(plan.day_assignments) >= profile.max_jobs_per_day:
            plan.blocked_reason = f"already {len(plan.day_assignments)} jobs on {day.isoformat()}"
            return plan

        available = [w for w in (s.intersect(window) for s in plan.shifts) if w is not None]
        busy = [a.window.expand(buffers[id(a)], buffers[id(a)]) for a in active]
        daily_break = self._break_window(plan.shifts, profile.calendar.daily_break_minutes)
        if daily_break is not None:
            busy.append(daily_break)

        plan.free = subtract(available, busy)
        return plan

    def _shift_windows(self, profile: ContractorProfile, day: date) -> List[TimeWindow]:
        exception = profile.calendar.exception_for(day)
        if exception is not None:
            if exception.kind == "holiday":
                return []
            entries: List[WorkingHours] = [exception.working_hours]
        else:
            dow = day_of_week(day)
            entries = [wh for wh in profile.working_hours if wh.day_of_week == dow]

        windows = []
        for wh in entries:
            tz = resolve_timezone(wh.time_zone or profile.time_zone)
            start = tz.localize(datetime.combine(day, wh.start_time))
            end = tz.localize(datetime.combine(day, wh.end_time))
            if start < end:
                windows.append(TimeWindow(start, end))
        return merge(windows)

    @staticmethod
    def _break_window(shifts: List[TimeWindow], break_minutes: int) -> Optional[TimeWindow]:
        """One daily break centred on the longest shift."""
        if break_minutes <= 0 or not shifts:
            return None
        longest = max(shifts, key=lambda s: s.duration_minutes)
        if longest.duration_minutes <= break_minutes:
            return None
        mid = longest.start + (longest.end - longest.start) / 2
        half = timedelta(minutes=break_minutes) / 2
        return TimeWindow(mid - half, mid + half)

    # Fatigue

    def _fatigue_check(self, plan: _DayPlan, slot: TimeWindow, job: JobRequest) -> SlotCheck:
        limits = self.fatigue
        flags: List[str] = []

        total = plan.worked_minutes + job.duration_minutes
        if total > limits.hard_stop_minutes:
            return SlotCheck(
                False,
                f"would exceed the {limits.hard_stop_minutes // 60}h hard stop ({total / 60:.1f}h)",
            )
        if total > limits.soft_cap_minutes:
            if not job.is_rush:
                return SlotCheck(
                    False,
                    f"would exceed the {limits.soft_cap_minutes // 60}h soft cap ({total / 60:.1f}h)",
                )
            flags.append("soft_cap")

        before = [a for a in plan.day_assignments if a.end_utc <= slot.start]
        if before:
            run = self._consecutive_run(before)
            gap = (slot.start - before[-1].end_utc).total_seconds() / 60.0
            if run >= limits.max_consecutive_jobs and gap < limits.min_break_minutes:
                if not job.is_rush:
                    return SlotCheck(
                        False,
                        f"would exceed {limits.max_consecutive_jobs} consecutive jobs without a "
                        f"{limits.min_break_minutes}-minute break",
                    )
                flags.append("consecutive")

        return SlotCheck(True, flags=tuple(flags))

    def _consecutive_run(self, ordered: List[ExistingAssignment]) -> int:
        """Jobs ending the list that follow each other without a proper break."""
        run = 1
        for i in range(len(ordered) - 1, 0, -1):
            gap = (ordered[i].start_utc - ordered[i - 1].end_utc).total_seconds() / 60.0
            if gap >= self.fatigue.min_break_minutes:
                break
            run += 1
        return run

    # Slot construction

    def _make_slot(
        self,
        profile: ContractorProfile,
        job: JobRequest,
        plan: _DayPlan,
        free: TimeWindow,
        placement: TimeWindow,
        flags: Tuple[str, ...],
    ) -> CandidateSlot:
        margin = min(
            (placement.start - free.start).total_seconds() / 60.0,
            (free.end - placement.end).total_seconds() / 60.0,
        )
        previous = [a for a in plan.day_assignments if a.end_utc <= placement.start]
        if previous:
            origin = previous[-1].location or profile.base_location
            leg = "job"
        else:
            origin = profile.base_location
            leg = "base"
        travel = self.eta_fn(origin, job.location)

        confidence = 0.6 + 0.4 * min(margin, 60.0) / 60.0 - 0.2 * len(flags)
        return CandidateSlot(
            start_utc=placement.start,
            end_utc=placement.end,
            confidence=max(0.0, min(1.0, confidence)),
            margin_minutes=margin,
            travel_minutes=travel,
            leg=leg,
            flags=flags,
            origin=origin,
        )

    # Helpers

    @staticmethod
    def _active(profile: ContractorProfile, assignments: Sequence[ExistingAssignment]) -> List[ExistingAssignment]:
        return sort_assignments(
            a for a in assignments if a.is_active and a.contractor_id == profile.contractor_id
        )

    def _buffers(
        self,
        profile: ContractorProfile,
        job: JobRequest,
        active: List[ExistingAssignment],
    ) -> Dict[int, int]:
        # Keyed by identity: two assignments may be equal by value
        return {
            id(a): self.buffer_policy.buffer_for(self.eta_fn(a.location or profile.base_location, job.location))
            for a in active
        }

    @staticmethod
    def _day_window(tz, day: date) -> TimeWindow:
        start = tz.localize(datetime.combine(day, time.min))
        end = tz.localize(datetime.combine(day + timedelta(days=1), time.min))
        return TimeWindow(start, end)

    @staticmethod
    def _local_date(profile: ContractorProfile, moment: datetime) -> date:
        tz = resolve_timezone(profile.time_zone)
        return moment.astimezone(tz).date()

    def _local_days(self, profile: ContractorProfile, window: TimeWindow) -> List[date]:
        first = self._local_date(profile, window.start)
        last = self._local_date(profile, window.end - timedelta(microseconds=1))
        days = []
        current = first
        while current <= last:
            days.append(current)
            current += timedelta(days=1)
        return days
