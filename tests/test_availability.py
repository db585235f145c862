"""
Tests for the availability engine: working hours, calendar exceptions,
breaks, travel buffers and fatigue limits.
"""

import pytest
from dataclasses import replace
from datetime import date, time

from crewmatch.availability import AvailabilityEngine, TravelBufferPolicy
from crewmatch.models import (
    CalendarException,
    ContractorCalendar,
    Priority,
    TimeWindow,
    WorkingHours,
)

from conftest import MONDAY, make_assignment, make_job, make_profile, utc, weekdays

NO_BREAK = ContractorCalendar(daily_break_minutes=0)


def starts(slots):
    return [s.start_utc for s in slots]


class TestTravelBufferPolicy:
    def test_clamped(self):
        policy = TravelBufferPolicy()
        assert policy.buffer_for(0) == 10
        assert policy.buffer_for(20) == 10
        assert policy.buffer_for(60) == 15
        assert policy.buffer_for(120) == 30
        assert policy.buffer_for(500) == 45


class TestWorkedExample:
    """Mon-Fri 09:00-17:00 Eastern, one booking 10:00-11:00, 15-minute buffers."""

    @pytest.fixture
    def slots(self, profile, job, fixed_engine):
        existing = [make_assignment(utc(2025, 6, 2, 14), utc(2025, 6, 2, 15))]
        return fixed_engine.find_slots(profile, job, existing)

    def test_buffered_booking_excluded(self, slots):
        blocked = TimeWindow(utc(2025, 6, 2, 13, 50), utc(2025, 6, 2, 15, 15))
        assert not any(s.window.overlaps(blocked) for s in slots)

    def test_first_slot_after_buffer(self, slots):
        # 11:15 Eastern
        assert slots[0].start_utc == utc(2025, 6, 2, 15, 15)
        assert slots[0].end_utc == utc(2025, 6, 2, 16, 15)

    def test_break_cut_mid_shift(self, slots):
        # 30-minute break centred on 13:00 Eastern
        daily_break = TimeWindow(utc(2025, 6, 2, 16, 45), utc(2025, 6, 2, 17, 15))
        assert not any(s.window.overlaps(daily_break) for s in slots)

    def test_slots_inside_working_hours(self, slots):
        shift = TimeWindow(utc(2025, 6, 2, 13), utc(2025, 6, 2, 21))
        assert all(shift.contains(s.window) for s in slots)

    def test_expected_starts(self, slots):
        assert starts(slots)[:4] == [
            utc(2025, 6, 2, 15, 15),
            utc(2025, 6, 2, 15, 30),
            utc(2025, 6, 2, 15, 45),
            utc(2025, 6, 2, 17, 15),
        ]
        assert slots[-1].start_utc == utc(2025, 6, 2, 20)

    def test_earliest_first(self, slots):
        assert starts(slots) == sorted(starts(slots))

    def test_slot_after_booking_travels_from_job(self, slots):
        assert slots[0].leg == "job"
        assert slots[0].travel_minutes == 60.0


class TestWorkingHours:
    def test_empty_day_is_whole_shift(self, profile, job, fixed_engine):
        slots = fixed_engine.find_slots(profile, job, [])
        assert slots[0].start_utc == utc(2025, 6, 2, 13)
        assert slots[0].leg == "base"

    def test_weekend_has_no_slots(self, profile, fixed_engine):
        sunday = make_job(desired=date(2025, 6, 1))
        assert fixed_engine.find_slots(profile, sunday, []) == []

    def test_contractor_timezone_wins(self, fixed_engine):
        """A Chicago contractor works 09:00 Central even for a New York job."""
        chicago = make_profile(tz="America/Chicago")
        slots = fixed_engine.find_slots(chicago, make_job(), [])
        assert slots[0].start_utc == utc(2025, 6, 2, 14)
        assert slots[-1].end_utc == utc(2025, 6, 2, 22)

    def test_dst_shift(self, profile, fixed_engine):
        """09:00 Eastern is 14:00 UTC before the March switch and 13:00 UTC after."""
        before = fixed_engine.find_slots(profile, make_job(desired=date(2025, 3, 7)), [])
        after = fixed_engine.find_slots(profile, make_job(desired=date(2025, 3, 10)), [])
        assert before[0].start_utc == utc(2025, 3, 7, 14)
        assert after[0].start_utc == utc(2025, 3, 10, 13)

    def test_entry_timezone_overrides_profile(self, fixed_engine):
        hours = (WorkingHours(1, time(9), time(17), "America/Los_Angeles"),)
        remote = make_profile(hours=hours)
        slots = fixed_engine.find_slots(remote, make_job(), [])
        assert slots[0].start_utc == utc(2025, 6, 2, 16)

    def test_search_window_limits_slots(self, profile, job, fixed_engine):
        window = TimeWindow(utc(2025, 6, 2, 18), utc(2025, 6, 2, 19, 30))
        slots = fixed_engine.find_slots(profile, job, [], window)
        assert starts(slots) == [utc(2025, 6, 2, 18), utc(2025, 6, 2, 18, 15), utc(2025, 6, 2, 18, 30)]


class TestCalendarExceptions:
    def test_holiday_removes_day(self, job, fixed_engine):
        profile = make_profile(calendar=ContractorCalendar(holidays=frozenset({MONDAY})))
        assert fixed_engine.find_slots(profile, job, []) == []

    def test_override_replaces_schedule(self, job, fixed_engine):
        override = CalendarException(MONDAY, "override", WorkingHours(1, time(10), time(14)))
        profile = make_profile(calendar=ContractorCalendar(exceptions=(override,)))

        slots = fixed_engine.find_slots(profile, job, [])

        # 10:00-14:00 Eastern with the break at 11:45-12:15
        assert slots[0].start_utc == utc(2025, 6, 2, 14)
        assert slots[-1].start_utc == utc(2025, 6, 2, 17)
        daily_break = TimeWindow(utc(2025, 6, 2, 15, 45), utc(2025, 6, 2, 16, 15))
        assert not any(s.window.overlaps(daily_break) for s in slots)

    def test_override_on_other_day_keeps_weekly_schedule(self, job, fixed_engine):
        override = CalendarException(date(2025, 6, 3), "override", WorkingHours(2, time(10), time(14)))
        profile = make_profile(calendar=ContractorCalendar(exceptions=(override,)))
        slots = fixed_engine.find_slots(profile, job, [])
        assert slots[0].start_utc == utc(2025, 6, 2, 13)


class TestDailyLimits:
    def test_max_jobs_per_day(self, job, fixed_engine):
        profile = make_profile(max_jobs_per_day=1)
        existing = [make_assignment(utc(2025, 6, 2, 14), utc(2025, 6, 2, 15))]
        assert fixed_engine.find_slots(profile, job, existing) == []

    def test_cancelled_assignments_ignored(self, profile, job, fixed_engine):
        cancelled = make_assignment(utc(2025, 6, 2, 13), utc(2025, 6, 2, 15))
        cancelled = replace(cancelled, status="cancelled")
        slots = fixed_engine.find_slots(profile, job, [cancelled])
        assert slots[0].start_utc == utc(2025, 6, 2, 13)

    def test_other_contractors_ignored(self, profile, job, fixed_engine):
        other = make_assignment(utc(2025, 6, 2, 13), utc(2025, 6, 2, 15), contractor_id="c9")
        slots = fixed_engine.find_slots(profile, job, [other])
        assert slots[0].start_utc == utc(2025, 6, 2, 13)


class TestFatigue:
    @pytest.fixture
    def engine(self):
        return AvailabilityEngine(eta_fn=lambda a, b: 0.0)

    @pytest.fixture
    def long_day(self):
        return make_profile(hours=weekdays(time(6), time(20)), max_jobs_per_day=10)

    def test_hard_stop_applies_to_rush(self, engine, long_day):
        # 690 worked minutes + 60 > 12h
        existing = [
            make_assignment(utc(2025, 6, 2, 10), utc(2025, 6, 2, 15, 45), assignment_id="a1"),
            make_assignment(utc(2025, 6, 2, 17), utc(2025, 6, 2, 22, 45), assignment_id="a2"),
        ]
        rush = make_job(priority=Priority.RUSH)
        assert engine.find_slots(long_day, rush, existing) == []
        assert engine.find_slots(long_day, make_job(), existing) == []

    def test_soft_cap_blocks_normal_but_flags_rush(self, engine, long_day):
        # 560 worked minutes + 60 > 10h
        existing = [
            make_assignment(utc(2025, 6, 2, 10), utc(2025, 6, 2, 14, 40), assignment_id="a1"),
            make_assignment(utc(2025, 6, 2, 17), utc(2025, 6, 2, 21, 40), assignment_id="a2"),
        ]
        assert engine.find_slots(long_day, make_job(), existing) == []

        slots = engine.find_slots(long_day, make_job(priority=Priority.RUSH), existing)
        assert slots
        assert all("soft_cap" in s.flags for s in slots)
        assert all(s.confidence <= 0.8 for s in slots)

    def test_consecutive_jobs_need_a_break(self, engine):
        profile = make_profile(hours=weekdays(time(8), time(18)), calendar=NO_BREAK, max_jobs_per_day=6)
        # Four back-to-back jobs 08:00-11:50 Eastern
        existing = [
            make_assignment(utc(2025, 6, 2, 12), utc(2025, 6, 2, 13), assignment_id="a1"),
            make_assignment(utc(2025, 6, 2, 13), utc(2025, 6, 2, 14), assignment_id="a2"),
            make_assignment(utc(2025, 6, 2, 14), utc(2025, 6, 2, 15), assignment_id="a3"),
            make_assignment(utc(2025, 6, 2, 15), utc(2025, 6, 2, 15, 50), assignment_id="a4"),
        ]

        normal = engine.find_slots(profile, make_job(), existing)
        assert normal[0].start_utc == utc(2025, 6, 2, 16, 15)

        rush = engine.find_slots(profile, make_job(priority=Priority.RUSH), existing)
        assert rush[0].start_utc == utc(2025, 6, 2, 16)
        assert rush[0].flags == ("consecutive",)
        assert rush[1].flags == ()


class TestCheckSlot:
    def test_feasible(self, profile, job, fixed_engine):
        slot = TimeWindow(utc(2025, 6, 2, 15, 15), utc(2025, 6, 2, 16, 15))
        existing = [make_assignment(utc(2025, 6, 2, 14), utc(2025, 6, 2, 15))]
        assert fixed_engine.check_slot(profile, job, existing, slot).feasible

    def test_direct_overlap_names_assignment(self, profile, job, fixed_engine):
        slot = TimeWindow(utc(2025, 6, 2, 14, 30), utc(2025, 6, 2, 15, 30))
        existing = [make_assignment(utc(2025, 6, 2, 14), utc(2025, 6, 2, 15), assignment_id="busy")]
        check = fixed_engine.check_slot(profile, job, existing, slot)
        assert not check.feasible
        assert check.conflicting_assignment_id == "busy"

    def test_inside_buffer(self, profile, job, fixed_engine):
        slot = TimeWindow(utc(2025, 6, 2, 15, 5), utc(2025, 6, 2, 16, 5))
        existing = [make_assignment(utc(2025, 6, 2, 14), utc(2025, 6, 2, 15))]
        check = fixed_engine.check_slot(profile, job, existing, slot)
        assert not check.feasible
        assert "buffer" in check.reason

    def test_outside_working_hours(self, profile, job, fixed_engine):
        slot = TimeWindow(utc(2025, 6, 2, 21), utc(2025, 6, 2, 22))
        check = fixed_engine.check_slot(profile, job, [], slot)
        assert check.reason == "outside working hours"

    def test_too_short(self, profile, job, fixed_engine):
        slot = TimeWindow(utc(2025, 6, 2, 14), utc(2025, 6, 2, 14, 30))
        check = fixed_engine.check_slot(profile, job, [], slot)
        assert not check.feasible
        assert "job needs 60" in check.reason

    def test_holiday(self, job, fixed_engine):
        profile = make_profile(calendar=ContractorCalendar(holidays=frozenset({MONDAY})))
        slot = TimeWindow(utc(2025, 6, 2, 14), utc(2025, 6, 2, 15))
        check = fixed_engine.check_slot(profile, job, [], slot)
        assert "holiday" in check.reason


class TestUtilization:
    def test_day_utilization(self, profile, fixed_engine):
        existing = [make_assignment(utc(2025, 6, 2, 14), utc(2025, 6, 2, 16))]
        assert fixed_engine.day_utilization(profile, existing, MONDAY) == pytest.approx(0.25)

    def test_no_hours_no_utilization(self, profile, fixed_engine):
        assert fixed_engine.day_utilization(profile, [], date(2025, 6, 1)) == 0.0
