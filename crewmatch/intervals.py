"""
Slot arithmetic over lists of TimeWindow.

Helpers here are pure: they take and return sorted, non-overlapping
window lists and never touch timezones.
"""

from datetime import datetime, timedelta
from typing import Iterable, List

from .models import TimeWindow


def merge(windows: Iterable[TimeWindow]) -> List[TimeWindow]:
    """Sort and coalesce overlapping or touching windows."""
    ordered = sorted(windows, key=lambda w: (w.start, w.end))
    merged: List[TimeWindow] = []
    for w in ordered:
        if merged and w.start <= merged[-1].end:
            last = merged[-1]
            if w.end > last.end:
                merged[-1] = TimeWindow(last.start, w.end)
            continue
        merged.append(w)
    return merged


def subtract(free: Iterable[TimeWindow], busy: Iterable[TimeWindow]) -> List[TimeWindow]:
    """Remove every busy window from the free windows, splitting where needed."""
    busy_merged = merge(busy)
    remaining: List[TimeWindow] = []
    for window in merge(free):
        pieces = [window]
        for blocked in busy_merged:
            if blocked.start >= window.end:
                break
            next_pieces = []
            for piece in pieces:
                if not piece.overlaps(blocked):
                    next_pieces.append(piece)
                    continue
                if piece.start < blocked.start:
                    next_pieces.append(TimeWindow(piece.start, blocked.start))
                if piece.end > blocked.end:
                    next_pieces.append(TimeWindow(blocked.end, piece.end))
            pieces = next_pieces
        remaining.extend(pieces)
    return remaining


def align_up(moment: datetime, step_minutes: int) -> datetime:
    """Round up to the next multiple of step_minutes past the hour."""
    base = moment.replace(second=0, microsecond=0)
    if base < moment:
        base += timedelta(minutes=1)
    remainder = base.minute % step_minutes
    if remainder:
        base += timedelta(minutes=step_minutes - remainder)
    return base


def placements(window: TimeWindow, duration_minutes: int, step_minutes: int) -> List[TimeWindow]:
    """Every start on the step grid where a job of duration fits inside window."""
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=step_minutes)
    result: List[TimeWindow] = []
    start = align_up(window.start, step_minutes)
    while start + duration <= window.end:
        result.append(TimeWindow(start, start + duration))
        start += step
    return result


def overlap_minutes(a: TimeWindow, b: TimeWindow) -> float:
    common = a.intersect(b)
    return common.duration_minutes if common else 0.0
