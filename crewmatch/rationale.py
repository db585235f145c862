"""
Fixed-template rationale strings for ranked candidates.

Built only from the numeric factors computed for a candidate, so the same
inputs always yield the same text.
"""

from datetime import datetime

from .models import resolve_timezone

MAX_RATIONALE_LENGTH = 200


def format_clock(moment: datetime, tz_name: str) -> str:
    """12-hour wall clock time in the given zone, e.g. '2:00 PM'."""
    local = moment.astimezone(resolve_timezone(tz_name))
    return local.strftime("%I:%M %p").lstrip("0")


def build_rationale(
    rank: int,
    eta_minutes: float,
    rating: float,
    earliest_start: datetime,
    tz_name: str,
    estimated: bool = False,
    flags: tuple = (),
) -> str:
    """
    Render the rationale for one candidate.

    Args:
        rank: 1-based position in the final ranking
        eta_minutes: Travel time of the leg used for the distance score
        rating: Contractor rating (0-100)
        earliest_start: Start of the earliest suggested slot (UTC)
        tz_name: Timezone the clock time is shown in (the job's)
        estimated: True when the ETA is a straight-line estimate
        flags: Fatigue flags carried by the earliest slot

    Returns:
        "Ranked #2: 8 min away, 92/100 rating, available 2:00 PM" style text,
        at most 200 characters.
    """
    away = f"{round(eta_minutes)} min away"
    if estimated:
        away = f"~{away}"
    text = (
        f"Ranked #{rank}: {away}, {round(rating)}/100 rating, "
        f"available {format_clock(earliest_start, tz_name)}"
    )
    if flags:
        text += f" (rush override: {', '.join(flags)})"
    return text[:MAX_RATIONALE_LENGTH]
