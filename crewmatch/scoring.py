"""
Scoring and ranking for recommendation candidates.

Responsibilities:
- Compute per-factor scores (availability, rating, distance, rotation).
- Combine them with the active WeightsConfig into a final score.
- Order candidates with the configured tie-breakers.
- Pick up to three suggested slots and render the rationale.

Non-Responsibilities:
- No I/O, no distance lookups, no availability computation.
- No audit or persistence.

Invariant:
Given identical inputs, this module always returns the same ordering,
scores and rationale. Input order only matters for ties that survive
every tie-breaker.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .models import (
    CandidateScore,
    CandidateSlot,
    ContractorProfile,
    DistanceResult,
    JobRequest,
    ScoreBreakdown,
    SuggestedSlot,
    TimeWindow,
)
from .rationale import build_rationale
from .weights import RotationConfig, WeightsConfig

ETA_CAP_MINUTES = 60.0
LONG_LEG_MINUTES = 35.0
LONG_LEG_PENALTY = 10.0

PROMPTNESS_WEIGHT = 0.7
CONFIDENCE_WEIGHT = 0.3

MAX_SUGGESTED_SLOTS = 3
SCORE_DECIMALS = 2


@dataclass(frozen=True)
class ScoringInput:
    """Everything the scorer needs about one qualified candidate."""

    index: int
    profile: ContractorProfile
    slots: Tuple[CandidateSlot, ...]
    distance: DistanceResult
    utilization: float = 0.0

    @property
    def earliest(self) -> Optional[CandidateSlot]:
        return self.slots[0] if self.slots else None


# Factor scores

def distance_score(eta_minutes: float, leg: str = "base", eta_cap: float = ETA_CAP_MINUTES) -> float:
    """
    Decreasing in ETA: 100 at the door, 0 at eta_cap minutes or more.

    A job-to-job leg of 35 minutes or more loses a further 10 points instead
    of being blocked.
    """
    score = 100.0 - min(100.0, max(0.0, eta_minutes) / eta_cap * 100.0)
    if leg == "job" and eta_minutes >= LONG_LEG_MINUTES:
        score -= LONG_LEG_PENALTY
    return max(0.0, score)


def availability_score(slots: Sequence[CandidateSlot], window: TimeWindow) -> float:
    """Earlier and more confident first slots score higher; 0 without slots."""
    if not slots:
        return 0.0
    first = slots[0]
    span = (window.end - window.start).total_seconds()
    lead = (first.start_utc - window.start).total_seconds()
    promptness = 1.0 - lead / span if span > 0 else 1.0
    promptness = max(0.0, min(1.0, promptness))
    return 100.0 * (PROMPTNESS_WEIGHT * promptness + CONFIDENCE_WEIGHT * first.confidence)


def rotation_boost(utilization: float, mean_utilization: float, rotation: RotationConfig) -> float:
    """
    Bonus for contractors under the utilization threshold.

    Full boost at zero utilization, shrinking linearly to nothing as the
    contractor's utilization reaches the population mean.
    """
    if not rotation.enabled or rotation.boost <= 0:
        return 0.0
    if utilization >= rotation.under_utilization_threshold:
        return 0.0
    if mean_utilization <= 0 or utilization >= mean_utilization:
        return 0.0
    return rotation.boost * (mean_utilization - utilization) / mean_utilization


def population_mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


# Slot selection

def select_slots(slots: Sequence[CandidateSlot]) -> Tuple[SuggestedSlot, ...]:
    """Earliest, lowest-travel and highest-confidence slots, distinct by time range."""
    if not slots:
        return ()

    picks = [("earliest", slots[0])]
    picks.append(("lowest-travel", min(slots, key=lambda s: (s.travel_minutes, s.start_utc))))
    picks.append((
        "highest-confidence",
        min(slots, key=lambda s: (-s.confidence, -s.margin_minutes, s.start_utc)),
    ))

    seen = set()
    suggested: List[SuggestedSlot] = []
    for kind, slot in picks:
        if slot.time_range in seen:
            continue
        seen.add(slot.time_range)
        suggested.append(SuggestedSlot(slot.start_utc, slot.end_utc, kind, slot.confidence))
    return tuple(suggested[:MAX_SUGGESTED_SLOTS])


# Ranking

class ScoringEngine:
    """Scores and ranks a candidate set against one WeightsConfig."""

    def __init__(self, eta_cap_minutes: float = ETA_CAP_MINUTES):
        self.eta_cap_minutes = eta_cap_minutes

    def breakdown(
        self,
        candidate: ScoringInput,
        window: TimeWindow,
        mean_utilization: float,
        config: WeightsConfig,
    ) -> ScoreBreakdown:
        earliest = candidate.earliest
        leg = earliest.leg if earliest else "base"
        rotation = None
        if config.rotation.enabled:
            rotation = rotation_boost(candidate.utilization, mean_utilization, config.rotation)
        return ScoreBreakdown(
            availability=availability_score(candidate.slots, window),
            rating=candidate.profile.rating,
            distance=distance_score(candidate.distance.eta_minutes, leg, self.eta_cap_minutes),
            rotation=rotation,
        )

    @staticmethod
    def final_score(breakdown: ScoreBreakdown, config: WeightsConfig, rush: bool) -> float:
        w = config.effective_weights(rush=rush)
        total = (
            w.availability * breakdown.availability
            + w.rating * breakdown.rating
            + w.distance * breakdown.distance
            + (breakdown.rotation or 0.0)
        )
        return max(0.0, min(100.0, total))

    def rank(
        self,
        job: JobRequest,
        candidates: Sequence[ScoringInput],
        config: WeightsConfig,
        window: TimeWindow,
    ) -> List[CandidateScore]:
        """
        Score every candidate and return them best first.

        Candidates without slots are ranked too (availability 0), but the
        orchestrator normally prunes them beforehand.
        """
        mean_utilization = population_mean([c.utilization for c in candidates])

        scored = []
        for candidate in candidates:
            breakdown = self.breakdown(candidate, window, mean_utilization, config)
            final = self.final_score(breakdown, config, job.is_rush)
            scored.append((candidate, breakdown, final))

        scored.sort(key=lambda item: self._sort_key(item[0], item[2], config.tie_breakers))

        ranked: List[CandidateScore] = []
        for position, (candidate, breakdown, final) in enumerate(scored, start=1):
            earliest = candidate.earliest
            rationale = ""
            if earliest is not None:
                rationale = build_rationale(
                    rank=position,
                    eta_minutes=candidate.distance.eta_minutes,
                    rating=candidate.profile.rating,
                    earliest_start=earliest.start_utc,
                    tz_name=job.timezone,
                    estimated=candidate.distance.is_degraded,
                    flags=earliest.flags,
                )
            ranked.append(CandidateScore(
                contractor_id=candidate.profile.contractor_id,
                final_score=final,
                breakdown=breakdown,
                rationale=rationale,
                suggested_slots=select_slots(candidate.slots),
                distance_meters=candidate.distance.distance_meters,
                eta_minutes=candidate.distance.eta_minutes,
                eta_source=candidate.distance.source,
            ))
        return ranked

    @staticmethod
    def _sort_key(candidate: ScoringInput, final: float, tie_breakers: Sequence[str]) -> tuple:
        # Scores equal to two decimals count as tied
        key: list = [-round(final, SCORE_DECIMALS)]
        earliest = candidate.earliest
        for name in tie_breakers:
            if name == "earliest_start":
                key.append(earliest.start_utc.timestamp() if earliest else float("inf"))
            elif name == "lower_utilization":
                key.append(candidate.utilization)
            elif name == "shortest_travel":
                key.append(candidate.distance.eta_minutes)
        key.append(candidate.index)
        return tuple(key)
