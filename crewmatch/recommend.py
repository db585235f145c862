"""
Recommendation orchestrator.

Pipeline for one job:
    1. hard filter: required skills and straight-line radius
    2. availability per candidate (worker pool), dropping those without slots
    3. coarse sort by straight-line distance
    4. refined ETA for the top K in one batched call, under a sub-deadline
    5. single-threaded scoring and ranking
    6. one audit record with every scored candidate

Parallel work only gathers inputs; ordering is decided by the scorer
alone, so completion order never leaks into the response.
"""

import time
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from .availability import AvailabilityEngine
from .config import Settings
from .distance import DistanceService
from .errors import ValidationError
from .logger import get_logger
from .models import (
    CandidateSlot,
    ContractorProfile,
    DistanceResult,
    JobRequest,
    RecommendationResponse,
    TimeWindow,
)
from .scoring import ScoringEngine, ScoringInput
from .storage import AuditEntry

logger = get_logger()

DEFAULT_MAX_RESULTS = 10
MAX_RESULTS_LIMIT = 50

NO_QUALIFIED_MESSAGE = "No qualified contractors match the job's skills and service area."
NO_AVAILABILITY_MESSAGE = "No qualified contractor has a feasible slot in the requested window."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecommendationOrchestrator:
    """GetRecommendations: filter, fan out, refine, score, audit."""

    def __init__(
        self,
        directory,
        assignments,
        weights_store,
        distance: Optional[DistanceService] = None,
        engine: Optional[AvailabilityEngine] = None,
        scorer: Optional[ScoringEngine] = None,
        audit=None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        """
        Args:
            directory: Contractor/job lookups (get_job, list_contractors)
            assignments: Assignment store (list_for_contractor)
            weights_store: Source of the active WeightsConfig
            distance: Distance/ETA service; Haversine-only when omitted
            engine: Availability engine; built around the distance service when omitted
            scorer: Scoring engine
            audit: Audit store (record); auditing is skipped when None
            settings: Radius, top-K and deadlines
            clock: Request time source (UTC)
            id_factory: Request id generator
        """
        self.settings = settings or Settings()
        self.directory = directory
        self.assignments = assignments
        self.weights_store = weights_store
        self.distance = distance or DistanceService(average_speed_kmh=self.settings.average_speed_kmh)
        self.engine = engine
        self.scorer = scorer or ScoringEngine()
        self.audit = audit
        self._clock = clock
        self._id_factory = id_factory

    def get_recommendations(
        self,
        job_id: str,
        desired_date: Optional[date] = None,
        service_window: Optional[TimeWindow] = None,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> RecommendationResponse:
        """
        Rank contractors for a job.

        Args:
            job_id: Job to staff
            desired_date: Search the whole day (job's timezone) instead of the job's own window
            service_window: Explicit search window; wins over desired_date
            max_results: Number of recommendations returned (1-50)

        Returns:
            RecommendationResponse. An empty recommendation list is a valid
            answer and carries an explanatory message.

        Raises:
            NotFoundError: Unknown job
            ValidationError: Bad max_results or window
        """
        started = time.monotonic()
        if max_results < 1:
            raise ValidationError("max_results", "must be at least 1")
        max_results = min(max_results, MAX_RESULTS_LIMIT)

        job = self.directory.get_job(job_id)
        if service_window is None and desired_date is not None:
            job = replace(job, desired_date=desired_date, service_window=None)
        window = job.search_window(service_window)

        now = self._clock()
        request_id = self._id_factory()
        config = self.weights_store.active()
        payload = {
            "job_id": job_id,
            "desired_date": desired_date.isoformat() if desired_date else None,
            "service_window": {"start": window.start.isoformat(), "end": window.end.isoformat()},
            "max_results": max_results,
            "priority": job.priority.value,
        }

        qualified = self._qualify(job)
        logger.debug("Qualified candidates", job_id=job_id, count=len(qualified))

        ranked = []
        message = ""
        if not qualified:
            message = NO_QUALIFIED_MESSAGE
        else:
            available = self._availability(job, qualified, window)
            if not available:
                message = NO_AVAILABILITY_MESSAGE
            else:
                inputs = self._distances(job, available, now)
                ranked = self.scorer.rank(job, inputs, config, window)

        recommendations = tuple(ranked[:max_results])
        response = RecommendationResponse(
            request_id=request_id,
            job_id=job_id,
            recommendations=recommendations,
            config_version=config.version,
            generated_at=now,
            message=message,
            degraded=any(r.eta_source == "haversine" for r in recommendations),
        )

        self._record_audit(AuditEntry(
            request_id=request_id,
            job_id=job_id,
            config_version=config.version,
            request_payload=payload,
            candidates=[c.to_dict() for c in ranked],
            created_at=now,
        ))

        elapsed_ms = (time.monotonic() - started) * 1000
        if elapsed_ms > self.settings.deadline_ms:
            logger.warning(
                "Recommendation exceeded deadline",
                job_id=job_id,
                elapsed_ms=round(elapsed_ms),
                deadline_ms=self.settings.deadline_ms,
            )
        logger.record_recommendation()
        logger.info(
            "Recommendations served",
            request_id=request_id,
            job_id=job_id,
            returned=len(recommendations),
            scored=len(ranked),
            config_version=config.version,
            degraded=response.degraded,
            elapsed_ms=round(elapsed_ms),
        )
        return response

    # Stages

    def _qualify(self, job: JobRequest) -> List[Tuple[int, ContractorProfile, float]]:
        """(input index, profile, straight-line meters) for contractors passing the hard filter."""
        radius_m = self.settings.max_radius_km * 1000.0
        qualified = []
        for index, profile in enumerate(self.directory.list_contractors()):
            if not profile.has_skills(job.required_skills):
                continue
            meters = self.distance.coarse_distance(profile.base_location, job.location)
            if meters > radius_m:
                continue
            qualified.append((index, profile, meters))
        return qualified

    def _engine(self) -> AvailabilityEngine:
        if self.engine is not None:
            return self.engine
        return AvailabilityEngine(eta_fn=self.distance.leg_eta)

    def _availability(
        self,
        job: JobRequest,
        qualified: List[Tuple[int, ContractorProfile, float]],
        window: TimeWindow,
    ) -> List[Dict[str, Any]]:
        engine = self._engine()
        # Neighbouring days matter for buffers and fatigue
        lookup = window.expand(24 * 60, 24 * 60)

        def evaluate(item):
            index, profile, meters = item
            existing = self.assignments.list_for_contractor(profile.contractor_id, lookup)
            slots = engine.find_slots(profile, job, existing, window)
            utilization = 0.0
            if slots:
                day = engine.local_date(profile, slots[0].start_utc)
                utilization = engine.day_utilization(profile, existing, day)
            return {
                "index": index,
                "profile": profile,
                "meters": meters,
                "slots": tuple(slots),
                "utilization": utilization,
            }

        workers = max(1, min(self.settings.refine_top_k, len(qualified)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(evaluate, qualified))

        survivors = [r for r in results if r["slots"]]
        logger.debug("Availability computed", qualified=len(qualified), with_slots=len(survivors))
        return survivors

    def _distances(self, job: JobRequest, available: List[Dict[str, Any]], now: datetime) -> List[ScoringInput]:
        available.sort(key=lambda r: (r["meters"], r["index"]))
        top = available[: self.settings.refine_top_k]
        pairs = [(self._leg_origin(r["profile"], r["slots"][0]), job.location) for r in top]
        refined = self._refine(pairs, now)

        inputs = []
        for position, r in enumerate(available):
            if position < len(top):
                result = refined[position]
            else:
                origin = self._leg_origin(r["profile"], r["slots"][0])
                result = self.distance.haversine_result(origin, job.location, now)
            inputs.append(ScoringInput(
                index=r["index"],
                profile=r["profile"],
                slots=r["slots"],
                distance=result,
                utilization=r["utilization"],
            ))
        return inputs

    def _refine(self, pairs, now: datetime) -> List[DistanceResult]:
        """Batched refined ETAs, or Haversine for all when the sub-deadline passes."""
        if not pairs:
            return []
        pool = ThreadPoolExecutor(max_workers=1)
        try:
            future = pool.submit(self.distance.refined_eta, pairs, now)
            try:
                return future.result(timeout=self.settings.refine_deadline_ms / 1000.0)
            except FutureTimeout:
                logger.warning(
                    "Refine stage missed its deadline, using Haversine ETAs",
                    pairs=len(pairs),
                    deadline_ms=self.settings.refine_deadline_ms,
                )
                logger.record_degraded(len(pairs))
                return [self.distance.haversine_result(a, b, now) for a, b in pairs]
        finally:
            # A late provider answer still lands in the cache
            pool.shutdown(wait=False)

    @staticmethod
    def _leg_origin(profile: ContractorProfile, slot: CandidateSlot):
        return slot.origin or profile.base_location

    def _record_audit(self, entry: AuditEntry) -> None:
        if self.audit is None:
            return
        try:
            self.audit.record(entry)
        except Exception as e:
            logger.error(
                "Failed to write recommendation audit record",
                request_id=entry.request_id,
                error=str(e),
                error_type=type(e).__name__,
            )
