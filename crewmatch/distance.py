"""
Distance/ETA service: cheap Haversine for everyone, routed ETAs for a few.

coarse_distance() never fails. refined_eta() batches the narrowed set into
matrix requests, caches results per (origin, destination, time bucket), and
falls back to a Haversine-derived ETA (labelled source="haversine") when the
provider is disabled, unavailable or failing. The fallback is a degraded
mode, not an error.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .cache import SingleFlight, TTLCache
from .errors import UpstreamDegraded
from .geo import DEFAULT_AVERAGE_SPEED_KMH, eta_from_distance, haversine_meters
from .logger import get_logger
from .models import DistanceResult, GeoPoint
from .routing import RoutingClient

logger = get_logger()

Pair = Tuple[GeoPoint, GeoPoint]
CacheKey = Tuple[str, str, int]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DistanceService:
    """Coarse-to-refine distance and ETA lookups with caching and fallback."""

    def __init__(
        self,
        client: Optional[RoutingClient] = None,
        cache: Optional[TTLCache] = None,
        average_speed_kmh: float = DEFAULT_AVERAGE_SPEED_KMH,
        bucket_minutes: int = 15,
        batch_size: int = 8,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.cache = cache if cache is not None else TTLCache()
        self.average_speed_kmh = average_speed_kmh
        self.bucket_minutes = bucket_minutes
        self.batch_size = max(1, batch_size)
        self._clock = clock
        self._flight = SingleFlight()

    # Coarse

    def coarse_distance(self, a: GeoPoint, b: GeoPoint) -> float:
        """Straight-line meters. Pure, always available."""
        return haversine_meters(a, b)

    def haversine_result(self, a: GeoPoint, b: GeoPoint, now: Optional[datetime] = None) -> DistanceResult:
        meters = haversine_meters(a, b)
        return DistanceResult(
            distance_meters=meters,
            eta_minutes=eta_from_distance(meters, self.average_speed_kmh),
            source="haversine",
            cached_at=now or self._clock(),
        )

    def leg_eta(self, a: GeoPoint, b: GeoPoint) -> float:
        """
        Travel minutes for availability buffers: Haversine at the service speed.

        Never reads the cache, so slots do not depend on earlier requests.
        """
        return eta_from_distance(haversine_meters(a, b), self.average_speed_kmh)

    # Refine

    def time_bucket(self, moment: datetime) -> int:
        return int(moment.timestamp() // (self.bucket_minutes * 60))

    def cache_key(self, a: GeoPoint, b: GeoPoint, moment: datetime) -> CacheKey:
        return (a.cache_hash(), b.cache_hash(), self.time_bucket(moment))

    def refined_eta(self, pairs: Sequence[Pair], now: Optional[datetime] = None) -> List[DistanceResult]:
        """
        Routed distance/ETA for each (origin, destination) pair, in input order.

        Pairs the provider cannot answer get a Haversine result instead.
        """
        now = now or self._clock()
        results: List[Optional[DistanceResult]] = [None] * len(pairs)
        missing: Dict[CacheKey, List[int]] = {}

        for i, (a, b) in enumerate(pairs):
            key = self.cache_key(a, b, now)
            cached = self.cache.get(key)
            if cached is not None:
                logger.record_cache_hit()
                results[i] = cached
            else:
                logger.record_cache_miss()
                missing.setdefault(key, []).append(i)

        if missing:
            if self.client is None:
                logger.debug("Routing disabled, using Haversine ETAs", pairs=len(missing))
            elif not self.client.available:
                logger.warning("Routing circuit open, using Haversine ETAs", pairs=len(missing))
            else:
                keys = list(missing)
                for start in range(0, len(keys), self.batch_size):
                    chunk = keys[start:start + self.batch_size]
                    chunk_pairs = [pairs[missing[k][0]] for k in chunk]
                    fetched = self._fetch_chunk(tuple(chunk), chunk_pairs, now)
                    for key, result in zip(chunk, fetched):
                        if result is None:
                            continue
                        for i in missing[key]:
                            results[i] = result

        degraded = 0
        for i, (a, b) in enumerate(pairs):
            if results[i] is None:
                results[i] = self.haversine_result(a, b, now)
                degraded += 1
        if degraded and self.client is not None:
            logger.record_degraded(degraded)

        return results  # type: ignore[return-value]

    def _fetch_chunk(
        self,
        keys: Tuple[CacheKey, ...],
        chunk_pairs: List[Pair],
        now: datetime,
    ) -> List[Optional[DistanceResult]]:
        """One matrix request for up to batch_size pairs, de-duplicated across threads."""
        try:
            return self._flight.do(keys, lambda: self._request(keys, chunk_pairs, now))
        except UpstreamDegraded as e:
            logger.warning(
                "Routing provider unavailable, falling back to Haversine",
                error=str(e),
                pairs=len(chunk_pairs),
            )
            return [None] * len(chunk_pairs)

    def _request(
        self,
        keys: Tuple[CacheKey, ...],
        chunk_pairs: List[Pair],
        now: datetime,
    ) -> List[Optional[DistanceResult]]:
        origins = _unique([a for a, _ in chunk_pairs])
        destinations = _unique([b for _, b in chunk_pairs])
        minutes, meters = self.client.matrix(origins, destinations)

        results: List[Optional[DistanceResult]] = []
        for key, (a, b) in zip(keys, chunk_pairs):
            i = origins.index(a)
            j = destinations.index(b)
            eta = minutes[i][j]
            dist = meters[i][j]
            if eta is None or dist is None:
                results.append(None)
                continue
            result = DistanceResult(distance_meters=dist, eta_minutes=eta, source="refined", cached_at=now)
            self.cache.set(key, result)
            results.append(result)
        return results


def _unique(points: List[GeoPoint]) -> List[GeoPoint]:
    seen = []
    for p in points:
        if p not in seen:
            seen.append(p)
    return seen
