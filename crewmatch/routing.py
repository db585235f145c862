"""
HTTP client for the routing provider's distance/duration matrix.

Speaks the OpenRouteService matrix API: one POST with all locations,
answered with durations (seconds) and distances (meters). Requests are
retried briefly and guarded by a circuit breaker; every failure surfaces
as UpstreamDegraded so the distance layer can fall back.
"""

import math
from typing import List, Optional, Sequence, Tuple

import requests

from .errors import CircuitOpenError, RetryError, UpstreamDegraded
from .logger import get_logger
from .models import GeoPoint
from .retry import CircuitBreaker, exponential_backoff, should_retry_http_status

logger = get_logger()

Matrix = List[List[Optional[float]]]


class RetryableStatus(Exception):
    """Provider answered with a status worth retrying (408, 429, 5xx)."""

    def __init__(self, status_code: int):
        super().__init__(f"routing provider returned {status_code}")
        self.status_code = status_code


class RoutingClient:
    """Batched matrix requests against the routing provider."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 3.5,
        attempts: int = 2,
        breaker: Optional[CircuitBreaker] = None,
        session: Optional[requests.Session] = None,
        profile: str = "driving-car",
    ):
        """
        Args:
            base_url: Provider root, e.g. https://api.openrouteservice.org
            api_key: Sent in the Authorization header
            timeout: Connect/response timeout in seconds
            attempts: Total attempts per matrix request (first try included)
            breaker: Shared circuit breaker (opens for 30s after 3 failures by default)
            session: Optional requests.Session (connection reuse, testing)
            profile: Routing profile path segment
        """
        self.url = f"{base_url.rstrip('/')}/v2/matrix/{profile}"
        self.api_key = api_key
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker(failure_threshold=3, recovery_timeout=30.0)
        self.session = session or requests.Session()

        retrying = exponential_backoff(
            max_retries=max(0, attempts - 1),
            base_delay=0.1,
            max_delay=0.5,
            jitter=0.1,
            exceptions=(requests.exceptions.Timeout, requests.exceptions.ConnectionError, RetryableStatus),
            on_retry=self._on_retry,
        )
        self._post_with_retry = retrying(self._post)

    @property
    def available(self) -> bool:
        """False while the breaker is open."""
        return not self.breaker.is_open

    def matrix(
        self,
        origins: Sequence[GeoPoint],
        destinations: Sequence[GeoPoint],
    ) -> Tuple[Matrix, Matrix]:
        """
        Request travel durations and distances for every origin/destination pair.

        Returns:
            (durations_minutes, distances_meters), indexed [origin][destination].
            Unroutable pairs are None.

        Raises:
            UpstreamDegraded: On timeout, transport error, bad status, malformed
                body, or while the circuit breaker is open.
        """
        if not origins or not destinations:
            return [], []

        locations = [[p.lng, p.lat] for p in list(origins) + list(destinations)]
        payload = {
            "locations": locations,
            "sources": list(range(len(origins))),
            "destinations": list(range(len(origins), len(origins) + len(destinations))),
            "metrics": ["distance", "duration"],
        }

        logger.record_routing_call()
        try:
            return self.breaker.call(self._fetch, payload, len(origins), len(destinations))
        except CircuitOpenError:
            raise
        except RetryError as e:
            cause = e.__cause__
            logger.record_routing_failure(type(cause).__name__ if cause else "RetryError")
            if isinstance(cause, requests.exceptions.Timeout):
                # A timed-out provider is shut off straight away
                self.breaker.trip()
            raise
        except UpstreamDegraded as e:
            logger.record_routing_failure(type(e).__name__)
            raise

    def _fetch(self, payload: dict, n_origins: int, n_destinations: int) -> Tuple[Matrix, Matrix]:
        return self._parse(self._post_with_retry(payload), n_origins, n_destinations)

    def _post(self, payload: dict) -> dict:
        try:
            resp = self.session.post(
                self.url,
                json=payload,
                headers={"Authorization": self.api_key, "Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            if isinstance(e, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
                raise
            raise UpstreamDegraded(f"routing request error: {e}")

        if should_retry_http_status(resp.status_code):
            raise RetryableStatus(resp.status_code)
        if resp.status_code >= 400:
            raise UpstreamDegraded(
                f"routing provider rejected request ({resp.status_code})",
                status=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError:
            raise UpstreamDegraded("routing provider returned malformed JSON")

    def _parse(self, body: dict, n_origins: int, n_destinations: int) -> Tuple[Matrix, Matrix]:
        durations = body.get("durations") if isinstance(body, dict) else None
        distances = body.get("distances") if isinstance(body, dict) else None
        if not isinstance(durations, list) or not isinstance(distances, list):
            raise UpstreamDegraded("routing provider response missing durations/distances")
        if len(durations) != n_origins or len(distances) != n_origins:
            raise UpstreamDegraded("routing provider matrix has the wrong shape")

        minutes: Matrix = []
        meters: Matrix = []
        for dur_row, dist_row in zip(durations, distances):
            minutes.append(_row(dur_row, n_destinations, 60.0))
            meters.append(_row(dist_row, n_destinations, 1.0))
        return minutes, meters

    @staticmethod
    def _on_retry(attempt: int, error: Exception, delay: float):
        logger.debug("Retrying routing request", attempt=attempt, error=str(error), delay=round(delay, 3))


def _row(row, n_destinations: int, divisor: float) -> List[Optional[float]]:
    """One matrix row; None cells are unroutable pairs."""
    if not isinstance(row, list) or len(row) != n_destinations:
        raise UpstreamDegraded("routing provider matrix has the wrong shape")
    values: List[Optional[float]] = []
    for cell in row:
        if cell is None:
            values.append(None)
        elif isinstance(cell, (int, float)) and not isinstance(cell, bool) and math.isfinite(cell):
            values.append(float(cell) / divisor)
        else:
            raise UpstreamDegraded(f"routing provider matrix has a non-numeric cell: {cell!r}")
    return values
