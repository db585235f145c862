"""
Runtime settings read from the environment.

Call load_env() first if a .env file should be honoured.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional

from .errors import ValidationError


def _read(env: Mapping[str, str], name: str, default, cast: Callable):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        raise ValidationError(name, f"invalid value {raw!r}")


@dataclass(frozen=True)
class Settings:
    routing_url: str = "https://api.openrouteservice.org"
    routing_api_key: str = ""
    routing_timeout: float = 3.5
    routing_retries: int = 2
    routing_batch: int = 8
    breaker_threshold: int = 3
    breaker_open_seconds: float = 30.0
    cache_ttl_seconds: float = 900.0
    cache_bucket_minutes: int = 15
    average_speed_kmh: float = 50.0
    max_radius_km: float = 80.0
    refine_top_k: int = 6
    deadline_ms: int = 500
    refine_deadline_ms: int = 350
    db_path: Path = Path("data/crewmatch.db")
    log_level: str = "INFO"
    log_dir: Path = Path("logs")

    @property
    def routing_enabled(self) -> bool:
        return bool(self.routing_api_key)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from CREWMATCH_* variables, falling back to defaults."""
        env = os.environ if env is None else env
        d = cls()
        settings = cls(
            routing_url=_read(env, "CREWMATCH_ROUTING_URL", d.routing_url, str),
            routing_api_key=_read(env, "CREWMATCH_ROUTING_API_KEY", d.routing_api_key, str),
            routing_timeout=_read(env, "CREWMATCH_ROUTING_TIMEOUT", d.routing_timeout, float),
            routing_retries=_read(env, "CREWMATCH_ROUTING_RETRIES", d.routing_retries, int),
            routing_batch=_read(env, "CREWMATCH_ROUTING_BATCH", d.routing_batch, int),
            breaker_threshold=_read(env, "CREWMATCH_BREAKER_THRESHOLD", d.breaker_threshold, int),
            breaker_open_seconds=_read(env, "CREWMATCH_BREAKER_OPEN_SECONDS", d.breaker_open_seconds, float),
            cache_ttl_seconds=_read(env, "CREWMATCH_CACHE_TTL", d.cache_ttl_seconds, float),
            cache_bucket_minutes=_read(env, "CREWMATCH_CACHE_BUCKET_MINUTES", d.cache_bucket_minutes, int),
            average_speed_kmh=_read(env, "CREWMATCH_AVERAGE_SPEED_KMH", d.average_speed_kmh, float),
            max_radius_km=_read(env, "CREWMATCH_MAX_RADIUS_KM", d.max_radius_km, float),
            # Refinement is worth it for a handful of candidates only
            refine_top_k=min(8, max(5, _read(env, "CREWMATCH_REFINE_TOP_K", d.refine_top_k, int))),
            deadline_ms=_read(env, "CREWMATCH_DEADLINE_MS", d.deadline_ms, int),
            refine_deadline_ms=_read(env, "CREWMATCH_REFINE_DEADLINE_MS", d.refine_deadline_ms, int),
            db_path=_read(env, "CREWMATCH_DB_PATH", d.db_path, Path),
            log_level=_read(env, "CREWMATCH_LOG_LEVEL", d.log_level, str).upper(),
            log_dir=_read(env, "CREWMATCH_LOG_DIR", d.log_dir, Path),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.routing_timeout <= 0:
            raise ValidationError("CREWMATCH_ROUTING_TIMEOUT", "must be positive")
        if self.routing_retries < 1:
            raise ValidationError("CREWMATCH_ROUTING_RETRIES", "must be at least 1")
        if self.routing_batch < 1:
            raise ValidationError("CREWMATCH_ROUTING_BATCH", "must be at least 1")
        if not 0 < self.cache_bucket_minutes <= 60:
            raise ValidationError("CREWMATCH_CACHE_BUCKET_MINUTES", "must be between 1 and 60")
        if self.average_speed_kmh <= 0:
            raise ValidationError("CREWMATCH_AVERAGE_SPEED_KMH", "must be positive")
        if self.refine_deadline_ms > self.deadline_ms:
            raise ValidationError("CREWMATCH_REFINE_DEADLINE_MS", "must not exceed CREWMATCH_DEADLINE_MS")
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValidationError("CREWMATCH_LOG_LEVEL", f"unknown level {self.log_level}")
