"""
Versioned scoring weights.

A WeightsConfig is immutable. Edits publish a new version with a higher
number; the active config is always the latest version. Rolling back
re-publishes an old version's content under a new number.
"""

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .errors import NotFoundError, ValidationError

TIE_BREAKERS = ("earliest_start", "lower_utilization", "shortest_travel")

RUSH_DISTANCE_BONUS = 0.15
RUSH_AVAILABILITY_BONUS = 0.10


@dataclass(frozen=True)
class FactorWeights:
    availability: float = 0.20
    rating: float = 0.35
    distance: float = 0.45

    @property
    def total(self) -> float:
        return self.availability + self.rating + self.distance

    def normalized(self) -> "FactorWeights":
        total = self.total
        if total <= 0:
            raise ValidationError("weights", "weights must sum to a positive value")
        return FactorWeights(
            availability=self.availability / total,
            rating=self.rating / total,
            distance=self.distance / total,
        )

    def rush_adjusted(self) -> "FactorWeights":
        """Raw rush reweighting: distance +0.15, availability +0.10, rating unchanged."""
        return FactorWeights(
            availability=self.availability + RUSH_AVAILABILITY_BONUS,
            rating=self.rating,
            distance=self.distance + RUSH_DISTANCE_BONUS,
        )


@dataclass(frozen=True)
class RotationConfig:
    enabled: bool = True
    boost: float = 3.0
    under_utilization_threshold: float = 0.20


@dataclass(frozen=True)
class WeightsConfig:
    version: int = 1
    weights: FactorWeights = field(default_factory=FactorWeights)
    tie_breakers: Tuple[str, ...] = TIE_BREAKERS
    rotation: RotationConfig = field(default_factory=RotationConfig)
    created_at: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, "tie_breakers", tuple(self.tie_breakers))
        self.validate()

    def validate(self) -> None:
        errors = validate_weights_payload(self.to_dict())
        if errors:
            raise ValidationError("weights_config", "; ".join(errors))

    def effective_weights(self, rush: bool = False) -> FactorWeights:
        """Normalised weights to apply, rush reweighting first when asked."""
        weights = self.weights.rush_adjusted() if rush else self.weights
        return weights.normalized()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "weights": {
                "availability": self.weights.availability,
                "rating": self.weights.rating,
                "distance": self.weights.distance,
            },
            "tie_breakers": list(self.tie_breakers),
            "rotation": {
                "enabled": self.rotation.enabled,
                "boost": self.rotation.boost,
                "under_utilization_threshold": self.rotation.under_utilization_threshold,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], version: Optional[int] = None,
                  created_at: Optional[datetime] = None) -> "WeightsConfig":
        errors = validate_weights_payload(data)
        if errors:
            raise ValidationError("weights_config", "; ".join(errors))
        w = data.get("weights", {})
        r = data.get("rotation", {})
        defaults = RotationConfig()
        return cls(
            version=version if version is not None else int(data.get("version", 1)),
            weights=FactorWeights(
                availability=float(w.get("availability", 0.0)),
                rating=float(w.get("rating", 0.0)),
                distance=float(w.get("distance", 0.0)),
            ),
            tie_breakers=tuple(data.get("tie_breakers") or TIE_BREAKERS),
            rotation=RotationConfig(
                enabled=bool(r.get("enabled", defaults.enabled)),
                boost=float(r.get("boost", defaults.boost)),
                under_utilization_threshold=float(
                    r.get("under_utilization_threshold", defaults.under_utilization_threshold)
                ),
            ),
            created_at=created_at,
        )


def validate_weights_payload(data: Dict[str, Any]) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    """
    errors: List[str] = []

    weights = data.get("weights")
    if not isinstance(weights, dict):
        errors.append("Missing required field: weights")
    else:
        total = 0.0
        for name in ("availability", "rating", "distance"):
            value = weights.get(name, 0.0)
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                errors.append(f"Weight '{name}' must be a number")
                continue
            if value < 0:
                errors.append(f"Weight '{name}' cannot be negative")
            total += value
        if total <= 0:
            errors.append("Weights must sum to a positive value")

    tie_breakers = data.get("tie_breakers") or []
    unknown = [t for t in tie_breakers if t not in TIE_BREAKERS]
    if unknown:
        errors.append(f"Unknown tie-breakers: {', '.join(map(str, unknown))}")
    if len(set(tie_breakers)) != len(tie_breakers):
        errors.append("Tie-breakers must not repeat")

    rotation = data.get("rotation") or {}
    boost = rotation.get("boost", RotationConfig.boost)
    if not isinstance(boost, (int, float)) or not 0.0 <= boost <= 20.0:
        errors.append(f"Rotation boost must be between 0.0 and 20.0, got {boost}")
    threshold = rotation.get("under_utilization_threshold", RotationConfig.under_utilization_threshold)
    if not isinstance(threshold, (int, float)) or not 0.0 <= threshold <= 1.0:
        errors.append(f"Under-utilization threshold must be between 0.0 and 1.0, got {threshold}")

    return errors


class InMemoryWeightsStore:
    """Append-only version history held in memory."""

    def __init__(self, initial: Optional[WeightsConfig] = None):
        self._lock = threading.Lock()
        first = initial or WeightsConfig(version=1)
        if first.created_at is None:
            first = replace(first, created_at=datetime.now(timezone.utc))
        self._versions: List[WeightsConfig] = [first]

    def active(self) -> WeightsConfig:
        with self._lock:
            return self._versions[-1]

    def get(self, version: int) -> WeightsConfig:
        with self._lock:
            for config in self._versions:
                if config.version == version:
                    return config
        raise NotFoundError("weights config version", str(version))

    def history(self) -> List[WeightsConfig]:
        with self._lock:
            return list(reversed(self._versions))

    def publish(self, weights: FactorWeights, tie_breakers: Tuple[str, ...] = TIE_BREAKERS,
                rotation: Optional[RotationConfig] = None) -> WeightsConfig:
        with self._lock:
            config = WeightsConfig(
                version=self._versions[-1].version + 1,
                weights=weights,
                tie_breakers=tie_breakers,
                rotation=rotation or RotationConfig(),
                created_at=datetime.now(timezone.utc),
            )
            self._versions.append(config)
            return config

    def rollback(self, version: int) -> WeightsConfig:
        old = self.get(version)
        return self.publish(old.weights, old.tie_breakers, old.rotation)
