"""Geocoding result and attempt models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

CACHE_PROVIDER = "CACHE"


class GeocodeOutcome(StrEnum):
    CACHE_HIT = "CACHE_HIT"
    LOOKUP_SUCCESS = "LOOKUP_SUCCESS"
    LIMIT_REACHED = "LIMIT_REACHED"
    HTTP_ERROR = "HTTP_ERROR"
    REQUEST_FAILED = "REQUEST_FAILED"
    EMPTY_RESULT = "EMPTY_RESULT"
    INVALID_COORDINATES = "INVALID_COORDINATES"
    API_KEY_MISSING = "API_KEY_MISSING"


NO_RESULT_OUTCOMES = frozenset({GeocodeOutcome.EMPTY_RESULT, GeocodeOutcome.INVALID_COORDINATES})
BLOCKING_OUTCOMES = frozenset(
    {
        GeocodeOutcome.LIMIT_REACHED,
        GeocodeOutcome.HTTP_ERROR,
        GeocodeOutcome.REQUEST_FAILED,
        GeocodeOutcome.API_KEY_MISSING,
    }
)


@dataclass(frozen=True)
class GeocodeAttempt:
    """One provider (or cache) consultation."""

    provider: str
    query: str
    outcome: GeocodeOutcome
    alias_key: str | None = None
    cache_key: str | None = None
    http_status: int | None = None
    result_count: int | None = None
    error_message: str | None = None
    tries: int = 1


@dataclass(frozen=True)
class Coordinates:
    """A located place, as returned by a provider or stored in the cache."""

    latitude: float
    longitude: float
    display_name: str
    confidence: float | None
    provider: str


@dataclass(frozen=True)
class GeocodeResult:
    latitude: float | None = None
    longitude: float | None = None
    display_name: str | None = None
    confidence: float | None = None
    provider: str | None = None
    attempts: list[GeocodeAttempt] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def outcomes(self) -> set[GeocodeOutcome]:
        return {attempt.outcome for attempt in self.attempts}

    @classmethod
    def from_coordinates(
        cls,
        coordinates: Coordinates,
        attempts: list[GeocodeAttempt],
        warnings: list[str],
    ) -> GeocodeResult:
        return cls(
            latitude=coordinates.latitude,
            longitude=coordinates.longitude,
            display_name=coordinates.display_name,
            confidence=coordinates.confidence,
            provider=coordinates.provider,
            attempts=attempts,
            warnings=warnings,
        )
