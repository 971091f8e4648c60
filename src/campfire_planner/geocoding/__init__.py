"""Geocoding: cache, providers, query candidates and the resolver."""

from campfire_planner.geocoding.cache import GeocodeCache
from campfire_planner.geocoding.models import (
    CACHE_PROVIDER,
    Coordinates,
    GeocodeAttempt,
    GeocodeOutcome,
    GeocodeResult,
)
from campfire_planner.geocoding.providers import GooglePlacesProvider, NominatimProvider
from campfire_planner.geocoding.resolver import GeocodeResolver

__all__ = [
    "CACHE_PROVIDER",
    "Coordinates",
    "GeocodeAttempt",
    "GeocodeCache",
    "GeocodeOutcome",
    "GeocodeResolver",
    "GeocodeResult",
    "GooglePlacesProvider",
    "NominatimProvider",
]
