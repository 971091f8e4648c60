"""
Geocoding providers.

Two providers are used, cheapest first:

- ``NominatimProvider``: OpenStreetMap free-text search. Free, but the public
  instance asks for at most one request per second, so every request is
  followed by a pause.
- ``GooglePlacesProvider``: Google Places text search. Metered and needs an
  API key; the resolver spends it from a per-run budget.

Providers make exactly one request per ``lookup`` call and report failure by
raising. Retries, budgets and attempt records belong to the resolver.

API docs:
    https://nominatim.org/release-docs/develop/api/Search/
    https://developers.google.com/maps/documentation/places/web-service/text-search
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Protocol

import requests

from campfire_planner.errors import (
    EmptyResultError,
    ProviderConfigError,
    ProviderError,
    TransientProviderError,
)
from campfire_planner.geocoding.models import Coordinates
from campfire_planner.services.http import is_retryable_status

logger = logging.getLogger(__name__)

NOMINATIM_PROVIDER = "OSM_NOMINATIM"
GOOGLE_PROVIDER = "GOOGLE_PLACES"

GOOGLE_PLACES_URL = "https://places.googleapis.com/v1/places:searchText"
GOOGLE_FIELD_MASK = (
    "places.id,places.displayName,places.formattedAddress,places.location,places.types"
)

# Results at these granularities point at a road, not a forest.
STREET_LEVEL_TYPES = frozenset(
    {
        "street_address",
        "route",
        "intersection",
        "premise",
        "subpremise",
        "plus_code",
        "postal_code",
    }
)
FEATURE_TYPES = frozenset(
    {"natural_feature", "park", "point_of_interest", "establishment", "campground"}
)
LOCALITY_TYPES = frozenset(
    {
        "locality",
        "sublocality",
        "administrative_area_level_1",
        "administrative_area_level_2",
        "administrative_area_level_3",
        "colloquial_area",
    }
)

COORDINATE_PRECISION = 6


class GeocodeProvider(Protocol):
    """Anything that turns a free-text query into coordinates."""

    name: str

    @property
    def configured(self) -> bool: ...

    async def lookup(self, query: str) -> Coordinates: ...


def _coerce_coordinates(latitude: Any, longitude: Any, result_count: int) -> tuple[float, float]:
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError) as e:
        msg = f"Non-numeric coordinates: {latitude!r}, {longitude!r}"
        raise EmptyResultError(msg, result_count=result_count, invalid_coordinates=True) from e
    if not (math.isfinite(lat) and math.isfinite(lon)) or abs(lat) > 90 or abs(lon) > 180:
        msg = f"Coordinates out of range: {lat}, {lon}"
        raise EmptyResultError(msg, result_count=result_count, invalid_coordinates=True)
    return round(lat, COORDINATE_PRECISION), round(lon, COORDINATE_PRECISION)


def _check_response(response: requests.Response, provider: str) -> Any:
    """Classify a response status and decode its JSON body."""
    if not response.ok:
        msg = f"{provider} returned HTTP {response.status_code}"
        if is_retryable_status(response.status_code):
            raise TransientProviderError(msg, http_status=response.status_code)
        raise ProviderError(msg, http_status=response.status_code)
    try:
        return response.json()
    except ValueError as e:
        msg = f"Invalid JSON response: {e}"
        raise ProviderError(msg) from e


def google_confidence(types: list[str]) -> float:
    """Confidence from Google result types: features > localities > anything else."""
    kinds = set(types)
    if kinds & FEATURE_TYPES:
        return 1.0
    if kinds & LOCALITY_TYPES:
        return 0.5
    return 0.3


# =============================================================================
# Nominatim
# =============================================================================


class NominatimProvider:
    """OpenStreetMap Nominatim free-text search."""

    name = NOMINATIM_PROVIDER

    def __init__(
        self,
        session: requests.Session,
        *,
        base_url: str = "https://nominatim.openstreetmap.org",
        country_code: str = "au",
        request_delay: float = 1.2,
        timeout: float = 15.0,
    ) -> None:
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.country_code = country_code
        self.request_delay = request_delay
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    async def lookup(self, query: str) -> Coordinates:
        params = {
            "q": query,
            "format": "jsonv2",
            "countrycodes": self.country_code,
            "limit": 1,
        }
        try:
            response = await asyncio.to_thread(
                self.session.get, f"{self.base_url}/search", params=params, timeout=self.timeout
            )
        except requests.RequestException as e:
            msg = f"Nominatim request failed: {e}"
            raise TransientProviderError(msg) from e
        finally:
            # Pace every request, successful or not.
            if self.request_delay > 0:
                await asyncio.sleep(self.request_delay)

        rows = _check_response(response, self.name)
        if not isinstance(rows, list) or not rows:
            msg = "Nominatim returned no results"
            raise EmptyResultError(msg, result_count=0)

        top = rows[0]
        if not top.get("lat") or not top.get("lon"):
            msg = "Nominatim result has no coordinates"
            raise EmptyResultError(msg, result_count=len(rows))
        latitude, longitude = _coerce_coordinates(top["lat"], top["lon"], len(rows))

        return Coordinates(
            latitude=latitude,
            longitude=longitude,
            display_name=str(top.get("display_name") or query),
            confidence=top.get("importance"),
            provider=self.name,
        )


# =============================================================================
# Google Places
# =============================================================================


class GooglePlacesProvider:
    """Google Places text search. Metered."""

    name = GOOGLE_PROVIDER

    def __init__(
        self,
        session: requests.Session,
        *,
        api_key: str | None,
        region_code: str = "AU",
        timeout: float = 15.0,
    ) -> None:
        self.session = session
        self.api_key = api_key
        self.region_code = region_code
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def lookup(self, query: str) -> Coordinates:
        if not self.api_key:
            msg = "GOOGLE_MAPS_API_KEY is not set"
            raise ProviderConfigError(msg)

        body = {
            "textQuery": query,
            "maxResultCount": 1,
            "languageCode": "en",
            "regionCode": self.region_code,
        }
        headers = {
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": GOOGLE_FIELD_MASK,
        }
        try:
            response = await asyncio.to_thread(
                self.session.post,
                GOOGLE_PLACES_URL,
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            msg = f"Google Places request failed: {e}"
            raise TransientProviderError(msg) from e

        payload = _check_response(response, self.name)
        places = payload.get("places") if isinstance(payload, dict) else None
        if not places:
            msg = "Google Places returned no results"
            raise EmptyResultError(msg, result_count=0)

        first = places[0]
        types = list(first.get("types") or [])
        if STREET_LEVEL_TYPES.intersection(types):
            msg = f"Google Places result is street-level ({', '.join(sorted(types))})"
            raise EmptyResultError(msg, result_count=len(places))

        location = first.get("location") or {}
        if not location:
            msg = "Google Places result has no location"
            raise EmptyResultError(msg, result_count=len(places))
        latitude, longitude = _coerce_coordinates(
            location.get("latitude"), location.get("longitude"), len(places)
        )

        display_name = (
            (first.get("displayName") or {}).get("text", "").strip()
            or str(first.get("formattedAddress") or "").strip()
            or query
        )
        return Coordinates(
            latitude=latitude,
            longitude=longitude,
            display_name=display_name,
            confidence=google_confidence(types),
            provider=self.name,
        )
