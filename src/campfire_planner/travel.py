"""
Per-user travel data: distances, drive times and the nearest legal campfire.

Travel data is computed per request and never stored in the snapshot.
Straight-line (haversine) distances are always available; when a route
service is configured, its driving distances and durations replace them.

OSRM table API: https://project-osrm.org/docs/v5.24.0/api/#table-service
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Protocol

import requests

from campfire_planner.errors import ProviderError, TransientProviderError
from campfire_planner.schemas import (
    BanStatus,
    ClosureStatus,
    ForestDataResponse,
    ForestRecord,
    NearestForest,
    Snapshot,
    UserLocation,
)
from campfire_planner.services.http import create_session, is_retryable_status

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

# Public OSRM servers cap a table request at 100 coordinates.
OSRM_MAX_TARGETS = 99


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points, in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


@dataclass(frozen=True)
class RouteTarget:
    id: str
    latitude: float
    longitude: float


@dataclass(frozen=True)
class RouteMetric:
    distance_km: float
    duration_minutes: float


#: Forest id -> driving metric. Unreachable forests are left out.
RouteLookup = dict[str, RouteMetric]


class RouteService(Protocol):
    async def driving_metrics(
        self, origin: UserLocation, targets: list[RouteTarget], avoid_tolls: bool = True
    ) -> RouteLookup: ...


class OsrmRouteService:
    """Driving distances from an OSRM server's table service."""

    def __init__(self, base_url: str, session: requests.Session | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or create_session()

    async def driving_metrics(
        self, origin: UserLocation, targets: list[RouteTarget], avoid_tolls: bool = True
    ) -> RouteLookup:
        """Distances and durations from ``origin`` to every target.

        Raises:
            TransientProviderError: Network failure or a retryable status.
            ProviderError: Any other unusable response.
        """
        metrics: RouteLookup = {}
        for start in range(0, len(targets), OSRM_MAX_TARGETS):
            chunk = targets[start : start + OSRM_MAX_TARGETS]
            metrics.update(await asyncio.to_thread(self._table, origin, chunk, avoid_tolls))
        return metrics

    def _table(
        self, origin: UserLocation, targets: list[RouteTarget], avoid_tolls: bool
    ) -> RouteLookup:
        points = [(origin.longitude, origin.latitude)]
        points += [(t.longitude, t.latitude) for t in targets]
        coordinates = ";".join(f"{lon},{lat}" for lon, lat in points)
        params: dict[str, Any] = {"sources": 0, "annotations": "distance,duration"}
        if avoid_tolls:
            params["exclude"] = "toll"

        url = f"{self.base_url}/table/v1/driving/{coordinates}"
        try:
            resp = self.session.get(url, params=params)
        except requests.RequestException as e:
            msg = f"OSRM request failed: {e}"
            raise TransientProviderError(msg) from e

        if not resp.ok:
            msg = f"OSRM returned HTTP {resp.status_code}"
            if is_retryable_status(resp.status_code):
                raise TransientProviderError(msg, http_status=resp.status_code)
            raise ProviderError(msg, http_status=resp.status_code)

        try:
            payload = resp.json()
        except ValueError as e:
            msg = "Invalid JSON response from OSRM"
            raise ProviderError(msg) from e
        if payload.get("code") != "Ok":
            msg = f"OSRM table failed: {payload.get('code')}"
            raise ProviderError(msg)

        distances = payload["distances"][0]
        durations = payload["durations"][0]
        metrics: RouteLookup = {}
        # Column 0 is the origin itself.
        for target, distance, duration in zip(targets, distances[1:], durations[1:], strict=True):
            if distance is None or duration is None:
                continue
            metrics[target.id] = RouteMetric(
                distance_km=distance / 1000, duration_minutes=duration / 60
            )
        return metrics


# =============================================================================
# Response assembly
# =============================================================================


def is_legal_campfire_spot(forest: ForestRecord) -> bool:
    """No solid fuel ban, no Total Fire Ban and not closed."""
    return (
        forest.ban_status == BanStatus.NOT_BANNED
        and forest.fire_danger_status != BanStatus.BANNED
        and forest.closure_status != ClosureStatus.CLOSED
    )


def find_nearest_legal_spot(forests: list[ForestRecord]) -> NearestForest | None:
    """Closest forest with a distance where a campfire is allowed."""
    candidates = [f for f in forests if f.distance_km is not None and is_legal_campfire_spot(f)]
    if not candidates:
        return None
    nearest = min(candidates, key=lambda f: f.distance_km)
    return NearestForest(
        id=nearest.id,
        forest_name=nearest.forest_name,
        area_name=nearest.areas[0].area_name if nearest.areas else "",
        distance_km=nearest.distance_km,
        travel_duration_minutes=nearest.travel_duration_minutes,
    )


async def apply_travel_metrics(
    snapshot: Snapshot,
    user_location: UserLocation | None,
    route_service: RouteService | None = None,
    avoid_tolls: bool = True,
) -> ForestDataResponse:
    """Build the response for one caller.

    Without a location the snapshot is returned unchanged. With one, every
    mapped forest gets a distance, forests are ordered nearest first
    (unmapped last), and the nearest legal campfire spot is picked.
    """
    if user_location is None:
        return ForestDataResponse.from_snapshot(snapshot)

    targets = [
        RouteTarget(id=f.id, latitude=f.latitude, longitude=f.longitude)
        for f in snapshot.forests
        if f.latitude is not None and f.longitude is not None
    ]

    routes: RouteLookup = {}
    warnings = list(snapshot.warnings)
    if route_service is not None and targets:
        try:
            routes = await route_service.driving_metrics(user_location, targets, avoid_tolls)
        except ProviderError as e:
            logger.warning("Driving routes unavailable: %s", e)
            warnings.append("Driving distances were unavailable; showing straight-line distances.")

    forests = []
    for forest in snapshot.forests:
        if not forest.has_coordinates:
            forests.append(forest)
            continue
        route = routes.get(forest.id)
        if route is not None:
            update = {
                "distance_km": route.distance_km,
                "travel_duration_minutes": route.duration_minutes,
            }
        else:
            distance = haversine_km(
                user_location.latitude, user_location.longitude, forest.latitude, forest.longitude
            )
            update = {"distance_km": distance, "travel_duration_minutes": None}
        forests.append(forest.model_copy(update=update))

    forests.sort(key=lambda f: (f.distance_km is None, f.distance_km or 0.0))
    return ForestDataResponse.from_snapshot(
        snapshot,
        forests=forests,
        warnings=list(dict.fromkeys(warnings)),
        nearest_legal_spot=find_nearest_legal_spot(forests),
    )
