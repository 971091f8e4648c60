"""
Total Fire Ban lookup by coordinates.

The fire-danger feed comes in two parts: a list of fire weather areas with
today's Total Fire Ban flag, and a GeoJSON layer of the same areas'
boundaries. A forest's status is found by locating its coordinates in a
polygon and then looking that area up in the status list, by id first and
by name second.

Polygon tests use shapely.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from shapely.geometry import Point, shape
from shapely.errors import ShapelyError
from shapely.geometry.base import BaseGeometry

from campfire_planner.schemas import BanStatus, FireDangerLookupCode

logger = logging.getLogger(__name__)

TOTAL_FIRE_BAN_TEXT = "Total Fire Ban"
NO_TOTAL_FIRE_BAN_TEXT = "No Total Fire Ban"
UNKNOWN_TOTAL_FIRE_BAN_TEXT = "Unknown (Total Fire Ban status unavailable)"

_YES = frozenset({"yes", "y", "true", "1"})
_NO = frozenset({"no", "n", "false", "0"})


def parse_total_fire_ban(value: object) -> BanStatus:
    """Map the feed's "Yes"/"No" flag to a ban status."""
    text = " ".join(str(value or "").split()).lower()
    if text in _YES:
        return BanStatus.BANNED
    if text in _NO:
        return BanStatus.NOT_BANNED
    return BanStatus.UNKNOWN


def status_text(status: BanStatus) -> str:
    if status == BanStatus.BANNED:
        return TOTAL_FIRE_BAN_TEXT
    if status == BanStatus.NOT_BANNED:
        return NO_TOTAL_FIRE_BAN_TEXT
    return UNKNOWN_TOTAL_FIRE_BAN_TEXT


def _area_key(name: str) -> str:
    return " ".join(name.split()).lower()


@dataclass(frozen=True)
class FireAreaStatus:
    """Today's Total Fire Ban flag for one fire weather area."""

    area_id: str
    area_name: str
    status: BanStatus
    raw_status_text: str | None = None

    @property
    def status_text(self) -> str:
        return status_text(self.status)


@dataclass(frozen=True)
class FireArea:
    area_id: str
    area_name: str
    geometry: BaseGeometry


@dataclass(frozen=True)
class FireDangerResult:
    status: BanStatus
    status_text: str
    lookup_code: FireDangerLookupCode
    area_name: str | None = None
    raw_status_text: str | None = None


class FireDangerLookup(Protocol):
    """Coordinates -> Total Fire Ban status."""

    def lookup(self, latitude: float | None, longitude: float | None) -> FireDangerResult: ...


@dataclass
class FireWeatherAreas:
    """Point-in-polygon Total Fire Ban lookup over one feed snapshot."""

    statuses: list[FireAreaStatus] = field(default_factory=list)
    areas: list[FireArea] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._by_id = {s.area_id: s for s in self.statuses}
        self._by_name = {_area_key(s.area_name): s for s in self.statuses}

    @classmethod
    def from_feed(cls, statuses: list[dict[str, Any]], geojson: dict[str, Any]) -> FireWeatherAreas:
        """Build from raw feed rows and a GeoJSON FeatureCollection.

        Args:
            statuses: Rows with ``area_id``, ``area_name`` and ``toban_today``.
            geojson: Features with ``FIREAREAID`` / ``FIREAREA`` properties and
                Polygon or MultiPolygon geometry.
        """
        warnings: list[str] = []
        parsed_statuses = []
        for row in statuses:
            area_id = str(row.get("area_id") or "").strip()
            area_name = " ".join(str(row.get("area_name") or "").split())
            if not area_id or not area_name:
                continue
            raw = row.get("toban_today")
            parsed_statuses.append(
                FireAreaStatus(
                    area_id=area_id,
                    area_name=area_name,
                    status=parse_total_fire_ban(raw),
                    raw_status_text=None if raw is None else str(raw),
                )
            )

        areas = []
        skipped = 0
        for feature in geojson.get("features") or []:
            properties = feature.get("properties") or {}
            geometry = feature.get("geometry")
            area_id = str(properties.get("FIREAREAID") or "").strip()
            area_name = " ".join(str(properties.get("FIREAREA") or "").split())
            if not area_id or not area_name or not geometry:
                skipped += 1
                continue
            if geometry.get("type") not in ("Polygon", "MultiPolygon"):
                skipped += 1
                continue
            try:
                areas.append(
                    FireArea(area_id=area_id, area_name=area_name, geometry=shape(geometry))
                )
            except (ShapelyError, ValueError, TypeError, AttributeError) as e:
                logger.debug("Skipping fire area %s: %s", area_name, e)
                skipped += 1

        if skipped:
            logger.info("Skipped %d unusable fire weather area feature(s)", skipped)
        if not parsed_statuses:
            warnings.append("Total Fire Ban status feed had no usable fire weather areas.")
        if not areas:
            warnings.append("Total Fire Ban map geometry feed had no usable fire weather areas.")

        return cls(statuses=parsed_statuses, areas=areas, warnings=warnings)

    @classmethod
    def unavailable(cls, warning: str) -> FireWeatherAreas:
        """A lookup that answers DATA_UNAVAILABLE for every point."""
        return cls(warnings=[warning])

    def lookup(self, latitude: float | None, longitude: float | None) -> FireDangerResult:
        if latitude is None or longitude is None:
            return self._unknown(FireDangerLookupCode.NO_COORDINATES)
        if not self.statuses or not self.areas:
            return self._unknown(FireDangerLookupCode.DATA_UNAVAILABLE)

        point = Point(longitude, latitude)
        matched = next((area for area in self.areas if area.geometry.covers(point)), None)
        if matched is None:
            return self._unknown(FireDangerLookupCode.NO_AREA_MATCH)

        status = self._by_id.get(matched.area_id) or self._by_name.get(_area_key(matched.area_name))
        if status is None:
            return self._unknown(
                FireDangerLookupCode.MISSING_AREA_STATUS, area_name=matched.area_name
            )

        return FireDangerResult(
            status=status.status,
            status_text=status.status_text,
            lookup_code=FireDangerLookupCode.MATCHED,
            area_name=status.area_name,
            raw_status_text=status.raw_status_text,
        )

    @staticmethod
    def _unknown(code: FireDangerLookupCode, area_name: str | None = None) -> FireDangerResult:
        return FireDangerResult(
            status=BanStatus.UNKNOWN,
            status_text=UNKNOWN_TOTAL_FIRE_BAN_TEXT,
            lookup_code=code,
            area_name=area_name,
        )
