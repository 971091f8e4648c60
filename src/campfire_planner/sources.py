"""
Scrape source boundary.

Page fetching and HTML extraction happen elsewhere; they leave their
results as JSON files in one directory:

    areas.json        list of fire-ban areas with their forest names
    directory.json    facilities directory (filters + forests)
    closures.json     closure notices
    fire_danger.json  Total Fire Ban statuses + fire weather area GeoJSON

``areas.json`` is required. The others degrade to empty data with a
warning, since the snapshot is still useful without them.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from pydantic import TypeAdapter, ValidationError

from campfire_planner.errors import ScrapeError
from campfire_planner.firedanger import FireDangerLookup, FireWeatherAreas
from campfire_planner.schemas import ClosureNotice, DirectorySnapshot, ForestArea

logger = logging.getLogger(__name__)

AREAS_FILE = "areas.json"
DIRECTORY_FILE = "directory.json"
CLOSURES_FILE = "closures.json"
FIRE_DANGER_FILE = "fire_danger.json"

_AREAS = TypeAdapter(list[ForestArea])
_NOTICES = TypeAdapter(list[ClosureNotice])


@dataclass
class ScrapeResult:
    areas: list[ForestArea]
    directory: DirectorySnapshot
    closures: list[ClosureNotice]
    fire_danger: FireDangerLookup
    warnings: list[str] = field(default_factory=list)


class ScrapeSource(Protocol):
    async def scrape(self) -> ScrapeResult: ...


def _unwrap(payload: Any, key: str) -> tuple[Any, list[str]]:
    """Accept either a bare list or ``{key: [...], "warnings": [...]}``."""
    if isinstance(payload, dict):
        return payload.get(key, []), [str(w) for w in payload.get("warnings") or []]
    return payload, []


class JsonScrapeSource:
    """Reads one extraction run's JSON outputs from ``input_dir``."""

    def __init__(self, input_dir: Path) -> None:
        self.input_dir = input_dir

    async def scrape(self) -> ScrapeResult:
        return await asyncio.to_thread(self._load)

    def _read(self, name: str) -> Any | None:
        path = self.input_dir / name
        if not path.exists():
            return None
        with path.open() as f:
            return json.load(f)

    def _load(self) -> ScrapeResult:
        warnings: list[str] = []

        try:
            payload = self._read(AREAS_FILE)
        except json.JSONDecodeError as e:
            msg = f"{AREAS_FILE} is not valid JSON: {e}"
            raise ScrapeError(msg) from e
        if payload is None:
            msg = f"No {AREAS_FILE} in {self.input_dir}"
            raise ScrapeError(msg)
        rows, area_warnings = _unwrap(payload, "areas")
        try:
            areas = _AREAS.validate_python(rows)
        except ValidationError as e:
            msg = f"{AREAS_FILE} failed validation: {e.error_count()} error(s)"
            raise ScrapeError(msg) from e
        warnings += area_warnings
        if not areas:
            msg = f"{AREAS_FILE} lists no fire-ban areas"
            raise ScrapeError(msg)

        directory = DirectorySnapshot()
        try:
            raw_directory = self._read(DIRECTORY_FILE)
            if raw_directory is None:
                warnings.append(
                    "Facilities directory data was unavailable; facilities are unknown."
                )
            else:
                directory = DirectorySnapshot.model_validate(raw_directory)
                warnings += directory.warnings
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("Ignoring unreadable %s: %s", DIRECTORY_FILE, e)
            warnings.append("Facilities directory data could not be read; facilities are unknown.")

        closures: list[ClosureNotice] = []
        try:
            raw_closures = self._read(CLOSURES_FILE)
            if raw_closures is None:
                warnings.append("Closure notices were unavailable.")
            else:
                rows, closure_warnings = _unwrap(raw_closures, "notices")
                closures = _NOTICES.validate_python(rows)
                warnings += closure_warnings
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("Ignoring unreadable %s: %s", CLOSURES_FILE, e)
            warnings.append("Closure notices could not be read.")

        fire_danger: FireWeatherAreas
        try:
            raw_fire = self._read(FIRE_DANGER_FILE)
            if raw_fire is None:
                fire_danger = FireWeatherAreas.unavailable("Total Fire Ban data was unavailable.")
            else:
                fire_danger = FireWeatherAreas.from_feed(
                    raw_fire.get("area_statuses") or [], raw_fire.get("geojson") or {}
                )
        except (json.JSONDecodeError, AttributeError) as e:
            logger.warning("Ignoring unreadable %s: %s", FIRE_DANGER_FILE, e)
            fire_danger = FireWeatherAreas.unavailable("Total Fire Ban data could not be read.")
        warnings += fire_danger.warnings

        logger.info(
            "Loaded %d area(s), %d directory forest(s), %d closure notice(s) from %s",
            len(areas),
            len(directory.forests),
            len(closures),
            self.input_dir,
        )
        return ScrapeResult(
            areas=areas,
            directory=directory,
            closures=closures,
            fire_danger=fire_danger,
            warnings=list(dict.fromkeys(warnings)),
        )
