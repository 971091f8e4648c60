"""Tests for reading extraction outputs from disk."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import pytest

from campfire_planner.errors import ScrapeError
from campfire_planner.schemas import BanStatus, ClosureNoticeStatus, FireDangerLookupCode
from campfire_planner.sources import (
    AREAS_FILE,
    CLOSURES_FILE,
    DIRECTORY_FILE,
    FIRE_DANGER_FILE,
    JsonScrapeSource,
)

if TYPE_CHECKING:
    from pathlib import Path

AREAS = [
    {
        "area_name": "Snowy Region",
        "area_url": "https://example.test/snowy-region",
        "status": "BANNED",
        "status_text": "Solid Fuel Fire Ban",
        "forests": ["Bago State Forest", "Maragle State Forest"],
    }
]

DIRECTORY = {
    "filters": [{"key": "camping", "label": "Camping"}],
    "forests": [{"forest_name": "Bago State Forest", "facilities": {"camping": True}}],
    "warnings": ["Directory page 2 timed out."],
}

CLOSURES = {
    "notices": [
        {
            "id": "c1",
            "title": "Bago State Forest: closed",
            "forest_name_hint": "Bago State Forest",
            "status": "CLOSED",
        }
    ],
    "warnings": [],
}

FIRE_DANGER = {
    "area_statuses": [{"area_id": "16", "area_name": "Snowy Mountains", "toban_today": "No"}],
    "geojson": {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": {"FIREAREAID": "16", "FIREAREA": "Snowy Mountains"},
                "geometry": {
                    "type": "Polygon",
                    "coordinates": [[[148, -36], [149, -36], [149, -35], [148, -35], [148, -36]]],
                },
            }
        ],
    },
}


def _write(directory: Path, name: str, payload: Any) -> None:
    (directory / name).write_text(json.dumps(payload))


def _write_all(directory: Path) -> None:
    _write(directory, AREAS_FILE, AREAS)
    _write(directory, DIRECTORY_FILE, DIRECTORY)
    _write(directory, CLOSURES_FILE, CLOSURES)
    _write(directory, FIRE_DANGER_FILE, FIRE_DANGER)


class TestJsonScrapeSource:
    @pytest.mark.asyncio
    async def test_reads_every_file(self, tmp_path: Path) -> None:
        _write_all(tmp_path)
        result = await JsonScrapeSource(tmp_path).scrape()

        assert [a.area_name for a in result.areas] == ["Snowy Region"]
        assert result.areas[0].status == BanStatus.BANNED
        assert result.areas[0].forests == ["Bago State Forest", "Maragle State Forest"]
        assert [f.key for f in result.directory.filters] == ["camping"]
        assert result.closures[0].status == ClosureNoticeStatus.CLOSED
        assert result.fire_danger.lookup(-35.5, 148.5).status == BanStatus.NOT_BANNED
        assert result.warnings == ["Directory page 2 timed out."]

    @pytest.mark.asyncio
    async def test_areas_wrapped_with_warnings(self, tmp_path: Path) -> None:
        _write_all(tmp_path)
        _write(tmp_path, AREAS_FILE, {"areas": AREAS, "warnings": ["One area page was empty."]})
        result = await JsonScrapeSource(tmp_path).scrape()
        assert "One area page was empty." in result.warnings

    @pytest.mark.asyncio
    async def test_missing_areas_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ScrapeError, match="No areas.json"):
            await JsonScrapeSource(tmp_path).scrape()

    @pytest.mark.asyncio
    async def test_empty_areas_raises(self, tmp_path: Path) -> None:
        _write(tmp_path, AREAS_FILE, [])
        with pytest.raises(ScrapeError, match="no fire-ban areas"):
            await JsonScrapeSource(tmp_path).scrape()

    @pytest.mark.asyncio
    async def test_invalid_areas_raises(self, tmp_path: Path) -> None:
        _write(tmp_path, AREAS_FILE, [{"forests": ["Bago"]}])
        with pytest.raises(ScrapeError, match="failed validation"):
            await JsonScrapeSource(tmp_path).scrape()

    @pytest.mark.asyncio
    async def test_corrupt_areas_raises(self, tmp_path: Path) -> None:
        (tmp_path / AREAS_FILE).write_text("[{")
        with pytest.raises(ScrapeError, match="not valid JSON"):
            await JsonScrapeSource(tmp_path).scrape()

    @pytest.mark.asyncio
    async def test_optional_files_degrade(self, tmp_path: Path) -> None:
        _write(tmp_path, AREAS_FILE, AREAS)
        result = await JsonScrapeSource(tmp_path).scrape()

        assert result.directory.forests == []
        assert result.closures == []
        lookup = result.fire_danger.lookup(-35.5, 148.5)
        assert lookup.lookup_code == FireDangerLookupCode.DATA_UNAVAILABLE
        missing_directory = "Facilities directory data was unavailable; facilities are unknown."
        assert missing_directory in result.warnings
        assert "Closure notices were unavailable." in result.warnings
        assert "Total Fire Ban data was unavailable." in result.warnings

    @pytest.mark.asyncio
    async def test_unreadable_optional_files_degrade(self, tmp_path: Path) -> None:
        _write(tmp_path, AREAS_FILE, AREAS)
        (tmp_path / DIRECTORY_FILE).write_text("{")
        _write(tmp_path, CLOSURES_FILE, [{"title": "missing id"}])
        _write(tmp_path, FIRE_DANGER_FILE, ["not", "an", "object"])
        result = await JsonScrapeSource(tmp_path).scrape()

        assert "Facilities directory data could not be read; facilities are unknown." in (
            result.warnings
        )
        assert "Closure notices could not be read." in result.warnings
        assert "Total Fire Ban data could not be read." in result.warnings
