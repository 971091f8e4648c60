"""
Persistent geocode cache.

A single sqlite table of cache key -> coordinates. Keys are namespaced:

    query:<normalized query text>
    alias:<normalized alias key>

The alias key identifies the real-world place independent of the query
text that found it, so a later run that phrases the query differently
still hits the cache.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from campfire_planner.errors import CacheCorruptionError
from campfire_planner.geocoding.models import Coordinates

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS geocode_cache (
    cache_key TEXT PRIMARY KEY,
    latitude REAL NOT NULL,
    longitude REAL NOT NULL,
    display_name TEXT NOT NULL,
    confidence REAL,
    provider TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


def normalize_key(value: str) -> str:
    """Lower-case, trim and collapse whitespace."""
    return " ".join(value.split()).lower()


def query_cache_key(query: str) -> str:
    return f"query:{normalize_key(query)}"


def alias_cache_key(alias: str) -> str:
    return f"alias:{normalize_key(alias)}"


class GeocodeCache:
    """sqlite-backed store of resolved coordinates.

    Use ``":memory:"`` as the path for a throwaway cache in tests.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = path
        if isinstance(path, Path):
            path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(str(path))
            self._conn.execute(_SCHEMA)
            self._conn.commit()
        except sqlite3.DatabaseError as e:
            msg = f"Geocode cache at {path} is unreadable: {e}"
            raise CacheCorruptionError(msg) from e

    def get(self, cache_key: str) -> Coordinates | None:
        row = self._conn.execute(
            "SELECT latitude, longitude, display_name, confidence, provider "
            "FROM geocode_cache WHERE cache_key = ?",
            (cache_key,),
        ).fetchone()
        if row is None:
            return None
        latitude, longitude, display_name, confidence, provider = row
        return Coordinates(
            latitude=latitude,
            longitude=longitude,
            display_name=display_name,
            confidence=confidence,
            provider=provider,
        )

    def put(self, cache_key: str, coordinates: Coordinates) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO geocode_cache "
            "(cache_key, latitude, longitude, display_name, confidence, provider, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                cache_key,
                coordinates.latitude,
                coordinates.longitude,
                coordinates.display_name,
                coordinates.confidence,
                coordinates.provider,
                datetime.now(UTC).isoformat(),
            ),
        )
        self._conn.commit()

    def __len__(self) -> int:
        (count,) = self._conn.execute("SELECT COUNT(*) FROM geocode_cache").fetchone()
        return int(count)

    def close(self) -> None:
        logger.debug("Closing geocode cache %s", self.path)
        self._conn.close()
