"""Campfire Planner - solid fuel fire bans for NSW state forests.

Architecture::

    sources.py     Extraction outputs (fire-ban areas, facilities, closures, TFB feed)
    matching.py    Forest name normalization and fuzzy matching
    geocoding/     Coordinate resolution: sqlite cache, Nominatim, Google Places
    firedanger.py  Total Fire Ban lookup over fire weather area polygons
    reconcile/     Fuse every source into one record per forest
    store.py       Snapshot document with metadata envelope and atomic writes
    refresh.py     When to rebuild, single-flight refresh, stale fallback
    travel.py      Per-request distances and the nearest legal campfire
    flows/         Prefect orchestration
    services/      Shared utilities (HTTP client with retry)

Data flow: sources → reconcile (matching, geocoding, firedanger) → store → refresh → travel
"""

__version__ = "0.1.0"
__author__ = "Michael Howden"

from campfire_planner.config import Settings
from campfire_planner.schemas import ForestRecord, Snapshot

__all__ = ["ForestRecord", "Settings", "Snapshot", "__version__"]
