"""Snapshot persistence with freshness metadata.

Every JSON file is wrapped in a metadata envelope::

    {"meta": {"source": ..., "fetched_at": ..., "valid_until": ...},
     "data": {...}}

Writes go to a temporary file in the same directory and are then renamed
over the target, so a reader sees either the old document or the new one.

Loaded snapshots are passed through ``decode_snapshot``, which backfills
fields older documents lack and replaces enum values this version does not
know, before validation.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path  # noqa: TC003
from typing import Any

from pydantic import ValidationError

from campfire_planner.errors import CacheCorruptionError
from campfire_planner.schemas import (
    CLOSURE_TAG_DEFINITIONS,
    BanStatus,
    ClosureImpactLevel,
    ClosureStatus,
    Snapshot,
)

logger = logging.getLogger(__name__)

#: Bump when a change to ``Snapshot`` makes older documents misleading.
SNAPSHOT_SCHEMA_VERSION = 3

SNAPSHOT_PATH = Path("snapshots/forests.json")


class DataStore:
    """Manages read/write of enveloped JSON documents under one directory."""

    def __init__(self, base_dir: Path) -> None:
        self.base = base_dir

    def read(self, path: Path) -> Any | None:
        """Read data payload from a metadata-enveloped JSON file.

        Returns the ``data`` field, or None if the file doesn't exist.

        Raises:
            CacheCorruptionError: The file exists but is not valid JSON.
        """
        envelope = self.read_raw(path)
        if envelope is None:
            return None
        return envelope.get("data", envelope)

    def read_raw(self, path: Path) -> dict[str, Any] | None:
        """Read the full envelope (meta + data) from a JSON file."""
        full = self._resolve(path)
        if not full.exists():
            return None
        try:
            with full.open() as f:
                result = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            msg = f"Corrupt JSON document at {full}: {e}"
            raise CacheCorruptionError(msg) from e
        if not isinstance(result, dict):
            msg = f"Expected a JSON object at {full}"
            raise CacheCorruptionError(msg)
        return result

    def write(
        self,
        path: Path,
        data: Any,
        source: str,
        valid_until: datetime | None = None,
        **params: Any,
    ) -> Path:
        """Write data wrapped in a metadata envelope, atomically.

        Args:
            path: Relative path under base_dir (e.g. ``snapshots/forests.json``).
            data: Payload to store under the ``data`` key.
            source: Data source identifier.
            valid_until: Expiry timestamp. None means no expiry is recorded.
            **params: Extra metadata fields (schema version, counts, etc.).

        Returns:
            Absolute path of the written file.
        """
        full = self._resolve(path)
        full.parent.mkdir(parents=True, exist_ok=True)

        meta: dict[str, Any] = {
            "source": source,
            "fetched_at": datetime.now(UTC).isoformat(),
        }
        if valid_until is not None:
            meta["valid_until"] = valid_until.isoformat()
        if params:
            meta.update(params)

        envelope = {"meta": meta, "data": data}
        fd, tmp_name = tempfile.mkstemp(dir=full.parent, prefix=f".{full.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(envelope, f, indent=2)
            os.replace(tmp_name, full)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        return full

    def is_fresh(self, path: Path) -> bool:
        """Check if a file exists and hasn't passed its ``valid_until``."""
        envelope = self.read_raw(path)
        if envelope is None:
            return False
        valid_until = envelope.get("meta", {}).get("valid_until")
        if valid_until is None:
            return False

        expiry = datetime.fromisoformat(valid_until)
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=UTC)
        return datetime.now(UTC) < expiry

    def _resolve(self, path: Path) -> Path:
        full = self.base / path if not path.is_absolute() else path
        try:
            full.resolve().relative_to(self.base.resolve())
        except ValueError:
            msg = f"Path escapes store base directory: {path}"
            raise ValueError(msg) from None
        return full


# =============================================================================
# Snapshot decoding
# =============================================================================


def _known(value: Any, enum: type, default: str) -> str:
    return value if value in {member.value for member in enum} else default


def _backfill_forest(forest: dict[str, Any], facility_keys: list[str]) -> dict[str, Any]:
    forest = dict(forest)

    facilities = dict(forest.get("facilities") or {})
    for key in facility_keys:
        facilities.setdefault(key, None)
    forest["facilities"] = facilities

    forest["ban_status"] = _known(forest.get("ban_status"), BanStatus, BanStatus.UNKNOWN)
    forest["fire_danger_status"] = _known(
        forest.get("fire_danger_status"), BanStatus, BanStatus.UNKNOWN
    )
    forest["closure_status"] = _known(
        forest.get("closure_status"), ClosureStatus, ClosureStatus.NONE
    )

    tags = {definition.key.value: False for definition in CLOSURE_TAG_DEFINITIONS}
    for key, value in (forest.get("closure_tags") or {}).items():
        if key in tags:
            tags[key] = bool(value)
    forest["closure_tags"] = tags

    summary = dict(forest.get("closure_impact_summary") or {})
    for field_name in ("camping_impact", "access_2wd_impact", "access_4wd_impact"):
        summary[field_name] = _known(
            summary.get(field_name), ClosureImpactLevel, ClosureImpactLevel.NONE
        )
    forest["closure_impact_summary"] = summary

    # Records written before multi-area merging carried a single area.
    if not forest.get("areas") and forest.get("area_name"):
        forest["areas"] = [
            {
                "area_name": forest["area_name"],
                "area_url": forest.get("area_url") or "",
                "ban_status": forest["ban_status"],
                "ban_status_text": forest.get("ban_status_text") or "",
            }
        ]
    return forest


def decode_snapshot(raw: Any) -> Snapshot:
    """Validate a persisted snapshot, filling in what older versions lack.

    Raises:
        CacheCorruptionError: The document cannot be read as a snapshot.
    """
    if not isinstance(raw, dict):
        msg = "Snapshot document is not a JSON object"
        raise CacheCorruptionError(msg)

    document = dict(raw)
    document.setdefault("schema_version", 0)
    facility_keys = [
        f["key"]
        for f in document.get("available_facilities") or []
        if isinstance(f, dict) and "key" in f
    ]
    document["forests"] = [
        _backfill_forest(forest, facility_keys)
        for forest in document.get("forests") or []
        if isinstance(forest, dict)
    ]
    if not document.get("available_closure_tags"):
        document.pop("available_closure_tags", None)

    try:
        return Snapshot.model_validate(document)
    except ValidationError as e:
        msg = f"Snapshot document failed validation: {e.error_count()} error(s)"
        raise CacheCorruptionError(msg) from e


class SnapshotStore:
    """Reads and writes the one persisted snapshot document."""

    def __init__(self, store: DataStore, path: Path = SNAPSHOT_PATH) -> None:
        self.store = store
        self.path = path

    def load(self) -> Snapshot | None:
        """Return the persisted snapshot, or None when there is none yet.

        Raises:
            CacheCorruptionError: The document exists but cannot be decoded.
        """
        raw = self.store.read(self.path)
        if raw is None:
            return None
        return decode_snapshot(raw)

    def save(self, snapshot: Snapshot, ttl: timedelta) -> Path:
        path = self.store.write(
            self.path,
            snapshot.model_dump(mode="json"),
            source=snapshot.source_name,
            valid_until=snapshot.fetched_at + ttl,
            schema_version=snapshot.schema_version,
            forest_count=len(snapshot.forests),
        )
        logger.info("Saved snapshot with %d forest(s) to %s", len(snapshot.forests), path)
        return path

    def meta(self) -> dict[str, Any]:
        envelope = self.store.read_raw(self.path)
        return dict(envelope.get("meta", {})) if envelope else {}

    def is_fresh(self) -> bool:
        return self.store.is_fresh(self.path)
