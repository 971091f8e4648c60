"""Tests for the refresh coordinator."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

import pytest

from campfire_planner.errors import PipelineFailure, SchemaIncompatibleSnapshot
from campfire_planner.firedanger import FireWeatherAreas
from campfire_planner.reconcile.builder import ReconcileResult
from campfire_planner.refresh import (
    NO_COORDINATES_WARNING,
    REFRESH_RUNNING_WARNING,
    UNKNOWN_REFRESH_ERROR,
    ForestDataService,
)
from campfire_planner.schemas import (
    BanStatus,
    ClosureMatchDiagnostics,
    DirectorySnapshot,
    FacilityDefinition,
    FacilityMatchDiagnostics,
    ForestArea,
    ForestRecord,
    GeocodeDiagnostics,
    RefreshPhase,
    RefreshProgress,
    Snapshot,
    UserLocation,
)
from campfire_planner.sources import ScrapeResult
from campfire_planner.store import SNAPSHOT_PATH, SNAPSHOT_SCHEMA_VERSION, DataStore, SnapshotStore

if TYPE_CHECKING:
    from pathlib import Path

FILTERS = [FacilityDefinition(key="camping", label="Camping")]
TTL = timedelta(minutes=15)


def _mapped(name: str = "Bago State Forest") -> ForestRecord:
    return ForestRecord(
        id=name.lower().replace(" ", "-"),
        forest_name=name,
        ban_status=BanStatus.NOT_BANNED,
        fire_danger_status=BanStatus.NOT_BANNED,
        latitude=-35.65,
        longitude=148.15,
    )


def _unmapped(name: str = "Hidden Gully State Forest") -> ForestRecord:
    return ForestRecord(id=name.lower().replace(" ", "-"), forest_name=name)


def _snapshot(age: timedelta = timedelta(0), **overrides: Any) -> Snapshot:
    fields: dict[str, Any] = {
        "schema_version": SNAPSHOT_SCHEMA_VERSION,
        "fetched_at": datetime.now(UTC) - age,
        "source_name": "previous",
        "available_facilities": FILTERS,
        "forests": [_mapped()],
    }
    fields.update(overrides)
    return Snapshot(**fields)


class FakeSource:
    """Scrape source that counts calls and can be held open or made to fail."""

    def __init__(self, error: Exception | None = None, gate: asyncio.Event | None = None) -> None:
        self.error = error
        self.gate = gate
        self.calls = 0

    async def scrape(self) -> ScrapeResult:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return ScrapeResult(
            areas=[ForestArea(area_name="Snowy Region", forests=["Bago State Forest"])],
            directory=DirectorySnapshot(filters=FILTERS),
            closures=[],
            fire_danger=FireWeatherAreas.unavailable("Total Fire Ban data was unavailable."),
            warnings=["source warning"],
        )


class FakeReconciler:
    """Returns fixed forest records and remembers what it was asked."""

    def __init__(self, forests: list[ForestRecord] | None = None) -> None:
        self.resolver = MagicMock()
        self.forests = forests if forests is not None else [_mapped()]
        self.previously_unresolved: set[str] | None = None

    async def run(
        self, areas: Any, directory: Any, closures: Any, fire_danger: Any, **kwargs: Any
    ) -> ReconcileResult:
        self.previously_unresolved = kwargs.get("previously_unresolved")
        on_progress = kwargs.get("on_progress")
        if on_progress is not None:
            on_progress(
                RefreshProgress(
                    phase=RefreshPhase.GEOCODE_FORESTS, message="x", completed=1, total=1
                )
            )
        return ReconcileResult(
            forests=self.forests,
            match_diagnostics=FacilityMatchDiagnostics(),
            closure_diagnostics=ClosureMatchDiagnostics(),
            warnings=["reconcile warning"],
        )


def _service(
    tmp_path: Path,
    source: FakeSource | None = None,
    reconciler: FakeReconciler | None = None,
    **kwargs: Any,
) -> ForestDataService:
    return ForestDataService(
        scrape_source=source or FakeSource(),
        reconciler=reconciler or FakeReconciler(),  # type: ignore[arg-type]
        snapshot_store=SnapshotStore(DataStore(tmp_path)),
        ttl=TTL,
        source_name="Forestry Corporation NSW",
        **kwargs,
    )


def _persist(tmp_path: Path, snapshot: Snapshot) -> None:
    SnapshotStore(DataStore(tmp_path)).save(snapshot, TTL)


class TestIsFresh:
    def test_fresh(self, tmp_path: Path) -> None:
        assert _service(tmp_path).is_fresh(_snapshot())

    def test_expired(self, tmp_path: Path) -> None:
        assert not _service(tmp_path).is_fresh(_snapshot(age=timedelta(minutes=16)))

    def test_other_schema_version(self, tmp_path: Path) -> None:
        snapshot = _snapshot(schema_version=SNAPSHOT_SCHEMA_VERSION - 1)
        assert not _service(tmp_path).is_fresh(snapshot)

    def test_nothing_mapped(self, tmp_path: Path) -> None:
        assert not _service(tmp_path).is_fresh(_snapshot(forests=[_unmapped()]))

    def test_no_facility_definitions(self, tmp_path: Path) -> None:
        assert not _service(tmp_path).is_fresh(_snapshot(available_facilities=[]))

    def test_unexplained_missing_coordinates(self, tmp_path: Path) -> None:
        assert not _service(tmp_path).is_fresh(_snapshot(forests=[_mapped(), _unmapped()]))

    def test_explained_missing_coordinates(self, tmp_path: Path) -> None:
        unmapped = _unmapped().model_copy(
            update={
                "geocode_diagnostics": GeocodeDiagnostics(
                    reason="Geocoding lookup limit reached.",
                    debug=["Forest lookup: LIMIT_REACHED | provider=GOOGLE | query=x"],
                ),
                "fire_danger_status": BanStatus.NOT_BANNED,
            }
        )
        assert _service(tmp_path).is_fresh(_snapshot(forests=[_mapped(), unmapped]))

    def test_unexplained_unknown_fire_danger(self, tmp_path: Path) -> None:
        forest = _mapped().model_copy(update={"fire_danger_status": BanStatus.UNKNOWN})
        assert not _service(tmp_path).is_fresh(_snapshot(forests=[forest]))

    def test_check_compatible(self, tmp_path: Path) -> None:
        with pytest.raises(SchemaIncompatibleSnapshot):
            _service(tmp_path).check_compatible(_snapshot(schema_version=1))


class TestGetData:
    @pytest.mark.asyncio
    async def test_first_call_builds_and_persists(self, tmp_path: Path) -> None:
        source = FakeSource()
        response = await _service(tmp_path, source).get_data()

        assert source.calls == 1
        assert response.stale is False
        assert [f.forest_name for f in response.forests] == ["Bago State Forest"]
        assert response.warnings == ["source warning", "reconcile warning"]
        assert response.available_facilities == FILTERS
        persisted = SnapshotStore(DataStore(tmp_path)).load()
        assert persisted is not None
        assert persisted.schema_version == SNAPSHOT_SCHEMA_VERSION

    @pytest.mark.asyncio
    async def test_fresh_snapshot_served_from_memory(self, tmp_path: Path) -> None:
        source = FakeSource()
        service = _service(tmp_path, source)
        await service.get_data()
        await service.get_data()
        assert source.calls == 1

    @pytest.mark.asyncio
    async def test_force_refresh_rebuilds(self, tmp_path: Path) -> None:
        source = FakeSource()
        service = _service(tmp_path, source)
        await service.get_data()
        await service.get_data(force_refresh=True)
        assert source.calls == 2

    @pytest.mark.asyncio
    async def test_fresh_persisted_snapshot_served(self, tmp_path: Path) -> None:
        _persist(tmp_path, _snapshot())
        source = FakeSource()
        response = await _service(tmp_path, source).get_data()

        assert source.calls == 0
        assert response.source_name == "previous"

    @pytest.mark.asyncio
    async def test_expired_persisted_snapshot_rebuilt(self, tmp_path: Path) -> None:
        _persist(tmp_path, _snapshot(age=timedelta(hours=1)))
        source = FakeSource()
        response = await _service(tmp_path, source).get_data()

        assert source.calls == 1
        assert response.source_name == "Forestry Corporation NSW"

    @pytest.mark.asyncio
    async def test_incompatible_persisted_snapshot_rebuilt(self, tmp_path: Path) -> None:
        _persist(tmp_path, _snapshot(schema_version=1))
        source = FakeSource()
        response = await _service(tmp_path, source).get_data()

        assert source.calls == 1
        assert response.schema_version == SNAPSHOT_SCHEMA_VERSION

    @pytest.mark.asyncio
    async def test_corrupt_persisted_snapshot_rebuilt(self, tmp_path: Path) -> None:
        path = tmp_path / SNAPSHOT_PATH
        path.parent.mkdir(parents=True)
        path.write_text("{truncated")
        source = FakeSource()
        await _service(tmp_path, source).get_data()
        assert source.calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, tmp_path: Path) -> None:
        gate = asyncio.Event()
        source = FakeSource(gate=gate)
        service = _service(tmp_path, source)

        first = asyncio.create_task(service.get_data())
        second = asyncio.create_task(service.get_data())
        await asyncio.sleep(0)
        assert service.refresh_in_progress
        gate.set()
        results = await asyncio.gather(first, second)

        assert source.calls == 1
        assert results[0] == results[1]
        assert not service.refresh_in_progress

    @pytest.mark.asyncio
    async def test_progress_reported(self, tmp_path: Path) -> None:
        events: list[RefreshProgress] = []
        await _service(tmp_path).get_data(on_progress=events.append)

        phases = [e.phase for e in events]
        assert phases[0] == RefreshPhase.SCRAPE
        assert RefreshPhase.GEOCODE_FORESTS in phases
        assert phases[-1] == RefreshPhase.PERSIST
        assert (events[-1].completed, events[-1].total) == (1, 1)

    @pytest.mark.asyncio
    async def test_previous_failures_passed_to_reconciler(self, tmp_path: Path) -> None:
        _persist(tmp_path, _snapshot(age=timedelta(hours=1), forests=[_mapped(), _unmapped()]))
        reconciler = FakeReconciler()
        await _service(tmp_path, reconciler=reconciler).get_data()
        assert reconciler.previously_unresolved == {"hidden gully state forest"}

    @pytest.mark.asyncio
    async def test_user_location_adds_distances(self, tmp_path: Path) -> None:
        response = await _service(tmp_path).get_data(
            user_location=UserLocation(latitude=-35.6, longitude=148.1)
        )
        assert response.forests[0].distance_km is not None
        assert response.nearest_legal_spot is not None
        assert response.nearest_legal_spot.forest_name == "Bago State Forest"


class TestRefreshFailure:
    @pytest.mark.asyncio
    async def test_failure_serves_previous_snapshot_stale(self, tmp_path: Path) -> None:
        _persist(tmp_path, _snapshot(age=timedelta(hours=1)))
        service = _service(tmp_path, FakeSource(error=RuntimeError("fire-ban page unreachable")))
        response = await service.get_data()

        assert response.stale is True
        assert response.source_name == "previous"
        assert "fire-ban page unreachable" in response.warnings

    @pytest.mark.asyncio
    async def test_blank_error_gets_generic_message(self, tmp_path: Path) -> None:
        _persist(tmp_path, _snapshot(age=timedelta(hours=1)))
        response = await _service(tmp_path, FakeSource(error=RuntimeError("  "))).get_data()
        assert UNKNOWN_REFRESH_ERROR in response.warnings

    @pytest.mark.asyncio
    async def test_failure_without_fallback_raises(self, tmp_path: Path) -> None:
        service = _service(tmp_path, FakeSource(error=RuntimeError("fire-ban page unreachable")))
        with pytest.raises(PipelineFailure, match="fire-ban page unreachable"):
            await service.get_data()

    @pytest.mark.asyncio
    async def test_unmapped_result_keeps_previous_snapshot(self, tmp_path: Path) -> None:
        previous = _snapshot(age=timedelta(hours=1))
        _persist(tmp_path, previous)
        service = _service(tmp_path, reconciler=FakeReconciler([_unmapped()]))
        response = await service.get_data()

        assert response.stale is True
        assert NO_COORDINATES_WARNING in response.warnings
        assert [f.forest_name for f in response.forests] == ["Bago State Forest"]
        persisted = SnapshotStore(DataStore(tmp_path)).load()
        assert persisted is not None
        assert persisted.fetched_at == previous.fetched_at

    @pytest.mark.asyncio
    async def test_unmapped_result_without_fallback_is_saved(self, tmp_path: Path) -> None:
        service = _service(tmp_path, reconciler=FakeReconciler([_unmapped()]))
        response = await service.get_data()

        assert response.stale is False
        assert [f.forest_name for f in response.forests] == ["Hidden Gully State Forest"]
        assert SnapshotStore(DataStore(tmp_path)).load() is not None


class TestCachedOnly:
    @pytest.mark.asyncio
    async def test_nothing_cached(self, tmp_path: Path) -> None:
        source = FakeSource()
        response = await _service(tmp_path, source).get_data(prefer_cached_only=True)

        assert source.calls == 0
        assert response.stale is True
        assert response.forests == []
        assert response.warnings == [REFRESH_RUNNING_WARNING]

    @pytest.mark.asyncio
    async def test_expired_persisted_snapshot_returned(self, tmp_path: Path) -> None:
        _persist(tmp_path, _snapshot(age=timedelta(hours=1)))
        source = FakeSource()
        response = await _service(tmp_path, source).get_data(prefer_cached_only=True)

        assert source.calls == 0
        assert response.source_name == "previous"

    @pytest.mark.asyncio
    async def test_incompatible_persisted_snapshot_ignored(self, tmp_path: Path) -> None:
        _persist(tmp_path, _snapshot(schema_version=1))
        response = await _service(tmp_path).get_data(prefer_cached_only=True)
        assert response.warnings == [REFRESH_RUNNING_WARNING]
