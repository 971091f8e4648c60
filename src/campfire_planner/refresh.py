"""
Refresh coordinator: decides when the snapshot is rebuilt.

A snapshot is served as-is while it is *fresh*:

- it was written by this schema version,
- it is younger than the TTL,
- at least one forest has coordinates,
- every forest without coordinates explains why, and so does every forest
  with an unknown Total Fire Ban status,
- it lists the directory's facility definitions.

Otherwise it is rebuilt. Concurrent callers share a single in-flight
rebuild. If a rebuild fails, or produces nothing that can be mapped, the
previous snapshot is served again marked ``stale`` with a warning; only
when there is no previous snapshot does the failure reach the caller.

Usage::

    service = build_service(get_settings())
    async with service.resolver:
        response = await service.get_data()
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from campfire_planner.config import Settings
from campfire_planner.errors import (
    CacheCorruptionError,
    PipelineFailure,
    SchemaIncompatibleSnapshot,
)
from campfire_planner.geocoding.cache import GeocodeCache
from campfire_planner.geocoding.providers import GooglePlacesProvider, NominatimProvider
from campfire_planner.geocoding.resolver import GeocodeResolver
from campfire_planner.reconcile.bans import forest_status_key
from campfire_planner.reconcile.builder import ProgressCallback, Reconciler
from campfire_planner.reconcile.diagnostics import (
    has_complete_fire_danger_diagnostics,
    has_complete_geocode_diagnostics,
)
from campfire_planner.schemas import (
    BanStatus,
    ForestDataResponse,
    RefreshPhase,
    RefreshProgress,
    Snapshot,
    UserLocation,
)
from campfire_planner.services.http import NO_RETRY, create_session
from campfire_planner.sources import JsonScrapeSource, ScrapeSource
from campfire_planner.store import SNAPSHOT_SCHEMA_VERSION, DataStore, SnapshotStore
from campfire_planner.travel import OsrmRouteService, RouteService, apply_travel_metrics

logger = logging.getLogger(__name__)

NO_COORDINATES_WARNING = (
    "Latest refresh had no mappable coordinates; using previous mapped snapshot."
)
REFRESH_RUNNING_WARNING = (
    "Refresh is running in the background. Cached forest data is not available yet."
)
UNKNOWN_REFRESH_ERROR = "Unknown scrape error while refreshing forest data."


def _dedupe(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


class ForestDataService:
    """Serves forest snapshots, rebuilding them when needed.

    Args:
        scrape_source: Provides one run's extraction outputs.
        reconciler: Turns those outputs into forest records.
        snapshot_store: Persistent snapshot document. None keeps snapshots
            in memory only.
        ttl: How long a snapshot stays fresh.
        source_name: Recorded on every snapshot.
        route_service: Optional driving-distance provider.
        schema_version: Version stamped on, and required of, snapshots.
    """

    def __init__(
        self,
        *,
        scrape_source: ScrapeSource,
        reconciler: Reconciler,
        snapshot_store: SnapshotStore | None = None,
        ttl: timedelta = timedelta(minutes=15),
        source_name: str = "",
        route_service: RouteService | None = None,
        schema_version: int = SNAPSHOT_SCHEMA_VERSION,
    ) -> None:
        self.scrape_source = scrape_source
        self.reconciler = reconciler
        self.snapshot_store = snapshot_store
        self.ttl = ttl
        self.source_name = source_name
        self.route_service = route_service
        self.schema_version = schema_version

        self._memory: Snapshot | None = None
        self._inflight: asyncio.Task[Snapshot] | None = None

    @property
    def resolver(self) -> GeocodeResolver:
        return self.reconciler.resolver

    @property
    def refresh_in_progress(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    # =========================================================================
    # Public API
    # =========================================================================

    async def get_data(
        self,
        *,
        force_refresh: bool = False,
        prefer_cached_only: bool = False,
        on_progress: ProgressCallback | None = None,
        user_location: UserLocation | None = None,
        avoid_tolls: bool = True,
    ) -> ForestDataResponse:
        """Return the current snapshot, refreshing it if needed.

        Args:
            force_refresh: Rebuild even if the snapshot is fresh.
            prefer_cached_only: Never rebuild; return whatever is cached,
                or an empty stale response when nothing is.
            on_progress: Receives progress while a rebuild this call
                started is running.
            user_location: Adds driving distances and the nearest forest
                where a campfire is allowed.
            avoid_tolls: Passed to the route service.

        Raises:
            PipelineFailure: A rebuild failed and there was no earlier
                snapshot to fall back on.
        """
        if prefer_cached_only:
            snapshot = self._cached_only()
        else:
            snapshot = await self._resolve(force_refresh, on_progress)
        return await apply_travel_metrics(snapshot, user_location, self.route_service, avoid_tolls)

    def is_fresh(self, snapshot: Snapshot, now: datetime | None = None) -> bool:
        """Whether ``snapshot`` can be served without a rebuild."""
        now = now or datetime.now(UTC)
        if not self.is_compatible(snapshot):
            return False
        if now - snapshot.fetched_at >= self.ttl:
            return False
        if not snapshot.has_mapped_forest or not snapshot.available_facilities:
            return False
        for forest in snapshot.forests:
            geocode = forest.geocode_diagnostics
            if not forest.has_coordinates and not has_complete_geocode_diagnostics(geocode):
                return False
            unknown_fire_danger = forest.fire_danger_status == BanStatus.UNKNOWN
            fire_danger = forest.fire_danger_diagnostics
            if unknown_fire_danger and not has_complete_fire_danger_diagnostics(fire_danger):
                return False
        return True

    def is_compatible(self, snapshot: Snapshot) -> bool:
        return snapshot.schema_version == self.schema_version

    def check_compatible(self, snapshot: Snapshot) -> None:
        """Raise unless ``snapshot`` was written by this schema version.

        Raises:
            SchemaIncompatibleSnapshot: The versions differ.
        """
        if not self.is_compatible(snapshot):
            raise SchemaIncompatibleSnapshot(snapshot.schema_version, self.schema_version)

    # =========================================================================
    # Resolution
    # =========================================================================

    def _load_persisted(self) -> Snapshot | None:
        if self.snapshot_store is None:
            return None
        try:
            return self.snapshot_store.load()
        except CacheCorruptionError as e:
            logger.warning("Ignoring unreadable persisted snapshot: %s", e)
            return None

    def _cached_only(self) -> Snapshot:
        memory = self._memory
        if memory is not None and self.is_compatible(memory) and memory.available_facilities:
            return memory

        persisted = self._load_persisted()
        if persisted is not None and self.is_compatible(persisted):
            self._memory = persisted
            return persisted

        return Snapshot(
            schema_version=self.schema_version,
            fetched_at=datetime.now(UTC),
            stale=True,
            source_name=self.source_name,
            warnings=[REFRESH_RUNNING_WARNING],
        )

    async def _resolve(self, force_refresh: bool, on_progress: ProgressCallback | None) -> Snapshot:
        if not force_refresh and self._memory is not None and self.is_fresh(self._memory):
            return self._memory

        persisted = self._load_persisted()
        if persisted is not None:
            try:
                self.check_compatible(persisted)
            except SchemaIncompatibleSnapshot as e:
                logger.info("%s; rebuilding", e)
            else:
                if not force_refresh and self.is_fresh(persisted):
                    self._memory = persisted
                    return persisted

        if self._inflight is None:
            fallback = persisted or self._memory
            task = asyncio.create_task(self._refresh(fallback, on_progress), name="forest-refresh")
            task.add_done_callback(self._clear_inflight)
            self._inflight = task
        # Shielded so one caller giving up does not cancel the shared refresh.
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: asyncio.Task[Snapshot]) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _refresh(
        self, fallback: Snapshot | None, on_progress: ProgressCallback | None
    ) -> Snapshot:
        def report(phase: RefreshPhase, message: str, completed: int, total: int | None) -> None:
            if on_progress is not None:
                on_progress(
                    RefreshProgress(
                        phase=phase, message=message, completed=completed, total=total
                    )
                )

        try:
            report(
                RefreshPhase.SCRAPE, "Loading fire-ban, facilities and closure sources.", 0, None
            )
            scraped = await self.scrape_source.scrape()
            report(RefreshPhase.SCRAPE, "Sources loaded. Preparing geocoding.", 1, 1)

            previously_unresolved = (
                {
                    forest_status_key(f.forest_name)
                    for f in fallback.forests
                    if not f.has_coordinates
                }
                if fallback is not None
                else set()
            )
            result = await self.reconciler.run(
                scraped.areas,
                scraped.directory,
                scraped.closures,
                scraped.fire_danger,
                previously_unresolved=previously_unresolved,
                on_progress=on_progress,
            )

            report(RefreshPhase.PERSIST, "Persisting refreshed snapshot.", 0, 1)
            snapshot = Snapshot(
                schema_version=self.schema_version,
                fetched_at=datetime.now(UTC),
                stale=False,
                source_name=self.source_name,
                available_facilities=scraped.directory.filters,
                match_diagnostics=result.match_diagnostics,
                closure_diagnostics=result.closure_diagnostics,
                warnings=_dedupe([*scraped.warnings, *result.warnings]),
                forests=result.forests,
            )

            if (
                fallback is not None
                and fallback.has_mapped_forest
                and not snapshot.has_mapped_forest
            ):
                logger.warning(NO_COORDINATES_WARNING)
                degraded = fallback.model_copy(
                    update={
                        "stale": True,
                        "warnings": _dedupe([*fallback.warnings, NO_COORDINATES_WARNING]),
                    }
                )
                self._memory = degraded
                return degraded

            if self.snapshot_store is not None:
                self.snapshot_store.save(snapshot, self.ttl)
            self._memory = snapshot
            report(RefreshPhase.PERSIST, "Snapshot persisted.", 1, 1)
            return snapshot

        except Exception as e:
            message = str(e).strip() or UNKNOWN_REFRESH_ERROR
            if fallback is None:
                logger.error("Refresh failed with no snapshot to fall back on: %s", message)
                raise PipelineFailure(message) from e
            logger.warning("Refresh failed, serving previous snapshot: %s", message)
            stale = fallback.model_copy(
                update={"stale": True, "warnings": _dedupe([*fallback.warnings, message])}
            )
            self._memory = stale
            return stale


def build_service(
    settings: Settings, route_service: RouteService | None = None
) -> ForestDataService:
    """Wire every component from settings."""
    if route_service is None and settings.osrm_base_url:
        route_service = OsrmRouteService(settings.osrm_base_url)
    session = create_session(retry=NO_RETRY, timeout=settings.geocode_timeout_seconds)
    resolver = GeocodeResolver(
        GeocodeCache(settings.geocode_cache_path),
        NominatimProvider(
            session,
            base_url=settings.nominatim_base_url,
            country_code=settings.geocode_country_code,
            request_delay=settings.geocode_delay_seconds,
            timeout=settings.geocode_timeout_seconds,
        ),
        GooglePlacesProvider(
            session,
            api_key=settings.google_maps_api_key,
            region_code=settings.geocode_country_code.upper(),
            timeout=settings.geocode_timeout_seconds,
        ),
        region=settings.geocode_region,
        max_premium_lookups_per_run=settings.geocode_max_premium_per_run,
        retry_attempts=settings.geocode_retry_attempts,
        retry_base_delay=settings.geocode_retry_base_delay_seconds,
    )
    reconciler = Reconciler(
        resolver,
        facility_threshold=settings.facility_match_threshold,
        closure_threshold=settings.closure_match_threshold,
        unlisted_area_url=settings.fire_ban_entry_url,
    )
    return ForestDataService(
        scrape_source=JsonScrapeSource(settings.input_dir),
        reconciler=reconciler,
        snapshot_store=SnapshotStore(DataStore(settings.data_dir)),
        ttl=timedelta(minutes=settings.snapshot_ttl_minutes),
        source_name=settings.source_name,
        route_service=route_service,
    )
