"""
Reconciler: fuse the extraction outputs into forest records.

Runs in a fixed order so that every forest can fall back on its area's
position:

1. geocode every fire-ban area,
2. index the most restrictive ban per forest,
3. pair fire-ban forests with facilities directory entries,
4. geocode every (area, forest) pair and look up its Total Fire Ban status,
5. merge a forest listed by several areas into one record,
6. add directory forests that no fire-ban page lists,
7. attach closure notices,
8. derive snapshot warnings from the diagnostics.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from campfire_planner.firedanger import FireDangerLookup
from campfire_planner.geocoding.models import GeocodeResult
from campfire_planner.geocoding.resolver import GeocodeResolver
from campfire_planner.reconcile.bans import (
    build_ban_index,
    ban_status_text,
    forest_status_key,
    slugify,
    unique_forest_names,
)
from campfire_planner.reconcile.closures import (
    assign_closures,
    closure_status,
    closure_tags,
    impact_summary,
)
from campfire_planner.reconcile.diagnostics import (
    AREA_CENTROID_SUFFIX,
    build_fire_danger_diagnostics,
    build_geocode_diagnostics,
    closure_warnings,
    facility_warnings,
    fire_danger_warnings,
    geocode_warnings,
    should_use_area_fallback,
)
from campfire_planner.reconcile.facilities import (
    ForestFacilities,
    assign_facilities,
    directory_entry_facilities,
)
from campfire_planner.schemas import (
    AreaMembership,
    BanStatus,
    ClosureMatchDiagnostics,
    ClosureNotice,
    DirectorySnapshot,
    FacilityMatchDiagnostics,
    FireDangerDiagnostics,
    FireDangerLookupCode,
    ForestArea,
    ForestRecord,
    GeocodeDiagnostics,
    RefreshPhase,
    RefreshProgress,
)

logger = logging.getLogger(__name__)

UNLISTED_AREA_NAME = "Not listed on Solid Fuel Fire Ban pages"
UNLISTED_BAN_TEXT = "Unknown (not listed on Solid Fuel Fire Ban pages)"

ProgressCallback = Callable[[RefreshProgress], None]


@dataclass
class ReconcileResult:
    forests: list[ForestRecord]
    match_diagnostics: FacilityMatchDiagnostics
    closure_diagnostics: ClosureMatchDiagnostics
    warnings: list[str] = field(default_factory=list)


def sort_for_retry_priority(names: list[str], previously_unresolved: set[str]) -> list[str]:
    """Forests that failed to geocode last time go first, then by name.

    The metered budget is limited per run, so this lets repeated runs work
    through a backlog instead of re-spending it on the same head of the list.
    """
    return sorted(
        names, key=lambda name: (forest_status_key(name) not in previously_unresolved, name)
    )


class _UniqueIds:
    def __init__(self) -> None:
        self._used: set[str] = set()

    def claim(self, base: str) -> str:
        base = base or "forest"
        candidate = base
        suffix = 2
        while candidate in self._used:
            candidate = f"{base}-{suffix}"
            suffix += 1
        self._used.add(candidate)
        return candidate


class Reconciler:
    """Builds forest records from one run's extraction outputs.

    Args:
        resolver: Geocoder shared across runs (its budget resets per run).
        facility_threshold: Minimum fuzzy score for directory pairing.
        closure_threshold: Minimum fuzzy score for closure notice hints.
        unlisted_area_url: Link used for forests no fire-ban page lists.
    """

    def __init__(
        self,
        resolver: GeocodeResolver,
        *,
        facility_threshold: float = 0.62,
        closure_threshold: float = 0.68,
        unlisted_area_url: str = "",
    ) -> None:
        self.resolver = resolver
        self.facility_threshold = facility_threshold
        self.closure_threshold = closure_threshold
        self.unlisted_area_url = unlisted_area_url

    async def run(
        self,
        areas: list[ForestArea],
        directory: DirectorySnapshot,
        closures: list[ClosureNotice],
        fire_danger: FireDangerLookup,
        *,
        previously_unresolved: set[str] | None = None,
        on_progress: ProgressCallback | None = None,
        now: datetime | None = None,
    ) -> ReconcileResult:
        """Reconcile one run.

        Args:
            areas: Fire-ban areas with their forest lists.
            directory: Facilities directory.
            closures: Closure notices.
            fire_danger: Total Fire Ban lookup for this run.
            previously_unresolved: ``forest_status_key`` of forests that had
                no coordinates in the previous snapshot.
            on_progress: Called after each geocoded area and forest.
            now: Reference time for closure notice windows.

        Returns:
            Forest records with their match and closure diagnostics.
        """
        self.resolver.reset_budget()
        with self.resolver.hold_upgrades():
            return await self._reconcile(
                areas,
                directory,
                closures,
                fire_danger,
                previously_unresolved or set(),
                on_progress,
                now or datetime.now(UTC),
            )

    async def _reconcile(
        self,
        areas: list[ForestArea],
        directory: DirectorySnapshot,
        closures: list[ClosureNotice],
        fire_danger: FireDangerLookup,
        retry_first: set[str],
        on_progress: ProgressCallback | None,
        now: datetime,
    ) -> ReconcileResult:
        def report(phase: RefreshPhase, message: str, completed: int, total: int | None) -> None:
            if on_progress is not None:
                on_progress(
                    RefreshProgress(
                        phase=phase, message=message, completed=completed, total=total
                    )
                )

        # 1. Area centroids, so every forest has a fallback.
        area_lookups: dict[int, GeocodeResult] = {}
        report(RefreshPhase.GEOCODE_AREAS, "Resolving fire-ban area locations.", 0, len(areas))
        for index, area in enumerate(areas):
            area_lookups[index] = await self.resolver.resolve_area(area.area_name, area.area_url)
            report(RefreshPhase.GEOCODE_AREAS, f"Resolved {area.area_name}.", index + 1, len(areas))

        # 2-3. Ban index and facilities.
        ban_index = build_ban_index(areas)
        names_by_area = [unique_forest_names(area) for area in areas]
        all_names = [name for names in names_by_area for name in names]
        facilities = assign_facilities(all_names, directory, self.facility_threshold)
        unmatched_directory = sort_for_retry_priority(
            facilities.unmatched_directory_forests, retry_first
        )
        directory_entries = {entry.forest_name: entry for entry in directory.forests}

        total_forests = sum(len(names) for names in names_by_area) + len(unmatched_directory)
        completed = 0
        report(RefreshPhase.GEOCODE_FORESTS, "Resolving forest locations.", 0, total_forests)

        # 4. One point per (area, forest).
        ids = _UniqueIds()
        groups: dict[str, list[_Point]] = {}
        no_area_match: list[str] = []
        missing_status_areas: list[str] = []

        for index, area in enumerate(areas):
            area_lookup = area_lookups[index]
            membership = AreaMembership(
                area_name=area.area_name,
                area_url=area.area_url,
                ban_status=area.status,
                ban_status_text=ban_status_text(area.status, area.status_text),
            )
            for name in sort_for_retry_priority(names_by_area[index], retry_first):
                forest_facilities = facilities.by_forest_name[name]
                directory_names = forest_facilities.match.directory_forest_names
                directory_name = directory_names[0] if len(directory_names) == 1 else None
                lookup = await self.resolver.resolve_forest(name, directory_name)
                point = self._locate(
                    name, membership, lookup, area_lookup, forest_facilities, fire_danger
                )
                groups.setdefault(forest_status_key(name), []).append(point)
                self._collect_fire_danger(point, no_area_match, missing_status_areas)
                completed += 1
                report(RefreshPhase.GEOCODE_FORESTS, f"Resolved {name}.", completed, total_forests)

        # 5. One record per forest.
        records: list[ForestRecord] = []
        for key, points in groups.items():
            ban = ban_index[key]
            records.append(self._merge(points, ids, ban.status, ban.status_text))

        # 6. Directory forests missing from every fire-ban page.
        unlisted = AreaMembership(
            area_name=UNLISTED_AREA_NAME,
            area_url=self.unlisted_area_url,
            ban_status=BanStatus.UNKNOWN,
            ban_status_text=UNLISTED_BAN_TEXT,
        )
        for name in unmatched_directory:
            entry = directory_entries[name]
            lookup = await self.resolver.resolve_forest(name)
            point = self._locate(
                name,
                unlisted,
                lookup,
                None,
                directory_entry_facilities(directory.filters, entry),
                fire_danger,
            )
            self._collect_fire_danger(point, no_area_match, missing_status_areas)
            records.append(
                self._merge(
                    [point],
                    ids,
                    BanStatus.UNKNOWN,
                    UNLISTED_BAN_TEXT,
                    id_base=f"unmatched-fire-ban-{slugify(name)}",
                )
            )
            completed += 1
            report(RefreshPhase.GEOCODE_FORESTS, f"Resolved {name}.", completed, total_forests)

        # 7. Closures.
        closures_by_name = assign_closures(
            closures, [record.forest_name for record in records], self.closure_threshold, now
        )
        records = [
            self._with_closures(record, closures_by_name.notices_for(record.forest_name))
            for record in records
        ]

        # 8. Warnings.
        warnings: list[str] = []
        warnings += facility_warnings(facilities.diagnostics)
        warnings += fire_danger_warnings(no_area_match, missing_status_areas)
        warnings += closure_warnings(closures_by_name.diagnostics)
        warnings += geocode_warnings([r.forest_name for r in records if not r.has_coordinates])

        logger.info(
            "Reconciled %d forest(s) from %d area(s); %d without coordinates",
            len(records),
            len(areas),
            sum(1 for r in records if not r.has_coordinates),
        )
        return ReconcileResult(
            forests=records,
            match_diagnostics=facilities.diagnostics,
            closure_diagnostics=closures_by_name.diagnostics,
            warnings=list(dict.fromkeys(warnings)),
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _locate(
        name: str,
        membership: AreaMembership,
        lookup: GeocodeResult,
        area_lookup: GeocodeResult | None,
        forest_facilities: ForestFacilities,
        fire_danger: FireDangerLookup,
    ) -> _Point:
        latitude, longitude = lookup.latitude, lookup.longitude
        geocode_name = lookup.display_name
        confidence = lookup.confidence
        diagnostics = None

        if not lookup.resolved:
            if (
                area_lookup is not None
                and area_lookup.resolved
                and should_use_area_fallback(lookup)
            ):
                latitude, longitude = area_lookup.latitude, area_lookup.longitude
                geocode_name = f"{area_lookup.display_name}{AREA_CENTROID_SUFFIX}"
                confidence = area_lookup.confidence
            else:
                diagnostics = build_geocode_diagnostics(lookup, area_lookup)

        fire = fire_danger.lookup(latitude, longitude)
        return _Point(
            forest_name=name,
            membership=membership,
            latitude=latitude,
            longitude=longitude,
            geocode_name=geocode_name,
            geocode_confidence=confidence,
            geocode_diagnostics=diagnostics,
            fire_danger_status=fire.status,
            fire_danger_status_text=fire.status_text,
            fire_danger_lookup_code=fire.lookup_code,
            fire_danger_area_name=fire.area_name,
            fire_danger_diagnostics=build_fire_danger_diagnostics(fire, latitude, longitude),
            facilities=forest_facilities,
        )

    @staticmethod
    def _collect_fire_danger(
        point: _Point, no_area_match: list[str], missing_status_areas: list[str]
    ) -> None:
        code = point.fire_danger_lookup_code
        if code == FireDangerLookupCode.NO_AREA_MATCH:
            no_area_match.append(point.forest_name)
        elif code == FireDangerLookupCode.MISSING_AREA_STATUS and point.fire_danger_area_name:
            missing_status_areas.append(point.fire_danger_area_name)

    @staticmethod
    def _merge(
        points: list[_Point],
        ids: _UniqueIds,
        ban_status: BanStatus,
        ban_text: str,
        id_base: str | None = None,
    ) -> ForestRecord:
        """Fold the per-area points of one forest into a record."""
        located = [p for p in points if p.latitude is not None and p.longitude is not None]
        primary = located[0] if located else points[0]

        memberships: list[AreaMembership] = []
        seen_areas: set[str] = set()
        for point in points:
            area_key = point.membership.area_name.lower()
            if area_key not in seen_areas:
                seen_areas.add(area_key)
                memberships.append(point.membership)

        return ForestRecord(
            id=ids.claim(id_base or slugify(primary.forest_name)),
            forest_name=primary.forest_name,
            forest_url=primary.facilities.forest_url,
            areas=memberships,
            ban_status=ban_status,
            ban_status_text=ban_text,
            facilities=primary.facilities.facilities,
            facility_match=primary.facilities.match,
            latitude=primary.latitude,
            longitude=primary.longitude,
            geocode_name=primary.geocode_name,
            geocode_confidence=primary.geocode_confidence,
            geocode_diagnostics=primary.geocode_diagnostics,
            fire_danger_status=primary.fire_danger_status,
            fire_danger_status_text=primary.fire_danger_status_text,
            fire_danger_diagnostics=primary.fire_danger_diagnostics,
        )

    @staticmethod
    def _with_closures(record: ForestRecord, notices: list[ClosureNotice]) -> ForestRecord:
        return record.model_copy(
            update={
                "closure_notices": notices,
                "closure_status": closure_status(notices),
                "closure_tags": closure_tags(notices),
                "closure_impact_summary": impact_summary(notices),
            }
        )


@dataclass(frozen=True)
class _Point:
    """A forest as seen from one area, before merging."""

    forest_name: str
    membership: AreaMembership
    latitude: float | None
    longitude: float | None
    geocode_name: str | None
    geocode_confidence: float | None
    geocode_diagnostics: GeocodeDiagnostics | None
    fire_danger_status: BanStatus
    fire_danger_status_text: str
    fire_danger_lookup_code: FireDangerLookupCode
    fire_danger_area_name: str | None
    fire_danger_diagnostics: FireDangerDiagnostics | None
    facilities: ForestFacilities
