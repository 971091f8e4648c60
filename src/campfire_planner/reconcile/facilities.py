"""Pairing fire-ban forests with facilities directory entries."""

from __future__ import annotations

from dataclasses import dataclass, field

from campfire_planner.matching import assign_two_pass
from campfire_planner.schemas import (
    DirectoryForestEntry,
    DirectorySnapshot,
    FacilityDefinition,
    FacilityFuzzyMatch,
    FacilityMatch,
    FacilityMatchDiagnostics,
    MatchType,
)


@dataclass(frozen=True)
class ForestFacilities:
    facilities: dict[str, bool | None]
    match: FacilityMatch
    forest_url: str | None = None


@dataclass
class FacilityAssignments:
    by_forest_name: dict[str, ForestFacilities] = field(default_factory=dict)
    diagnostics: FacilityMatchDiagnostics = field(default_factory=FacilityMatchDiagnostics)

    @property
    def unmatched_directory_forests(self) -> list[str]:
        return self.diagnostics.unmatched_facilities_forests


def unknown_facilities(filters: list[FacilityDefinition]) -> dict[str, bool | None]:
    return {definition.key: None for definition in filters}


def merge_facilities(
    filters: list[FacilityDefinition], entries: list[DirectoryForestEntry]
) -> dict[str, bool | None]:
    """Combine directory entries that describe one forest.

    A facility is present when any entry has it. A listed forest that does
    not mention a facility does not have it.
    """
    return {
        definition.key: any(entry.facilities.get(definition.key, False) for entry in entries)
        for definition in filters
    }


def assign_facilities(
    fire_ban_names: list[str],
    directory: DirectorySnapshot,
    threshold: float,
) -> FacilityAssignments:
    """Give every fire-ban forest its facilities, or all-unknown.

    Args:
        fire_ban_names: Every forest name listed on the fire-ban pages.
        directory: The facilities directory.
        threshold: Minimum fuzzy score for a name pairing.
    """
    entries: dict[str, DirectoryForestEntry] = {}
    for entry in directory.forests:
        entries.setdefault(entry.forest_name, entry)

    result = assign_two_pass(fire_ban_names, list(entries), threshold)
    assignments = FacilityAssignments()
    fuzzy_matches: list[FacilityFuzzyMatch] = []

    for name, assignment in result.assignments.items():
        if assignment.match_type == MatchType.UNMATCHED:
            assignments.by_forest_name[name] = ForestFacilities(
                facilities=unknown_facilities(directory.filters),
                match=FacilityMatch(match_type=MatchType.UNMATCHED),
            )
            continue

        matched = [entries[candidate] for candidate in assignment.candidates]
        forest_url = next((entry.forest_url for entry in matched if entry.forest_url), None)
        assignments.by_forest_name[name] = ForestFacilities(
            facilities=merge_facilities(directory.filters, matched),
            match=FacilityMatch(
                match_type=assignment.match_type,
                score=assignment.score,
                directory_forest_names=list(assignment.candidates),
            ),
            forest_url=forest_url,
        )
        if assignment.match_type == MatchType.FUZZY:
            fuzzy_matches.append(
                FacilityFuzzyMatch(
                    fire_ban_forest_name=name,
                    facilities_forest_name=assignment.candidates[0],
                    score=assignment.score or 0.0,
                )
            )

    assignments.diagnostics = FacilityMatchDiagnostics(
        unmatched_facilities_forests=sorted(result.unmatched_candidates),
        fuzzy_matches=sorted(fuzzy_matches, key=lambda m: m.fire_ban_forest_name),
    )
    return assignments


def directory_entry_facilities(
    filters: list[FacilityDefinition], entry: DirectoryForestEntry
) -> ForestFacilities:
    """Facilities of a directory forest that has no fire-ban listing."""
    return ForestFacilities(
        facilities=merge_facilities(filters, [entry]),
        match=FacilityMatch(
            match_type=MatchType.EXACT, score=1.0, directory_forest_names=[entry.forest_name]
        ),
        forest_url=entry.forest_url,
    )
