"""
Per-forest diagnostics and snapshot warnings.

Every forest without coordinates, and every forest whose Total Fire Ban
status is unknown, carries a reason plus the debug lines that led to it.
Snapshot-level warnings are derived from the diagnostics alone, never from
free text gathered along the way.
"""

from __future__ import annotations

from campfire_planner.firedanger import FireDangerResult
from campfire_planner.geocoding.models import (
    BLOCKING_OUTCOMES,
    NO_RESULT_OUTCOMES,
    GeocodeAttempt,
    GeocodeOutcome,
    GeocodeResult,
)
from campfire_planner.schemas import (
    BanStatus,
    ClosureMatchDiagnostics,
    FacilityMatchDiagnostics,
    FireDangerDiagnostics,
    FireDangerLookupCode,
    GeocodeDiagnostics,
)

AREA_CENTROID_SUFFIX = " (area centroid approximation)"
MISSING_ATTEMPTS_DEBUG = "No geocoding attempt diagnostics were captured in this snapshot."

LIMIT_REACHED_REASON = "Geocoding lookup limit reached before coordinates were resolved."
KEY_MISSING_REASON = (
    "Google Places geocoding is unavailable because GOOGLE_MAPS_API_KEY is missing."
)
REQUEST_FAILED_REASON = "Geocoding request failed before coordinates were resolved."
NO_RESULTS_REASON = "No usable geocoding results were returned for this forest."
DEFAULT_GEOCODE_REASON = "Coordinates were unavailable after forest and area geocoding."

FIRE_DANGER_REASONS: dict[FireDangerLookupCode, str] = {
    FireDangerLookupCode.NO_COORDINATES: (
        "Coordinates were unavailable, so Total Fire Ban lookup could not run."
    ),
    FireDangerLookupCode.NO_AREA_MATCH: (
        "Coordinates did not match a NSW RFS fire weather area polygon."
    ),
    FireDangerLookupCode.MISSING_AREA_STATUS: (
        "A fire weather area was matched, but the status feed had no status entry for that area."
    ),
    FireDangerLookupCode.DATA_UNAVAILABLE: (
        "Total Fire Ban source data was unavailable or incomplete during lookup."
    ),
    FireDangerLookupCode.MATCHED: (
        "Matched fire weather area returned an unknown Total Fire Ban status value."
    ),
}

WARNING_SAMPLE_SIZE = 8
CLOSURE_WARNING_SAMPLE_SIZE = 6


# =============================================================================
# Geocoding
# =============================================================================


def describe_attempt(prefix: str, attempt: GeocodeAttempt) -> str:
    """One debug line: ``Forest lookup: EMPTY_RESULT | provider=... | query=...``."""
    parts = [
        f"{prefix}: {attempt.outcome}",
        f"provider={attempt.provider}",
        f"query={attempt.query}",
    ]
    if attempt.http_status is not None:
        parts.append(f"http={attempt.http_status}")
    if attempt.result_count is not None:
        parts.append(f"results={attempt.result_count}")
    if attempt.error_message:
        parts.append(f"error={attempt.error_message}")
    return " | ".join(parts)


def select_failure_reason(attempts: list[GeocodeAttempt]) -> str:
    """Most actionable explanation for a failed lookup."""
    outcomes = {attempt.outcome for attempt in attempts}
    if GeocodeOutcome.LIMIT_REACHED in outcomes:
        return LIMIT_REACHED_REASON
    if GeocodeOutcome.API_KEY_MISSING in outcomes:
        return KEY_MISSING_REASON
    if outcomes & {GeocodeOutcome.HTTP_ERROR, GeocodeOutcome.REQUEST_FAILED}:
        return REQUEST_FAILED_REASON
    if outcomes & NO_RESULT_OUTCOMES:
        return NO_RESULTS_REASON
    return DEFAULT_GEOCODE_REASON


def build_geocode_diagnostics(
    forest_lookup: GeocodeResult, area_lookup: GeocodeResult | None = None
) -> GeocodeDiagnostics:
    forest_attempts = forest_lookup.attempts
    area_attempts = area_lookup.attempts if area_lookup is not None else []
    debug = [describe_attempt("Forest lookup", a) for a in forest_attempts]
    debug += [describe_attempt("Area fallback", a) for a in area_attempts]
    if not debug:
        debug.append(MISSING_ATTEMPTS_DEBUG)
    return GeocodeDiagnostics(
        reason=select_failure_reason([*forest_attempts, *area_attempts]), debug=debug
    )


def should_use_area_fallback(forest_lookup: GeocodeResult) -> bool:
    """Fall back to the area centroid only when the forest is simply not found.

    A lookup that hit the budget, failed over the network or lacked a key
    might succeed next run, so it is left unresolved rather than
    approximated.
    """
    outcomes = forest_lookup.outcomes
    if not outcomes:
        return True
    return bool(outcomes & NO_RESULT_OUTCOMES) and not (outcomes & BLOCKING_OUTCOMES)


def has_complete_geocode_diagnostics(diagnostics: GeocodeDiagnostics | None) -> bool:
    if diagnostics is None or not diagnostics.reason.strip():
        return False
    debug = [line for line in diagnostics.debug if line.strip()]
    return bool(debug) and MISSING_ATTEMPTS_DEBUG not in debug


# =============================================================================
# Fire danger
# =============================================================================


def build_fire_danger_diagnostics(
    result: FireDangerResult,
    latitude: float | None,
    longitude: float | None,
) -> FireDangerDiagnostics | None:
    if result.status != BanStatus.UNKNOWN:
        return None
    debug = [
        f"lookupCode={result.lookup_code}",
        f"statusText={result.status_text}",
        f"latitude={latitude}",
        f"longitude={longitude}",
        f"fireWeatherAreaName={result.area_name}",
    ]
    if result.raw_status_text is not None:
        debug.append(f"rawStatusText={result.raw_status_text}")
    return FireDangerDiagnostics(
        reason=FIRE_DANGER_REASONS[result.lookup_code],
        lookup_code=result.lookup_code,
        area_name=result.area_name,
        debug=debug,
    )


def has_complete_fire_danger_diagnostics(diagnostics: FireDangerDiagnostics | None) -> bool:
    if diagnostics is None or not diagnostics.reason.strip():
        return False
    return any(line.strip() for line in diagnostics.debug)


# =============================================================================
# Snapshot warnings
# =============================================================================


def _sample(names: list[str], size: int) -> str:
    shown = ", ".join(names[:size])
    remaining = len(names) - size
    return f"{shown} (+{remaining} more)" if remaining > 0 else shown


def facility_warnings(diagnostics: FacilityMatchDiagnostics) -> list[str]:
    warnings = []
    unmatched = diagnostics.unmatched_facilities_forests
    if unmatched:
        warnings.append(
            f"Facilities page includes {len(unmatched)} forest(s) not present on the "
            f"Solid Fuel Fire Ban pages: {_sample(unmatched, WARNING_SAMPLE_SIZE)}."
        )
    if diagnostics.fuzzy_matches:
        warnings.append(
            f"Applied fuzzy facilities matching for {len(diagnostics.fuzzy_matches)} "
            "forest name(s) with minor naming differences."
        )
    return warnings


def fire_danger_warnings(no_area_match: list[str], missing_status_areas: list[str]) -> list[str]:
    warnings = []
    if no_area_match:
        names = sorted(set(no_area_match))
        warnings.append(
            f"Total Fire Ban lookup found no fire weather area for {len(names)} forest(s): "
            f"{_sample(names, WARNING_SAMPLE_SIZE)}."
        )
    if missing_status_areas:
        areas = sorted(set(missing_status_areas))
        warnings.append(
            f"Total Fire Ban status feed had no entry for {len(areas)} fire weather area(s): "
            f"{_sample(areas, WARNING_SAMPLE_SIZE)}."
        )
    return warnings


def geocode_warnings(unresolved: list[str]) -> list[str]:
    if not unresolved:
        return []
    names = sorted(set(unresolved))
    return [
        f"Could not resolve coordinates for {len(names)} forest(s): "
        f"{_sample(names, WARNING_SAMPLE_SIZE)}."
    ]


def closure_warnings(diagnostics: ClosureMatchDiagnostics) -> list[str]:
    warnings = []
    unmatched = diagnostics.unmatched_notices
    if unmatched:
        titles = [notice.title for notice in unmatched]
        warnings.append(
            f"Could not match {len(unmatched)} closure notice(s) to a forest: "
            f"{_sample(titles, CLOSURE_WARNING_SAMPLE_SIZE)}."
        )
    if diagnostics.fuzzy_matches:
        warnings.append(
            f"Applied fuzzy closure notice matching for {len(diagnostics.fuzzy_matches)} "
            "notice(s) with minor naming differences."
        )
    return warnings
