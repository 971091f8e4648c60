"""
Domain models for campfire planner.

Pydantic models for the extraction pipeline's outputs and for the
reconciled snapshot. These define the canonical schema: sources normalize
their inputs to these, and the snapshot store persists them as JSON.

Snapshot models are frozen. Derive new values with ``model_copy(update=...)``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

# =============================================================================
# Status enums
# =============================================================================


class BanStatus(StrEnum):
    """Fire-ban status of an area, forest or fire-weather area."""

    BANNED = "BANNED"
    NOT_BANNED = "NOT_BANNED"
    UNKNOWN = "UNKNOWN"


class MatchType(StrEnum):
    """How a name was paired with a record from another source."""

    EXACT = "EXACT"
    FUZZY = "FUZZY"
    UNMATCHED = "UNMATCHED"


class ClosureNoticeStatus(StrEnum):
    NOTICE = "NOTICE"
    PARTIAL = "PARTIAL"
    CLOSED = "CLOSED"


class ClosureStatus(StrEnum):
    """Derived closure status of a forest (worst active notice)."""

    NONE = "NONE"
    NOTICE = "NOTICE"
    PARTIAL = "PARTIAL"
    CLOSED = "CLOSED"


class ClosureTag(StrEnum):
    ROAD_ACCESS = "ROAD_ACCESS"
    CAMPING = "CAMPING"
    EVENT = "EVENT"
    OPERATIONS = "OPERATIONS"


class ClosureImpactLevel(StrEnum):
    NONE = "NONE"
    ADVISORY = "ADVISORY"
    RESTRICTED = "RESTRICTED"
    CLOSED = "CLOSED"
    UNKNOWN = "UNKNOWN"


class ImpactConfidence(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class FireDangerLookupCode(StrEnum):
    """Why a fire-danger lookup did or did not produce a status."""

    MATCHED = "MATCHED"
    NO_COORDINATES = "NO_COORDINATES"
    NO_AREA_MATCH = "NO_AREA_MATCH"
    MISSING_AREA_STATUS = "MISSING_AREA_STATUS"
    DATA_UNAVAILABLE = "DATA_UNAVAILABLE"


class RefreshPhase(StrEnum):
    SCRAPE = "SCRAPE"
    GEOCODE_AREAS = "GEOCODE_AREAS"
    GEOCODE_FORESTS = "GEOCODE_FORESTS"
    PERSIST = "PERSIST"


# =============================================================================
# Extraction pipeline inputs
# =============================================================================


class ForestArea(BaseModel):
    """One fire-ban region page: its status and the forests it lists."""

    model_config = {"frozen": True, "str_strip_whitespace": True}

    area_name: str
    area_url: str = ""
    status: BanStatus = BanStatus.UNKNOWN
    status_text: str = ""
    forests: list[str] = Field(default_factory=list, description="Raw forest names")


class FacilityDefinition(BaseModel):
    """A facility filter offered by the directory (e.g. camping, toilets)."""

    model_config = {"frozen": True}

    key: str
    label: str
    icon: str | None = None


class DirectoryForestEntry(BaseModel):
    model_config = {"frozen": True, "str_strip_whitespace": True}

    forest_name: str
    forest_url: str | None = None
    facilities: dict[str, bool] = Field(default_factory=dict)


class DirectorySnapshot(BaseModel):
    """The facilities directory as extracted."""

    model_config = {"frozen": True}

    filters: list[FacilityDefinition] = Field(default_factory=list)
    forests: list[DirectoryForestEntry] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ClosureImpact(BaseModel):
    """Structured impact of a closure notice, when the extractor produced one."""

    model_config = {"frozen": True}

    camping_impact: ClosureImpactLevel = ClosureImpactLevel.UNKNOWN
    access_2wd_impact: ClosureImpactLevel = ClosureImpactLevel.UNKNOWN
    access_4wd_impact: ClosureImpactLevel = ClosureImpactLevel.UNKNOWN
    confidence: ImpactConfidence = ImpactConfidence.LOW
    rationale: str = ""


class ClosureNotice(BaseModel):
    model_config = {"frozen": True}

    id: str
    title: str
    detail_url: str = ""
    listed_at: datetime | None = None
    until_at: datetime | None = None
    forest_name_hint: str | None = None
    status: ClosureNoticeStatus = ClosureNoticeStatus.NOTICE
    tags: list[ClosureTag] = Field(default_factory=list)
    structured_impact: ClosureImpact | None = None

    @field_validator("listed_at", "until_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        """Timestamps without an offset are read as UTC."""
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def is_active(self, now: datetime) -> bool:
        """Active when ``listed_at <= now <= until_at``; open bounds always pass."""
        if self.listed_at is not None and now < self.listed_at:
            return False
        return not (self.until_at is not None and now > self.until_at)


# =============================================================================
# Reconciled records
# =============================================================================


class AreaMembership(BaseModel):
    """A forest's listing within one fire-ban area."""

    model_config = {"frozen": True}

    area_name: str
    area_url: str = ""
    ban_status: BanStatus = BanStatus.UNKNOWN
    ban_status_text: str = ""


class GeocodeDiagnostics(BaseModel):
    model_config = {"frozen": True}

    reason: str
    debug: list[str] = Field(default_factory=list)


class FireDangerDiagnostics(BaseModel):
    model_config = {"frozen": True}

    reason: str
    lookup_code: FireDangerLookupCode
    area_name: str | None = None
    debug: list[str] = Field(default_factory=list)


class FacilityMatch(BaseModel):
    """Provenance of a forest's facilities."""

    model_config = {"frozen": True}

    match_type: MatchType = MatchType.UNMATCHED
    score: float | None = None
    directory_forest_names: list[str] = Field(default_factory=list)


class ClosureImpactSummary(BaseModel):
    model_config = {"frozen": True}

    camping_impact: ClosureImpactLevel = ClosureImpactLevel.NONE
    access_2wd_impact: ClosureImpactLevel = ClosureImpactLevel.NONE
    access_4wd_impact: ClosureImpactLevel = ClosureImpactLevel.NONE


class ForestRecord(BaseModel):
    """One forest, after reconciliation across every source."""

    model_config = {"frozen": True}

    id: str = Field(..., description="Slug, unique within a snapshot")
    forest_name: str
    forest_url: str | None = None
    areas: list[AreaMembership] = Field(default_factory=list)
    ban_status: BanStatus = BanStatus.UNKNOWN
    ban_status_text: str = ""

    facilities: dict[str, bool | None] = Field(
        default_factory=dict, description="None means the directory has no data"
    )
    facility_match: FacilityMatch = Field(default_factory=FacilityMatch)

    latitude: float | None = None
    longitude: float | None = None
    geocode_name: str | None = None
    geocode_confidence: float | None = None
    geocode_diagnostics: GeocodeDiagnostics | None = None

    fire_danger_status: BanStatus = BanStatus.UNKNOWN
    fire_danger_status_text: str = ""
    fire_danger_diagnostics: FireDangerDiagnostics | None = None

    closure_status: ClosureStatus = ClosureStatus.NONE
    closure_notices: list[ClosureNotice] = Field(default_factory=list)
    closure_tags: dict[ClosureTag, bool] = Field(default_factory=dict)
    closure_impact_summary: ClosureImpactSummary = Field(default_factory=ClosureImpactSummary)

    distance_km: float | None = None
    travel_duration_minutes: float | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


# =============================================================================
# Snapshot
# =============================================================================


class FacilityFuzzyMatch(BaseModel):
    model_config = {"frozen": True}

    fire_ban_forest_name: str
    facilities_forest_name: str
    score: float


class FacilityMatchDiagnostics(BaseModel):
    model_config = {"frozen": True}

    unmatched_facilities_forests: list[str] = Field(default_factory=list)
    fuzzy_matches: list[FacilityFuzzyMatch] = Field(default_factory=list)


class ClosureFuzzyMatch(BaseModel):
    model_config = {"frozen": True}

    notice_id: str
    notice_title: str
    matched_forest_name: str
    score: float


class ClosureMatchDiagnostics(BaseModel):
    model_config = {"frozen": True}

    unmatched_notices: list[ClosureNotice] = Field(default_factory=list)
    fuzzy_matches: list[ClosureFuzzyMatch] = Field(default_factory=list)


class ClosureTagDefinition(BaseModel):
    model_config = {"frozen": True}

    key: ClosureTag
    label: str


CLOSURE_TAG_DEFINITIONS: list[ClosureTagDefinition] = [
    ClosureTagDefinition(key=ClosureTag.ROAD_ACCESS, label="Road/trail access"),
    ClosureTagDefinition(key=ClosureTag.CAMPING, label="Camping impact"),
    ClosureTagDefinition(key=ClosureTag.EVENT, label="Event closure"),
    ClosureTagDefinition(key=ClosureTag.OPERATIONS, label="Operations/safety"),
]


class Snapshot(BaseModel):
    """The reconciled dataset, produced wholesale by one refresh."""

    model_config = {"frozen": True}

    schema_version: int = 0
    fetched_at: datetime
    stale: bool = False
    source_name: str = ""
    available_facilities: list[FacilityDefinition] = Field(default_factory=list)
    available_closure_tags: list[ClosureTagDefinition] = Field(
        default_factory=lambda: list(CLOSURE_TAG_DEFINITIONS)
    )
    match_diagnostics: FacilityMatchDiagnostics = Field(default_factory=FacilityMatchDiagnostics)
    closure_diagnostics: ClosureMatchDiagnostics = Field(default_factory=ClosureMatchDiagnostics)
    warnings: list[str] = Field(default_factory=list)
    forests: list[ForestRecord] = Field(default_factory=list)

    @property
    def has_mapped_forest(self) -> bool:
        return any(forest.has_coordinates for forest in self.forests)


# =============================================================================
# Responses
# =============================================================================


class RefreshProgress(BaseModel):
    model_config = {"frozen": True}

    phase: RefreshPhase
    message: str
    completed: int = 0
    total: int | None = None


class UserLocation(BaseModel):
    model_config = {"frozen": True}

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class NearestForest(BaseModel):
    """Closest forest where a campfire is currently allowed."""

    model_config = {"frozen": True}

    id: str
    forest_name: str
    area_name: str
    distance_km: float
    travel_duration_minutes: float | None = None


class ForestDataResponse(Snapshot):
    """A snapshot as served to callers, with per-user travel data."""

    nearest_legal_spot: NearestForest | None = None

    @classmethod
    def from_snapshot(
        cls,
        snapshot: Snapshot,
        *,
        forests: list[ForestRecord] | None = None,
        warnings: list[str] | None = None,
        nearest_legal_spot: NearestForest | None = None,
    ) -> ForestDataResponse:
        fields = dict(snapshot)
        if forests is not None:
            fields["forests"] = forests
        if warnings is not None:
            fields["warnings"] = warnings
        fields.pop("nearest_legal_spot", None)
        return cls(**fields, nearest_legal_spot=nearest_legal_spot)
