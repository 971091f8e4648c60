"""Closure notice assignment and per-forest closure summaries."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from campfire_planner.matching import match_best, normalize
from campfire_planner.schemas import (
    CLOSURE_TAG_DEFINITIONS,
    ClosureFuzzyMatch,
    ClosureImpactLevel,
    ClosureImpactSummary,
    ClosureMatchDiagnostics,
    ClosureNotice,
    ClosureNoticeStatus,
    ClosureStatus,
    ClosureTag,
)

#: UNKNOWN never outranks a known level.
IMPACT_ORDER: dict[ClosureImpactLevel, int] = {
    ClosureImpactLevel.UNKNOWN: -1,
    ClosureImpactLevel.NONE: 0,
    ClosureImpactLevel.ADVISORY: 1,
    ClosureImpactLevel.RESTRICTED: 2,
    ClosureImpactLevel.CLOSED: 3,
}


def merge_impact(left: ClosureImpactLevel, right: ClosureImpactLevel) -> ClosureImpactLevel:
    return right if IMPACT_ORDER[right] > IMPACT_ORDER[left] else left


def closure_status(notices: list[ClosureNotice]) -> ClosureStatus:
    """CLOSED > PARTIAL > NOTICE > NONE."""
    statuses = {notice.status for notice in notices}
    if ClosureNoticeStatus.CLOSED in statuses:
        return ClosureStatus.CLOSED
    if ClosureNoticeStatus.PARTIAL in statuses:
        return ClosureStatus.PARTIAL
    if notices:
        return ClosureStatus.NOTICE
    return ClosureStatus.NONE


def closure_tags(notices: list[ClosureNotice]) -> dict[ClosureTag, bool]:
    tags = {definition.key: False for definition in CLOSURE_TAG_DEFINITIONS}
    for notice in notices:
        for tag in notice.tags:
            tags[tag] = True
    return tags


def impact_summary(notices: list[ClosureNotice]) -> ClosureImpactSummary:
    camping = access_2wd = access_4wd = ClosureImpactLevel.NONE
    for notice in notices:
        impact = notice.structured_impact
        if impact is None:
            continue
        camping = merge_impact(camping, impact.camping_impact)
        access_2wd = merge_impact(access_2wd, impact.access_2wd_impact)
        access_4wd = merge_impact(access_4wd, impact.access_4wd_impact)
    return ClosureImpactSummary(
        camping_impact=camping, access_2wd_impact=access_2wd, access_4wd_impact=access_4wd
    )


@dataclass
class ClosureAssignments:
    by_forest_name: dict[str, list[ClosureNotice]] = field(default_factory=dict)
    diagnostics: ClosureMatchDiagnostics = field(default_factory=ClosureMatchDiagnostics)

    def notices_for(self, forest_name: str) -> list[ClosureNotice]:
        return self.by_forest_name.get(forest_name, [])


def assign_closures(
    notices: list[ClosureNotice],
    forest_names: list[str],
    threshold: float,
    now: datetime,
) -> ClosureAssignments:
    """Attach each active notice to the forest its hint names.

    Exact normalized names win; otherwise the best fuzzy match at or above
    ``threshold``. Inactive notices are ignored. Notices without a hint, or
    whose hint matches nothing, are reported as unmatched.

    Args:
        notices: All closure notices.
        forest_names: Names of every forest record.
        threshold: Minimum fuzzy score.
        now: Reference time for the active window.
    """
    names = list(dict.fromkeys(forest_names))
    by_key: dict[str, str] = {}
    for name in sorted(names):
        by_key.setdefault(normalize(name), name)

    result = ClosureAssignments(by_forest_name={name: [] for name in names})
    unmatched: list[ClosureNotice] = []
    fuzzy: list[ClosureFuzzyMatch] = []

    for notice in notices:
        if not notice.is_active(now):
            continue
        hint = " ".join((notice.forest_name_hint or "").split())
        if not hint:
            unmatched.append(notice)
            continue

        exact = by_key.get(normalize(hint))
        if exact is not None:
            result.by_forest_name[exact].append(notice)
            continue

        match = match_best(hint, names, threshold=threshold)
        if match is None:
            unmatched.append(notice)
            continue

        result.by_forest_name[match.candidate].append(notice)
        fuzzy.append(
            ClosureFuzzyMatch(
                notice_id=notice.id,
                notice_title=notice.title,
                matched_forest_name=match.candidate,
                score=match.score,
            )
        )

    result.diagnostics = ClosureMatchDiagnostics(unmatched_notices=unmatched, fuzzy_matches=fuzzy)
    return result
