"""Solid fuel fire-ban status merging."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from campfire_planner.schemas import BanStatus, ForestArea

SOLID_FUEL_BAN_TEXT = "Solid Fuel Fire Ban"
NO_SOLID_FUEL_BAN_TEXT = "No Solid Fuel Fire Ban"
UNKNOWN_BAN_TEXT = "Unknown"

#: Higher is more restrictive.
BAN_STATUS_PRIORITY: dict[BanStatus, int] = {
    BanStatus.UNKNOWN: 0,
    BanStatus.NOT_BANNED: 1,
    BanStatus.BANNED: 2,
}


@dataclass(frozen=True)
class BanSummary:
    status: BanStatus
    status_text: str


def forest_status_key(forest_name: str) -> str:
    """Identity of a forest across fire-ban areas: whitespace and case folded."""
    return " ".join(forest_name.split()).lower()


def slugify(value: str) -> str:
    text = re.sub(r"\s+", "-", value.lower().strip())
    text = re.sub(r"[^a-z0-9-]", "", text)
    return re.sub(r"-+", "-", text)


def ban_status_text(status: BanStatus, text: str = "") -> str:
    """The area's own wording when it has one, else the standard wording."""
    text = text.strip()
    if text:
        return text
    if status == BanStatus.BANNED:
        return SOLID_FUEL_BAN_TEXT
    if status == BanStatus.NOT_BANNED:
        return NO_SOLID_FUEL_BAN_TEXT
    return UNKNOWN_BAN_TEXT


def most_restrictive(statuses: Iterable[BanStatus]) -> BanStatus:
    """BANNED > NOT_BANNED > UNKNOWN. No statuses at all means UNKNOWN."""
    return max(statuses, key=BAN_STATUS_PRIORITY.__getitem__, default=BanStatus.UNKNOWN)


def unique_forest_names(area: ForestArea) -> list[str]:
    """Forest names of one area, each forest once, in listing order."""
    seen: dict[str, str] = {}
    for name in area.forests:
        cleaned = " ".join(name.split())
        if cleaned:
            seen.setdefault(forest_status_key(cleaned), cleaned)
    return list(seen.values())


def build_ban_index(areas: list[ForestArea]) -> dict[str, BanSummary]:
    """Most restrictive ban per forest, keyed by ``forest_status_key``.

    On a tie the first area listing the forest keeps its wording.
    """
    index: dict[str, BanSummary] = {}
    for area in areas:
        summary = BanSummary(area.status, ban_status_text(area.status, area.status_text))
        for name in unique_forest_names(area):
            key = forest_status_key(name)
            existing = index.get(key)
            priority = BAN_STATUS_PRIORITY[summary.status]
            if existing is None or priority > BAN_STATUS_PRIORITY[existing.status]:
                index[key] = summary
    return index
