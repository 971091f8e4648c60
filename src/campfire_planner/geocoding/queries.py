"""
Query candidates and result sanity checks for forests and areas.

Candidates run from most to least specific. Forest candidates deliberately
leave out the area name: free-text geocoders tend to answer
"Bago State Forest, Snowy Region" with the region's town centre.
"""

from __future__ import annotations

import re

BLACKLISTED_NAMES = ("forestry corporation",)

STOP_WORDS = frozenset(
    {
        "state", "forest", "forests", "national", "park", "reserve", "new", "south",
        "wales", "australia", "nsw", "near", "around", "the", "of", "and", "pine",
        "native", "region", "road", "council", "shire", "city", "area",
    }
)  # fmt: skip

_STATE_FOREST = re.compile(r"\bstate\s+forests?\b", re.IGNORECASE)
_URL_STOP_WORDS = re.compile(r"\b(?:state|forests?|around|native|pine|of|the)\b", re.IGNORECASE)
_PARENTHETICAL = re.compile(r"\([^)]*\)")


def _squash(value: str) -> str:
    return " ".join(value.split())


def without_state_forest(name: str) -> str:
    return _squash(_STATE_FOREST.sub(" ", name))


def with_state_forest(name: str) -> str:
    name = _squash(name)
    return name if _STATE_FOREST.search(name) else f"{name} State Forest"


# =============================================================================
# Areas
# =============================================================================


def area_alias(area_name: str, area_url: str) -> str:
    return f"area:{area_url or area_name}"


def area_queries(area_name: str, area_url: str, region: str) -> list[str]:
    """Area name first, then a name recovered from the page URL slug.

    ``.../solid-fuel-fire-bans/pine-forests-around-tumut`` yields "tumut".
    """
    candidates = [f"{_squash(area_name)}, {region}"]
    slug = area_url.rstrip("/").rsplit("/", 1)[-1] if area_url else ""
    from_url = _squash(_URL_STOP_WORDS.sub(" ", slug.replace("-", " ")))
    if from_url:
        candidates.append(f"{from_url}, {region}")
    return list(dict.fromkeys(candidates))


# =============================================================================
# Forests
# =============================================================================


def forest_alias(forest_name: str) -> str:
    return f"forest::{_squash(forest_name)}"


def forest_queries(forest_name: str, region: str, directory_name: str | None = None) -> list[str]:
    """Candidate queries for a forest.

    Args:
        forest_name: Name as listed on the fire-ban pages.
        region: Region suffix, e.g. "New South Wales, Australia".
        directory_name: The facilities directory's spelling, when it differs.
    """
    name = _squash(forest_name)
    candidates = [
        f"{with_state_forest(name)}, {region}",
        f"{name}, {region}",
    ]
    core = without_state_forest(name)
    if core:
        candidates.append(f"{core}, {region}")

    if directory_name and _squash(directory_name).lower() != name.lower():
        candidates.append(f"{with_state_forest(directory_name)}, {region}")
        directory_core = without_state_forest(directory_name)
        if directory_core:
            candidates.append(f"{directory_core}, {region}")

    return list(dict.fromkeys(candidates))


# =============================================================================
# Result checks
# =============================================================================


def is_blacklisted(display_name: str) -> bool:
    """True for results that are never a forest (e.g. agency offices)."""
    lower = display_name.lower()
    return any(name in lower for name in BLACKLISTED_NAMES)


def significant_words(name: str) -> set[str]:
    """Identifying words of a forest name: "Croft Knoll SF" -> {"croft", "knoll"}."""
    cleaned = _PARENTHETICAL.sub(" ", without_state_forest(name)).lower()
    words = re.split(r"[^a-z0-9']+", cleaned)
    return {w for w in words if len(w) >= 3 and w not in STOP_WORDS}


def is_plausible_forest(
    display_name: str, forest_name: str, directory_name: str | None = None
) -> bool:
    """Whether a result's display name mentions the forest it was asked for.

    Every significant word of either the fire-ban name or the directory
    name must appear in the display name.
    """
    lower = display_name.lower()
    for name in (forest_name, directory_name):
        if not name:
            continue
        words = significant_words(name)
        if not words or all(word in lower for word in words):
            return True
    return False
