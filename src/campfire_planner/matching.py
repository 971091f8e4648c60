"""
Forest name matching.

Every source spells forest names its own way: "Bago State Forest",
"Bago SF", "Chichester State Forest (Allyn River)". Names are reduced to a
normalized key for exact comparison, and compared by a rapidfuzz score
when keys differ.

The two-pass assignment is used to pair fire-ban forests with facilities
directory entries; ``match_best`` is used for closure notice hints.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from rapidfuzz import fuzz

from campfire_planner.schemas import MatchType

# A fuzzy match never scores as high as an exact one.
MAX_FUZZY_SCORE = 0.99

_PARENTHETICAL = re.compile(r"\([^)]*(?:\)|$)")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]+")
_LEGAL_SUFFIX = re.compile(r"\b(?:state\s+forests?|sf|forest\s+reserve|flora\s+reserve)\b")

_OPPOSITES = (("east", "west"), ("north", "south"))


# =============================================================================
# Normalization and scoring
# =============================================================================


def normalize(name: str) -> str:
    """Reduce a forest name to its comparison key.

    Lower-cases, spells out ``&``, drops parenthetical qualifiers, legal
    suffixes ("State Forest", "SF", "Flora Reserve") and punctuation, and
    collapses whitespace. ``normalize(normalize(x)) == normalize(x)``.

    Args:
        name: Raw forest name from any source.

    Returns:
        The normalized key (may be empty).
    """
    text = name.lower().replace("&", " and ")
    text = _PARENTHETICAL.sub(" ", text)
    text = _NON_ALNUM.sub(" ", text)
    text = " ".join(text.split())

    previous = None
    while previous != text:
        previous = text
        text = " ".join(_LEGAL_SUFFIX.sub(" ", text).split())
    return text


def similarity(a: str, b: str) -> float:
    """Symmetric similarity in [0, 1].

    1.0 exactly when the normalized keys are equal. Otherwise the mean of
    rapidfuzz's ``ratio`` and ``token_sort_ratio`` on the keys, capped at
    ``MAX_FUZZY_SCORE``.
    """
    left = normalize(a)
    right = normalize(b)
    if left == right:
        return 1.0
    if not left or not right:
        return 0.0
    score = (fuzz.ratio(left, right) + fuzz.token_sort_ratio(left, right)) / 200.0
    return min(score, MAX_FUZZY_SCORE)


def has_directional_conflict(a: str, b: str) -> bool:
    """True when one name says east and the other west (or north/south)."""
    left = set(normalize(a).split())
    right = set(normalize(b).split())
    for first, second in _OPPOSITES:
        if (first in left and second in right) or (second in left and first in right):
            return True
    return False


# =============================================================================
# Best match
# =============================================================================


@dataclass(frozen=True)
class NameMatch:
    """A candidate name and its similarity score."""

    candidate: str
    score: float


def match_best(
    name: str,
    candidates: list[str] | tuple[str, ...] | set[str],
    threshold: float = 0.0,
) -> NameMatch | None:
    """Find the highest-scoring candidate for ``name``.

    Candidates whose direction words contradict ``name`` are skipped. Ties
    are broken by the lexicographically smallest candidate.

    Args:
        name: Name to look up.
        candidates: Names to choose from.
        threshold: Minimum score to accept.

    Returns:
        The best match, or None when nothing reaches the threshold.
    """
    best: NameMatch | None = None
    for candidate in sorted(set(candidates)):
        if has_directional_conflict(name, candidate):
            continue
        score = similarity(name, candidate)
        if score < threshold:
            continue
        if best is None or score > best.score:
            best = NameMatch(candidate=candidate, score=score)
    return best


# =============================================================================
# Two-pass assignment
# =============================================================================


@dataclass(frozen=True)
class NameAssignment:
    """Result of assigning one source name.

    ``candidates`` holds more than one name only when several directory
    variants of the same forest were merged onto a single source name.
    """

    source_name: str
    match_type: MatchType
    candidates: tuple[str, ...] = ()
    score: float | None = None


@dataclass
class AssignmentResult:
    assignments: dict[str, NameAssignment] = field(default_factory=dict)
    unmatched_candidates: list[str] = field(default_factory=list)

    def fuzzy(self) -> list[NameAssignment]:
        return [a for a in self.assignments.values() if a.match_type == MatchType.FUZZY]


def assign_two_pass(
    source_names: list[str],
    candidate_names: list[str],
    threshold: float,
) -> AssignmentResult:
    """Pair source names with candidate names, one-to-one.

    Pass 1 pairs names with equal normalized keys, walking candidates in
    lexicographic order. When several candidates share a key and exactly
    one source name has it, all of those candidates are merged onto that
    source name. Pass 2 pairs the leftovers by similarity, best score
    first, accepting a pair only at or above ``threshold`` and without a
    directional conflict.

    Args:
        source_names: Names to assign (duplicates are ignored).
        candidate_names: Names to assign them to (duplicates are ignored).
        threshold: Minimum fuzzy score for pass 2.

    Returns:
        One assignment per distinct source name, plus the candidates left
        unused.
    """
    sources = list(dict.fromkeys(source_names))
    candidates = sorted(set(candidate_names))

    candidates_by_key: dict[str, list[str]] = {}
    for candidate in candidates:
        candidates_by_key.setdefault(normalize(candidate), []).append(candidate)

    source_key_counts: dict[str, int] = {}
    for source in sources:
        key = normalize(source)
        source_key_counts[key] = source_key_counts.get(key, 0) + 1

    result = AssignmentResult()
    used: set[str] = set()

    # Pass 1: exact keys
    for source in sources:
        key = normalize(source)
        available = [c for c in candidates_by_key.get(key, []) if c not in used]
        if not available:
            continue
        if source_key_counts[key] == 1 and len(available) > 1:
            chosen = tuple(available)
        else:
            chosen = (available[0],)
        used.update(chosen)
        result.assignments[source] = NameAssignment(
            source_name=source, match_type=MatchType.EXACT, candidates=chosen, score=1.0
        )

    # Pass 2: fuzzy over residuals
    residual_sources = [s for s in sources if s not in result.assignments]
    residual_candidates = [c for c in candidates if c not in used]
    scored: list[tuple[float, str, str]] = []
    for source in residual_sources:
        for candidate in residual_candidates:
            if has_directional_conflict(source, candidate):
                continue
            score = similarity(source, candidate)
            if score >= threshold:
                scored.append((score, source, candidate))

    scored.sort(key=lambda item: (-item[0], item[1], item[2]))
    for score, source, candidate in scored:
        if source in result.assignments or candidate in used:
            continue
        used.add(candidate)
        result.assignments[source] = NameAssignment(
            source_name=source, match_type=MatchType.FUZZY, candidates=(candidate,), score=score
        )

    for source in sources:
        if source not in result.assignments:
            result.assignments[source] = NameAssignment(
                source_name=source, match_type=MatchType.UNMATCHED
            )

    result.unmatched_candidates = [c for c in candidates if c not in used]
    return result
