"""Edit-distance helpers for column suggestions."""

from __future__ import annotations

from collections.abc import Iterable

DEFAULT_MAX_DISTANCE = 5


def levenshtein(a: str, b: str) -> int:
    """Classic insert/delete/substitute edit distance."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def find_closest_columns(
    columns: Iterable[str],
    target: str,
    limit: int = 5,
    max_distance: int = DEFAULT_MAX_DISTANCE,
) -> list[str]:
    """
    Rank real columns by closeness to a misspelled reference.

    Ranking key is ``(distance, not_prefix, name)``: a column that starts
    with the target (or that the target starts with) beats a non-prefix
    column at the same distance. Prefix matches are kept even beyond
    ``max_distance`` so ``EndDate`` still suggests ``EndDateTime``.

    Args:
        columns: Candidate column names
        target: The unresolved reference
        limit: Maximum suggestions returned
        max_distance: Edit-distance cutoff for non-prefix candidates

    Returns:
        Up to ``limit`` column names, best first
    """
    needle = target.lower()
    ranked: list[tuple[int, int, str, str]] = []
    seen: set[str] = set()
    for column in columns:
        lowered = column.lower()
        if lowered in seen:
            continue
        seen.add(lowered)
        distance = levenshtein(needle, lowered)
        is_prefix = bool(needle) and (lowered.startswith(needle) or needle.startswith(lowered))
        if distance > max_distance and not is_prefix:
            continue
        ranked.append((distance, 0 if is_prefix else 1, lowered, column))
    ranked.sort()
    return [column for *_, column in ranked[:limit]]
