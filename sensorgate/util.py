"""General-purpose utilities for the sensor gateway."""

from __future__ import annotations

import logging
from collections.abc import Iterable

__all__ = [
    "closest_match",
    "edit_distance",
    "log_hexdump",
]


def log_hexdump(logger_instance: logging.Logger, level: int, label: str, data: bytes) -> None:
    """Log binary data in hexadecimal format.

    Format: [HEXDUMP] %s: %s
    """
    if not logger_instance.isEnabledFor(level):
        return

    hex_str = data.hex(" ").upper()
    logger_instance.log(level, "[HEXDUMP] %s: %s", label, hex_str)


def edit_distance(left: str, right: str) -> int:
    """Levenshtein distance between two strings."""
    if len(left) < len(right):
        left, right = right, left
    previous = list(range(len(right) + 1))
    for i, lch in enumerate(left, start=1):
        current = [i]
        for j, rch in enumerate(right, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (lch != rch),
                )
            )
        previous = current
    return previous[-1]


def closest_match(word: str, candidates: Iterable[str]) -> str | None:
    """Return the candidate with the smallest edit distance to *word*.

    Ties keep the first candidate in iteration order.
    """
    best: str | None = None
    best_distance = 0
    for candidate in candidates:
        distance = edit_distance(word, candidate)
        if best is None or distance < best_distance:
            best = candidate
            best_distance = distance
    return best
