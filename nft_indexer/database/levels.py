"""
Owner level derivation: a pure function of the owner's current item count.

Fixed thresholds; level N is reached at LEVEL_THRESHOLDS[N-1] items. Used by
the write-path recompute and by any read-path display.
"""

from __future__ import annotations

from bisect import bisect_right

from nft_indexer.database.models import LevelInfo

LEVEL_THRESHOLDS: tuple[int, ...] = (0, 5, 10, 20, 40, 80, 150, 250, 500, 1000)
MAX_LEVEL = len(LEVEL_THRESHOLDS)


def level_for_count(count: int) -> int:
    """1..MAX_LEVEL; non-decreasing in count. Negative counts are treated as 0."""
    return max(1, bisect_right(LEVEL_THRESHOLDS, max(0, count)))


def calculate_level(count: int) -> LevelInfo:
    """
    Level, experience within the level, and items still needed for the next one.

    experience = count - threshold(level); next_level_items is 0 at max level.
    """
    count = max(0, count)
    level = level_for_count(count)
    experience = count - LEVEL_THRESHOLDS[level - 1]
    if level >= MAX_LEVEL:
        next_items = 0
    else:
        next_items = LEVEL_THRESHOLDS[level] - count
    return LevelInfo(level=level, experience=experience, next_level_items=next_items)
