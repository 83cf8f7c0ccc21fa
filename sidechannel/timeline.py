"""
Timeline Locator — binary search for the cue active at a timestamp.
"""

import logging
from typing import Optional, Sequence

from .cues import Cue

logger = logging.getLogger(__name__)


def find_active(cues: Sequence[Cue], time_ms: int) -> Optional[Cue]:
    """
    Find the cue with start_ms <= time_ms <= end_ms in O(log n).

    `cues` must be sorted by start_ms (parser output always is). With
    overlapping cues the result is best-effort: the search narrows on the
    assumption that cues do not overlap and may miss an active cue.
    """
    left, right = 0, len(cues) - 1
    while left <= right:
        mid = (left + right) // 2
        cue = cues[mid]
        if cue.start_ms <= time_ms <= cue.end_ms:
            return cue
        if time_ms < cue.start_ms:
            right = mid - 1
        else:
            left = mid + 1
    return None


def is_sorted(cues: Sequence[Cue]) -> bool:
    return all(a.start_ms <= b.start_ms for a, b in zip(cues, cues[1:]))


def count_overlaps(cues: Sequence[Cue]) -> int:
    """Number of adjacent pairs where a cue starts before the previous ends."""
    return sum(1 for a, b in zip(cues, cues[1:]) if b.start_ms <= a.end_ms)
