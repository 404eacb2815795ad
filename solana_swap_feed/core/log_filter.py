from __future__ import annotations

from typing import Iterable, Sequence

from solana_swap_feed.constants import PROGRAM_INVOKE_MARKERS, SWAP_LOG_MARKERS


class LogFilter:
    """
    Cheap pre-filter deciding whether a log delivery is worth a transaction fetch.

    Deliberately over-matches: a missed swap is gone for good, a false
    positive only costs one fetch that the classifier throws away.
    """

    def __init__(self, extra_markers: Iterable[str] = ()):
        self.markers: tuple[str, ...] = PROGRAM_INVOKE_MARKERS + SWAP_LOG_MARKERS + tuple(extra_markers)

    def is_candidate(self, logs: Sequence[str]) -> bool:
        if not logs:
            return False
        for line in logs:
            if not line:
                continue
            if any(marker in line for marker in self.markers):
                return True
            if "swap" in line.lower():
                return True
        return False
