# app/services/aggregator.py
"""
Result aggregation for bulk jobs.

One slot per submitted item, indexed by submission position. Slots are filled
in completion order but read back in submission order, so the final result
set and the archive built from it do not depend on I/O timing.
"""

from collections import Counter
from typing import List, Optional

from app.schemas.job import JobCounts, WorkItemResult


class ResultAggregator:
    def __init__(self, total: int):
        if total < 0:
            raise ValueError("total must not be negative")
        self._slots: List[Optional[WorkItemResult]] = [None] * total
        self._filled = 0

    def __len__(self) -> int:
        return self._filled

    @property
    def total(self) -> int:
        return len(self._slots)

    @property
    def is_complete(self) -> bool:
        return self._filled == len(self._slots)

    def record(self, index: int, result: WorkItemResult) -> None:
        if not 0 <= index < len(self._slots):
            raise IndexError(f"Result index {index} out of range 0..{len(self._slots) - 1}")
        if self._slots[index] is not None:
            raise ValueError(f"Result for item {index} was already recorded")
        if not result.is_terminal:
            raise ValueError(f"Cannot record non-terminal status '{result.status}'")
        self._slots[index] = result
        self._filled += 1

    def results(self) -> List[WorkItemResult]:
        """Final results in submission order; only valid once every slot is filled."""
        if not self.is_complete:
            raise RuntimeError(
                f"Results requested before completion ({self._filled}/{len(self._slots)})"
            )
        return list(self._slots)

    def counts(self) -> JobCounts:
        tally = Counter(r.status for r in self._slots if r is not None)
        return JobCounts(
            total=len(self._slots),
            success=tally["success"],
            failed=tally["failed"],
            skipped=tally["skipped"],
        )
