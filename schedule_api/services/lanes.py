# schedule_api/services/lanes.py
"""
Lane packing for calendar rows.

Each interval goes to the lowest-numbered lane that is free by the time it
starts (lane end <= interval start). Greedy first-fit over intervals sorted by
start is optimal for interval colouring, so lanes_count equals the peak number
of simultaneously running intervals.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional


@dataclass(frozen=True)
class LaneInterval:
    key: Any
    starts_at: datetime
    ends_at: Optional[datetime] = None

    def normalized_end(self) -> datetime:
        # point event or malformed (end before start) collapses to start
        if self.ends_at is None or self.ends_at < self.starts_at:
            return self.starts_at
        return self.ends_at


@dataclass
class LaneLayout:
    lanes: Dict[Any, int] = field(default_factory=dict)
    lanes_count: int = 1

    def lane_of(self, key) -> int:
        return self.lanes[key]

    def to_dict(self):
        return {
            "lanes": {str(k): v for k, v in self.lanes.items()},
            "lanes_count": self.lanes_count,
        }


def pack_lanes(intervals: Iterable[LaneInterval]) -> LaneLayout:
    """
    Never raises on well-typed input. Ties on start are broken by end and then
    by input order (sorted() is stable), so identical input gives identical output.
    """
    ordered = sorted(intervals, key=lambda iv: (iv.starts_at, iv.normalized_end()))

    lane_ends: List[datetime] = []
    placed: Dict[Any, int] = {}
    for iv in ordered:
        end = iv.normalized_end()
        lane = None
        for idx, lane_end in enumerate(lane_ends):
            if lane_end <= iv.starts_at:
                lane = idx
                break
        if lane is None:
            lane = len(lane_ends)
            lane_ends.append(end)
        else:
            lane_ends[lane] = end
        placed[iv.key] = lane

    return LaneLayout(lanes=placed, lanes_count=max(1, len(lane_ends)))
