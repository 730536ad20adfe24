from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterator, List, Optional

import numpy as np

from .engine import CROSS_ENTER, CROSS_EXIT
from .params import EPS

DEFAULT_EVENT_TTL = 0.35
DEFAULT_EVENT_CAPACITY = 80
DEFAULT_WINDOW = 1.0


@dataclass
class CrossingEvent:
    """A genuine membrane crossing, kept around briefly for burst effects."""

    kind: str  # "enter" or "exit"
    index: int
    position: np.ndarray  # on the membrane surface
    normal: np.ndarray
    age: float = 0.0


@dataclass(frozen=True)
class RateSample:
    in_rate: float
    out_rate: float
    elapsed: float
    time: float = 0.0


@dataclass(frozen=True)
class OccupancyCounts:
    inside: int
    outside: int

    @property
    def total(self) -> int:
        return self.inside + self.outside


class CrossingQueue:
    """
    Bounded queue of recent crossing events with time-to-live eviction.

    When full, the oldest events are dropped first.
    """

    def __init__(self, ttl: float = DEFAULT_EVENT_TTL, capacity: int = DEFAULT_EVENT_CAPACITY) -> None:
        if ttl <= 0.0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.ttl = ttl
        self.capacity = capacity
        self._events: Deque[CrossingEvent] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[CrossingEvent]:
        return iter(self._events)

    def age(self, delta: float) -> None:
        """Age every event by ``delta`` and evict the expired ones (oldest sit on the left)."""
        if delta <= 0.0:
            return
        for event in self._events:
            event.age += delta
        while self._events and self._events[0].age > self.ttl:
            self._events.popleft()

    def extend_from_crossings(self, crossings: np.ndarray, positions: np.ndarray, radius: float) -> List[CrossingEvent]:
        """
        Build events for every non-zero crossing code.

        The event position is the point on the membrane along the
        particle's current direction.
        """
        indices = np.flatnonzero(crossings)
        if indices.size == 0:
            return []
        pos = positions[indices]
        dist = np.maximum(np.sqrt(np.sum(pos * pos, axis=1)), EPS)
        normals = pos / dist[:, None]

        created = []
        for j, idx in enumerate(indices):
            kind = "enter" if crossings[idx] == CROSS_ENTER else "exit"
            event = CrossingEvent(
                kind=kind,
                index=int(idx),
                position=normals[j] * radius,
                normal=normals[j],
            )
            self._events.append(event)
            created.append(event)
        return created

    def clear(self) -> None:
        self._events.clear()


class RateAggregator:
    """
    Counts crossings over a fixed sampling window.

    Once the window has elapsed, ``advance`` returns a RateSample
    (counts divided by elapsed time) and resets the counters.
    """

    def __init__(self, window: float = DEFAULT_WINDOW) -> None:
        if window <= 0.0:
            raise ValueError(f"window must be positive, got {window}")
        self.window = window
        self.enter_count = 0
        self.exit_count = 0
        self.elapsed = 0.0
        self.time = 0.0
        self.last_sample: Optional[RateSample] = None

    def record(self, crossings: np.ndarray) -> None:
        self.enter_count += int(np.count_nonzero(crossings == CROSS_ENTER))
        self.exit_count += int(np.count_nonzero(crossings == CROSS_EXIT))

    def advance(self, delta: float) -> Optional[RateSample]:
        if delta <= 0.0:
            return None
        self.elapsed += delta
        self.time += delta
        if self.elapsed < self.window:
            return None

        elapsed = max(self.elapsed, EPS)
        sample = RateSample(
            in_rate=self.enter_count / elapsed,
            out_rate=self.exit_count / elapsed,
            elapsed=elapsed,
            time=self.time,
        )
        self.reset()
        self.last_sample = sample
        return sample

    def reset(self) -> None:
        self.enter_count = 0
        self.exit_count = 0
        self.elapsed = 0.0


__all__ = [
    "CrossingEvent",
    "CrossingQueue",
    "OccupancyCounts",
    "RateAggregator",
    "RateSample",
]
