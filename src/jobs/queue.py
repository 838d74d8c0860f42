"""
Job Queue

Delayed, lane-based queue of job ids. Each lane is a heap ordered by
(available_at, seq) so equal-time jobs keep dispatch order. Removed or
re-pushed entries are dropped lazily when they reach the top of their heap.
"""

import heapq
import itertools
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from src.persistence.jobs import Job

logger = logging.getLogger(__name__)


class JobQueue(ABC):
    """Storage seam between the orchestrator and workers."""

    @abstractmethod
    def push(self, job: Job):
        """Enqueue a job on its lane, due at job.available_at."""

    @abstractmethod
    def pop(self, queue_names: Iterable[str], now: datetime) -> Optional[str]:
        """Id of the first due job, scanning lanes in the given order."""

    @abstractmethod
    def remove(self, job_id: str) -> bool:
        ...

    @abstractmethod
    def size(self, queue: Optional[str] = None) -> int:
        ...

    def next_due_at(self, queue_names: Iterable[str]) -> Optional[datetime]:
        """Earliest available_at across lanes, None when unknown or empty."""
        return None


class InMemoryJobQueue(JobQueue):
    """Single-process queue."""

    def __init__(self):
        self._lanes: Dict[str, List[Tuple[datetime, int, str]]] = {}
        self._entries: Dict[str, Tuple[str, int]] = {}  # job_id -> (lane, live seq)
        self._seq = itertools.count()

    def push(self, job: Job):
        seq = next(self._seq)
        lane = self._lanes.setdefault(job.queue, [])
        heapq.heappush(lane, (job.available_at, seq, job.job_id))
        self._entries[job.job_id] = (job.queue, seq)
        logger.debug(f"Queued {job.job_id} on {job.queue} for {job.available_at.isoformat()}")

    def _is_live(self, entry: Tuple[datetime, int, str]) -> bool:
        current = self._entries.get(entry[2])
        return current is not None and current[1] == entry[1]

    def _top(self, name: str) -> Optional[Tuple[datetime, int, str]]:
        lane = self._lanes.get(name)
        while lane and not self._is_live(lane[0]):
            heapq.heappop(lane)
        return lane[0] if lane else None

    def pop(self, queue_names: Iterable[str], now: datetime) -> Optional[str]:
        for name in queue_names:
            top = self._top(name)
            if top is not None and top[0] <= now:
                heapq.heappop(self._lanes[name])
                del self._entries[top[2]]
                return top[2]
        return None

    def remove(self, job_id: str) -> bool:
        return self._entries.pop(job_id, None) is not None

    def size(self, queue: Optional[str] = None) -> int:
        if queue is None:
            return len(self._entries)
        return sum(1 for lane, _ in self._entries.values() if lane == queue)

    def next_due_at(self, queue_names: Iterable[str]) -> Optional[datetime]:
        due = [top[0] for top in (self._top(name) for name in queue_names) if top is not None]
        return min(due) if due else None
