"""
Reliability statistics for guarded operations
Tracks per-operation call counts, running mean duration and last failure
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from compound_risk.models import OperationStats

logger = logging.getLogger(__name__)


class ReliabilityStatsTracker:
    """
    In-memory statistics of every named operation attempt

    Args:
        clock: Source of epoch seconds
        min_calls: Below this many calls an operation is presumed reliable
        recent_failure_window: Seconds during which a failure marks the
            operation unreliable regardless of its success rate
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        min_calls: int = 10,
        recent_failure_window: float = 5 * 60,
    ):
        self._clock = clock
        self.min_calls = min_calls
        self.recent_failure_window = recent_failure_window
        self._stats: Dict[str, OperationStats] = {}
        self._lock = threading.Lock()

    def record(self, name: str, success: bool, duration: float) -> None:
        """
        Record one attempt

        Args:
            name: Operation name
            success: Whether the attempt succeeded
            duration: Attempt duration in seconds
        """
        with self._lock:
            stats = self._stats.get(name)
            if stats is None:
                stats = self._stats[name] = OperationStats()

            stats.total_calls += 1
            if success:
                stats.successful_calls += 1
            else:
                stats.failed_calls += 1
                stats.last_failure = datetime.fromtimestamp(self._clock(), tz=timezone.utc)

            stats.average_duration += (duration - stats.average_duration) / stats.total_calls

    def get(self, name: str) -> Optional[OperationStats]:
        with self._lock:
            stats = self._stats.get(name)
            return stats.model_copy() if stats is not None else None

    def get_operation_stats(self) -> Dict[str, OperationStats]:
        """Snapshot of all operation statistics"""
        with self._lock:
            return {name: stats.model_copy() for name, stats in self._stats.items()}

    def is_operation_reliable(self, name: str, threshold: float = 0.8) -> bool:
        """
        Decide whether an operation can currently be relied upon

        Args:
            name: Operation name
            threshold: Minimum success rate

        Returns:
            True with too little history to judge; False after a recent
            failure; otherwise whether the success rate meets the threshold
        """
        stats = self.get(name)
        if stats is None or stats.total_calls < self.min_calls:
            return True

        if stats.last_failure is not None:
            since_failure = self._clock() - stats.last_failure.timestamp()
            if since_failure < self.recent_failure_window:
                return False

        return stats.success_rate >= threshold
