import threading
from datetime import datetime, timezone
from typing import Optional


class ReplicationLagMonitor:
    """Tracks when this region last absorbed a change from another region.

    Written only by the replication consumer, read by the lag endpoint.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._last_applied_at: Optional[datetime] = None

    @property
    def last_applied_at(self) -> Optional[datetime]:
        with self._lock:
            return self._last_applied_at

    def record_applied(self, updated_at: datetime):
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        with self._lock:
            self._last_applied_at = updated_at

    def current_lag_seconds(self, now: Optional[datetime] = None) -> float:
        """Seconds since the last applied foreign event; 0.0 if none was applied yet."""
        with self._lock:
            last = self._last_applied_at
        if last is None:
            return 0.0
        now = now or datetime.now(timezone.utc)
        return max((now - last).total_seconds(), 0.0)
