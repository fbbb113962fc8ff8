"""
Visit count change feed for the reception board.

Subscribers register for one visit status and are called with the new count
whenever a published snapshot changes it. The checkout services never
publish here; the scheduler polls visit counts and feeds the snapshots in.
"""

import threading
from typing import Callable, Dict, List

from app.models import VISIT_STATUSES


class ChangeFeed:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[Callable]] = {s: [] for s in VISIT_STATUSES}
        self._last: Dict[str, int] = {}

    def subscribe(self, status, callback):
        """Call ``callback(status, count)`` on changes; returns an unsubscribe function."""
        if status not in self._subscribers:
            raise ValueError(f"Unknown visit status: {status}")

        with self._lock:
            self._subscribers[status].append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers[status]:
                    self._subscribers[status].remove(callback)

        return unsubscribe

    def publish(self, counts):
        """Notify subscribers of every status whose count differs from the last snapshot."""
        with self._lock:
            changed = {
                status: count
                for status, count in counts.items()
                if status in self._subscribers and self._last.get(status) != count
            }
            self._last.update(changed)
            targets = [
                (status, count, list(self._subscribers[status]))
                for status, count in changed.items()
            ]

        for status, count, callbacks in targets:
            for callback in callbacks:
                try:
                    callback(status, count)
                except Exception as e:
                    print(f"[CHANGE FEED] Subscriber for {status} failed: {e}")
        return changed

    def last_snapshot(self):
        with self._lock:
            return dict(self._last)


visit_feed = ChangeFeed()
