"""Process-wide cancellation registry.

The only state shared between an interactive cancel action and a running
scheduler loop. The cancel path records intent; the loop reads it between
dispatches and clears it once the task is terminal.
"""

import logging
import threading
from collections import OrderedDict
from typing import Optional

from auditflow.config import settings
from auditflow.utils.time import utc_now

logger = logging.getLogger(__name__)


class CancellationRegistry:
    """
    Bounded map of task id -> time the cancellation was requested.

    Safe to call from any thread or event loop. Every operation holds the lock
    for a single dict operation, so neither a reader nor a writer ever waits
    on I/O held by the other side. When full, the oldest intent is evicted.
    """

    def __init__(self, max_entries: int = 1024):
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, object]" = OrderedDict()
        self._lock = threading.Lock()

    def request_cancel(self, task_id) -> None:
        """Record cancellation intent. Idempotent."""
        key = str(task_id)
        evicted = None
        with self._lock:
            if key in self._entries:
                return
            self._entries[key] = utc_now()
            if len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)

        if evicted is not None:
            logger.warning(
                f"Cancellation registry full ({self.max_entries}), dropped intent for task {evicted}"
            )

    def is_cancelled(self, task_id) -> bool:
        with self._lock:
            return str(task_id) in self._entries

    def clear(self, task_id) -> bool:
        """Remove an entry. Returns True if one existed."""
        with self._lock:
            return self._entries.pop(str(task_id), None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


_registry: Optional[CancellationRegistry] = None


def get_cancellation_registry() -> CancellationRegistry:
    """Get or create the process-wide registry."""
    global _registry
    if _registry is None:
        _registry = CancellationRegistry(max_entries=settings.cancellation_registry_max_entries)
    return _registry
