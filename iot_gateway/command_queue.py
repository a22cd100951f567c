"""
Pending commands for the polling device.

The device has no push channel, so commands accumulate here until its next
GET /esp/commands. Delivery is at-most-once: drain_all hands the contents
over and clears them under the same lock.
"""

import logging
import threading
from typing import Any, Dict

logger = logging.getLogger(__name__)


class CommandQueue:
    """Last-write-wins mapping of field name to pending value."""

    def __init__(self):
        self._pending: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._drained_total = 0

    def enqueue(self, field: str, value: Any) -> None:
        """Set or overwrite the pending value for ``field``."""
        with self._lock:
            self._pending[field] = value
        logger.debug(f"Queued command {field}={value!r}")

    def drain_all(self) -> Dict[str, Any]:
        """Return all pending commands and empty the queue."""
        with self._lock:
            commands, self._pending = self._pending, {}
            self._drained_total += len(commands)
        if commands:
            logger.info(f"Delivering {len(commands)} command(s) to device: {commands}")
        return commands

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def get_stats(self) -> dict:
        return {
            "pending": len(self),
            "delivered_total": self._drained_total,
        }
