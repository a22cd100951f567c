"""
Authoritative device-state snapshot.

A single StateStore lives for the whole gateway process. Readers always get
a private copy, so nothing outside the store can observe a half-applied merge.
"""

import logging
import threading
from typing import Optional

from .models import DeviceState, DeviceStatePatch

logger = logging.getLogger(__name__)


class StateStore:
    """
    Thread-safe holder of the current DeviceState.

    Callers that mutate the store are responsible for broadcasting the new
    snapshot afterwards (see handlers._StateWriter.commit).
    """

    def __init__(self, initial: Optional[DeviceState] = None):
        self._state = initial.copy() if initial else DeviceState()
        self._lock = threading.Lock()
        self._merge_count = 0

    def get(self) -> DeviceState:
        """Return a consistent copy of the current snapshot."""
        with self._lock:
            return self._state.copy()

    def merge(self, patch: DeviceStatePatch) -> DeviceState:
        """
        Apply the fields present in ``patch`` atomically.

        Returns:
            Copy of the snapshot right after this merge
        """
        with self._lock:
            patch.apply_to(self._state)
            self._merge_count += 1
            snapshot = self._state.copy()
        logger.debug(f"Merged {patch.present()} extra={patch.extra}")
        return snapshot

    def snapshot_json(self) -> str:
        """Serialize one consistent snapshot."""
        return self.get().to_json()

    @property
    def merge_count(self) -> int:
        with self._lock:
            return self._merge_count
