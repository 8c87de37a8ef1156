"""
Snapshot bookkeeping for reorg rollback.
"""
import threading
from typing import Dict, Optional

from .exceptions import ConsistencyError


class SnapshotTable:
    """
    rootchain tx hash -> subchain snapshot id taken right before the
    command was applied.

    Entries are only consumed by a rollback; final commands keep theirs for
    the rest of the session.
    """

    def __init__(self):
        self._snapshots: Dict[str, str] = {}
        self._lock = threading.RLock()

    def record(self, source_tx_id: str, snapshot_id: str) -> None:
        with self._lock:
            self._snapshots[source_tx_id.lower()] = snapshot_id

    def get(self, source_tx_id: str) -> Optional[str]:
        with self._lock:
            return self._snapshots.get(source_tx_id.lower())

    def pop(self, source_tx_id: str) -> str:
        """
        Remove and return the snapshot for ``source_tx_id``.

        Raises:
            ConsistencyError: If the command was never snapshotted
        """
        with self._lock:
            try:
                return self._snapshots.pop(source_tx_id.lower())
            except KeyError:
                raise ConsistencyError(
                    f"No snapshot recorded for removed transaction {source_tx_id}"
                ) from None

    def __contains__(self, source_tx_id: str) -> bool:
        with self._lock:
            return source_tx_id.lower() in self._snapshots

    def __len__(self) -> int:
        with self._lock:
            return len(self._snapshots)
