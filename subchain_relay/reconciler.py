"""
Tracks the rootchain head and turns canonical chain changes into log
added / removed notifications.
"""
import logging
from typing import Dict, List, Optional

from .ledger import LedgerClient
from .models import BlockHeader, LogEntry, Notification, NotificationKind


class ReconciliationStreamer:
    """
    Keeps a window of the most recent rootchain blocks (linked by parent
    hash) with the Messenger logs attributed to each of them.

    Every call to reconcile_new_block() returns, in order:
      * REMOVED notifications for logs of blocks that left the canonical chain,
        newest block first and each block's logs in reverse order
      * ADDED notifications for logs of blocks that joined it, oldest first
    """

    def __init__(
        self,
        ledger: LedgerClient,
        address: str,
        block_retention: int = 100,
        logger: Optional[logging.Logger] = None
    ):
        if block_retention <= 0:
            raise ValueError("block_retention must be positive")
        self.ledger = ledger
        self.address = address
        self.block_retention = block_retention
        self.logger = logger or logging.getLogger(__name__)
        self._blocks: List[BlockHeader] = []
        self._logs: Dict[str, List[LogEntry]] = {}

    @property
    def head(self) -> Optional[BlockHeader]:
        return self._blocks[-1] if self._blocks else None

    @property
    def blocks(self) -> List[BlockHeader]:
        return list(self._blocks)

    def logs_for(self, block_hash: str) -> List[LogEntry]:
        return list(self._logs.get(block_hash.lower(), []))

    def _index_of(self, block_hash: str) -> int:
        block_hash = block_hash.lower()
        for index in range(len(self._blocks) - 1, -1, -1):
            if self._blocks[index].hash == block_hash:
                return index
        return -1

    def prime(self, block: BlockHeader) -> None:
        """
        Start the window at ``block`` without fetching its logs; they were
        already replayed by backfill.
        """
        self._blocks = [block]
        self._logs = {block.hash: []}

    def reconcile_new_block(self, block: BlockHeader) -> List[Notification]:
        """
        Fold a newly observed head into the window.

        Raises:
            LedgerError: If a parent block or the logs of a new block can't be
                fetched; the window is left untouched
        """
        if not self._blocks:
            return self._apply(-1, [block])

        if self._index_of(block.hash) >= 0:
            return []

        oldest = self._blocks[0]
        if block.number < oldest.number:
            self.logger.debug(f"Ignoring block {block.number}, older than the retained window")
            return []

        # walk back until the new chain meets the window
        new_chain = [block]
        current = block
        ancestor = self._index_of(current.parent_hash)
        while ancestor < 0:
            if current.number <= oldest.number:
                self.logger.warning(
                    f"Block {block.number} ({block.hash}) does not connect to the last "
                    f"{len(self._blocks)} blocks, dropping the whole window"
                )
                break
            current = self.ledger.get_block(current.parent_hash)
            new_chain.append(current)
            ancestor = self._index_of(current.parent_hash)
        new_chain.reverse()
        return self._apply(ancestor, new_chain)

    def _apply(self, ancestor: int, new_chain: List[BlockHeader]) -> List[Notification]:
        # fetch before mutating so a failed lookup leaves the window intact
        fetched = [(block, self._fetch_logs(block)) for block in new_chain]

        notifications: List[Notification] = []
        while len(self._blocks) - 1 > ancestor:
            removed = self._blocks.pop()
            logs = self._logs.pop(removed.hash, [])
            self.logger.info(f"Block {removed.number} ({removed.hash}) left the canonical chain")
            for log in reversed(logs):
                notifications.append(Notification(kind=NotificationKind.REMOVED, log=log))

        for block, logs in fetched:
            self._blocks.append(block)
            self._logs[block.hash] = logs
            for log in logs:
                notifications.append(Notification(kind=NotificationKind.ADDED, log=log))

        while len(self._blocks) > self.block_retention:
            dropped = self._blocks.pop(0)
            self._logs.pop(dropped.hash, None)
        return notifications

    def _fetch_logs(self, block: BlockHeader) -> List[LogEntry]:
        logs = self.ledger.get_logs(self.address, block_hash=block.hash)
        return [log for log in logs if log.block_hash == block.hash]
