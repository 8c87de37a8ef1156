"""
Historical replay of Messenger events.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

from .contracts import CommandLog
from .executor import CommandExecutor
from .models import ExecutionOutcome, LogEntry

ProgressCallback = Callable[[int, int], None]


class BackfillSynchronizer:
    """
    Replays every Messenger event in a closed block range.

    Events are handled in batches: the rootchain lookups of a batch run in
    parallel, then its commands are executed one by one in log order. A batch
    is fully executed before the next one is decoded.
    """

    def __init__(
        self,
        command_log: CommandLog,
        executor: CommandExecutor,
        batch_size: int = 10,
        logger: Optional[logging.Logger] = None
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.command_log = command_log
        self.executor = executor
        self.batch_size = batch_size
        self.logger = logger or logging.getLogger(__name__)

    def sync(
        self,
        from_block: int,
        to_block: int,
        progress: Optional[ProgressCallback] = None
    ) -> List[ExecutionOutcome]:
        """
        Replay events in ``[from_block, to_block]``.

        Args:
            from_block: First rootchain block to replay
            to_block: Last rootchain block to replay (inclusive)
            progress: Called with (processed, total) after each batch

        Returns:
            Outcomes of the executed commands, in log order

        Raises:
            LedgerError, DecodeError, RegistryError: If fetching or decoding
                any event fails; the batch is abandoned
        """
        if from_block > to_block:
            self.logger.info(f"Nothing to sync (from {from_block} > to {to_block})")
            return []

        logs = self.command_log.get_logs(from_block, to_block)
        total = len(logs)
        self.logger.info(f"Syncing {total} transactions from blocks {from_block}-{to_block}")

        outcomes: List[ExecutionOutcome] = []
        with ThreadPoolExecutor(max_workers=self.batch_size, thread_name_prefix="backfill") as pool:
            for start in range(0, total, self.batch_size):
                batch = logs[start:start + self.batch_size]
                outcomes.extend(self._run_batch(pool, batch))
                if progress is not None:
                    progress(min(start + self.batch_size, total), total)
        return outcomes

    def _run_batch(self, pool: ThreadPoolExecutor, batch: List[LogEntry]) -> List[ExecutionOutcome]:
        # map() yields in submission order and re-raises the first failure
        commands = list(pool.map(self.executor.decode, batch))
        outcomes = []
        for command in commands:
            if command is None:
                continue
            outcomes.append(self.executor.execute(command))
        return outcomes
