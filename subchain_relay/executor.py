"""
Replays single rootchain commands on the subchain.
"""
import logging
import threading
from typing import Optional

from .contracts import CommandLog, ConfirmationRegistry
from .exceptions import ConsistencyError, SandboxError
from .ledger import LedgerClient
from .models import Command, ExecutionOutcome, ExecutionStatus, LogEntry
from .sandbox import SandboxClient
from .snapshots import SnapshotTable


class CommandExecutor:
    """
    Runs one Command through its phases, strictly in order:

    1. skip if the registry already holds a confirmation for it
    2. snapshot subchain state under the rootchain tx hash
    3. whitelist the origin, then reject (target without code) or apply,
       writing the outcome to the registry
    4. mine a block at the command's rootchain timestamp

    Failures in phases 2-4 are logged and the subchain is reverted to the
    snapshot, so the command stays unconfirmed and phase 1 makes a later
    retry safe. If that revert fails, ConsistencyError is raised.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        sandbox: SandboxClient,
        command_log: CommandLog,
        registry: ConfirmationRegistry,
        snapshots: SnapshotTable,
        max_gas: int = 99_000_000,
        lock: Optional[threading.RLock] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.ledger = ledger
        self.sandbox = sandbox
        self.command_log = command_log
        self.registry = registry
        self.snapshots = snapshots
        self.max_gas = max_gas
        self.lock = lock or threading.RLock()
        self.logger = logger or logging.getLogger(__name__)

    def decode(self, log: LogEntry) -> Optional[Command]:
        """
        Build the Command a log entry points at.

        Safe to call from worker threads: it only reads the rootchain and the
        registry.

        Returns:
            None if the transaction is already confirmed on the subchain

        Raises:
            LedgerError, DecodeError, RegistryError: If any lookup fails
        """
        if self.registry.is_confirmed(log.transaction_hash):
            self.logger.debug(f"Skipping confirmed transaction {log.transaction_hash}")
            return None
        tx = self.ledger.get_transaction(log.transaction_hash)
        block = self.ledger.get_block(log.block_number)
        return self.command_log.decode_command(tx, block.timestamp, log)

    def execute(self, command: Command) -> ExecutionOutcome:
        source_tx_id = command.source_tx_id
        with self.lock:
            if self.registry.is_confirmed(source_tx_id):
                self.logger.debug(f"Transaction {source_tx_id} already confirmed")
                return ExecutionOutcome(source_tx_id=source_tx_id, status=ExecutionStatus.SKIPPED)

            snapshot_id = None
            try:
                snapshot_id = self.sandbox.snapshot()
                self.snapshots.record(source_tx_id, snapshot_id)

                self.sandbox.whitelist(command.origin)
                if command.target is not None and not self.sandbox.has_code(command.target):
                    # data sent to an address without code can't be replayed
                    self.registry.reject(source_tx_id)
                    outcome = ExecutionOutcome(source_tx_id=source_tx_id, status=ExecutionStatus.REJECTED)
                    self.logger.info(f"Rejected {source_tx_id}: {command.target} is not a contract")
                else:
                    target_tx_id = self.sandbox.submit_transaction(command.to_transaction(self.max_gas))
                    self.registry.set_confirmed(source_tx_id, target_tx_id)
                    outcome = ExecutionOutcome(
                        source_tx_id=source_tx_id,
                        status=ExecutionStatus.APPLIED,
                        target_tx_id=target_tx_id
                    )
                    self.logger.debug(f"Applied {source_tx_id} as {target_tx_id}")

                self.sandbox.mine(command.timestamp)
                return outcome
            except Exception as e:
                self.logger.error(f"Failed to process transaction {source_tx_id}: {e}")
                if snapshot_id is not None:
                    self._abandon(source_tx_id, snapshot_id)
                return ExecutionOutcome(
                    source_tx_id=source_tx_id,
                    status=ExecutionStatus.FAILED,
                    error=str(e)
                )

    def _abandon(self, source_tx_id: str, snapshot_id: str) -> None:
        # evm_revert consumes the snapshot; a fresh one of the same state
        # keeps a later remove of this command revertible
        try:
            self.sandbox.revert(snapshot_id)
            self.snapshots.record(source_tx_id, self.sandbox.snapshot())
        except SandboxError as e:
            raise ConsistencyError(
                f"Could not undo failed transaction {source_tx_id}: {e}"
            ) from e

    def process(self, log: LogEntry) -> ExecutionOutcome:
        """Decode and execute a single log entry"""
        command = self.decode(log)
        if command is None:
            return ExecutionOutcome(source_tx_id=log.transaction_hash, status=ExecutionStatus.SKIPPED)
        return self.execute(command)

    def rollback(self, source_tx_id: str) -> None:
        """
        Revert the subchain to the state right before ``source_tx_id`` was
        applied. Everything applied after it is discarded too.

        Raises:
            ConsistencyError: If the transaction was never snapshotted
        """
        with self.lock:
            snapshot_id = self.snapshots.pop(source_tx_id)
            self.logger.info(f"Reverting {source_tx_id} (snapshot {snapshot_id})")
            self.sandbox.revert(snapshot_id)
