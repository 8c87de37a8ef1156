"""
RelayCoordinator - wires the rootchain, the subchain and the sync engine
together and owns the single timeline every subchain mutation runs on.
"""
import logging
import queue
import threading
from typing import List, Optional

from ._rate_limited_log import rate_limited_log
from .backfill import BackfillSynchronizer, ProgressCallback
from .config import RelayConfig
from .contracts import CommandLog, ConfirmationRegistry
from .exceptions import ConsistencyError, RelayError, SandboxError
from .executor import CommandExecutor
from .ledger import LedgerClient
from .models import ExecutionOutcome, Notification, NotificationKind
from .reconciler import ReconciliationStreamer
from .sandbox import SandboxClient, SandboxProcess
from .snapshots import SnapshotTable


class RelayCoordinator:
    """
    Keeps the subchain a replica of the Messenger's command log.

    Lifecycle: bootstrap() -> backfill() -> stream(). run() does all three.

    All subchain mutations (executing and rolling back commands) take
    ``self.lock``; backfill and the live applier never overlap.
    """

    def __init__(
        self,
        config: RelayConfig,
        ledger: LedgerClient,
        sandbox: SandboxClient,
        command_log: CommandLog,
        sandbox_process: Optional[SandboxProcess] = None,
        genesis_timestamp: Optional[int] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.config = config
        self.ledger = ledger
        self.sandbox = sandbox
        self.command_log = command_log
        self.sandbox_process = sandbox_process
        self.genesis_timestamp = genesis_timestamp
        self.logger = logger or logging.getLogger(__name__)

        self.lock = threading.RLock()
        self.snapshots = SnapshotTable()

        self.created_block: Optional[int] = None
        self.cursor: Optional[int] = None
        self.synced_to: Optional[int] = None
        self.registry: Optional[ConfirmationRegistry] = None
        self.executor: Optional[CommandExecutor] = None
        self.backfiller: Optional[BackfillSynchronizer] = None
        self.streamer: Optional[ReconciliationStreamer] = None
        self._failure: Optional[BaseException] = None

    @classmethod
    def from_config(cls, config: RelayConfig, logger: Optional[logging.Logger] = None) -> "RelayCoordinator":
        """
        Connect to the rootchain and start a subchain node whose genesis time
        is the Messenger's creation time.
        """
        ledger = LedgerClient(
            config.rootchain_url,
            retry_count=config.retry_count,
            timeout=config.request_timeout,
            logger=logger
        )
        command_log = CommandLog(ledger, config.messenger_address)
        created_block = command_log.created()
        genesis_timestamp = ledger.get_block(created_block).timestamp

        process = SandboxProcess(
            db_path=config.db_path,
            genesis_timestamp=genesis_timestamp,
            port=config.port,
            host=config.host,
            mnemonic=config.mnemonic,
            block_gas_limit=config.block_gas_limit,
            anvil_bin=config.anvil_bin,
            startup_timeout=config.startup_timeout
        )
        url = process.start()
        sandbox = SandboxClient.from_url(url, impersonate_method=config.impersonate_method, logger=logger)
        relay = cls(
            config, ledger, sandbox, command_log,
            sandbox_process=process,
            genesis_timestamp=genesis_timestamp,
            logger=logger
        )
        relay.created_block = created_block
        return relay

    def bootstrap(self) -> int:
        """
        Prepare the subchain and work out where to resume.

        Returns:
            The rootchain block backfill starts from

        Raises:
            LedgerError: If the Messenger can't be read
            RegistryError: If the registry is missing and can't be deployed
        """
        if self.created_block is None:
            self.created_block = self.command_log.created()
        if self.genesis_timestamp is None:
            self.genesis_timestamp = self.ledger.get_block(self.created_block).timestamp

        self.sandbox.stop_mining()
        accounts = self.sandbox.get_accounts()
        if not accounts:
            raise SandboxError("Subchain node has no unlocked controller account")
        controller = accounts[0]

        self.registry = ConfirmationRegistry.ensure_deployed(
            self.sandbox,
            self.config.registry_address,
            controller,
            self.config.registry_artifact,
            self.genesis_timestamp,
            gas=self.config.max_gas
        )
        self.executor = CommandExecutor(
            self.ledger,
            self.sandbox,
            self.command_log,
            self.registry,
            self.snapshots,
            max_gas=self.config.max_gas,
            lock=self.lock,
            logger=self.logger
        )
        self.backfiller = BackfillSynchronizer(
            self.command_log, self.executor, batch_size=self.config.batch_size, logger=self.logger
        )
        self.streamer = ReconciliationStreamer(
            self.ledger,
            self.command_log.address,
            block_retention=self.config.block_retention,
            logger=self.logger
        )
        self.cursor = self.resolve_cursor()
        return self.cursor

    def resolve_cursor(self) -> int:
        """
        The registry is the checkpoint: resume from the block of the last
        confirmed rootchain transaction, or from the Messenger's creation.
        """
        last_tx = self.registry.last_tx()
        if last_tx is None:
            self.logger.info(f"Fresh subchain, syncing from block {self.created_block}")
            return self.created_block
        block_number = self.ledger.get_transaction(last_tx)["blockNumber"]
        self.logger.info(f"Resuming from block {block_number} (last transaction {last_tx})")
        return block_number

    def backfill(self, progress: Optional[ProgressCallback] = None) -> List[ExecutionOutcome]:
        """
        Replay history up to ``confirmation_depth`` blocks behind the head.
        Younger blocks are left to the streamer.
        """
        head = self.ledger.get_block_number()
        to_block = head - self.config.confirmation_depth
        outcomes = self.backfiller.sync(self.cursor, to_block, progress=progress)
        self.synced_to = to_block
        return outcomes

    def apply(self, notifications: List[Notification]) -> None:
        """
        Apply one head's notifications in order.

        Raises:
            ConsistencyError: If a removed log was never applied here, or a
                failed command could not be undone
        """
        for notification in notifications:
            log = notification.log
            if notification.kind == NotificationKind.REMOVED:
                self.executor.rollback(log.transaction_hash)
                continue
            self.logger.info(f"New transaction {log.transaction_hash}")
            try:
                self.executor.process(log)
            except ConsistencyError:
                raise
            except RelayError as e:
                self.logger.error(f"Could not process transaction {log.transaction_hash}: {e}")

    def poll_once(self, pending: "Optional[queue.Queue]" = None) -> List[Notification]:
        """
        Reconcile the current rootchain head. With ``pending``, hand the
        notifications to the applier and wait until they are applied.
        """
        block = self.ledger.get_block("latest")
        notifications = self.streamer.reconcile_new_block(block)
        if notifications:
            if pending is None:
                self.apply(notifications)
            else:
                pending.put(notifications)
                pending.join()
        return notifications

    def _apply_loop(self, pending: queue.Queue, stop_event: threading.Event) -> None:
        while True:
            notifications = pending.get()
            try:
                if notifications is None:
                    return
                self.apply(notifications)
            except ConsistencyError as e:
                self.logger.critical(f"Subchain state is inconsistent, stopping: {e}")
                self._failure = e
                stop_event.set()
            except Exception as e:
                # a failed revert leaves the subchain in an unknown state
                self.logger.critical(f"Applying rootchain changes failed, stopping: {e}")
                self._failure = e
                stop_event.set()
            finally:
                pending.task_done()

    def stream(self, stop_event: Optional[threading.Event] = None) -> None:
        """
        Follow the rootchain head until ``stop_event`` is set.

        Raises:
            ConsistencyError: If a rollback found no snapshot
        """
        stop_event = stop_event or threading.Event()
        pending: queue.Queue = queue.Queue(maxsize=1)
        applier = threading.Thread(
            target=self._apply_loop, args=(pending, stop_event), name="relay-applier", daemon=True
        )
        applier.start()
        try:
            while not stop_event.is_set():
                try:
                    self.poll_once(pending)
                except RelayError as e:
                    rate_limited_log(f"Polling the rootchain failed: {e}", level="error",
                                     logger_instance=self.logger)
                stop_event.wait(self.config.poll_interval)
        finally:
            pending.put(None)
            applier.join()

        if self._failure is not None:
            raise self._failure

    def run(
        self,
        stop_event: Optional[threading.Event] = None,
        progress: Optional[ProgressCallback] = None
    ) -> None:
        self.bootstrap()
        self.backfill(progress=progress)
        self.logger.info("sync complete")
        self.streamer.prime(self.ledger.get_block(max(self.synced_to, 0)))
        self.stream(stop_event)

    def close(self) -> None:
        if self.sandbox_process is not None:
            self.sandbox_process.terminate()
