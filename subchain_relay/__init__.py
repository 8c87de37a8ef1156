"""
subchain-relay: replays commands recorded on a rootchain Messenger contract
onto a locally executed subchain, and keeps it in sync across reorgs.
"""
from .version import __version__
from .config import RelayConfig
from .exceptions import (
    RelayError, LedgerError, SandboxError, RegistryError, DecodeError, ConsistencyError
)
from .models import Command, ExecutionOutcome, ExecutionStatus, Notification, NotificationKind
from .ledger import LedgerClient
from .sandbox import SandboxClient, SandboxProcess
from .contracts import CommandLog, ConfirmationRegistry
from .snapshots import SnapshotTable
from .executor import CommandExecutor
from .backfill import BackfillSynchronizer
from .reconciler import ReconciliationStreamer
from .relay import RelayCoordinator

__all__ = [
    "RelayConfig",
    "RelayError",
    "LedgerError",
    "SandboxError",
    "RegistryError",
    "DecodeError",
    "ConsistencyError",
    "Command",
    "ExecutionOutcome",
    "ExecutionStatus",
    "Notification",
    "NotificationKind",
    "LedgerClient",
    "SandboxClient",
    "SandboxProcess",
    "CommandLog",
    "ConfirmationRegistry",
    "SnapshotTable",
    "CommandExecutor",
    "BackfillSynchronizer",
    "ReconciliationStreamer",
    "RelayCoordinator",
    "__version__",
]
