"""
Tests for the BackfillSynchronizer.
"""
import threading
import time

import pytest

from subchain_relay.backfill import BackfillSynchronizer
from subchain_relay.exceptions import LedgerError, SandboxError
from subchain_relay.models import ExecutionStatus
from tests.test_helpers import ALICE, CONTRACT, EOA


def _mine_commands(rootchain, count, per_block=1):
    hashes = []
    for start in range(0, count, per_block):
        n = min(per_block, count - start)
        block = rootchain.mine([(ALICE, CONTRACT, bytes([start + i])) for i in range(n)])
        hashes.extend(log.transaction_hash for log in rootchain.logs[block.hash])
    return hashes


def test_batch_size_must_be_positive(command_log, executor):
    with pytest.raises(ValueError):
        BackfillSynchronizer(command_log, executor, batch_size=0)


def test_replays_in_log_order(command_log, executor, rootchain, subchain):
    hashes = _mine_commands(rootchain, 25, per_block=3)

    outcomes = BackfillSynchronizer(command_log, executor).sync(0, rootchain.head.number)

    assert [o.source_tx_id for o in outcomes] == hashes
    assert all(o.status == ExecutionStatus.APPLIED for o in outcomes)
    assert [tx["data"] for tx in subchain.submitted] == ["0x%02x" % i for i in range(25)]
    assert subchain.mined == sorted(subchain.mined)


def test_order_holds_when_early_lookups_are_slow(command_log, executor, rootchain, subchain):
    hashes = _mine_commands(rootchain, 10)
    original = rootchain.get_transaction

    def slow_first(tx_hash):
        if tx_hash == hashes[0]:
            time.sleep(0.05)
        return original(tx_hash)

    rootchain.get_transaction = slow_first

    outcomes = BackfillSynchronizer(command_log, executor).sync(0, rootchain.head.number)

    assert [o.source_tx_id for o in outcomes] == hashes


def test_progress_reported_per_batch(command_log, executor, rootchain):
    _mine_commands(rootchain, 25)
    progress = []

    BackfillSynchronizer(command_log, executor, batch_size=10).sync(
        0, rootchain.head.number, progress=lambda done, total: progress.append((done, total))
    )

    assert progress == [(10, 25), (20, 25), (25, 25)]


def test_next_batch_waits_for_previous_executions(command_log, executor, rootchain):
    hashes = _mine_commands(rootchain, 6)
    events = []
    lock = threading.Lock()
    decode, execute = executor.decode, executor.execute

    def tracking_decode(log):
        with lock:
            events.append(("decode", log.transaction_hash))
        return decode(log)

    def tracking_execute(command):
        with lock:
            events.append(("execute", command.source_tx_id))
        return execute(command)

    executor.decode = tracking_decode
    executor.execute = tracking_execute

    BackfillSynchronizer(command_log, executor, batch_size=3).sync(0, rootchain.head.number)

    last_execute_first_batch = events.index(("execute", hashes[2]))
    first_decode_second_batch = min(events.index(("decode", h)) for h in hashes[3:])
    assert last_execute_first_batch < first_decode_second_batch


def test_range_is_inclusive(command_log, executor, rootchain):
    _mine_commands(rootchain, 3)  # blocks 21, 22, 23

    outcomes = BackfillSynchronizer(command_log, executor).sync(22, 23)

    assert [o.source_tx_id for o in outcomes] == rootchain.tx_hashes(22) + rootchain.tx_hashes(23)


def test_empty_range(command_log, executor, rootchain):
    assert BackfillSynchronizer(command_log, executor).sync(10, 9) == []
    assert not any(call[0] == "get_logs" for call in rootchain.calls)


def test_decode_failure_aborts_sync(command_log, executor, rootchain, subchain):
    hashes = _mine_commands(rootchain, 15)
    rootchain.fail_transactions[hashes[12]] = LedgerError("rootchain down")

    with pytest.raises(LedgerError):
        BackfillSynchronizer(command_log, executor, batch_size=10).sync(0, rootchain.head.number)

    # first batch went through, nothing from the failed batch was applied
    assert len(subchain.submitted) == 10


def test_execution_failure_does_not_abort_batch(command_log, executor, rootchain, subchain):
    _mine_commands(rootchain, 3)
    failures = [SandboxError("boom")]
    original = subchain.submit_transaction

    def fail_once(tx):
        if failures:
            raise failures.pop()
        return original(tx)

    subchain.submit_transaction = fail_once

    outcomes = BackfillSynchronizer(command_log, executor).sync(0, rootchain.head.number)

    assert [o.status for o in outcomes] == [
        ExecutionStatus.FAILED, ExecutionStatus.APPLIED, ExecutionStatus.APPLIED
    ]


def test_rejections_and_skips(command_log, executor, rootchain, registry):
    block = rootchain.mine([(ALICE, EOA, b"\x01"), (ALICE, CONTRACT, b"\x02")])
    rejected, applied = rootchain.tx_hashes(block.number)
    first = BackfillSynchronizer(command_log, executor).sync(0, rootchain.head.number)

    second = BackfillSynchronizer(command_log, executor).sync(0, rootchain.head.number)

    assert [o.status for o in first] == [ExecutionStatus.REJECTED, ExecutionStatus.APPLIED]
    assert registry.is_rejected(rejected)
    assert registry.is_confirmed(applied)
    assert second == []
