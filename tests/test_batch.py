"""
Tests for batch execution against a single shard.
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import pytest
from config import get_config, to_units
from credit.batch import BatchExecutor
from credit.ledger import ShardLedger
from crypto import hash_secret
from errors import (
    BatchTooLargeError,
    EmptyBatchError,
    InsufficientCreditError,
    InvalidAmountError,
    LengthMismatchError,
)
from sharding import ShardRouter

OPERATOR = "operator"
MESSAGE_FEE = to_units("0.01")
IDS = [hash_secret(f"batch-secret-{i}") for i in range(3)]


@pytest.fixture
def ledger():
    return ShardLedger(OPERATOR, MESSAGE_FEE, 0)


class TestBatchDeposit:
    """Test batched deposits"""

    def test_batch_deposit(self, ledger):
        executor = BatchExecutor()

        balances = executor.batch_deposit(ledger, IDS, [100, 200, 300])

        assert balances == [100, 200, 300]
        assert [ledger.get_credit_balance(i) for i in IDS] == [100, 200, 300]

    def test_repeated_identity_accumulates(self, ledger):
        balances = BatchExecutor().batch_deposit(ledger, [IDS[0], IDS[0]], [5, 7])

        assert balances == [5, 12]

    @pytest.mark.economic
    def test_batch_deposit_is_atomic(self, ledger):
        """Test one invalid amount aborts every deposit"""
        with pytest.raises(InvalidAmountError):
            BatchExecutor().batch_deposit(ledger, IDS, [100, 0, 300])

        assert all(ledger.get_credit_balance(i) == 0 for i in IDS)
        assert ledger.get_stats().total_deposited == 0
        assert len(ledger.events) == 0

    def test_length_mismatch(self, ledger):
        with pytest.raises(LengthMismatchError):
            BatchExecutor().batch_deposit(ledger, IDS, [1, 2])

    def test_empty_batch(self, ledger):
        with pytest.raises(EmptyBatchError):
            BatchExecutor().batch_deposit(ledger, [], [])

    def test_batch_too_large(self, ledger):
        executor = BatchExecutor(max_batch_size=2)

        with pytest.raises(BatchTooLargeError):
            executor.batch_deposit(ledger, IDS, [1, 2, 3])


class TestBatchSend:
    """Test batched message sends"""

    def test_batch_send(self, ledger):
        for identity in IDS:
            ledger.deposit_credit(identity, MESSAGE_FEE)

        receipts = BatchExecutor().batch_send_message(
            ledger, IDS, [b"a", b"b", b"c"], sender="s"
        )

        assert [r.seq for r in receipts] == [1, 2, 3]
        assert all(ledger.get_credit_balance(i) == 0 for i in IDS)
        assert len(ledger.events.query(name="MessageSent")) == 3

    @pytest.mark.economic
    def test_batch_send_is_atomic(self, ledger):
        """Test a failing second send leaves all three balances unchanged"""
        ledger.deposit_credit(IDS[0], MESSAGE_FEE)
        ledger.deposit_credit(IDS[2], MESSAGE_FEE)
        events_before = len(ledger.events)

        with pytest.raises(InsufficientCreditError):
            BatchExecutor().batch_send_message(
                ledger, IDS, [b"a", b"b", b"c"], sender="s"
            )

        assert ledger.get_credit_balance(IDS[0]) == MESSAGE_FEE
        assert ledger.get_credit_balance(IDS[1]) == 0
        assert ledger.get_credit_balance(IDS[2]) == MESSAGE_FEE
        assert ledger.get_stats().total_messages == 0
        assert ledger.retained_fees == 0
        assert len(ledger.events) == events_before

    def test_batch_on_shard_handle(self):
        router = ShardRouter(OPERATOR, get_config("local"))
        shard = router.get_shard(0)

        BatchExecutor().batch_deposit(shard, IDS, [1, 2, 3])

        assert shard.ledger.get_credit_balance(IDS[2]) == 3
