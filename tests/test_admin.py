"""
Tests for shard ledger administration.

Fee updates, pause control, retained-fee payouts and operator transfer.
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import pytest
from config import to_units
from credit.ledger import ShardLedger
from credit.operations import MAX_WITHDRAWAL_FEE, OpType
from credit.payout import InMemoryPayoutGateway, RejectingPayoutGateway
from crypto import hash_secret
from errors import (
    FeeOutOfRangeError,
    InsufficientBalanceError,
    PausedStateError,
    TransferFailedError,
    UnauthorizedError,
)

OPERATOR = "operator"
MESSAGE_FEE = to_units("0.01")
WITHDRAWAL_FEE = to_units("0.001")
SECRET = "tip-jar-secret"
IDENTITY = hash_secret(SECRET)


@pytest.fixture
def gateway():
    return InMemoryPayoutGateway()


@pytest.fixture
def ledger(gateway):
    return ShardLedger(OPERATOR, MESSAGE_FEE, WITHDRAWAL_FEE, payout=gateway)


class TestFeeUpdates:
    """Test operator fee administration"""

    def test_update_message_fee(self, ledger):
        ledger.update_message_fee(to_units("0.02"), caller=OPERATOR)

        assert ledger.message_fee == to_units("0.02")
        record = ledger.events.query(name="MessageFeeUpdated")[-1]
        assert record.event.old_fee == MESSAGE_FEE
        assert record.event.new_fee == to_units("0.02")

    def test_new_fee_applies_to_next_send(self, ledger):
        ledger.deposit_credit(IDENTITY, to_units("1"))
        ledger.update_message_fee(to_units("0.02"), caller=OPERATOR)

        receipt = ledger.send_message(IDENTITY, b"hi", sender="s")

        assert receipt.fee == to_units("0.02")

    def test_message_fee_out_of_range(self, ledger):
        """Test fee bounds: 1 credit is too high, 0.02 is fine"""
        with pytest.raises(FeeOutOfRangeError):
            ledger.update_message_fee(to_units("1"), caller=OPERATOR)
        with pytest.raises(FeeOutOfRangeError):
            ledger.update_message_fee(0, caller=OPERATOR)

        assert ledger.message_fee == MESSAGE_FEE

    def test_withdrawal_fee_out_of_range(self, ledger):
        with pytest.raises(FeeOutOfRangeError):
            ledger.update_withdrawal_fee(to_units("0.1"), caller=OPERATOR)

        ledger.update_withdrawal_fee(MAX_WITHDRAWAL_FEE, caller=OPERATOR)
        assert ledger.withdrawal_fee == MAX_WITHDRAWAL_FEE

    def test_per_byte_fee_update(self, ledger):
        ledger.update_per_byte_fee(10, caller=OPERATOR)

        assert ledger.per_byte_fee == 10
        assert ledger.fee_for_payload(b"abc") == MESSAGE_FEE + 30

    @pytest.mark.security_critical
    def test_non_operator_cannot_update_fees(self, ledger):
        with pytest.raises(UnauthorizedError):
            ledger.update_message_fee(to_units("0.02"), caller="mallory")
        with pytest.raises(UnauthorizedError):
            ledger.update_withdrawal_fee(0, caller="mallory")

        assert ledger.message_fee == MESSAGE_FEE
        assert ledger.withdrawal_fee == WITHDRAWAL_FEE


class TestPause:
    """Test the pause switch"""

    def test_pause_blocks_mutations(self, ledger):
        ledger.deposit_credit(IDENTITY, to_units("1"))
        ledger.authorize_withdrawal(IDENTITY, "wallet", SECRET)
        ledger.pause(caller=OPERATOR)

        assert ledger.paused
        with pytest.raises(PausedStateError):
            ledger.deposit_credit(IDENTITY, 1)
        with pytest.raises(PausedStateError):
            ledger.send_message(IDENTITY, b"hi", sender="s")
        with pytest.raises(PausedStateError):
            ledger.authorize_withdrawal(IDENTITY, "other", SECRET)
        with pytest.raises(PausedStateError):
            ledger.withdraw_credit(IDENTITY, to_units("0.1"), caller="wallet")

        assert ledger.get_credit_balance(IDENTITY) == to_units("1")

    def test_unpause_restores_operations(self, ledger):
        ledger.pause(caller=OPERATOR)
        ledger.unpause(caller=OPERATOR)

        ledger.deposit_credit(IDENTITY, 1)
        assert ledger.get_credit_balance(IDENTITY) == 1
        names = [r.name for r in ledger.events.records()]
        assert names == ["Paused", "Unpaused", "CreditDeposited"]

    def test_admin_allowed_while_paused(self, ledger):
        ledger.pause(caller=OPERATOR)

        ledger.update_message_fee(to_units("0.02"), caller=OPERATOR)
        assert ledger.message_fee == to_units("0.02")

    def test_double_pause_and_unpause(self, ledger):
        with pytest.raises(PausedStateError):
            ledger.unpause(caller=OPERATOR)

        ledger.pause(caller=OPERATOR)
        with pytest.raises(PausedStateError):
            ledger.pause(caller=OPERATOR)

    @pytest.mark.security_critical
    def test_non_operator_cannot_pause(self, ledger):
        with pytest.raises(UnauthorizedError):
            ledger.pause(caller="mallory")

        assert not ledger.paused


class TestRetainedFees:
    """Test operator extraction of retained fees"""

    def _collect_fees(self, ledger):
        ledger.deposit_credit(IDENTITY, to_units("1"))
        ledger.send_message(IDENTITY, b"one", sender="s")
        ledger.send_message(IDENTITY, b"two", sender="s")
        return 2 * MESSAGE_FEE

    @pytest.mark.economic
    def test_withdraw_all_retained_fees(self, ledger, gateway):
        expected = self._collect_fees(ledger)

        paid = ledger.withdraw_retained_fees("treasury", caller=OPERATOR)

        assert paid == expected
        assert ledger.retained_fees == 0
        assert gateway.received_by("treasury") == expected
        assert ledger.get_credit_balance(IDENTITY) == to_units("1") - expected
        assert ledger.get_audit_trail(ShardLedger.SYSTEM_ACCOUNT_ID)[0].operation == OpType.FEE_PAYOUT

    def test_withdraw_partial_retained_fees(self, ledger):
        self._collect_fees(ledger)

        ledger.withdraw_retained_fees("treasury", MESSAGE_FEE, caller=OPERATOR)

        assert ledger.retained_fees == MESSAGE_FEE

    def test_cannot_withdraw_more_than_retained(self, ledger):
        expected = self._collect_fees(ledger)

        with pytest.raises(InsufficientBalanceError):
            ledger.withdraw_retained_fees("treasury", expected + 1, caller=OPERATOR)

    def test_no_fees_to_withdraw(self, ledger):
        with pytest.raises(InsufficientBalanceError):
            ledger.withdraw_retained_fees("treasury", caller=OPERATOR)

    @pytest.mark.security_critical
    def test_user_cannot_withdraw_retained_fees(self, ledger):
        self._collect_fees(ledger)

        with pytest.raises(UnauthorizedError):
            ledger.withdraw_retained_fees("mallory", caller="mallory")

    def test_failed_fee_payout_restores_fees(self):
        ledger = ShardLedger(
            OPERATOR, MESSAGE_FEE, WITHDRAWAL_FEE, payout=RejectingPayoutGateway()
        )
        expected = self._collect_fees(ledger)

        with pytest.raises(TransferFailedError):
            ledger.withdraw_retained_fees("treasury", caller=OPERATOR)

        assert ledger.retained_fees == expected


class TestOperatorTransfer:
    """Test operator handover"""

    def test_transfer_operator(self, ledger):
        ledger.transfer_operator("new-operator", caller=OPERATOR)

        assert ledger.operator == "new-operator"
        with pytest.raises(UnauthorizedError):
            ledger.pause(caller=OPERATOR)
        ledger.pause(caller="new-operator")
        assert ledger.paused

    def test_only_operator_can_transfer(self, ledger):
        with pytest.raises(UnauthorizedError):
            ledger.transfer_operator("mallory", caller="mallory")
