"""
Tests for the append-only event log.

Verifies commit-only publication, indexer queries, subscriptions and
signed JSONL sinks.
"""

import sys
import os
import json
import tempfile
import threading
import time
from pathlib import Path

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import pytest
from nacl.signing import SigningKey

from config import to_units
from credit.ledger import ShardLedger
from crypto import SIGNING_KEY_ENV, generate_signing_seed, hash_secret, load_signer
from errors import InsufficientCreditError
from events import EventLog, CreditDeposited, MessageSent

OPERATOR = "operator"
MESSAGE_FEE = to_units("0.01")
ALICE_ID = hash_secret("alice-secret-1")
BOB_ID = hash_secret("bob-secret-22")


class TestLedgerEvents:
    """Test events emitted by committed ledger operations"""

    def test_deposit_event(self):
        ledger = ShardLedger(OPERATOR, MESSAGE_FEE, 0, label="7")

        ledger.deposit_credit(ALICE_ID, 100)
        ledger.deposit_credit(ALICE_ID, 50)

        records = ledger.events.records()
        assert [r.seq for r in records] == [1, 2]
        assert records[1].source == "shard-7"
        assert records[1].event == CreditDeposited(ALICE_ID, 50, 150)

    def test_message_event_carries_payload(self):
        ledger = ShardLedger(OPERATOR, MESSAGE_FEE, 0)
        ledger.deposit_credit(ALICE_ID, MESSAGE_FEE)

        receipt = ledger.send_message(ALICE_ID, b"\x00ciphertext", sender="bob")

        record = ledger.events.query(name="MessageSent")[0]
        assert record.event == MessageSent(
            receipt.seq, "bob", ALICE_ID, b"\x00ciphertext", receipt.timestamp
        )
        assert record.to_dict()["args"]["payload"] == "AGNpcGhlcnRleHQ="

    def test_failed_operation_emits_nothing(self):
        ledger = ShardLedger(OPERATOR, MESSAGE_FEE, 0)

        with pytest.raises(InsufficientCreditError):
            ledger.send_message(ALICE_ID, b"hello", sender="bob")

        assert len(ledger.events) == 0

    def test_rolled_back_transaction_discards_events(self):
        ledger = ShardLedger(OPERATOR, MESSAGE_FEE, 0)

        with pytest.raises(RuntimeError):
            with ledger.transaction():
                ledger.deposit_credit(ALICE_ID, 100)
                raise RuntimeError("abort")

        assert len(ledger.events) == 0
        assert ledger.get_credit_balance(ALICE_ID) == 0

    def test_concurrent_sends_logged_in_commit_order(self):
        """Test a slow publisher cannot let a later commit overtake it in the log"""
        entered = threading.Event()
        release = threading.Event()

        class SlowFirstLog(EventLog):
            def extend(self, source, events):
                events = list(events)
                if not entered.is_set() and isinstance(events[0], MessageSent):
                    entered.set()
                    release.wait(timeout=5)
                return super().extend(source, events)

        ledger = ShardLedger(OPERATOR, MESSAGE_FEE, 0, event_log=SlowFirstLog())
        ledger.deposit_credit(ALICE_ID, MESSAGE_FEE)
        ledger.deposit_credit(BOB_ID, MESSAGE_FEE)

        first = threading.Thread(
            target=ledger.send_message, args=(ALICE_ID, b"a"), kwargs={"sender": "s"}
        )
        second = threading.Thread(
            target=ledger.send_message, args=(BOB_ID, b"b"), kwargs={"sender": "s"}
        )
        first.start()
        assert entered.wait(timeout=5)
        second.start()
        time.sleep(0.1)
        release.set()
        first.join()
        second.join()

        sent = [r.event for r in ledger.events.query(name="MessageSent")]
        assert [e.seq for e in sent] == [1, 2]
        assert [e.identity for e in sent] == [ALICE_ID, BOB_ID]
        assert [r.seq for r in ledger.events.records()] == [1, 2, 3, 4]


class TestQueries:
    """Test indexer-side filtering"""

    def test_query_by_identity(self):
        log = EventLog()
        ledger = ShardLedger(OPERATOR, MESSAGE_FEE, 0, event_log=log)
        ledger.deposit_credit(ALICE_ID, to_units("1"))
        ledger.deposit_credit(BOB_ID, to_units("1"))
        ledger.send_message(ALICE_ID, b"for alice", sender="s")

        inbox = log.query(name="MessageSent", identity=ALICE_ID)
        assert len(inbox) == 1
        assert inbox[0].event.payload == b"for alice"
        assert log.query(identity=BOB_ID.upper().replace("0X", "0x"))[0].event.receiver_hash == BOB_ID
        assert [r.seq for r in log.query(since_seq=2)] == [3]

    def test_subscribe_and_unsubscribe(self):
        log = EventLog()
        ledger = ShardLedger(OPERATOR, MESSAGE_FEE, 0, event_log=log)
        seen = []

        unsubscribe = log.subscribe(lambda record: seen.append(record.name))
        ledger.deposit_credit(ALICE_ID, 1)
        unsubscribe()
        ledger.deposit_credit(ALICE_ID, 1)

        assert seen == ["CreditDeposited"]


class TestSignedSink:
    """Test JSONL mirroring with ed25519 signatures"""

    def test_signed_sink_verifies(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "events.jsonl"
            signer = SigningKey.generate()
            ledger = ShardLedger(
                OPERATOR, MESSAGE_FEE, 0, event_log=EventLog(sink_path=path, signer=signer)
            )
            ledger.deposit_credit(ALICE_ID, MESSAGE_FEE)
            ledger.send_message(ALICE_ID, b"hi", sender="s")

            lines = path.read_text().splitlines()
            assert len(lines) == 2
            assert json.loads(lines[1])["event"] == "MessageSent"
            assert EventLog.verify_file(path)
            assert EventLog.verify_file(path, expected_pk=signer.verify_key)
            assert not EventLog.verify_file(path, expected_pk=SigningKey.generate().verify_key)

    def test_tampered_sink_fails(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "events.jsonl"
            log = EventLog(sink_path=path, signer=SigningKey.generate())
            ShardLedger(OPERATOR, MESSAGE_FEE, 0, event_log=log).deposit_credit(ALICE_ID, 5)

            record = json.loads(path.read_text())
            record["args"]["amount"] = 5000
            path.write_text(json.dumps(record) + "\n")

            assert not EventLog.verify_file(path)

    def test_sink_signed_with_key_from_environment(self, monkeypatch):
        monkeypatch.setenv(SIGNING_KEY_ENV, generate_signing_seed())
        signer = load_signer()

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "events.jsonl"
            log = EventLog(sink_path=path, signer=signer)
            ShardLedger(OPERATOR, MESSAGE_FEE, 0, event_log=log).deposit_credit(ALICE_ID, 5)

            assert EventLog.verify_file(path, expected_pk=signer.verify_key)

    def test_missing_signing_key(self, monkeypatch):
        monkeypatch.delenv(SIGNING_KEY_ENV, raising=False)

        with pytest.raises(RuntimeError):
            load_signer()
