"""
Shard Ledger: per-identity credit balances, message admission and
withdrawals with SQLite persistence.

Every public mutating call is one transaction. Preconditions are checked
first, then all ledger state is written, and only then is an external payout
issued, still inside the open transaction, so a failed payout rolls the whole
operation back and a recipient calling back in sees the debited balance.
"""

import hmac
import json
import logging
import sqlite3
import threading
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, List, Optional, Union

from credit.operations import (
    OpType,
    LedgerOp,
    LedgerStats,
    MessageReceipt,
    encode_payload,
    validate_amount,
    validate_identity,
    validate_principal,
    validate_message_fee,
    validate_withdrawal_fee,
    validate_per_byte_fee,
)
from credit.payout import PayoutGateway, InMemoryPayoutGateway
from crypto import hash_secret, is_identity_hash, short_id
from errors import (
    AmountBelowFeeError,
    InsufficientBalanceError,
    InsufficientCreditError,
    InvalidIdentityError,
    InvalidSecretError,
    PausedStateError,
    ReentrantCallError,
    TransferFailedError,
    UnauthorizedError,
)
from events import (
    Event,
    EventLog,
    CreditDeposited,
    MessageSent,
    CreditWithdrawn,
    MessageFeeUpdated,
    WithdrawalFeeUpdated,
    PerByteFeeUpdated,
    Paused,
    Unpaused,
    FeesWithdrawn,
    OperatorTransferred,
)
from observability.metrics import metrics_collector, track_operation

logger = logging.getLogger(__name__)


class ShardLedger:
    """
    Credit ledger for one shard of identities.

    Thread-safe; callers are serialized by a re-entrant lock so a payout
    recipient can call back into the ledger from the same thread.
    """

    # Audit-trail owner for operator fee payouts
    SYSTEM_ACCOUNT_ID = "system"

    def __init__(
        self,
        operator: str,
        message_fee: int,
        withdrawal_fee: int,
        *,
        db_path: Optional[Path] = None,
        per_byte_fee: int = 0,
        max_payload_bytes: int = 1024,
        payout: Optional[PayoutGateway] = None,
        event_log: Optional[EventLog] = None,
        label: str = "0",
    ):
        """
        Initialize a shard ledger.

        Args:
            operator: Principal allowed to run administrative calls
            message_fee: Fixed fee per message, in units
            withdrawal_fee: Fee retained from each withdrawal, in units
            db_path: SQLite file (in-memory database if None)
            per_byte_fee: Extra fee per payload byte, in units
            max_payload_bytes: Largest accepted payload
            payout: Gateway used to pay withdrawers and the operator
            event_log: Log committed events are appended to
            label: Shard label used in event sources, logs and metrics

        Raises:
            FeeOutOfRangeError: If a fee is outside its allowed range
        """
        validate_principal(operator)
        validate_message_fee(message_fee)
        validate_withdrawal_fee(withdrawal_fee)
        validate_per_byte_fee(per_byte_fee)
        if max_payload_bytes <= 0:
            raise ValueError(f"max_payload_bytes must be positive: {max_payload_bytes}")

        self.db_path = db_path
        # Autocommit mode: transactions are issued explicitly by transaction()
        self.conn = sqlite3.connect(
            str(db_path) if db_path else ":memory:",
            check_same_thread=False,
            isolation_level=None,
        )
        self.lock = threading.RLock()
        self.label = str(label)
        self.source = f"shard-{self.label}"
        self.max_payload_bytes = max_payload_bytes
        self.payout = payout if payout is not None else InMemoryPayoutGateway()
        self.events = event_log if event_log is not None else EventLog()

        self._depth = 0
        self._pending: List[Event] = []
        self._on_commit: List[Callable[[], None]] = []

        self._init_schema(operator, message_fee, withdrawal_fee, per_byte_fee)

    def _init_schema(self, operator, message_fee, withdrawal_fee, per_byte_fee):
        """Initialize database schema"""
        with self.lock:
            self.conn.execute("BEGIN")
            # Credit accounts
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    identity TEXT PRIMARY KEY,
                    balance INTEGER NOT NULL DEFAULT 0 CHECK(balance >= 0)
                )
            """
            )

            # Single authorized withdrawer per identity
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS withdrawers (
                    identity TEXT PRIMARY KEY,
                    withdrawer TEXT NOT NULL
                )
            """
            )

            # Fee schedule and pause switch
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS settings (
                    id INTEGER PRIMARY KEY CHECK(id = 1),
                    operator TEXT NOT NULL,
                    message_fee INTEGER NOT NULL,
                    withdrawal_fee INTEGER NOT NULL,
                    per_byte_fee INTEGER NOT NULL,
                    paused INTEGER NOT NULL DEFAULT 0
                )
            """
            )

            # Counters and the logical clock
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS stats (
                    id INTEGER PRIMARY KEY CHECK(id = 1),
                    total_messages INTEGER NOT NULL DEFAULT 0,
                    total_deposited INTEGER NOT NULL DEFAULT 0,
                    retained_fees INTEGER NOT NULL DEFAULT 0 CHECK(retained_fees >= 0),
                    total_paid_out INTEGER NOT NULL DEFAULT 0,
                    clock INTEGER NOT NULL DEFAULT 0
                )
            """
            )

            # Operations audit trail (append-only)
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS operations (
                    op_id TEXT PRIMARY KEY,
                    identity TEXT NOT NULL,
                    op_type TEXT NOT NULL,
                    amount INTEGER NOT NULL,
                    timestamp_ns INTEGER NOT NULL,
                    metadata_json TEXT NOT NULL
                )
            """
            )

            # Existing databases keep their stored settings
            self.conn.execute(
                """
                INSERT OR IGNORE INTO settings
                    (id, operator, message_fee, withdrawal_fee, per_byte_fee, paused)
                VALUES (1, ?, ?, ?, ?, 0)
            """,
                (operator, message_fee, withdrawal_fee, per_byte_fee),
            )
            self.conn.execute("INSERT OR IGNORE INTO stats (id) VALUES (1)")

            # Indexes
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_ops_identity ON operations(identity)"
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_ops_timestamp ON operations(timestamp_ns)"
            )
            self.conn.execute("COMMIT")

    # ------------------------------------------------------------------
    # Transaction boundary
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self):
        """
        Run a block as one all-or-nothing unit.

        The outermost block opens a SQLite transaction; nested blocks (batches,
        calls made from inside a payout) use savepoints. Events and metrics
        buffered inside the block are published only when the outermost block
        commits.
        """
        with self.lock:
            depth = self._depth
            if depth == 0:
                self.conn.execute("BEGIN IMMEDIATE")
            else:
                self.conn.execute(f"SAVEPOINT sp_{depth}")
            event_mark = len(self._pending)
            hook_mark = len(self._on_commit)
            self._depth += 1

            try:
                yield self
            except BaseException:
                self._depth -= 1
                if depth == 0:
                    self.conn.execute("ROLLBACK")
                else:
                    self.conn.execute(f"ROLLBACK TO sp_{depth}")
                    self.conn.execute(f"RELEASE sp_{depth}")
                del self._pending[event_mark:]
                del self._on_commit[hook_mark:]
                raise

            self._depth -= 1
            if depth > 0:
                self.conn.execute(f"RELEASE sp_{depth}")
                return

            self.conn.execute("COMMIT")
            events, self._pending = self._pending, []
            hooks, self._on_commit = self._on_commit, []

            # Published under the lock so log order matches commit order
            if events:
                self.events.extend(self.source, events)
            for hook in hooks:
                hook()

    @contextmanager
    def _outermost(self):
        """
        Require the guarded operation to be its own outermost transaction.

        A payout cannot be recalled, so an operation that issues one must not
        run inside an enclosing transaction (including another payout) that
        could still roll its debit back.
        """
        with self.lock:
            if self._depth:
                raise ReentrantCallError(
                    f"Payout operations cannot run inside an open transaction on {self.source}"
                )
            yield

    # ------------------------------------------------------------------
    # Internal helpers (caller holds the lock inside a transaction)
    # ------------------------------------------------------------------

    def _setting(self, column: str):
        cursor = self.conn.execute(f"SELECT {column} FROM settings WHERE id = 1")
        return cursor.fetchone()[0]

    def _stat(self, column: str) -> int:
        cursor = self.conn.execute(f"SELECT {column} FROM stats WHERE id = 1")
        return cursor.fetchone()[0]

    def _balance(self, identity: str) -> int:
        cursor = self.conn.execute(
            "SELECT balance FROM accounts WHERE identity = ?", (identity,)
        )
        row = cursor.fetchone()
        return row[0] if row else 0

    def _withdrawer(self, identity: str) -> Optional[str]:
        cursor = self.conn.execute(
            "SELECT withdrawer FROM withdrawers WHERE identity = ?", (identity,)
        )
        row = cursor.fetchone()
        return row[0] if row else None

    def _require_not_paused(self) -> None:
        if self._setting("paused"):
            raise PausedStateError("Ledger is paused")

    def _require_operator(self, caller: str) -> None:
        operator = self._setting("operator")
        if caller != operator:
            logger.warning(f"Rejected privileged call on {self.source} from {caller}")
            raise UnauthorizedError(f"Caller {caller} is not the operator")

    def _tick(self) -> int:
        """Advance the logical clock"""
        self.conn.execute("UPDATE stats SET clock = clock + 1 WHERE id = 1")
        return self._stat("clock")

    def _record_op(self, identity: str, op_type: OpType, amount: int, metadata: dict) -> None:
        self.conn.execute(
            """
            INSERT INTO operations (op_id, identity, op_type, amount, timestamp_ns, metadata_json)
            VALUES (?, ?, ?, ?, ?, ?)
        """,
            (
                str(uuid.uuid4()),
                identity,
                op_type.value,
                amount,
                time.time_ns(),
                json.dumps(metadata),
            ),
        )

    def _emit(self, event: Event) -> None:
        self._pending.append(event)

    def _fee_for_size(self, size: int) -> int:
        return self._setting("message_fee") + self._setting("per_byte_fee") * size

    def _pay(self, recipient: str, amount: int) -> None:
        """Issue the external payout; any failure aborts the operation"""
        try:
            delivered = self.payout.transfer(recipient, amount)
        except Exception as e:
            logger.warning(f"Payout to {recipient} on {self.source} raised: {e}")
            raise TransferFailedError(f"Transfer failed: {e}") from e
        if not delivered:
            logger.warning(f"Payout to {recipient} on {self.source} was not delivered")
            raise TransferFailedError("Transfer failed")

    @staticmethod
    def _lookup_key(identity: str) -> str:
        if not is_identity_hash(identity):
            raise InvalidIdentityError(f"Invalid identity hash: {identity!r}")
        return identity.lower()

    # ------------------------------------------------------------------
    # Credit operations
    # ------------------------------------------------------------------

    @track_operation("deposit_credit")
    def deposit_credit(self, identity: str, amount: int) -> int:
        """
        Add credit to an identity. Anyone may deposit; the depositor is not recorded.

        Args:
            identity: Receiving identity hash
            amount: Units to add

        Returns:
            New balance

        Raises:
            PausedStateError: If the ledger is paused
            InvalidIdentityError: If identity is malformed or the zero sentinel
            InvalidAmountError: If amount is not a positive integer
        """
        with self.transaction():
            self._require_not_paused()
            identity = validate_identity(identity)
            validate_amount(amount)

            cursor = self.conn.execute(
                "SELECT identity FROM accounts WHERE identity = ?", (identity,)
            )
            if cursor.fetchone():
                self.conn.execute(
                    "UPDATE accounts SET balance = balance + ? WHERE identity = ?",
                    (amount, identity),
                )
            else:
                self.conn.execute(
                    "INSERT INTO accounts (identity, balance) VALUES (?, ?)",
                    (identity, amount),
                )

            self.conn.execute(
                "UPDATE stats SET total_deposited = total_deposited + ? WHERE id = 1",
                (amount,),
            )
            self._tick()
            self._record_op(identity, OpType.DEPOSIT, amount, {})

            new_balance = self._balance(identity)
            self._emit(CreditDeposited(identity, amount, new_balance))
            self._on_commit.append(lambda: metrics_collector.record_deposit(self.label, amount))

        logger.info(f"Deposited {amount} to {short_id(identity)} on {self.source}")
        return new_balance

    def fee_for_payload(self, payload: Union[bytes, str]) -> int:
        """Fee the ledger would charge for this payload right now"""
        data = encode_payload(payload, self.max_payload_bytes)
        with self.lock:
            return self._fee_for_size(len(data))

    @track_operation("send_message")
    def send_message(
        self, identity: str, payload: Union[bytes, str], *, sender: str
    ) -> MessageReceipt:
        """
        Deliver an opaque payload to an identity, paid from its balance.

        Args:
            identity: Target identity hash
            payload: Opaque content (or a content-store reference)
            sender: Calling principal, recorded in the MessageSent event

        Returns:
            MessageReceipt with sequence number, fee and logical timestamp

        Raises:
            InvalidIdentityError, InvalidPayloadError: Malformed input
            InsufficientCreditError: If the balance cannot cover the fee
            PausedStateError: If the ledger is paused
        """
        with self.transaction():
            self._require_not_paused()
            identity = validate_identity(identity)
            validate_principal(sender)
            data = encode_payload(payload, self.max_payload_bytes)

            fee = self._fee_for_size(len(data))
            balance = self._balance(identity)
            if balance < fee:
                raise InsufficientCreditError(f"Insufficient credits: {balance} < {fee}")

            self.conn.execute(
                "UPDATE accounts SET balance = balance - ? WHERE identity = ?",
                (fee, identity),
            )
            self.conn.execute(
                """
                UPDATE stats
                SET total_messages = total_messages + 1, retained_fees = retained_fees + ?
                WHERE id = 1
            """,
                (fee,),
            )
            seq = self._stat("total_messages")
            timestamp = self._tick()
            self._record_op(
                identity, OpType.MESSAGE_FEE, -fee, {"seq": seq, "payload_bytes": len(data)}
            )

            self._emit(MessageSent(seq, sender, identity, data, timestamp))
            self._on_commit.append(lambda: metrics_collector.record_message(self.label, fee))

        logger.info(f"Message {seq} to {short_id(identity)} on {self.source} (fee {fee})")
        return MessageReceipt(seq=seq, fee=fee, timestamp=timestamp)

    @track_operation("authorize_withdrawal")
    def authorize_withdrawal(self, identity: str, withdrawer: str, secret_proof: str) -> None:
        """
        Bind a withdrawer to an identity by proving knowledge of its secret.

        Replaces any previously authorized withdrawer.

        Raises:
            InvalidSecretError: If the secret does not hash to the identity
            PausedStateError: If the ledger is paused
        """
        with self.transaction():
            self._require_not_paused()
            identity = validate_identity(identity)
            validate_principal(withdrawer)
            if not isinstance(secret_proof, str) or not hmac.compare_digest(
                hash_secret(secret_proof), identity
            ):
                raise InvalidSecretError("Invalid secret code")

            self.conn.execute(
                "INSERT OR REPLACE INTO withdrawers (identity, withdrawer) VALUES (?, ?)",
                (identity, withdrawer),
            )
            self._tick()

        logger.info(f"Withdrawal authorized for {short_id(identity)} on {self.source}")

    @track_operation("withdraw_credit")
    def withdraw_credit(self, identity: str, amount: int, *, caller: str) -> int:
        """
        Withdraw credit to the authorized withdrawer.

        The balance is debited and the fee retained before the payout is issued.

        Args:
            identity: Identity hash to withdraw from
            amount: Units to debit from the balance (fee included)
            caller: Calling principal; must be the authorized withdrawer

        Returns:
            Net amount paid out (amount minus withdrawal fee)

        Raises:
            UnauthorizedError: If caller is not the authorized withdrawer
            InsufficientBalanceError: If amount exceeds the balance
            AmountBelowFeeError: If amount does not exceed the withdrawal fee
            TransferFailedError: If the payout fails (nothing is applied)
            ReentrantCallError: If called inside an open transaction or payout
        """
        with self._outermost():
            with self.transaction():
                self._require_not_paused()
                identity = validate_identity(identity)
                validate_amount(amount)
                validate_principal(caller)

                if self._withdrawer(identity) != caller:
                    raise UnauthorizedError("Not authorized to withdraw")

                balance = self._balance(identity)
                if amount > balance:
                    raise InsufficientBalanceError(
                        f"Insufficient balance: {balance} < {amount}"
                    )

                fee = self._setting("withdrawal_fee")
                if amount <= fee:
                    raise AmountBelowFeeError(
                        f"Amount must be greater than withdrawal fee: {amount} <= {fee}"
                    )
                net_amount = amount - fee

                # Effects
                self.conn.execute(
                    "UPDATE accounts SET balance = balance - ? WHERE identity = ?",
                    (amount, identity),
                )
                self.conn.execute(
                    """
                    UPDATE stats
                    SET retained_fees = retained_fees + ?, total_paid_out = total_paid_out + ?
                    WHERE id = 1
                """,
                    (fee, net_amount),
                )
                self._tick()
                self._record_op(identity, OpType.WITHDRAW, -net_amount, {"withdrawer": caller})
                if fee:
                    self._record_op(identity, OpType.WITHDRAW_FEE, -fee, {})

                new_balance = balance - amount
                self._emit(CreditWithdrawn(identity, caller, net_amount, new_balance))
                self._on_commit.append(
                    lambda: metrics_collector.record_withdrawal(self.label, net_amount)
                )

                # Interaction
                self._pay(caller, net_amount)

        logger.info(
            f"Withdrew {amount} from {short_id(identity)} on {self.source} "
            f"(net {net_amount})"
        )
        return net_amount

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    @track_operation("update_message_fee")
    def update_message_fee(self, new_fee: int, *, caller: str) -> None:
        with self.transaction():
            self._require_operator(caller)
            validate_message_fee(new_fee)
            old_fee = self._setting("message_fee")
            self.conn.execute("UPDATE settings SET message_fee = ? WHERE id = 1", (new_fee,))
            self._emit(MessageFeeUpdated(old_fee, new_fee))
        logger.info(f"Message fee on {self.source}: {old_fee} -> {new_fee}")

    @track_operation("update_withdrawal_fee")
    def update_withdrawal_fee(self, new_fee: int, *, caller: str) -> None:
        with self.transaction():
            self._require_operator(caller)
            validate_withdrawal_fee(new_fee)
            old_fee = self._setting("withdrawal_fee")
            self.conn.execute(
                "UPDATE settings SET withdrawal_fee = ? WHERE id = 1", (new_fee,)
            )
            self._emit(WithdrawalFeeUpdated(old_fee, new_fee))
        logger.info(f"Withdrawal fee on {self.source}: {old_fee} -> {new_fee}")

    @track_operation("update_per_byte_fee")
    def update_per_byte_fee(self, new_fee: int, *, caller: str) -> None:
        with self.transaction():
            self._require_operator(caller)
            validate_per_byte_fee(new_fee)
            old_fee = self._setting("per_byte_fee")
            self.conn.execute("UPDATE settings SET per_byte_fee = ? WHERE id = 1", (new_fee,))
            self._emit(PerByteFeeUpdated(old_fee, new_fee))
        logger.info(f"Per-byte fee on {self.source}: {old_fee} -> {new_fee}")

    @track_operation("pause")
    def pause(self, *, caller: str) -> None:
        """Block all credit operations until unpause"""
        with self.transaction():
            self._require_operator(caller)
            if self._setting("paused"):
                raise PausedStateError("Ledger is already paused")
            self.conn.execute("UPDATE settings SET paused = 1 WHERE id = 1")
            self._emit(Paused(caller))
        logger.info(f"{self.source} paused by {caller}")

    @track_operation("unpause")
    def unpause(self, *, caller: str) -> None:
        with self.transaction():
            self._require_operator(caller)
            if not self._setting("paused"):
                raise PausedStateError("Ledger is not paused")
            self.conn.execute("UPDATE settings SET paused = 0 WHERE id = 1")
            self._emit(Unpaused(caller))
        logger.info(f"{self.source} unpaused by {caller}")

    @track_operation("withdraw_retained_fees")
    def withdraw_retained_fees(
        self, recipient: str, amount: Optional[int] = None, *, caller: str
    ) -> int:
        """
        Pay accumulated message and withdrawal fees out to a recipient.

        Args:
            recipient: Principal receiving the fees
            amount: Units to extract (all retained fees if None)
            caller: Must be the operator

        Returns:
            Amount paid
        """
        with self._outermost():
            with self.transaction():
                self._require_operator(caller)
                validate_principal(recipient)

                available = self._stat("retained_fees")
                if amount is None:
                    if available == 0:
                        raise InsufficientBalanceError("No retained fees to withdraw")
                    amount = available
                validate_amount(amount)
                if amount > available:
                    raise InsufficientBalanceError(
                        f"Insufficient retained fees: {available} < {amount}"
                    )

                self.conn.execute(
                    """
                    UPDATE stats
                    SET retained_fees = retained_fees - ?, total_paid_out = total_paid_out + ?
                    WHERE id = 1
                """,
                    (amount, amount),
                )
                self._record_op(
                    self.SYSTEM_ACCOUNT_ID, OpType.FEE_PAYOUT, -amount, {"recipient": recipient}
                )
                self._emit(FeesWithdrawn(recipient, amount))
                self._on_commit.append(
                    lambda: metrics_collector.record_fees_withdrawn(self.source, amount)
                )

                self._pay(recipient, amount)

        logger.info(f"Withdrew {amount} retained fees from {self.source} to {recipient}")
        return amount

    @track_operation("transfer_operator")
    def transfer_operator(self, new_operator: str, *, caller: str) -> None:
        with self.transaction():
            self._require_operator(caller)
            validate_principal(new_operator)
            self.conn.execute("UPDATE settings SET operator = ? WHERE id = 1", (new_operator,))
            self._emit(OperatorTransferred(caller, new_operator))
        logger.info(f"{self.source} operator transferred to {new_operator}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_credit_balance(self, identity: str) -> int:
        """
        Get the credit balance of an identity.

        Returns:
            Balance in units (0 if the identity was never funded)
        """
        key = self._lookup_key(identity)
        with self.lock:
            return self._balance(key)

    def get_authorized_withdrawer(self, identity: str) -> Optional[str]:
        key = self._lookup_key(identity)
        with self.lock:
            return self._withdrawer(key)

    def is_authorized_withdrawer(self, identity: str, principal: str) -> bool:
        return self.get_authorized_withdrawer(identity) == principal

    def get_stats(self) -> LedgerStats:
        """Message count, total deposited and value still held by the shard"""
        with self.lock:
            row = self.conn.execute(
                "SELECT total_messages, total_deposited, retained_fees FROM stats WHERE id = 1"
            ).fetchone()
            return LedgerStats(
                total_messages=row[0],
                total_deposited=row[1],
                held_balance=self._total_balances() + row[2],
            )

    def _total_balances(self) -> int:
        cursor = self.conn.execute("SELECT COALESCE(SUM(balance), 0) FROM accounts")
        return cursor.fetchone()[0]

    def total_balances(self) -> int:
        """Sum of all identity balances"""
        with self.lock:
            return self._total_balances()

    @property
    def total_messages(self) -> int:
        with self.lock:
            return self._stat("total_messages")

    @property
    def total_deposited(self) -> int:
        with self.lock:
            return self._stat("total_deposited")

    @property
    def total_paid_out(self) -> int:
        with self.lock:
            return self._stat("total_paid_out")

    @property
    def retained_fees(self) -> int:
        with self.lock:
            return self._stat("retained_fees")

    @property
    def clock(self) -> int:
        with self.lock:
            return self._stat("clock")

    @property
    def message_fee(self) -> int:
        with self.lock:
            return self._setting("message_fee")

    @property
    def withdrawal_fee(self) -> int:
        with self.lock:
            return self._setting("withdrawal_fee")

    @property
    def per_byte_fee(self) -> int:
        with self.lock:
            return self._setting("per_byte_fee")

    @property
    def paused(self) -> bool:
        with self.lock:
            return bool(self._setting("paused"))

    @property
    def operator(self) -> str:
        with self.lock:
            return self._setting("operator")

    def get_audit_trail(
        self, identity: Optional[str] = None, limit: int = 100
    ) -> List[LedgerOp]:
        """
        Get audit trail of operations.

        Args:
            identity: Filter by identity hash (None for all)
            limit: Maximum number of operations to return

        Returns:
            List of LedgerOp objects, newest first
        """
        with self.lock:
            if identity:
                key = identity if identity == self.SYSTEM_ACCOUNT_ID else self._lookup_key(identity)
                cursor = self.conn.execute(
                    """
                    SELECT op_id, identity, op_type, amount, timestamp_ns, metadata_json
                    FROM operations
                    WHERE identity = ?
                    ORDER BY timestamp_ns DESC, rowid DESC
                    LIMIT ?
                """,
                    (key, limit),
                )
            else:
                cursor = self.conn.execute(
                    """
                    SELECT op_id, identity, op_type, amount, timestamp_ns, metadata_json
                    FROM operations
                    ORDER BY timestamp_ns DESC, rowid DESC
                    LIMIT ?
                """,
                    (limit,),
                )

            return [
                LedgerOp(
                    op_id=row[0],
                    identity=row[1],
                    operation=OpType(row[2]),
                    amount=row[3],
                    timestamp=row[4],
                    metadata=json.loads(row[5]),
                )
                for row in cursor
            ]

    def close(self) -> None:
        with self.lock:
            self.conn.close()
