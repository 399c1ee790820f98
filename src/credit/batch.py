"""
Batch execution: many ledger operations against one shard as a single unit.

The executor holds no state of its own. Atomicity comes from the shard's
transaction; if any item fails, the whole batch rolls back and publishes
no events.
"""

import logging
from typing import List, Sequence, Union

from credit.operations import MessageReceipt
from errors import BatchTooLargeError, EmptyBatchError, LengthMismatchError
from observability.metrics import track_operation
from observability.tracing import create_span

logger = logging.getLogger(__name__)


class BatchExecutor:
    """Applies batched deposits and sends against a single shard."""

    def __init__(self, max_batch_size: int = 100):
        if max_batch_size < 1:
            raise ValueError(f"max_batch_size must be at least 1, got {max_batch_size}")
        self.max_batch_size = max_batch_size

    def _check_sizes(self, left: Sequence, right: Sequence) -> None:
        if len(left) != len(right):
            raise LengthMismatchError(f"Array length mismatch: {len(left)} != {len(right)}")
        if not left:
            raise EmptyBatchError("Batch is empty")
        if len(left) > self.max_batch_size:
            raise BatchTooLargeError(
                f"Batch of {len(left)} exceeds limit of {self.max_batch_size}"
            )

    @staticmethod
    def _ledger(shard):
        # Accept a ShardHandle as well as a bare ledger
        return getattr(shard, "ledger", shard)

    @track_operation("batch_deposit")
    def batch_deposit(
        self, shard, identities: Sequence[str], amounts: Sequence[int]
    ) -> List[int]:
        """
        Deposit to several identities on one shard.

        Returns:
            New balance of each identity, in input order
        """
        self._check_sizes(identities, amounts)
        ledger = self._ledger(shard)

        with create_span(
            "batch_deposit", {"relay.shard": ledger.label, "relay.batch_size": len(identities)}
        ):
            with ledger.transaction():
                balances = [
                    ledger.deposit_credit(identity, amount)
                    for identity, amount in zip(identities, amounts)
                ]

        logger.info(f"Batch of {len(balances)} deposits applied on shard {ledger.label}")
        return balances

    @track_operation("batch_send_message")
    def batch_send_message(
        self,
        shard,
        identities: Sequence[str],
        payloads: Sequence[Union[bytes, str]],
        *,
        sender: str,
    ) -> List[MessageReceipt]:
        """
        Send several messages on one shard, each paid by its target identity.

        Returns:
            One receipt per message, in input order
        """
        self._check_sizes(identities, payloads)
        ledger = self._ledger(shard)

        with create_span(
            "batch_send_message",
            {"relay.shard": ledger.label, "relay.batch_size": len(identities)},
        ):
            with ledger.transaction():
                receipts = [
                    ledger.send_message(identity, payload, sender=sender)
                    for identity, payload in zip(identities, payloads)
                ]

        logger.info(f"Batch of {len(receipts)} messages sent on shard {ledger.label}")
        return receipts
