"""Credit accounting: shard ledgers, payouts and batch execution."""

from .operations import OpType, LedgerOp, LedgerStats, MessageReceipt
from .payout import PayoutGateway, InMemoryPayoutGateway, RejectingPayoutGateway
from .ledger import ShardLedger
from .batch import BatchExecutor

__all__ = [
    "OpType",
    "LedgerOp",
    "LedgerStats",
    "MessageReceipt",
    "PayoutGateway",
    "InMemoryPayoutGateway",
    "RejectingPayoutGateway",
    "ShardLedger",
    "BatchExecutor",
]
