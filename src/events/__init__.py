"""Append-only event log and event records."""

from .types import (
    Event,
    CreditDeposited,
    MessageSent,
    CreditWithdrawn,
    ReceiverHashRegistered,
    ReceiverHashUpdated,
    VisibilityChanged,
    ShardAdded,
    MessageFeeUpdated,
    WithdrawalFeeUpdated,
    PerByteFeeUpdated,
    RegistrationFeeUpdated,
    Paused,
    Unpaused,
    FeesWithdrawn,
    OperatorTransferred,
)
from .log import EventLog, LogRecord

__all__ = [
    "Event",
    "CreditDeposited",
    "MessageSent",
    "CreditWithdrawn",
    "ReceiverHashRegistered",
    "ReceiverHashUpdated",
    "VisibilityChanged",
    "ShardAdded",
    "MessageFeeUpdated",
    "WithdrawalFeeUpdated",
    "PerByteFeeUpdated",
    "RegistrationFeeUpdated",
    "Paused",
    "Unpaused",
    "FeesWithdrawn",
    "OperatorTransferred",
    "EventLog",
    "LogRecord",
]
