"""
Ledger operations: types, dataclasses, fee bounds and validation rules.
"""

from enum import Enum
from dataclasses import dataclass
from typing import Dict, Any, Union

from config import to_units
from crypto import normalize_identity
from errors import (
    InvalidAmountError,
    InvalidIdentityError,
    InvalidPayloadError,
    FeeOutOfRangeError,
)

# Fee bounds in units
MAX_MESSAGE_FEE = to_units("0.1")
MAX_WITHDRAWAL_FEE = to_units("0.01")
MAX_PER_BYTE_FEE = to_units("0.0001")
MAX_REGISTRATION_FEE = to_units("1")


class OpType(Enum):
    """Types of ledger operations"""
    DEPOSIT = "DEPOSIT"             # Credit added to an identity
    MESSAGE_FEE = "MESSAGE_FEE"     # Fee charged for a message
    WITHDRAW = "WITHDRAW"           # Credit extracted by the authorized withdrawer
    WITHDRAW_FEE = "WITHDRAW_FEE"   # Fee retained from a withdrawal
    FEE_PAYOUT = "FEE_PAYOUT"       # Retained fees extracted by the operator


@dataclass
class LedgerOp:
    """Single operation in the ledger audit trail"""
    op_id: str                  # UUID
    identity: str               # Identity hash, or "system" for fee payouts
    operation: OpType           # Type of operation
    amount: int                 # Signed amount in units
    timestamp: int              # Timestamp in nanoseconds
    metadata: Dict[str, Any]    # Operation-specific metadata


@dataclass(frozen=True)
class MessageReceipt:
    """Result of an accepted message"""
    seq: int            # Shard message counter after this send
    fee: int            # Fee charged in units
    timestamp: int      # Logical timestamp


@dataclass(frozen=True)
class LedgerStats:
    """Counters exposed by a shard ledger"""
    total_messages: int
    total_deposited: int
    held_balance: int   # Identity balances plus retained fees


def validate_amount(amount: int) -> None:
    """Validate that amount is a positive integer"""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmountError(f"Amount must be integer, got {type(amount).__name__}")
    if amount <= 0:
        raise InvalidAmountError(f"Amount must be positive, got {amount}")


def validate_identity(identity: str) -> str:
    """Validate identity hash format; returns the normalized hash"""
    return normalize_identity(identity)


def validate_principal(principal: str) -> None:
    """Validate a caller/withdrawer principal"""
    if not isinstance(principal, str) or not principal.strip():
        raise InvalidIdentityError(f"Principal must be a non-empty string, got {principal!r}")


def encode_payload(payload: Union[bytes, str], max_bytes: int) -> bytes:
    """
    Validate a message payload and return its bytes.

    Strings are UTF-8 encoded. Content is opaque to the ledger.
    """
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    if not isinstance(payload, (bytes, bytearray)):
        raise InvalidPayloadError(f"Payload must be bytes or str, got {type(payload).__name__}")
    if not payload:
        raise InvalidPayloadError("Invalid message content: payload is empty")
    if len(payload) > max_bytes:
        raise InvalidPayloadError(
            f"Invalid message content: {len(payload)} bytes exceeds limit of {max_bytes}"
        )
    return bytes(payload)


def _validate_fee(name: str, fee: int, minimum: int, maximum: int) -> None:
    if isinstance(fee, bool) or not isinstance(fee, int):
        raise FeeOutOfRangeError(f"Invalid {name}: must be integer, got {type(fee).__name__}")
    if fee < minimum or fee > maximum:
        raise FeeOutOfRangeError(f"Invalid {name}: {fee} not in [{minimum}, {maximum}]")


def validate_message_fee(fee: int) -> None:
    _validate_fee("message fee", fee, 1, MAX_MESSAGE_FEE)


def validate_withdrawal_fee(fee: int) -> None:
    _validate_fee("withdrawal fee", fee, 0, MAX_WITHDRAWAL_FEE)


def validate_per_byte_fee(fee: int) -> None:
    _validate_fee("per-byte fee", fee, 0, MAX_PER_BYTE_FEE)


def validate_registration_fee(fee: int) -> None:
    _validate_fee("registration fee", fee, 0, MAX_REGISTRATION_FEE)
