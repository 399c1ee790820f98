"""
Event records emitted by ledgers, the router and the registry.

Each event is an immutable dataclass. ``identity`` is the indexed identity
hash an off-chain listener filters on (None for administrative events).
"""

import base64
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Event:
    """Base class for all events"""

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def identity(self) -> Optional[str]:
        return None

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation (bytes are base64 encoded)"""
        data = {}
        for key, value in asdict(self).items():
            if isinstance(value, bytes):
                value = base64.b64encode(value).decode()
            data[key] = value
        return {"event": self.name, "args": data}


# Credit events
@dataclass(frozen=True)
class CreditDeposited(Event):
    receiver_hash: str
    amount: int
    new_balance: int

    @property
    def identity(self) -> Optional[str]:
        return self.receiver_hash


@dataclass(frozen=True)
class MessageSent(Event):
    seq: int
    sender: str
    receiver_hash: str
    payload: bytes
    timestamp: int

    @property
    def identity(self) -> Optional[str]:
        return self.receiver_hash


@dataclass(frozen=True)
class CreditWithdrawn(Event):
    receiver_hash: str
    withdrawer: str
    net_amount: int
    new_balance: int

    @property
    def identity(self) -> Optional[str]:
        return self.receiver_hash


# Registry events
@dataclass(frozen=True)
class ReceiverHashRegistered(Event):
    receiver_hash: str
    owner: str
    is_public: bool
    alias: str

    @property
    def identity(self) -> Optional[str]:
        return self.receiver_hash


@dataclass(frozen=True)
class ReceiverHashUpdated(Event):
    old_hash: str
    new_hash: str
    owner: str
    is_public: bool

    @property
    def identity(self) -> Optional[str]:
        return self.new_hash


@dataclass(frozen=True)
class VisibilityChanged(Event):
    receiver_hash: str
    owner: str
    new_is_public: bool

    @property
    def identity(self) -> Optional[str]:
        return self.receiver_hash


# Topology
@dataclass(frozen=True)
class ShardAdded(Event):
    shard_handle: str
    index: int


# Administration
@dataclass(frozen=True)
class MessageFeeUpdated(Event):
    old_fee: int
    new_fee: int


@dataclass(frozen=True)
class WithdrawalFeeUpdated(Event):
    old_fee: int
    new_fee: int


@dataclass(frozen=True)
class PerByteFeeUpdated(Event):
    old_fee: int
    new_fee: int


@dataclass(frozen=True)
class RegistrationFeeUpdated(Event):
    old_fee: int
    new_fee: int


@dataclass(frozen=True)
class Paused(Event):
    operator: str


@dataclass(frozen=True)
class Unpaused(Event):
    operator: str


@dataclass(frozen=True)
class FeesWithdrawn(Event):
    recipient: str
    amount: int


@dataclass(frozen=True)
class OperatorTransferred(Event):
    previous_operator: str
    new_operator: str
