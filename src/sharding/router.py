"""Identity routing across parallel shard ledgers."""

import logging
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from config import RelayConfig, get_config
from credit.ledger import ShardLedger
from credit.operations import (
    LedgerStats,
    validate_message_fee,
    validate_withdrawal_fee,
)
from credit.payout import PayoutGateway, InMemoryPayoutGateway
from crypto import short_id
from errors import PausedStateError, UnauthorizedError
from events import EventLog, ShardAdded
from observability.metrics import metrics_collector
from observability.tracing import create_span

from .topology import ShardTopology

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShardHandle:
    """A live shard: its index, an opaque handle and its ledger."""

    index: int
    handle: str
    ledger: ShardLedger

    def transaction(self):
        return self.ledger.transaction()


@dataclass(frozen=True)
class AggregateStats:
    """Counters summed over every shard"""

    total_messages: int
    total_deposited: int
    total_held: int


class ShardRouter:
    """
    Assigns every identity hash to exactly one shard ledger.

    Routing is ``int(identity) % shard_count`` with no rebalancing: adding a
    shard changes the route of some identities, but their credit stays on the
    shard that received it (see ``find_stranded_balances``).
    """

    SOURCE = "router"

    def __init__(
        self,
        operator: str,
        config: Optional[RelayConfig] = None,
        *,
        event_log: Optional[EventLog] = None,
        payout: Optional[PayoutGateway] = None,
        data_dir: Optional[Union[str, Path]] = None,
    ):
        """
        Initialize the router and its initial shards.

        Args:
            operator: Principal allowed to add shards and administer them
            config: Fee schedule and shard count (local profile if None)
            event_log: Log shared by the router and every shard
            payout: Payout gateway shared by every shard
            data_dir: Directory for per-shard SQLite files (in-memory if None)
        """
        self.config = config if config is not None else get_config("local")
        if self.config.initial_shards < 1:
            raise ValueError(
                f"initial_shards must be at least 1, got {self.config.initial_shards}"
            )

        self.operator = operator
        self.events = event_log if event_log is not None else EventLog()
        self.payout = payout if payout is not None else InMemoryPayoutGateway()
        self.data_dir = Path(data_dir) if data_dir is not None else None
        if self.data_dir is not None:
            self.data_dir.mkdir(parents=True, exist_ok=True)

        # Settings handed to shards created later
        self._message_fee = self.config.message_fee
        self._withdrawal_fee = self.config.withdrawal_fee
        self._paused = False

        self.lock = threading.RLock()
        self.topology = ShardTopology(self.config.initial_shards)
        self.shards: List[ShardHandle] = [
            self._create_shard(index) for index in range(self.config.initial_shards)
        ]
        metrics_collector.set_active_shards(len(self.shards))

        logger.info(f"Router initialized with {len(self.shards)} shards")

    def _create_shard(self, index: int) -> ShardHandle:
        db_path = self.data_dir / f"shard-{index}.db" if self.data_dir is not None else None
        ledger = ShardLedger(
            self.operator,
            self._message_fee,
            self._withdrawal_fee,
            db_path=db_path,
            per_byte_fee=self.config.per_byte_fee,
            max_payload_bytes=self.config.max_payload_bytes,
            payout=self.payout,
            event_log=self.events,
            label=str(index),
        )
        return ShardHandle(index=index, handle=str(uuid.uuid4()), ledger=ledger)

    def _require_operator(self, caller: str) -> None:
        if caller != self.operator:
            logger.warning(f"Rejected router administration from {caller}")
            raise UnauthorizedError(f"Caller {caller} is not the operator")

    def _require_shard_operators(self, caller: str) -> None:
        """Every shard must still accept the caller before any shard changes"""
        foreign = [s.index for s in self.shards if s.ledger.operator != caller]
        if foreign:
            logger.warning(f"Shards {foreign} no longer accept {caller} as operator")
            raise UnauthorizedError(f"Caller {caller} is not the operator of shards {foreign}")

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    @property
    def shard_count(self) -> int:
        with self.lock:
            return len(self.shards)

    def shard_index_for(self, identity: str) -> int:
        """Shard index for an identity under the current shard count"""
        with self.lock:
            return self.topology.get_shard_for_identity(identity)

    def route_identity(self, identity: str) -> Tuple[ShardHandle, int]:
        """
        Find the shard that owns an identity.

        Pure lookup: no state changes.

        Returns:
            Tuple of (shard handle, shard index)
        """
        with self.lock:
            index = self.topology.get_shard_for_identity(identity)
            shard = self.shards[index]
            count = len(self.shards)

        with create_span(
            "route_identity",
            {"relay.shard_index": index, "relay.shard_count": count},
        ):
            logger.debug(f"Routing {short_id(identity)} to shard {index}")

        return shard, index

    def list_shards(self) -> List[ShardHandle]:
        with self.lock:
            return list(self.shards)

    def get_shard(self, index: int) -> ShardHandle:
        """
        Raises:
            IndexError: If no shard has this index
        """
        with self.lock:
            if index < 0 or index >= len(self.shards):
                raise IndexError(f"No shard with index {index}")
            return self.shards[index]

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def add_shard(self, *, caller: str) -> ShardHandle:
        """
        Append a new shard ledger (operator-only).

        The new shard inherits the current fee settings and pause state.
        Existing balances are not migrated.
        """
        self._require_operator(caller)

        with self.lock:
            index = len(self.shards)
            shard = self._create_shard(index)
            if self._paused:
                shard.ledger.pause(caller=self.operator)
            self.shards.append(shard)
            self.topology.grow()
            count = len(self.shards)

        self.events.append(self.SOURCE, ShardAdded(shard.handle, index))
        metrics_collector.set_active_shards(count)

        logger.info(f"Added shard {index} ({shard.handle}); {count} shards live")
        return shard

    def update_message_fee_all_shards(self, new_fee: int, *, caller: str) -> None:
        self._require_operator(caller)
        validate_message_fee(new_fee)

        with self.lock:
            self._require_shard_operators(caller)
            for shard in self.shards:
                shard.ledger.update_message_fee(new_fee, caller=caller)
            self._message_fee = new_fee

        logger.info(f"Message fee set to {new_fee} on all shards")

    def update_withdrawal_fee_all_shards(self, new_fee: int, *, caller: str) -> None:
        self._require_operator(caller)
        validate_withdrawal_fee(new_fee)

        with self.lock:
            self._require_shard_operators(caller)
            for shard in self.shards:
                shard.ledger.update_withdrawal_fee(new_fee, caller=caller)
            self._withdrawal_fee = new_fee

        logger.info(f"Withdrawal fee set to {new_fee} on all shards")

    def pause_all_shards(self, *, caller: str) -> None:
        """
        Pause every shard.

        Raises:
            PausedStateError: If any shard is already paused (no shard changes)
        """
        self._require_operator(caller)

        with self.lock:
            self._require_shard_operators(caller)
            already = [s.index for s in self.shards if s.ledger.paused]
            if already:
                raise PausedStateError(f"Shards already paused: {already}")
            for shard in self.shards:
                shard.ledger.pause(caller=caller)
            self._paused = True

        logger.info("All shards paused")

    def unpause_all_shards(self, *, caller: str) -> None:
        self._require_operator(caller)

        with self.lock:
            self._require_shard_operators(caller)
            running = [s.index for s in self.shards if not s.ledger.paused]
            if running:
                raise PausedStateError(f"Shards not paused: {running}")
            for shard in self.shards:
                shard.ledger.unpause(caller=caller)
            self._paused = False

        logger.info("All shards unpaused")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def aggregate_stats(self) -> AggregateStats:
        """Sum message counts, deposits and held value across shards"""
        stats: List[LedgerStats] = [s.ledger.get_stats() for s in self.list_shards()]
        return AggregateStats(
            total_messages=sum(s.total_messages for s in stats),
            total_deposited=sum(s.total_deposited for s in stats),
            total_held=sum(s.held_balance for s in stats),
        )

    def find_stranded_balances(self, identity: str) -> Dict[int, int]:
        """
        Report credit an identity holds on shards it no longer routes to.

        Returns:
            Mapping of shard index to non-zero balance, excluding the current route
        """
        with self.lock:
            current = self.topology.get_shard_for_identity(identity)
            shards = list(self.shards)

        stranded = {}
        for shard in shards:
            if shard.index == current:
                continue
            balance = shard.ledger.get_credit_balance(identity)
            if balance:
                stranded[shard.index] = balance

        if stranded:
            logger.debug(f"{short_id(identity)} has stranded credit on shards {list(stranded)}")
        return stranded

    def close(self) -> None:
        for shard in self.list_shards():
            shard.ledger.close()
