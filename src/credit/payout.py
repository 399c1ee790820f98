"""
Payout gateway: the external value transfer a withdrawal ends with.

The ledger only decides how much a principal is owed. Moving the value out
is delegated to a gateway, which may call back into the ledger.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class PayoutGateway(ABC):
    """Moves value from the relay to an external principal."""

    @abstractmethod
    def transfer(self, recipient: str, amount: int) -> bool:
        """
        Pay ``amount`` units to ``recipient``.

        Returns:
            True if the value was delivered
        """


class InMemoryPayoutGateway(PayoutGateway):
    """
    Gateway that records payouts in memory.

    ``on_transfer`` runs after the payout is recorded and before it returns,
    the way a recipient's own code would run when it receives value. Whatever
    it raises or returns propagates to the ledger.
    """

    def __init__(self, on_transfer: Optional[Callable[[str, int], Optional[bool]]] = None):
        self.on_transfer = on_transfer
        self.received: Dict[str, int] = {}
        self.lock = threading.Lock()

    def transfer(self, recipient: str, amount: int) -> bool:
        with self.lock:
            self.received[recipient] = self.received.get(recipient, 0) + amount

        if self.on_transfer is not None:
            try:
                result = self.on_transfer(recipient, amount)
            except Exception:
                self._undo(recipient, amount)
                raise
            if result is False:
                # Recipient refused the value
                self._undo(recipient, amount)
                return False

        logger.debug(f"Paid {amount} units to {recipient}")
        return True

    def _undo(self, recipient: str, amount: int) -> None:
        with self.lock:
            self.received[recipient] -= amount

    def received_by(self, recipient: str) -> int:
        return self.received.get(recipient, 0)


class RejectingPayoutGateway(PayoutGateway):
    """Gateway whose transfers always fail (recipient cannot accept value)."""

    def transfer(self, recipient: str, amount: int) -> bool:
        logger.warning(f"Payout of {amount} units to {recipient} rejected")
        return False
