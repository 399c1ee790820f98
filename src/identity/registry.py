"""Receiver-hash registry for identity discovery.

Maps identity hashes to an owner, a visibility mode and an optional alias.
Public entries are discoverable by owner principal; private entries only
through their alias, and only by their owner.

The registry never touches ledger balances. Rotating an identity with
``update_receiver_hash`` leaves any credit on the old hash where it is.
"""

import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional

from credit.operations import validate_principal, validate_registration_fee
from credit.payout import PayoutGateway, InMemoryPayoutGateway
from crypto import ZERO_HASH, IdentityHash, hash_secret, normalize_identity, short_id
from errors import (
    AliasNotFoundError,
    AliasRequiredError,
    AliasTakenError,
    AlreadyHasPublicEntryError,
    AlreadyRegisteredError,
    EntryNotFoundError,
    InsufficientBalanceError,
    InsufficientFeeError,
    InvalidAmountError,
    NotOwnerError,
    PausedStateError,
    TooManyRegistrationsError,
    TransferFailedError,
    UnauthorizedError,
)
from events import (
    Event,
    EventLog,
    ReceiverHashRegistered,
    ReceiverHashUpdated,
    VisibilityChanged,
    RegistrationFeeUpdated,
    Paused,
    Unpaused,
    FeesWithdrawn,
    OperatorTransferred,
)
from observability.metrics import metrics_collector, track_operation

from .aliases import is_valid_alias, validate_alias, validate_secret

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistryEntry:
    """Registration record for one identity hash"""

    receiver_hash: IdentityHash
    owner: str
    is_public: bool
    alias: str              # Empty for public entries registered without one
    registered_at: int      # Timestamp in nanoseconds


class IdentityRegistry:
    """
    Registry of receiver hashes.

    Provides:
    - Public lookup by owner principal (at most one public entry per owner)
    - Alias lookup, restricted to the owner for private entries
    - Visibility changes and identity rotation by the owner
    - Registration fees collected for the operator
    """

    SOURCE = "registry"

    def __init__(
        self,
        operator: str,
        registration_fee: int = 0,
        *,
        max_registrations_per_owner: int = 10,
        payout: Optional[PayoutGateway] = None,
        event_log: Optional[EventLog] = None,
        clock: Callable[[], int] = time.time_ns,
    ):
        """
        Initialize the registry.

        Args:
            operator: Principal allowed to change fees, pause and withdraw fees
            registration_fee: Minimum payment per registration, in units
            max_registrations_per_owner: Entry limit per owner (public + private)
            payout: Gateway used to pay out collected fees
            event_log: Log registry events are appended to
            clock: Source of registration timestamps
        """
        validate_principal(operator)
        validate_registration_fee(registration_fee)
        if max_registrations_per_owner < 1:
            raise ValueError(
                f"max_registrations_per_owner must be at least 1, got {max_registrations_per_owner}"
            )

        self.operator = operator
        self.registration_fee = registration_fee
        self.max_registrations_per_owner = max_registrations_per_owner
        self.payout = payout if payout is not None else InMemoryPayoutGateway()
        self.events = event_log if event_log is not None else EventLog()
        self.clock = clock
        self.paused = False
        self.collected_fees = 0

        # Map receiver_hash -> entry
        self.entries: Dict[IdentityHash, RegistryEntry] = {}

        # Index: owner -> public receiver_hash
        self.public_index: Dict[str, IdentityHash] = {}

        # Index: alias -> receiver_hash (every non-empty alias)
        self.alias_index: Dict[str, IdentityHash] = {}

        # Index: owner -> [receiver_hashes]
        self.owner_index: Dict[str, List[IdentityHash]] = defaultdict(list)

        self.lock = threading.RLock()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _emit(self, event: Event) -> None:
        self.events.append(self.SOURCE, event)

    def _require_not_paused(self) -> None:
        if self.paused:
            raise PausedStateError("Registry is paused")

    def _require_operator(self, caller: str) -> None:
        if caller != self.operator:
            logger.warning(f"Rejected registry administration from {caller}")
            raise UnauthorizedError(f"Caller {caller} is not the operator")

    def _get_entry(self, receiver_hash: str) -> RegistryEntry:
        key = normalize_identity(receiver_hash)
        entry = self.entries.get(key)
        if entry is None:
            raise EntryNotFoundError("ReceiverHash not found")
        return entry

    def _get_owned_entry(self, receiver_hash: str, caller: str) -> RegistryEntry:
        entry = self._get_entry(receiver_hash)
        if entry.owner != caller:
            raise NotOwnerError("Not the owner of this receiverHash")
        return entry

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    @track_operation("register_receiver_hash")
    def register_receiver_hash(
        self,
        secret_proof: str,
        is_public: bool,
        alias: str = "",
        *,
        caller: str,
        payment: int = 0,
    ) -> IdentityHash:
        """
        Register the identity hash derived from a secret.

        Args:
            secret_proof: Secret whose hash becomes the identity (8-64 chars)
            is_public: Discoverable by owner principal if True
            alias: Optional for public entries, required for private ones
            caller: Registering principal, recorded as owner
            payment: Units paid; must cover the registration fee

        Returns:
            The registered identity hash
        """
        with self.lock:
            self._require_not_paused()
            validate_principal(caller)
            validate_secret(secret_proof)
            if alias:
                validate_alias(alias)
            if not is_public and not alias:
                raise AliasRequiredError("Alias required for private registration")
            if isinstance(payment, bool) or not isinstance(payment, int) or payment < 0:
                raise InvalidAmountError(f"Invalid payment: {payment!r}")
            if payment < self.registration_fee:
                raise InsufficientFeeError(
                    f"Insufficient registration fee: {payment} < {self.registration_fee}"
                )

            receiver_hash = hash_secret(secret_proof)
            if receiver_hash in self.entries:
                raise AlreadyRegisteredError("ReceiverHash already registered")
            if alias and alias in self.alias_index:
                raise AliasTakenError(f"Alias already taken: {alias}")
            if len(self.owner_index[caller]) >= self.max_registrations_per_owner:
                raise TooManyRegistrationsError(
                    f"Max registrations exceeded: {self.max_registrations_per_owner}"
                )
            if is_public and caller in self.public_index:
                raise AlreadyHasPublicEntryError("User already has public receiverHash")

            entry = RegistryEntry(
                receiver_hash=receiver_hash,
                owner=caller,
                is_public=bool(is_public),
                alias=alias,
                registered_at=self.clock(),
            )
            self.entries[receiver_hash] = entry
            self.owner_index[caller].append(receiver_hash)
            if alias:
                self.alias_index[alias] = receiver_hash
            if is_public:
                self.public_index[caller] = receiver_hash
            self.collected_fees += payment

            self._emit(ReceiverHashRegistered(receiver_hash, caller, entry.is_public, alias))

        metrics_collector.record_registration(entry.is_public)
        logger.info(
            f"Registered {'public' if entry.is_public else 'private'} "
            f"receiverHash {short_id(receiver_hash)} for {caller}"
        )
        return receiver_hash

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_receiver_hash_by_address(self, owner: str) -> IdentityHash:
        """Public identity of an owner, or ZERO_HASH if none"""
        with self.lock:
            return self.public_index.get(owner, ZERO_HASH)

    def get_receiver_hash_by_alias(self, alias: str, *, caller: Optional[str] = None) -> IdentityHash:
        """
        Resolve an alias.

        Raises:
            AliasNotFoundError: If no entry has this alias
            UnauthorizedError: If the entry is private and caller is not its owner
        """
        with self.lock:
            receiver_hash = self.alias_index.get(alias)
            if receiver_hash is None:
                raise AliasNotFoundError("Alias not found")
            entry = self.entries[receiver_hash]
            if not entry.is_public and caller != entry.owner:
                raise UnauthorizedError("Not authorized to access private alias")

        logger.debug(f"Resolved alias '{alias}' to {short_id(receiver_hash)}")
        return receiver_hash

    def get_receiver_hash_info(
        self, receiver_hash: str, *, caller: Optional[str] = None
    ) -> RegistryEntry:
        """
        Full registration record. Private entries are readable by their owner only.
        """
        with self.lock:
            entry = self._get_entry(receiver_hash)
            if not entry.is_public and caller != entry.owner:
                raise UnauthorizedError("Not authorized to access private receiverHash")
            return entry

    def get_owner_receiver_hashes(self, owner: str, *, caller: str) -> List[IdentityHash]:
        with self.lock:
            if caller != owner:
                raise UnauthorizedError("Only the owner can list its receiverHashes")
            return list(self.owner_index.get(owner, []))

    def user_registration_count(self, owner: str) -> int:
        with self.lock:
            return len(self.owner_index.get(owner, []))

    @property
    def total_registrations(self) -> int:
        with self.lock:
            return len(self.entries)

    def is_alias_available(self, alias: str) -> bool:
        """True if alias is well-formed and not in use"""
        if not is_valid_alias(alias):
            return False
        with self.lock:
            return alias not in self.alias_index

    # ------------------------------------------------------------------
    # Owner updates
    # ------------------------------------------------------------------

    @track_operation("update_visibility")
    def update_visibility(
        self, receiver_hash: str, new_is_public: bool, alias: str = "", *, caller: str
    ) -> None:
        """
        Switch an entry between public and private.

        An empty ``alias`` keeps the entry's current alias. A private entry
        must end up with an alias, and an owner keeps at most one public entry.
        """
        with self.lock:
            self._require_not_paused()
            entry = self._get_owned_entry(receiver_hash, caller)
            if alias:
                validate_alias(alias)
            new_alias = alias or entry.alias
            if not new_is_public and not new_alias:
                raise AliasRequiredError("Alias required for private registration")
            holder = self.alias_index.get(new_alias) if new_alias else None
            if holder is not None and holder != entry.receiver_hash:
                raise AliasTakenError(f"Alias already taken: {new_alias}")
            public_hash = self.public_index.get(entry.owner)
            if new_is_public and public_hash is not None and public_hash != entry.receiver_hash:
                raise AlreadyHasPublicEntryError("User already has public receiverHash")

            # Drop stale mappings, then install the new ones
            if entry.alias and entry.alias != new_alias:
                del self.alias_index[entry.alias]
            if new_alias:
                self.alias_index[new_alias] = entry.receiver_hash
            if entry.is_public and not new_is_public:
                del self.public_index[entry.owner]
            if new_is_public:
                self.public_index[entry.owner] = entry.receiver_hash

            self.entries[entry.receiver_hash] = replace(
                entry, is_public=bool(new_is_public), alias=new_alias
            )
            self._emit(VisibilityChanged(entry.receiver_hash, entry.owner, bool(new_is_public)))

        logger.info(
            f"Visibility of {short_id(entry.receiver_hash)} set to "
            f"{'public' if new_is_public else 'private'}"
        )

    @track_operation("update_receiver_hash")
    def update_receiver_hash(
        self, old_receiver_hash: str, new_secret_proof: str, *, caller: str
    ) -> IdentityHash:
        """
        Rotate an entry to the identity derived from a new secret.

        Alias, visibility and registration time carry over. Ledger credit
        held by the old identity is not moved.

        Returns:
            The new identity hash
        """
        with self.lock:
            self._require_not_paused()
            validate_secret(new_secret_proof)
            entry = self._get_owned_entry(old_receiver_hash, caller)
            new_hash = hash_secret(new_secret_proof)
            if new_hash in self.entries:
                raise AlreadyRegisteredError("ReceiverHash already registered")

            old_hash = entry.receiver_hash
            del self.entries[old_hash]
            self.entries[new_hash] = replace(entry, receiver_hash=new_hash)

            owned = self.owner_index[entry.owner]
            owned[owned.index(old_hash)] = new_hash
            if entry.alias:
                self.alias_index[entry.alias] = new_hash
            if entry.is_public:
                self.public_index[entry.owner] = new_hash

            self._emit(ReceiverHashUpdated(old_hash, new_hash, entry.owner, entry.is_public))

        logger.info(f"Rotated receiverHash {short_id(old_hash)} -> {short_id(new_hash)}")
        return new_hash

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def update_registration_fee(self, new_fee: int, *, caller: str) -> None:
        with self.lock:
            self._require_operator(caller)
            validate_registration_fee(new_fee)
            old_fee = self.registration_fee
            self.registration_fee = new_fee
            self._emit(RegistrationFeeUpdated(old_fee, new_fee))
        logger.info(f"Registration fee: {old_fee} -> {new_fee}")

    def pause(self, *, caller: str) -> None:
        with self.lock:
            self._require_operator(caller)
            if self.paused:
                raise PausedStateError("Registry is already paused")
            self.paused = True
            self._emit(Paused(caller))
        logger.info(f"Registry paused by {caller}")

    def unpause(self, *, caller: str) -> None:
        with self.lock:
            self._require_operator(caller)
            if not self.paused:
                raise PausedStateError("Registry is not paused")
            self.paused = False
            self._emit(Unpaused(caller))
        logger.info(f"Registry unpaused by {caller}")

    @track_operation("withdraw_registry_fees")
    def withdraw_fees(self, recipient: str, *, caller: str) -> int:
        """
        Pay all collected registration fees to a recipient.

        Returns:
            Amount paid

        Raises:
            InsufficientBalanceError: If there are no fees to withdraw
            TransferFailedError: If the payout fails (fees are restored)
        """
        with self.lock:
            self._require_operator(caller)
            validate_principal(recipient)
            amount = self.collected_fees
            if amount == 0:
                raise InsufficientBalanceError("No fees to withdraw")

            self.collected_fees -= amount
            try:
                delivered = self.payout.transfer(recipient, amount)
            except Exception as e:
                self.collected_fees += amount
                logger.warning(f"Registry fee payout to {recipient} raised: {e}")
                raise TransferFailedError(f"Transfer failed: {e}") from e
            if not delivered:
                self.collected_fees += amount
                logger.warning(f"Registry fee payout to {recipient} was not delivered")
                raise TransferFailedError("Transfer failed")

            self._emit(FeesWithdrawn(recipient, amount))

        metrics_collector.record_fees_withdrawn(self.SOURCE, amount)
        logger.info(f"Withdrew {amount} registry fees to {recipient}")
        return amount

    def transfer_operator(self, new_operator: str, *, caller: str) -> None:
        with self.lock:
            self._require_operator(caller)
            validate_principal(new_operator)
            previous = self.operator
            self.operator = new_operator
            self._emit(OperatorTransferred(previous, new_operator))
        logger.info(f"Registry operator transferred to {new_operator}")
