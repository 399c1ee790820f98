"""
Relay error taxonomy.

Every failure raised by the ledger, router, batch executor and registry is a
RelayError subclass. The ``kind`` attribute names the failure independently of
the message text so callers (and metrics) can branch on it.
"""


class RelayError(Exception):
    """Base class for all relay failures"""

    kind = "RelayError"


# Malformed input, rejected before any state is touched
class ValidationError(RelayError):
    """Raised when call arguments are malformed"""

    kind = "Validation"


class InvalidIdentityError(ValidationError):
    """Raised when an identity hash is malformed or the zero sentinel"""

    kind = "InvalidIdentity"


class InvalidAmountError(ValidationError):
    """Raised when an amount is not a positive integer"""

    kind = "InvalidAmount"


class InvalidPayloadError(ValidationError):
    """Raised when a message payload is empty or too large"""

    kind = "InvalidPayload"


# Economic preconditions
class EconomicError(RelayError):
    """Raised when an economic precondition fails"""

    kind = "Economic"


class InsufficientCreditError(EconomicError):
    """Raised when an identity cannot cover the message fee"""

    kind = "InsufficientCredit"


class InsufficientBalanceError(EconomicError):
    """Raised when a withdrawal exceeds the available balance"""

    kind = "InsufficientBalance"


class AmountBelowFeeError(EconomicError):
    """Raised when a withdrawal does not exceed the withdrawal fee"""

    kind = "AmountBelowFee"


class InsufficientFeeError(EconomicError):
    """Raised when a registration payment is below the registration fee"""

    kind = "InsufficientFee"


# Authorization
class AuthorizationError(RelayError):
    """Raised when the caller is not allowed to perform an operation"""

    kind = "Authorization"


class UnauthorizedError(AuthorizationError):
    """Raised when the caller lacks the required standing"""

    kind = "Unauthorized"


class NotOwnerError(AuthorizationError):
    """Raised when the caller does not own a registry entry"""

    kind = "NotOwner"


class InvalidSecretError(AuthorizationError):
    """Raised when a secret proof does not hash to the identity"""

    kind = "InvalidSecret"


class ReentrantCallError(AuthorizationError):
    """Raised when a payout recipient re-enters a guarded operation"""

    kind = "ReentrantCall"


# Registry validation
class RegistryError(RelayError):
    """Raised when a registry precondition fails"""

    kind = "Registry"


class AlreadyRegisteredError(RegistryError):
    """Raised when an identity hash already has a registry entry"""

    kind = "AlreadyRegistered"


class AliasTakenError(RegistryError):
    """Raised when an alias belongs to another entry"""

    kind = "AliasTaken"


class AliasRequiredError(RegistryError):
    """Raised when a private entry is registered without an alias"""

    kind = "AliasRequired"


class InvalidAliasFormatError(RegistryError):
    """Raised when an alias fails length or charset rules"""

    kind = "InvalidAliasFormat"


class InvalidSecretFormatError(RegistryError):
    """Raised when a secret proof is too short or too long"""

    kind = "InvalidSecretFormat"


class TooManyRegistrationsError(RegistryError):
    """Raised when an owner already holds the maximum number of entries"""

    kind = "TooManyRegistrations"


class AlreadyHasPublicEntryError(RegistryError):
    """Raised when an owner would hold a second public entry"""

    kind = "AlreadyHasPublicEntry"


class AliasNotFoundError(RegistryError):
    """Raised when an alias is not registered"""

    kind = "AliasNotFound"


class EntryNotFoundError(RegistryError):
    """Raised when an identity hash has no registry entry"""

    kind = "EntryNotFound"


# Administrative / batch input
class AdministrativeError(RelayError):
    """Raised when administrative or batch input is rejected"""

    kind = "Administrative"


class PausedStateError(AdministrativeError):
    """Raised when an operation is rejected by the pause switch"""

    kind = "PausedState"


class FeeOutOfRangeError(AdministrativeError):
    """Raised when a fee falls outside its allowed range"""

    kind = "FeeOutOfRange"


class LengthMismatchError(AdministrativeError):
    """Raised when batch argument lists differ in length"""

    kind = "LengthMismatch"


class EmptyBatchError(AdministrativeError):
    """Raised when a batch contains no items"""

    kind = "EmptyBatch"


class BatchTooLargeError(AdministrativeError):
    """Raised when a batch exceeds the configured maximum size"""

    kind = "BatchTooLarge"


class TransferFailedError(RelayError):
    """Raised when a value payout could not be completed"""

    kind = "TransferFailed"
