"""Identity registry: receiver hashes, aliases and visibility."""

from .aliases import is_valid_alias, is_valid_secret, validate_alias, validate_secret
from .registry import IdentityRegistry, RegistryEntry

__all__ = [
    "is_valid_alias",
    "is_valid_secret",
    "validate_alias",
    "validate_secret",
    "IdentityRegistry",
    "RegistryEntry",
]
