"""Format rules for aliases and secret proofs."""

import re

from errors import InvalidAliasFormatError, InvalidSecretFormatError

MIN_SECRET_LENGTH = 8
MAX_SECRET_LENGTH = 64
MIN_ALIAS_LENGTH = 3
MAX_ALIAS_LENGTH = 32

_ALIAS_RE = re.compile(r"[A-Za-z0-9_]+")


def is_valid_secret(secret_proof) -> bool:
    return (
        isinstance(secret_proof, str)
        and MIN_SECRET_LENGTH <= len(secret_proof) <= MAX_SECRET_LENGTH
    )


def is_valid_alias(alias) -> bool:
    """Alias is 3-32 characters of ASCII letters, digits and underscore"""
    return (
        isinstance(alias, str)
        and MIN_ALIAS_LENGTH <= len(alias) <= MAX_ALIAS_LENGTH
        and _ALIAS_RE.fullmatch(alias) is not None
    )


def validate_secret(secret_proof) -> None:
    if not is_valid_secret(secret_proof):
        raise InvalidSecretFormatError("Invalid secret code format")


def validate_alias(alias) -> None:
    """
    Raises:
        InvalidAliasFormatError: If alias breaks the length or charset rules
    """
    if not is_valid_alias(alias):
        raise InvalidAliasFormatError(f"Invalid alias format: {alias!r}")
