"""
Relay configuration: fee schedule, shard count and input bounds.

Profiles mirror the deployment environments (local, testnet, production).
Values can be overridden with RELAY_* environment variables.
"""

import os
import logging
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Dict, Mapping, Optional, Union

logger = logging.getLogger(__name__)

# Smallest value unit: 1 credit = 10**9 units
UNITS_PER_CREDIT = 10**9


def to_units(credits: Union[str, int, Decimal]) -> int:
    """
    Convert a decimal credit amount to integer units.

    Args:
        credits: Amount in credits, e.g. "0.01"

    Returns:
        Amount in units

    Raises:
        ValueError: If the amount is malformed or finer than one unit
    """
    try:
        value = Decimal(str(credits)) * UNITS_PER_CREDIT
    except InvalidOperation:
        raise ValueError(f"Invalid credit amount: {credits!r}")
    if value != value.to_integral_value():
        raise ValueError(f"Credit amount has sub-unit precision: {credits}")
    return int(value)


def from_units(units: int) -> Decimal:
    """Convert integer units back to a decimal credit amount"""
    return Decimal(units) / UNITS_PER_CREDIT


@dataclass(frozen=True)
class RelayConfig:
    """Fee schedule and limits shared by ledgers, router and registry"""

    message_fee: int
    withdrawal_fee: int
    registration_fee: int
    initial_shards: int
    per_byte_fee: int = 0
    max_payload_bytes: int = 1024
    max_registrations_per_owner: int = 10
    max_batch_size: int = 100


PROFILES: Dict[str, RelayConfig] = {
    "local": RelayConfig(
        message_fee=to_units("0.001"),
        withdrawal_fee=to_units("0.0005"),
        registration_fee=to_units("0.01"),
        initial_shards=3,
    ),
    "testnet": RelayConfig(
        message_fee=to_units("0.002"),
        withdrawal_fee=to_units("0.001"),
        registration_fee=to_units("0.02"),
        initial_shards=5,
    ),
    "production": RelayConfig(
        message_fee=to_units("0.005"),
        withdrawal_fee=to_units("0.002"),
        registration_fee=to_units("0.05"),
        initial_shards=10,
    ),
}


def get_config(environment: str = "local") -> RelayConfig:
    """
    Get configuration for a deployment environment.

    Args:
        environment: Profile name (local, testnet, production)

    Raises:
        ValueError: If the profile is unknown
    """
    config = PROFILES.get(environment)
    if config is None:
        raise ValueError(
            f"Unknown environment: {environment}. Available: {', '.join(PROFILES)}"
        )
    return config


def get_config_by_network(network_name: str) -> RelayConfig:
    """Map a network name onto a profile; unknown networks are treated as testnets"""
    if network_name in ("localhost", "hardhat"):
        return get_config("local")
    if network_name == "mainnet":
        return get_config("production")
    return get_config("testnet")


def load_config(environ: Optional[Mapping[str, str]] = None) -> RelayConfig:
    """
    Build a configuration from the environment.

    RELAY_ENV selects the base profile (default local). Fee overrides are
    decimal credit amounts; the other overrides are plain integers.
    """
    if environ is None:
        environ = os.environ

    config = get_config(environ.get("RELAY_ENV", "local"))

    overrides = {}
    for field_name, var in (
        ("message_fee", "RELAY_MESSAGE_FEE"),
        ("withdrawal_fee", "RELAY_WITHDRAWAL_FEE"),
        ("registration_fee", "RELAY_REGISTRATION_FEE"),
        ("per_byte_fee", "RELAY_PER_BYTE_FEE"),
    ):
        if environ.get(var):
            overrides[field_name] = to_units(environ[var])

    for field_name, var in (
        ("initial_shards", "RELAY_INITIAL_SHARDS"),
        ("max_payload_bytes", "RELAY_MAX_PAYLOAD_BYTES"),
    ):
        if environ.get(var):
            try:
                overrides[field_name] = int(environ[var])
            except ValueError:
                raise ValueError(f"{var} must be an integer, got {environ[var]!r}")

    if overrides:
        logger.info(f"Applying configuration overrides: {sorted(overrides)}")
        config = replace(config, **overrides)

    return config
