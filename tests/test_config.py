"""
Tests for relay configuration and unit conversion.
"""

import sys
import os
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import pytest
from config import (
    UNITS_PER_CREDIT,
    PROFILES,
    from_units,
    get_config,
    get_config_by_network,
    load_config,
    to_units,
)


class TestUnits:
    """Test decimal credit <-> integer unit conversion"""

    def test_to_units(self):
        assert to_units("1") == UNITS_PER_CREDIT
        assert to_units("0.001") == 1_000_000
        assert to_units(2) == 2 * UNITS_PER_CREDIT

    def test_sub_unit_precision_rejected(self):
        with pytest.raises(ValueError):
            to_units("0.0000000001")

    def test_malformed_amount_rejected(self):
        with pytest.raises(ValueError):
            to_units("lots")

    def test_from_units(self):
        assert from_units(to_units("0.17")) == Decimal("0.17")


class TestProfiles:
    """Test deployment profiles"""

    def test_local_profile(self):
        config = get_config("local")

        assert config.message_fee == to_units("0.001")
        assert config.withdrawal_fee == to_units("0.0005")
        assert config.registration_fee == to_units("0.01")
        assert config.initial_shards == 3

    def test_production_profile(self):
        config = get_config("production")

        assert config.message_fee == to_units("0.005")
        assert config.initial_shards == 10

    def test_unknown_profile(self):
        with pytest.raises(ValueError, match="Available"):
            get_config("staging")

    def test_network_mapping(self):
        assert get_config_by_network("hardhat") is PROFILES["local"]
        assert get_config_by_network("mainnet") is PROFILES["production"]
        assert get_config_by_network("sepolia") is PROFILES["testnet"]


class TestEnvironment:
    """Test RELAY_* environment overrides"""

    def test_defaults_to_local(self):
        assert load_config({}) == get_config("local")

    def test_overrides(self):
        config = load_config(
            {
                "RELAY_ENV": "testnet",
                "RELAY_MESSAGE_FEE": "0.003",
                "RELAY_INITIAL_SHARDS": "8",
                "RELAY_MAX_PAYLOAD_BYTES": "4096",
            }
        )

        assert config.message_fee == to_units("0.003")
        assert config.withdrawal_fee == get_config("testnet").withdrawal_fee
        assert config.initial_shards == 8
        assert config.max_payload_bytes == 4096

    def test_bad_integer_override(self):
        with pytest.raises(ValueError, match="RELAY_INITIAL_SHARDS"):
            load_config({"RELAY_INITIAL_SHARDS": "three"})

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("RELAY_ENV", "production")
        monkeypatch.delenv("RELAY_MESSAGE_FEE", raising=False)

        assert load_config().initial_shards == 10
