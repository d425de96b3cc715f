"""Environment configuration tests."""

import pytest

from fakes import TEST_ENV, TEST_OPERATOR, TEST_PRIVATE_KEY
from monoma.config import MonomaConfig
from monoma.constants import IRIS_API_SANDBOX_URL, MESSAGE_TRANSMITTER_V2_TESTNET
from monoma.errors import ConfigurationError, MissingSetting, UnsupportedChain


def test_from_environment(config: MonomaConfig):
    """All chain roles are populated with the right domains and contracts."""
    assert config.operator_address == TEST_OPERATOR
    assert set(config.factories) == {"arbitrum", "base", "avalanche"}
    assert set(config.burn_chains) == {"eth", "base", "avalanche", "arbitrum"}
    assert config.get_burn_chain("eth").domain == 0
    assert config.get_burn_chain("avalanche").domain == 1
    assert config.get_burn_chain("arbitrum").domain == 3
    assert config.get_burn_chain("base").domain == 6
    assert config.transfer_factory.label == "Avalanche Fuji Transfer"
    assert config.transfer_factory.factory_address == TEST_ENV["AVALANCHE_TRANSFER_FACTORY_ADDRESS"]
    assert config.get_mint_chain("arbitrum").factory_address == MESSAGE_TRANSMITTER_V2_TESTNET
    assert config.iris_api_url == IRIS_API_SANDBOX_URL
    assert config.transfer_poll_interval == 3.0
    assert config.transfer_poll_attempts == 100


def test_missing_variables():
    env = dict(TEST_ENV)
    del env["PRIVATE_KEY"]
    env["BASE_RPC_URL"] = ""
    with pytest.raises(MissingSetting, match="PRIVATE_KEY, BASE_RPC_URL"):
        MonomaConfig.from_environment(env)


def test_private_key_prefix_added():
    env = dict(TEST_ENV, PRIVATE_KEY=TEST_PRIVATE_KEY.removeprefix("0x"))
    config = MonomaConfig.from_environment(env)
    assert config.private_key == TEST_PRIVATE_KEY


def test_private_key_not_in_repr(config: MonomaConfig):
    assert TEST_PRIVATE_KEY not in repr(config)


def test_optional_settings():
    env = dict(TEST_ENV, RETRY_DELAY="500", MAX_RETRIES="7", IRIS_API_URL="https://iris.example.com")
    config = MonomaConfig.from_environment(env)
    assert config.transfer_poll_interval == 0.5
    assert config.transfer_poll_attempts == 7
    assert config.iris_api_url == "https://iris.example.com"


def test_unsupported_chain_is_configuration_error(config: MonomaConfig):
    with pytest.raises(UnsupportedChain):
        config.get_factory("eth")
    with pytest.raises(ConfigurationError):
        config.get_mint_chain("base")
