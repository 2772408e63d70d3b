"""
Pytest fixtures for the zkStash SDK tests.
"""
import pytest
from unittest.mock import MagicMock

import base58
import nacl.signing
import requests
from web3 import Web3
from web3.providers.rpc import HTTPProvider

from zkstash_sdk._rate_limited_log import reset_rate_limited_log
from zkstash_sdk.config import NetworkConfig
from zkstash_sdk.models import SettlementReceipt
from zkstash_sdk.settlement import SettlementExecutor
from zkstash_sdk.signer import ChainFamily
from zkstash_sdk.signer.evm import EvmSigner
from zkstash_sdk.signer.solana import SolanaSigner

# Constants for testing
TEST_API_URL = "https://api.zkstash.test"
TEST_EVM_KEY = "0x0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
TEST_SOLANA_SEED = bytes(range(1, 33))
TEST_SOLANA_KEY = base58.b58encode(
    TEST_SOLANA_SEED + bytes(nacl.signing.SigningKey(TEST_SOLANA_SEED).verify_key)
).decode("ascii")
TEST_TIMESTAMP_MS = 1700000000000
TEST_RECIPIENT = "0x209693bc6afc0c5328ba36faf03c514ef312287c"
TEST_USDC_BASE_SEPOLIA = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"

CHALLENGE_BODY = {
    "x402Version": 1,
    "error": "Free quota exhausted",
    "accepts": [
        {
            "network": "solana-devnet",
            "token": "USDC",
            "amount": "10000",
            "recipient": "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM",
        },
        {
            "network": "base-sepolia",
            "token": "USDC",
            "maxAmountRequired": "10000",
            "payTo": TEST_RECIPIENT,
        },
    ],
}


@pytest.fixture(autouse=True)
def _reset_module_state():
    """Each test starts with a fresh network registry and log suppression cache."""
    NetworkConfig.reset()
    reset_rate_limited_log()
    yield
    NetworkConfig.reset()


@pytest.fixture(autouse=True)
def _patch_http_provider(monkeypatch):
    """
    Stub every Web3 HTTP call so no DNS / network traffic is triggered.
    """
    def _dummy(self, method, params=None, _=None):
        if method == "eth_chainId":
            return {"jsonrpc": "2.0", "id": 1, "result": hex(84532)}
        if method == "eth_gasPrice":
            return {"jsonrpc": "2.0", "id": 1, "result": "0x3b9aca00"}
        return {"jsonrpc": "2.0", "id": 1, "result": "0x0"}

    monkeypatch.setattr(HTTPProvider, "make_request", _dummy, raising=True)


@pytest.fixture
def evm_signer():
    return EvmSigner(TEST_EVM_KEY)


@pytest.fixture
def solana_signer():
    return SolanaSigner(TEST_SOLANA_KEY)


@pytest.fixture
def fixed_clock():
    return lambda: TEST_TIMESTAMP_MS


class FakeExecutor(SettlementExecutor):
    """
    Settlement executor that records calls instead of touching a chain.

    ``outcome`` is either a receipt tx hash to return or an exception to raise.
    """

    chain_family = ChainFamily.EVM

    def __init__(self, outcome="0x" + "ab" * 32, payer="0x1111111111111111111111111111111111111111"):
        super().__init__(confirmation_timeout=1, poll_interval=0.01)
        self.outcome = outcome
        self._payer = payer
        self.calls = []

    @property
    def payer(self):
        return self._payer

    def asset_for(self, option):
        return option.asset or TEST_USDC_BASE_SEPOLIA

    def settle(self, option, deadline=None):
        self.calls.append((option, deadline))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return SettlementReceipt(tx_hash=self.outcome, network="base-sepolia", payer=self.payer, block_number=7)


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def mock_w3():
    """Web3 double with a realistic eth namespace for settlement tests."""
    mock = MagicMock(spec=Web3)
    eth = MagicMock()
    eth.gas_price = 1000000000
    eth.get_transaction_count = MagicMock(return_value=12)
    eth.estimate_gas = MagicMock(return_value=50000)
    eth.send_raw_transaction = MagicMock(return_value=b"\x01" * 32)
    eth.get_transaction_receipt = MagicMock(return_value={"status": 1, "blockNumber": 12345, "gasUsed": 45000})
    mock.eth = eth
    return mock


@pytest.fixture
def http_session():
    return requests.Session()
