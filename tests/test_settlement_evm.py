"""
Tests for ERC-20 settlement on EVM networks.
"""
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest
import requests
from eth_account import Account
from web3 import Web3
from web3.exceptions import TransactionNotFound

from zkstash_sdk.deadline import Deadline
from zkstash_sdk.exceptions import (
    ConfirmationTimeoutError, PaymentFailedError, RpcUnavailableError,
    TransactionRevertedError, UnsupportedNetworkError
)
from zkstash_sdk.models import PaymentOption
from zkstash_sdk.settlement import create_executor
from zkstash_sdk.settlement.evm import (
    EvmSettlementExecutor, encode_transfer_call
)
from conftest import TEST_EVM_KEY, TEST_RECIPIENT, TEST_USDC_BASE_SEPOLIA


def _option(**overrides):
    fields = {"network": "base-sepolia", "amount": "10000", "recipient": TEST_RECIPIENT}
    fields.update(overrides)
    return PaymentOption(**fields)


@pytest.fixture
def executor(mock_w3):
    executor = EvmSettlementExecutor(
        Account.from_key(TEST_EVM_KEY), confirmation_timeout=0.2, poll_interval=0.01
    )
    executor._web3_by_network["base-sepolia"] = mock_w3
    return executor


class TestTransferCalldata:
    def test_layout(self):
        data = encode_transfer_call(TEST_RECIPIENT, 10000)
        assert len(data) == 68
        assert data[:4].hex() == "a9059cbb"
        assert data[4:36] == bytes(12) + bytes.fromhex(TEST_RECIPIENT[2:])
        assert int.from_bytes(data[36:], "big") == 10000

    def test_rejects_bad_input(self):
        with pytest.raises(ValueError):
            encode_transfer_call("0x1234", 1)
        with pytest.raises(ValueError):
            encode_transfer_call(TEST_RECIPIENT, -1)
        with pytest.raises(ValueError):
            encode_transfer_call(TEST_RECIPIENT, 2 ** 256)


class TestEvmSettlementExecutor:
    def test_settle_success(self, executor, mock_w3):
        receipt = executor.settle(_option())

        assert receipt.status == 1
        assert receipt.network == "base-sepolia"
        assert receipt.block_number == 12345
        assert receipt.payer == executor.payer
        assert receipt.tx_hash.startswith("0x") and len(receipt.tx_hash) == 66

        mock_w3.eth.get_transaction_count.assert_called_once_with(executor.payer, "pending")
        mock_w3.eth.send_raw_transaction.assert_called_once()
        mock_w3.eth.get_transaction_receipt.assert_called_with(receipt.tx_hash)

        estimate_tx = mock_w3.eth.estimate_gas.call_args[0][0]
        assert estimate_tx["to"] == TEST_USDC_BASE_SEPOLIA
        assert estimate_tx["data"].startswith("0xa9059cbb")

    def test_signed_transaction_is_bound_to_chain_id(self, executor, mock_w3, monkeypatch):
        account = executor._account
        signed_dicts = []
        original = account.sign_transaction

        def _capture(tx):
            signed_dicts.append(dict(tx))
            return original(tx)

        monkeypatch.setattr(account, "sign_transaction", _capture)
        executor.settle(_option())

        tx = signed_dicts[0]
        assert tx["chainId"] == 84532
        assert tx["nonce"] == 12
        assert tx["gas"] == int(50000 * 1.1)
        assert tx["to"] == TEST_USDC_BASE_SEPOLIA
        raw = mock_w3.eth.send_raw_transaction.call_args[0][0]
        assert Account.recover_transaction(raw) == executor.payer

    def test_gas_estimation_fallback(self, executor, mock_w3, caplog):
        mock_w3.eth.estimate_gas.side_effect = ValueError("execution reverted")
        executor.settle(_option())
        assert "Gas estimation failed" in caplog.text

    def test_fixed_gas_limit(self, mock_w3):
        executor = EvmSettlementExecutor(Account.from_key(TEST_EVM_KEY), gas_limit=90000, poll_interval=0.01)
        executor._web3_by_network["base-sepolia"] = mock_w3
        executor.settle(_option())
        mock_w3.eth.estimate_gas.assert_not_called()

    def test_waits_for_receipt(self, executor, mock_w3):
        mock_w3.eth.get_transaction_receipt.side_effect = [
            TransactionNotFound("pending"),
            requests.ConnectionError("flaky"),
            {"status": 1, "blockNumber": 99, "gasUsed": 40000},
        ]
        receipt = executor.settle(_option())
        assert receipt.block_number == 99
        assert mock_w3.eth.get_transaction_receipt.call_count == 3

    def test_reverted(self, executor, mock_w3):
        mock_w3.eth.get_transaction_receipt.return_value = {"status": 0, "blockNumber": 1}
        with pytest.raises(TransactionRevertedError) as exc_info:
            executor.settle(_option())
        assert exc_info.value.tx_ref.startswith("0x")
        assert isinstance(exc_info.value, PaymentFailedError)

    def test_confirmation_timeout_carries_tx_ref(self, executor, mock_w3):
        mock_w3.eth.get_transaction_receipt.side_effect = TransactionNotFound("pending")
        with pytest.raises(ConfirmationTimeoutError) as exc_info:
            executor.settle(_option())
        assert len(exc_info.value.tx_ref) == 66
        mock_w3.eth.send_raw_transaction.assert_called_once()

    def test_cancelled_deadline_stops_waiting(self, executor, mock_w3):
        mock_w3.eth.get_transaction_receipt.side_effect = TransactionNotFound("pending")
        deadline = Deadline(30)
        deadline.cancel()
        with pytest.raises(ConfirmationTimeoutError) as exc_info:
            executor.settle(_option(), deadline)
        assert "cancelled" in str(exc_info.value)

    def test_rpc_unavailable_before_broadcast(self, executor, mock_w3):
        mock_w3.eth.get_transaction_count.side_effect = requests.ConnectionError("down")
        with pytest.raises(RpcUnavailableError):
            executor.settle(_option())
        mock_w3.eth.send_raw_transaction.assert_not_called()

    def test_broadcast_rejected(self, executor, mock_w3):
        mock_w3.eth.send_raw_transaction.side_effect = ValueError("insufficient funds")
        with pytest.raises(PaymentFailedError) as exc_info:
            executor.settle(_option())
        assert "tx_ref" in exc_info.value.context

    @pytest.mark.parametrize("error", [
        requests.ReadTimeout("read timed out"),
        requests.ConnectionError("connection reset by peer"),
    ])
    def test_interrupted_broadcast_needs_reconciliation(self, executor, mock_w3, error):
        mock_w3.eth.send_raw_transaction.side_effect = error
        with pytest.raises(ConfirmationTimeoutError) as exc_info:
            executor.settle(_option())
        assert not isinstance(exc_info.value, PaymentFailedError)
        raw = mock_w3.eth.send_raw_transaction.call_args[0][0]
        assert exc_info.value.tx_ref == Web3.to_hex(Web3.keccak(raw))
        mock_w3.eth.get_transaction_receipt.assert_not_called()

    def test_concurrent_settlements_use_distinct_nonces(self, executor, mock_w3, monkeypatch):
        broadcasts = []
        nonces = []

        def _pending_nonce(address, block):
            nonce = 12 + len(broadcasts)
            time.sleep(0.01)
            return nonce

        mock_w3.eth.get_transaction_count.side_effect = _pending_nonce
        mock_w3.eth.send_raw_transaction.side_effect = lambda raw: broadcasts.append(raw)

        account = executor._account
        original = account.sign_transaction

        def _capture(tx):
            nonces.append(tx["nonce"])
            return original(tx)

        monkeypatch.setattr(account, "sign_transaction", _capture)

        barrier = threading.Barrier(3)

        def _pay():
            barrier.wait()
            return executor.settle(_option())

        with ThreadPoolExecutor(max_workers=3) as pool:
            receipts = list(pool.map(lambda _: _pay(), range(3)))

        assert sorted(nonces) == [12, 13, 14]
        assert len({r.tx_hash for r in receipts}) == 3

    def test_invalid_recipient(self, executor):
        with pytest.raises(PaymentFailedError):
            executor.settle(_option(recipient="not-an-address"))

    def test_non_evm_network(self, executor):
        with pytest.raises(UnsupportedNetworkError):
            executor.settle(_option(network="solana-devnet"))

    def test_decimal_amount_is_scaled(self, executor, mock_w3):
        executor.settle(_option(amount="0.01"))
        data = mock_w3.eth.estimate_gas.call_args[0][0]["data"]
        assert int(data[-64:], 16) == 10000

    def test_asset_from_option(self, executor):
        asset = "0x" + "ab" * 20
        assert executor.asset_for(_option(asset=asset)).lower() == asset
        assert executor.asset_for(_option(asset="USDC")) == TEST_USDC_BASE_SEPOLIA

    def test_rpc_url_override(self):
        executor = EvmSettlementExecutor(
            Account.from_key(TEST_EVM_KEY), rpc_urls={"base-sepolia": "http://localhost:8545"}
        )
        w3 = executor._web3("base-sepolia")
        assert w3.provider.endpoint_uri == "http://localhost:8545"
        assert executor._web3("base-sepolia") is w3

    def test_confirmation_timeout_must_be_positive(self):
        with pytest.raises(ValueError):
            EvmSettlementExecutor(Account.from_key(TEST_EVM_KEY), confirmation_timeout=0)


def test_create_executor_shares_signer_key(evm_signer):
    executor = create_executor(evm_signer, confirmation_timeout=5)
    assert isinstance(executor, EvmSettlementExecutor)
    assert executor.payer == evm_signer.address
    assert executor.confirmation_timeout == 5
