"""
ERC-20 settlement on EVM networks.
"""
import logging
import threading
from typing import Dict, Optional

import requests
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception

from ..config import NetworkConfig
from ..deadline import Deadline
from ..exceptions import (
    ConfirmationTimeoutError, PaymentFailedError, RpcUnavailableError,
    TransactionRevertedError, UnsupportedNetworkError
)
from ..models import PaymentOption, SettlementReceipt
from ..signer import ChainFamily
from ..utils import truncate_address
from . import DEFAULT_CONFIRMATION_TIMEOUT, DEFAULT_POLL_INTERVAL, SettlementExecutor

logger = logging.getLogger(__name__)

# keccak256("transfer(address,uint256)")[:4]
TRANSFER_SELECTOR = bytes.fromhex("a9059cbb")
DEFAULT_GAS_LIMIT = 200000

_RPC_ERRORS = (requests.RequestException, Web3Exception, OSError)
# The node may have received the transaction before the connection failed
_AMBIGUOUS_SEND_ERRORS = (requests.Timeout, requests.ConnectionError, OSError)


def encode_transfer_call(recipient: str, amount: int) -> bytes:
    """
    Calldata for ``transfer(address,uint256)``.

    Args:
        recipient: 20-byte hex address
        amount: Token amount in atomic units

    Returns:
        4-byte selector + left-padded recipient + left-padded amount
    """
    if amount < 0 or amount >= 2 ** 256:
        raise ValueError(f"Amount out of uint256 range: {amount}")
    address_bytes = bytes.fromhex(recipient[2:] if recipient.startswith("0x") else recipient)
    if len(address_bytes) != 20:
        raise ValueError(f"Recipient must be a 20-byte address, got {len(address_bytes)} bytes")
    return (
        TRANSFER_SELECTOR
        + address_bytes.rjust(32, b"\x00")
        + amount.to_bytes(32, byteorder="big")
    )


class EvmSettlementExecutor(SettlementExecutor):
    """
    Pays an x402 option with an ERC-20 ``transfer`` signed under EIP-155.

    Web3 providers are created lazily per network and reused across calls.
    """

    chain_family = ChainFamily.EVM

    def __init__(
        self,
        account: LocalAccount,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        gas_limit: Optional[int] = None,
        rpc_urls: Optional[Dict[str, str]] = None,
        rpc_timeout: int = 30,
    ):
        """
        Args:
            account: Payer account (shared with the request signer)
            confirmation_timeout: Max seconds to wait for the receipt
            poll_interval: Seconds between receipt polls
            gas_limit: Fixed gas limit; estimated (+10%) when None
            rpc_urls: Per-network RPC overrides, keyed by canonical network name
            rpc_timeout: HTTP timeout for RPC calls in seconds
        """
        super().__init__(confirmation_timeout, poll_interval)
        self._account = account
        self.gas_limit = gas_limit
        self.rpc_urls = dict(rpc_urls or {})
        self.rpc_timeout = rpc_timeout
        self._web3_by_network: Dict[str, Web3] = {}
        self._send_lock = threading.Lock()

    @property
    def payer(self) -> str:
        return self._account.address

    def _web3(self, network: str) -> Web3:
        w3 = self._web3_by_network.get(network)
        if w3 is None:
            rpc_url = NetworkConfig.get_rpc_url(network, override=self.rpc_urls.get(network))
            w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": self.rpc_timeout}))
            self._web3_by_network[network] = w3
            logger.debug("Connected %s RPC at %s", network, rpc_url)
        return w3

    def _resolve_network(self, option: PaymentOption) -> str:
        network = NetworkConfig.normalize(option.network)
        if network is None or NetworkConfig.get_family(network) != ChainFamily.EVM.value:
            raise UnsupportedNetworkError(f"Network '{option.network}' is not a supported EVM network")
        return network

    def asset_for(self, option: PaymentOption) -> str:
        if option.asset and Web3.is_address(option.asset):
            return Web3.to_checksum_address(option.asset)
        return Web3.to_checksum_address(NetworkConfig.get_token_address(self._resolve_network(option)))

    def settle(self, option: PaymentOption, deadline: Optional[Deadline] = None) -> SettlementReceipt:
        network = self._resolve_network(option)
        chain_id = NetworkConfig.get_chain_id(network)
        token = self.asset_for(option)

        if not Web3.is_address(option.recipient):
            raise PaymentFailedError(f"Invalid EVM recipient address: {option.recipient}")
        recipient = Web3.to_checksum_address(option.recipient)

        try:
            amount = option.atomic_amount(NetworkConfig.get_token_decimals(network))
            data = encode_transfer_call(recipient, amount)
        except ValueError as e:
            raise PaymentFailedError(f"Cannot build transfer: {e}")

        w3 = self._web3(network)

        # Held from nonce read through broadcast: one pending nonce per payment
        with self._send_lock:
            tx_ref = self._sign_and_send(w3, network, chain_id, token, data)
        logger.info(
            "Transaction sent: %s (%s %s -> %s on %s)",
            tx_ref, amount, token, truncate_address(recipient), network
        )

        return self._wait_for_receipt(w3, tx_ref, network, deadline)

    def _sign_and_send(self, w3: Web3, network: str, chain_id: int, token: str, data: bytes) -> str:
        # 1. Account state
        try:
            nonce = w3.eth.get_transaction_count(self.payer, "pending")
            gas_price = w3.eth.gas_price
        except _RPC_ERRORS as e:
            logger.error(f"RPC unavailable for {network}: {e}")
            raise RpcUnavailableError(f"RPC unavailable for {network}: {e}", context={"network": network})

        # 2. Gas
        gas = self.gas_limit
        if gas is None:
            try:
                estimate = w3.eth.estimate_gas({
                    "from": self.payer,
                    "to": token,
                    "data": Web3.to_hex(data),
                    "value": 0,
                })
                gas = int(estimate * 1.1)
            except _RPC_ERRORS + (ValueError,) as e:
                gas = DEFAULT_GAS_LIMIT
                logger.warning(f"Gas estimation failed, using default: {gas}. Error: {e}")

        tx = {
            "nonce": nonce,
            "to": token,
            "value": 0,
            "gas": gas,
            "gasPrice": gas_price,
            "data": data,
            "chainId": chain_id,
        }

        # 3. Sign (EIP-155, bound to chain_id)
        try:
            signed = self._account.sign_transaction(tx)
        except (TypeError, ValueError) as e:
            logger.error(f"Transaction signing failed: {e}")
            raise PaymentFailedError(f"Failed to sign transaction: {e}")
        tx_ref = Web3.to_hex(signed.hash)

        # 4. Broadcast; from here on the transfer may exist on-chain
        try:
            w3.eth.send_raw_transaction(signed.raw_transaction)
        except _AMBIGUOUS_SEND_ERRORS as e:
            logger.error(f"Broadcast of {tx_ref} interrupted: {e}; verify it manually before paying again")
            raise ConfirmationTimeoutError(
                f"Broadcast of {tx_ref} interrupted: {e}",
                tx_ref=tx_ref,
                context={"network": network},
            )
        except _RPC_ERRORS + (ValueError,) as e:
            logger.error(f"Failed to send transaction {tx_ref}: {e}")
            raise PaymentFailedError(
                f"Failed to send transaction: {e}",
                context={"network": network, "tx_ref": tx_ref},
            )
        return tx_ref

    def _wait_for_receipt(
        self, w3: Web3, tx_ref: str, network: str, deadline: Optional[Deadline]
    ) -> SettlementReceipt:
        deadline = self._confirmation_deadline(deadline)
        while True:
            receipt = None
            try:
                receipt = w3.eth.get_transaction_receipt(tx_ref)
            except TransactionNotFound:
                pass
            except _RPC_ERRORS as e:
                logger.warning(f"Receipt poll for {tx_ref} failed: {e}")

            if receipt is not None:
                status = receipt.get("status")
                if status == 1:
                    block_number = receipt.get("blockNumber")
                    logger.info("Transaction %s confirmed in block %s", tx_ref, block_number)
                    return SettlementReceipt(
                        tx_hash=tx_ref,
                        network=network,
                        payer=self.payer,
                        status=1,
                        block_number=block_number,
                        gas_used=receipt.get("gasUsed"),
                    )
                if status == 0:
                    logger.error(f"Transaction {tx_ref} reverted")
                    raise TransactionRevertedError(
                        f"Transaction {tx_ref} reverted", tx_ref=tx_ref, context={"network": network}
                    )

            if not deadline.sleep(self.poll_interval):
                reason = "cancelled" if deadline.cancelled else f"not confirmed within {deadline.timeout:.0f}s"
                logger.error(f"Transaction {tx_ref} {reason}; verify it manually before paying again")
                raise ConfirmationTimeoutError(
                    f"Transaction {tx_ref} {reason}", tx_ref=tx_ref, context={"network": network}
                )
