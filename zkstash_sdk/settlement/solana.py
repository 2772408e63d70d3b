"""
SPL token settlement on Solana.
"""
import logging
from typing import Dict, Optional

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus
from spl.token.instructions import (
    TransferCheckedParams, create_associated_token_account,
    get_associated_token_address, transfer_checked
)
from spl.token.constants import TOKEN_PROGRAM_ID

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

_RPC_ERRORS = (SolanaRpcException, httpx.HTTPError, OSError)
# solana-py wraps transport failures in SolanaRpcException; the node may
# have received the transaction before the connection failed
_AMBIGUOUS_SEND_ERRORS = (SolanaRpcException, httpx.TransportError, OSError)
_CONFIRMED = (TransactionConfirmationStatus.Confirmed, TransactionConfirmationStatus.Finalized)


class SolanaSettlementExecutor(SettlementExecutor):
    """
    Pays an x402 option with an SPL ``transferChecked`` between associated
    token accounts, creating the recipient's account when it does not exist.
    Confirmation is reached at the ``confirmed`` commitment level.
    """

    chain_family = ChainFamily.SOLANA

    def __init__(
        self,
        seed: bytes,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        rpc_urls: Optional[Dict[str, str]] = None,
        rpc_timeout: int = 30,
    ):
        super().__init__(confirmation_timeout, poll_interval)
        self._keypair = Keypair.from_seed(seed)
        self.rpc_urls = dict(rpc_urls or {})
        self.rpc_timeout = rpc_timeout
        self._clients: Dict[str, Client] = {}

    @property
    def payer(self) -> str:
        return str(self._keypair.pubkey())

    def _client(self, network: str) -> Client:
        client = self._clients.get(network)
        if client is None:
            rpc_url = NetworkConfig.get_rpc_url(network, override=self.rpc_urls.get(network))
            client = Client(rpc_url, timeout=self.rpc_timeout)
            self._clients[network] = client
            logger.debug("Connected %s RPC at %s", network, rpc_url)
        return client

    def _resolve_network(self, option: PaymentOption) -> str:
        network = NetworkConfig.normalize(option.network)
        if network is None or NetworkConfig.get_family(network) != ChainFamily.SOLANA.value:
            raise UnsupportedNetworkError(f"Network '{option.network}' is not a supported Solana network")
        return network

    def asset_for(self, option: PaymentOption) -> str:
        if option.asset:
            try:
                return str(Pubkey.from_string(option.asset))
            except ValueError:
                logger.debug("Ignoring non-Solana asset %r", option.asset)
        return NetworkConfig.get_token_address(self._resolve_network(option))

    def settle(self, option: PaymentOption, deadline: Optional[Deadline] = None) -> SettlementReceipt:
        network = self._resolve_network(option)
        decimals = NetworkConfig.get_token_decimals(network)
        try:
            mint = Pubkey.from_string(self.asset_for(option))
            recipient = Pubkey.from_string(option.recipient)
            amount = option.atomic_amount(decimals)
        except ValueError as e:
            raise PaymentFailedError(f"Cannot build transfer: {e}")

        owner = self._keypair.pubkey()
        source = get_associated_token_address(owner, mint)
        dest = get_associated_token_address(recipient, mint)
        client = self._client(network)

        # 1. Chain state
        try:
            dest_info = client.get_account_info(dest)
            blockhash = client.get_latest_blockhash().value.blockhash
        except _RPC_ERRORS as e:
            logger.error(f"RPC unavailable for {network}: {e}")
            raise RpcUnavailableError(f"RPC unavailable for {network}: {e}", context={"network": network})

        # 2. Instructions
        instructions = []
        if dest_info.value is None:
            logger.info("Creating token account %s for recipient", truncate_address(str(dest)))
            instructions.append(create_associated_token_account(payer=owner, owner=recipient, mint=mint))
        instructions.append(transfer_checked(TransferCheckedParams(
            program_id=TOKEN_PROGRAM_ID,
            source=source,
            mint=mint,
            dest=dest,
            owner=owner,
            amount=amount,
            decimals=decimals,
        )))

        # 3. Sign
        message = Message.new_with_blockhash(instructions, owner, blockhash)
        tx = Transaction([self._keypair], message, blockhash)
        signature = tx.signatures[0]
        tx_ref = str(signature)

        # 4. Broadcast; from here on the transfer may exist on-chain
        try:
            client.send_raw_transaction(bytes(tx), opts=TxOpts(preflight_commitment="confirmed"))
        except RPCException as e:
            logger.error(f"Transaction {tx_ref} rejected: {e}")
            raise PaymentFailedError(
                f"Transaction rejected: {e}", context={"network": network, "tx_ref": tx_ref}
            )
        except _AMBIGUOUS_SEND_ERRORS as e:
            logger.error(f"Broadcast of {tx_ref} interrupted: {e}; verify it manually before paying again")
            raise ConfirmationTimeoutError(
                f"Broadcast of {tx_ref} interrupted: {e}", tx_ref=tx_ref, context={"network": network}
            )
        except _RPC_ERRORS as e:
            logger.error(f"Failed to send transaction {tx_ref}: {e}")
            raise PaymentFailedError(
                f"Failed to send transaction: {e}", context={"network": network, "tx_ref": tx_ref}
            )
        logger.info(
            "Transaction sent: %s (%s %s -> %s on %s)",
            tx_ref, amount, mint, truncate_address(str(recipient)), network
        )

        return self._wait_for_confirmation(client, signature, network, deadline)

    def _wait_for_confirmation(
        self, client: Client, signature: Signature, network: str, deadline: Optional[Deadline]
    ) -> SettlementReceipt:
        tx_ref = str(signature)
        deadline = self._confirmation_deadline(deadline)
        while True:
            status = None
            try:
                statuses = client.get_signature_statuses([signature]).value
                status = statuses[0] if statuses else None
            except _RPC_ERRORS as e:
                logger.warning(f"Status poll for {tx_ref} failed: {e}")

            if status is not None:
                if status.err is not None:
                    logger.error(f"Transaction {tx_ref} failed: {status.err}")
                    raise TransactionRevertedError(
                        f"Transaction {tx_ref} failed: {status.err}", tx_ref=tx_ref, context={"network": network}
                    )
                if status.confirmation_status in _CONFIRMED:
                    logger.info("Transaction %s confirmed in slot %s", tx_ref, status.slot)
                    return SettlementReceipt(
                        tx_hash=tx_ref,
                        network=network,
                        payer=self.payer,
                        status=1,
                        slot=status.slot,
                    )

            if not deadline.sleep(self.poll_interval):
                reason = "cancelled" if deadline.cancelled else f"not confirmed within {deadline.timeout:.0f}s"
                logger.error(f"Transaction {tx_ref} {reason}; verify it manually before paying again")
                raise ConfirmationTimeoutError(
                    f"Transaction {tx_ref} {reason}", tx_ref=tx_ref, context={"network": network}
                )
