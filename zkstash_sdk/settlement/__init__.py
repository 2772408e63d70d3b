"""
On-chain settlement of payment challenges.

An executor moves real funds. It is invoked at most once per logical call and
never resubmits on an ambiguous failure.
"""
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..deadline import Deadline
from ..models import PaymentOption, SettlementReceipt
from ..signer import ChainFamily, Signer

# Fixed confirmation budget of the reference client
DEFAULT_CONFIRMATION_TIMEOUT = 60.0
DEFAULT_POLL_INTERVAL = 2.0


class SettlementExecutor(ABC):
    """Transfers the requested amount and waits for confirmation."""

    chain_family: ChainFamily

    def __init__(
        self,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        if confirmation_timeout is None or confirmation_timeout <= 0:
            raise ValueError("confirmation_timeout must be a positive number of seconds")
        self.confirmation_timeout = float(confirmation_timeout)
        self.poll_interval = float(poll_interval)

    @property
    @abstractmethod
    def payer(self) -> str:
        """Address funds are sent from."""

    @abstractmethod
    def asset_for(self, option: PaymentOption) -> str:
        """Token contract or mint the option is paid in."""

    @abstractmethod
    def settle(self, option: PaymentOption, deadline: Optional[Deadline] = None) -> SettlementReceipt:
        """
        Submit the transfer for ``option`` and block until it is confirmed.

        Args:
            option: Selected payment option
            deadline: Caller deadline; the executor's own confirmation timeout
                applies when omitted. Expiry or cancellation stops waiting only.

        Returns:
            Receipt of the confirmed transfer

        Raises:
            RpcUnavailableError: RPC unreachable before broadcast
            PaymentFailedError: Transfer could not be built, signed or broadcast
            TransactionRevertedError: Transfer was mined and failed
            ConfirmationTimeoutError: Broadcast but unconfirmed at the deadline
        """

    def _confirmation_deadline(self, deadline: Optional[Deadline]) -> Deadline:
        return deadline if deadline is not None else Deadline(self.confirmation_timeout)


def create_executor(signer: Signer, **options: Any) -> SettlementExecutor:
    """
    Build the executor matching a signer's chain family.

    The executor reuses the signer's key so both act for the same wallet.
    """
    if signer.chain_family is ChainFamily.EVM:
        from .evm import EvmSettlementExecutor
        return EvmSettlementExecutor(signer.account, **options)
    from .solana import SolanaSettlementExecutor
    return SolanaSettlementExecutor(signer.seed, **options)


__all__ = [
    "SettlementExecutor",
    "create_executor",
    "DEFAULT_CONFIRMATION_TIMEOUT",
    "DEFAULT_POLL_INTERVAL",
]
