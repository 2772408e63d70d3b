"""
Wallet signers for request authentication.

A signer owns one immutable wallet identity and signs canonical request
messages with it. The concrete variant is chosen once, from the configured
chain family, when the client is built.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ChainFamily(str, Enum):
    """Signature/ledger model of a wallet."""
    EVM = "evm"
    SOLANA = "solana"


@dataclass(frozen=True)
class SignedMessage:
    """Signature over a canonical message plus the address that produced it."""
    signature: str
    address: str


class Signer(ABC):
    """Capability interface shared by the EVM and Solana signers."""

    chain_family: ChainFamily

    @property
    @abstractmethod
    def address(self) -> str:
        """Public wallet address in the chain's native encoding."""

    @abstractmethod
    def sign_message(self, message: str) -> SignedMessage:
        """
        Sign a canonical message.

        Signing is deterministic and performs no I/O; it never fails for a
        signer that was constructed successfully.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(address={self.address!r})"


def create_signer(chain_family: Any, private_key: str, **options: Any) -> Signer:
    """
    Build the signer variant for a chain family.

    Args:
        chain_family: ``ChainFamily`` or its string value ("evm" / "solana")
        private_key: Key material in the chain's usual encoding
        **options: Passed to the signer constructor

    Raises:
        InvalidKeyError: If the key is malformed
        ValueError: If the chain family is unknown
    """
    family = ChainFamily(chain_family)
    if family is ChainFamily.EVM:
        from .evm import EvmSigner
        return EvmSigner(private_key, **options)
    from .solana import SolanaSigner
    return SolanaSigner(private_key, **options)


__all__ = ["ChainFamily", "SignedMessage", "Signer", "create_signer"]
