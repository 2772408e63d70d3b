"""
EVM (secp256k1) signer using the Ethereum personal-sign convention.
"""
import logging
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from ..exceptions import InvalidKeyError
from ..utils import truncate_address
from . import ChainFamily, SignedMessage, Signer
from .ec_constants import LEGACY_V_OFFSET, RECOVERY_ENCODINGS, SECP256K1_MAX, SECP256K1_MIN

logger = logging.getLogger(__name__)


def parse_evm_private_key(private_key: Optional[str]) -> bytes:
    """
    Validate a hex secp256k1 private key.

    Args:
        private_key: 64 hex chars, with or without 0x prefix

    Returns:
        32 raw key bytes

    Raises:
        InvalidKeyError: If the key is not valid hex or out of curve range
    """
    if not isinstance(private_key, str) or not private_key.strip():
        raise InvalidKeyError("EVM private key is empty")
    key_hex = private_key.strip()
    if key_hex[:2].lower() == "0x":
        key_hex = key_hex[2:]
    if len(key_hex) != 64:
        raise InvalidKeyError(f"EVM private key must be 32 bytes (64 hex chars), got {len(key_hex)} chars")
    try:
        key_bytes = bytes.fromhex(key_hex)
    except ValueError:
        raise InvalidKeyError("EVM private key is not valid hex")
    value = int.from_bytes(key_bytes, byteorder="big")
    if not SECP256K1_MIN <= value <= SECP256K1_MAX:
        raise InvalidKeyError("EVM private key is outside the secp256k1 range")
    return key_bytes


class EvmSigner(Signer):
    """
    Signs canonical messages with an Ethereum account.

    The message is hashed as ``keccak256("\\x19Ethereum Signed Message:\\n" +
    len(message) + message)``. The zkStash API verifies signatures with the
    legacy recovery byte (v in {27, 28}); pass ``recovery_encoding="raw"`` for
    verifiers that expect v in {0, 1}.
    """

    chain_family = ChainFamily.EVM

    def __init__(self, private_key: str, recovery_encoding: str = "legacy"):
        """
        Initialize the signer

        Args:
            private_key: Hex private key, with or without 0x prefix
            recovery_encoding: "legacy" (v=27/28) or "raw" (v=0/1)

        Raises:
            InvalidKeyError: If the private key is malformed
            ValueError: If recovery_encoding is unknown
        """
        if recovery_encoding not in RECOVERY_ENCODINGS:
            raise ValueError(f"recovery_encoding must be one of {RECOVERY_ENCODINGS}, got {recovery_encoding!r}")
        key_bytes = parse_evm_private_key(private_key)
        self._account: LocalAccount = Account.from_key(key_bytes)
        self.recovery_encoding = recovery_encoding
        logger.debug("Loaded EVM identity %s", truncate_address(self._account.address))

    @property
    def address(self) -> str:
        """EIP-55 checksummed address."""
        return self._account.address

    @property
    def account(self) -> LocalAccount:
        """Underlying account, used for transaction signing during settlement."""
        return self._account

    def sign_message(self, message: str) -> SignedMessage:
        signed = self._account.sign_message(encode_defunct(text=message))

        # eth_account reports v as 27/28 for personal-sign messages
        v = signed.v
        if v < LEGACY_V_OFFSET:
            v += LEGACY_V_OFFSET
        if self.recovery_encoding == "raw":
            v -= LEGACY_V_OFFSET

        signature = (
            signed.r.to_bytes(32, byteorder="big")
            + signed.s.to_bytes(32, byteorder="big")
            + bytes([v])
        )
        return SignedMessage(signature=signature.hex(), address=self.address)
