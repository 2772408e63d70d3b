"""
Solana (Ed25519) signer.
"""
import base64
import json
import logging
from typing import Optional

import base58
import nacl.signing

from ..exceptions import InvalidKeyError
from ..utils import truncate_address
from . import ChainFamily, SignedMessage, Signer

logger = logging.getLogger(__name__)

SIGNATURE_ENCODINGS = ("base58", "base64")


def parse_solana_private_key(private_key: Optional[str]) -> bytes:
    """
    Decode Solana key material into a 32-byte Ed25519 seed.

    Accepted forms:
        - base58 of the 64-byte keypair (seed + public key), as exported by wallets
        - base58 of the 32-byte seed
        - JSON array of 64 integers, as written by ``solana-keygen``

    Raises:
        InvalidKeyError: If the key cannot be decoded or its halves disagree
    """
    if not isinstance(private_key, str) or not private_key.strip():
        raise InvalidKeyError("Solana private key is empty")
    raw = private_key.strip()

    if raw.startswith("["):
        try:
            key_bytes = bytes(json.loads(raw))
        except (ValueError, TypeError) as e:
            raise InvalidKeyError(f"Invalid Solana keypair array: {e}")
    else:
        try:
            key_bytes = base58.b58decode(raw)
        except ValueError as e:
            raise InvalidKeyError(f"Solana private key is not valid base58: {e}")

    if len(key_bytes) == 32:
        return key_bytes
    if len(key_bytes) != 64:
        raise InvalidKeyError(f"Solana private key must be 32 or 64 bytes, got {len(key_bytes)}")

    seed, public_key = key_bytes[:32], key_bytes[32:]
    derived = bytes(nacl.signing.SigningKey(seed).verify_key)
    if derived != public_key:
        raise InvalidKeyError("Solana keypair public half does not match its secret half")
    return seed


class SolanaSigner(Signer):
    """
    Signs the raw UTF-8 message bytes with Ed25519 (no prefix).

    Signatures are base58 by default, the encoding Solana tooling uses for
    signatures; ``signature_encoding="base64"`` is available for servers that
    expect it.
    """

    chain_family = ChainFamily.SOLANA

    def __init__(self, private_key: str, signature_encoding: str = "base58"):
        if signature_encoding not in SIGNATURE_ENCODINGS:
            raise ValueError(f"signature_encoding must be one of {SIGNATURE_ENCODINGS}, got {signature_encoding!r}")
        self._seed = parse_solana_private_key(private_key)
        self._signing_key = nacl.signing.SigningKey(self._seed)
        self._address = base58.b58encode(bytes(self._signing_key.verify_key)).decode("ascii")
        self.signature_encoding = signature_encoding
        logger.debug("Loaded Solana identity %s", truncate_address(self._address))

    @property
    def address(self) -> str:
        """Base58 public key."""
        return self._address

    @property
    def seed(self) -> bytes:
        """Ed25519 seed, used to build the settlement keypair."""
        return self._seed

    def sign_message(self, message: str) -> SignedMessage:
        signature = self._signing_key.sign(message.encode("utf-8")).signature
        if self.signature_encoding == "base64":
            encoded = base64.b64encode(signature).decode("ascii")
        else:
            encoded = base58.b58encode(signature).decode("ascii")
        return SignedMessage(signature=encoded, address=self._address)
