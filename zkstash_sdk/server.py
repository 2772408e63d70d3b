"""
Server-side counterparts of the client protocol.

These helpers let a service (or a test double) verify wallet-signed requests,
issue 402 challenges and read payment proofs using exactly the rules the
client signs and pays with.
"""
import base64
import binascii
import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Union

import base58
import nacl.exceptions
import nacl.signing
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from .auth import HEADER_ADDRESS, HEADER_PAYMENT, HEADER_SIGNATURE, HEADER_TIMESTAMP, SIGNATURE_MAX_SKEW_MS
from .canonical import Body, build_canonical_message
from .exceptions import AuthInvalidError, PaymentRejectedError
from .models import PaymentOption, PaymentProof, SettlementResponse
from .signer.ec_constants import LEGACY_V_OFFSET
from .utils import now_ms as _now_ms, truncate_address

logger = logging.getLogger(__name__)


def _lower_keys(headers: Mapping[str, str]) -> Dict[str, str]:
    return {k.lower(): v for k, v in headers.items()}


def verify_request(
    headers: Mapping[str, str],
    method: str,
    path: str,
    body: Body,
    now_ms: Optional[int] = None,
    max_skew_ms: int = SIGNATURE_MAX_SKEW_MS,
) -> str:
    """
    Verify the wallet signature headers of an incoming request.

    EVM signatures are accepted with ``v`` in {27, 28} or {0, 1}; Solana
    signatures in base58 or base64.

    Args:
        headers: Request headers (any case)
        method: HTTP method
        path: Request path as received; the query string is ignored
        body: Raw body bytes, or None
        now_ms: Server clock in milliseconds, defaults to wall-clock time
        max_skew_ms: Allowed distance between the timestamp and ``now_ms``

    Returns:
        The verified wallet address

    Raises:
        AuthInvalidError: If a header is missing, stale or does not verify
    """
    lowered = _lower_keys(headers)
    address = lowered.get(HEADER_ADDRESS)
    signature = lowered.get(HEADER_SIGNATURE)
    timestamp_raw = lowered.get(HEADER_TIMESTAMP)
    if not address or not signature or not timestamp_raw:
        raise AuthInvalidError("Missing wallet authentication headers")

    try:
        timestamp = int(timestamp_raw)
    except ValueError:
        raise AuthInvalidError(f"Invalid timestamp header: {timestamp_raw!r}")
    now = _now_ms() if now_ms is None else now_ms
    if abs(now - timestamp) > max_skew_ms:
        raise AuthInvalidError(
            "Request timestamp outside the allowed window",
            context={"timestamp": timestamp, "now": now, "max_skew_ms": max_skew_ms},
        )

    message = build_canonical_message(method, path, body, timestamp)
    if address.startswith("0x"):
        verified = _verify_evm(address, signature, message)
    else:
        verified = _verify_solana(address, signature, message)
    logger.debug("Verified %s %s from %s", method.upper(), path, truncate_address(verified))
    return verified


def _verify_evm(address: str, signature: str, message: str) -> str:
    if not Web3.is_address(address):
        raise AuthInvalidError(f"Invalid EVM address: {address}")
    try:
        raw = bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
    except ValueError:
        raise AuthInvalidError("Signature is not hex")
    if len(raw) != 65:
        raise AuthInvalidError(f"Signature must be 65 bytes, got {len(raw)}")

    v = raw[64]
    if v in (0, 1):
        v += LEGACY_V_OFFSET
    if v not in (27, 28):
        raise AuthInvalidError(f"Invalid signature recovery id: {raw[64]}")

    try:
        recovered = Account.recover_message(encode_defunct(text=message), signature=raw[:64] + bytes([v]))
    except ValueError as e:
        raise AuthInvalidError(f"Signature recovery failed: {e}")
    if recovered.lower() != address.lower():
        raise AuthInvalidError("Signature does not match wallet address")
    return Web3.to_checksum_address(address)


def _decode_solana_signature(signature: str) -> bytes:
    try:
        raw = base58.b58decode(signature)
        if len(raw) == 64:
            return raw
    except ValueError:
        pass
    try:
        raw = base64.b64decode(signature, validate=True)
    except (ValueError, binascii.Error):
        raise AuthInvalidError("Signature is neither base58 nor base64")
    if len(raw) != 64:
        raise AuthInvalidError(f"Signature must be 64 bytes, got {len(raw)}")
    return raw


def _verify_solana(address: str, signature: str, message: str) -> str:
    try:
        public_key = base58.b58decode(address)
    except ValueError:
        raise AuthInvalidError(f"Invalid Solana address: {address}")
    if len(public_key) != 32:
        raise AuthInvalidError(f"Invalid Solana address: {address}")

    raw = _decode_solana_signature(signature)
    try:
        nacl.signing.VerifyKey(public_key).verify(message.encode("utf-8"), raw)
    except nacl.exceptions.BadSignatureError:
        raise AuthInvalidError("Signature does not match wallet address")
    return address


def build_payment_challenge(
    options: Iterable[Union[PaymentOption, Dict[str, Any]]],
    error: str = "Payment required",
    version: int = 1,
) -> Dict[str, Any]:
    """
    Build a 402 response body.

    Options are emitted in x402 spelling (``maxAmountRequired``, ``payTo``).
    """
    accepts = []
    for option in options:
        if not isinstance(option, PaymentOption):
            option = PaymentOption.model_validate(option)
        entry = option.model_dump(by_alias=True, exclude_none=True)
        entry["maxAmountRequired"] = entry.pop("amount")
        entry["payTo"] = entry.pop("recipient")
        accepts.append(entry)
    return {"x402Version": version, "error": error, "accepts": accepts}


def read_payment_proof(headers: Mapping[str, str]) -> Optional[PaymentProof]:
    """
    Read the ``x-payment`` proof of a paid retry.

    Returns:
        The proof, or None if the request carries none

    Raises:
        PaymentRejectedError: If the header is present but malformed
    """
    value = _lower_keys(headers).get(HEADER_PAYMENT)
    if not value:
        return None
    try:
        return PaymentProof.decode(value)
    except ValueError as e:
        raise PaymentRejectedError(f"Malformed payment proof: {e}")


def encode_settlement_response(transaction: str, network: str, payer: str) -> str:
    """Value of the ``PAYMENT-RESPONSE`` header for a settled payment."""
    return SettlementResponse(transaction=transaction, network=network, payer=payer, success=True).encode()
