"""
Payment proof assembly and settlement response decoding.
"""
import logging
from typing import Mapping, Optional

from .models import PaymentOption, PaymentProof, SettlementReceipt, SettlementResponse
from .utils import decode_json_b64

logger = logging.getLogger(__name__)

PAYMENT_RESPONSE_HEADERS = ("PAYMENT-RESPONSE", "X-PAYMENT-RESPONSE")


def assemble_proof(option: PaymentOption, receipt: SettlementReceipt, asset: str) -> PaymentProof:
    """
    Build the ``x-payment`` proof for a confirmed transfer.

    Network, amount and recipient are echoed exactly as the server offered
    them, so the proof matches the offer even when the network was given by
    its CAIP-2 id or an alias.

    Args:
        option: Option that was settled
        receipt: Confirmed settlement
        asset: Token contract or mint that was transferred

    Returns:
        Proof ready to be encoded into the retry headers
    """
    proof = PaymentProof(
        scheme=option.scheme or "exact",
        network=option.network,
        asset=asset,
        amount=option.amount,
        payTo=option.recipient,
        tx=receipt.tx_hash,
    )
    logger.debug("Assembled payment proof for %s on %s", proof.tx, proof.network)
    return proof


def decode_settlement_response(headers: Mapping[str, str]) -> Optional[SettlementResponse]:
    """
    Read the server's settlement confirmation, if it sent one.

    ``PAYMENT-RESPONSE`` is preferred over the older ``X-PAYMENT-RESPONSE``.
    A malformed header is logged and ignored; the call has already succeeded.
    """
    for name in PAYMENT_RESPONSE_HEADERS:
        value = headers.get(name)
        if not value:
            continue
        try:
            return SettlementResponse.model_validate(decode_json_b64(value))
        except ValueError as e:
            logger.warning("Ignoring malformed %s header: %s", name, e)
            return None
    return None
