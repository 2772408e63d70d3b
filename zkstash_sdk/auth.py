"""
Request authentication headers.
"""
import logging
from typing import Callable, Dict, Optional

from .canonical import Body, build_canonical_message
from .signer import Signer
from .utils import now_ms, truncate_address

logger = logging.getLogger(__name__)

HEADER_ADDRESS = "x-wallet-address"
HEADER_SIGNATURE = "x-wallet-signature"
HEADER_TIMESTAMP = "x-wallet-timestamp"
HEADER_PAYMENT = "x-payment"

# Server rejects timestamps further than this from its own clock
SIGNATURE_MAX_SKEW_MS = 2 * 60 * 1000


class RequestAuthenticator:
    """
    Signs outbound requests with the wallet identity.

    A fresh timestamp is taken on every call, so the headers must be rebuilt
    for each attempt, including the paid retry.
    """

    def __init__(self, signer: Signer, clock: Optional[Callable[[], int]] = None):
        """
        Args:
            signer: Wallet signer
            clock: Millisecond clock, defaults to wall-clock time
        """
        self.signer = signer
        self._clock = clock or now_ms

    @property
    def address(self) -> str:
        return self.signer.address

    def build_headers(self, method: str, path: str, body: Body = None) -> Dict[str, str]:
        """
        Build the signed identity headers for one request attempt.

        Args:
            method: HTTP method
            path: Request path (query string allowed, it is not signed)
            body: Exact body bytes that will be sent, or None

        Returns:
            Header dict; includes Content-Type when a body is present
        """
        timestamp = self._clock()
        message = build_canonical_message(method, path, body, timestamp)
        signed = self.signer.sign_message(message)

        headers = {
            HEADER_ADDRESS: signed.address,
            HEADER_SIGNATURE: signed.signature,
            HEADER_TIMESTAMP: str(timestamp),
        }
        if body:
            headers["Content-Type"] = "application/json"

        logger.debug(
            "Signed %s %s as %s at %d",
            method.upper(), path, truncate_address(signed.address), timestamp
        )
        return headers
