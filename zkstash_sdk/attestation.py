"""
Verification of server-signed attestations.

The server signs attestations (EdDSA JWTs) with an Ed25519 key it publishes
at ``/attestations/public-key``. The key is fetched lazily and kept per
client; a signature failure triggers one refetch in case the key rotated.
"""
import logging
import threading
from typing import Any, Dict, Optional

import base58
import jwt
import requests
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from .exceptions import AuthInvalidError, ServerError

logger = logging.getLogger(__name__)

PUBLIC_KEY_PATH = "/attestations/public-key"


class ServerKeyCache:
    """Lazily fetched server public key with explicit invalidation."""

    def __init__(
        self,
        session: requests.Session,
        base_url: str,
        path: str = PUBLIC_KEY_PATH,
        timeout: float = 30,
    ):
        self.session = session
        self.url = f"{base_url.rstrip('/')}{path}"
        self.timeout = timeout
        self._key: Optional[Ed25519PublicKey] = None
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._key is not None

    def get_key(self) -> Ed25519PublicKey:
        """
        Return the cached key, fetching it on first use.

        Raises:
            ServerError: If the key cannot be fetched or decoded
        """
        with self._lock:
            if self._key is None:
                self._key = self._fetch()
            return self._key

    def invalidate(self) -> None:
        with self._lock:
            self._key = None
        logger.debug("Server attestation key invalidated")

    def _fetch(self) -> Ed25519PublicKey:
        try:
            response = self.session.get(self.url, timeout=self.timeout)
        except requests.RequestException as e:
            raise ServerError(f"Failed to fetch server public key: {e}", status_code=0)
        if response.status_code != 200:
            raise ServerError(
                f"Failed to fetch server public key: HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        try:
            encoded = response.json()["publicKey"]
            key = Ed25519PublicKey.from_public_bytes(base58.b58decode(encoded))
        except (ValueError, KeyError, TypeError) as e:
            raise ServerError(f"Invalid server public key response: {e}", status_code=response.status_code)
        logger.info("Fetched server attestation key %s", encoded)
        return key


class AttestationVerifier:
    """Decodes and verifies attestation tokens against a :class:`ServerKeyCache`."""

    def __init__(self, cache: ServerKeyCache, leeway: float = 0):
        self.cache = cache
        self.leeway = leeway

    def verify(self, token: str) -> Dict[str, Any]:
        """
        Verify an attestation JWT.

        Args:
            token: Compact JWT signed with EdDSA

        Returns:
            Decoded claims

        Raises:
            AuthInvalidError: If the token is malformed, expired or not signed
                by the current server key
            ServerError: If the server key cannot be fetched
        """
        try:
            return self._decode(token)
        except jwt.InvalidSignatureError:
            logger.info("Attestation signature mismatch, refreshing server key")
            self.cache.invalidate()
        except jwt.InvalidTokenError as e:
            raise AuthInvalidError(f"Invalid attestation: {e}")

        try:
            return self._decode(token)
        except jwt.InvalidTokenError as e:
            raise AuthInvalidError(f"Invalid attestation: {e}")

    def _decode(self, token: str) -> Dict[str, Any]:
        return jwt.decode(
            token,
            key=self.cache.get_key(),
            algorithms=["EdDSA"],
            leeway=self.leeway,
            options={"verify_aud": False},
        )
