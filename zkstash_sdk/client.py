"""
ZkStashClient - wallet-authenticated, pay-per-call client for the zkStash memory API.
"""
import logging
import os
import urllib.parse
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Sequence, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .attestation import AttestationVerifier, ServerKeyCache
from .auth import RequestAuthenticator
from .challenge import DEFAULT_NETWORK_PREFERENCE
from .deadline import Deadline
from .exceptions import ZkStashError
from .models import (
    CreateMemoriesRequest, CreateMemoriesResponse,
    SearchMemoriesRequest, SearchMemoriesResponse
)
from .orchestrator import CallResult, PaymentFlow
from .settlement import DEFAULT_CONFIRMATION_TIMEOUT, SettlementExecutor, create_executor
from .signer import ChainFamily, Signer
from .signer.ec_constants import RECOVERY_ENCODINGS
from .signer.evm import EvmSigner
from .signer.solana import SIGNATURE_ENCODINGS, SolanaSigner
from .utils import truncate_address, validate_service_url

DEFAULT_API_URL = "https://api.zkstash.ai"

SearchInput = Union[SearchMemoriesRequest, Dict[str, Any], str]


class ZkStashClient:
    """
    Client for the zkStash memory service.

    This client handles:
    1. Signing every request with the wallet identity
    2. Paying HTTP 402 challenges on-chain (EVM or Solana)
    3. Retrying the paid request once with the payment proof
    4. Creating and searching memories
    """

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        evm_private_key: Optional[str] = None,
        solana_private_key: Optional[str] = None,
        network_preference: Optional[Sequence[str]] = None,
        recovery_encoding: str = "legacy",
        signature_encoding: str = "base58",
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        rpc_urls: Optional[Dict[str, str]] = None,
        retry_count: int = 3,
        timeout: float = 30,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the ZkStashClient

        When both keys are given, requests are authenticated with the EVM
        wallet and either wallet can pay, depending on the selected network.

        Args:
            api_url: zkStash API root (e.g., "https://api.zkstash.ai")
            evm_private_key: Hex secp256k1 key (optional if solana_private_key provided)
            solana_private_key: Base58 or JSON-array Ed25519 key
            network_preference: Accepted payment networks, most preferred first
            recovery_encoding: EVM signature ``v`` encoding, "legacy" (27/28) or "raw" (0/1)
            signature_encoding: Solana signature encoding, "base58" or "base64"
            confirmation_timeout: Max seconds to wait for a payment to confirm
            rpc_urls: Per-network RPC overrides
            retry_count: Number of retries for idempotent HTTP requests
            timeout: Timeout for HTTP requests in seconds
            logger: Optional logger instance to use for debug/info logging

        Raises:
            ValueError: If no key is provided or the API URL is not https
            InvalidKeyError: If a key is malformed
        """
        if not evm_private_key and not solana_private_key:
            raise ValueError("Either evm_private_key or solana_private_key must be provided")
        validate_service_url("api_url", api_url)

        self.api_url = api_url.rstrip("/")
        self.logger = logger or logging.getLogger(__name__)
        self.timeout = timeout

        signers: List[Signer] = []
        if evm_private_key:
            signers.append(EvmSigner(evm_private_key, recovery_encoding=recovery_encoding))
        if solana_private_key:
            signers.append(SolanaSigner(solana_private_key, signature_encoding=signature_encoding))
        self._signer = signers[0]

        executor_options = {"confirmation_timeout": confirmation_timeout, "rpc_urls": rpc_urls}
        self._executors: Dict[str, SettlementExecutor] = {
            signer.chain_family.value: create_executor(signer, **executor_options) for signer in signers
        }

        # Setup HTTP session with retries; only GET is retried since a
        # replayed POST could be charged twice
        self.session = requests.Session()
        retries = Retry(
            total=retry_count,
            backoff_factor=0.5,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
            connect=retry_count,
            read=retry_count,
            other=retry_count
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))

        self.authenticator = RequestAuthenticator(self._signer)
        self.flow = PaymentFlow(
            self.session,
            self.api_url,
            self.authenticator,
            self._executors,
            preferences=tuple(network_preference or DEFAULT_NETWORK_PREFERENCE),
            timeout=timeout,
        )
        self.server_keys = ServerKeyCache(self.session, self.api_url, timeout=timeout)
        self._attestations = AttestationVerifier(self.server_keys)

        self.logger.info(
            "zkStash client for %s as %s (%s), paying on %s",
            self.api_url, truncate_address(self.address), self.chain_family.value, sorted(self._executors)
        )

    @classmethod
    def from_env(cls, **overrides: Any) -> "ZkStashClient":
        """
        Build a client from environment variables.

        Reads ``ZKSTASH_API_URL``, ``EVM_PRIVATE_KEY``, ``SOLANA_PRIVATE_KEY``,
        ``ZKSTASH_NETWORK_PREFERENCE`` (comma separated),
        ``ZKSTASH_HTTP_TIMEOUT``, ``ZKSTASH_CONFIRMATION_TIMEOUT`` and
        ``ZKSTASH_SIGNATURE_ENCODING``. Keyword arguments take precedence.

        Raises:
            ValueError: If a value is malformed or no key is set
        """
        kwargs: Dict[str, Any] = {
            "api_url": os.getenv("ZKSTASH_API_URL") or DEFAULT_API_URL,
            "evm_private_key": os.getenv("EVM_PRIVATE_KEY") or None,
            "solana_private_key": os.getenv("SOLANA_PRIVATE_KEY") or None,
        }

        preference = os.getenv("ZKSTASH_NETWORK_PREFERENCE")
        if preference:
            kwargs["network_preference"] = [n.strip() for n in preference.split(",") if n.strip()]

        for env_name, key in (("ZKSTASH_HTTP_TIMEOUT", "timeout"),
                              ("ZKSTASH_CONFIRMATION_TIMEOUT", "confirmation_timeout")):
            value = os.getenv(env_name)
            if value:
                try:
                    kwargs[key] = float(value)
                except ValueError:
                    raise ValueError(f"{env_name} must be a number of seconds, got {value!r}")

        encoding = os.getenv("ZKSTASH_SIGNATURE_ENCODING")
        if encoding:
            encoding = encoding.strip().lower()
            if encoding in RECOVERY_ENCODINGS:
                kwargs["recovery_encoding"] = encoding
            elif encoding in SIGNATURE_ENCODINGS:
                kwargs["signature_encoding"] = encoding
            else:
                raise ValueError(
                    f"ZKSTASH_SIGNATURE_ENCODING must be one of "
                    f"{RECOVERY_ENCODINGS + SIGNATURE_ENCODINGS}, got {encoding!r}"
                )

        kwargs.update(overrides)
        return cls(**kwargs)

    @property
    def address(self) -> str:
        """Wallet address requests are authenticated with."""
        return self._signer.address

    @property
    def chain_family(self) -> ChainFamily:
        return self._signer.chain_family

    def request(
        self,
        method: str,
        path: str,
        body: Union[bytes, str, None] = None,
        deadline: Optional[Deadline] = None,
    ) -> CallResult:
        """
        Send a signed request, paying a 402 challenge if one is returned.

        Failures are reported in the returned result; call
        ``raise_for_error()`` on it to turn them into exceptions.
        """
        return self.flow.run(method, path, body, deadline=deadline)

    def create_memories(
        self,
        request: Union[CreateMemoriesRequest, Dict[str, Any]],
        deadline: Optional[Deadline] = None,
    ) -> CreateMemoriesResponse:
        """
        Store memories, either extracted from a conversation or given directly.

        Args:
            request: Request model or its JSON-shaped dict
            deadline: Bounds any payment confirmation wait

        Returns:
            Created and updated memories

        Raises:
            ValueError: If the request is invalid (nothing is sent)
            ZkStashError: If the call failed
        """
        if not isinstance(request, CreateMemoriesRequest):
            request = CreateMemoriesRequest.model_validate(request)
        result = self.request("POST", "/memories", request.to_body(), deadline=deadline).raise_for_error()
        response = CreateMemoriesResponse.model_validate(result.body or {})
        self.logger.info(
            "Created %d and updated %d memories", len(response.created), len(response.updated)
        )
        return response

    def search_memories(
        self,
        request: SearchInput,
        deadline: Optional[Deadline] = None,
    ) -> SearchMemoriesResponse:
        """
        Search stored memories.

        Args:
            request: Request model, its dict form, or a bare query string
            deadline: Bounds any payment confirmation wait

        Raises:
            ZkStashError: If the call failed
        """
        request = _as_search_request(request)
        path = "/memories/search?" + urllib.parse.urlencode(request.to_query_params())
        result = self.request("GET", path, deadline=deadline).raise_for_error()
        response = SearchMemoriesResponse.model_validate(result.body or {})
        self.logger.debug("Search %r returned %d memories", request.query, len(response.memories))
        return response

    def search_memories_batch(
        self,
        requests_: Sequence[SearchInput],
        max_workers: int = 4,
        deadline: Optional[Deadline] = None,
    ) -> List[Union[SearchMemoriesResponse, ZkStashError]]:
        """
        Run independent searches concurrently.

        Each search is its own logical call, so each may pay its own challenge.

        Returns:
            One entry per request, in order: the response, or the error that
            call failed with
        """
        def _one(item: SearchInput) -> Union[SearchMemoriesResponse, ZkStashError]:
            try:
                return self.search_memories(item, deadline=deadline)
            except ZkStashError as e:
                return e

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            return list(pool.map(_one, requests_))

    def verify_attestation(self, token: str) -> Dict[str, Any]:
        """
        Verify a server-signed attestation JWT and return its claims.

        Raises:
            AuthInvalidError: If the token does not verify
        """
        return self._attestations.verify(token)

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "ZkStashClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def _as_search_request(request: SearchInput) -> SearchMemoriesRequest:
    if isinstance(request, SearchMemoriesRequest):
        return request
    if isinstance(request, str):
        return SearchMemoriesRequest(query=request)
    return SearchMemoriesRequest.model_validate(request)
