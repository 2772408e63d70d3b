"""
Pay-per-call request flow.

One logical call is driven through an explicit state machine::

    SENDING -> CHALLENGED -> SETTLING -> RETRYING -> DONE
        \\            \\           \\          \\
         `------------`-----------`----------`--> FAILED

A call settles at most once and retries at most once. The outcome, including
the transitions taken, is returned as a :class:`CallResult` instead of being
raised, so callers can inspect a failed payment (``tx_ref``) before deciding
what to do.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import requests

from .auth import HEADER_PAYMENT, RequestAuthenticator
from .challenge import DEFAULT_NETWORK_PREFERENCE, PAYMENT_REQUIRED, parse_challenge, select_option
from .config import NetworkConfig
from .deadline import Deadline
from .exceptions import (
    AuthInvalidError, ConfirmationTimeoutError, PaymentFailedError,
    PaymentRejectedError, ServerError, ZkStashError
)
from .models import PaymentOption, PaymentProof, SettlementReceipt, SettlementResponse
from .proof import assemble_proof, decode_settlement_response
from .settlement import SettlementExecutor

logger = logging.getLogger(__name__)

UNAUTHORIZED = 401


class FlowState(str, Enum):
    SENDING = "SENDING"
    CHALLENGED = "CHALLENGED"
    SETTLING = "SETTLING"
    RETRYING = "RETRYING"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass
class CallResult:
    """Outcome and trace of one logical call."""
    state: FlowState = FlowState.SENDING
    transitions: List[FlowState] = field(default_factory=list)
    attempts: int = 0
    settlements: int = 0
    status_code: Optional[int] = None
    body: Any = None
    option: Optional[PaymentOption] = None
    receipt: Optional[SettlementReceipt] = None
    proof: Optional[PaymentProof] = None
    settlement_response: Optional[SettlementResponse] = None
    tx_ref: Optional[str] = None
    error: Optional[ZkStashError] = None

    @property
    def ok(self) -> bool:
        return self.state is FlowState.DONE

    @property
    def paid(self) -> bool:
        return self.receipt is not None

    def raise_for_error(self) -> "CallResult":
        """Raise the stored error of a failed call, otherwise return self."""
        if self.error is not None:
            raise self.error
        return self


class PaymentFlow:
    """
    Runs signed requests against one service and pays 402 challenges.

    The flow object holds only shared, read-only collaborators; all per-call
    state lives in the :class:`CallResult` created by :meth:`run`, so a
    single flow can serve concurrent calls.
    """

    def __init__(
        self,
        session: requests.Session,
        base_url: str,
        authenticator: RequestAuthenticator,
        executors: Mapping[Any, SettlementExecutor],
        preferences: Sequence[str] = DEFAULT_NETWORK_PREFERENCE,
        timeout: float = 30,
    ):
        """
        Args:
            session: HTTP session (pooled, shared)
            base_url: Service root, without trailing slash
            authenticator: Signs every attempt
            executors: Settlement executors keyed by chain family
            preferences: Accepted networks, most preferred first
            timeout: Per-request HTTP timeout in seconds
        """
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.authenticator = authenticator
        self.executors = {getattr(k, "value", k): v for k, v in executors.items()}
        self.preferences = tuple(preferences)
        self.timeout = timeout

    def run(
        self,
        method: str,
        path: str,
        body: Union[bytes, str, None] = None,
        deadline: Optional[Deadline] = None,
    ) -> CallResult:
        """
        Execute one logical call.

        Args:
            method: HTTP method
            path: Request path, optionally with a query string
            body: Exact request body; the same bytes are sent on the paid retry
            deadline: Bounds the confirmation wait and allows cancelling it

        Returns:
            CallResult in state DONE or FAILED
        """
        if isinstance(body, str):
            body = body.encode("utf-8")
        result = CallResult()

        self._enter(result, FlowState.SENDING)
        response = self._send(result, method, path, body)
        if response is None:
            return result
        if response.status_code != PAYMENT_REQUIRED:
            return self._finish(result, response)

        # 402: pay once, retry once
        self._enter(result, FlowState.CHALLENGED)
        try:
            challenge = parse_challenge(response.content)
            option = select_option(challenge.accepts, self.preferences, supported_families=self.executors)
        except ZkStashError as e:
            return self._fail(result, e)
        result.option = option

        executor = self._executor_for(option)
        if deadline is not None and deadline.expired():
            return self._fail(result, PaymentFailedError("Call cancelled before payment was sent"))

        self._enter(result, FlowState.SETTLING)
        result.settlements += 1
        try:
            receipt = executor.settle(option, deadline)
        except (PaymentFailedError, ConfirmationTimeoutError) as e:
            result.tx_ref = getattr(e, "tx_ref", None) or e.context.get("tx_ref")
            return self._fail(result, e)
        except ZkStashError as e:
            wrapped = PaymentFailedError(f"Payment failed: {e}", context={"cause": e.kind.value, **e.context})
            return self._fail(result, wrapped)
        result.receipt = receipt
        result.tx_ref = receipt.tx_hash
        result.proof = assemble_proof(option, receipt, executor.asset_for(option))

        self._enter(result, FlowState.RETRYING)
        response = self._send(result, method, path, body, {HEADER_PAYMENT: result.proof.encode()})
        if response is None:
            return result
        if response.status_code == PAYMENT_REQUIRED:
            result.status_code = response.status_code
            result.body = _response_body(response)
            return self._fail(result, PaymentRejectedError(
                f"Server rejected payment {result.tx_ref}",
                context={"tx_ref": result.tx_ref, "network": receipt.network},
            ))
        return self._finish(result, response)

    def _executor_for(self, option: PaymentOption) -> SettlementExecutor:
        # select_option only returns options on a family we hold an executor for
        family = NetworkConfig.get_family(NetworkConfig.normalize(option.network))
        return self.executors[family]

    def _send(
        self,
        result: CallResult,
        method: str,
        path: str,
        body: Optional[bytes],
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> Optional[requests.Response]:
        headers = self.authenticator.build_headers(method, path, body)
        if extra_headers:
            headers.update(extra_headers)
        url = f"{self.base_url}{path}"
        result.attempts += 1
        try:
            response = self.session.request(method.upper(), url, data=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Request {method.upper()} {path} failed: {e}")
            self._fail(result, ServerError(f"Request failed: {e}", status_code=0))
            return None
        logger.debug("%s %s -> %d (attempt %d)", method.upper(), path, response.status_code, result.attempts)
        return response

    def _finish(self, result: CallResult, response: requests.Response) -> CallResult:
        result.status_code = response.status_code
        result.body = _response_body(response)
        if 200 <= response.status_code < 300:
            result.settlement_response = decode_settlement_response(response.headers)
            self._enter(result, FlowState.DONE)
            return result
        if response.status_code == UNAUTHORIZED:
            return self._fail(result, AuthInvalidError(
                "Wallet signature rejected", context={"body": result.body}
            ))
        return self._fail(result, ServerError(
            f"Server returned {response.status_code}", status_code=response.status_code, body=result.body
        ))

    def _fail(self, result: CallResult, error: ZkStashError) -> CallResult:
        result.error = error
        self._enter(result, FlowState.FAILED)
        logger.error("Call failed in %s: [%s] %s", result.transitions[-2].value, error.kind.value, error)
        return result

    @staticmethod
    def _enter(result: CallResult, state: FlowState) -> None:
        result.state = state
        result.transitions.append(state)
        logger.debug("Flow state -> %s", state.value)


def _response_body(response: requests.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
