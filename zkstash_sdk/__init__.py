"""
zkStash SDK - wallet-authenticated, pay-per-call access to the zkStash memory API.
"""
from .version import __version__
from .client import ZkStashClient
from .deadline import Deadline
from .orchestrator import CallResult, FlowState, PaymentFlow
from .signer import ChainFamily, Signer, create_signer
from .signer.evm import EvmSigner
from .signer.solana import SolanaSigner
from .settlement import SettlementExecutor, create_executor
from .models import (
    PaymentOption, PaymentChallenge, PaymentProof, SettlementResponse, SettlementReceipt,
    ConversationMessage, DirectMemory, CreateMemoriesRequest, CreateMemoriesResponse,
    Memory, SearchMemoriesRequest, SearchMemoriesResponse
)
from .exceptions import (
    ErrorKind, ZkStashError, InvalidKeyError, AuthInvalidError, UnsupportedNetworkError,
    ChallengeParseError, PaymentFailedError, RpcUnavailableError, TransactionRevertedError,
    ConfirmationTimeoutError, PaymentRejectedError, ServerError
)

__all__ = [
    "ZkStashClient",
    "Deadline",
    "CallResult",
    "FlowState",
    "PaymentFlow",
    "ChainFamily",
    "Signer",
    "create_signer",
    "EvmSigner",
    "SolanaSigner",
    "SettlementExecutor",
    "create_executor",
    "PaymentOption",
    "PaymentChallenge",
    "PaymentProof",
    "SettlementResponse",
    "SettlementReceipt",
    "ConversationMessage",
    "DirectMemory",
    "CreateMemoriesRequest",
    "CreateMemoriesResponse",
    "Memory",
    "SearchMemoriesRequest",
    "SearchMemoriesResponse",
    "ErrorKind",
    "ZkStashError",
    "InvalidKeyError",
    "AuthInvalidError",
    "UnsupportedNetworkError",
    "ChallengeParseError",
    "PaymentFailedError",
    "RpcUnavailableError",
    "TransactionRevertedError",
    "ConfirmationTimeoutError",
    "PaymentRejectedError",
    "ServerError",
    "__version__",
]
