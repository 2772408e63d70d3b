"""
Data models for the zkStash SDK.
"""
import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .utils import decode_json_b64, encode_json_b64

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────
#  x402 wire models
# ─────────────────────────────────────────────────────────────────────────

def _merge_synonyms(data: Dict[str, Any], canonical: str, legacy: str) -> None:
    """Fold ``legacy`` into ``canonical``; the legacy spelling wins on conflict."""
    legacy_value = data.get(legacy)
    canonical_value = data.get(canonical)
    if legacy_value in (None, ""):
        return
    if canonical_value not in (None, "") and str(canonical_value) != str(legacy_value):
        logger.warning(
            "Payment option has conflicting '%s'=%r and '%s'=%r; using '%s'",
            canonical, canonical_value, legacy, legacy_value, legacy
        )
    data[canonical] = legacy_value


class PaymentOption(BaseModel):
    """
    One acceptable settlement from a 402 challenge.

    The challenge schema is not stable across server versions: the amount may
    be sent as ``amount`` or ``maxAmountRequired`` and the recipient as
    ``recipient`` or ``payTo``. Both spellings are accepted. When both are
    present the x402 spelling (``maxAmountRequired`` / ``payTo``) is used, as
    that is what the settlement is made against.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    network: str
    amount: str
    recipient: str
    token: Optional[str] = None
    scheme: str = "exact"
    asset: Optional[str] = None
    resource: Optional[str] = None
    description: Optional[str] = None
    max_timeout_seconds: Optional[int] = Field(None, alias="maxTimeoutSeconds")
    extra: Optional[Dict[str, Any]] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_field_variants(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        _merge_synonyms(data, "amount", "maxAmountRequired")
        _merge_synonyms(data, "recipient", "payTo")
        data.pop("maxAmountRequired", None)
        data.pop("payTo", None)
        if isinstance(data.get("amount"), (int, float, Decimal)):
            data["amount"] = str(data["amount"])
        return data

    @field_validator("amount")
    @classmethod
    def _amount_is_decimal(cls, v: str) -> str:
        try:
            value = Decimal(v)
        except InvalidOperation:
            raise ValueError(f"amount must be a decimal string, got {v!r}")
        if not value.is_finite() or value < 0:
            raise ValueError(f"amount must be a non-negative decimal, got {v!r}")
        return v.strip()

    @field_validator("network", "recipient")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    def atomic_amount(self, decimals: int) -> int:
        """
        Amount in the token's smallest unit.

        Integer strings are already atomic units (x402 convention). Strings
        with a decimal point are token units and are scaled by ``decimals``.

        Raises:
            ValueError: If the scaled amount has more precision than the token
        """
        if "." not in self.amount:
            return int(self.amount)
        scaled = Decimal(self.amount) * (Decimal(10) ** decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(f"Amount {self.amount} exceeds {decimals} decimals of precision")
        return int(scaled)

    @property
    def unknown_fields(self) -> List[str]:
        """Fields the SDK does not recognize, kept for diagnostics."""
        return sorted((self.model_extra or {}).keys())


class PaymentChallenge(BaseModel):
    """Body of a 402 Payment Required response."""
    model_config = ConfigDict(populate_by_name=True)

    x402_version: int = Field(1, alias="x402Version")
    error: str = ""
    accepts: List[PaymentOption] = Field(default_factory=list)


class PaymentProof(BaseModel):
    """
    Evidence of settlement sent in the ``x-payment`` header.

    Built fresh for a single retry and never reused.
    """
    model_config = ConfigDict(populate_by_name=True)

    scheme: str = "exact"
    network: str
    asset: str
    amount: str
    pay_to: str = Field(..., alias="payTo")
    tx: str

    def encode(self) -> str:
        """Base64 of the compact JSON object."""
        return encode_json_b64(self.model_dump(by_alias=True))

    @classmethod
    def decode(cls, header: str) -> "PaymentProof":
        """
        Parse an ``x-payment`` header value.

        Raises:
            ValueError: If the header is not a valid proof
        """
        return cls.model_validate(decode_json_b64(header))


class SettlementResponse(BaseModel):
    """Settlement confirmation a server may return in PAYMENT-RESPONSE."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    transaction: str = ""
    network: str = ""
    payer: str = ""
    success: Optional[bool] = None
    error_reason: Optional[str] = Field(None, alias="errorReason")

    def encode(self) -> str:
        return encode_json_b64(self.model_dump(by_alias=True, exclude_none=True))


class SettlementReceipt(BaseModel):
    """Confirmed on-chain transfer"""
    model_config = ConfigDict(populate_by_name=True)

    tx_hash: str
    network: str
    payer: str
    status: int = 1
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    slot: Optional[int] = None


# ─────────────────────────────────────────────────────────────────────────
#  Memory API models
# ─────────────────────────────────────────────────────────────────────────

class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class ConversationMessage(_ApiModel):
    role: str
    content: str
    id: Optional[str] = None


class DirectMemory(_ApiModel):
    kind: str
    data: Dict[str, Any]
    id: Optional[str] = None
    ttl: Optional[str] = None
    expires_at: Optional[int] = Field(None, alias="expiresAt")


class CreateMemoriesRequest(_ApiModel):
    """
    Body of ``POST /memories``.

    Either ``conversation`` (extraction mode) or ``memories`` (direct mode)
    must be provided.
    """
    agent_id: str = Field(..., alias="agentId")
    subject_id: Optional[str] = Field(None, alias="subjectId")
    conversation: Optional[List[ConversationMessage]] = None
    memories: Optional[List[DirectMemory]] = None
    thread_id: Optional[str] = Field(None, alias="threadId")
    schemas: Optional[List[str]] = None
    ttl: Optional[str] = None
    expires_at: Optional[int] = Field(None, alias="expiresAt")

    @field_validator("agent_id")
    @classmethod
    def _agent_id_required(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("agentId is required")
        return v

    @model_validator(mode="after")
    def _has_content(self) -> "CreateMemoriesRequest":
        if not self.conversation and not self.memories:
            raise ValueError("either conversation or memories must be provided")
        return self

    def to_body(self) -> bytes:
        """Compact JSON body; these exact bytes are hashed into the signature."""
        payload = self.model_dump(by_alias=True, exclude_none=True)
        return json.dumps(payload, separators=(",", ":")).encode("utf-8")


class Memory(_ApiModel):
    id: Optional[str] = None
    kind: str = ""
    data: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None


class CreateMemoriesResponse(_ApiModel):
    success: bool = False
    created: List[Memory] = Field(default_factory=list)
    updated: List[Memory] = Field(default_factory=list)


class SearchMemoriesRequest(_ApiModel):
    """Query of ``GET /memories/search``."""
    query: str
    agent_id: Optional[str] = Field(None, alias="agentId")
    subject_id: Optional[str] = Field(None, alias="subjectId")
    thread_id: Optional[str] = Field(None, alias="threadId")
    kind: Optional[str] = None
    tags: Optional[str] = None
    limit: Optional[int] = None
    mode: Optional[str] = None
    scope: Optional[str] = None

    def to_query_params(self) -> Dict[str, str]:
        """Non-empty parameters only, in wire spelling."""
        params = self.model_dump(by_alias=True, exclude_none=True)
        return {
            key: str(value) for key, value in params.items()
            if value != "" and not (key == "limit" and value <= 0)
        }


class SearchMemoriesResponse(_ApiModel):
    success: bool = False
    memories: List[Memory] = Field(default_factory=list)
    searched_at: Optional[str] = Field(None, alias="searchedAt")
