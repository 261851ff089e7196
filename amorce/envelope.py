"""
Signed request structures for both protocol generations.

NATP 0.1 (``ProtocolGeneration.ENVELOPE``) embeds the signature inside an
envelope that carries sender, payload and settlement metadata. AATP 0.1
(``ProtocolGeneration.FLAT``) sends a flat request body and a detached
signature over that body's canonical bytes in the ``X-Agent-Signature``
header. One client speaks exactly one generation.
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from .canonical import canonicalize
from .errors import SecurityError, ValidationError
from .identity import IdentityManager, pem_to_public_key

NATP_VERSION = "0.1.0"


class Priority(str, Enum):
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def parse(cls, value: Union["Priority", str]) -> "Priority":
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(p.value for p in cls)
            raise ValidationError(f"invalid priority {value!r}, expected one of: {allowed}") from None


class ProtocolGeneration(str, Enum):
    FLAT = "aatp-0.1"
    ENVELOPE = "natp-0.1"


@dataclass
class SenderInfo:
    public_key: str
    agent_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"public_key": self.public_key}
        if self.agent_id is not None:
            d["agent_id"] = self.agent_id
        return d


@dataclass
class SettlementInfo:
    amount: float = 0
    currency: str = "USD"
    facilitation_fee: float = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"amount": self.amount, "currency": self.currency, "facilitation_fee": self.facilitation_fee}


@dataclass
class Envelope:
    sender: SenderInfo
    payload: Dict[str, Any]
    priority: Priority = Priority.NORMAL
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)
    settlement: SettlementInfo = field(default_factory=SettlementInfo)
    natp_version: str = NATP_VERSION
    signature: Optional[str] = None

    def to_dict(self, include_signature: bool = True) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "natp_version": self.natp_version,
            "id": self.id,
            "priority": Priority.parse(self.priority).value,
            "timestamp": self.timestamp,
            "sender": self.sender.to_dict(),
            "payload": self.payload,
            "settlement": self.settlement.to_dict(),
        }
        if include_signature and self.signature is not None:
            d["signature"] = self.signature
        return d

    def signing_bytes(self) -> bytes:
        # everything except the signature itself
        return canonicalize(self.to_dict(include_signature=False))

    def to_json_bytes(self) -> bytes:
        return canonicalize(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Envelope":
        """Rebuild an envelope received over the wire, before verification."""
        if not isinstance(data, dict):
            raise ValidationError("envelope must be a JSON object")
        sender = data.get("sender")
        if not isinstance(sender, dict) or not isinstance(sender.get("public_key"), str):
            raise ValidationError("envelope sender.public_key is required")
        payload = data.get("payload")
        if not isinstance(payload, dict):
            raise ValidationError("envelope payload must be an object")
        for name in ("id", "timestamp"):
            if name not in data:
                raise ValidationError(f"envelope {name} is required")
        settlement = data.get("settlement") or {}
        if not isinstance(settlement, dict):
            raise ValidationError("envelope settlement must be an object")
        return cls(
            sender=SenderInfo(public_key=sender["public_key"], agent_id=sender.get("agent_id")),
            payload=payload,
            priority=Priority.parse(data.get("priority", Priority.NORMAL.value)),
            id=data["id"],
            timestamp=data["timestamp"],
            settlement=SettlementInfo(
                amount=settlement.get("amount", 0),
                currency=settlement.get("currency", "USD"),
                facilitation_fee=settlement.get("facilitation_fee", 0),
            ),
            natp_version=data.get("natp_version", NATP_VERSION),
            signature=data.get("signature"),
        )

    @classmethod
    def from_json(cls, raw: Union[bytes, str]) -> "Envelope":
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise ValidationError("envelope is not valid JSON") from exc
        return cls.from_dict(data)


def build_envelope(sender: SenderInfo, payload: Dict[str, Any], priority: Union[Priority, str] = Priority.NORMAL) -> Envelope:
    return Envelope(sender=sender, payload=payload, priority=Priority.parse(priority))


def sign_envelope(envelope: Envelope, identity: IdentityManager) -> Envelope:
    envelope.signature = identity.sign(envelope.signing_bytes())
    return envelope


def verify_envelope(envelope: Envelope) -> bool:
    """Check the embedded signature against the envelope's own sender key.

    Raises ValidationError when the envelope was never signed; any other
    mismatch (tampered field, foreign key, garbage signature) returns False.
    """
    if not envelope.signature:
        raise ValidationError("envelope has no signature")
    try:
        public_key = pem_to_public_key(envelope.sender.public_key)
    except SecurityError:
        return False
    return IdentityManager.verify(envelope.signing_bytes(), envelope.signature, public_key)


@dataclass
class TransactionRequest:
    service_id: str
    consumer_agent_id: str
    payload: Dict[str, Any]
    priority: Priority = Priority.NORMAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_id": self.service_id,
            "consumer_agent_id": self.consumer_agent_id,
            "payload": self.payload,
            "priority": Priority.parse(self.priority).value,
        }

    def signing_bytes(self) -> bytes:
        return canonicalize(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransactionRequest":
        if not isinstance(data, dict):
            raise ValidationError("transaction request must be a JSON object")
        extra = set(data.keys()) - {"service_id", "consumer_agent_id", "payload", "priority"}
        if extra:
            raise ValidationError(f"unknown transaction request keys: {sorted(extra)}")
        for name in ("service_id", "consumer_agent_id", "payload", "priority"):
            if name not in data:
                raise ValidationError(f"transaction request {name} is required")
        return cls(
            service_id=data["service_id"],
            consumer_agent_id=data["consumer_agent_id"],
            payload=data["payload"],
            priority=Priority.parse(data["priority"]),
        )


@dataclass
class SignedRequest:
    body: bytes
    signature: str


def sign_transaction_request(request: TransactionRequest, identity: IdentityManager) -> SignedRequest:
    body = request.signing_bytes()
    return SignedRequest(body=body, signature=identity.sign(body))


def verify_transaction_request(
    request: Union[TransactionRequest, Dict[str, Any], bytes],
    signature: str,
    public_key: Union[bytes, str],
) -> bool:
    """Receiver-side check of a detached header signature.

    The body is parsed and rebuilt into a TransactionRequest so that the
    canonical bytes are re-derived rather than trusted as sent.
    """
    if not signature:
        raise ValidationError("missing X-Agent-Signature")
    if isinstance(request, (bytes, bytearray)):
        try:
            request = json.loads(bytes(request))
        except ValueError as exc:
            raise ValidationError("transaction request is not valid JSON") from exc
    if isinstance(request, dict):
        request = TransactionRequest.from_dict(request)
    return IdentityManager.verify(request.signing_bytes(), signature, public_key)
