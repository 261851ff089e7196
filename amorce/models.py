from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import ConfigurationError, ValidationError

RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)


@dataclass
class ServiceContract:
    service_id: str
    provider_agent_id: Optional[str] = None
    service_type: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = dict(self.extra)
        d["service_id"] = self.service_id
        if self.provider_agent_id is not None:
            d["provider_agent_id"] = self.provider_agent_id
        if self.service_type is not None:
            d["service_type"] = self.service_type
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceContract":
        if not isinstance(data, dict):
            raise ValidationError("service contract must be a JSON object")
        known = ("service_id", "provider_agent_id", "service_type")
        return cls(
            service_id=data.get("service_id", ""),
            provider_agent_id=data.get("provider_agent_id"),
            service_type=data.get("service_type"),
            extra={k: v for k, v in data.items() if k not in known},
        )

    @classmethod
    def coerce(cls, contract: Any) -> "ServiceContract":
        """Accept a ServiceContract or a plain dict; service_id is mandatory."""
        if isinstance(contract, dict):
            contract = cls.from_dict(contract)
        if not isinstance(contract, ServiceContract):
            raise ConfigurationError("service contract must be a ServiceContract or dict")
        if not isinstance(contract.service_id, str) or not contract.service_id:
            raise ConfigurationError("invalid service contract: missing service_id")
        return contract


@dataclass
class TransactionResult:
    status: str
    message: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


@dataclass
class TransactionResponse:
    transaction_id: str
    status_code: int
    result: Optional[TransactionResult] = None
    error: Optional[str] = None

    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    def is_retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUS_CODES

    @classmethod
    def from_body(cls, status_code: int, body: Any, fallback_transaction_id: str) -> "TransactionResponse":
        if not isinstance(body, dict):
            return cls(
                transaction_id=fallback_transaction_id,
                status_code=status_code,
                result=TransactionResult(status="success", data={"value": body} if body is not None else None),
            )
        tx_id = body.get("transaction_id") or body.get("tx_id") or fallback_transaction_id
        data = body.get("data")
        return cls(
            transaction_id=str(tx_id),
            status_code=status_code,
            result=TransactionResult(
                status=str(body.get("status", "success")),
                message=body.get("message"),
                data=data if isinstance(data, dict) else None,
            ),
            error=body.get("error") if isinstance(body.get("error"), str) else None,
        )
