from .canonical import (
    canonical_sha256_hex,
    canonicalize,
    sha256_hex,
    stable_json,
)
from .client import (
    SDK_VERSION,
    AmorceClient,
    AsyncAmorceClient,
)
from .config import AmorceConfig
from .envelope import (
    NATP_VERSION,
    Envelope,
    Priority,
    ProtocolGeneration,
    SenderInfo,
    SettlementInfo,
    SignedRequest,
    TransactionRequest,
    build_envelope,
    sign_envelope,
    sign_transaction_request,
    verify_envelope,
    verify_transaction_request,
)
from .errors import (
    AmorceError,
    APIError,
    ConfigurationError,
    NetworkError,
    SecurityError,
    ValidationError,
)
from .identity import (
    EnvKeyProvider,
    FileKeyProvider,
    IdentityManager,
    KeyProvider,
    StaticKeyProvider,
    agent_id_from_pem,
    pem_to_public_key,
    public_key_to_pem,
)
from .models import (
    ServiceContract,
    TransactionResponse,
    TransactionResult,
)
from .transport import (
    AsyncResilientTransport,
    Outcome,
    ResilientTransport,
    RetryConfig,
    classify,
    new_idempotency_key,
)

__all__ = [
    "SDK_VERSION",
    "NATP_VERSION",
    "AmorceClient",
    "AsyncAmorceClient",
    "AmorceConfig",
    "IdentityManager",
    "KeyProvider",
    "StaticKeyProvider",
    "EnvKeyProvider",
    "FileKeyProvider",
    "public_key_to_pem",
    "pem_to_public_key",
    "agent_id_from_pem",
    "canonicalize",
    "stable_json",
    "sha256_hex",
    "canonical_sha256_hex",
    "Priority",
    "ProtocolGeneration",
    "Envelope",
    "SenderInfo",
    "SettlementInfo",
    "TransactionRequest",
    "SignedRequest",
    "build_envelope",
    "sign_envelope",
    "verify_envelope",
    "sign_transaction_request",
    "verify_transaction_request",
    "ServiceContract",
    "TransactionResponse",
    "TransactionResult",
    "RetryConfig",
    "Outcome",
    "classify",
    "ResilientTransport",
    "AsyncResilientTransport",
    "new_idempotency_key",
    "AmorceError",
    "APIError",
    "ConfigurationError",
    "NetworkError",
    "SecurityError",
    "ValidationError",
]
