from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import quote

import httpx

from .config import AmorceConfig, validate_base_url
from .envelope import (
    Priority,
    ProtocolGeneration,
    SenderInfo,
    TransactionRequest,
    build_envelope,
    sign_envelope,
    sign_transaction_request,
)
from .errors import ConfigurationError, ValidationError
from .identity import IdentityManager
from .models import ServiceContract, TransactionResponse
from .transport import (
    AsyncResilientTransport,
    ResilientTransport,
    RetryConfig,
    new_idempotency_key,
)

SDK_VERSION = "0.2.0"

SEARCH_PATH = "/api/v1/services/search"
MANIFEST_PATH = "/api/v1/agents/{agent_id}/manifest"
TRANSACT_PATH = "/v1/a2a/transact"

SIGNATURE_HEADER = "X-Agent-Signature"
AGENT_ID_HEADER = "X-Amorce-Agent-ID"

DEFAULT_TIMEOUT_SECONDS = 10.0

ContractLike = Union[ServiceContract, Dict[str, Any]]


def _check_transport_args(transport: Any, retry: Any, timeout_seconds: Any, http: Any) -> None:
    # retry, timeout_seconds and http only configure the transport built here
    if transport is not None and (retry is not None or timeout_seconds is not None or http is not None):
        raise ConfigurationError("pass retry, timeout_seconds and http to the transport, not alongside it")


class _ClientBase:
    """Request building and response mapping shared by both clients."""

    def __init__(
        self,
        identity: IdentityManager,
        directory_url: str,
        orchestrator_url: str,
        agent_id: Optional[str] = None,
        api_key: Optional[str] = None,
        protocol: Union[ProtocolGeneration, str] = ProtocolGeneration.FLAT,
        headers: Optional[Dict[str, str]] = None,
        logger: Optional[logging.Logger] = None,
        manifest_ttl_seconds: int = 300,
    ):
        if not isinstance(identity, IdentityManager):
            raise ConfigurationError("identity must be an IdentityManager")
        self.identity = identity
        self.directory_url = validate_base_url("directory_url", directory_url)
        self.orchestrator_url = validate_base_url("orchestrator_url", orchestrator_url)
        self.agent_id = agent_id or identity.get_agent_id()
        self.api_key = api_key
        try:
            self.protocol = ProtocolGeneration(protocol)
        except ValueError:
            raise ConfigurationError(f"unknown protocol generation {protocol!r}") from None
        self.headers = headers or {}
        self.log = logger or logging.getLogger("amorce.client")
        self.manifest_ttl_seconds = manifest_ttl_seconds
        self._manifest_cache: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    def _base_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": f"amorce-python-sdk/{SDK_VERSION} {self.protocol.value}",
            **self.headers,
        }

    def _discover_url(self, service_type: str) -> str:
        if not isinstance(service_type, str) or not service_type:
            raise ConfigurationError("service_type is required")
        return f"{self.directory_url}{SEARCH_PATH}?service_type={quote(service_type, safe='')}"

    def _parse_contracts(self, resp: httpx.Response) -> List[ServiceContract]:
        body = self._json(resp, "directory")
        if not isinstance(body, list):
            raise ValidationError("directory search must return a JSON array")
        return [ServiceContract.from_dict(item) for item in body]

    def _prepare_transaction(
        self,
        contract: ContractLike,
        payload: Dict[str, Any],
        priority: Union[Priority, str],
        idempotency_key: Optional[str],
    ) -> Tuple[str, bytes, Dict[str, str], str]:
        contract = ServiceContract.coerce(contract)
        priority = Priority.parse(priority)
        if not isinstance(payload, dict):
            raise ValidationError("payload must be a JSON object")
        key = idempotency_key or new_idempotency_key()

        if self.protocol is ProtocolGeneration.FLAT:
            request = TransactionRequest(
                service_id=contract.service_id,
                consumer_agent_id=self.agent_id,
                payload=payload,
                priority=priority,
            )
            signed = sign_transaction_request(request, self.identity)
            body, signature = signed.body, signed.signature
        else:
            sender = SenderInfo(public_key=self.identity.get_public_key_pem(), agent_id=self.agent_id)
            envelope = build_envelope(
                sender,
                {"service_id": contract.service_id, "consumer_agent_id": self.agent_id, "data": payload},
                priority,
            )
            sign_envelope(envelope, self.identity)
            body, signature = envelope.to_json_bytes(), envelope.signature

        headers = self._base_headers()
        headers["Content-Type"] = "application/json"
        headers[SIGNATURE_HEADER] = signature
        headers[AGENT_ID_HEADER] = self.agent_id
        if self.api_key:
            if self.protocol is ProtocolGeneration.FLAT:
                headers["X-API-Key"] = self.api_key
            else:
                headers["X-ATP-Key"] = self.api_key
        self.log.debug("transact service_id=%s priority=%s idempotency=%s", contract.service_id, priority.value, key)
        return f"{self.orchestrator_url}{TRANSACT_PATH}", body, headers, key

    def _to_response(self, resp: httpx.Response, idempotency_key: str) -> TransactionResponse:
        body = self._json(resp, "orchestrator")
        out = TransactionResponse.from_body(resp.status_code, body, idempotency_key)
        self.log.info("transaction %s -> %s", out.transaction_id, resp.status_code)
        return out

    @staticmethod
    def _json(resp: httpx.Response, source: str) -> Any:
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise ValidationError(f"{source} returned a non-JSON body") from exc

    def _manifest_url(self, agent_id: str) -> str:
        if not isinstance(agent_id, str) or not agent_id:
            raise ConfigurationError("agent_id is required")
        return self.directory_url + MANIFEST_PATH.format(agent_id=quote(agent_id, safe=""))

    def _cached_manifest(self, agent_id: str) -> Optional[Dict[str, Any]]:
        hit = self._manifest_cache.get(agent_id)
        if hit is None:
            return None
        fetched_at, manifest = hit
        if time.time() - fetched_at < self.manifest_ttl_seconds:
            return manifest
        return None

    def _store_manifest(self, agent_id: str, resp: httpx.Response) -> Dict[str, Any]:
        manifest = self._json(resp, "directory")
        if not isinstance(manifest, dict):
            raise ValidationError("agent manifest must be a JSON object")
        # last write wins; concurrent refreshes fetch the same document
        self._manifest_cache[agent_id] = (time.time(), manifest)
        return manifest


class AmorceClient(_ClientBase):
    """Blocking client for the Trust Directory and the Orchestrator."""

    def __init__(
        self,
        identity: IdentityManager,
        directory_url: str,
        orchestrator_url: str,
        agent_id: Optional[str] = None,
        api_key: Optional[str] = None,
        protocol: Union[ProtocolGeneration, str] = ProtocolGeneration.FLAT,
        retry: Optional[RetryConfig] = None,
        timeout_seconds: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None,
        logger: Optional[logging.Logger] = None,
        http: Optional[httpx.Client] = None,
        transport: Optional[ResilientTransport] = None,
        manifest_ttl_seconds: int = 300,
    ):
        super().__init__(
            identity, directory_url, orchestrator_url, agent_id, api_key, protocol, headers, logger, manifest_ttl_seconds
        )
        _check_transport_args(transport, retry, timeout_seconds, http)
        self.transport = transport or ResilientTransport(
            http=http,
            retry=retry,
            timeout_seconds=DEFAULT_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds,
            logger=logger,
        )

    @classmethod
    def from_config(cls, identity: IdentityManager, config: AmorceConfig, **kwargs: Any) -> "AmorceClient":
        if "transport" not in kwargs:
            kwargs.setdefault("retry", config.retry)
            kwargs.setdefault("timeout_seconds", config.timeout_seconds)
        return cls(
            identity,
            config.directory_url,
            config.orchestrator_url,
            agent_id=config.agent_id,
            api_key=config.api_key,
            protocol=config.protocol,
            **kwargs,
        )

    def discover(self, service_type: str) -> List[ServiceContract]:
        resp = self.transport.get(self._discover_url(service_type), headers=self._base_headers())
        return self._parse_contracts(resp)

    def transact(
        self,
        contract: ContractLike,
        payload: Dict[str, Any],
        priority: Union[Priority, str] = Priority.NORMAL,
        idempotency_key: Optional[str] = None,
    ) -> TransactionResponse:
        url, body, headers, key = self._prepare_transaction(contract, payload, priority, idempotency_key)
        resp = self.transport.post(url, body, headers=headers, idempotency_key=key)
        return self._to_response(resp, key)

    def fetch_manifest(self, agent_id: str) -> Dict[str, Any]:
        cached = self._cached_manifest(agent_id)
        if cached is not None:
            return cached
        resp = self.transport.get(self._manifest_url(agent_id), headers=self._base_headers())
        return self._store_manifest(agent_id, resp)

    def manifest_json(self, agent_id: str) -> str:
        """Pretty-printed manifest for serving as a static /.well-known/agent.json."""
        return json.dumps(self.fetch_manifest(agent_id), indent=2)

    def close(self) -> None:
        self.transport.close()

    def __enter__(self) -> "AmorceClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class AsyncAmorceClient(_ClientBase):
    """asyncio flavour of AmorceClient; every operation is a coroutine."""

    def __init__(
        self,
        identity: IdentityManager,
        directory_url: str,
        orchestrator_url: str,
        agent_id: Optional[str] = None,
        api_key: Optional[str] = None,
        protocol: Union[ProtocolGeneration, str] = ProtocolGeneration.FLAT,
        retry: Optional[RetryConfig] = None,
        timeout_seconds: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None,
        logger: Optional[logging.Logger] = None,
        http: Optional[httpx.AsyncClient] = None,
        transport: Optional[AsyncResilientTransport] = None,
        manifest_ttl_seconds: int = 300,
    ):
        super().__init__(
            identity, directory_url, orchestrator_url, agent_id, api_key, protocol, headers, logger, manifest_ttl_seconds
        )
        _check_transport_args(transport, retry, timeout_seconds, http)
        self.transport = transport or AsyncResilientTransport(
            http=http,
            retry=retry,
            timeout_seconds=DEFAULT_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds,
            logger=logger,
        )

    @classmethod
    def from_config(cls, identity: IdentityManager, config: AmorceConfig, **kwargs: Any) -> "AsyncAmorceClient":
        if "transport" not in kwargs:
            kwargs.setdefault("retry", config.retry)
            kwargs.setdefault("timeout_seconds", config.timeout_seconds)
        return cls(
            identity,
            config.directory_url,
            config.orchestrator_url,
            agent_id=config.agent_id,
            api_key=config.api_key,
            protocol=config.protocol,
            **kwargs,
        )

    async def discover(self, service_type: str) -> List[ServiceContract]:
        resp = await self.transport.get(self._discover_url(service_type), headers=self._base_headers())
        return self._parse_contracts(resp)

    async def transact(
        self,
        contract: ContractLike,
        payload: Dict[str, Any],
        priority: Union[Priority, str] = Priority.NORMAL,
        idempotency_key: Optional[str] = None,
    ) -> TransactionResponse:
        url, body, headers, key = self._prepare_transaction(contract, payload, priority, idempotency_key)
        resp = await self.transport.post(url, body, headers=headers, idempotency_key=key)
        return self._to_response(resp, key)

    async def fetch_manifest(self, agent_id: str) -> Dict[str, Any]:
        cached = self._cached_manifest(agent_id)
        if cached is not None:
            return cached
        resp = await self.transport.get(self._manifest_url(agent_id), headers=self._base_headers())
        return self._store_manifest(agent_id, resp)

    async def manifest_json(self, agent_id: str) -> str:
        return json.dumps(await self.fetch_manifest(agent_id), indent=2)

    async def aclose(self) -> None:
        await self.transport.aclose()

    async def __aenter__(self) -> "AsyncAmorceClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
