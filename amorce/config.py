from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .envelope import ProtocolGeneration
from .errors import ConfigurationError
from .transport import RetryConfig

DEFAULT_DIRECTORY_URL = "https://amorce-trust-api-425870997313.us-central1.run.app"


def validate_base_url(name: str, url: str) -> str:
    if not isinstance(url, str) or not url.startswith(("http://", "https://")):
        raise ConfigurationError(f"{name} must start with http:// or https://, got {url!r}")
    return url.rstrip("/")


@dataclass
class AmorceConfig:
    orchestrator_url: str
    directory_url: str = DEFAULT_DIRECTORY_URL
    api_key: Optional[str] = None
    agent_id: Optional[str] = None
    protocol: ProtocolGeneration = ProtocolGeneration.FLAT
    timeout_seconds: float = 10.0
    retry: RetryConfig = field(default_factory=RetryConfig)

    def __post_init__(self) -> None:
        self.directory_url = validate_base_url("directory_url", self.directory_url)
        self.orchestrator_url = validate_base_url("orchestrator_url", self.orchestrator_url)
        try:
            self.protocol = ProtocolGeneration(self.protocol)
        except ValueError:
            raise ConfigurationError(f"unknown protocol generation {self.protocol!r}") from None
        if self.timeout_seconds <= 0:
            raise ConfigurationError("timeout_seconds must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AmorceConfig":
        """Build a config from AMORCE_* environment variables.

        AMORCE_ORCHESTRATOR_URL is required. The directory defaults to the
        public Trust Directory; AMORCE_TRUST_URL is accepted as an alias of
        AMORCE_DIRECTORY_URL.
        """
        env = os.environ if environ is None else environ
        orchestrator_url = env.get("AMORCE_ORCHESTRATOR_URL")
        if not orchestrator_url:
            raise ConfigurationError("AMORCE_ORCHESTRATOR_URL is not set")
        directory_url = env.get("AMORCE_DIRECTORY_URL") or env.get("AMORCE_TRUST_URL") or DEFAULT_DIRECTORY_URL
        retry = RetryConfig()
        if env.get("AMORCE_MAX_RETRIES"):
            retry = RetryConfig(max_retries=_parse_number(env, "AMORCE_MAX_RETRIES", int))
        timeout = 10.0
        if env.get("AMORCE_TIMEOUT_SECONDS"):
            timeout = _parse_number(env, "AMORCE_TIMEOUT_SECONDS", float)
        return cls(
            orchestrator_url=orchestrator_url,
            directory_url=directory_url,
            api_key=env.get("AMORCE_API_KEY") or None,
            agent_id=env.get("AMORCE_AGENT_ID") or None,
            protocol=env.get("AMORCE_PROTOCOL") or ProtocolGeneration.FLAT,
            timeout_seconds=timeout,
            retry=retry,
        )


def _parse_number(env: Mapping[str, str], name: str, kind):
    try:
        value = kind(env[name])
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {env[name]!r}") from None
    if value < 0:
        raise ConfigurationError(f"{name} must not be negative")
    return value
