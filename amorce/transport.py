from __future__ import annotations

import asyncio
import logging
import random
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .errors import APIError, ConfigurationError, NetworkError

IDEMPOTENCY_HEADER = "X-Amorce-Idempotency"

# Retried on every path; 500/502 only where the request carries an idempotency key.
ALWAYS_RETRYABLE = (429, 503, 504)
WRITE_RETRYABLE = (500, 502)


class Outcome(str, Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


def classify(status_code: int, write: bool = False) -> Outcome:
    if 200 <= status_code < 300:
        return Outcome.SUCCESS
    if status_code in ALWAYS_RETRYABLE:
        return Outcome.RETRYABLE
    if write and status_code in WRITE_RETRYABLE:
        return Outcome.RETRYABLE
    return Outcome.FATAL


def new_idempotency_key() -> str:
    return str(uuid.uuid4())


@dataclass
class RetryConfig:
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000
    jitter: float = 0.5

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ConfigurationError("retry delays must be >= 0")
        if not 0.0 <= self.jitter <= 1.0:
            raise ConfigurationError("jitter must be between 0 and 1")

    def backoff_ms(self, retry_index: int) -> int:
        """Pre-jitter delay before retry number ``retry_index`` (0-based)."""
        return min(self.max_delay_ms, self.base_delay_ms * (2 ** retry_index))

    def jittered_ms(self, delay_ms: float) -> float:
        return delay_ms * random.uniform(1.0 - self.jitter, 1.0)


RetryHook = Callable[[int, str, int], None]


def _to_error(resp: httpx.Response) -> APIError:
    body = resp.text
    try:
        parsed = resp.json()
    except ValueError:
        return APIError(resp.status_code, body or f"HTTP {resp.status_code}", body=body)
    if not isinstance(parsed, dict):
        return APIError(resp.status_code, f"HTTP {resp.status_code}", body=body)
    inner = parsed.get("error") if isinstance(parsed.get("error"), dict) else parsed
    message = inner.get("message") or (parsed["error"] if isinstance(parsed.get("error"), str) else None)
    return APIError(
        status_code=resp.status_code,
        message=message or f"HTTP {resp.status_code}",
        body=body,
        error_code=inner.get("error_code") or inner.get("code"),
        request_id=inner.get("request_id") or parsed.get("request_id"),
        details=inner.get("details"),
    )


class _RetryLoop:
    """Policy shared by the sync and async transports.

    Subclasses own the I/O; this class decides what a response or exception
    means, how long to wait, and what to raise when the budget runs out.
    """

    def __init__(self, retry: Optional[RetryConfig], logger: Optional[logging.Logger], on_retry: Optional[RetryHook]):
        self.retry = retry or RetryConfig()
        self.log = logger or logging.getLogger("amorce.transport")
        self.on_retry = on_retry
        # pre-jitter delays of the most recent request()
        self.last_delays_ms: List[int] = []

    @property
    def max_attempts(self) -> int:
        return 1 + max(0, self.retry.max_retries)

    def _retry_after_ms(self, resp: Optional[httpx.Response]) -> Optional[int]:
        if resp is None:
            return None
        value = resp.headers.get("Retry-After")
        if not value:
            return None
        try:
            sec = int(value.strip())
        except ValueError:
            return None
        return min(max(sec, 0) * 1000, self.retry.max_delay_ms)

    def _next_delay_ms(self, retry_index: int, resp: Optional[httpx.Response]) -> tuple[int, float]:
        """(recorded pre-jitter delay, actual sleep) in milliseconds."""
        retry_after = self._retry_after_ms(resp)
        if retry_after is not None:
            return retry_after, float(retry_after)
        base = self.retry.backoff_ms(retry_index)
        return base, self.retry.jittered_ms(base)

    def _check(self, resp: httpx.Response, write: bool) -> Outcome:
        outcome = classify(resp.status_code, write)
        if outcome is Outcome.FATAL:
            self.log.error("request rejected: %s %s -> %s", resp.request.method, resp.request.url, resp.status_code)
            raise _to_error(resp)
        return outcome

    def _report(self, method: str, url: str, attempt: int, reason: str, delay_ms: Optional[int]) -> None:
        if delay_ms is None:
            self.log.warning("%s %s attempt %d/%d failed: %s", method, url, attempt, self.max_attempts, reason)
            return
        self.log.warning(
            "%s %s attempt %d/%d failed: %s; retrying in %dms",
            method, url, attempt, self.max_attempts, reason, delay_ms,
        )
        if self.on_retry:
            self.on_retry(attempt, reason, delay_ms)

    def _exhausted(self, method: str, url: str, last_resp: Optional[httpx.Response], reason: str) -> NetworkError:
        return NetworkError(
            f"{method} {url} failed after {self.max_attempts} attempts: {reason}",
            attempts=self.max_attempts,
            status_code=last_resp.status_code if last_resp is not None else None,
            body=last_resp.text if last_resp is not None else None,
        )


class ResilientTransport(_RetryLoop):
    def __init__(
        self,
        http: Optional[httpx.Client] = None,
        retry: Optional[RetryConfig] = None,
        timeout_seconds: float = 10.0,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], None] = time.sleep,
        on_retry: Optional[RetryHook] = None,
    ):
        super().__init__(retry, logger, on_retry)
        self._owns_http = http is None
        self.http = http or httpx.Client(timeout=timeout_seconds)
        self.sleep = sleep

    def request(
        self,
        method: str,
        url: str,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        write: bool = False,
    ) -> httpx.Response:
        last_resp: Optional[httpx.Response] = None
        last_exc: Optional[Exception] = None
        self.last_delays_ms = []
        reason = ""
        for attempt in range(1, self.max_attempts + 1):
            try:
                resp = self.http.request(method, url, content=content, headers=headers)
            except httpx.TransportError as exc:
                last_resp, last_exc = None, exc
                reason = f"{type(exc).__name__}: {exc}"
            else:
                if self._check(resp, write) is Outcome.SUCCESS:
                    return resp
                last_resp, last_exc = resp, None
                reason = f"HTTP {resp.status_code}"
            if attempt == self.max_attempts:
                self._report(method, url, attempt, reason, None)
                break
            recorded, actual = self._next_delay_ms(attempt - 1, last_resp)
            self.last_delays_ms.append(recorded)
            self._report(method, url, attempt, reason, recorded)
            self.sleep(actual / 1000)
        raise self._exhausted(method, url, last_resp, reason) from last_exc

    def get(self, url: str, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        return self.request("GET", url, headers=headers)

    def post(
        self,
        url: str,
        content: bytes,
        headers: Optional[Dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> httpx.Response:
        headers = dict(headers or {})
        headers[IDEMPOTENCY_HEADER] = idempotency_key or new_idempotency_key()
        return self.request("POST", url, content=content, headers=headers, write=True)

    def close(self) -> None:
        """Closes the underlying httpx client only if this transport created it."""
        if self._owns_http:
            self.http.close()


class AsyncResilientTransport(_RetryLoop):
    def __init__(
        self,
        http: Optional[httpx.AsyncClient] = None,
        retry: Optional[RetryConfig] = None,
        timeout_seconds: float = 10.0,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_retry: Optional[RetryHook] = None,
    ):
        super().__init__(retry, logger, on_retry)
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(timeout=timeout_seconds)
        self.sleep = sleep

    async def request(
        self,
        method: str,
        url: str,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        write: bool = False,
    ) -> httpx.Response:
        last_resp: Optional[httpx.Response] = None
        last_exc: Optional[Exception] = None
        self.last_delays_ms = []
        reason = ""
        for attempt in range(1, self.max_attempts + 1):
            try:
                resp = await self.http.request(method, url, content=content, headers=headers)
            except httpx.TransportError as exc:
                last_resp, last_exc = None, exc
                reason = f"{type(exc).__name__}: {exc}"
            else:
                if self._check(resp, write) is Outcome.SUCCESS:
                    return resp
                last_resp, last_exc = resp, None
                reason = f"HTTP {resp.status_code}"
            if attempt == self.max_attempts:
                self._report(method, url, attempt, reason, None)
                break
            recorded, actual = self._next_delay_ms(attempt - 1, last_resp)
            self.last_delays_ms.append(recorded)
            self._report(method, url, attempt, reason, recorded)
            await self.sleep(actual / 1000)
        raise self._exhausted(method, url, last_resp, reason) from last_exc

    async def get(self, url: str, headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        return await self.request("GET", url, headers=headers)

    async def post(
        self,
        url: str,
        content: bytes,
        headers: Optional[Dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> httpx.Response:
        headers = dict(headers or {})
        headers[IDEMPOTENCY_HEADER] = idempotency_key or new_idempotency_key()
        return await self.request("POST", url, content=content, headers=headers, write=True)

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()
