import logging

import httpx
import pytest

from amorce import APIError, ConfigurationError, NetworkError, Outcome, ResilientTransport, RetryConfig, classify
from amorce.transport import IDEMPOTENCY_HEADER


def _transport(handler, retry=None, **kw):
    sleeps = []
    delays = []
    t = ResilientTransport(
        http=httpx.Client(transport=httpx.MockTransport(handler)),
        retry=retry,
        sleep=sleeps.append,
        on_retry=lambda attempt, reason, delay_ms: delays.append(delay_ms),
        **kw,
    )
    return t, sleeps, delays


def test_classify():
    assert classify(200) is Outcome.SUCCESS
    assert classify(204, write=True) is Outcome.SUCCESS
    for code in (429, 503, 504):
        assert classify(code) is Outcome.RETRYABLE
        assert classify(code, write=True) is Outcome.RETRYABLE
    for code in (500, 502):
        assert classify(code) is Outcome.FATAL
        assert classify(code, write=True) is Outcome.RETRYABLE
    for code in (400, 401, 404, 409, 501):
        assert classify(code, write=True) is Outcome.FATAL


def test_backoff_is_exponential_and_capped():
    r = RetryConfig()
    assert [r.backoff_ms(i) for i in range(6)] == [1000, 2000, 4000, 8000, 10000, 10000]
    for _ in range(50):
        j = r.jittered_ms(4000)
        assert 2000 <= j <= 4000


def test_always_503_makes_four_attempts_then_network_error():
    attempts = {"n": 0}

    def handler(req: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        return httpx.Response(503, json={"error": "down"})

    t, sleeps, delays = _transport(handler)
    with pytest.raises(NetworkError) as ex:
        t.get("http://dir/api/v1/services/search?service_type=x")
    assert attempts["n"] == 4
    assert ex.value.attempts == 4
    assert ex.value.status_code == 503
    assert "down" in ex.value.body
    assert delays == [1000, 2000, 4000]
    assert t.last_delays_ms == [1000, 2000, 4000]
    assert delays == sorted(delays)
    assert len(sleeps) == 3
    for slept, pre in zip(sleeps, delays):
        assert pre / 2000 <= slept <= pre / 1000


def test_delays_cap_at_max_delay():
    def handler(req: httpx.Request) -> httpx.Response:
        return httpx.Response(504)

    t, sleeps, delays = _transport(handler, retry=RetryConfig(max_retries=6))
    with pytest.raises(NetworkError):
        t.get("http://x/")
    assert delays == [1000, 2000, 4000, 8000, 10000, 10000]
    assert all(s <= 10.0 for s in sleeps)


@pytest.mark.parametrize("code", [400, 404])
def test_client_errors_are_fatal_without_retry(code):
    attempts = {"n": 0}

    def handler(req: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        return httpx.Response(code, json={"error_code": "BAD", "message": "nope", "request_id": "req_1"})

    t, sleeps, _ = _transport(handler)
    with pytest.raises(APIError) as ex:
        t.post("http://orch/v1/a2a/transact", b"{}")
    assert attempts["n"] == 1
    assert sleeps == []
    assert ex.value.status_code == code
    assert ex.value.error_code == "BAD"
    assert ex.value.request_id == "req_1"
    assert "nope" in ex.value.body


def test_500_is_fatal_on_read_but_retried_on_write():
    attempts = {"n": 0}

    def handler(req: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        if req.method == "POST" and attempts["n"] < 3:
            return httpx.Response(500, text="boom")
        if req.method == "GET":
            return httpx.Response(500, text="boom")
        return httpx.Response(200, json={"status": "success"})

    t, _, _ = _transport(handler)
    with pytest.raises(APIError) as ex:
        t.get("http://x/")
    assert ex.value.status_code == 500
    assert ex.value.body == "boom"

    attempts["n"] = 0
    resp = t.post("http://x/", b"{}")
    assert resp.status_code == 200
    assert attempts["n"] == 3


def test_429_then_success():
    attempts = {"n": 0}

    def handler(req: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        if attempts["n"] == 1:
            return httpx.Response(429, json={"message": "slow"})
        return httpx.Response(200, json=[])

    t, sleeps, _ = _transport(handler)
    assert t.get("http://x/").json() == []
    assert attempts["n"] == 2
    assert len(sleeps) == 1


def test_retry_after_header_overrides_backoff():
    attempts = {"n": 0}

    def handler(req: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        if attempts["n"] == 1:
            return httpx.Response(429, headers={"Retry-After": "2"})
        if attempts["n"] == 2:
            return httpx.Response(503, headers={"Retry-After": "120"})
        return httpx.Response(200)

    t, sleeps, delays = _transport(handler)
    t.get("http://x/")
    assert delays == [2000, 10000]
    assert sleeps == [2.0, 10.0]


def test_connection_errors_are_retried_then_surface_as_network_error():
    attempts = {"n": 0}

    def handler(req: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        raise httpx.ConnectError("connection refused", request=req)

    t, sleeps, _ = _transport(handler)
    with pytest.raises(NetworkError) as ex:
        t.post("http://x/", b"{}")
    assert attempts["n"] == 4
    assert ex.value.status_code is None
    assert ex.value.body is None
    assert isinstance(ex.value.__cause__, httpx.ConnectError)


def test_timeout_then_success():
    attempts = {"n": 0}

    def handler(req: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise httpx.ReadTimeout("slow", request=req)
        return httpx.Response(200, json={"ok": True})

    t, _, _ = _transport(handler)
    assert t.post("http://x/", b"{}").json() == {"ok": True}


def test_idempotency_key_is_stable_across_attempts():
    keys = []

    def handler(req: httpx.Request) -> httpx.Response:
        keys.append(req.headers[IDEMPOTENCY_HEADER])
        if len(keys) < 4:
            return httpx.Response(502)
        return httpx.Response(200)

    t, _, _ = _transport(handler)
    t.post("http://x/", b"{}")
    assert len(keys) == 4
    assert len(set(keys)) == 1

    keys.clear()
    t.post("http://x/", b"{}", idempotency_key="caller-key")
    assert set(keys) == {"caller-key"}


def test_failed_attempts_are_logged(caplog):
    def handler(req: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    t, _, _ = _transport(handler, retry=RetryConfig(max_retries=1), logger=logging.getLogger("test.transport"))
    with caplog.at_level(logging.WARNING, logger="test.transport"):
        with pytest.raises(NetworkError):
            t.get("http://x/")
    assert "attempt 1/2 failed: HTTP 503" in caplog.text
    assert "attempt 2/2 failed: HTTP 503" in caplog.text


def test_zero_retries_means_single_attempt():
    attempts = {"n": 0}

    def handler(req: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        return httpx.Response(503)

    t, sleeps, _ = _transport(handler, retry=RetryConfig(max_retries=0))
    with pytest.raises(NetworkError):
        t.get("http://x/")
    assert attempts["n"] == 1
    assert sleeps == []


def test_last_delays_reset_per_request():
    attempts = {"n": 0}

    def handler(req: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        if attempts["n"] < 3:
            return httpx.Response(503)
        return httpx.Response(200, json={})

    t, _, _ = _transport(handler)
    t.get("http://x/")
    assert t.last_delays_ms == [1000, 2000]
    t.get("http://x/")
    assert t.last_delays_ms == []


@pytest.mark.parametrize(
    "kw",
    [{"jitter": 1.5}, {"jitter": -0.1}, {"max_retries": -1}, {"base_delay_ms": -1}],
)
def test_retry_config_rejects_out_of_range_values(kw):
    with pytest.raises(ConfigurationError):
        RetryConfig(**kw)


def test_full_jitter_never_sleeps_negative():
    r = RetryConfig(jitter=1.0)
    for _ in range(50):
        assert 0 <= r.jittered_ms(1000) <= 1000


def test_close_leaves_caller_http_client_open():
    http = httpx.Client(transport=httpx.MockTransport(lambda req: httpx.Response(200)))
    t = ResilientTransport(http=http)
    t.close()
    assert not http.is_closed
    http.close()

    owned = ResilientTransport()
    owned.close()
    assert owned.http.is_closed
