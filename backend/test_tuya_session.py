"""
Tests for Tuya token exchange, single-flight and the periodic refresher
"""

import asyncio
import logging
import threading
import time

import pytest
import requests

from conftest import ACCESS_KEY, SECRET_KEY, FakeResponse
from errors import AuthError
from tuya_session import REQUEST_TIMEOUT, TokenRefresher, TuyaSession
from tuya_signer import sign_request


def test_ensure_token_exchanges_when_no_token(manager, http):
    assert not manager.has_token

    token = manager.ensure_token()

    assert token == "token-1"
    assert manager.has_token
    assert manager.session.obtained_at is not None
    call = http.calls[0]
    assert call["method"] == "GET"
    assert call["url"].endswith("/v1.0/token?grant_type=1")
    assert call["timeout"] == REQUEST_TIMEOUT
    assert call["headers"]["client_id"] == ACCESS_KEY
    assert call["headers"]["sign_method"] == "HMAC-SHA256"
    assert "access_token" not in call["headers"]


def test_ensure_token_is_noop_when_token_held(manager, http):
    manager.ensure_token()
    assert len(http.calls) == 1

    assert manager.ensure_token() == "token-1"
    assert manager.ensure_token() == "token-1"
    assert len(http.calls) == 1


def test_refresh_token_always_issues_one_call(manager, http):
    manager.ensure_token()

    assert manager.refresh_token() == "token-2"
    assert len(http.calls) == 2
    assert manager.refresh_token() == "token-3"
    assert len(http.calls) == 3
    assert manager.session.token == "token-3"


def test_acquisition_signature_ignores_held_token(manager, http):
    manager.ensure_token()
    manager.refresh_token()

    for call in http.calls:
        headers = call["headers"]
        expected = sign_request(ACCESS_KEY, SECRET_KEY, "GET", "/v1.0/token?grant_type=1", t=headers["t"])
        assert headers["sign"] == expected.sign


def test_rejected_exchange_raises_auth_error(manager, http):
    http.token_responses.append(FakeResponse({"success": False, "code": 1004, "msg": "sign invalid"}))

    with pytest.raises(AuthError) as excinfo:
        manager.ensure_token()

    assert "sign invalid" in str(excinfo.value)
    assert excinfo.value.code == 1004
    assert not manager.has_token


def test_transport_failure_raises_auth_error(manager, http):
    http.token_responses.append(requests.ConnectionError("connection reset"))

    with pytest.raises(AuthError, match="connection reset"):
        manager.ensure_token()


def test_http_error_status_raises_auth_error(manager, http):
    http.token_responses.append(FakeResponse({"success": True}, status_code=502))

    with pytest.raises(AuthError):
        manager.refresh_token()


def test_non_json_response_raises_auth_error(manager, http):
    http.token_responses.append(FakeResponse(ValueError("no json")))

    with pytest.raises(AuthError, match="invalid JSON"):
        manager.ensure_token()


def test_failed_refresh_keeps_old_token(manager, http):
    manager.ensure_token()
    http.token_responses.append(requests.Timeout("timed out"))

    with pytest.raises(AuthError):
        manager.refresh_token()

    assert manager.session.token == "token-1"


def test_concurrent_cold_start_issues_one_exchange(manager, http):
    entered = threading.Event()
    release = threading.Event()
    original = http.request

    def slow_request(*args, **kwargs):
        entered.set()
        release.wait(timeout=5)
        return original(*args, **kwargs)

    http.request = slow_request
    results = []

    def worker():
        results.append(manager.ensure_token())

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for thread in threads:
        thread.start()
    assert entered.wait(timeout=5)
    time.sleep(0.05)
    release.set()
    for thread in threads:
        thread.join(timeout=5)

    assert results == ["token-1"] * 5
    assert len(http.calls) == 1


def test_session_staleness():
    assert TuyaSession().is_stale
    assert not TuyaSession(token="t", obtained_at=time.time()).is_stale
    assert TuyaSession(token="t", obtained_at=time.time() - 3 * 60 * 60).is_stale


class _CountingManager:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = 0

    def refresh_token(self):
        self.calls += 1
        if self.fail:
            raise AuthError("fetch failed: sign invalid")
        return "token"


def test_refresher_runs_until_stopped():
    fake = _CountingManager()

    async def scenario():
        refresher = TokenRefresher(fake, interval=0.01)
        refresher.start()
        assert refresher.running
        await asyncio.sleep(0.1)
        await refresher.stop()
        assert not refresher.running
        stopped_at = fake.calls
        await asyncio.sleep(0.05)
        return stopped_at

    stopped_at = asyncio.run(scenario())

    assert stopped_at >= 1
    assert fake.calls == stopped_at


def test_refresher_logs_failures_and_keeps_running(caplog):
    fake = _CountingManager(fail=True)

    async def scenario():
        refresher = TokenRefresher(fake, interval=0.01)
        refresher.start()
        await asyncio.sleep(0.1)
        still_running = refresher.running
        await refresher.stop()
        return still_running

    with caplog.at_level(logging.ERROR, logger="tuya_session"):
        still_running = asyncio.run(scenario())

    assert still_running
    assert fake.calls >= 2
    assert "Automatic refresh failed" in caplog.text


def test_refresher_stop_without_start_is_harmless():
    asyncio.run(TokenRefresher(_CountingManager()).stop())
