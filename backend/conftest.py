import pytest
import requests

from config import TuyaConfig
from tuya_session import SessionManager

HOST = "https://openapi.example.com"
ACCESS_KEY = "test_access_key"
SECRET_KEY = "test_secret_key"
DEVICE_ID = "bf0123456789abcdef"


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")


class FakeHttp:
    """Stands in for requests.Session; records every call, never hits the network"""

    def __init__(self):
        self.calls = []
        self.token_responses = []
        self.device_responses = []
        self.token_counter = 0

    def request(self, method, url, headers=None, data=None, timeout=None):
        self.calls.append({
            "method": method,
            "url": url,
            "headers": dict(headers or {}),
            "data": data,
            "timeout": timeout,
        })
        queue = self.token_responses if "/v1.0/token" in url else self.device_responses
        if queue:
            outcome = queue.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        if "/v1.0/token" in url:
            self.token_counter += 1
            return FakeResponse({
                "success": True,
                "result": {"access_token": f"token-{self.token_counter}", "expire_time": 7200},
            })
        return FakeResponse({"success": True, "result": True, "t": 1700000000000})

    def calls_to(self, fragment):
        return [c for c in self.calls if fragment in c["url"]]


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def manager(http):
    return SessionManager(HOST, ACCESS_KEY, SECRET_KEY, http=http)


@pytest.fixture
def settings():
    return TuyaConfig(host=HOST, access_key=ACCESS_KEY, secret_key=SECRET_KEY, device_id=DEVICE_ID)


@pytest.fixture
def fixed_time(monkeypatch):
    import tuya_signer

    monkeypatch.setattr(tuya_signer, "timestamp_ms", lambda: "1700000000000")
    return "1700000000000"
