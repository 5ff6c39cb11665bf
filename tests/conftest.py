"""
pytest configuration for the Flume integration tests.

Provides a fake aiohttp session that answers by URL suffix, a controllable
clock and helpers for Flume response envelopes and access tokens.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import jwt
import pytest

from custom_components.flumewater.api_client import FlumeCloud

BASE = "https://api.test/"
USER_ID = 1234
SIGNING_KEY = "flume-test-signing-key-0123456789abcdef"

# not valid UTF-8
UNDECODABLE_BODY = b'{"success":true,"code":200,"data":[\xff\xfe]}'


def envelope(data: Any = None, *, success: bool = True, code: Optional[int] = 200,
             message: str = "Request OK", http_message: str = "OK", **extra: Any) -> str:
    """Serialized Flume response envelope."""
    body = {
        "success": success,
        "code": code,
        "message": message,
        "http_message": http_message,
        "detailed": None,
        "data": data,
        "count": len(data) if isinstance(data, list) else 0,
        "pagination": None,
    }
    if code is None:
        del body["code"]
    body.update(extra)
    return json.dumps(body)


def failure(code: int, message: str = "Request failed", http_message: str = "Error") -> str:
    return envelope(None, success=False, code=code, message=message, http_message=http_message)


def make_token(user_id: int = USER_ID, *, iat: int = 1000, exp: int = 4600, scope=("read", "update")) -> str:
    """Signed three-segment access token carrying Flume's claims."""
    claims = {"user_id": user_id, "type": "USER", "scope": list(scope), "iat": iat, "exp": exp}
    return jwt.encode(claims, SIGNING_KEY, algorithm="HS256")


def token_response(access_token: Optional[str] = None, *, refresh_token: str = "refresh-1",
                   expires_in: int = 3600) -> str:
    return envelope([{
        "token_type": "bearer",
        "access_token": access_token or make_token(),
        "expires_in": expires_in,
        "refresh_token": refresh_token,
    }])


def device_dict(device_id: int = 5, *, device_type: int = 2, **extra: Any) -> dict:
    d = {
        "id": device_id,
        "type": device_type,
        "location_id": 77,
        "user_id": USER_ID,
        "bridge_id": 3,
        "oriented": True,
        "last_seen": "2024-01-02 10:20:30.000",
        "connected": True,
        "battery_level": "HIGH",
        "product": "flume2",
    }
    d.update(extra)
    return d


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class SentRequest:
    method: str
    url: str
    headers: dict = field(default_factory=dict)
    json: Any = None


@dataclass
class FakeReply:
    body: Union[str, bytes] = ""
    status: int = 200
    delay: float = 0.0
    error: Optional[BaseException] = None


class FakeResponse:
    def __init__(self, reply: FakeReply):
        self._reply = reply
        self.status = reply.status

    async def __aenter__(self):
        if self._reply.delay:
            await asyncio.sleep(self._reply.delay)
        if self._reply.error is not None:
            raise self._reply.error
        return self

    async def __aexit__(self, *exc):
        return False

    async def text(self) -> str:
        body = self._reply.body
        # raw bytes go through the same strict decode aiohttp does
        return body.decode("utf-8") if isinstance(body, bytes) else body


class FakeSession:
    """Stands in for aiohttp.ClientSession.

    Replies are queued per URL suffix; the last reply of a queue is sticky.
    """

    def __init__(self):
        self.routes: dict[str, list[FakeReply]] = {}
        self.requests: list[SentRequest] = []
        self.closed = False

    def add(self, suffix: str, body: Union[str, bytes] = "", *, status: int = 200, delay: float = 0.0,
            error: Optional[BaseException] = None) -> None:
        self.routes.setdefault(suffix, []).append(FakeReply(body, status, delay, error))

    def sent(self, suffix: str) -> list[SentRequest]:
        return [r for r in self.requests if r.url.endswith(suffix)]

    def request(self, method, url, *, headers=None, json=None, timeout=None):
        self.requests.append(SentRequest(method, url, dict(headers or {}), json))
        for suffix, queue in self.routes.items():
            if url.endswith(suffix):
                reply = queue.pop(0) if len(queue) > 1 else queue[0]
                return FakeResponse(reply)
        raise AssertionError(f"unexpected request {method} {url}")

    async def close(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def client(session, clock):
    return FlumeCloud(
        session,
        username="user@example.com",
        password="hunter2",
        client_id="cid",
        client_secret="csecret",
        base=BASE,
        clock=clock,
    )
