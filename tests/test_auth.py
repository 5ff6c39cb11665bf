"""
Tests for the Flume token lifecycle.

Tests cover:
- Atomic credential swaps in the token store
- Expiry margin and refresh grant selection
- Single-flight token requests under concurrency
- Rejection of malformed access tokens
"""

import asyncio
import base64
from unittest.mock import patch

import aiohttp
import pytest

from conftest import UNDECODABLE_BODY, USER_ID, failure, make_token, token_response

from custom_components.flumewater.auth import (
    AuthState,
    Credentials,
    TokenStore,
    parse_claims,
)
from custom_components.flumewater.exceptions import FlumeAuthError, FlumeConnectionError
from custom_components.flumewater.models import TokenClaims


def _segment(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


NOT_JSON_TOKEN = ".".join([_segment(b"{}"), _segment(b"not json"), "sig"])
NO_USER_TOKEN = ".".join([_segment(b"{}"), _segment(b'{"type": "USER"}'), "sig"])
PLAIN_HEADER_TOKEN = ".".join(["header", _segment(b'{"user_id": 7, "iat": 1, "exp": 2}'), "signature"])


class TestTokenStore:
    """Test credential storage."""

    def test_starts_unauthenticated(self, clock):
        store = TokenStore(clock)
        creds = store.get()
        assert creds.access_token is None
        assert creds.state(clock()) is AuthState.UNAUTHENTICATED

    def test_replace_swaps_whole_set(self, clock):
        store = TokenStore(clock)
        claims = TokenClaims(user_id=1)
        new = Credentials("access", "refresh", clock() + 100, claims)
        store.replace(new)
        assert store.get() is new

    def test_clear_resets_every_field(self, clock):
        """clear() drops tokens and claims and sets expiry to now."""
        store = TokenStore(clock)
        store.replace(Credentials("access", "refresh", clock() + 100, TokenClaims(user_id=1)))
        clock.advance(10)
        store.clear()

        creds = store.get()
        assert creds == Credentials(expires_at=clock())

    def test_access_token_requires_claims(self):
        with pytest.raises(ValueError):
            Credentials("access", "refresh", 100.0, None)

    def test_states(self, clock):
        creds = Credentials("access", "refresh", clock() + 10, TokenClaims(user_id=1))
        assert creds.state(clock()) is AuthState.VALID
        assert creds.state(clock() + 10) is AuthState.VALID
        assert creds.state(clock() + 11) is AuthState.EXPIRED


class TestParseClaims:
    """Test reading claims from access tokens."""

    def test_reads_claims(self):
        claims = parse_claims(make_token(42, iat=10, exp=20, scope=("read",)))
        assert claims.user_id == 42
        assert claims.type == "USER"
        assert claims.scope == ("read",)
        assert (claims.iat, claims.exp) == (10, 20)

    def test_header_segment_is_not_inspected(self):
        """Only the middle segment has to decode; the header may be anything."""
        claims = parse_claims(PLAIN_HEADER_TOKEN)
        assert claims.user_id == 7
        assert (claims.iat, claims.exp) == (1, 2)

    @pytest.mark.parametrize(
        "token",
        [
            "only.two",
            "one.two.three.four",
            "header.!!!not-base64!!!.signature",
            NOT_JSON_TOKEN,
            NO_USER_TOKEN,
        ],
    )
    def test_malformed_tokens_are_auth_errors(self, token):
        """Wrong segment count, bad base64, bad JSON and missing user id all fail."""
        with pytest.raises(FlumeAuthError):
            parse_claims(token)


class TestAuthenticator:
    """Test FlumeAuthenticator against a fake token endpoint."""

    @pytest.mark.asyncio
    async def test_password_grant_first(self, client, session):
        """Without tokens the password grant is used."""
        session.add("oauth/token", token_response())

        assert await client.auth.ensure_authorized() is True

        sent = session.sent("oauth/token")
        assert len(sent) == 1
        assert sent[0].method == "POST"
        assert "authorization" not in sent[0].headers
        assert sent[0].json == {
            "grant_type": "password",
            "username": "user@example.com",
            "password": "hunter2",
            "client_id": "cid",
            "client_secret": "csecret",
        }
        assert client.auth.user_id == USER_ID
        assert client.auth.state is AuthState.VALID

    @pytest.mark.asyncio
    async def test_expiry_margin(self, client, session, clock):
        """Tokens count as expired 300 s before the server-declared expiry."""
        session.add("oauth/token", token_response(expires_in=600, refresh_token="refresh-1"))
        session.add("oauth/token", token_response(make_token(), expires_in=600, refresh_token="refresh-2"))
        assert await client.auth.ensure_authorized()

        clock.advance(299)
        assert await client.auth.ensure_authorized()
        assert len(session.sent("oauth/token")) == 1

        clock.advance(2)
        assert client.auth.state is AuthState.EXPIRED
        assert await client.auth.ensure_authorized()

        sent = session.sent("oauth/token")
        assert len(sent) == 2
        assert sent[1].json == {
            "grant_type": "refresh_token",
            "refresh_token": "refresh-1",
            "client_id": "cid",
            "client_secret": "csecret",
        }
        assert client.auth.store.get().refresh_token == "refresh-2"

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_request(self, client, session):
        """Racing callers wait for the same token request."""
        session.add("oauth/token", token_response(), delay=0.01)

        results = await asyncio.gather(*(client.auth.ensure_authorized() for _ in range(10)))

        assert results == [True] * 10
        assert len(session.sent("oauth/token")) == 1
        tokens = {client.auth.access_token for _ in range(10)}
        assert len(tokens) == 1

    @pytest.mark.asyncio
    async def test_late_caller_sees_valid_tokens(self, client, session):
        """A caller arriving after the refresh completed sends nothing."""
        session.add("oauth/token", token_response())
        await client.auth.ensure_authorized()
        first = client.auth.store.get()

        assert await client.auth.ensure_authorized()
        assert client.auth.store.get() is first
        assert len(session.sent("oauth/token")) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_token", ["only.two", "a.b.c.d", "x.%%%.y"])
    async def test_malformed_access_token_refuses(self, client, session, clock, bad_token):
        """An unreadable access token voids the credentials without raising."""
        session.add("oauth/token", token_response(bad_token))

        assert await client.auth.ensure_authorized() is False
        assert client.auth.store.get() == Credentials(expires_at=clock())
        assert client.auth.access_token is None
        assert client.auth.user_id == 0
        assert isinstance(client.auth.last_error, FlumeAuthError)

    @pytest.mark.asyncio
    async def test_rejected_password(self, client, session):
        session.add("oauth/token", failure(401, "Invalid credentials", "Unauthorized"))

        assert await client.auth.ensure_authorized() is False
        assert client.auth.state is AuthState.UNAUTHENTICATED
        assert isinstance(client.auth.last_error, FlumeAuthError)

    @pytest.mark.asyncio
    async def test_failed_refresh_falls_back_to_password_grant(self, client, session, clock):
        """A rejected refresh voids everything; the next call starts over."""
        session.add("oauth/token", token_response(expires_in=600))
        session.add("oauth/token", failure(401, "Refresh token revoked"))
        session.add("oauth/token", token_response(expires_in=600, refresh_token="refresh-3"))
        assert await client.auth.ensure_authorized()

        clock.advance(400)
        assert await client.auth.ensure_authorized() is False
        assert client.auth.state is AuthState.UNAUTHENTICATED

        assert await client.auth.ensure_authorized() is True
        grants = [r.json["grant_type"] for r in session.sent("oauth/token")]
        assert grants == ["password", "refresh_token", "password"]
        assert client.auth.last_error is None

    @pytest.mark.asyncio
    async def test_unreachable_token_endpoint(self, client, session):
        """Transport failures are remembered as connection errors."""
        session.add("oauth/token", error=aiohttp.ClientConnectionError("refused"))

        assert await client.auth.ensure_authorized() is False
        assert isinstance(client.auth.last_error, FlumeConnectionError)
        assert isinstance(client.auth.last_error.__cause__, aiohttp.ClientConnectionError)

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_request(self, client, session):
        """Cancelling one waiter leaves the shared request running for others."""
        session.add("oauth/token", token_response(), delay=0.05)

        waiter = asyncio.ensure_future(client.auth.ensure_authorized())
        other = asyncio.ensure_future(client.auth.ensure_authorized())
        await asyncio.sleep(0.01)
        waiter.cancel()

        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert await other is True
        assert len(session.sent("oauth/token")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, client, session, clock):
        """Callers racing on a just-expired token see one refresh grant."""
        session.add("oauth/token", token_response(make_token(iat=1), expires_in=600, refresh_token="refresh-1"))
        session.add(
            "oauth/token",
            token_response(make_token(iat=2), expires_in=600, refresh_token="refresh-2"),
            delay=0.01,
        )
        assert await client.auth.ensure_authorized()
        old_token = client.auth.access_token

        clock.advance(301)
        assert client.auth.state is AuthState.EXPIRED

        async def authorize():
            ok = await client.auth.ensure_authorized()
            return ok, client.auth.access_token

        results = await asyncio.gather(*(authorize() for _ in range(5)))

        assert [ok for ok, _ in results] == [True] * 5
        tokens = {token for _, token in results}
        assert len(tokens) == 1
        assert tokens != {old_token}
        grants = [r.json["grant_type"] for r in session.sent("oauth/token")]
        assert grants == ["password", "refresh_token"]

    @pytest.mark.asyncio
    async def test_undecodable_token_response(self, client, session, clock):
        """A token body that is not UTF-8 refuses authorization without raising."""
        session.add("oauth/token", UNDECODABLE_BODY)

        assert await client.auth.ensure_authorized() is False
        assert client.auth.store.get() == Credentials(expires_at=clock())
        assert isinstance(client.auth.last_error, FlumeConnectionError)
        assert isinstance(client.auth.last_error.__cause__, UnicodeDecodeError)

    @pytest.mark.asyncio
    async def test_unexpected_error_refuses(self, client, session):
        """Errors outside the Flume hierarchy still end in False."""
        session.add("oauth/token", token_response())

        with patch.object(client.auth, "_credentials_from", side_effect=RuntimeError("boom")):
            assert await client.auth.ensure_authorized() is False

        assert client.auth.state is AuthState.UNAUTHENTICATED
        assert isinstance(client.auth.last_error.__cause__, RuntimeError)
