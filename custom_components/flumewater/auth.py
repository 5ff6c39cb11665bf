# auth.py
"""Token handling for the Flume cloud.

Flume hands out a JWT access token plus a refresh token from ``oauth/token``
(password grant first, refresh grant afterwards). The access token's payload
carries the numeric user id every other endpoint needs in its path.
"""
from __future__ import annotations

import asyncio
import binascii
from dataclasses import dataclass
from enum import Enum
import json
import logging
import threading
import time
from typing import Any, Callable, Optional, Protocol, TypeVar

from jwt.utils import base64url_decode

from .const import GRANT_TYPE_PASSWORD, GRANT_TYPE_REFRESH, TOKEN_EXPIRY_MARGIN, TOKEN_PATH
from .exceptions import FlumeAuthError, FlumeConnectionError, FlumeError
from .models import FlumeAccountConfig, FlumeRequest, FlumeTokenData, TokenClaims
from .pipeline import PendingExchange

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class AuthState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    VALID = "valid"
    EXPIRED = "expired"


@dataclass(frozen=True)
class Credentials:
    """Complete token set; replaced as a whole, never edited."""

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: float = 0.0  # epoch seconds, margin already applied
    claims: Optional[TokenClaims] = None

    def __post_init__(self) -> None:
        if self.access_token and self.claims is None:
            raise ValueError("access token without claims")

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def state(self, now: float) -> AuthState:
        if not self.refresh_token:
            return AuthState.UNAUTHENTICATED
        if self.access_token and not self.is_expired(now):
            return AuthState.VALID
        return AuthState.EXPIRED


class TokenStore:
    """Holds the current ``Credentials``; every operation swaps the whole set."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._current = Credentials(expires_at=clock())

    def get(self) -> Credentials:
        with self._lock:
            return self._current

    def replace(self, credentials: Credentials) -> None:
        with self._lock:
            self._current = credentials

    def clear(self) -> None:
        with self._lock:
            self._current = Credentials(expires_at=self._clock())


def parse_claims(access_token: str) -> TokenClaims:
    """Read the claims from the token's middle segment.

    Header and signature are not looked at; Flume only promises three
    segments with a base64url JSON object in the middle.
    """
    segments = access_token.split(".")
    if len(segments) != 3:
        raise FlumeAuthError("Access token does not have three segments")
    try:
        payload = json.loads(base64url_decode(segments[1]))
    except (binascii.Error, ValueError) as err:
        raise FlumeAuthError(f"Unreadable access token: {err}") from err
    try:
        return TokenClaims.from_dict(payload)
    except (KeyError, TypeError, ValueError) as err:
        raise FlumeAuthError(f"Access token without usable claims: {err}") from err


class TokenTransport(Protocol):
    def build_unauthenticated(
        self, path: str, method: str = "GET", body: Optional[dict[str, Any]] = None
    ) -> FlumeRequest: ...

    def dispatch(
        self, request: FlumeRequest, factory: Callable[[Any], T], *, name: str = "exchange"
    ) -> PendingExchange[T]: ...


class FlumeAuthenticator:
    """Keeps one Flume account authorized.

    At most one token request is in flight at a time; callers arriving while
    it runs wait for that same request instead of starting their own.
    """

    def __init__(
        self,
        transport: TokenTransport,
        account: FlumeAccountConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._transport = transport
        self._account = account
        self._clock = clock
        self._store = TokenStore(clock)
        self._pending: Optional[asyncio.Future[bool]] = None
        # failure that voided the last credential set, if any
        self.last_error: Optional[FlumeError] = None
        _LOGGER.debug("Created a token authenticator for Flume user %s", account.username)

    @property
    def store(self) -> TokenStore:
        return self._store

    @property
    def state(self) -> AuthState:
        return self._store.get().state(self._clock())

    @property
    def access_token(self) -> Optional[str]:
        return self._store.get().access_token

    @property
    def user_id(self) -> int:
        claims = self._store.get().claims
        return claims.user_id if claims else 0

    async def ensure_authorized(self) -> bool:
        """True once valid credentials are stored; False means do not proceed."""
        if self.state is AuthState.VALID:
            return True
        if self._pending is None or self._pending.done():
            self._pending = asyncio.ensure_future(self._async_update_tokens())
        else:
            _LOGGER.debug("Token request already in flight, waiting for it")
        pending = self._pending
        try:
            return await asyncio.shield(pending)
        except asyncio.CancelledError:
            if not pending.cancelled():
                raise
            _LOGGER.warning("Token request was cancelled")
            return False

    async def _async_update_tokens(self) -> bool:
        now = self._clock()
        state = self._store.get().state(now)
        # someone else may have refreshed since the caller looked
        if state is AuthState.VALID:
            _LOGGER.debug("Tokens are still valid; no new ones needed")
            return True

        if state is AuthState.EXPIRED:
            _LOGGER.debug("Access token expired, using refresh token")
            body = self._refresh_request_body()
        else:
            _LOGGER.debug("No refresh token stored, requesting new tokens")
            body = self._password_request_body()

        request = self._transport.build_unauthenticated(TOKEN_PATH, "POST", body)
        try:
            tokens = await self._transport.dispatch(request, FlumeTokenData.from_dict, name="token request")
            credentials = self._credentials_from(tokens[0])
        except FlumeError as err:
            _LOGGER.info("Flume token request failed: %s", err)
            self._void(err)
            return False
        except Exception as err:
            _LOGGER.exception("Unexpected error requesting Flume tokens")
            failure = FlumeConnectionError(f"Unexpected token response: {err!r}")
            failure.__cause__ = err
            self._void(failure)
            return False

        self._store.replace(credentials)
        self.last_error = None
        _LOGGER.debug(
            "New access token for user %s expires in %s s", credentials.claims.user_id, tokens[0].expires_in
        )
        return True

    def _credentials_from(self, tokens: FlumeTokenData) -> Credentials:
        claims = parse_claims(tokens.access_token)
        return Credentials(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=self._clock() + tokens.expires_in - TOKEN_EXPIRY_MARGIN,
            claims=claims,
        )

    def _void(self, err: FlumeError) -> None:
        self._store.clear()
        self.last_error = err

    def _password_request_body(self) -> dict[str, Any]:
        return {
            "grant_type": GRANT_TYPE_PASSWORD,
            "username": self._account.username,
            "password": self._account.password,
            "client_id": self._account.client_id,
            "client_secret": self._account.client_secret,
        }

    def _refresh_request_body(self) -> dict[str, Any]:
        return {
            "grant_type": GRANT_TYPE_REFRESH,
            "refresh_token": self._store.get().refresh_token,
            "client_id": self._account.client_id,
            "client_secret": self._account.client_secret,
        }
