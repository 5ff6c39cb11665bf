# api_client.py
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
import logging
import time
from typing import Any, Callable, Dict, Optional, TypeVar

import aiohttp

from .auth import FlumeAuthenticator
from .const import (
    API_ENDPOINT,
    DEVICES_PATH,
    QUERY_DATETIME_FORMAT,
    QUERY_REQUEST_ID,
    REQUEST_TIMEOUT,
    TOKEN_PATH,
)
from .exceptions import (
    FlumeAuthError,
    FlumeConnectionError,
    FlumeError,
    FlumeNotFoundError,
)
from .models import (
    FlumeAccountConfig,
    FlumeDevice,
    FlumeQueryResult,
    FlumeQueryValue,
    FlumeRequest,
)
from .pipeline import PendingExchange

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def build_water_use_query(minutes: int, now: datetime) -> Dict[str, Any]:
    """Body for a usage query summing the last ``minutes`` minutes.

    The start is truncated to the minute; Flume rejects queries whose start
    lies in its own future.
    """
    since = (now - timedelta(minutes=minutes)).replace(second=0, microsecond=0)
    return {
        "queries": [
            {
                "request_id": QUERY_REQUEST_ID,
                "since_datetime": since.strftime(QUERY_DATETIME_FORMAT),
                "until_datetime": now.strftime(QUERY_DATETIME_FORMAT),
                "bucket": "MIN",
                "group_multiplier": minutes,
                "operation": "SUM",
                "sort_direction": "ASC",
            }
        ]
    }


def first_query_value(result: FlumeQueryResult) -> FlumeQueryValue:
    pairs = result.value_pairs
    if pairs is None:
        raise FlumeNotFoundError("No value pairs in the query result")
    if not pairs:
        raise FlumeNotFoundError("The value pair array is empty")
    if pairs[0] is None:
        raise FlumeNotFoundError("The first value pair is null")
    try:
        return FlumeQueryValue.from_dict(pairs[0])
    except (KeyError, TypeError, ValueError) as err:
        raise FlumeNotFoundError(f"Unreadable value pair: {err}") from err


class FlumeCloud:
    """
    Async client for the Flume cloud API.

    Endpoints (relative to https://api.flumetech.com/):
      - POST oauth/token
      - GET  users/{userId}/devices
      - GET  users/{userId}/devices/{deviceId}
      - POST users/{userId}/devices/{deviceId}/query
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession],
        *,
        username: str,
        password: str,
        client_id: str,
        client_secret: str,
        base: str = API_ENDPOINT,
        clock: Callable[[], float] = time.time,
    ):
        # None -> own session, started on first request
        self._s = session
        self._owns_session = False
        self._base = base.rstrip("/") + "/"
        self.auth = FlumeAuthenticator(
            self,
            FlumeAccountConfig(
                username=username,
                password=password,
                client_id=client_id,
                client_secret=client_secret,
            ),
            clock=clock,
        )

    # -------------------- Transport --------------------

    def _session(self) -> aiohttp.ClientSession:
        if self._s is None or (self._owns_session and self._s.closed):
            _LOGGER.debug("Starting HTTP session for Flume")
            self._s = aiohttp.ClientSession()
            self._owns_session = True
        return self._s

    async def async_close(self) -> None:
        """Close the session if we started it. Safe to call repeatedly."""
        if self._owns_session and self._s is not None and not self._s.closed:
            await self._s.close()
        if self._owns_session:
            self._s = None
            self._owns_session = False

    async def _send(self, request: FlumeRequest) -> str:
        _LOGGER.debug("%s %s", request.method, request.url)
        try:
            async with self._session().request(
                request.method,
                request.url,
                headers=request.headers,
                json=request.body,
                timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT),
            ) as r:
                text = await r.text()
                if r.status >= 400 and not text.strip():
                    raise FlumeConnectionError(f"{request.method} {request.url} failed {r.status} without body")
                if request.url.endswith(TOKEN_PATH):
                    _LOGGER.debug("Response %s: <%d bytes of token data>", r.status, len(text))
                else:
                    _LOGGER.debug("Response %s: %s", r.status, text)
                return text
        except aiohttp.ClientError as err:
            raise FlumeConnectionError(f"{request.method} {request.url} failed: {err}") from err
        except asyncio.TimeoutError as err:
            raise FlumeConnectionError(f"{request.method} {request.url} timed out") from err
        except UnicodeDecodeError as err:
            raise FlumeConnectionError(f"{request.method} {request.url} returned an undecodable body") from err

    def dispatch(
        self, request: FlumeRequest, factory: Callable[[Any], T], *, name: str = "exchange"
    ) -> PendingExchange[T]:
        return PendingExchange(self._send(request), factory, name=name)

    # -------------------- Requests --------------------

    def _request(
        self,
        path: str,
        method: str,
        body: Optional[Dict[str, Any]],
        headers: Optional[Dict[str, str]] = None,
    ) -> FlumeRequest:
        url = path if path.startswith(self._base) else f"{self._base}{path.lstrip('/')}"
        return FlumeRequest(
            method=method,
            url=url,
            headers={
                "content-type": "application/json",
                "accept": "application/json",
                **(headers or {}),
            },
            body=body,
        )

    def build_unauthenticated(
        self, path: str, method: str = "GET", body: Optional[Dict[str, Any]] = None
    ) -> FlumeRequest:
        """Request without bearer token, for the token endpoint itself."""
        return self._request(path, method, body)

    async def build_authorized(
        self, path: str, method: str = "GET", body: Optional[Dict[str, Any]] = None
    ) -> Optional[FlumeRequest]:
        """Request below users/{userId} with a current bearer token.

        None means authorization failed and nothing should be sent.
        """
        if not await self.auth.ensure_authorized():
            return None
        return self._request(
            f"users/{self.auth.user_id}{path}",
            method,
            body,
            {"authorization": f"Bearer {self.auth.access_token}"},
        )

    async def _dispatch_authorized(
        self,
        path: str,
        factory: Callable[[Any], T],
        *,
        method: str = "GET",
        body: Optional[Dict[str, Any]] = None,
    ) -> PendingExchange[T]:
        request = await self.build_authorized(path, method, body)
        if request is None:
            last = self.auth.last_error
            if isinstance(last, FlumeConnectionError):
                # token endpoint unreachable: a communication problem, not bad credentials
                raise FlumeConnectionError(f"Could not authorize with Flume: {last}") from last
            raise FlumeAuthError(f"Not authorized with Flume: {last}" if last else "Not authorized with Flume") from last
        return self.dispatch(request, factory, name=f"{method} {path}")

    # -------------------- Devices --------------------

    async def async_get_devices(self) -> list[FlumeDevice]:
        """GET users/{userId}/devices -> bridges and sensors of the account."""
        exchange = await self._dispatch_authorized(DEVICES_PATH, FlumeDevice.from_dict)
        return await exchange

    async def async_get_device(self, device_id: int) -> FlumeDevice:
        """GET users/{userId}/devices/{deviceId}; must be a sensor."""
        exchange = await self._dispatch_authorized(f"{DEVICES_PATH}/{device_id}", FlumeDevice.from_dict)
        device = (await exchange)[0]
        if not device.is_sensor:
            _LOGGER.warning("Incorrect device type returned! Expecting a Flume sensor and got a bridge")
            raise FlumeNotFoundError(f"Device {device_id} is a bridge, not a sensor")
        return device

    async def find_device(self, device_id: int) -> Optional[FlumeDevice]:
        """Like async_get_device, but any failure just means "not found"."""
        try:
            exchange = await self._dispatch_authorized(f"{DEVICES_PATH}/{device_id}", FlumeDevice.from_dict)
        except FlumeError as err:
            _LOGGER.debug("Could not look up device %s: %s", device_id, err)
            return None
        return await exchange.first()

    # -------------------- Usage --------------------

    async def async_get_water_use(self, device_id: int, minutes: int, now: Optional[datetime] = None) -> float:
        """Water used over the last ``minutes`` minutes (one summed bucket)."""
        body = build_water_use_query(minutes, now or datetime.now())
        exchange = await self._dispatch_authorized(
            f"{DEVICES_PATH}/{device_id}/query",
            FlumeQueryResult.from_dict,
            method="POST",
            body=body,
        )
        value = first_query_value((await exchange)[0])
        _LOGGER.debug("Water use of device %s over %s min: %s", device_id, minutes, value.value)
        return value.value
