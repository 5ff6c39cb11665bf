# coordinator.py
from __future__ import annotations

from datetime import timedelta
from enum import Enum
import logging
from typing import Any, Optional, TypeVar

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.exceptions import ConfigEntryAuthFailed
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator, UpdateFailed

from .api_client import FlumeCloud
from .const import DOMAIN
from .exceptions import (
    FlumeAuthError,
    FlumeCancelledError,
    FlumeError,
    FlumeNotFoundError,
)
from .models import FlumeDevice

_LOGGER = logging.getLogger(__name__)

_DataT = TypeVar("_DataT")


class AccountStatus(Enum):
    UNKNOWN = "unknown"
    ONLINE = "online"
    OFFLINE = "offline"


class FlumeAccount:
    """Account-level state shared by every device coordinator of one entry.

    An authorization failure seen by any device marks the whole account
    offline; the other devices then fail fast instead of hammering the
    token endpoint with credentials that were just rejected.
    """

    def __init__(self, client: FlumeCloud) -> None:
        self.client = client
        self.status = AccountStatus.UNKNOWN
        self.reason: Optional[str] = None
        self.auth_error: Optional[FlumeAuthError] = None

    def mark_online(self) -> None:
        if self.status is not AccountStatus.ONLINE:
            _LOGGER.debug("Flume account is online")
        self.status = AccountStatus.ONLINE
        self.reason = None

    def mark_auth_failed(self, err: FlumeAuthError) -> None:
        _LOGGER.debug("Flume account notified of authorization error, setting it offline")
        self.status = AccountStatus.OFFLINE
        self.reason = str(err)
        self.auth_error = err


def parse_device_ids(raw: Any) -> set[int]:
    """Comma separated device ids from the options; empty = all sensors."""
    if not raw:
        return set()
    if isinstance(raw, (list, tuple, set)):
        parts = [str(p) for p in raw]
    else:
        parts = str(raw).split(",")
    return {int(p.strip()) for p in parts if p.strip()}


def translate_failure(err: FlumeError, device_id: Optional[int] = None) -> Exception:
    """Map a Flume failure onto what the coordinator should raise."""
    if isinstance(err, FlumeAuthError):
        return ConfigEntryAuthFailed(str(err))
    if isinstance(err, FlumeNotFoundError):
        return UpdateFailed(f"Flume device {device_id} not found: {err}")
    if isinstance(err, FlumeCancelledError):
        return UpdateFailed("Flume request was cancelled")
    return UpdateFailed(f"Error communicating with Flume: {err}")


class FlumeDeviceCoordinator(DataUpdateCoordinator[_DataT]):
    """Polls one aspect of one Flume sensor."""

    poll_name = "device"

    def __init__(
        self,
        hass: HomeAssistant,
        entry: ConfigEntry,
        account: FlumeAccount,
        device: FlumeDevice,
        interval_minutes: int,
    ):
        super().__init__(
            hass,
            _LOGGER,
            config_entry=entry,
            name=f"{DOMAIN} {self.poll_name} {device.device_id}",
            update_interval=timedelta(minutes=interval_minutes),
        )
        self.entry = entry
        self.account = account
        self.device = device
        self.interval_minutes = interval_minutes

    @property
    def client(self) -> FlumeCloud:
        return self.account.client

    async def _async_poll(self) -> _DataT:
        raise NotImplementedError

    async def _async_update_data(self) -> _DataT:
        if self.account.auth_error is not None:
            raise ConfigEntryAuthFailed(str(self.account.auth_error))
        try:
            data = await self._async_poll()
        except FlumeAuthError as err:
            _LOGGER.warning("Flume request for device %s was not authorized", self.device.device_id)
            self.account.mark_auth_failed(err)
            raise translate_failure(err) from err
        except FlumeError as err:
            raise translate_failure(err, self.device.device_id) from err
        except Exception as err:
            _LOGGER.exception("Unexpected error polling Flume device %s: %s", self.device.device_id, err)
            raise UpdateFailed(f"Unexpected: {err}") from err

        self.account.mark_online()
        return data


class FlumeWaterUseCoordinator(FlumeDeviceCoordinator[float]):
    """Water used during the last polling interval."""

    poll_name = "water use"

    async def _async_poll(self) -> float:
        return await self.client.async_get_water_use(self.device.device_id, self.interval_minutes)


class FlumeDeviceStatusCoordinator(FlumeDeviceCoordinator[FlumeDevice]):
    """Device record (battery, connection) of one sensor."""

    poll_name = "status"

    async def _async_poll(self) -> FlumeDevice:
        device = await self.client.async_get_device(self.device.device_id)
        if device.battery_level is None:
            _LOGGER.info("No battery information in the response for device %s", device.device_id)
        return device
