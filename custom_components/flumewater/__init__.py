# __init__.py
from __future__ import annotations

from dataclasses import dataclass, field
import logging

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.exceptions import ConfigEntryAuthFailed, ConfigEntryNotReady
from homeassistant.helpers.aiohttp_client import async_get_clientsession

from .api_client import FlumeCloud
from .const import (
    CONF_CLIENT_ID,
    CONF_CLIENT_SECRET,
    CONF_DEVICE_IDS,
    CONF_DEVICE_STATUS_INTERVAL,
    CONF_PASSWORD,
    CONF_USERNAME,
    CONF_WATER_USE_INTERVAL,
    DEFAULT_DEVICE_STATUS_INTERVAL,
    DEFAULT_WATER_USE_INTERVAL,
    DOMAIN,
    PLATFORMS,
)
from .coordinator import (
    FlumeAccount,
    FlumeDeviceStatusCoordinator,
    FlumeWaterUseCoordinator,
    parse_device_ids,
)
from .exceptions import FlumeAuthError, FlumeError
from .models import FlumeDevice

_LOGGER = logging.getLogger(__name__)


@dataclass
class FlumeData:
    """What the platforms read from hass.data[DOMAIN][entry_id]."""

    account: FlumeAccount
    devices: dict[int, FlumeDevice] = field(default_factory=dict)
    water_use: dict[int, FlumeWaterUseCoordinator] = field(default_factory=dict)
    status: dict[int, FlumeDeviceStatusCoordinator] = field(default_factory=dict)


def create_client(hass: HomeAssistant, data: dict) -> FlumeCloud:
    return FlumeCloud(
        async_get_clientsession(hass),
        username=data[CONF_USERNAME],
        password=data[CONF_PASSWORD],
        client_id=data[CONF_CLIENT_ID],
        client_secret=data[CONF_CLIENT_SECRET],
    )


def select_sensors(devices: list[FlumeDevice], wanted: set[int]) -> list[FlumeDevice]:
    """Sensors worth polling; bridges carry no usage data."""
    return [
        d for d in devices
        if d.is_sensor and d.device_id > 0 and (not wanted or d.device_id in wanted)
    ]


async def async_setup(hass: HomeAssistant, config: dict) -> bool:
    """Set up via YAML (not used)."""
    return True


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up a Flume account from a config entry."""
    client = create_client(hass, entry.data)
    try:
        devices = await client.async_get_devices()
    except FlumeAuthError as err:
        raise ConfigEntryAuthFailed(str(err)) from err
    except FlumeError as err:
        raise ConfigEntryNotReady(str(err)) from err

    account = FlumeAccount(client)
    account.mark_online()
    data = FlumeData(account=account)

    wanted = parse_device_ids(entry.options.get(CONF_DEVICE_IDS))
    sensors = select_sensors(devices, wanted)
    if not sensors:
        _LOGGER.warning("No Flume sensors found for %s", entry.data[CONF_USERNAME])

    use_minutes = entry.options.get(CONF_WATER_USE_INTERVAL, DEFAULT_WATER_USE_INTERVAL)
    status_minutes = entry.options.get(CONF_DEVICE_STATUS_INTERVAL, DEFAULT_DEVICE_STATUS_INTERVAL)
    for device in sensors:
        _LOGGER.debug("Setting up coordinators for Flume sensor %s", device.device_id)
        data.devices[device.device_id] = device
        data.water_use[device.device_id] = FlumeWaterUseCoordinator(hass, entry, account, device, use_minutes)
        data.status[device.device_id] = FlumeDeviceStatusCoordinator(hass, entry, account, device, status_minutes)

    for coord in (*data.water_use.values(), *data.status.values()):
        await coord.async_config_entry_first_refresh()

    # For the platforms (sensor.py / binary_sensor.py read from here)
    hass.data.setdefault(DOMAIN, {})[entry.entry_id] = data

    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)

    # Reload cleanly on options changes
    entry.async_on_unload(entry.add_update_listener(_reload_on_update))
    return True


async def _reload_on_update(hass: HomeAssistant, entry: ConfigEntry) -> None:
    await hass.config_entries.async_reload(entry.entry_id)


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a Flume config entry."""
    unload_ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    if unload_ok:
        data: FlumeData | None = hass.data.get(DOMAIN, {}).pop(entry.entry_id, None)
        if data is not None:
            await data.account.client.async_close()
    return unload_ok
