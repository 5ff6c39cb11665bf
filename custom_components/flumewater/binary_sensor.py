# binary_sensor.py
from __future__ import annotations
from typing import Any, Optional

from homeassistant.components.binary_sensor import (
    BinarySensorDeviceClass,
    BinarySensorEntity,
)
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import EntityCategory
from homeassistant.core import HomeAssistant
from homeassistant.helpers.entity_platform import AddEntitiesCallback

from .const import DOMAIN
from .coordinator import FlumeDeviceStatusCoordinator, FlumeWaterUseCoordinator
from .sensor import FlumeDeviceEntity


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry, async_add_entities: AddEntitiesCallback):
    data = hass.data[DOMAIN][entry.entry_id]

    entities: list[BinarySensorEntity] = [
        *(WaterFlowingSensor(coord) for coord in data.water_use.values()),
        *(ConnectedSensor(coord) for coord in data.status.values()),
    ]
    async_add_entities(entities)


class WaterFlowingSensor(FlumeDeviceEntity[FlumeWaterUseCoordinator], BinarySensorEntity):
    """On when any water was used during the last interval."""

    _attr_device_class = BinarySensorDeviceClass.RUNNING
    _attr_icon = "mdi:water-pump"

    def __init__(self, coordinator: FlumeWaterUseCoordinator):
        super().__init__(coordinator, "water_on", "Water flowing")

    @property
    def is_on(self) -> Optional[bool]:
        use = self.coordinator.data
        return None if use is None else use > 0


class ConnectedSensor(FlumeDeviceEntity[FlumeDeviceStatusCoordinator], BinarySensorEntity):
    _attr_device_class = BinarySensorDeviceClass.CONNECTIVITY
    _attr_entity_category = EntityCategory.DIAGNOSTIC

    def __init__(self, coordinator: FlumeDeviceStatusCoordinator):
        super().__init__(coordinator, "connected", "Cloud connection")

    @property
    def is_on(self) -> Optional[bool]:
        device = self.coordinator.data
        return None if device is None else device.connected

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        account = self.coordinator.account
        attrs: dict[str, Any] = {"account_status": account.status.value}
        if account.reason:
            attrs["account_reason"] = account.reason
        device = self.coordinator.data
        if device is not None and device.last_seen is not None:
            attrs["last_seen"] = device.last_seen.isoformat()
        return attrs
