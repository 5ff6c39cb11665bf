# sensor.py
from __future__ import annotations
from typing import Any, Optional, TypeVar

from homeassistant.components.sensor import (
    SensorEntity,
    SensorDeviceClass,
    SensorStateClass,
)
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import PERCENTAGE, UnitOfVolume
from homeassistant.core import HomeAssistant
from homeassistant.helpers.entity_platform import AddEntitiesCallback
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .const import BATTERY_LEVELS, DOMAIN, MANUFACTURER, MODEL
from .coordinator import (
    FlumeDeviceCoordinator,
    FlumeDeviceStatusCoordinator,
    FlumeWaterUseCoordinator,
)

_CoordT = TypeVar("_CoordT", bound=FlumeDeviceCoordinator)


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry, async_add_entities: AddEntitiesCallback):
    data = hass.data[DOMAIN][entry.entry_id]

    entities: list[SensorEntity] = []
    for coord in data.water_use.values():
        entities.append(WaterUseSensor(coord))
    for coord in data.status.values():
        entities.append(BatteryLevelSensor(coord))

    async_add_entities(entities)


class FlumeDeviceEntity(CoordinatorEntity[_CoordT]):
    """One entity of one Flume sensor; all of them share a device."""

    _attr_has_entity_name = True

    def __init__(self, coordinator: _CoordT, key: str, name: str):
        super().__init__(coordinator)
        device = coordinator.device
        self._attr_unique_id = f"{coordinator.entry.entry_id}_{device.device_id}_{key}"
        self._attr_name = name
        self._device_info = {
            "identifiers": {(DOMAIN, f"device_{device.device_id}")},
            "name": f"Flume {device.device_id}",
            "manufacturer": MANUFACTURER,
            "model": device.product or MODEL,
        }

    @property
    def device_info(self) -> dict[str, Any]:
        return self._device_info


class WaterUseSensor(FlumeDeviceEntity[FlumeWaterUseCoordinator], SensorEntity):
    """Gallons used over the last polling interval."""

    _attr_native_unit_of_measurement = UnitOfVolume.GALLONS
    _attr_state_class = SensorStateClass.MEASUREMENT
    _attr_icon = "mdi:water"

    def __init__(self, coordinator: FlumeWaterUseCoordinator):
        super().__init__(coordinator, "water_use", "Water use")

    @property
    def native_value(self) -> Optional[float]:
        return self.coordinator.data

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        return {"interval_minutes": self.coordinator.interval_minutes}


class BatteryLevelSensor(FlumeDeviceEntity[FlumeDeviceStatusCoordinator], SensorEntity):
    # Flume only reports LOW/MEDIUM/HIGH
    _attr_device_class = SensorDeviceClass.BATTERY
    _attr_native_unit_of_measurement = PERCENTAGE
    _attr_state_class = SensorStateClass.MEASUREMENT

    def __init__(self, coordinator: FlumeDeviceStatusCoordinator):
        super().__init__(coordinator, "battery", "Battery")

    @property
    def native_value(self) -> Optional[int]:
        device = self.coordinator.data
        if device is None or device.battery_level is None:
            return None
        return BATTERY_LEVELS.get(device.battery_level.upper())

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        device = self.coordinator.data
        return {"battery_level": device.battery_level} if device else {}
