# config_flow.py
from __future__ import annotations

from collections.abc import Mapping
import logging
from typing import Any

import voluptuous as vol
from homeassistant import config_entries
from homeassistant.config_entries import ConfigFlowResult

from . import create_client
from .const import (
    DOMAIN,
    CONF_USERNAME,
    CONF_PASSWORD,
    CONF_CLIENT_ID,
    CONF_CLIENT_SECRET,
    CONF_WATER_USE_INTERVAL,
    CONF_DEVICE_STATUS_INTERVAL,
    CONF_DEVICE_IDS,
    DEFAULT_WATER_USE_INTERVAL,
    DEFAULT_DEVICE_STATUS_INTERVAL,
)
from .coordinator import parse_device_ids
from .exceptions import FlumeAuthError, FlumeError

_LOGGER = logging.getLogger(__name__)


def _schema_user(defaults: dict | None = None) -> vol.Schema:
    defaults = defaults or {}
    return vol.Schema({
        vol.Required(CONF_USERNAME, default=defaults.get(CONF_USERNAME, "")): str,
        vol.Required(CONF_PASSWORD, default=defaults.get(CONF_PASSWORD, "")): str,
        vol.Required(CONF_CLIENT_ID, default=defaults.get(CONF_CLIENT_ID, "")): str,
        vol.Required(CONF_CLIENT_SECRET, default=defaults.get(CONF_CLIENT_SECRET, "")): str,
    })


class FlumeConfigFlow(config_entries.ConfigFlow, domain=DOMAIN):
    VERSION = 1

    async def _async_validate(self, data: dict[str, Any]) -> dict[str, str]:
        errors: dict[str, str] = {}
        client = create_client(self.hass, data)
        try:
            # Login and user id check in one go
            await client.async_get_devices()
        except FlumeAuthError:
            errors["base"] = "invalid_auth"
        except FlumeError:
            errors["base"] = "cannot_connect"
        except Exception:
            _LOGGER.exception("Unexpected error validating Flume credentials")
            errors["base"] = "unknown"
        return errors

    async def async_step_user(self, user_input=None) -> ConfigFlowResult:
        errors: dict[str, str] = {}

        if user_input:
            await self.async_set_unique_id(user_input[CONF_USERNAME].lower())
            self._abort_if_unique_id_configured()

            errors = await self._async_validate(user_input)
            if not errors:
                return self.async_create_entry(title=f"Flume {user_input[CONF_USERNAME]}", data=user_input)

        return self.async_show_form(step_id="user", data_schema=_schema_user(user_input), errors=errors)

    async def async_step_reauth(self, entry_data: Mapping[str, Any]) -> ConfigFlowResult:
        return await self.async_step_reauth_confirm()

    async def async_step_reauth_confirm(self, user_input=None) -> ConfigFlowResult:
        entry = self._get_reauth_entry()
        errors: dict[str, str] = {}

        if user_input is not None:
            data = {**entry.data, CONF_PASSWORD: user_input[CONF_PASSWORD]}
            errors = await self._async_validate(data)
            if not errors:
                return self.async_update_reload_and_abort(entry, data_updates={CONF_PASSWORD: user_input[CONF_PASSWORD]})

        return self.async_show_form(
            step_id="reauth_confirm",
            data_schema=vol.Schema({vol.Required(CONF_PASSWORD): str}),
            description_placeholders={"username": entry.data[CONF_USERNAME]},
            errors=errors,
        )

    @staticmethod
    def async_get_options_flow(config_entry):
        return FlumeOptionsFlow()


class FlumeOptionsFlow(config_entries.OptionsFlow):
    async def async_step_init(self, user_input=None) -> ConfigFlowResult:
        errors: dict[str, str] = {}
        options = self.config_entry.options

        if user_input is not None:
            try:
                wanted = parse_device_ids(user_input.get(CONF_DEVICE_IDS))
            except ValueError:
                errors[CONF_DEVICE_IDS] = "invalid_device_ids"
            else:
                client = create_client(self.hass, self.config_entry.data)
                for device_id in sorted(wanted):
                    if await client.find_device(device_id) is None:
                        errors[CONF_DEVICE_IDS] = "device_not_found"
                        break
            if not errors:
                return self.async_create_entry(title="", data=user_input)
            options = user_input

        schema = vol.Schema({
            vol.Optional(
                CONF_WATER_USE_INTERVAL,
                default=options.get(CONF_WATER_USE_INTERVAL, DEFAULT_WATER_USE_INTERVAL),
            ): vol.All(int, vol.Range(min=1)),
            vol.Optional(
                CONF_DEVICE_STATUS_INTERVAL,
                default=options.get(CONF_DEVICE_STATUS_INTERVAL, DEFAULT_DEVICE_STATUS_INTERVAL),
            ): vol.All(int, vol.Range(min=1)),
            vol.Optional(CONF_DEVICE_IDS, default=options.get(CONF_DEVICE_IDS, "")): str,
        })
        return self.async_show_form(step_id="init", data_schema=schema, errors=errors)
