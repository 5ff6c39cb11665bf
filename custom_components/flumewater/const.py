# const.py
from __future__ import annotations

DOMAIN = "flumewater"

# Credentials / Config
CONF_USERNAME = "username"
CONF_PASSWORD = "password"
CONF_CLIENT_ID = "client_id"
CONF_CLIENT_SECRET = "client_secret"

# Options
CONF_WATER_USE_INTERVAL = "water_use_interval"
CONF_DEVICE_STATUS_INTERVAL = "device_status_interval"
CONF_DEVICE_IDS = "device_ids"  # optional, comma separated; empty = all sensors
DEFAULT_WATER_USE_INTERVAL = 1  # minutes
DEFAULT_DEVICE_STATUS_INTERVAL = 1  # minutes

# API
API_ENDPOINT = "https://api.flumetech.com/"
TOKEN_PATH = "oauth/token"
DEVICES_PATH = "/devices"
QUERY_REQUEST_ID = "homeAssistantRequest"
QUERY_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
GRANT_TYPE_PASSWORD = "password"
GRANT_TYPE_REFRESH = "refresh_token"
REQUEST_TIMEOUT = 10  # seconds

# Access tokens count as expired this long before the server says so
TOKEN_EXPIRY_MARGIN = 300  # seconds

# Battery level text -> percent
BATTERY_LEVELS = {
    "LOW": 25,
    "MEDIUM": 50,
    "HIGH": 75,
}

# Platforms
PLATFORMS = ["sensor", "binary_sensor"]

# Branding (for device_info)
MANUFACTURER = "Flume"
MODEL = "Smart Water Monitor"
