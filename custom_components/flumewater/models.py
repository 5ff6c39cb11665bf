# models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Optional

from .const import QUERY_REQUEST_ID

# Flume sends "last_seen" with milliseconds; query buckets without
_DATETIME_FORMATS = ("%Y-%m-%d %H:%M:%S.%f", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S.%fZ")


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    for fmt in _DATETIME_FORMATS:
        try:
            return datetime.strptime(str(value), fmt)
        except ValueError:
            continue
    return None


def _require_mapping(raw: Any, what: str) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise TypeError(f"{what} must be a JSON object, got {type(raw).__name__}")
    return raw


class FlumeDeviceType(IntEnum):
    BRIDGE = 1
    SENSOR = 2


@dataclass(frozen=True)
class FlumeDevice:
    """A bridge or sensor as returned by /devices."""

    device_id: int
    device_type: FlumeDeviceType = FlumeDeviceType.SENSOR
    location_id: int = 0
    user_id: int = 0
    bridge_id: int = 0
    oriented: bool = False
    last_seen: Optional[datetime] = None
    connected: bool = False
    battery_level: Optional[str] = None
    product: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Any) -> "FlumeDevice":
        d = _require_mapping(raw, "device")
        return cls(
            device_id=int(d["id"]),
            device_type=FlumeDeviceType(int(d.get("type", FlumeDeviceType.SENSOR))),
            location_id=int(d.get("location_id") or 0),
            user_id=int(d.get("user_id") or 0),
            bridge_id=int(d.get("bridge_id") or 0),
            oriented=bool(d.get("oriented", False)),
            last_seen=_parse_datetime(d.get("last_seen")),
            connected=bool(d.get("connected", False)),
            battery_level=d.get("battery_level"),
            product=d.get("product"),
        )

    @property
    def is_sensor(self) -> bool:
        return self.device_type is FlumeDeviceType.SENSOR


@dataclass(frozen=True)
class FlumeQueryValue:
    """One bucket of a usage query."""

    value: float
    timestamp: Optional[datetime] = None

    @classmethod
    def from_dict(cls, raw: Any) -> "FlumeQueryValue":
        d = _require_mapping(raw, "query value")
        return cls(value=float(d["value"]), timestamp=_parse_datetime(d.get("datetime")))


@dataclass(frozen=True)
class FlumeQueryResult:
    """Query response entry; value pairs are keyed by our request id.

    The pairs are kept raw (``None`` when the key is missing) so the caller
    can tell "no pairs", "empty pairs" and "null pair" apart.
    """

    value_pairs: Optional[list[Any]] = None

    @classmethod
    def from_dict(cls, raw: Any) -> "FlumeQueryResult":
        d = _require_mapping(raw, "query result")
        pairs = d.get(QUERY_REQUEST_ID)
        if pairs is not None and not isinstance(pairs, list):
            raise TypeError("query value pairs must be a JSON array")
        return cls(value_pairs=pairs)


@dataclass(frozen=True)
class FlumePagination:
    next: Optional[str] = None
    prev: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Any) -> "FlumePagination":
        d = _require_mapping(raw, "pagination")
        return cls(next=d.get("next"), prev=d.get("prev"))


@dataclass(frozen=True)
class ErrorDetail:
    """Entry of the envelope's "detailed" field."""

    message: Optional[str] = None
    field: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Any) -> "ErrorDetail":
        if isinstance(raw, str):
            return cls(message=raw)
        d = _require_mapping(raw, "error detail")
        return cls(message=d.get("message"), field=d.get("field"))


@dataclass(frozen=True)
class FlumeTokenData:
    """Entry of the token endpoint's data array."""

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"

    @classmethod
    def from_dict(cls, raw: Any) -> "FlumeTokenData":
        d = _require_mapping(raw, "token data")
        access = d.get("access_token")
        refresh = d.get("refresh_token")
        if not access or not refresh:
            raise ValueError("token data without access_token/refresh_token")
        return cls(
            access_token=str(access),
            refresh_token=str(refresh),
            expires_in=int(d.get("expires_in") or 0),
            token_type=d.get("token_type") or "bearer",
        )


@dataclass(frozen=True)
class TokenClaims:
    """Payload of the access token's middle segment."""

    user_id: int
    type: str = "USER"
    scope: tuple[str, ...] = ()
    iat: int = 0
    exp: int = 0
    sub: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Any) -> "TokenClaims":
        d = _require_mapping(raw, "token claims")
        scope = d.get("scope") or []
        if isinstance(scope, str):
            scope = scope.split()
        return cls(
            user_id=int(d["user_id"]),
            type=d.get("type") or "USER",
            scope=tuple(scope),
            iat=int(d.get("iat") or 0),
            exp=int(d.get("exp") or 0),
            sub=d.get("sub"),
        )


@dataclass(frozen=True)
class FlumeAccountConfig:
    """Account credentials from the config entry."""

    username: str
    password: str
    client_id: str
    client_secret: str


@dataclass(frozen=True)
class FlumeRequest:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Optional[dict[str, Any]] = None
