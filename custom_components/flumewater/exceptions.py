# exceptions.py
from __future__ import annotations

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    """Category of a failed exchange with the Flume cloud."""

    AUTHORIZATION = "authorization"
    BAD_REQUEST = "bad_request"
    NOT_FOUND = "not_found"
    MALFORMED_RESPONSE = "malformed_response"
    API = "api"
    CONNECTION = "connection"
    CANCELLED = "cancelled"


class FlumeError(Exception):
    """Base class for everything that can go wrong talking to Flume."""

    kind = FailureKind.API

    def __init__(self, message: Optional[str] = None, *, http_message: Optional[str] = None):
        self.message = message
        self.http_message = http_message
        if http_message:
            text = f"{http_message}: {message}"
        else:
            text = message or self.kind.value
        super().__init__(text)


class FlumeAuthError(FlumeError):
    """Credentials rejected or token unusable (401/403/503)."""

    kind = FailureKind.AUTHORIZATION


class FlumeBadRequestError(FlumeError):
    """Server rejected the request itself (400)."""

    kind = FailureKind.BAD_REQUEST


class FlumeNotFoundError(FlumeError):
    """Resource does not exist or no usable data came back."""

    kind = FailureKind.NOT_FOUND


class FlumeMalformedResponseError(FlumeError):
    """Data array contained null or undecodable entries."""

    kind = FailureKind.MALFORMED_RESPONSE


class FlumeApiError(FlumeError):
    """Request answered with success=false and no more specific code."""

    kind = FailureKind.API


class FlumeConnectionError(FlumeError):
    """No usable response: connection error, timeout or non-JSON body."""

    kind = FailureKind.CONNECTION


class FlumeCancelledError(FlumeError):
    """The exchange was cancelled before it completed."""

    kind = FailureKind.CANCELLED
