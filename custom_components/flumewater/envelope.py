# envelope.py
"""Classification of Flume response envelopes.

Every Flume response wraps its payload as::

    {"success": true, "code": 200, "message": "...", "http_message": "OK",
     "detailed": ..., "data": [...], "count": 1, "pagination": {...}}

``detailed`` and ``data`` change shape between endpoints and error cases
(object, array, plain string, missing). They are kept as ``RawDocument``
until the call site, which knows what it expects, decodes them.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import json
import logging
from typing import Any, Callable, Optional, TypeVar, Union

from .exceptions import (
    FlumeApiError,
    FlumeAuthError,
    FlumeBadRequestError,
    FlumeConnectionError,
    FlumeError,
    FlumeMalformedResponseError,
    FlumeNotFoundError,
)
from .models import ErrorDetail, FlumePagination

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

AUTH_FAILURE_CODES = frozenset({401, 403, 503})
MISSING_CODE = 503


class DocumentKind(Enum):
    OBJECT = "object"
    ARRAY = "array"
    SCALAR = "scalar"
    ABSENT = "absent"


@dataclass(frozen=True)
class RawDocument:
    """A sub-document kept as text, tagged with the shape it arrived in."""

    kind: DocumentKind
    text: Optional[str] = None

    @classmethod
    def capture(cls, value: Any) -> "RawDocument":
        if value is None:
            return cls(DocumentKind.ABSENT)
        if isinstance(value, dict):
            return cls(DocumentKind.OBJECT, json.dumps(value))
        if isinstance(value, list):
            return cls(DocumentKind.ARRAY, json.dumps(value))
        # strings keep their content so JSON sent as a string is re-parsed later
        if isinstance(value, str):
            return cls(DocumentKind.SCALAR, value)
        return cls(DocumentKind.SCALAR, json.dumps(value))

    @property
    def present(self) -> bool:
        return self.kind is not DocumentKind.ABSENT

    def load(self) -> Any:
        """Parse the kept text; ``None`` when absent. Raises ValueError."""
        if self.text is None:
            return None
        return json.loads(self.text)


@dataclass(frozen=True)
class ResponseEnvelope:
    success: bool = False
    code: int = MISSING_CODE
    message: Optional[str] = None
    http_message: Optional[str] = None
    detailed: RawDocument = RawDocument(DocumentKind.ABSENT)
    data: RawDocument = RawDocument(DocumentKind.ABSENT)
    count: int = 0
    pagination: Optional[FlumePagination] = None

    def failure(self) -> Optional[FlumeError]:
        """The failure this envelope stands for, or None on success."""
        kwargs = {"http_message": self.http_message}
        if self.code in AUTH_FAILURE_CODES:
            return FlumeAuthError(self.message, **kwargs)
        if self.code == 400:
            return FlumeBadRequestError(self.message, **kwargs)
        if self.code == 404:
            return FlumeNotFoundError(self.message, **kwargs)
        if not self.success:
            return FlumeApiError(self.message, **kwargs)
        return None

    def check(self) -> "ResponseEnvelope":
        err = self.failure()
        if err is None:
            return self
        if isinstance(err, FlumeAuthError):
            _LOGGER.error("Authorization problem! %s", err)
        else:
            _LOGGER.warning("Request failed (%s): %s", self.code, err)
        for detail in self.details():
            _LOGGER.debug("Error detail: %s (field %s)", detail.message, detail.field)
        raise err

    def details(self) -> list[ErrorDetail]:
        if self.detailed.kind is DocumentKind.ABSENT:
            return []
        if self.detailed.kind is DocumentKind.SCALAR:
            return [ErrorDetail(message=self.detailed.text)]
        raw = self.detailed.load()
        items = raw if isinstance(raw, list) else [raw]
        out: list[ErrorDetail] = []
        for item in items:
            try:
                out.append(ErrorDetail.from_dict(item))
            except TypeError:
                _LOGGER.debug("Skipping unreadable error detail %r", item)
        return out

    def decode(self, factory: Callable[[Any], T]) -> list[T]:
        """Second pass: build the data array with the caller's element type."""
        if not self.data.present:
            raise FlumeNotFoundError("No result data returned in the response")
        try:
            payload = self.data.load()
        except ValueError as err:
            raise FlumeNotFoundError("Result data is not valid JSON") from err
        if not isinstance(payload, list):
            _LOGGER.warning("Unexpected %s in the data portion of the response, expected an array", self.data.kind.value)
            raise FlumeNotFoundError("Result data is not an array")
        if not payload:
            raise FlumeNotFoundError("No results in the array")

        results: list[T] = []
        for i, item in enumerate(payload):
            if item is None:
                raise FlumeMalformedResponseError(f"Malformed array, result {i} is null")
            try:
                results.append(factory(item))
            except (KeyError, TypeError, ValueError) as err:
                raise FlumeMalformedResponseError(f"Malformed array, result {i}: {err}") from err
        _LOGGER.debug("%d result(s) decoded", len(results))
        return results


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_envelope(raw: Union[str, bytes]) -> ResponseEnvelope:
    """First pass: read the envelope, leave payloads opaque."""
    try:
        body = json.loads(raw)
    except ValueError as err:
        raise FlumeConnectionError("Response body is not valid JSON") from err
    if not isinstance(body, dict):
        raise FlumeConnectionError("Response body is not a JSON object")

    if "code" not in body:
        _LOGGER.debug("code field missing from response")
    pagination = body.get("pagination")
    return ResponseEnvelope(
        success=body.get("success") is True,
        code=_as_int(body.get("code"), MISSING_CODE),
        message=_as_text(body.get("message")),
        http_message=_as_text(body.get("http_message")),
        detailed=RawDocument.capture(body.get("detailed")),
        data=RawDocument.capture(body.get("data")),
        count=_as_int(body.get("count"), 0),
        pagination=FlumePagination.from_dict(pagination) if isinstance(pagination, dict) else None,
    )


def classify(raw: Union[str, bytes]) -> ResponseEnvelope:
    """Parse and raise the categorized failure, if any."""
    return parse_envelope(raw).check()
