# pipeline.py
"""Turn one in-flight HTTP exchange into typed Flume results."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Generator, Generic, Optional, TypeVar

from .envelope import classify
from .exceptions import FlumeCancelledError, FlumeError

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class PendingExchange(Generic[T]):
    """Single-resolution result of one request.

    ``await exchange`` gives the full, non-empty result list or raises the
    categorized ``FlumeError``. ``await exchange.first()`` gives the first
    element or ``None``. Any number of consumers may await either form; the
    exchange itself runs and resolves exactly once.
    """

    def __init__(self, body: Awaitable[str], factory: Callable[[Any], T], *, name: str = "exchange") -> None:
        self._factory = factory
        self._name = name
        self._task: asyncio.Task[list[T]] = asyncio.ensure_future(self._resolve(body))

    async def _resolve(self, body: Awaitable[str]) -> list[T]:
        try:
            raw = await body
            envelope = classify(raw)
            return envelope.decode(self._factory)
        except FlumeError as err:
            _LOGGER.debug("Flume %s failed: %s", self._name, err)
            if err.__cause__ is not None:
                _LOGGER.debug("Inner exception: %s", err.__cause__)
            raise

    def __await__(self) -> Generator[Any, None, list[T]]:
        return self.results().__await__()

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        self._task.cancel()

    async def results(self) -> list[T]:
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                # our caller is being cancelled, not the exchange
                raise
            raise FlumeCancelledError(f"Flume {self._name} was cancelled") from None

    async def first(self) -> Optional[T]:
        """First result or ``None``; failures are logged, never raised.

        Cancellation of the awaiting task still propagates.
        """
        try:
            return (await self.results())[0]
        except FlumeError as err:
            _LOGGER.debug("No result from Flume %s: %s", self._name, err)
        except Exception as err:
            _LOGGER.debug("Unexpected failure in Flume %s: %r", self._name, err)
        return None
