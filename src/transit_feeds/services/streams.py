"""Polling subscriptions over the point-in-time fetch operations."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from transit_feeds.exceptions import ConfigurationError
from transit_feeds.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class StreamState(str, Enum):
    PRIMING = "priming"
    STEADY = "steady"
    CLOSED = "closed"


@dataclass(frozen=True)
class Snapshot(Generic[T]):
    """One emission of a stream: a value, or the error that ended it."""

    value: Optional[T] = None
    error: Optional[BaseException] = None
    final: bool = False
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PollingStream(Generic[T]):
    """Turns a fetch coroutine into a cancellable sequence of snapshots.

    The first fetch runs immediately and its result is emitted even when
    empty; if it fails, the error is raised to the consumer and the stream
    ends. After that the stream waits ``interval_sec`` between fetches. A
    configuration-class error ends the stream the same way, while any other
    failure emits ``empty()`` and polling continues.

    The polling loop runs in its own task and hands snapshots over a queue of
    size one, so it never gets more than one fetch ahead of the consumer.
    Leaving the context (or ``aclose()``) cancels the task wherever it is
    suspended, including mid-fetch.

    Usage:
        async with PollingStream(fetch, 15, name="bus_positions") as stream:
            async for positions in stream:
                ...
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[T]],
        interval_sec: float,
        *,
        name: str,
        empty: Callable[[], T] = list,  # type: ignore[assignment]
    ) -> None:
        if interval_sec < 0:
            raise ValueError("interval_sec must not be negative")

        self.name = name
        self.interval_sec = interval_sec
        self._fetch = fetch
        self._empty = empty
        self._queue: asyncio.Queue[Snapshot[T]] = asyncio.Queue(maxsize=1)
        self._task: asyncio.Task[None] | None = None
        self._state = StreamState.PRIMING
        self._poll_count = 0
        self._log = logger.bind(stream=name)

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def poll_count(self) -> int:
        """Number of upstream fetches started so far."""
        return self._poll_count

    def start(self) -> None:
        """Launch the polling task. Idempotent."""
        if self._task is not None or self._state is StreamState.CLOSED:
            return
        self._task = asyncio.create_task(self._run(), name=f"polling-stream:{self.name}")
        self._log.debug("Polling stream started", interval_sec=self.interval_sec)

    async def aclose(self) -> None:
        """Cancel the polling task and end the stream."""
        if self._state is StreamState.CLOSED and self._task is None:
            return

        self._state = StreamState.CLOSED
        if self._task and not self._task.done():
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
        self._task = None

        # Drop anything buffered, then wake a consumer still waiting on the queue
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(Snapshot(final=True))

        self._log.debug("Polling stream closed", poll_count=self._poll_count)

    async def __aenter__(self) -> PollingStream[T]:
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def __aiter__(self) -> PollingStream[T]:
        self.start()
        return self

    async def __anext__(self) -> T:
        if self._state is StreamState.CLOSED:
            raise StopAsyncIteration

        snapshot = await self._queue.get()
        if self._state is StreamState.CLOSED and not snapshot.final:
            raise StopAsyncIteration
        if snapshot.final:
            self._state = StreamState.CLOSED
            if snapshot.error is not None:
                raise snapshot.error
            raise StopAsyncIteration

        return snapshot.value  # type: ignore[return-value]

    async def _poll(self) -> T:
        self._poll_count += 1
        return await self._fetch()

    async def _run(self) -> None:
        try:
            value = await self._poll()
        except Exception as exc:
            self._log.error("Initial fetch failed, ending stream", error=str(exc))
            await self._queue.put(Snapshot(error=exc, final=True))
            return

        self._state = StreamState.STEADY
        await self._queue.put(Snapshot(value=value))

        while True:
            await asyncio.sleep(self.interval_sec)

            try:
                value = await self._poll()
            except ConfigurationError as exc:
                self._log.error("Poll failed with configuration error, ending stream", error=str(exc))
                await self._queue.put(Snapshot(error=exc, final=True))
                return
            except Exception as exc:
                self._log.warning(
                    "Poll failed, emitting empty snapshot",
                    poll_count=self._poll_count,
                    error=str(exc),
                )
                value = self._empty()

            await self._queue.put(Snapshot(value=value))
