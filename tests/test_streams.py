"""Tests for PollingStream subscriptions."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from transit_feeds.exceptions import (
    BatchLimitError,
    StopNotFoundError,
    UpstreamHTTPError,
)
from transit_feeds.services.streams import PollingStream, StreamState


class TestPriming:
    """The first fetch runs immediately and any failure ends the stream."""

    @pytest.mark.asyncio
    async def test_first_value_emitted_even_when_empty(self) -> None:
        fetch = AsyncMock(return_value=[])

        async with PollingStream(fetch, 60, name="positions") as stream:
            assert await anext(stream) == []
            assert stream.state is StreamState.STEADY

    @pytest.mark.asyncio
    async def test_terminal_error_on_first_fetch(self) -> None:
        fetch = AsyncMock(side_effect=StopNotFoundError("55555"))
        stream = PollingStream(fetch, 0, name="predictions")

        async with stream:
            with pytest.raises(StopNotFoundError):
                await anext(stream)
            with pytest.raises(StopAsyncIteration):
                await anext(stream)
            await asyncio.sleep(0.01)

        assert fetch.await_count == 1
        assert stream.state is StreamState.CLOSED

    @pytest.mark.asyncio
    async def test_transient_error_on_first_fetch_also_ends_stream(self) -> None:
        fetch = AsyncMock(side_effect=UpstreamHTTPError("HTTP 503", 503))

        async with PollingStream(fetch, 0, name="positions") as stream:
            with pytest.raises(UpstreamHTTPError):
                await anext(stream)
            await asyncio.sleep(0.01)

        assert fetch.await_count == 1


class TestSteadyState:
    """Polling after the first snapshot."""

    @pytest.mark.asyncio
    async def test_transient_error_on_third_poll_emits_empty(self) -> None:
        calls = 0

        async def fetch() -> list[int]:
            nonlocal calls
            calls += 1
            if calls == 3:
                raise UpstreamHTTPError("HTTP 503", 503)
            return [calls]

        async with PollingStream(fetch, 0, name="positions") as stream:
            values = [await anext(stream) for _ in range(4)]

        assert values == [[1], [2], [], [4]]
        assert calls >= 4
        assert stream.poll_count == calls

    @pytest.mark.asyncio
    async def test_configuration_error_ends_stream(self) -> None:
        fetch = AsyncMock(side_effect=[["first"], BatchLimitError("too many"), ["never"]])

        async with PollingStream(fetch, 0, name="profiles") as stream:
            assert await anext(stream) == ["first"]
            with pytest.raises(BatchLimitError):
                await anext(stream)
            with pytest.raises(StopAsyncIteration):
                await anext(stream)

        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_custom_empty_value(self) -> None:
        fetch = AsyncMock(side_effect=["12:00", RuntimeError("boom"), "12:01"])

        async with PollingStream(fetch, 0, name="system_time", empty=lambda: "local") as stream:
            values = [await anext(stream) for _ in range(3)]

        assert values == ["12:00", "local", "12:01"]

    @pytest.mark.asyncio
    async def test_async_for(self) -> None:
        fetch = AsyncMock(side_effect=[[1], [2], [3], [4]])
        seen = []

        async with PollingStream(fetch, 0, name="positions") as stream:
            async for value in stream:
                seen.append(value)
                if len(seen) == 3:
                    break

        assert seen == [[1], [2], [3]]


class TestCancellation:
    """Closing the stream stops all further upstream work."""

    @pytest.mark.asyncio
    async def test_close_cancels_in_flight_fetch(self) -> None:
        calls = 0
        cancelled = False
        in_flight = asyncio.Event()

        async def fetch() -> list[str]:
            nonlocal calls, cancelled
            calls += 1
            if calls == 1:
                return ["first"]
            in_flight.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled = True
                raise
            return ["never"]

        stream = PollingStream(fetch, 0, name="positions")
        async with stream:
            assert await anext(stream) == ["first"]
            await asyncio.wait_for(in_flight.wait(), timeout=1)

        assert cancelled
        assert calls == 2
        assert stream.state is StreamState.CLOSED

    @pytest.mark.asyncio
    async def test_close_during_interval_wait(self) -> None:
        fetch = AsyncMock(return_value=["first"])
        stream = PollingStream(fetch, 3600, name="alerts")

        async with stream:
            await anext(stream)

        await asyncio.sleep(0.01)
        assert fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_iteration_after_close_stops(self) -> None:
        stream = PollingStream(AsyncMock(return_value=[]), 3600, name="positions")
        await stream.aclose()

        with pytest.raises(StopAsyncIteration):
            await anext(stream)

    @pytest.mark.asyncio
    async def test_buffered_snapshot_dropped_on_close(self) -> None:
        fetch = AsyncMock(side_effect=[[1], [2], [3]])
        stream = PollingStream(fetch, 0, name="positions")
        stream.start()

        assert await anext(stream) == [1]
        await asyncio.sleep(0.05)
        await stream.aclose()

        assert fetch.await_count >= 2
        with pytest.raises(StopAsyncIteration):
            await anext(stream)

    def test_negative_interval_rejected(self) -> None:
        with pytest.raises(ValueError):
            PollingStream(AsyncMock(), -1, name="positions")
