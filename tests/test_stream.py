"""Tests for the live log stream."""

import asyncio

import pytest

from login_sentry.errors import StreamClosedError
from login_sentry.stream import LogStream


async def _collect(stream: LogStream) -> list[str]:
    lines = []
    async for line in stream:
        lines.append(line)
    return lines


@pytest.mark.asyncio
async def test_lines_in_order_then_closed():
    """Lines arrive in order; an unexpected exit raises StreamClosedError."""
    stream = LogStream(["/bin/sh", "-c", "printf 'one\\ntwo\\r\\nthree\\n'"])
    lines = []

    with pytest.raises(StreamClosedError) as exc_info:
        async for line in stream:
            lines.append(line)

    assert lines == ["one", "two", "three"]
    assert exc_info.value.returncode == 0


@pytest.mark.asyncio
async def test_closed_reports_exit_status():
    """The follower's exit status is carried on the error."""
    stream = LogStream(["/bin/sh", "-c", "exit 3"])

    with pytest.raises(StreamClosedError, match="exit status 3") as exc_info:
        await _collect(stream)

    assert exc_info.value.returncode == 3


@pytest.mark.asyncio
async def test_missing_command_raises():
    """A follower that cannot be started is a closed stream."""
    stream = LogStream(["/nonexistent/journalctl", "-f"])

    with pytest.raises(StreamClosedError, match="Cannot start"):
        await stream.start()


@pytest.mark.asyncio
async def test_invalid_utf8_is_replaced():
    """Undecodable bytes do not break the stream."""
    stream = LogStream(["/bin/sh", "-c", "printf 'bad \\377 byte\\n'"])
    lines = []

    with pytest.raises(StreamClosedError):
        async for line in stream:
            lines.append(line)

    assert lines == ["bad \ufffd byte"]


@pytest.mark.asyncio
async def test_overlong_line_is_skipped():
    """A line over the limit is dropped and reading continues."""
    script = "head -c 300 /dev/zero | tr '\\0' x; printf '\\nshort\\n'"
    stream = LogStream(["/bin/sh", "-c", script], line_limit=64)
    lines = []

    with pytest.raises(StreamClosedError):
        async for line in stream:
            lines.append(line)

    assert "short" in lines
    assert all(len(line) <= 64 for line in lines)


@pytest.mark.asyncio
async def test_stop_ends_iteration_quietly():
    """stop() ends a pending iteration without an error."""
    stream = LogStream(["/bin/sh", "-c", "printf 'first\\n'; exec sleep 10"])
    await stream.start()
    assert stream.running

    lines = []

    async def consume() -> None:
        async for line in stream:
            lines.append(line)

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.2)
    await stream.stop()
    await asyncio.wait_for(task, timeout=5.0)

    assert lines == ["first"]
    assert not stream.running


@pytest.mark.asyncio
async def test_stop_before_start():
    """stop() on a stream that never started is a no-op."""
    stream = LogStream(["/bin/sh", "-c", "exec sleep 10"])
    await stream.stop()
    assert not stream.running


@pytest.mark.asyncio
async def test_stop_after_exit():
    """stop() after the follower already exited does not raise."""
    stream = LogStream(["/bin/sh", "-c", "exit 0"])
    with pytest.raises(StreamClosedError):
        await _collect(stream)

    await stream.stop()


@pytest.mark.asyncio
async def test_start_after_stop_spawns_nothing():
    """Once stopped, start() and iteration do not launch the follower."""
    stream = LogStream(["/bin/sh", "-c", "exec sleep 30"])
    await stream.stop()

    await stream.start()
    lines = await asyncio.wait_for(_collect(stream), timeout=3.0)

    assert lines == []
    assert not stream.running


@pytest.mark.asyncio
async def test_overlong_line_with_buffered_newline_is_dropped():
    """A trigger inside a line over the limit is not seen."""
    script = "printf '%060d authentication failure\\n' 0"
    stream = LogStream(["/bin/sh", "-c", script], line_limit=64)
    lines = []

    with pytest.raises(StreamClosedError):
        async for line in stream:
            lines.append(line)

    assert lines == []
