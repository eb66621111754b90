"""Messages exchanged between blocks and the runtime, and the channels carrying them."""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any


@dataclass
class Initialize:
    """Ask a block to initialise itself."""


@dataclass
class Initialized:
    """A block finished initialising."""


@dataclass
class Notify:
    """Wake a block so it calls its work function again."""


@dataclass
class Terminate:
    """Ask a block to shut down."""


@dataclass
class BlockDone:
    id: int
    block: Any


@dataclass
class StreamOutputInit:
    src_port: int
    writer: Any


@dataclass
class StreamInputInit:
    dst_port: int
    reader: Any


@dataclass
class StreamInputDone:
    input_id: int


@dataclass
class StreamOutputDone:
    output_id: int


@dataclass
class MessageOutputConnect:
    src_port: int
    dst_port: int
    dst_inbox: Any


@dataclass
class Call:
    port_id: int
    data: Any


@dataclass
class Callback:
    """A call whose result is delivered through ``tx`` (a concurrent future)."""

    port_id: int
    data: Any
    tx: Any


@dataclass
class BlockCall:
    block_id: int
    port_id: int
    data: Any


@dataclass
class BlockCallback:
    block_id: int
    port_id: int
    data: Any
    tx: Any


class ChannelFull(Exception):
    """The channel holds as many messages as it may."""


class ChannelClosed(Exception):
    """The channel was closed."""


class _Shared:
    def __init__(self, capacity: int) -> None:
        self.lock = threading.Lock()
        self.queue: deque[Any] = deque()
        self.capacity = capacity
        self.closed = False
        self.recv_waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future]] = []
        self.send_waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future]] = []


def _resolve(fut: asyncio.Future) -> None:
    if not fut.done():
        fut.set_result(None)


def _wake(waiters: list) -> None:
    for loop, fut in waiters:
        try:
            loop.call_soon_threadsafe(_resolve, fut)
        except RuntimeError:
            pass
    waiters.clear()


def _register(waiters: list) -> asyncio.Future:
    loop = asyncio.get_running_loop()
    fut = loop.create_future()
    waiters.append((loop, fut))
    return fut


async def _park(shared: _Shared, waiters: list, fut: asyncio.Future) -> None:
    try:
        await fut
    finally:
        with shared.lock:
            waiters[:] = [w for w in waiters if w[1] is not fut]


class Sender:
    """Sending end of a bounded channel; usable from any thread or event loop."""

    def __init__(self, shared: _Shared) -> None:
        self._shared = shared

    async def send(self, message: Any) -> None:
        """Enqueue a message, waiting for space; raise ChannelClosed if closed."""
        shared = self._shared
        while True:
            with shared.lock:
                if shared.closed:
                    raise ChannelClosed("channel closed")
                if len(shared.queue) < shared.capacity:
                    shared.queue.append(message)
                    _wake(shared.recv_waiters)
                    return
                fut = _register(shared.send_waiters)
            await _park(shared, shared.send_waiters, fut)

    def try_send(self, message: Any) -> None:
        """Enqueue a message without waiting."""
        shared = self._shared
        with shared.lock:
            if shared.closed:
                raise ChannelClosed("channel closed")
            if len(shared.queue) >= shared.capacity:
                raise ChannelFull("channel full")
            shared.queue.append(message)
            _wake(shared.recv_waiters)

    def close(self) -> None:
        """Close the channel; queued messages can still be received."""
        shared = self._shared
        with shared.lock:
            shared.closed = True
            _wake(shared.recv_waiters)
            _wake(shared.send_waiters)

    @property
    def closed(self) -> bool:
        return self._shared.closed


class Receiver:
    """Receiving end of a bounded channel."""

    def __init__(self, shared: _Shared) -> None:
        self._shared = shared

    async def recv(self) -> Any:
        """Return the next message, or None once closed and drained."""
        shared = self._shared
        while True:
            with shared.lock:
                if shared.queue:
                    message = shared.queue.popleft()
                    _wake(shared.send_waiters)
                    return message
                if shared.closed:
                    return None
                fut = _register(shared.recv_waiters)
            await _park(shared, shared.recv_waiters, fut)

    def try_recv(self) -> Any:
        """Return the next message or None if none is queued yet."""
        shared = self._shared
        with shared.lock:
            if shared.queue:
                message = shared.queue.popleft()
                _wake(shared.send_waiters)
                return message
            if shared.closed:
                raise ChannelClosed("channel closed")
            return None

    async def peek(self) -> Any:
        """Wait for a message and return it without removing it (None if closed)."""
        shared = self._shared
        while True:
            with shared.lock:
                if shared.queue:
                    return shared.queue[0]
                if shared.closed:
                    return None
                fut = _register(shared.recv_waiters)
            await _park(shared, shared.recv_waiters, fut)

    def __aiter__(self) -> Receiver:
        return self

    async def __anext__(self) -> Any:
        message = await self.recv()
        if message is None:
            raise StopAsyncIteration
        return message


def channel(capacity: int) -> tuple[Sender, Receiver]:
    """Create a bounded channel holding up to ``capacity`` messages."""
    if capacity < 1:
        raise ValueError("channel capacity must be at least 1")
    shared = _Shared(capacity)
    return Sender(shared), Receiver(shared)