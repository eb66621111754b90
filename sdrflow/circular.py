"""Circular stream buffer backed by a mirrored memory region."""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from sdrflow.buffer import BufferBuilder, BufferReader, BufferWriter, pagesize
from sdrflow.config import config
from sdrflow.messages import (
    ChannelClosed,
    ChannelFull,
    Notify,
    StreamInputDone,
    StreamOutputDone,
)

log = logging.getLogger("sdrflow")


class DoubleMapped:
    """A region of ``size`` bytes followed by a mirror of itself.

    Any contiguous window of at most ``size`` bytes that starts in the first
    half can be viewed without wrapping. Writes become visible in both halves
    once they are committed.
    """

    def __init__(self, size: int) -> None:
        page_size = pagesize()
        if size <= 0 or size % page_size != 0:
            raise ValueError(f"size ({size}) not a multiple of page size ({page_size})")
        self.size = size
        self._buf = bytearray(2 * size)
        self._mem = memoryview(self._buf)

    def view(self, offset: int, length: int) -> memoryview:
        """Return a writable window of ``length`` bytes starting at ``offset``."""
        if offset < 0 or length < 0 or offset + length > 2 * self.size:
            raise IndexError(f"window {offset}+{length} outside of mapping")
        return self._mem[offset : offset + length]

    def commit(self, offset: int, length: int) -> None:
        """Mirror bytes written at ``offset`` into the other half."""
        if length < 0 or length > self.size:
            raise ValueError(f"cannot commit {length} bytes of a {self.size} byte buffer")
        size = self.size
        start = offset % size
        end = start + length
        head_end = min(end, size)
        self._mem[start + size : head_end + size] = self._mem[start:head_end]
        if end > size:
            self._mem[0 : end - size] = self._mem[size:end]


@dataclass(frozen=True)
class Circular(BufferBuilder):
    """Builder of circular buffers of at least ``min_bytes`` bytes."""

    min_bytes: int = field(default_factory=lambda: config().buffer_size)

    @staticmethod
    def with_size(min_bytes: int) -> Circular:
        return Circular(min_bytes)

    def build(self, item_size: int, writer_inbox: Any, writer_output_id: int) -> CircularWriter:
        return CircularWriter(item_size, self.min_bytes, writer_inbox, writer_output_id)


@dataclass
class _ReaderState:
    offset: int
    inbox: Any
    input_id: int


@dataclass
class _State:
    writer_offset: int = 0
    readers: dict[int, _ReaderState] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock)
    ids: itertools.count = field(default_factory=itertools.count)


def _try_notify(inbox: Any) -> None:
    # a full inbox already guarantees a wake-up, so dropping is fine
    try:
        inbox.try_send(Notify())
    except (ChannelFull, ChannelClosed):
        pass


class CircularWriter(BufferWriter):
    """Writer of a circular buffer shared by any number of readers."""

    def __init__(self, item_size: int, min_bytes: int, inbox: Any, output_id: int) -> None:
        super().__init__()
        if item_size <= 0:
            raise ValueError("item size must be positive")
        page_size = pagesize()
        buffer_size = page_size
        while buffer_size < min_bytes or buffer_size % item_size != 0:
            buffer_size += page_size
        self.buffer = DoubleMapped(buffer_size)
        self.capacity = buffer_size // item_size
        self.item_size = item_size
        self._state = _State()
        self._inbox = inbox
        self._output_id = output_id
        self._done = False

    @property
    def reader_count(self) -> int:
        with self._state.lock:
            return len(self._state.readers)

    def _space_available(self) -> tuple[int, int]:
        state = self._state
        with state.lock:
            space = self.capacity
            writer_offset = state.writer_offset
            for reader in state.readers.values():
                if reader.offset <= writer_offset:
                    space = min(space, reader.offset + self.capacity - 1 - writer_offset)
                else:
                    space = min(space, reader.offset - 1 - writer_offset)
            return space, writer_offset

    def add_reader(self, inbox: Any, input_id: int) -> CircularReader:
        state = self._state
        with state.lock:
            reader_id = next(state.ids)
            state.readers[reader_id] = _ReaderState(state.writer_offset, inbox, input_id)
        return CircularReader(
            self.buffer,
            state,
            self.capacity,
            self.item_size,
            reader_id,
            self._inbox,
            self._output_id,
        )

    def produce(self, amount: int) -> None:
        space, writer_offset = self._space_available()
        if amount < 0 or amount > space:
            raise ValueError(f"cannot produce {amount} items, {space} available")
        self.buffer.commit(writer_offset * self.item_size, amount * self.item_size)
        state = self._state
        with state.lock:
            state.writer_offset = (state.writer_offset + amount) % self.capacity
            inboxes = [r.inbox for r in state.readers.values()]
        for inbox in inboxes:
            _try_notify(inbox)

    def bytes(self) -> memoryview:
        space, offset = self._space_available()
        return self.buffer.view(offset * self.item_size, space * self.item_size)

    async def notify_finished(self) -> None:
        if self.finished():
            return
        with self._state.lock:
            readers = [(r.inbox, r.input_id) for r in self._state.readers.values()]
        for inbox, input_id in readers:
            await inbox.send(StreamInputDone(input_id=input_id))

    def finish(self) -> None:
        self._done = True

    def finished(self) -> bool:
        return self._done


class CircularReader(BufferReader):
    """One reader of a circular buffer."""

    def __init__(
        self,
        buffer: DoubleMapped,
        state: _State,
        capacity: int,
        item_size: int,
        reader_id: int,
        writer_inbox: Any,
        writer_output_id: int,
    ) -> None:
        super().__init__()
        self._buffer = buffer
        self._state = state
        self._capacity = capacity
        self._item_size = item_size
        self._id = reader_id
        self._writer_inbox = writer_inbox
        self._writer_output_id = writer_output_id
        self._done = False

    def _available(self, read_offset: int, write_offset: int) -> int:
        if read_offset > write_offset:
            return write_offset + self._capacity - read_offset
        return write_offset - read_offset

    def bytes(self) -> memoryview:
        with self._state.lock:
            reader_offset = self._state.readers[self._id].offset
            writer_offset = self._state.writer_offset
        space = self._available(reader_offset, writer_offset)
        return self._buffer.view(
            reader_offset * self._item_size, space * self._item_size
        ).toreadonly()

    def consume(self, amount: int) -> None:
        state = self._state
        with state.lock:
            reader = state.readers[self._id]
            available = self._available(reader.offset, state.writer_offset)
            if amount < 0 or amount > available:
                raise ValueError(f"cannot consume {amount} items, {available} available")
            reader.offset = (reader.offset + amount) % self._capacity
        _try_notify(self._writer_inbox)

    async def notify_finished(self) -> None:
        if self.finished():
            return
        try:
            await self._writer_inbox.send(StreamOutputDone(output_id=self._writer_output_id))
        except ChannelClosed:
            log.debug("writer inbox closed before reader finished")
        with self._state.lock:
            self._state.readers.pop(self._id, None)

    def finish(self) -> None:
        self._done = True

    def finished(self) -> bool:
        return self._done