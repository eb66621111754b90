"""Single-reader stream buffer in plain memory."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from sdrflow.buffer import BufferBuilder, BufferReader, BufferWriter
from sdrflow.config import config
from sdrflow.messages import (
    ChannelClosed,
    ChannelFull,
    Notify,
    StreamInputDone,
    StreamOutputDone,
)

log = logging.getLogger("sdrflow")


@dataclass(frozen=True)
class Slab(BufferBuilder):
    """Builder of slab buffers of at least ``min_bytes`` bytes."""

    min_bytes: int = field(default_factory=lambda: config().buffer_size)

    @staticmethod
    def with_size(min_bytes: int) -> Slab:
        return Slab(min_bytes)

    def build(self, item_size: int, writer_inbox: Any, writer_output_id: int) -> SlabWriter:
        return SlabWriter(item_size, self.min_bytes, writer_inbox, writer_output_id)


@dataclass
class _State:
    writer_offset: int = 0
    reader_offset: int = 0
    full: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)


def _try_notify(inbox: Any) -> None:
    try:
        inbox.try_send(Notify())
    except (ChannelFull, ChannelClosed):
        pass


class SlabWriter(BufferWriter):
    """Writer of a slab buffer; hands out the contiguous space up to the end."""

    def __init__(
        self, item_size: int, min_bytes: int, writer_inbox: Any, writer_output_id: int
    ) -> None:
        super().__init__()
        if item_size <= 0:
            raise ValueError("item size must be positive")
        buffer_size = min_bytes
        while buffer_size % item_size != 0:
            buffer_size += 1
        log.debug("write with size %s", buffer_size)
        self._buffer = bytearray(buffer_size)
        self._mem = memoryview(self._buffer)
        self._state = _State()
        self.capacity = buffer_size // item_size
        self.item_size = item_size
        self._reader_inbox: Any = None
        self._reader_input_id: int | None = None
        self._writer_inbox = writer_inbox
        self._writer_output_id = writer_output_id
        self._done = False

    @property
    def full(self) -> bool:
        with self._state.lock:
            return self._state.full

    def _space_available(self) -> int:
        state = self._state
        with state.lock:
            if state.full:
                return 0
            if state.reader_offset > state.writer_offset:
                return state.reader_offset - state.writer_offset
            return self.capacity - state.writer_offset

    def add_reader(self, reader_inbox: Any, reader_input_id: int) -> SlabReader:
        if self._reader_inbox is not None:
            raise RuntimeError("slab buffer supports a single reader only")
        self._reader_inbox = reader_inbox
        self._reader_input_id = reader_input_id
        with self._state.lock:
            self._state.reader_offset = self._state.writer_offset
        return SlabReader(
            self._mem.toreadonly(),
            self._state,
            self.capacity,
            self.item_size,
            self._writer_inbox,
            self._writer_output_id,
        )

    def bytes(self) -> memoryview:
        space = self._space_available()
        with self._state.lock:
            offset = self._state.writer_offset
        log.debug("write handing out n items %s, offset %s", space, offset)
        start = offset * self.item_size
        return self._mem[start : start + space * self.item_size]

    def produce(self, amount: int) -> None:
        if self._reader_inbox is None:
            raise RuntimeError("slab buffer has no reader")
        space = self._space_available()
        if amount < 0 or amount > space:
            raise ValueError(f"cannot produce {amount} items, {space} available")
        state = self._state
        with state.lock:
            state.writer_offset = (state.writer_offset + amount) % self.capacity
            if state.reader_offset == state.writer_offset:
                state.full = True
            log.debug(
                "write producing %s, new writer offset %s, full %s",
                amount,
                state.writer_offset,
                state.full,
            )
        _try_notify(self._reader_inbox)

    async def notify_finished(self) -> None:
        if self.finished():
            return
        if self._reader_inbox is None:
            raise RuntimeError("slab buffer has no reader")
        await self._reader_inbox.send(StreamInputDone(input_id=self._reader_input_id))

    def finish(self) -> None:
        self._done = True

    def finished(self) -> bool:
        return self._done


class SlabReader(BufferReader):
    """The reader of a slab buffer."""

    def __init__(
        self,
        mem: memoryview,
        state: _State,
        capacity: int,
        item_size: int,
        writer_inbox: Any,
        writer_output_id: int,
    ) -> None:
        super().__init__()
        self._mem = mem
        self._state = state
        self._capacity = capacity
        self._item_size = item_size
        self._writer_inbox = writer_inbox
        self._writer_output_id = writer_output_id
        self._done = False

    def _space_available(self) -> int:
        state = self._state
        with state.lock:
            if state.full:
                return self._capacity
            if state.reader_offset > state.writer_offset:
                return self._capacity - state.reader_offset
            return state.writer_offset - state.reader_offset

    def bytes(self) -> memoryview:
        space = self._space_available()
        with self._state.lock:
            offset = self._state.reader_offset
        log.debug("reader handing out n items %s, offset %s", space, offset)
        start = offset * self._item_size
        return self._mem[start : start + space * self._item_size]

    def consume(self, amount: int) -> None:
        available = self._space_available()
        if amount < 0 or amount > available:
            raise ValueError(f"cannot consume {amount} items, {available} available")
        state = self._state
        with state.lock:
            state.reader_offset = (state.reader_offset + amount) % self._capacity
            if amount > 0:
                state.full = False
            log.debug(
                "reader consuming %s, new read offset %s, full %s",
                amount,
                state.reader_offset,
                state.full,
            )
        _try_notify(self._writer_inbox)

    async def notify_finished(self) -> None:
        log.debug("slab reader notifies writer")
        if self.finished():
            return
        await self._writer_inbox.send(StreamOutputDone(output_id=self._writer_output_id))

    def finish(self) -> None:
        self._done = True

    def finished(self) -> bool:
        return self._done