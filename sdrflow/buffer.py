"""Interfaces of stream buffers between blocks."""

from __future__ import annotations

import mmap
import os
from abc import ABC, abstractmethod
from typing import Any


def pagesize() -> int:
    """Return the granularity in which buffer memory is mapped."""
    if os.name == "nt":
        return mmap.ALLOCATIONGRANULARITY
    return mmap.PAGESIZE


class BufferWriter(ABC):
    """Writing side of a stream buffer.

    Host buffers expose memory through ``bytes`` and ``produce``; other
    buffers manage their memory themselves and raise TypeError there.
    """

    def __init__(self) -> None:
        self._finished = False

    @abstractmethod
    def add_reader(self, reader_inbox: Any, reader_input_id: int) -> BufferReader:
        """Attach a reader and return its end of the buffer."""

    def produce(self, amount: int) -> None:
        """Mark ``amount`` items as written."""
        raise TypeError(f"{type(self).__name__} does not expose host memory")

    def bytes(self) -> memoryview:
        """Return the writable free region."""
        raise TypeError(f"{type(self).__name__} does not expose host memory")

    @abstractmethod
    async def notify_finished(self) -> None:
        """Tell the readers that no more data will come."""

    def finish(self) -> None:
        self._finished = True

    def finished(self) -> bool:
        return self._finished


class BufferReader(ABC):
    """Reading side of a stream buffer."""

    def __init__(self) -> None:
        self._finished = False

    def bytes(self) -> memoryview:
        """Return the region holding unread data."""
        raise TypeError(f"{type(self).__name__} does not expose host memory")

    def consume(self, amount: int) -> None:
        """Mark ``amount`` items as read."""
        raise TypeError(f"{type(self).__name__} does not expose host memory")

    @abstractmethod
    async def notify_finished(self) -> None:
        """Tell the writer that this reader is done."""

    def finish(self) -> None:
        self._finished = True

    def finished(self) -> bool:
        return self._finished


class BufferBuilder(ABC):
    """Creates the writer of a buffer; instances must be hashable and comparable."""

    @abstractmethod
    def build(self, item_size: int, writer_inbox: Any, writer_output_id: int) -> BufferWriter:
        """Create a writer for items of ``item_size`` bytes."""