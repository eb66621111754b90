"""Stream ports of a block."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Any, TypeVar

from sdrflow.buffer import BufferReader, BufferWriter

T = TypeVar("T")


def _typed_view(raw: memoryview, fmt: str) -> memoryview:
    view = memoryview(raw).cast("B")
    size = struct.calcsize(fmt)
    usable = len(view) // size * size
    return view[:usable].cast(fmt)


@dataclass(eq=False)
class StreamInput:
    """A stream input port, fed by a buffer reader once connected."""

    name: str
    item_size: int
    reader: BufferReader | None = field(default=None, repr=False)
    items_read: int = 0

    def _reader(self) -> BufferReader:
        if self.reader is None:
            raise RuntimeError(f"stream input {self.name!r} has no reader")
        return self.reader

    def try_as(self, kind: type[T]) -> T | None:
        """Return the reader if it is a ``kind``, else None."""
        reader = self._reader()
        return reader if isinstance(reader, kind) else None

    def consume(self, amount: int) -> None:
        if amount == 0:
            return
        self._reader().consume(amount)

    def slice(self, fmt: str) -> memoryview:
        """Return the readable data viewed as items of struct format ``fmt``."""
        return _typed_view(self._reader().bytes(), fmt)

    def set_reader(self, reader: BufferReader) -> None:
        if self.reader is not None:
            raise RuntimeError(f"stream input {self.name!r} already has a reader")
        self.reader = reader

    async def notify_finished(self) -> None:
        await self._reader().notify_finished()

    def finish(self) -> None:
        self._reader().finish()

    def finished(self) -> bool:
        return self._reader().finished()


@dataclass(eq=False)
class StreamOutput:
    """A stream output port, writing into a buffer once connected."""

    name: str
    item_size: int
    writer: BufferWriter | None = field(default=None, repr=False)

    def _writer(self) -> BufferWriter:
        if self.writer is None:
            raise RuntimeError(f"stream output {self.name!r} has no writer")
        return self.writer

    def init(self, writer: BufferWriter) -> None:
        if self.writer is not None:
            raise RuntimeError(f"stream output {self.name!r} already has a writer")
        self.writer = writer

    def add_reader(self, reader_inbox: Any, reader_port: int) -> BufferReader:
        return self._writer().add_reader(reader_inbox, reader_port)

    def try_as(self, kind: type[T]) -> T | None:
        """Return the writer if it is a ``kind``, else None."""
        writer = self._writer()
        return writer if isinstance(writer, kind) else None

    def produce(self, amount: int) -> None:
        if amount == 0:
            return
        self._writer().produce(amount)

    def slice(self, fmt: str) -> memoryview:
        """Return the writable space viewed as items of struct format ``fmt``."""
        return _typed_view(self._writer().bytes(), fmt)

    async def notify_finished(self) -> None:
        await self._writer().notify_finished()

    def finish(self) -> None:
        self._writer().finish()

    def finished(self) -> bool:
        return self._writer().finished()


def _index_of(ports: list, name: str) -> int | None:
    return next((i for i, port in enumerate(ports) if port.name == name), None)


@dataclass
class StreamIo:
    """The stream inputs and outputs of a block."""

    inputs: list[StreamInput] = field(default_factory=list)
    outputs: list[StreamOutput] = field(default_factory=list)

    def input_by_name(self, name: str) -> StreamInput | None:
        return next((p for p in self.inputs if p.name == name), None)

    def input(self, id: int) -> StreamInput:
        return self.inputs[id]

    def input_name_to_id(self, name: str) -> int | None:
        return _index_of(self.inputs, name)

    def output_by_name(self, name: str) -> StreamOutput | None:
        return next((p for p in self.outputs if p.name == name), None)

    def output(self, id: int) -> StreamOutput:
        return self.outputs[id]

    def output_name_to_id(self, name: str) -> int | None:
        return _index_of(self.outputs, name)


class StreamIoBuilder:
    """Collects stream ports and builds a StreamIo."""

    def __init__(self) -> None:
        self._inputs: list[StreamInput] = []
        self._outputs: list[StreamOutput] = []

    def add_input(self, name: str, item_size: int) -> StreamIoBuilder:
        self._inputs.append(StreamInput(name, item_size))
        return self

    def add_output(self, name: str, item_size: int) -> StreamIoBuilder:
        self._outputs.append(StreamOutput(name, item_size))
        return self

    def build(self) -> StreamIo:
        return StreamIo(list(self._inputs), list(self._outputs))