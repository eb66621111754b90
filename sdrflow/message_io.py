"""Message ports of a block."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from sdrflow.messages import Call, Terminate

SyncHandler = Callable[[Any, "MessageIo", Any, Any], Any]
AsyncHandler = Callable[[Any, "MessageIo", Any, Any], Awaitable[Any]]


def _checked(items: list, id: int, what: str) -> Any:
    if id < 0 or id >= len(items):
        raise IndexError(f"no {what} with id {id}")
    return items[id]


@dataclass(frozen=True)
class MessageInput:
    """A named message input and the handler that serves it.

    The handler is called as ``handler(kernel, message_io, meta, data)`` and
    returns the reply; for async inputs it returns an awaitable.
    """

    name: str
    handler: Callable[..., Any]
    is_async: bool = False


@dataclass
class MessageOutput:
    """A named message output, posting to every connected input."""

    name: str
    handlers: list[tuple[int, Any]] = field(default_factory=list)

    def connect(self, port: int, sender: Any) -> None:
        """Deliver future posts to input ``port`` of the block behind ``sender``."""
        self.handlers.append((port, sender))

    async def notify_finished(self) -> None:
        """Tell every connected block that this output is done."""
        for _, sender in self.handlers:
            await sender.send(Terminate())

    async def post(self, data: Any) -> None:
        """Send a copy of ``data`` to every connected input."""
        for port_id, sender in self.handlers:
            await sender.send(Call(port_id=port_id, data=copy.deepcopy(data)))


def _index_of(ports: list, name: str) -> int | None:
    return next((i for i, port in enumerate(ports) if port.name == name), None)


@dataclass
class MessageIo:
    """The message inputs and outputs of a block."""

    inputs: list[MessageInput] = field(default_factory=list)
    outputs: list[MessageOutput] = field(default_factory=list)

    def input_is_async(self, id: int) -> bool:
        return _checked(self.inputs, id, "message input").is_async

    def input_name_to_id(self, name: str) -> int | None:
        return _index_of(self.inputs, name)

    def input(self, id: int) -> MessageInput:
        return _checked(self.inputs, id, "message input")

    def output(self, id: int) -> MessageOutput:
        return _checked(self.outputs, id, "message output")

    def output_name_to_id(self, name: str) -> int | None:
        return _index_of(self.outputs, name)

    async def post(self, id: int, data: Any) -> None:
        """Post ``data`` on output ``id``."""
        await self.output(id).post(data)


class MessageIoBuilder:
    """Collects message ports and builds a MessageIo."""

    def __init__(self) -> None:
        self._inputs: list[MessageInput] = []
        self._outputs: list[MessageOutput] = []

    def add_async_input(self, name: str, handler: AsyncHandler) -> MessageIoBuilder:
        self._inputs.append(MessageInput(name, handler, is_async=True))
        return self

    def add_sync_input(self, name: str, handler: SyncHandler) -> MessageIoBuilder:
        self._inputs.append(MessageInput(name, handler, is_async=False))
        return self

    def add_output(self, name: str) -> MessageIoBuilder:
        self._outputs.append(MessageOutput(name))
        return self

    def build(self) -> MessageIo:
        return MessageIo(list(self._inputs), list(self._outputs))