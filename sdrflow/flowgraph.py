"""User-facing flowgraph and a handle to a running one."""

from __future__ import annotations

import asyncio
import concurrent.futures
from dataclasses import dataclass
from typing import Any

from sdrflow.buffer import BufferBuilder, BufferWriter
from sdrflow.circular import Circular
from sdrflow.messages import BlockCall, BlockCallback
from sdrflow.topology import Block, Topology


@dataclass(frozen=True)
class DefaultBuffer(BufferBuilder):
    """The buffer used when a connection names none: a circular buffer."""

    def build(self, item_size: int, writer_inbox: Any, writer_output_id: int) -> BufferWriter:
        return Circular().build(item_size, writer_inbox, writer_output_id)


class Flowgraph:
    """Blocks and their connections, ready to be handed to a runtime."""

    def __init__(self) -> None:
        self.topology: Topology | None = Topology()

    def _topology(self) -> Topology:
        if self.topology is None:
            raise RuntimeError("flowgraph is running")
        return self.topology

    def add_block(self, block: Block) -> int:
        return self._topology().add_block(block)

    def connect_stream(
        self, src_block: int, src_port: str, dst_block: int, dst_port: str
    ) -> None:
        self._topology().connect_stream(
            src_block, src_port, dst_block, dst_port, DefaultBuffer()
        )

    def connect_stream_with_type(
        self,
        src_block: int,
        src_port: str,
        dst_block: int,
        dst_port: str,
        buffer: BufferBuilder,
    ) -> None:
        self._topology().connect_stream(src_block, src_port, dst_block, dst_port, buffer)

    def connect_message(
        self, src_block: int, src_port: str, dst_block: int, dst_port: str
    ) -> None:
        self._topology().connect_message(src_block, src_port, dst_block, dst_port)

    def block(self, id: int) -> Block | None:
        """Return the block with ``id``, or None if absent or running."""
        if self.topology is None:
            return None
        return self.topology.block_ref(id)


class FlowgraphHandle:
    """Sends calls to the blocks of a running flowgraph."""

    def __init__(self, inbox: Any) -> None:
        self._inbox = inbox

    async def call(self, block_id: int, port_id: int, data: Any) -> None:
        """Deliver ``data`` to a message input without waiting for a reply."""
        await self._inbox.send(BlockCall(block_id=block_id, port_id=port_id, data=data))

    async def callback(self, block_id: int, port_id: int, data: Any) -> Any:
        """Deliver ``data`` to a message input and return the handler's reply."""
        tx: concurrent.futures.Future = concurrent.futures.Future()
        await self._inbox.send(
            BlockCallback(block_id=block_id, port_id=port_id, data=data, tx=tx)
        )
        return await asyncio.wrap_future(tx)