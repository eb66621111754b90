"""The blocks of a flowgraph and the connections between them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Protocol

from sdrflow.buffer import BufferBuilder, BufferWriter
from sdrflow.message_io import MessageIo
from sdrflow.stream_io import StreamIo


class Block(Protocol):
    """What the topology needs from a block."""

    type_name: str
    instance_name: str | None
    stream_io: StreamIo
    message_io: MessageIo


class TopologyError(Exception):
    """The structure of the flowgraph is invalid."""


@dataclass(frozen=True, eq=False)
class BufferBuilderEntry:
    """A buffer builder with the item size of the connection.

    Entries compare and hash by their builder alone, so that connections
    from one output with equal builders share one buffer.
    """

    item_size: int
    builder: BufferBuilder

    def build(self, writer_inbox: Any, writer_output_id: int) -> BufferWriter:
        return self.builder.build(self.item_size, writer_inbox, writer_output_id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BufferBuilderEntry):
            return NotImplemented
        return type(self.builder) is type(other.builder) and self.builder == other.builder

    def __hash__(self) -> int:
        return hash((type(self.builder), self.builder))


StreamKey = tuple[int, int, BufferBuilderEntry]


class Topology:
    """Blocks by id, stream edges by source port and buffer, and message edges."""

    def __init__(self) -> None:
        # a slot holds None while its block is out running
        self.blocks: dict[int, Block | None] = {}
        self._free: list[int] = []
        # (src block, src port, buffer) -> [(dst block, dst port)]
        self.stream_edges: dict[StreamKey, list[tuple[int, int]]] = {}
        # (src block, src port, dst block, dst port)
        self.message_edges: list[tuple[int, int, int, int]] = []

    def iter_blocks(self) -> Iterator[tuple[int, Block | None]]:
        """Yield (id, block) pairs in id order."""
        return iter(sorted(self.blocks.items(), key=lambda item: item[0]))

    def block_id(self, name: str) -> int | None:
        for i, block in self.iter_blocks():
            if block is None or block.instance_name is None:
                return None
            if block.instance_name == name:
                return i
        return None

    def block_name(self, id: int) -> str | None:
        block = self.blocks.get(id)
        return None if block is None else block.instance_name

    def add_block(self, block: Block) -> int:
        """Give the block a unique instance name, store it and return its id."""
        i = 0
        while True:
            name = f"{block.type_name}_{i}"
            if self.block_id(name) is None:
                break
            i += 1
        block.instance_name = name
        id = self._free.pop() if self._free else len(self.blocks)
        self.blocks[id] = block
        return id

    def delete_block(self, id: int) -> None:
        """Remove a block and every edge touching it."""
        if id not in self.blocks:
            raise KeyError(f"no block with id {id}")
        del self.blocks[id]
        self._free.append(id)

        edges: dict[StreamKey, list[tuple[int, int]]] = {}
        for key, dsts in self.stream_edges.items():
            if key[0] == id:
                continue
            kept = [d for d in dsts if d[0] != id]
            if kept:
                edges[key] = kept
        self.stream_edges = edges

        self.message_edges = [
            e for e in self.message_edges if e[0] != id and e[2] != id
        ]

    def _present(self, id: int, invalid: str, absent: str) -> Block:
        if id not in self.blocks:
            raise TopologyError(invalid)
        block = self.blocks[id]
        if block is None:
            raise TopologyError(absent)
        return block

    def connect_stream(
        self,
        src_block: int,
        src_port: str,
        dst_block: int,
        dst_port: str,
        buffer_builder: BufferBuilder,
    ) -> None:
        src = self._present(src_block, "src block invalid", "src block not present")
        dst = self._present(dst_block, "dst block invalid", "dst block not present")

        src_port_id = src.stream_io.output_name_to_id(src_port)
        if src_port_id is None:
            raise TopologyError("invalid src port name")
        dst_port_id = dst.stream_io.input_name_to_id(dst_port)
        if dst_port_id is None:
            raise TopologyError("invalid dst port name")

        sp = src.stream_io.output(src_port_id)
        dp = dst.stream_io.input(dst_port_id)
        if sp.item_size != dp.item_size:
            raise TopologyError("item sizes do not match")

        key = (src_block, src_port_id, BufferBuilderEntry(sp.item_size, buffer_builder))
        self.stream_edges.setdefault(key, []).append((dst_block, dst_port_id))

    def connect_message(
        self, src_block: int, src_port: str, dst_block: int, dst_port: str
    ) -> None:
        src = self._present(src_block, "invalid src block", "src block not present")
        dst = self._present(dst_block, "invalid dst block", "dst block not present")

        src_port_id = src.message_io.output_name_to_id(src_port)
        if src_port_id is None:
            raise TopologyError("invalid src port name")
        dst_port_id = dst.message_io.input_name_to_id(dst_port)
        if dst_port_id is None:
            raise TopologyError("invalid dst port name")

        self.message_edges.append((src_block, src_port_id, dst_block, dst_port_id))

    def validate(self) -> None:
        """Raise TopologyError unless the flowgraph can run."""
        for block_id, block in self.iter_blocks():
            if block is None:
                raise TopologyError("block not owned by topology")
            for out_id in range(len(block.stream_io.outputs)):
                if not any(
                    key[0] == block_id and key[1] == out_id and dsts
                    for key, dsts in self.stream_edges.items()
                ):
                    raise TopologyError("unconnected stream output port")
            for input_id in range(len(block.stream_io.inputs)):
                # exactly one buffer with exactly one connection to the input
                feeding = sum(
                    1
                    for dsts in self.stream_edges.values()
                    if dsts.count((block_id, input_id)) == 1
                )
                if feeding != 1:
                    raise TopologyError("stream input port does not have exactly one input")

        for (src, src_port, _), dsts in self.stream_edges.items():
            src_block = self.block_ref(src)
            if src_block is None:
                raise TopologyError("src block not found")
            output = src_block.stream_io.output(src_port)
            for dst, dst_port in dsts:
                dst_block = self.block_ref(dst)
                if dst_block is None:
                    raise TopologyError("dst block not found")
                if output.item_size != dst_block.stream_io.input(dst_port).item_size:
                    raise TopologyError("item size of stream connection does not match")

        names = []
        for _, block in self.iter_blocks():
            if block is None:
                raise TopologyError("block is not set")
            if block.instance_name is None:
                raise TopologyError("block instance name not set")
            names.append(block.instance_name)
        if len(set(names)) != len(names):
            raise TopologyError("duplicate block instance names")

    def block_ref(self, id: int) -> Block | None:
        return self.blocks.get(id)