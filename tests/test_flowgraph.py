import asyncio
from dataclasses import dataclass

import pytest

from sdrflow.circular import CircularWriter
from sdrflow.config import config
from sdrflow.flowgraph import DefaultBuffer, Flowgraph, FlowgraphHandle
from sdrflow.message_io import MessageIo, MessageIoBuilder
from sdrflow.messages import BlockCall, BlockCallback, ChannelClosed, channel
from sdrflow.slab import Slab
from sdrflow.stream_io import StreamIo, StreamIoBuilder
from sdrflow.topology import TopologyError


@dataclass
class FakeBlock:
    type_name: str
    stream_io: StreamIo
    message_io: MessageIo
    instance_name: str | None = None


def source():
    return FakeBlock(
        "source",
        StreamIoBuilder().add_output("out", 4).build(),
        MessageIoBuilder().add_output("events").build(),
    )


def sink():
    return FakeBlock(
        "sink",
        StreamIoBuilder().add_input("in", 4).build(),
        MessageIoBuilder().add_sync_input("ctrl", lambda k, m, meta, d: d).build(),
    )


def test_block_returns_added_block():
    fg = Flowgraph()
    blk = source()
    id = fg.add_block(blk)
    assert fg.block(id) is blk
    assert fg.block(id + 1) is None


def test_connect_stream_uses_default_buffer():
    fg = Flowgraph()
    src = fg.add_block(source())
    dst = fg.add_block(sink())
    fg.connect_stream(src, "out", dst, "in")
    [key] = fg.topology.stream_edges
    assert key[2].builder == DefaultBuffer()
    fg.topology.validate()


def test_default_buffers_are_shared_per_output():
    fg = Flowgraph()
    src = fg.add_block(source())
    d1 = fg.add_block(sink())
    d2 = fg.add_block(sink())
    fg.connect_stream(src, "out", d1, "in")
    fg.connect_stream(src, "out", d2, "in")
    assert len(fg.topology.stream_edges) == 1
    assert hash(DefaultBuffer()) == hash(DefaultBuffer())


def test_connect_stream_with_type_keeps_builder():
    fg = Flowgraph()
    src = fg.add_block(source())
    dst = fg.add_block(sink())
    builder = Slab.with_size(256)
    fg.connect_stream_with_type(src, "out", dst, "in", builder)
    [key] = fg.topology.stream_edges
    assert key[2].builder is builder


def test_connect_errors_propagate():
    fg = Flowgraph()
    src = fg.add_block(source())
    dst = fg.add_block(sink())
    with pytest.raises(TopologyError, match="invalid dst port name"):
        fg.connect_stream(src, "out", dst, "missing")
    with pytest.raises(TopologyError, match="invalid src port name"):
        fg.connect_message(src, "missing", dst, "ctrl")


def test_connect_message_records_edge():
    fg = Flowgraph()
    src = fg.add_block(source())
    dst = fg.add_block(sink())
    fg.connect_message(src, "events", dst, "ctrl")
    assert [(e[0], e[2]) for e in fg.topology.message_edges] == [(src, dst)]


def test_running_flowgraph_refuses_changes():
    fg = Flowgraph()
    id = fg.add_block(source())
    fg.topology = None
    assert fg.block(id) is None
    with pytest.raises(RuntimeError):
        fg.add_block(sink())


def test_default_buffer_builds_circular_writer():
    writer = DefaultBuffer().build(4, None, 0)
    assert isinstance(writer, CircularWriter)
    assert writer.item_size == 4
    assert writer.capacity * writer.item_size >= config().buffer_size


@pytest.mark.asyncio
async def test_handle_call_sends_block_call():
    tx, rx = channel(4)
    handle = FlowgraphHandle(tx)
    await handle.call(2, 1, "hello")
    assert rx.try_recv() == BlockCall(block_id=2, port_id=1, data="hello")


@pytest.mark.asyncio
async def test_handle_callback_returns_reply():
    tx, rx = channel(4)
    handle = FlowgraphHandle(tx)
    seen = []

    async def responder():
        msg = await rx.recv()
        seen.append(msg)
        msg.tx.set_result(("reply", msg.data))

    task = asyncio.create_task(responder())
    result = await handle.callback(3, 0, "ping")
    await task
    assert result == ("reply", "ping")
    assert isinstance(seen[0], BlockCallback)
    assert (seen[0].block_id, seen[0].port_id) == (3, 0)


@pytest.mark.asyncio
async def test_handle_call_on_closed_inbox_raises():
    tx, _rx = channel(1)
    tx.close()
    with pytest.raises(ChannelClosed):
        await FlowgraphHandle(tx).call(0, 0, None)