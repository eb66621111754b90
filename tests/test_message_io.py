import pytest

from sdrflow.message_io import MessageIo, MessageIoBuilder, MessageOutput
from sdrflow.messages import Call, Terminate, channel


def sync_handler(kernel, mio, meta, data):
    return ("sync", data)


async def async_handler(kernel, mio, meta, data):
    return ("async", data)


def build_io():
    return (
        MessageIoBuilder()
        .add_sync_input("ctrl", sync_handler)
        .add_async_input("freq", async_handler)
        .add_output("out")
        .add_output("status")
        .build()
    )


def test_name_lookup_follows_insertion_order():
    mio = build_io()
    assert mio.input(mio.input_name_to_id("ctrl")).name == "ctrl"
    assert mio.input(mio.input_name_to_id("freq")).name == "freq"
    assert mio.input_name_to_id("ctrl") < mio.input_name_to_id("freq")
    assert mio.output(mio.output_name_to_id("status")).name == "status"


def test_unknown_names_give_none():
    mio = build_io()
    assert mio.input_name_to_id("missing") is None
    assert mio.output_name_to_id("missing") is None


def test_input_is_async_flags():
    mio = build_io()
    assert mio.input_is_async(mio.input_name_to_id("freq")) is True
    assert mio.input_is_async(mio.input_name_to_id("ctrl")) is False


def test_bad_ids_raise():
    mio = build_io()
    with pytest.raises(IndexError):
        mio.input_is_async(len(mio.inputs))
    with pytest.raises(IndexError):
        mio.output(-1)


@pytest.mark.asyncio
async def test_handlers_are_kept():
    mio = build_io()
    sync = mio.input(mio.input_name_to_id("ctrl")).handler
    asyn = mio.input(mio.input_name_to_id("freq")).handler
    assert sync(None, mio, None, 7) == ("sync", 7)
    assert await asyn(None, mio, None, 7) == ("async", 7)


def test_builder_without_ports_builds_empty_io():
    mio = MessageIoBuilder().build()
    assert mio == MessageIo([], [])


@pytest.mark.asyncio
async def test_post_reaches_every_connected_input():
    tx_a, rx_a = channel(4)
    tx_b, rx_b = channel(4)
    out = MessageOutput("out")
    out.connect(3, tx_a)
    out.connect(5, tx_b)
    payload = {"gain": [1, 2]}
    await out.post(payload)
    got_a = rx_a.try_recv()
    got_b = rx_b.try_recv()
    assert got_a == Call(port_id=3, data=payload)
    assert got_b == Call(port_id=5, data=payload)
    assert got_a.data is not got_b.data and got_a.data == got_b.data


@pytest.mark.asyncio
async def test_notify_finished_sends_terminate():
    tx, rx = channel(2)
    out = MessageOutput("out")
    out.connect(0, tx)
    await out.notify_finished()
    assert rx.try_recv() == Terminate()
    assert rx.try_recv() is None


@pytest.mark.asyncio
async def test_message_io_post_uses_output_by_id():
    mio = build_io()
    tx, rx = channel(2)
    out_id = mio.output_name_to_id("status")
    mio.output(out_id).connect(1, tx)
    await mio.post(out_id, "ready")
    assert rx.try_recv() == Call(port_id=1, data="ready")