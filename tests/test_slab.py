import pytest

from sdrflow.config import config
from sdrflow.messages import Notify, StreamInputDone, StreamOutputDone, channel
from sdrflow.slab import Slab, SlabWriter


def _drain(rx):
    out = []
    while (m := rx.try_recv()) is not None:
        out.append(m)
    return out


def _pair(item_size=4, min_bytes=40):
    wtx, wrx = channel(10)
    rtx, rrx = channel(10)
    w = SlabWriter(item_size, min_bytes, wtx, 1)
    r = w.add_reader(rtx, 2)
    return w, r, wrx, rrx


@pytest.mark.parametrize("item_size,min_bytes", [(4, 10), (8, 64), (3, 7), (16, 1)])
def test_capacity_is_smallest_multiple(item_size, min_bytes):
    tx, _ = channel(1)
    w = SlabWriter(item_size, min_bytes, tx, 0)
    total = w.capacity * item_size
    assert total >= min_bytes
    assert (w.capacity - 1) * item_size < min_bytes
    assert w.item_size == item_size


def test_default_builder_uses_config():
    assert Slab().min_bytes == config().buffer_size


def test_builder_equality_and_build():
    a = Slab.with_size(64)
    assert a == Slab.with_size(64)
    assert hash(a) == hash(Slab.with_size(64))
    assert not (a == Slab.with_size(128))
    tx, _ = channel(1)
    w = a.build(8, tx, 0)
    assert isinstance(w, SlabWriter)
    assert w.capacity * 8 >= 64


def test_initial_spaces():
    w, r, _, _ = _pair()
    assert len(w.bytes()) == w.capacity * 4
    assert len(r.bytes()) == 0


def test_data_round_trip():
    w, r, _, rrx = _pair()
    view = w.bytes().cast("I")
    for i in range(3):
        view[i] = 7 * i
    w.produce(3)
    assert list(r.bytes().cast("I")) == [0, 7, 14]
    assert _drain(rrx) == [Notify()]
    r.consume(1)
    assert list(r.bytes().cast("I")) == [7, 14]


def test_fill_and_drain():
    w, r, wrx, _ = _pair()
    cap = w.capacity
    w.produce(cap)
    assert w.full is True
    assert len(w.bytes()) == 0
    assert len(r.bytes()) == cap * 4
    r.consume(cap)
    assert w.full is False
    assert len(w.bytes()) == cap * 4
    assert len(r.bytes()) == 0
    assert _drain(wrx) == [Notify()]


def test_writer_space_limited_by_reader_after_wrap():
    w, r, _, _ = _pair()
    cap = w.capacity
    w.produce(cap)
    r.consume(2)
    # writer wrapped to the start and may only fill up to the reader
    assert len(w.bytes()) == 2 * 4
    assert len(r.bytes()) == (cap - 2) * 4


def test_second_reader_rejected():
    w, _, _, _ = _pair()
    tx, _ = channel(1)
    with pytest.raises(RuntimeError):
        w.add_reader(tx, 0)


def test_produce_without_reader_raises():
    tx, _ = channel(1)
    w = SlabWriter(4, 16, tx, 0)
    with pytest.raises(RuntimeError):
        w.produce(1)


def test_over_produce_and_over_consume_raise():
    w, r, _, _ = _pair()
    with pytest.raises(ValueError):
        w.produce(w.capacity + 1)
    w.produce(2)
    with pytest.raises(ValueError):
        r.consume(3)


def test_reader_view_is_read_only():
    w, r, _, _ = _pair()
    w.produce(1)
    with pytest.raises(TypeError):
        r.bytes()[0] = 1


@pytest.mark.asyncio
async def test_writer_notify_finished():
    w, _, _, rrx = _pair()
    await w.notify_finished()
    assert _drain(rrx) == [StreamInputDone(input_id=2)]


@pytest.mark.asyncio
async def test_finished_writer_sends_nothing():
    w, _, _, rrx = _pair()
    w.finish()
    assert w.finished() is True
    await w.notify_finished()
    assert _drain(rrx) == []


@pytest.mark.asyncio
async def test_reader_notify_finished():
    _, r, wrx, _ = _pair()
    await r.notify_finished()
    assert _drain(wrx) == [StreamOutputDone(output_id=1)]
    r.finish()
    await r.notify_finished()
    assert _drain(wrx) == []