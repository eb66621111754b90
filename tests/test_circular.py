import pytest

from sdrflow.buffer import pagesize
from sdrflow.circular import Circular, CircularWriter, DoubleMapped
from sdrflow.messages import StreamInputDone, StreamOutputDone, channel


def _drain(rx):
    out = []
    while (m := rx.try_recv()) is not None:
        out.append(m)
    return out


def test_circ_buffer():
    ps = pagesize()
    item_size = 8
    tx, _rx = channel(1)
    w = CircularWriter(item_size, 123, tx, 0)

    assert w.item_size == item_size
    assert (w.capacity * item_size) % ps == 0
    assert w.reader_count == 0
    assert len(w.bytes()) // item_size == w.capacity

    ri, _ro = channel(100)
    r = w.add_reader(ri, 0)
    assert len(r.bytes()) == 0
    assert len(w.bytes()) // item_size == w.capacity - 1
    assert w.reader_count == 1

    buff = w.bytes().cast("Q")
    for i in range(10):
        buff[i] = i

    w.produce(3)
    w.produce(7)
    assert len(r.bytes()) // item_size == 10
    assert len(w.bytes()) // item_size == w.capacity - 1 - 10

    data = r.bytes().cast("Q")
    assert list(data) == list(range(10))

    r.consume(6)
    assert len(r.bytes()) // item_size == 4
    assert len(w.bytes()) // item_size == w.capacity - 1 - 4


def test_tmp_file():
    ps = 3 * pagesize()
    b = DoubleMapped(ps)
    b1 = b.view(0, ps).cast("Q")
    for i in range(len(b1)):
        b1[i] = i
    b.commit(0, ps)
    b2 = b.view(ps, ps).cast("Q")
    assert list(b1) == list(b2)


def test_double_mapped_rejects_unaligned_size():
    with pytest.raises(ValueError):
        DoubleMapped(pagesize() + 1)


def test_double_mapped_commit_wraps_from_mirror():
    size = pagesize()
    b = DoubleMapped(size)
    window = b.view(size - 4, 8)
    window[:] = b"abcdefgh"
    b.commit(size - 4, 8)
    assert bytes(b.view(0, 4)) == b"efgh"
    assert bytes(b.view(2 * size - 4, 4)) == b"abcd"


def test_wraparound_read_is_contiguous():
    tx, _ = channel(10)
    ri, _ = channel(100)
    w = CircularWriter(8, 1, tx, 0)
    r = w.add_reader(ri, 0)
    cap = w.capacity

    w.produce(cap - 4)
    r.consume(cap - 4)
    assert len(w.bytes()) // 8 == cap - 1

    view = w.bytes().cast("Q")
    for i in range(8):
        view[i] = 100 + i
    w.produce(8)

    assert list(r.bytes().cast("Q")) == [100 + i for i in range(8)]


def test_produce_more_than_space_raises():
    tx, _ = channel(1)
    ri, _ = channel(10)
    w = CircularWriter(4, 1, tx, 0)
    w.add_reader(ri, 0)
    with pytest.raises(ValueError):
        w.produce(w.capacity)


def test_consume_more_than_available_raises():
    tx, _ = channel(1)
    ri, _ = channel(10)
    w = CircularWriter(4, 1, tx, 0)
    r = w.add_reader(ri, 0)
    w.produce(2)
    with pytest.raises(ValueError):
        r.consume(3)


def test_reader_view_is_read_only():
    tx, _ = channel(1)
    ri, _ = channel(10)
    w = CircularWriter(4, 1, tx, 0)
    r = w.add_reader(ri, 0)
    w.produce(1)
    with pytest.raises(TypeError):
        r.bytes()[0] = 1


def test_builder_equality_and_build():
    a = Circular.with_size(1000)
    assert a == Circular.with_size(1000)
    assert hash(a) == hash(Circular.with_size(1000))
    assert not (a == Circular.with_size(2000))
    tx, _ = channel(1)
    w = a.build(4, tx, 0)
    assert isinstance(w, CircularWriter)
    assert w.capacity * 4 >= 1000


@pytest.mark.asyncio
async def test_writer_notify_finished_reaches_readers():
    tx, _ = channel(1)
    r1_tx, r1_rx = channel(10)
    r2_tx, r2_rx = channel(10)
    w = CircularWriter(4, 1, tx, 0)
    w.add_reader(r1_tx, 2)
    w.add_reader(r2_tx, 5)
    await w.notify_finished()
    assert _drain(r1_rx) == [StreamInputDone(input_id=2)]
    assert _drain(r2_rx) == [StreamInputDone(input_id=5)]


@pytest.mark.asyncio
async def test_finished_writer_sends_nothing():
    tx, _ = channel(1)
    ri, ro = channel(10)
    w = CircularWriter(4, 1, tx, 0)
    w.add_reader(ri, 0)
    w.finish()
    assert w.finished() is True
    await w.notify_finished()
    assert _drain(ro) == []


@pytest.mark.asyncio
async def test_reader_notify_finished_detaches():
    tx, rx = channel(10)
    ri, _ = channel(10)
    w = CircularWriter(4, 1, tx, 3)
    r = w.add_reader(ri, 0)
    await r.notify_finished()
    assert _drain(rx) == [StreamOutputDone(output_id=3)]
    assert w.reader_count == 0
    assert len(w.bytes()) // 4 == w.capacity