import asyncio
import mmap

import pytest

from sdrflow.buffer import BufferBuilder, BufferReader, BufferWriter, pagesize


class DeviceReader(BufferReader):
    def __init__(self):
        super().__init__()
        self.notified = False

    async def notify_finished(self):
        self.notified = True


class DeviceWriter(BufferWriter):
    def __init__(self, item_size, inbox, output_id):
        super().__init__()
        self.item_size = item_size
        self.inbox = inbox
        self.output_id = output_id
        self.readers = []

    def add_reader(self, reader_inbox, reader_input_id):
        reader = DeviceReader()
        self.readers.append((reader_inbox, reader_input_id))
        return reader

    async def notify_finished(self):
        BufferWriter.finish(self)


class DeviceBuilder(BufferBuilder):
    def build(self, item_size, writer_inbox, writer_output_id):
        return DeviceWriter(item_size, writer_inbox, writer_output_id)


def test_pagesize_invariants():
    ps = pagesize()
    assert ps > 0
    assert ps & (ps - 1) == 0
    assert ps % mmap.PAGESIZE == 0


def test_abstract_classes_cannot_be_created():
    with pytest.raises(TypeError):
        BufferBuilder()
    with pytest.raises(TypeError):
        BufferWriter()
    with pytest.raises(TypeError):
        BufferReader()


def test_builder_passes_arguments():
    writer = DeviceBuilder().build(4, "inbox", 2)
    assert isinstance(writer, BufferWriter)
    assert (writer.item_size, writer.inbox, writer.output_id) == (4, "inbox", 2)
    reader = writer.add_reader("rx", 0)
    assert writer.readers == [("rx", 0)]
    assert BufferReader.finished(reader) is False
    assert BufferWriter.finished(writer) is False


def test_custom_buffers_have_no_host_memory():
    writer = DeviceWriter(4, None, 0)
    reader = writer.add_reader(None, 0)
    with pytest.raises(TypeError):
        BufferWriter.produce(writer, 1)
    with pytest.raises(TypeError):
        BufferWriter.bytes(writer)
    with pytest.raises(TypeError):
        BufferReader.bytes(reader)
    with pytest.raises(TypeError):
        BufferReader.consume(reader, 1)


def test_finish_flags():
    writer = DeviceWriter(4, None, 0)
    reader = writer.add_reader(None, 0)
    assert BufferWriter.finished(writer) is False
    asyncio.run(writer.notify_finished())
    assert BufferWriter.finished(writer) is True
    BufferReader.finish(reader)
    assert BufferReader.finished(reader) is True
    asyncio.run(reader.notify_finished())
    assert reader.notified is True