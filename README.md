# sdrflow

An asyncio runtime for block-based streaming flowgraphs. Blocks pass sample
streams to each other through ring buffers and pass messages through bounded
inboxes. A scheduler runs every block as a task on worker threads, and an
optional HTTP control port can call message handlers of running blocks.

## Installation

```
pip install sdrflow
```

For the test suite:

```
pip install "sdrflow[test]"
pytest
```

## Concepts

- **Flowgraph** (`sdrflow.flowgraph.Flowgraph`): blocks plus the stream and
  message connections between them. Build one with `add_block`,
  `connect_stream` (uses `DefaultBuffer`, a circular buffer),
  `connect_stream_with_type` (takes any `BufferBuilder`) and
  `connect_message`. After a run, `block(id)` returns a block.
- **Blocks**: any object with `type_name`, `instance_name` (set by the
  flowgraph when added), `stream_io`, `message_io` and `meta` attributes, and
  `init()`, `deinit()` and `work(work_io)` methods, which may be plain
  functions or coroutines. A block with a true `is_blocking` attribute is run
  on a thread of its own.
- **Stream I/O** (`sdrflow.stream_io`): `StreamIoBuilder().add_input(name,
  item_size).add_output(name, item_size).build()`. Inside `work`, a port's
  `slice(fmt)` returns the available items as a `memoryview` of struct format
  `fmt`; `produce(n)` and `consume(n)` mark items as written or read.
  Connected ports must have equal item sizes.
- **Message I/O** (`sdrflow.message_io`): `MessageIoBuilder` declares inputs
  with `add_sync_input(name, handler)` or `add_async_input(name, handler)` and
  outputs with `add_output(name)`. Handlers are called as
  `handler(block, message_io, meta, data)` and return the reply. Message ports
  need not be connected.
- **WorkIo** (`sdrflow.block_runner.WorkIo`): set `finished = True` to end the
  block, `call_again = True` to have `work` called again right away, or
  `block_on` to an awaitable after which `work` is called again.
- **Buffers**: `sdrflow.circular.Circular` (a mirrored ring buffer sized in
  whole pages, any number of readers) and `sdrflow.slab.Slab` (a plain buffer
  with a single reader). Both take the configured `buffer_size` by default and
  offer `with_size(min_bytes)`.
- **Topology** (`sdrflow.topology.Topology`): checked before a run. Every
  stream output must be connected, every stream input must have exactly one
  source, and instance names must be unique; otherwise `TopologyError` is
  raised.
- **Runtime** (`sdrflow.runtime.Runtime`): `run(fg)` runs a flowgraph until
  every block has finished and returns it. `start(fg)` returns a
  `concurrent.futures.Future` for the result and a `FlowgraphHandle`, whose
  coroutines `call(block_id, port_id, data)` and
  `callback(block_id, port_id, data)` reach running blocks. `spawn`,
  `spawn_background` and `spawn_blocking` run other coroutines. The runtime is
  a context manager; `close()` stops its worker threads.
- **Schedulers**: `sdrflow.scheduler.SmolScheduler(n_executors,
  pin_executors)` spreads blocks over event-loop threads (one per core by
  default); `sdrflow.scheduler.TpbScheduler` runs each block on a thread of
  its own (fewer than 490 blocks); `sdrflow.flow.FlowScheduler` places blocks
  on executors in contiguous runs (`FlowScheduler.map_block`).

## Example

```python
from sdrflow.flowgraph import Flowgraph
from sdrflow.message_io import MessageIoBuilder
from sdrflow.runtime import Runtime
from sdrflow.stream_io import StreamIoBuilder


class Source:
    type_name = "source"

    def __init__(self, values):
        self.instance_name = None
        self.meta = None
        self.stream_io = StreamIoBuilder().add_output("out", 4).build()
        self.message_io = MessageIoBuilder().build()
        self.values = list(values)

    def init(self): ...
    def deinit(self): ...

    def work(self, work_io):
        out = self.stream_io.output(0)
        view = out.slice("f")
        n = min(len(view), len(self.values))
        view[:n] = memoryview_of(self.values[:n])
        out.produce(n)
        del self.values[:n]
        if self.values:
            work_io.call_again = True
        else:
            work_io.finished = True


class Sink:
    type_name = "sink"

    def __init__(self):
        self.instance_name = None
        self.meta = None
        self.stream_io = StreamIoBuilder().add_input("in", 4).build()
        self.message_io = MessageIoBuilder().build()
        self.received = []

    def init(self): ...
    def deinit(self): ...

    def work(self, work_io):
        inp = self.stream_io.input(0)
        data = inp.slice("f")
        self.received.extend(data)
        inp.consume(len(data))
        if inp.finished():
            work_io.finished = True


def memoryview_of(values):
    import array
    return memoryview(array.array("f", values))


fg = Flowgraph()
src = fg.add_block(Source(range(100)))
snk = fg.add_block(Sink())
fg.connect_stream(src, "out", snk, "in")

with Runtime() as rt:
    fg = rt.run(fg)

print(len(fg.block(snk).received))  # 100
```

## Configuration

`sdrflow.config.config()` loads the settings once; later sources win:

1. `config.toml` in the user configuration directory for `sdrflow`
2. `config.toml` in the working directory
3. environment variables prefixed with `SDRFLOW_` (for example
   `SDRFLOW_QUEUE_SIZE=1024`)

| key               | meaning                                       | default |
|-------------------|-----------------------------------------------|---------|
| `queue_size`      | capacity of every block inbox                 | 8192    |
| `buffer_size`     | minimum stream buffer size in bytes           | 32768   |
| `log_level`       | `off`, `error`, `warn`, `info`, `debug`, `trace` | info |
| `ctrlport_enable` | `true` or `false`: start the HTTP control port | false  |
| `ctrlport_bind`   | `a.b.c.d:port` or `[ipv6]:port`               | unset   |
| `frontend_path`   | directory served at `/` by the control port   | unset   |

An invalid value, or enabling the control port without a bind address,
raises `ValueError`. `load_config(paths, environ)` builds a `Config` from
given files and variables. Other keys are kept and can be read with
`get(name, kind)`, `get_value(name)` and `get_or_default(name, default)`.

The runtime logs through the `sdrflow` logger; `sdrflow.logsetup.init()`
prints its records to standard output at the configured level.

## Control port

When `ctrlport_enable` is set, the runtime serves, while a flowgraph runs:

- `GET /api/`: the number of blocks
- `GET /api/block/<blk>/call/<handler>`: call a message handler with `None`
- `POST /api/block/<blk>/call/<handler>`: call it with the JSON body

Each call answers with the `repr` of the handler's reply, or
`block not found`. Files are served at `/` from `frontend_path`, or from
`frontend/dist` in the working directory if that exists.
`sdrflow.ctrl_port.build_app(inboxes, frontend_path)` returns the aiohttp
application on its own.

## What it does not do

sdrflow ships no ready-made blocks (sources, sinks, filters, device drivers)
and no command-line program: blocks are classes you write yourself, and a
flowgraph is built and run from Python code. Buffers live in host memory only.