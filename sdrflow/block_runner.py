"""The task that drives one block of a running flowgraph."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Protocol

from sdrflow.message_io import MessageIo
from sdrflow.messages import (
    BlockDone,
    Call,
    Callback,
    ChannelClosed,
    Initialize,
    Initialized,
    MessageOutputConnect,
    Notify,
    Receiver,
    Sender,
    StreamInputDone,
    StreamInputInit,
    StreamOutputDone,
    StreamOutputInit,
    Terminate,
)
from sdrflow.stream_io import StreamIo

log = logging.getLogger("sdrflow")


@dataclass
class WorkIo:
    """What a block's work function reports back to the runner.

    ``call_again`` asks for another call right away, ``finished`` ends the
    block, and ``block_on`` is an awaitable after which work is called again.
    """

    call_again: bool = False
    finished: bool = False
    block_on: Awaitable[Any] | None = None


class RunnableBlock(Protocol):
    """What the runner needs from a block.

    ``init``, ``deinit`` and ``work`` may be plain functions or coroutines.
    Message handlers are called as ``handler(block, message_io, meta, data)``.
    """

    instance_name: str | None
    stream_io: StreamIo
    message_io: MessageIo
    meta: Any

    def init(self) -> Any: ...

    def deinit(self) -> Any: ...

    def work(self, work_io: WorkIo) -> Any: ...


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def _call_handler(block: RunnableBlock, port_id: int, data: Any) -> Any:
    message_io = block.message_io
    handler = message_io.input(port_id).handler
    if message_io.input_is_async(port_id):
        return await handler(block, message_io, block.meta, data)
    return handler(block, message_io, block.meta, data)


async def _setup(block: RunnableBlock, main_inbox: Sender, inbox: Receiver) -> None:
    while True:
        message = await inbox.recv()
        if message is None:
            raise RuntimeError("no msg")
        match message:
            case Initialize():
                await _resolve(block.init())
                await main_inbox.send(Initialized())
                return
            case StreamOutputInit(src_port=port, writer=writer):
                block.stream_io.output(port).init(writer)
            case StreamInputInit(dst_port=port, reader=reader):
                block.stream_io.input(port).set_reader(reader)
            case MessageOutputConnect(src_port=src, dst_port=dst, dst_inbox=dst_inbox):
                block.message_io.output(src).connect(dst, dst_inbox)
            case _:
                log.warning(
                    "%s unhandled message during init %r", block.instance_name, message
                )


async def _handle_pending(block: RunnableBlock, inbox: Receiver, work_io: WorkIo) -> None:
    """Handle every message that is already queued, without waiting."""
    while True:
        try:
            message = inbox.try_recv()
        except ChannelClosed:
            # nobody can reach the block any more
            work_io.finished = True
            return
        if message is None:
            return
        match message:
            case Notify():
                pass
            case StreamInputDone(input_id=input_id):
                block.stream_io.input(input_id).finish()
            case StreamOutputDone():
                work_io.finished = True
            case Call(port_id=port_id, data=data):
                await _call_handler(block, port_id, data)
            case Callback(port_id=port_id, data=data, tx=tx):
                try:
                    result = await _call_handler(block, port_id, data)
                except Exception as exc:
                    tx.set_exception(exc)
                    raise
                tx.set_result(result)
            case Terminate():
                work_io.finished = True
            case _:
                log.warning("block unhandled message in main loop %r", message)
        work_io.call_again = True


async def _shutdown(block: RunnableBlock, block_id: int, main_inbox: Sender) -> None:
    log.debug("%s terminating", block.instance_name)
    await asyncio.gather(*(i.notify_finished() for i in block.stream_io.inputs))
    await asyncio.gather(*(o.notify_finished() for o in block.stream_io.outputs))
    await asyncio.gather(*(o.notify_finished() for o in block.message_io.outputs))
    await _resolve(block.deinit())
    await main_inbox.send(BlockDone(id=block_id, block=block))


async def run_block(
    block: RunnableBlock, block_id: int, main_inbox: Sender, inbox: Receiver
) -> None:
    """Set up a block from its inbox, then run it until it finishes."""
    work_io = WorkIo()
    await _setup(block, main_inbox, inbox)

    while True:
        await _handle_pending(block, inbox, work_io)

        if work_io.finished:
            if isinstance(work_io.block_on, asyncio.Future):
                work_io.block_on.cancel()
            await _shutdown(block, block_id, main_inbox)
            return

        if not work_io.call_again:
            pending = work_io.block_on
            work_io.block_on = None
            if pending is None:
                await inbox.peek()
                continue
            waiter = asyncio.ensure_future(pending)
            peek = asyncio.ensure_future(inbox.peek())
            done, _ = await asyncio.wait(
                {waiter, peek}, return_when=asyncio.FIRST_COMPLETED
            )
            if waiter in done:
                peek.cancel()
                if not waiter.cancelled():
                    waiter.exception()
                work_io.call_again = True
            else:
                work_io.block_on = waiter
                continue

        work_io.call_again = False
        await _resolve(block.work(work_io))
        await asyncio.sleep(0)