"""The runtime that starts flowgraphs on a scheduler and drives them to completion."""

from __future__ import annotations

import concurrent.futures
import logging
from typing import Any, Coroutine

from sdrflow import logsetup
from sdrflow.config import config
from sdrflow.ctrl_port import start_control_port
from sdrflow.flowgraph import Flowgraph, FlowgraphHandle
from sdrflow.messages import (
    BlockCall,
    BlockCallback,
    BlockDone,
    Call,
    Callback,
    ChannelClosed,
    ChannelFull,
    Initialize,
    Initialized,
    MessageOutputConnect,
    Notify,
    Receiver,
    Sender,
    StreamInputInit,
    StreamOutputInit,
    channel,
)
from sdrflow.scheduler import Scheduler, SmolScheduler

log = logging.getLogger("sdrflow")


def _report(future: concurrent.futures.Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        log.error("background task failed: %r", exc)


class Runtime:
    """Runs flowgraphs and other coroutines on a scheduler."""

    def __init__(self, scheduler: Scheduler | None = None) -> None:
        logsetup.init()
        self.scheduler = scheduler if scheduler is not None else SmolScheduler()

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        return self.scheduler.spawn(coro)

    def spawn_background(self, coro: Coroutine[Any, Any, Any]) -> None:
        self.scheduler.spawn(coro).add_done_callback(_report)

    def spawn_blocking(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        return self.scheduler.spawn_blocking(coro)

    def spawn_blocking_background(self, coro: Coroutine[Any, Any, Any]) -> None:
        self.scheduler.spawn_blocking(coro).add_done_callback(_report)

    def start(self, fg: Flowgraph) -> tuple[concurrent.futures.Future, FlowgraphHandle]:
        """Start a flowgraph; return the future of its result and a handle to it."""
        fg_inbox, fg_inbox_rx = channel(config().queue_size)
        task = self.scheduler.spawn(
            run_flowgraph(fg, self.scheduler, fg_inbox, fg_inbox_rx)
        )
        return task, FlowgraphHandle(fg_inbox)

    def run(self, fg: Flowgraph) -> Flowgraph:
        """Run a flowgraph until all blocks are done and return it."""
        task, _ = self.start(fg)
        return task.result()

    def close(self) -> None:
        """Stop the scheduler's worker threads."""
        self.scheduler.shutdown()

    def __enter__(self) -> Runtime:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


async def _next(main_rx: Receiver) -> Any:
    message = await main_rx.recv()
    if message is None:
        raise RuntimeError("no msg")
    return message


def _target(inboxes: list[Sender | None], block_id: int) -> Sender | None:
    if 0 <= block_id < len(inboxes):
        return inboxes[block_id]
    return None


async def run_flowgraph(
    fg: Flowgraph, scheduler: Scheduler, main_channel: Sender, main_rx: Receiver
) -> Flowgraph:
    """Connect, initialise and run every block, then hand the blocks back."""
    log.debug("in run_flowgraph")
    topology = fg.topology
    if topology is None:
        raise RuntimeError("flowgraph not initialized")
    fg.topology = None
    topology.validate()

    inboxes = scheduler.run_topology(topology, main_channel)

    log.debug("connect stream io")
    for (src, src_port, entry), dsts in topology.stream_edges.items():
        writer = entry.build(inboxes[src], src_port)
        for dst, dst_port in dsts:
            dst_inbox = inboxes[dst]
            await dst_inbox.send(
                StreamInputInit(dst_port=dst_port, reader=writer.add_reader(dst_inbox, dst_port))
            )
        await inboxes[src].send(StreamOutputInit(src_port=src_port, writer=writer))

    log.debug("connect message io")
    for src, src_port, dst, dst_port in topology.message_edges:
        await inboxes[src].send(
            MessageOutputConnect(src_port=src_port, dst_port=dst_port, dst_inbox=inboxes[dst])
        )

    log.debug("init blocks")
    active_blocks = 0
    for inbox in inboxes:
        if inbox is not None:
            await inbox.send(Initialize())
            active_blocks += 1

    log.debug("wait for blocks init")
    pending = active_blocks
    queue: list[Any] = []
    while pending:
        message = await _next(main_rx)
        if isinstance(message, Initialized):
            pending -= 1
        else:
            log.debug("queueing unhandled message received during initialization %r", message)
            queue.append(message)

    log.debug("running blocks")
    for inbox in inboxes:
        if inbox is not None:
            try:
                await inbox.send(Notify())
            except ChannelClosed:
                log.debug("runtime wanted to start block that already terminated")

    for message in queue:
        try:
            main_channel.try_send(message)
        except ChannelFull:
            raise RuntimeError("main inbox exceeded capacity during startup") from None

    start_control_port(list(inboxes))

    while active_blocks:
        message = await _next(main_rx)
        match message:
            case BlockCall(block_id=block_id, port_id=port_id, data=data):
                inbox = _target(inboxes, block_id)
                if inbox is None:
                    log.warning("call to unknown block %s", block_id)
                    continue
                await inbox.send(Call(port_id=port_id, data=data))
            case BlockCallback(block_id=block_id, port_id=port_id, data=data, tx=tx):
                inbox = _target(inboxes, block_id)
                if inbox is None:
                    log.warning("callback to unknown block %s", block_id)
                    tx.set_exception(KeyError(f"no block with id {block_id}"))
                    continue
                await inbox.send(Callback(port_id=port_id, data=data, tx=tx))
            case BlockDone(id=id, block=block):
                topology.blocks[id] = block
                active_blocks -= 1
            case _:
                log.warning("main loop received unhandled message")

    fg.topology = topology
    return fg