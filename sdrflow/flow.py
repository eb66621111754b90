"""Scheduler that pins each block to one executor thread."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from typing import Any, Coroutine

from sdrflow.block_runner import run_block
from sdrflow.config import config
from sdrflow.messages import Sender, channel
from sdrflow.scheduler import _core_ids, _report, _ThreadedScheduler
from sdrflow.topology import Topology

log = logging.getLogger("sdrflow")


class FlowScheduler(_ThreadedScheduler):
    """Runs one event loop per core and spreads blocks over them in contiguous runs.

    Block ``i`` of ``n`` always runs on the same executor, so that neighbouring
    blocks of a chain share a thread. Coroutines started with ``spawn`` go to
    the executors in turn.
    """

    def __init__(self, n_executors: int | None = None) -> None:
        cores = _core_ids()
        count = len(cores) if n_executors is None else n_executors
        if count < 1:
            raise ValueError("at least one executor is needed")
        log.debug("flowsched: core ids %s", count)
        workers = [
            (f"flow-{cores[i % len(cores)]}", None) for i in range(count)
        ]
        super().__init__(workers, "flow-blocking")

    @staticmethod
    def map_block(block: int, n_blocks: int, n_cores: int) -> int:
        """Return the executor of block ``block`` when ``n_blocks`` share ``n_cores``."""
        if n_cores < 1:
            raise ValueError("at least one core is needed")
        n, r = divmod(n_blocks, n_cores)
        for x in range(1, n_cores):
            if block < x * n + min(x, r):
                return x - 1
        return n_cores - 1

    def run_topology(self, topology: Topology, main_channel: Sender) -> list[Sender | None]:
        """Take every block out of the topology and start it on its executor.

        Returns the inbox of each block, indexed by block id.
        """
        entries = list(topology.iter_blocks())
        inboxes: list[Sender | None] = [None] * (max((i for i, _ in entries), default=0) + 1)
        queue_size = config().queue_size
        n_blocks = len(topology.blocks)
        n_cores = self.executors

        for id, block in entries:
            if block is None:
                raise RuntimeError(f"block {id} is not owned by the topology")
            topology.blocks[id] = None
            sender, receiver = channel(queue_size)
            inboxes[id] = sender
            coro = run_block(block, id, main_channel, receiver)
            if getattr(block, "is_blocking", False):
                log.debug("spawning blocking block %s", id)
                task = self.spawn_blocking(coro)
            else:
                task = self.spawn_executor(coro, self.map_block(id, n_blocks, n_cores))
            task.add_done_callback(_report)

        return inboxes

    def spawn_executor(
        self, coro: Coroutine[Any, Any, Any], executor: int
    ) -> concurrent.futures.Future:
        """Run a coroutine on the event loop of executor ``executor``."""
        if executor < 0 or executor >= len(self._loops):
            coro.close()
            raise IndexError(f"no executor with id {executor}")
        with self._lock:
            if self._closed:
                coro.close()
                raise RuntimeError("scheduler is shut down")
            return asyncio.run_coroutine_threadsafe(coro, self._loops[executor])

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        """Run a coroutine on the next executor in turn."""
        return super().spawn(coro)

    def spawn_blocking(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        """Run a coroutine that may block on a thread of its own."""
        return super().spawn_blocking(coro)

    def shutdown(self) -> None:
        """Stop the executor threads."""
        super().shutdown()