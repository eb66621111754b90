"""Schedulers that run the blocks of a flowgraph on worker threads."""

from __future__ import annotations

import asyncio
import concurrent.futures
import itertools
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Any, Coroutine

from sdrflow.block_runner import run_block
from sdrflow.config import config
from sdrflow.messages import Sender, channel
from sdrflow.topology import Topology

log = logging.getLogger("sdrflow")

# the thread pool for blocking tasks holds at most this many threads
BLOCKING_POOL_SIZE = 500
TPB_MAX_BLOCKS = 490


def _core_ids() -> list[int]:
    if hasattr(os, "sched_getaffinity"):
        return sorted(os.sched_getaffinity(0))
    return list(range(os.cpu_count() or 1))


def _report(future: concurrent.futures.Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        log.error("block task failed: %r", exc)


class Scheduler(ABC):
    """Runs coroutines and the blocks of a topology."""

    def run_topology(self, topology: Topology, main_channel: Sender) -> list[Sender | None]:
        """Take every block out of the topology and start it.

        Returns the inbox of each block, indexed by block id.
        """
        entries = list(topology.iter_blocks())
        inboxes: list[Sender | None] = [None] * (max((i for i, _ in entries), default=0) + 1)
        queue_size = config().queue_size

        for id, block in entries:
            if block is None:
                raise RuntimeError(f"block {id} is not owned by the topology")
            topology.blocks[id] = None
            sender, receiver = channel(queue_size)
            inboxes[id] = sender
            task = self._spawn_block(block, run_block(block, id, main_channel, receiver))
            task.add_done_callback(_report)

        return inboxes

    def _spawn_block(self, block: Any, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        if getattr(block, "is_blocking", False):
            return self.spawn_blocking(coro)
        return self.spawn(coro)

    @abstractmethod
    def spawn(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        """Run a coroutine on the scheduler's event loops."""

    @abstractmethod
    def spawn_blocking(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        """Run a coroutine that may block on a thread of its own."""

    @abstractmethod
    def shutdown(self) -> None:
        """Stop the worker threads."""

    def __enter__(self) -> Scheduler:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()


class _ThreadedScheduler(Scheduler):
    """Event loops on worker threads plus a pool for blocking tasks."""

    def __init__(self, workers: list[tuple[str, int | None]], pool_name: str) -> None:
        self._lock = threading.Lock()
        self._closed = False
        self._loops: list[asyncio.AbstractEventLoop] = []
        self._threads: list[threading.Thread] = []
        for thread_name, core in workers:
            loop = asyncio.new_event_loop()
            started = threading.Event()
            thread = threading.Thread(
                target=self._run_loop,
                args=(loop, started, core),
                name=thread_name,
                daemon=True,
            )
            thread.start()
            started.wait()
            self._loops.append(loop)
            self._threads.append(thread)
        self._next_loop = itertools.cycle(self._loops)
        self._pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=BLOCKING_POOL_SIZE, thread_name_prefix=pool_name
        )

    @staticmethod
    def _run_loop(
        loop: asyncio.AbstractEventLoop, started: threading.Event, core: int | None
    ) -> None:
        asyncio.set_event_loop(loop)
        if core is not None and hasattr(os, "sched_setaffinity"):
            log.debug("starting executor thread on core id %s", core)
            try:
                os.sched_setaffinity(0, {core})
            except OSError as exc:
                log.debug("cannot pin executor to core %s: %s", core, exc)
        loop.call_soon(started.set)
        try:
            loop.run_forever()
        finally:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.close()

    @property
    def executors(self) -> int:
        """Number of event-loop threads."""
        return len(self._loops)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        with self._lock:
            if self._closed:
                coro.close()
                raise RuntimeError("scheduler is shut down")
            return asyncio.run_coroutine_threadsafe(coro, next(self._next_loop))

    def spawn_blocking(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        with self._lock:
            if self._closed:
                coro.close()
                raise RuntimeError("scheduler is shut down")
            return self._pool.submit(asyncio.run, coro)

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        for loop in self._loops:
            loop.call_soon_threadsafe(loop.stop)
        for thread in self._threads:
            thread.join()
        self._pool.shutdown(wait=False, cancel_futures=True)


class SmolScheduler(_ThreadedScheduler):
    """Spreads blocks over ``n_executors`` event-loop threads, one per core by default."""

    def __init__(self, n_executors: int | None = None, pin_executors: bool = False) -> None:
        cores = _core_ids()
        count = len(cores) if n_executors is None else n_executors
        if count < 1:
            raise ValueError("at least one executor is needed")
        workers = [
            (f"smol-{core}", core if pin_executors else None)
            for core in itertools.islice(itertools.cycle(cores), count)
        ]
        super().__init__(workers, "smol-blocking")


class TpbScheduler(_ThreadedScheduler):
    """Runs every block on a thread of its own."""

    def __init__(self) -> None:
        super().__init__([("tpb-smol", None)], "tpb")

    def run_topology(self, topology: Topology, main_channel: Sender) -> list[Sender | None]:
        if len(topology.blocks) >= TPB_MAX_BLOCKS:
            raise ValueError(
                f"thread-per-block scheduler supports fewer than {TPB_MAX_BLOCKS} blocks"
            )
        return super().run_topology(topology, main_channel)

    def _spawn_block(self, block: Any, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        return self.spawn_blocking(coro)