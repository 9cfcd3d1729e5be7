from __future__ import annotations

import asyncio
import concurrent.futures
import itertools
import logging
import threading
import time
from collections.abc import Coroutine

logger = logging.getLogger(__name__)


class Reactor:
    """A fixed pool of worker threads, each driving its own asyncio event loop.

    Work is bound to a loop with ``assign`` and scheduled with ``submit``. Everything submitted to
    one loop runs on one thread, so a connection that keeps to its loop never has its handlers run
    concurrently with each other, while connections on different loops run side by side.

    Every submitted coroutine is tracked until it finishes; ``shutdown`` drains that work before
    stopping the loops and joining the threads."""

    def __init__(self, threads: int = 1):
        if threads < 1:
            raise ValueError(f'Reactor needs at least one thread, got {threads}')
        self.loops: list[asyncio.AbstractEventLoop] = [asyncio.new_event_loop() for _ in range(threads)]
        for loop in self.loops:
            loop.set_exception_handler(self._exception_handler)
        self._threads = [threading.Thread(target=self._run, args=(loop,), name=f'reactor-{i}', daemon=True)
                         for i, loop in enumerate(self.loops)]
        self._next_loop = itertools.cycle(self.loops)
        self._assign_lock = threading.Lock()
        self._pending: set[concurrent.futures.Future] = set()
        self._pending_lock = threading.Lock()
        self._started = False
        self._closed = False

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()

    @property
    def closed(self) -> bool:
        return self._closed

    @staticmethod
    def _run(loop: asyncio.AbstractEventLoop):
        asyncio.set_event_loop(loop)
        loop.run_forever()

    @staticmethod
    def _exception_handler(loop: asyncio.AbstractEventLoop, context: dict):
        logger.error('Async error: %s', context.get('message'), exc_info=context.get('exception'))

    def start(self):
        """Starts the worker threads."""
        if self._closed:
            raise RuntimeError('Reactor has been shut down')
        if self._started:
            return
        self._started = True
        for thread in self._threads:
            thread.start()
        logger.debug('Reactor running on %d threads', len(self._threads))

    def assign(self) -> asyncio.AbstractEventLoop:
        """Returns the loop that the next caller should keep all of its work on."""
        with self._assign_lock:
            return next(self._next_loop)

    def submit(self, loop: asyncio.AbstractEventLoop, coro: Coroutine) -> concurrent.futures.Future:
        """Schedules ``coro`` on ``loop``. Safe to call from any thread, including the reactor's own."""
        if self._closed:
            coro.close()
            raise RuntimeError('Reactor has been shut down')
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def _discard(self, future: concurrent.futures.Future):
        with self._pending_lock:
            self._pending.discard(future)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Blocks until no submitted work is outstanding, including work submitted while waiting.
        Returns ``False`` if ``timeout`` ran out first. Must not be called from a reactor thread."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._pending_lock:
                pending = {future for future in self._pending if not future.done()}
            if not pending:
                return True
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            concurrent.futures.wait(pending, timeout=remaining)

    def shutdown(self, timeout: float | None = None):
        """Lets outstanding work drain, then stops every loop and joins every thread."""
        if self._closed:
            return
        with self._pending_lock:
            has_work = bool(self._pending)
        if has_work and not self._started:
            self.start()
        if self._started and not self.wait_idle(timeout):
            logger.warning('Reactor did not drain within %s seconds, cancelling leftover work', timeout)
        self._closed = True

        if self._started:
            for loop in self.loops:
                loop.call_soon_threadsafe(loop.stop)
            for thread in self._threads:
                thread.join()

        # The threads are gone, so whatever is left can be finished off from here
        for loop in self.loops:
            leftover = asyncio.all_tasks(loop)
            for task in leftover:
                task.cancel()
            if leftover:
                loop.run_until_complete(asyncio.gather(*leftover, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
        logger.debug('Reactor shut down')
