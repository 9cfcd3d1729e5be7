import asyncio
import threading
import time

import pytest

from reactor import Reactor


async def thread_name() -> str:
    return threading.current_thread().name


def test_needs_at_least_one_thread():
    with pytest.raises(ValueError):
        Reactor(0)


def test_assign_is_round_robin():
    reactor = Reactor(3)
    try:
        assigned = [reactor.assign() for _ in range(6)]
        assert assigned[:3] == reactor.loops
        assert assigned[3:] == reactor.loops
    finally:
        reactor.shutdown()


def test_work_runs_on_reactor_threads():
    with Reactor(2) as reactor:
        names = {reactor.submit(loop, thread_name()).result(timeout=5) for loop in reactor.loops}
    assert names == {'reactor-0', 'reactor-1'}


def test_one_loop_is_one_thread():
    with Reactor(4) as reactor:
        loop = reactor.assign()
        names = {reactor.submit(loop, thread_name()).result(timeout=5) for _ in range(10)}
    assert len(names) == 1


def test_wait_idle_covers_work_submitted_by_work():
    finished = threading.Event()

    async def child():
        await asyncio.sleep(0.1)
        finished.set()

    with Reactor(1) as reactor:
        loop = reactor.assign()

        async def parent():
            reactor.submit(loop, child())

        reactor.submit(loop, parent())
        assert reactor.wait_idle(timeout=5)
        assert finished.is_set()


def test_wait_idle_times_out():
    with Reactor(1) as reactor:
        reactor.submit(reactor.assign(), asyncio.sleep(0.5))
        start = time.monotonic()
        assert not reactor.wait_idle(timeout=0.05)
        assert time.monotonic() - start < 0.5


def test_shutdown_drains_outstanding_work():
    done = threading.Event()

    async def slow():
        await asyncio.sleep(0.2)
        done.set()

    reactor = Reactor(2)
    reactor.start()
    reactor.submit(reactor.assign(), slow())
    reactor.shutdown()
    assert done.is_set()
    assert reactor.closed


def test_shutdown_runs_work_submitted_before_start():
    done = threading.Event()

    async def mark():
        done.set()

    reactor = Reactor(1)
    reactor.submit(reactor.assign(), mark())
    reactor.shutdown()
    assert done.is_set()


def test_shutdown_is_idempotent_and_final():
    reactor = Reactor(1)
    reactor.shutdown()
    reactor.shutdown()
    with pytest.raises(RuntimeError):
        reactor.submit(reactor.loops[0], asyncio.sleep(0))
    with pytest.raises(RuntimeError):
        reactor.start()
