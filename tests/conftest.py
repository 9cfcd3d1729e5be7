from __future__ import annotations

import asyncio
import socket
import struct
import threading
from asyncio import StreamReader, StreamWriter

import pytest

from counters import CounterAggregator
from reactor import Reactor
from tcp_server import Server, read_lines


class ReplyServer(Server):
    """Answers each line it receives with ``reply``, or only the first ``answers`` lines when given."""

    def __init__(self, port: int = 0, reply: bytes = b'PONG\r\n', answers: int | None = None):
        super().__init__(port)
        self.reply = reply
        self.answers = answers
        self.lines: list[bytes] = []

    async def client_connected(self, client_reader: StreamReader, client_writer: StreamWriter):
        async def answer(line: bytes):
            self.lines.append(line)
            if self.answers is not None and len(self.lines) > self.answers:
                return
            client_writer.write(self.reply)
            await client_writer.drain()

        await read_lines(client_writer.get_extra_info('peername')[1], client_reader, answer)


class ResetServer(Server):
    """Accepts connections and resets them straight away."""

    async def client_connected(self, client_reader: StreamReader, client_writer: StreamWriter):
        # Zero linger turns the close into an RST
        client_writer.get_extra_info('socket').setsockopt(socket.SOL_SOCKET, socket.SO_LINGER,
                                                          struct.pack('ii', 1, 0))


class HangUpServer(Server):
    """Reads a single line, then closes the connection without answering."""

    async def client_connected(self, client_reader: StreamReader, client_writer: StreamWriter):
        try:
            await client_reader.readuntil(b'\r\n')
        except (asyncio.IncompleteReadError, ConnectionError):
            pass


class ServerThread:
    """Runs a target server on its own thread and loop, apart from the reactor under test."""

    def __init__(self, server: Server):
        self.server = server
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self.loop.run_forever, name='target-server', daemon=True)

    def __enter__(self):
        self.thread.start()
        asyncio.run_coroutine_threadsafe(self.server.listen(), self.loop).result(timeout=5)
        return self.server

    def __exit__(self, exc_type, exc_val, exc_tb):
        asyncio.run_coroutine_threadsafe(self._finish(), self.loop).result(timeout=10)
        self.loop.call_soon_threadsafe(self.loop.stop)
        self.thread.join(timeout=5)
        self.loop.close()

    async def _finish(self):
        await self.server.stop()
        handlers = [task for task in asyncio.all_tasks() if task is not asyncio.current_task()]
        if handlers:
            await asyncio.wait(handlers, timeout=5)


def free_port() -> int:
    """Returns a port that nothing is listening on right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


def close_all(reactor: Reactor, connections) -> None:
    for connection in connections:
        connection.close()
    assert reactor.wait_idle(timeout=10)


@pytest.fixture
def counters():
    return CounterAggregator()


@pytest.fixture
def reactor():
    with Reactor(2) as r:
        yield r


@pytest.fixture
def reply_server():
    with ServerThread(ReplyServer()) as server:
        yield server


@pytest.fixture
def silent_server():
    from mock_servers.silent_server import SilentServer
    with ServerThread(SilentServer()) as server:
        yield server


@pytest.fixture
def hang_up_server():
    with ServerThread(HangUpServer()) as server:
        yield server


@pytest.fixture
def reset_server():
    with ServerThread(ResetServer()) as server:
        yield server
