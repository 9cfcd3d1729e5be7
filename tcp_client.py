from __future__ import annotations

import asyncio
import concurrent.futures
import enum
import logging
from asyncio import StreamReader, StreamWriter

from counters import CounterAggregator
from http_request import HTTPError, read_headers_and_body
from reactor import Reactor

RESPONSE_TERMINATOR = b'\r\n'

logger = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    DISCONNECTED = enum.auto()
    CONNECTING = enum.auto()
    CONNECTED = enum.auto()
    CLOSED = enum.auto()


class ReadOutcome(enum.Enum):
    RECEIVED = enum.auto()
    TIMED_OUT = enum.auto()
    FAILED = enum.auto()


def describe_error(e: BaseException) -> str:
    """Returns a short human-readable reason for a socket error."""
    if isinstance(e, asyncio.IncompleteReadError):
        return f'connection closed ({len(e.partial)} bytes of an unfinished response)'
    if isinstance(e, asyncio.LimitOverrunError):
        return 'response line is too long'
    if isinstance(e, asyncio.TimeoutError):
        return 'timed out'
    if isinstance(e, HTTPError):
        return 'malformed response headers'
    return str(e) or type(e).__name__


async def read_frame(reader: StreamReader) -> str:
    """Reads one response and returns its first line, decoded.

    A response is a single ``\\r\\n``-terminated line, unless that line is an HTTP status line:
    then the header lines and the ``Content-Length`` body that follow belong to the same response
    and are consumed with it."""
    line = await reader.readuntil(RESPONSE_TERMINATOR)
    if line.startswith(b'HTTP/'):
        await read_headers_and_body(reader)
    return line.removesuffix(RESPONSE_TERMINATOR).decode('latin1')


class PendingRead:
    """A response read racing against its deadline timer.

    ``resolve`` is the only place the race is decided: the first outcome wins, cancels the losing
    side and returns ``True``. Every later call returns ``False`` and the caller must not log or
    count anything. Cancelling a timer that already fired, or a read that already finished, does
    nothing."""

    def __init__(self):
        self.outcome: ReadOutcome | None = None
        self.task: asyncio.Task | None = None
        self.timer: asyncio.TimerHandle | None = None

    @property
    def resolved(self) -> bool:
        return self.outcome is not None

    def resolve(self, outcome: ReadOutcome) -> bool:
        if self.outcome is not None:
            return False
        self.outcome = outcome
        if outcome is ReadOutcome.TIMED_OUT:
            if self.task is not None:
                self.task.cancel()
        elif self.timer is not None:
            self.timer.cancel()
        return True


class Connection:
    """One persistent TCP connection to the target.

    Sends are pipelined: every successful write arms a response read with its own deadline, and
    the send returns without waiting for the response. Failures are logged and never raised.

    A connection that lost its socket is reconnected lazily: the next ``send`` starts a connect
    and writes straight away without waiting for it, so that write fails and only later sends
    benefit from the new socket.

    All of a connection's work runs on the single reactor loop it was assigned, so its handlers
    never run concurrently with each other. The public methods may be called from any thread and
    return a ``concurrent.futures.Future`` for the scheduled work."""

    def __init__(self, reactor: Reactor, counters: CounterAggregator, host: str, port: int, conn_id: int,
                 response_timeout: float, logging_enabled: bool = True):
        self.reactor = reactor
        self.counters = counters
        self.host = host
        self.port = port
        self.conn_id = conn_id
        self.response_timeout = response_timeout
        self.logging_enabled = logging_enabled
        self.loop = reactor.assign()
        self.state = ConnectionState.DISCONNECTED
        self._reader: StreamReader | None = None
        self._writer: StreamWriter | None = None
        self._connect_task: asyncio.Task | None = None
        # Writes go out in order and responses come back in the same order
        self._write_lock = asyncio.Lock()
        self._read_lock = asyncio.Lock()
        self.connect()

    def __repr__(self):
        return f'<Connection {self.conn_id} {self.host}:{self.port} {self.state.name}>'

    def log(self, message: str, level: int = logging.INFO):
        if not self.logging_enabled:
            return
        logger.log(level, '[conn:%s] %s', self.conn_id, message)

    def connect(self) -> concurrent.futures.Future:
        """Starts a non-blocking connect. Its outcome is only logged."""
        return self.reactor.submit(self.loop, self._connect())

    def send(self, request: bytes) -> concurrent.futures.Future:
        """Writes ``request`` and waits for one response. Never raises for network errors."""
        return self.reactor.submit(self.loop, self._send(request))

    def close(self) -> concurrent.futures.Future:
        """Closes the socket exactly once, whatever state the connection is in."""
        return self.reactor.submit(self.loop, self._close())

    async def _connect(self):
        if self.state is not ConnectionState.DISCONNECTED:
            return
        self.state = ConnectionState.CONNECTING
        self._connect_task = asyncio.current_task()
        try:
            reader, writer = await asyncio.wait_for(asyncio.open_connection(self.host, self.port),
                                                    timeout=self.response_timeout)
        except (asyncio.TimeoutError, OSError) as e:
            if self.state is ConnectionState.CONNECTING:
                self.state = ConnectionState.DISCONNECTED
            self.log(f'Connection failed: {describe_error(e)}', logging.WARNING)
            return
        finally:
            self._connect_task = None

        if self.state is ConnectionState.CLOSED:
            writer.close()
            return
        self._reader, self._writer = reader, writer
        self.state = ConnectionState.CONNECTED
        self.log(f'Connected to the server at {self.host}:{self.port}, peer {writer.get_extra_info("peername")}')

    async def _send(self, request: bytes):
        if self.state is ConnectionState.CLOSED:
            self.log('Send failed: connection is closed', logging.WARNING)
            return
        if self.state is ConnectionState.DISCONNECTED:
            self.log('Socket not open, attempting to reconnect...')
            self.connect()

        async with self._write_lock:
            reader, writer = self._reader, self._writer
            if writer is None or self.state is not ConnectionState.CONNECTED:
                self.log('Send failed: socket is not connected', logging.WARNING)
                return
            if writer.is_closing():
                self.log('Send failed: socket is closing', logging.WARNING)
                self._drop_socket(writer)
                return
            try:
                writer.write(request)
                await writer.drain()
            except OSError as e:
                self.log(f'Send failed: {describe_error(e)}', logging.WARNING)
                self._drop_socket(writer)
                return
            self.counters.increment_sent()
            self.log('message sent ok')
            # Armed while the write lock is held so reads queue up in the order of the writes
            pending = self._arm_read(reader)

        await self._await_response(pending, writer)

    def _arm_read(self, reader: StreamReader) -> PendingRead:
        pending = PendingRead()
        pending.task = self.loop.create_task(self._read_response(reader, pending))
        pending.timer = self.loop.call_later(self.response_timeout, self._on_deadline, pending)
        return pending

    async def _read_response(self, reader: StreamReader, pending: PendingRead) -> str | None:
        """Reads one response and claims it before anything else can run. Returns ``None`` when
        the deadline already claimed the read."""
        async with self._read_lock:
            status_line = await read_frame(reader)
            if not pending.resolve(ReadOutcome.RECEIVED):
                return None
        return status_line

    def _on_deadline(self, pending: PendingRead):
        if pending.resolve(ReadOutcome.TIMED_OUT):
            self.log('Read operation timed out.', logging.WARNING)

    async def _await_response(self, pending: PendingRead, writer: StreamWriter | None):
        try:
            await asyncio.wait([pending.task])
        except asyncio.CancelledError:
            pending.task.cancel()
            pending.timer.cancel()
            raise

        task = pending.task
        if task.cancelled():
            if pending.resolve(ReadOutcome.FAILED):
                self.log('No response: operation cancelled', logging.WARNING)
            return
        error = task.exception()
        if error is not None:
            if pending.resolve(ReadOutcome.FAILED):
                self.log(f'No response: {describe_error(error)}', logging.WARNING)
                self._drop_socket(writer)
            return
        status_line = task.result()
        if status_line is not None:
            self.counters.increment_received()
            self.log(f'Response received: {status_line}')

    def _drop_socket(self, writer: StreamWriter | None):
        """Forgets a broken socket so that the next send reconnects."""
        if writer is None or writer is not self._writer:
            return
        self._reader = self._writer = None
        writer.close()
        if self.state is not ConnectionState.CLOSED:
            self.state = ConnectionState.DISCONNECTED

    async def _close(self):
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        self.log('closing the socket')
        if self._connect_task is not None:
            self._connect_task.cancel()
        writer = self._writer
        self._reader = self._writer = None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            self.log(f'Error while closing the socket: {describe_error(e)}', logging.WARNING)
