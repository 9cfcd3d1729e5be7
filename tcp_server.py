from __future__ import annotations

import abc
import asyncio
import logging
from asyncio import StreamReader, StreamWriter
from collections.abc import Callable, Coroutine

logger = logging.getLogger(__name__)


async def read_lines(port: int, reader: StreamReader,
                     callback: Callable[[bytes], Coroutine] = lambda _: asyncio.sleep(0),
                     idle_timeout: float = 120):
    """Reads ``\\r\\n``-terminated lines until the peer goes away, passing each one to ``callback``."""
    try:
        while True:
            line = await asyncio.wait_for(reader.readuntil(b'\r\n'), timeout=idle_timeout)
            await callback(line)
    except asyncio.IncompleteReadError:
        logger.debug('[%d] Reached EOF', port)
    except asyncio.TimeoutError:
        logger.debug('[%d] Client idle for too long', port)
    except ConnectionResetError:
        logger.debug('[%d] Connection reset', port)
    except (asyncio.LimitOverrunError, OSError):
        logger.exception('[%d] Read error', port)


class Server(abc.ABC):
    """A TCP server used as a load target. Incoming connections are handled through the
    ``client_connected`` method. Port 0 lets the OS pick a free port; ``port`` holds the bound one
    once the server is listening."""

    def __init__(self, port: int = 0, host: str = '127.0.0.1'):
        self.host = host
        self.port = port
        self.server: asyncio.Server | None = None
        self.clients: set[StreamWriter] = set()

    async def listen(self):
        """Binds the listening socket and starts accepting connections."""
        self.server = await asyncio.start_server(self._client_connected, self.host, self.port)
        self.port = self.server.sockets[0].getsockname()[1]
        logger.info('Server listening on %s:%d', self.host, self.port)

    async def start(self):
        """Starts the server and serves until cancelled."""
        await self.listen()
        try:
            await self.server.serve_forever()
        except asyncio.CancelledError:
            logger.info('Server task was canceled')

    async def stop(self):
        """Stops the server and drops every client connection."""
        logger.info('Stopping server')
        self.server.close()
        for writer in list(self.clients):
            writer.close()
        await self.server.wait_closed()
        logger.info('Closed server')

    async def _client_connected(self, client_reader: StreamReader, client_writer: StreamWriter):
        port: int = client_writer.get_extra_info('peername')[1]
        logger.debug('[%d] Client connected', port)
        self.clients.add(client_writer)
        try:
            await self.client_connected(client_reader, client_writer)
        finally:
            self.clients.discard(client_writer)
            client_writer.close()
            try:
                await client_writer.wait_closed()
            except OSError as e:
                logger.debug('[%d] Error while closing: %s', port, e)
            logger.debug('[%d] Client disconnected', port)

    @abc.abstractmethod
    async def client_connected(self, client_reader: StreamReader, client_writer: StreamWriter):
        raise NotImplementedError
