from __future__ import annotations

import argparse
import asyncio
import logging
from asyncio import StreamReader, StreamWriter

from tcp_server import Server, read_lines

SILENT_PORT = 4063


class SilentServer(Server):
    """Accepts connections and reads everything, but never answers. Every request sent to it ends in
    a response timeout on the client side."""

    async def client_connected(self, client_reader: StreamReader, client_writer: StreamWriter):
        await read_lines(client_writer.get_extra_info('peername')[1], client_reader)


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Target that never responds, for timeout testing')
    parser.add_argument('--host', default='127.0.0.1')
    parser.add_argument('--port', type=int, default=SILENT_PORT)
    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG, format='%(asctime)s %(levelname)s %(message)s')
    asyncio.run(SilentServer(args.port, args.host).start())
