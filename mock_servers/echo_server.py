from __future__ import annotations

import argparse
import asyncio
import logging
from asyncio import StreamReader, StreamWriter

from http_request import HTTPError, HTTPRequest
from tcp_server import Server

ECHO_PORT = 4063


class EchoServer(Server):
    """Answers every HTTP request with a ``200 OK`` that echoes the request body back."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.requests_handled = 0

    async def client_connected(self, client_reader: StreamReader, client_writer: StreamWriter):
        port: int = client_writer.get_extra_info('peername')[1]
        while True:
            try:
                req = await HTTPRequest.from_reader(client_reader)
            except asyncio.IncompleteReadError:
                logging.debug('[%d] Client reached EOF', port)
                return
            except HTTPError as e:
                logging.warning('[%d] Bad request: %s', port, e)
                client_writer.write(e.res)
                await client_writer.drain()
                return
            except ConnectionResetError:
                logging.debug('[%d] Client connection reset', port)
                return

            content_type = req.headers.get('Content-Type')
            res = b''.join([b'HTTP/1.1 200 OK\r\n',
                            f'Content-Type: {content_type[0].content if content_type else "text/plain"}\r\n'.encode('latin1'),
                            f'Content-Length: {len(req.body)}\r\n'.encode('ascii'),
                            b'Connection: keep-alive\r\n\r\n',
                            req.body])
            self.requests_handled += 1
            client_writer.write(res)
            await client_writer.drain()
            logging.info('[%d] %s %s -> 200 (%d bytes)', port, req.method, req.request_target, len(req.body))


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='HTTP echo target for tcp-loadgen')
    parser.add_argument('--host', default='127.0.0.1')
    parser.add_argument('--port', type=int, default=ECHO_PORT)
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(message)s')
    asyncio.run(EchoServer(args.port, args.host).start())
