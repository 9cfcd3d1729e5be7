from __future__ import annotations

import collections
import re
from asyncio import StreamReader
from typing import NamedTuple


class HTTPFieldName(str):
    """The name of an HTTP header field. Field names are case-insensitive."""
    def __eq__(self, other):
        return super().casefold().__eq__(other.casefold())

    def __hash__(self):
        return hash(self.casefold())


class HTTPField(NamedTuple):
    """An HTTP header field, consisting of a name and content."""
    name: HTTPFieldName
    content: str


class HTTPHeaders(collections.UserList[HTTPField]):
    """The headers of an HTTP message, kept as a list of fields in the order they were added."""
    header_regex = re.compile(rb"^([!#$%&'*+\-.^_`|~0-9A-Za-z]+):[ \t]+(.*)[ \t]*$")

    @classmethod
    def from_bytes(cls, data: list[bytes]) -> HTTPHeaders:
        """Returns a new ``HTTPHeaders`` instance populated from the given header lines."""
        headers = []
        for line in data:
            match = cls.header_regex.match(line.removesuffix(b'\r\n'))
            if match is None:
                raise HTTPError(400, 'Bad Request')
            headers.append(HTTPField(HTTPFieldName(match.group(1).decode('ascii')), match.group(2).decode('latin1')))
        return cls(headers)

    def add(self, name: str, content: str) -> None:
        self.data.append(HTTPField(HTTPFieldName(name), content))

    def get(self, name: str) -> list[HTTPField]:
        """Returns a list of headers with the given ``name``."""
        return [header for header in self.data if header.name == name]


class HTTPError(ValueError):
    """A request that could not be parsed, together with the response it deserves."""
    def __init__(self, code: int, reason: str):
        super().__init__(f'{code} {reason}')
        self.code: int = code
        self.reason: str = reason
        self.res: bytes = f'HTTP/1.1 {self.code} {self.reason}\r\nConnection: close\r\n\r\n'.encode('ascii')


async def read_headers_and_body(reader: StreamReader) -> tuple[HTTPHeaders, bytes]:
    """Reads the header lines and the body of a message whose start line was already read.
    Requests and responses share this framing."""
    raw_headers = []
    while (header := await reader.readuntil(b'\r\n')) and header.rstrip(b' \t\r\n') != b'':
        raw_headers.append(header)
    headers = HTTPHeaders.from_bytes(raw_headers)

    # Only Content-Length framing is understood; anything else is treated as having no body
    body = b''
    if len(cl := headers.get('Content-Length')) > 0:
        try:
            content_length = int(cl[0].content.split(',')[0].strip(' \t'))
        except ValueError:
            raise HTTPError(400, 'Bad Request') from None
        if content_length:
            body = await reader.readexactly(content_length)
    return headers, body


class HTTPRequest:
    """An HTTP request, consisting of a start line, headers, and a body."""
    _RE_START_LINE = re.compile(r"([!#$%&'*+\-.^_`|~0-9A-Za-z]+) (.+) (HTTP/\d\.\d)\r\n")

    def __init__(self, method: str, request_target: str, http_version: str, headers: HTTPHeaders, body: bytes):
        self.method = method
        self.request_target = request_target
        self.http_version = http_version
        self.headers = headers
        self.body = body

    @classmethod
    def post(cls, host: str, port: int | str, endpoint: str, body: bytes) -> HTTPRequest:
        """Returns the keep-alive JSON ``POST`` that the load generator sends over and over."""
        headers = HTTPHeaders()
        headers.add('Host', f'{host}:{port}')
        headers.add('Content-Type', 'application/json')
        headers.add('Content-Length', str(len(body)))
        headers.add('Connection', 'keep-alive')
        return cls('POST', endpoint, 'HTTP/1.1', headers, body)

    @classmethod
    async def from_reader(cls, reader: StreamReader):
        """Returns an HTTPRequest instance, read from the provided StreamReader.
        Note that this method will not return until a complete request has been sent."""
        start_line = await reader.readuntil(b'\r\n')
        match = cls._RE_START_LINE.match(start_line.decode('latin1'))
        if match is None:
            raise HTTPError(400, 'Bad Request')
        method, request_target, http_version = match.groups()
        headers, body = await read_headers_and_body(reader)
        return cls(method, request_target, http_version, headers, body)

    def __bytes__(self):
        """Returns the HTTPRequest encoded as bytes."""
        return b''.join([f'{self.method} {self.request_target} {self.http_version}\r\n'.encode('ascii'),
                         b''.join(f'{header.name}: {header.content}\r\n'.encode('latin1') for header in self.headers),
                         b'\r\n',
                         self.body])
