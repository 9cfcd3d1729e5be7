from __future__ import annotations

import logging
import sys
from collections.abc import Sequence

import dotenv
from termcolor import colored

from config import ConfigError, Settings, parse_settings
from counters import CounterAggregator, CounterSnapshot
from dispatch import dispatch
from http_request import HTTPRequest
from payload import PayloadError, load_payload
from reactor import Reactor
from tcp_client import Connection

# Upper bound on how long the initial connects may take before the first wave goes out
CONNECT_GRACE = 10


def configure_logging(enabled: bool) -> None:
    logging.basicConfig(stream=sys.stdout, level=logging.INFO if enabled else logging.WARNING,
                        format='[thread:%(threadName)s]%(message)s')


def print_settings(settings: Settings) -> None:
    print(colored('Settings:', 'cyan'))
    print(f'Host: {settings.host}')
    print(f'Port: {settings.port}')
    print(f'Endpoint: {settings.endpoint}')
    print(f'Request file: {settings.request_file}')
    print(f'Volume: {settings.volume} requests sent on each connection')
    print(f'Response Wait Timeout: {settings.timeout:g} seconds')
    print(f'Connections: {settings.connections} total connections to be opened')
    print(f'Threads: {settings.threads} total threads pushing to all available connections')
    print(f'Delay between sending requests: {settings.delay}(ms)')
    print(f'Logging enabled: {settings.logging}. If true, prints additional information to console')


def print_summary(totals: CounterSnapshot) -> None:
    print(colored('Summary:', 'cyan'))
    print(colored(f'Total Requests Sent: {totals.sent}', 'cyan'))
    print(colored(f'Total Responses Received: {totals.received}',
                  'green' if totals.received == totals.sent else 'yellow'))
    sys.stdout.flush()


def run_load(settings: Settings, request: bytes, counters: CounterAggregator) -> None:
    """Opens the connections, sends every wave and waits for the responses to drain."""
    with Reactor(settings.threads) as reactor:
        connections = [Connection(reactor, counters, settings.host, settings.port, i, settings.timeout,
                                  settings.logging)
                       for i in range(settings.connections)]
        try:
            reactor.wait_idle(timeout=CONNECT_GRACE)
            print(colored('Start sending ...', 'green'))
            dispatch(connections, request, settings.volume, settings.delay / 1000)
            reactor.wait_idle()
        finally:
            for connection in connections:
                connection.close()


def run(argv: Sequence[str] | None = None) -> int:
    dotenv.load_dotenv()
    try:
        settings = parse_settings(argv)
    except ConfigError as e:
        print(colored(f'Invalid configuration: {e}', 'red'), file=sys.stderr)
        return 2

    configure_logging(settings.logging)
    print_settings(settings)

    try:
        body = load_payload(settings.request_file)
    except PayloadError as e:
        print(colored(str(e), 'red'), file=sys.stderr)
        return 1
    request = bytes(HTTPRequest.post(settings.host, settings.port, settings.endpoint, body))

    counters = CounterAggregator()
    status = 0
    try:
        run_load(settings, request, counters)
    except KeyboardInterrupt:
        print(colored('\nLoad test stopped by user', 'yellow'))
        status = 130
    except Exception as e:
        print(f'Exception: {e}', file=sys.stderr)
    print_summary(counters.snapshot())
    return status


if __name__ == '__main__':
    sys.exit(run())
