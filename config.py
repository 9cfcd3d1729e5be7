from __future__ import annotations

import argparse
import dataclasses
import os
from collections.abc import Mapping, Sequence

ENV_PREFIX = 'LOADGEN_'


class ConfigError(ValueError):
    """A setting taken from the environment has an invalid value."""


@dataclasses.dataclass(frozen=True)
class Settings:
    host: str = '127.0.0.1'
    port: int = 4063
    endpoint: str = '/openrtb'
    request_file: str = 'request.json'
    timeout: float = 5           # seconds to wait for a response
    connections: int = 2
    threads: int = 2
    logging: bool = True
    delay: int = 100             # milliseconds between waves
    volume: int = 5              # requests sent on each connection


def str_to_bool(value: str) -> bool:
    """Parses the usual spellings of a boolean flag value."""
    v = value.strip().lower()
    if v in ('1', 'true', 'yes', 'on'):
        return True
    if v in ('0', 'false', 'no', 'off'):
        return False
    raise argparse.ArgumentTypeError(f'invalid boolean value: {value!r}')


def _bounded(convert, minimum, maximum=None):
    def parse(value: str):
        try:
            result = convert(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f'invalid value: {value!r}') from None
        if result < minimum or (maximum is not None and result > maximum):
            bounds = f'>= {minimum}' if maximum is None else f'between {minimum} and {maximum}'
            raise argparse.ArgumentTypeError(f'{value} is out of range, must be {bounds}')
        return result
    return parse


def _positive_float(value: str) -> float:
    try:
        result = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f'invalid value: {value!r}') from None
    if result <= 0:
        raise argparse.ArgumentTypeError(f'{value} is out of range, must be > 0')
    return result


# field name -> parser, shared by the environment and the command line
_PARSERS = {
    'host': str,
    'port': _bounded(int, 1, 65535),
    'endpoint': str,
    'request_file': str,
    'timeout': _positive_float,
    'connections': _bounded(int, 1),
    'threads': _bounded(int, 1),
    'logging': str_to_bool,
    'delay': _bounded(int, 0),
    'volume': _bounded(int, 0),
}


def settings_from_env(environ: Mapping[str, str] | None = None) -> Settings:
    """Returns the default settings overridden by any ``LOADGEN_*`` environment variables."""
    environ = os.environ if environ is None else environ
    overrides = {}
    for name, parse in _PARSERS.items():
        key = ENV_PREFIX + name.upper()
        if key not in environ:
            continue
        try:
            overrides[name] = parse(environ[key])
        except argparse.ArgumentTypeError as e:
            raise ConfigError(f'{key}: {e}') from None
    return Settings(**overrides)


def build_parser(defaults: Settings) -> argparse.ArgumentParser:
    # -h is the host, so help only gets the long option
    parser = argparse.ArgumentParser(prog='tcp-loadgen', add_help=False,
                                     description='Pipelines a fixed request over persistent TCP connections '
                                                 'and counts the responses.')
    parser.add_argument('--help', action='help', help='show this help message and exit')
    parser.add_argument('-h', '--host', type=_PARSERS['host'], default=defaults.host, help='hostname')
    parser.add_argument('-p', '--port', type=_PARSERS['port'], default=defaults.port, help='port')
    parser.add_argument('-e', '--endpoint', type=_PARSERS['endpoint'], default=defaults.endpoint, help='endpoint')
    parser.add_argument('-r', '--request', dest='request_file', type=_PARSERS['request_file'],
                        default=defaults.request_file, help='request json file')
    parser.add_argument('-to', '--timeout', type=_PARSERS['timeout'], default=defaults.timeout,
                        help='seconds to wait for a reply from the server')
    parser.add_argument('-c', '--connections', type=_PARSERS['connections'], default=defaults.connections,
                        help='connections to open to the server')
    parser.add_argument('-t', '--threads', type=_PARSERS['threads'], default=defaults.threads,
                        help='threads driving the connections')
    parser.add_argument('-l', '--logging', type=_PARSERS['logging'], default=defaults.logging,
                        help='print every connection event to the console (true/false)')
    parser.add_argument('-d', '--delay', type=_PARSERS['delay'], default=defaults.delay,
                        help='delay between waves of requests (ms)')
    parser.add_argument('-v', '--volume', type=_PARSERS['volume'], default=defaults.volume,
                        help='requests to send on each connection')
    return parser


def parse_settings(argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None) -> Settings:
    """Layers defaults, environment and command line, in that order of precedence."""
    parser = build_parser(settings_from_env(environ))
    args = parser.parse_args(argv)
    return Settings(**vars(args))
