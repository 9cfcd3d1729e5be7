from __future__ import annotations

import concurrent.futures
import logging
import time
from collections.abc import Sequence

from tcp_client import Connection

logger = logging.getLogger(__name__)


def dispatch(connections: Sequence[Connection], payload: bytes, volume: int,
             delay: float = 0.0) -> list[concurrent.futures.Future]:
    """Sends ``payload`` on every connection, ``volume`` times over.

    Each wave goes through the connections in order and is followed by a ``delay`` second sleep on
    the calling thread. Sends only get started here; their responses arrive on the reactor's own
    schedule, so nothing slows the waves down if the target falls behind."""
    if delay < 0:
        raise ValueError(f'delay must not be negative, got {delay}')
    futures = []
    for wave in range(volume):
        for connection in connections:
            futures.append(connection.send(payload))
        logger.debug('Dispatched wave %d/%d on %d connections', wave + 1, volume, len(connections))
        time.sleep(delay)
    return futures
