from __future__ import annotations

import os


class PayloadError(OSError):
    """The request body file could not be read."""
    def __init__(self, path: str | os.PathLike, reason: str):
        super().__init__(f'Failed to open request json file {os.fspath(path)!r}: {reason}')
        self.path = os.fspath(path)
        self.reason = reason


def load_payload(path: str | os.PathLike) -> bytes:
    """Returns the contents of the request body file, unmodified."""
    try:
        with open(path, 'rb') as f:
            return f.read()
    except OSError as e:
        raise PayloadError(path, e.strerror or str(e)) from e
