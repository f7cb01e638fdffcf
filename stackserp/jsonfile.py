"""Helpers shared by the JSON-file stores: cross-process locking and atomic writes.

The API process and a standalone worker may share one data directory, so every
read-check-write runs under a lock file next to the data, and every write goes
through a uniquely named temp file followed by ``os.replace``.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from filelock import FileLock


class StoreLock:
    """Thread lock plus lock file; re-entrant within one thread."""

    def __init__(self, lock_path: Path):
        self._thread_lock = threading.RLock()
        self._file_lock = FileLock(str(lock_path))

    @contextmanager
    def __call__(self) -> Iterator[None]:
        with self._thread_lock, self._file_lock:
            yield


def write_json_atomic(path: Path, data: Any, **dump_kwargs: Any) -> None:
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, **dump_kwargs)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
