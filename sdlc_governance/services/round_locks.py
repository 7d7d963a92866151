"""
Per-key in-process serialization points.

Decisions on the same round must be linearized; decisions on different
rounds run in parallel. Each key (``("round", id)``, ``("project", id)``)
gets its own ``threading.Lock``; the registry itself is guarded by a
module lock. Cross-process safety comes from ``SELECT … FOR UPDATE`` and
the round's compare-and-swap version, not from this module.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Hashable, Iterator

logger = logging.getLogger(__name__)

_locks: dict[Hashable, threading.Lock] = {}
_registry_lock = threading.Lock()


def lock_for(key: Hashable) -> threading.Lock:
    with _registry_lock:
        lock = _locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _locks[key] = lock
        return lock


@contextmanager
def hold(key: Hashable) -> Iterator[None]:
    """Hold the lock for ``key`` for the duration of the block."""
    lock = lock_for(key)
    with lock:
        yield


def round_key(round_id: int) -> tuple[str, int]:
    return ("round", round_id)


def project_key(project_id: int) -> tuple[str, int]:
    return ("project", project_id)


def discard(key: Hashable) -> None:
    """Forget the lock for a finished key (completed round)."""
    with _registry_lock:
        _locks.pop(key, None)


def reset() -> None:
    """Drop every lock (tests)."""
    with _registry_lock:
        _locks.clear()
