"""
Concurrency utilities.

Provides a `synchronized` decorator that acquires an instance `_lock` if present,
and `run_parallel` for fanning a callable out over a few items on a bounded
thread pool (used to command every actuator of a room at once).
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from functools import wraps
from typing import Callable, Iterable, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def synchronized(func: Callable) -> Callable:
    """Decorator that acquires `self._lock` if present on the instance.

    If no `_lock` attribute exists on `self`, the function is executed without
    locking. Use an ``RLock`` when synchronized methods call each other.
    """

    @wraps(func)
    def _wrapped(*args, **kwargs):
        self = args[0] if args else None
        lock = getattr(self, "_lock", None)
        if lock is None:
            return func(*args, **kwargs)
        with lock:
            return func(*args, **kwargs)

    return _wrapped


def run_parallel(func: Callable[[T], R], items: Iterable[T], *, max_workers: int = 4) -> list[R]:
    """Call ``func`` for every item concurrently and return results in input order.

    Completion order is not guaranteed; only the returned list is ordered.
    Exceptions raised by ``func`` propagate to the caller.
    """
    work: Sequence[T] = list(items)
    if not work:
        return []
    if len(work) == 1:
        return [func(work[0])]

    workers = max(1, min(max_workers, len(work)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="heating-dispatch") as executor:
        futures = [executor.submit(func, item) for item in work]
        return [future.result() for future in futures]
