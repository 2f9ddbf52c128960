"""
Throttled Executor

Bounded worker pool used to pace backend calls. max_workers=1 runs tasks
strictly one after another; min_interval spaces out task starts.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, TypeVar

T = TypeVar('T')
R = TypeVar('R')


class ThrottledExecutor:
    """
    Run a function over items with bounded concurrency.

    Results come back in input order. Exceptions raised by the function
    propagate out of map(); callers that need per-item failures should
    catch inside the function.
    """

    def __init__(self, max_workers: int = 1, min_interval: float = 0.0, sleep=time.sleep, clock=time.monotonic):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if min_interval < 0:
            raise ValueError("min_interval cannot be negative")
        self.max_workers = max_workers
        self.min_interval = min_interval
        self._sleep = sleep
        self._clock = clock
        self._pace_lock = threading.Lock()
        self._last_start = None

    def map(self, func: Callable[[T], R], items: Iterable[T]) -> List[R]:
        items = list(items)
        if not items:
            return []

        if self.max_workers == 1:
            return [self._run(func, item) for item in items]

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [pool.submit(self._run, func, item) for item in items]
            return [f.result() for f in futures]

    def _run(self, func: Callable[[T], R], item: T) -> R:
        self._wait_turn()
        return func(item)

    def _wait_turn(self) -> None:
        if not self.min_interval:
            return
        with self._pace_lock:
            now = self._clock()
            if self._last_start is not None:
                remaining = self.min_interval - (now - self._last_start)
                if remaining > 0:
                    self._sleep(remaining)
                    now = self._clock()
            self._last_start = now
