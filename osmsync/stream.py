"""Concurrent map over a stream that can keep the order of its source.

Workers run on a ``concurrent.futures`` executor. At most ``concurrency`` items
are in flight at any time, so memory stays bounded however long the input is.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from collections.abc import Iterable
from collections.abc import Iterator
from concurrent.futures import FIRST_COMPLETED
from concurrent.futures import Executor
from concurrent.futures import Future
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import wait
from typing import TypeVar

from more_itertools import batched as _batched
from more_itertools import divide

T = TypeVar("T")
R = TypeVar("R")

ExecutorFactory = Callable[[int], Executor]

logger = logging.getLogger(__name__)


def _check_concurrency(concurrency: int) -> None:
    if concurrency < 1:
        raise ValueError(f"concurrency must be at least 1, got {concurrency}")


def _cancel(futures: Iterable[Future]) -> None:
    cancelled = sum(1 for future in futures if future.cancel())
    if cancelled:
        logger.debug("Cancelled %d pending tasks", cancelled)


def map_in_source_order(
    fn: Callable[[T], R],
    items: Iterable[T],
    concurrency: int,
    executor_factory: ExecutorFactory = ThreadPoolExecutor,
) -> Iterator[R]:
    """Yields ``fn(item)`` for every item, in input order.

    Item ``i + concurrency`` is not submitted before the result of item ``i``
    has been yielded. A failing item raises when its turn comes and cancels the
    remaining work.
    """
    _check_concurrency(concurrency)
    source = iter(items)
    pending: deque[Future[R]] = deque()

    with executor_factory(concurrency) as executor:
        try:
            for item in source:
                pending.append(executor.submit(fn, item))
                if len(pending) >= concurrency:
                    break

            while pending:
                result = pending.popleft().result()
                yield result
                for item in source:
                    pending.append(executor.submit(fn, item))
                    break
        finally:
            _cancel(pending)
            executor.shutdown(wait=True, cancel_futures=True)


def map_in_completion_order(
    fn: Callable[[T], R],
    items: Iterable[T],
    concurrency: int,
    executor_factory: ExecutorFactory = ThreadPoolExecutor,
) -> Iterator[R]:
    """Yields ``fn(item)`` for every item as soon as it is ready."""
    _check_concurrency(concurrency)
    source = iter(items)
    pending: set[Future[R]] = set()

    def fill(executor: Executor) -> None:
        for item in source:
            pending.add(executor.submit(fn, item))
            if len(pending) >= concurrency:
                break

    with executor_factory(concurrency) as executor:
        try:
            fill(executor)
            while pending:
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    pending.discard(future)
                    yield future.result()
                fill(executor)
        finally:
            _cancel(pending)
            executor.shutdown(wait=True, cancel_futures=True)


def partition(items: Iterable[T], count: int) -> list[list[T]]:
    """Splits ``items`` into ``count`` contiguous parts of near-equal size."""
    if count < 1:
        raise ValueError(f"count must be at least 1, got {count}")
    return [list(part) for part in divide(count, list(items))]


def batched(items: Iterable[T], size: int) -> Iterator[list[T]]:
    if size < 1:
        raise ValueError(f"size must be at least 1, got {size}")
    for batch in _batched(items, size):
        yield list(batch)
