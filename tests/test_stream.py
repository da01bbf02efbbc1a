import random
import threading
import time

import pytest

from osmsync.stream import batched
from osmsync.stream import map_in_completion_order
from osmsync.stream import map_in_source_order
from osmsync.stream import partition


class TestMapInSourceOrder:
    @pytest.mark.parametrize("seed", range(20))
    def test_keeps_source_order_under_random_delays(self, seed):
        rng = random.Random(seed)
        delays = [rng.uniform(0, 0.003) for _ in range(40)]

        def work(i):
            time.sleep(delays[i])
            return i * 2

        concurrency = rng.randint(1, 8)
        assert list(map_in_source_order(work, range(40), concurrency)) == [i * 2 for i in range(40)]

    def test_bounds_items_in_flight(self):
        lock = threading.Lock()
        running = 0
        peak = 0

        def work(i):
            nonlocal running, peak
            with lock:
                running += 1
                peak = max(peak, running)
            time.sleep(0.002)
            with lock:
                running -= 1
            return i

        assert list(map_in_source_order(work, range(30), 3)) == list(range(30))
        assert peak <= 3

    def test_does_not_read_ahead_of_consumer(self):
        consumed = []

        def source():
            for i in range(100):
                consumed.append(i)
                yield i

        results = map_in_source_order(lambda x: x, source(), 4)
        assert next(results) == 0
        assert len(consumed) <= 5
        results.close()

    def test_error_surfaces_at_its_position(self):
        def work(i):
            if i == 5:
                raise RuntimeError("boom")
            return i

        seen = []
        with pytest.raises(RuntimeError, match="boom"):
            for value in map_in_source_order(work, range(20), 4):
                seen.append(value)
        assert seen == [0, 1, 2, 3, 4]

    def test_error_cancels_pending_work(self):
        started = []

        def work(i):
            started.append(i)
            if i == 0:
                raise ValueError("first")
            time.sleep(0.01)
            return i

        with pytest.raises(ValueError):
            list(map_in_source_order(work, range(1000), 2))
        assert len(started) < 10

    def test_empty_input(self):
        assert list(map_in_source_order(lambda x: x, [], 4)) == []

    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            list(map_in_source_order(lambda x: x, [1], 0))


class TestMapInCompletionOrder:
    def test_yields_every_result(self):
        rng = random.Random(3)

        def work(i):
            time.sleep(rng.uniform(0, 0.002))
            return i

        assert sorted(map_in_completion_order(work, range(50), 5)) == list(range(50))

    def test_fast_items_overtake_slow_ones(self):
        def work(i):
            time.sleep(0.2 if i == 0 else 0)
            return i

        results = list(map_in_completion_order(work, range(4), 4))
        assert results[-1] == 0

    def test_error_propagates(self):
        def work(i):
            if i == 3:
                raise KeyError(i)
            return i

        with pytest.raises(KeyError):
            list(map_in_completion_order(work, range(10), 2))


class TestPartition:
    def test_even_split(self):
        parts = partition(range(100), 10)
        assert [len(part) for part in parts] == [10] * 10
        assert [item for part in parts for item in part] == list(range(100))

    def test_sizes_differ_by_at_most_one(self):
        parts = partition(range(23), 5)
        sizes = [len(part) for part in parts]
        assert max(sizes) - min(sizes) <= 1
        assert sum(sizes) == 23
        assert [item for part in parts for item in part] == list(range(23))

    def test_more_parts_than_items(self):
        parts = partition([1, 2], 4)
        assert len(parts) == 4
        assert [item for part in parts for item in part] == [1, 2]

    def test_rejects_zero_parts(self):
        with pytest.raises(ValueError):
            partition([1, 2, 3], 0)


class TestBatched:
    def test_last_batch_may_be_short(self):
        assert list(batched(range(7), 3)) == [[0, 1, 2], [3, 4, 5], [6]]

    def test_rejects_zero_size(self):
        with pytest.raises(ValueError):
            list(batched([1], 0))
