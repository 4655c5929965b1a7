# tests/unit/processing/test_dispatch.py

"""
Tests for partitioned dispatch.
"""

import random
import threading
import time

import numpy as np
import pandas as pd
import pytest

from msspectra.config import UNKNOWN_STORAGE_KEY, DispatchConfig
from msspectra.processing.dispatch import (
    Dispatcher,
    default_worker_count,
    merge_partitions,
    partition_indices,
)


@pytest.fixture
def partitions():
    """Six positions spread over three storage locations."""
    return partition_indices([0] * 6, ["a", "b", "a", "c", "b", "a"])


def echo_positions(partition):
    """Task returning each request position, with random delays."""
    time.sleep(random.uniform(0, 0.01))
    return [int(p) for p in partition.positions]


class TestPartitioning:
    """Test partition_indices and merge_partitions."""

    def test_partitions_in_first_appearance_order(self, partitions):
        assert [p.key for p in partitions] == [(0, "a"), (0, "b"), (0, "c")]
        np.testing.assert_array_equal(partitions[0].positions, [0, 2, 5])
        np.testing.assert_array_equal(partitions[1].positions, [1, 4])

    def test_parts_are_separate_partitions(self):
        result = partition_indices([0, 1, 0], ["a", "a", "a"])

        assert [p.key for p in result] == [(0, "a"), (1, "a")]

    def test_missing_storage_shares_partition(self):
        result = partition_indices([0, 0, 0], [pd.NA, "a", None])

        assert result[0].key == (0, UNKNOWN_STORAGE_KEY)
        np.testing.assert_array_equal(result[0].positions, [0, 2])

    def test_merge_restores_request_order(self, partitions):
        results = [[f"a{p}" for p in part.positions] for part in partitions]

        merged = merge_partitions(partitions, results, 6)

        assert merged == ["a0", "a1", "a2", "a3", "a4", "a5"]

    def test_merge_checks_result_length(self, partitions):
        with pytest.raises(ValueError):
            merge_partitions(partitions, [[1], [], []], 6)


class TestDispatcher:
    """Test the execution modes."""

    @pytest.mark.parametrize("mode", ["serial", "threads", "dask"])
    def test_modes_match_serial_order(self, partitions, mode):
        dispatcher = Dispatcher(DispatchConfig(mode=mode, n_workers=3))

        for _ in range(5):
            assert dispatcher.run(partitions, echo_positions, 6) == list(range(6))

    def test_threads_run_concurrently(self, partitions):
        """Thread mode runs partitions on different threads."""
        seen = set()
        barrier = threading.Barrier(3, timeout=5)

        def task(partition):
            seen.add(threading.get_ident())
            barrier.wait()
            return list(partition.positions)

        Dispatcher(DispatchConfig(mode="threads", n_workers=3)).run(partitions, task, 6)

        assert len(seen) == 3

    @pytest.mark.parametrize("mode", ["serial", "threads", "dask"])
    def test_failure_is_tagged(self, partitions, mode):
        def task(partition):
            if partition.key[1] == "b":
                raise KeyError("broken file")
            return list(partition.positions)

        with pytest.raises(KeyError) as exc_info:
            Dispatcher(DispatchConfig(mode=mode, n_workers=2)).run(partitions, task, 6)

        assert exc_info.value.partition_key == (0, "b")
        assert exc_info.value.partition_range == (1, 4)

    @pytest.mark.parametrize("mode", ["serial", "threads", "dask"])
    def test_failure_tagged_with_collection_indices(self, partitions, mode):
        def task(partition):
            if partition.key[1] == "b":
                raise KeyError("broken file")
            return list(partition.positions)

        with pytest.raises(KeyError) as exc_info:
            Dispatcher(DispatchConfig(mode=mode, n_workers=2)).run(
                partitions, task, 6, indices=np.arange(10, 16)
            )

        assert exc_info.value.partition_range == (11, 14)

    def test_empty_request(self):
        assert Dispatcher().run([], echo_positions, 0) == []

    def test_progress_bar(self, partitions):
        config = DispatchConfig(mode="threads", show_progress=True)

        assert Dispatcher(config).run(partitions, echo_positions, 6) == list(range(6))


class TestConfig:
    """Test dispatch configuration."""

    def test_invalid_mode(self):
        with pytest.raises(ValueError):
            DispatchConfig(mode="processes")

    def test_invalid_workers(self):
        with pytest.raises(ValueError):
            DispatchConfig(n_workers=0)

    def test_summary(self):
        assert DispatchConfig().get_summary()["n_workers"] == "auto"

    def test_worker_count_capped_by_partitions(self):
        assert default_worker_count(2, n_workers=8) == 2
        assert 1 <= default_worker_count(100) <= 32
