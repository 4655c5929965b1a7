# msspectra/processing/dispatch.py

"""
Partitioned parallel reads.

A read request is split by storage locality (backend part and data_storage
value), every partition is handed to an independent worker, and the results
are written back to their request positions, so the merged output does not
depend on completion order or partition count.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence, Tuple

import dask
import numpy as np
import psutil
from dask.diagnostics import ProgressBar
from numpy.typing import NDArray
from tqdm import tqdm

from ..config import MAX_DISPATCH_WORKERS, MIN_DISPATCH_WORKERS, UNKNOWN_STORAGE_KEY, DispatchConfig
from ..core.metadata import is_missing
from ..exceptions import tag_partition

PartitionKey = Tuple[int, Hashable]


@dataclass
class Partition:
    """Request positions sharing one backend part and data_storage value."""
    key: PartitionKey
    positions: NDArray[np.intp]

    def __len__(self) -> int:
        return len(self.positions)

    @property
    def part(self) -> int:
        return self.key[0]


def partition_indices(parts: Sequence[int], storage: Sequence[Any]) -> List[Partition]:
    """
    Group request positions by (part, data_storage).

    Args:
        parts: Backend part of every requested spectrum
        storage: data_storage value of every requested spectrum

    Returns:
        Partitions in order of first appearance; positions ascending within
        each partition. Missing storage values share one partition per part.
    """
    groups: Dict[PartitionKey, List[int]] = {}
    for pos, (part, key) in enumerate(zip(parts, storage)):
        if is_missing(key):
            key = UNKNOWN_STORAGE_KEY
        groups.setdefault((int(part), key), []).append(pos)
    return [Partition(key, np.asarray(pos, dtype=np.intp)) for key, pos in groups.items()]


def merge_partitions(
    partitions: Sequence[Partition], results: Sequence[Sequence[Any]], n_items: int
) -> List[Any]:
    """
    Place every partition result at its request position.

    Raises:
        ValueError: If a partition returned the wrong number of results
    """
    merged: List[Any] = [None] * n_items
    for partition, values in zip(partitions, results):
        if len(values) != len(partition):
            raise ValueError(
                f"Partition {partition.key} returned {len(values)} results for {len(partition)} spectra"
            )
        for pos, value in zip(partition.positions, values):
            merged[pos] = value
    return merged


def default_worker_count(n_partitions: int, n_workers: Optional[int] = None) -> int:
    """Worker count for n_partitions: requested or physical cores, capped."""
    if n_workers is None:
        n_workers = psutil.cpu_count(logical=False) or psutil.cpu_count() or MIN_DISPATCH_WORKERS
    return max(MIN_DISPATCH_WORKERS, min(n_workers, n_partitions, MAX_DISPATCH_WORKERS))


class Dispatcher:
    """
    Run a per-partition task in serial, thread-pool or dask mode.

    The first failing partition aborts the run: its exception is logged,
    tagged with ``partition_key``/``partition_range`` and re-raised after
    the other running partitions finished. Pending partitions are cancelled.
    """

    def __init__(self, config: Optional[DispatchConfig] = None):
        self.config = config or DispatchConfig()

    def __repr__(self) -> str:
        return f"Dispatcher({self.config.get_summary()})"

    def run(
        self,
        partitions: Sequence[Partition],
        task: Callable[[Partition], Sequence[Any]],
        n_items: int,
        indices: Optional[Sequence[int]] = None,
    ) -> List[Any]:
        """
        Execute task on every partition and merge the results.

        Args:
            partitions: Partitions covering request positions 0..n_items-1
            task: Callable returning one result per position of its partition
            n_items: Total number of request positions
            indices: Collection index of every request position, used to
                tag failures; the request positions themselves when None

        Returns:
            Results in request order
        """
        if not partitions:
            return []

        indices = np.arange(n_items) if indices is None else np.asarray(indices)
        mode = self.config.mode
        if len(partitions) == 1 or mode == "serial":
            results = [self._run_one(task, p, indices) for p in partitions]
        else:
            n_workers = default_worker_count(len(partitions), self.config.n_workers)
            logging.debug(
                f"Dispatching {n_items} spectra in {len(partitions)} partitions "
                f"to {n_workers} {mode} workers"
            )
            if mode == "dask":
                results = self._run_dask(partitions, task, n_workers, indices)
            else:
                results = self._run_threads(partitions, task, n_workers, indices)
        return merge_partitions(partitions, results, n_items)

    def _run_one(
        self, task: Callable[[Partition], Sequence[Any]], partition: Partition, indices
    ):
        try:
            return task(partition)
        except Exception as e:
            logging.error(f"Partition {partition.key} failed: {e}")
            tag_partition(e, partition.key, indices[partition.positions])
            raise

    def _run_threads(self, partitions, task, n_workers: int, indices) -> List[Sequence[Any]]:
        results: List[Optional[Sequence[Any]]] = [None] * len(partitions)
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            futures = {
                executor.submit(self._run_one, task, p, indices): i for i, p in enumerate(partitions)
            }
            with tqdm(
                total=len(partitions),
                desc="Reading partitions",
                unit="partition",
                disable=not self.config.show_progress,
            ) as pbar:
                for future in as_completed(futures):
                    try:
                        results[futures[future]] = future.result()
                    except Exception:
                        for pending in futures:
                            pending.cancel()
                        raise
                    pbar.update(1)
        return results

    def _run_dask(self, partitions, task, n_workers: int, indices) -> List[Sequence[Any]]:
        tasks = [dask.delayed(self._run_one)(task, p, indices) for p in partitions]
        progress = ProgressBar() if self.config.show_progress else nullcontext()
        with progress:
            results = dask.compute(*tasks, scheduler="threads", num_workers=n_workers)
        return list(results)
