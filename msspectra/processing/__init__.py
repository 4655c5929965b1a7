# msspectra/processing/__init__.py

"""
Peak processing and parallel dispatch.

This package contains the deferred processing queue, the built-in pure peak
functions, and the dispatcher that reads spectra partitioned by storage.
"""

from .dispatch import Dispatcher, Partition, merge_partitions, partition_indices
from .queue import ProcessingQueue, ProcessingStep

__all__ = [
    "ProcessingStep",
    "ProcessingQueue",
    "Dispatcher",
    "Partition",
    "partition_indices",
    "merge_partitions",
]
