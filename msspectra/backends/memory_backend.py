# msspectra/backends/memory_backend.py

"""
In-memory spectra backend.

All metadata and peak matrices are held directly in memory. Every field is
writable and reads have no I/O latency, at the highest memory cost.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from ..config import MEMORY_STORAGE_KEY
from ..core.base_backend import BaseSpectraBackend
from ..core.metadata import MetadataTable, is_missing
from ..core.peaks import PeakMatrix, as_peak_matrix, empty_peaks, frozen_peaks
from ..core.registry import register_backend
from ..exceptions import LengthMismatch, SourceUnavailable


@register_backend("memory")
class MemoryBackend(BaseSpectraBackend):
    """
    Backend keeping metadata and peaks in memory.

    Stored peak matrices are read-only arrays, so processing steps and
    callers receive them without copying and cannot alter stored data.
    """

    def __init__(
        self,
        metadata: Optional[Union[pd.DataFrame, Dict[str, Sequence[Any]], MetadataTable]] = None,
        peaks: Optional[Sequence[PeakMatrix]] = None,
    ):
        """
        Initialize the backend.

        Args:
            metadata: Per-spectrum metadata
            peaks: One peak matrix per spectrum; empty spectra when omitted

        Raises:
            LengthMismatch: If metadata rows and peak matrices differ in number
        """
        if isinstance(metadata, MetadataTable):
            table = metadata
        elif peaks is not None:
            table = MetadataTable(metadata, n_rows=len(peaks) if metadata is None else None)
        else:
            table = MetadataTable(metadata)

        if peaks is None:
            stored = [frozen_peaks(empty_peaks()) for _ in range(len(table))]
        else:
            stored = [p if _is_frozen(p) else frozen_peaks(p) for p in peaks]
        if len(stored) != len(table):
            raise LengthMismatch(
                f"Metadata has {len(table)} rows but {len(stored)} peak matrices were given"
            )

        storage = table.get("data_storage")
        if storage.isna().any():
            storage = storage.fillna(MEMORY_STORAGE_KEY)
            table.set("data_storage", storage)

        super().__init__(table)
        self._peaks: List[PeakMatrix] = stored

    def peaks(self, indices: Sequence[int]) -> List[PeakMatrix]:
        indices = self._check_indices(indices)
        return [self._peaks[i] for i in indices]

    def subset(self, indices: Sequence[int]) -> "MemoryBackend":
        indices = self._check_indices(indices)
        return MemoryBackend(
            self._metadata.take(indices), [self._peaks[i] for i in indices]
        )

    def supports_write(self) -> bool:
        return True

    def _write_peaks(self, indices: NDArray[np.intp], peaks: List[PeakMatrix]) -> None:
        for i, p in zip(indices, peaks):
            self._peaks[i] = frozen_peaks(p)
        logging.debug(f"Replaced peaks of {len(indices)} in-memory spectra")

    @classmethod
    def initialize(cls, source: Any, **options) -> "MemoryBackend":
        """
        Create a backend from tabular data.

        Args:
            source: DataFrame or dict of columns; optional "mz" and
                "intensity" columns hold one array per spectrum

        Raises:
            SourceUnavailable: If source is not tabular data
        """
        if options:
            raise TypeError(f"Unexpected options for MemoryBackend: {sorted(options)}")
        if isinstance(source, dict):
            try:
                source = pd.DataFrame({k: list(v) for k, v in source.items()})
            except (TypeError, ValueError) as e:
                raise SourceUnavailable(f"Cannot build a table from source: {e}") from e
        if not isinstance(source, pd.DataFrame):
            raise SourceUnavailable(
                f"MemoryBackend needs a DataFrame or dict, got {type(source).__name__}"
            )

        frame = source.reset_index(drop=True)
        mz = frame["mz"] if "mz" in frame.columns else None
        intensity = frame["intensity"] if "intensity" in frame.columns else None
        if (mz is None) != (intensity is None):
            raise SourceUnavailable("Source must provide both 'mz' and 'intensity' or neither")

        peaks = None
        if mz is not None:
            peaks = [
                empty_peaks() if _is_empty_value(m) else as_peak_matrix(m, i)
                for m, i in zip(mz, intensity)
            ]
            frame = frame.drop(columns=["mz", "intensity"])

        backend = cls(frame if len(frame.columns) else None, peaks)
        logging.info(f"Initialized in-memory backend with {len(backend)} spectra")
        return backend

    @classmethod
    def from_data(
        cls, metadata: pd.DataFrame, peaks: List[PeakMatrix], **options
    ) -> "MemoryBackend":
        if options:
            raise TypeError(f"Unexpected options for MemoryBackend: {sorted(options)}")
        metadata = metadata.copy()
        metadata["data_storage"] = MEMORY_STORAGE_KEY
        return cls(metadata, peaks)


def _is_frozen(peaks) -> bool:
    return (
        isinstance(peaks, np.ndarray)
        and not peaks.flags.writeable
        and peaks.dtype == np.float64
        and peaks.ndim == 2
        and peaks.shape[1] == 2
    )


def _is_empty_value(value) -> bool:
    if value is None:
        return True
    return is_missing(value)
