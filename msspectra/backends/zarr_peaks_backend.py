# msspectra/backends/zarr_peaks_backend.py

"""
Columnar on-disk peaks backend.

Metadata is kept in memory while peaks live in a zarr group holding two flat
arrays ("mz" and "intensity"). Each backend keeps its own per-spectrum offset
and peak count into these arrays, so subsetting only remaps offsets.

The store is append-only: writing peaks appends the new values and repoints
the writing backend's offsets. Other backends sharing the store keep their
view of the old values.
"""

import logging
import shutil
import tempfile
import threading
import weakref
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import zarr
from numpy.typing import NDArray
from zarr.codecs import GzipCodec, ZstdCodec

from ..config import ZARR_FORMAT_VERSION, ZARR_METADATA_ATTR, ZarrStorageConfig
from ..core.base_backend import BaseSpectraBackend
from ..core.metadata import MetadataTable, is_missing
from ..core.peaks import PeakMatrix, empty_peaks, validate_peak_matrix
from ..core.registry import register_backend
from ..exceptions import LengthMismatch, SourceUnavailable
from .options import ZarrExportOptions, ZarrPeaksOptions


class ZarrPeakStore:
    """
    Thread-safe append-only zarr store for peak data.

    Peaks of all spectra are concatenated into two resizable 1D arrays.
    Concurrent appends from one process are serialized by a lock; concurrent
    writers from different processes are not supported.
    """

    def __init__(
        self,
        path: Union[str, Path],
        config: Optional[ZarrStorageConfig] = None,
        mode: str = "w",
    ):
        """
        Create or open a zarr peak store.

        Args:
            path: Path to the zarr group
            config: Storage configuration (used when creating)
            mode: "w" to create a new store, "r+" to open an existing one
        """
        self.path = Path(path)
        self.config = config or ZarrStorageConfig()

        # Thread safety
        self.write_lock = threading.Lock()

        if mode == "w":
            self._init_zarr_store()
        else:
            self._open_zarr_store()

    @classmethod
    def create_temporary(cls, config: Optional[ZarrStorageConfig] = None) -> "ZarrPeakStore":
        """Create a store in a temporary directory removed with the store."""
        temp_dir = tempfile.mkdtemp(prefix="msspectra-")
        store = cls(Path(temp_dir) / "peaks.zarr", config=config, mode="w")
        store._finalizer = weakref.finalize(store, shutil.rmtree, temp_dir, True)
        logging.debug(f"Created temporary peak store at {store.path}")
        return store

    def _compressors(self):
        if self.config.compression == "zstd":
            return [ZstdCodec(level=self.config.compression_level)]
        if self.config.compression == "gzip":
            return [GzipCodec(level=min(self.config.compression_level, 9))]
        return None

    def _init_zarr_store(self) -> None:
        """Initialize zarr store with empty peak arrays."""
        self.zarr_root = zarr.open_group(str(self.path), mode="w")

        self.mz_array = self.zarr_root.create_array(
            "mz",
            shape=(0,),
            dtype="float64",
            chunks=(self.config.chunk_size,),
            compressors=self._compressors(),
        )
        self.intensity_array = self.zarr_root.create_array(
            "intensity",
            shape=(0,),
            dtype="float64",
            chunks=(self.config.chunk_size,),
            compressors=self._compressors(),
        )

        self._n_peaks = 0
        self.zarr_root.attrs["format_version"] = ZARR_FORMAT_VERSION
        self.zarr_root.attrs["n_peaks"] = 0

        logging.debug(f"Created zarr arrays for peak storage at {self.path}")

    def _open_zarr_store(self) -> None:
        """Open an existing store for reading and appending."""
        if not self.path.exists():
            raise SourceUnavailable(f"Peak store not found: {self.path}")
        try:
            self.zarr_root = zarr.open_group(str(self.path), mode="r+")
            self.mz_array = self.zarr_root["mz"]
            self.intensity_array = self.zarr_root["intensity"]
            self._n_peaks = int(self.zarr_root.attrs["n_peaks"])
        except (FileNotFoundError, KeyError, ValueError) as e:
            raise SourceUnavailable(f"Cannot open peak store {self.path}: {e}") from e

    @property
    def n_peaks(self) -> int:
        return self._n_peaks

    def append(self, peaks: Sequence[PeakMatrix]) -> Tuple[NDArray[np.int64], NDArray[np.int64]]:
        """
        Append peak matrices to the store.

        Args:
            peaks: Peak matrices to store

        Returns:
            Tuple of (offsets, counts) locating each matrix in the flat arrays
        """
        counts = np.array([len(p) for p in peaks], dtype=np.int64)
        with self.write_lock:
            start = self._n_peaks
            offsets = start + np.concatenate([[0], np.cumsum(counts)[:-1]]).astype(np.int64)
            offsets = offsets[: len(counts)]
            total = int(counts.sum())

            if total:
                self._ensure_capacity(total)
                flat = np.concatenate([p for p in peaks if len(p)])
                self.mz_array[start:start + total] = flat[:, 0]
                self.intensity_array[start:start + total] = flat[:, 1]

            self._n_peaks = start + total
            self.zarr_root.attrs["n_peaks"] = self._n_peaks

        logging.debug(f"Appended {len(counts)} spectra, {total} peaks to {self.path}")
        return offsets, counts

    def _ensure_capacity(self, additional_peaks: int) -> None:
        """Ensure peak arrays have enough capacity for additional peaks."""
        required_size = self._n_peaks + additional_peaks
        current_size = self.mz_array.shape[0]

        if required_size > current_size:
            # Calculate new size with some headroom
            new_size = max(required_size, current_size + self.config.resize_increment)

            self.mz_array.resize((new_size,))
            self.intensity_array.resize((new_size,))
            self.mz_array = self.zarr_root["mz"]
            self.intensity_array = self.zarr_root["intensity"]

            logging.debug(f"Resized peak arrays from {current_size} to {new_size}")

    def read(self, offsets: NDArray[np.int64], counts: NDArray[np.int64]) -> List[PeakMatrix]:
        """
        Read peak matrices located by offsets and counts.

        Spectra lying close together are fetched with a single block read.
        """
        if len(offsets) == 0:
            return []

        lo = int(offsets.min())
        hi = int((offsets + counts).max())
        if hi == lo:
            return [empty_peaks() for _ in range(len(offsets))]

        if hi - lo <= 2 * int(counts.sum()) + self.config.chunk_size:
            mz = np.asarray(self.mz_array[lo:hi])
            intensity = np.asarray(self.intensity_array[lo:hi])
            return [
                np.column_stack([mz[o - lo:o - lo + c], intensity[o - lo:o - lo + c]])
                for o, c in zip(offsets, counts)
            ]
        return [self._read_one(int(o), int(c)) for o, c in zip(offsets, counts)]

    def _read_one(self, offset: int, count: int) -> PeakMatrix:
        if count == 0:
            return empty_peaks()
        return np.column_stack([
            np.asarray(self.mz_array[offset:offset + count]),
            np.asarray(self.intensity_array[offset:offset + count]),
        ])

    def save_index(
        self, offsets: NDArray[np.int64], counts: NDArray[np.int64], metadata: pd.DataFrame
    ) -> None:
        """Persist per-spectrum offsets, counts and metadata in the store."""
        with self.write_lock:
            for name, values in (("offsets", offsets), ("counts", counts)):
                array = self.zarr_root.create_array(
                    name,
                    shape=(len(values),),
                    dtype="int64",
                    chunks=(max(1, min(len(values), self.config.chunk_size)),),
                    overwrite=True,
                )
                if len(values):
                    array[:] = np.asarray(values, dtype=np.int64)

            self.zarr_root.attrs[ZARR_METADATA_ATTR] = {
                "fields": list(metadata.columns),
                "columns": {
                    name: [_to_json_value(v) for v in metadata[name]]
                    for name in metadata.columns
                },
            }
        logging.debug(f"Saved index of {len(offsets)} spectra to {self.path}")

    def load_index(self) -> Tuple[NDArray[np.int64], NDArray[np.int64], pd.DataFrame]:
        """Load offsets, counts and metadata persisted by save_index()."""
        try:
            offsets = np.asarray(self.zarr_root["offsets"][:], dtype=np.int64)
            counts = np.asarray(self.zarr_root["counts"][:], dtype=np.int64)
            stored = self.zarr_root.attrs[ZARR_METADATA_ATTR]
        except KeyError as e:
            raise SourceUnavailable(
                f"Peak store {self.path} has no spectra index; was it flushed?"
            ) from e

        columns = stored["columns"]
        frame = pd.DataFrame(
            {name: pd.Series(columns[name], dtype=object) for name in stored["fields"]},
            index=pd.RangeIndex(len(offsets)),
        )
        frame = frame.infer_objects()
        return offsets, counts, frame


def _to_json_value(value: Any) -> Any:
    """Convert a metadata value to something zarr attributes can store."""
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, (list, tuple)):
        return [_to_json_value(v) for v in value]
    if is_missing(value):
        return None
    if isinstance(value, np.generic):
        return value.item()
    return value


@register_backend("zarr_peaks")
class ZarrPeaksBackend(BaseSpectraBackend):
    """
    Backend with in-memory metadata and peaks in a zarr peak store.

    Concurrent writers from different collections to the same store are not
    safe; callers must serialize them.
    """

    export_formats = ("zarr",)
    readonly_fields = frozenset({"data_storage"})

    def __init__(
        self,
        store: ZarrPeakStore,
        metadata: MetadataTable,
        offsets: Sequence[int],
        counts: Sequence[int],
    ):
        super().__init__(metadata)
        self._store = store
        self._offsets = np.array(offsets, dtype=np.int64)
        self._counts = np.array(counts, dtype=np.int64)
        if not (len(self._offsets) == len(self._counts) == len(metadata)):
            raise LengthMismatch(
                f"Offsets ({len(self._offsets)}), counts ({len(self._counts)}) and "
                f"metadata ({len(metadata)}) must describe the same spectra"
            )

    @property
    def store_path(self) -> Path:
        """Location of the peak store."""
        return self._store.path

    def peaks(self, indices: Sequence[int]) -> List[PeakMatrix]:
        indices = self._check_indices(indices)
        return self._store.read(self._offsets[indices], self._counts[indices])

    def subset(self, indices: Sequence[int]) -> "ZarrPeaksBackend":
        indices = self._check_indices(indices)
        return ZarrPeaksBackend(
            self._store,
            self._metadata.take(indices),
            self._offsets[indices],
            self._counts[indices],
        )

    def supports_write(self) -> bool:
        return True

    def _write_peaks(self, indices: NDArray[np.intp], peaks: List[PeakMatrix]) -> None:
        offsets, counts = self._store.append(peaks)
        self._offsets[indices] = offsets
        self._counts[indices] = counts

    def flush(self) -> None:
        """Persist this backend's metadata and peak locations in the store."""
        self._store.save_index(self._offsets, self._counts, self._metadata.to_frame())

    @classmethod
    def initialize(cls, source: Union[str, Path], **options) -> "ZarrPeaksBackend":
        """
        Open a flushed peak store.

        Raises:
            SourceUnavailable: If the store does not exist or has no index
        """
        if options:
            raise TypeError(f"Unexpected options for ZarrPeaksBackend: {sorted(options)}")
        store = ZarrPeakStore(source, mode="r+")
        offsets, counts, frame = store.load_index()
        try:
            metadata = MetadataTable(frame)
        except (TypeError, ValueError) as e:
            raise SourceUnavailable(f"Corrupt spectra metadata in {source}: {e}") from e

        backend = cls(store, metadata, offsets, counts)
        logging.info(f"Opened peak store {store.path} with {len(backend)} spectra")
        return backend

    @classmethod
    def from_data(
        cls, metadata: pd.DataFrame, peaks: List[PeakMatrix], **options
    ) -> "ZarrPeaksBackend":
        """
        Create a peak store holding the given data.

        Args:
            metadata: Per-spectrum metadata
            peaks: One peak matrix per spectrum
            **options: ZarrPeaksOptions fields; without "path" a temporary
                store is created and deleted once no backend uses it

        Raises:
            FileExistsError: If path exists and overwrite is False
        """
        opts = ZarrPeaksOptions(**options)
        peaks = [validate_peak_matrix(p) for p in peaks]
        if len(metadata) != len(peaks):
            raise LengthMismatch(
                f"Metadata has {len(metadata)} rows but {len(peaks)} peak matrices were given"
            )

        if opts.path is None:
            store = ZarrPeakStore.create_temporary(opts.storage_config())
        else:
            if opts.path.exists() and not opts.overwrite:
                raise FileExistsError(f"Destination {opts.path} already exists.")
            store = ZarrPeakStore(opts.path, config=opts.storage_config(), mode="w")

        offsets, counts = store.append(peaks)
        frame = metadata.reset_index(drop=True).copy()
        frame["data_storage"] = str(store.path)
        backend = cls(store, MetadataTable(frame), offsets, counts)
        backend.flush()

        logging.info(f"Wrote {len(backend)} spectra, {store.n_peaks} peaks to {store.path}")
        return backend

    @classmethod
    def _export(cls, spectra, destination: Path, fmt: str, **options) -> Path:
        opts = ZarrExportOptions(**options)
        backend = cls.from_data(
            spectra.spectra_data(), spectra.peaks_data(), path=destination, **opts.model_dump()
        )
        return backend.store_path
