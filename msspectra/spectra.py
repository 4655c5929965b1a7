# msspectra/spectra.py

"""
Backend-agnostic spectra collection.

A Spectra object owns a metadata table, one or more backend parts and one
processing queue per part. Combining collections concatenates their parts;
every spectrum remembers the part it comes from and its index in that part's
backend, so reads route to the originating backend and queue.
"""

import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Type, Union

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from .backends import MemoryBackend
from .config import DispatchConfig
from .core.base_backend import BaseSpectraBackend
from .core.metadata import CORE_FIELDS, PEAK_FIELDS, MetadataTable, is_scalar_value
from .core.peaks import INTENSITY_COLUMN, MZ_COLUMN, PeakMatrix
from .core.registry import get_backend_class
from .exceptions import IndexOutOfRange, LengthMismatch, UnsupportedOperation
from .processing.dispatch import Dispatcher, partition_indices
from .processing.peak_functions import (
    filter_intensity as _filter_intensity,
    filter_mz_range as _filter_mz_range,
    filter_mz_values as _filter_mz_values,
    pick_peaks as _pick_peaks,
    replace_intensities_below as _replace_intensities_below,
    restrict_to_ms_levels,
    scale_peaks as _scale_peaks,
    smooth as _smooth,
)
from .processing.queue import ProcessingQueue, ProcessingStep

BackendLike = Union[str, Type[BaseSpectraBackend]]


class _SpectraPart:
    """A backend together with the processing queue applied to its peaks."""

    __slots__ = ("backend", "queue")

    def __init__(self, backend: BaseSpectraBackend, queue: Optional[ProcessingQueue] = None):
        self.backend = backend
        self.queue = queue if queue is not None else ProcessingQueue()


def _as_values(values) -> List[Any]:
    if is_scalar_value(values):
        return [values]
    return list(values)


def _object_column(values: Sequence[Any], index: pd.Index) -> pd.Series:
    """Series holding one array per row."""
    column = np.empty(len(values), dtype=object)
    for i, value in enumerate(values):
        column[i] = value
    return pd.Series(column, index=index, dtype=object)


def _in_range(series: pd.Series, lo: float, hi: float) -> NDArray[np.bool_]:
    """Closed-interval membership; missing values are never in range."""
    mask = (series >= lo) & (series <= hi)
    return mask.fillna(False).to_numpy(dtype=bool)


class Spectra:
    """
    Ordered collection of mass spectra.

    Metadata is read from the collection's metadata table; peak data is read
    through the backend and the processing queue on every request.
    Operations that filter or add processing return new collections;
    ``reset``, ``apply_processing`` and ``set_backend`` modify the collection
    in place and return it.
    """

    def __init__(
        self,
        backend: Optional[BaseSpectraBackend] = None,
        processing_queue: Optional[ProcessingQueue] = None,
        dispatch: Optional[DispatchConfig] = None,
    ):
        """
        Create a collection bound to one backend.

        Args:
            backend: Initialized backend; an empty MemoryBackend when omitted
            processing_queue: Initial processing queue
            dispatch: Parallel read configuration
        """
        if backend is None:
            backend = MemoryBackend()
        if not isinstance(backend, BaseSpectraBackend):
            raise TypeError(f"Expected a spectra backend, got {type(backend).__name__}")

        n = backend.spectrum_count()
        self._parts: List[_SpectraPart] = [_SpectraPart(backend, processing_queue)]
        self._metadata = MetadataTable(backend.metadata())
        self._part_of = np.zeros(n, dtype=np.intp)
        self._local = np.arange(n, dtype=np.intp)
        self._dispatch = dispatch or DispatchConfig()
        self._log: List[str] = []

    @classmethod
    def from_data(
        cls,
        metadata: Optional[Union[pd.DataFrame, Dict[str, Sequence[Any]]]] = None,
        peaks: Optional[Sequence[PeakMatrix]] = None,
        dispatch: Optional[DispatchConfig] = None,
    ) -> "Spectra":
        """
        Create an in-memory collection from tabular metadata and peak lists.

        Args:
            metadata: DataFrame or dict of columns; may carry "mz" and
                "intensity" columns instead of peaks
            peaks: One (n, 2) peak matrix per spectrum
            dispatch: Parallel read configuration
        """
        has_peak_columns = metadata is not None and "mz" in metadata
        if peaks is None and has_peak_columns:
            backend = MemoryBackend.initialize(metadata)
        else:
            backend = MemoryBackend(metadata, peaks)
        return cls(backend, dispatch=dispatch)

    @classmethod
    def from_sources(
        cls,
        sources: Union[str, Path, Iterable[Union[str, Path]]],
        backend: BackendLike = "raw_file",
        dispatch: Optional[DispatchConfig] = None,
        **options,
    ) -> "Spectra":
        """
        Create a collection from one or more external sources.

        The backend is initialized once per distinct source and the results
        are concatenated in order of first appearance.

        Raises:
            SourceUnavailable: If a source cannot be opened
        """
        if isinstance(sources, (str, Path)):
            sources = [sources]
        backend_class = get_backend_class(backend)

        distinct: Dict[str, Union[str, Path]] = {}
        for source in sources:
            distinct.setdefault(str(source), source)

        collections = [
            cls(backend_class.initialize(source, **options), dispatch=dispatch)
            for source in distinct.values()
        ]
        if not collections:
            return cls(dispatch=dispatch)
        if len(collections) == 1:
            return collections[0]
        return collections[0].combine(*collections[1:])

    # Internal construction

    def _derive(
        self,
        parts: List[_SpectraPart],
        metadata: MetadataTable,
        part_of: NDArray[np.intp],
        local: NDArray[np.intp],
        message: Optional[str] = None,
    ) -> "Spectra":
        derived = Spectra.__new__(Spectra)
        derived._parts = parts
        derived._metadata = metadata
        derived._part_of = part_of
        derived._local = local
        derived._dispatch = self._dispatch
        derived._log = list(self._log)
        if message:
            derived._add_log(message)
        return derived

    def _copy_parts(self) -> List[_SpectraPart]:
        return [_SpectraPart(p.backend, p.queue) for p in self._parts]

    def _add_log(self, message: str) -> None:
        self._log.append(f"{message} [{time.strftime('%a %b %d %H:%M:%S %Y')}]")

    def _take(self, positions: NDArray[np.intp], message: Optional[str] = None) -> "Spectra":
        """Row projection at collection positions; order and duplicates kept."""
        positions = np.asarray(positions, dtype=np.intp)
        old_parts = self._part_of[positions]
        part_of = np.empty(len(positions), dtype=np.intp)
        local = np.empty(len(positions), dtype=np.intp)

        parts: List[_SpectraPart] = []
        for p in dict.fromkeys(old_parts.tolist()):
            selected = np.flatnonzero(old_parts == p)
            source = self._parts[p]
            backend = source.backend.subset(self._local[positions[selected]])
            parts.append(_SpectraPart(backend, source.queue))
            part_of[selected] = len(parts) - 1
            local[selected] = np.arange(len(selected))

        if not parts:
            # Keep the queue of an emptied collection
            first = self._parts[0]
            parts.append(_SpectraPart(first.backend.subset([]), first.queue))

        return self._derive(parts, self._metadata.take(positions), part_of, local, message)

    def _resolve_index(self, key) -> NDArray[np.intp]:
        n = len(self)
        if isinstance(key, slice):
            return np.arange(n)[key]
        if isinstance(key, (int, np.integer)) and not isinstance(key, (bool, np.bool_)):
            key = [key]
        if isinstance(key, pd.Series):
            key = key.to_numpy(dtype=bool, na_value=False) if pd.api.types.is_bool_dtype(key.dtype) else key.to_numpy()

        arr = np.asarray(key)
        if arr.dtype == bool:
            if arr.size != n:
                raise LengthMismatch(f"Boolean index of length {arr.size} for {n} spectra")
            return np.flatnonzero(arr)
        if arr.size == 0:
            return np.empty(0, dtype=np.intp)
        if arr.dtype.kind not in "iu":
            raise TypeError(f"Spectra can only be indexed by integers or booleans, got {arr.dtype}")

        arr = arr.astype(np.intp).ravel()
        bad = arr[(arr < -n) | (arr >= n)]
        if bad.size:
            raise IndexOutOfRange(f"Index {int(bad[0])} out of range for {n} spectra")
        return np.where(arr < 0, arr + n, arr)

    # Basic protocol

    def __len__(self) -> int:
        return len(self._metadata)

    def __repr__(self) -> str:
        backends = ", ".join(dict.fromkeys(type(p.backend).__name__ for p in self._parts))
        n_steps = max(len(p.queue) for p in self._parts)
        return (
            f"Spectra with {len(self)} spectra in {backends}; "
            f"{n_steps} queued processing step(s)"
        )

    def __getitem__(self, key):
        """
        Field access by name, or subsetting by index, slice or boolean mask.

        ``sps["mz"]`` and ``sps["intensity"]`` return peak data with the
        processing queue applied.
        """
        if isinstance(key, str):
            if key == "mz":
                return self.mz()
            if key == "intensity":
                return self.intensity()
            if key == "peaks":
                return self.peaks_data()
            return self._metadata.get(key)
        return self._take(self._resolve_index(key))

    def __setitem__(self, name: str, value: Any) -> None:
        """
        Assign a metadata field; scalars are broadcast.

        Raises:
            UnsupportedOperation: For peak fields and fields read-only in a backend
            LengthMismatch: If value does not have one entry per spectrum
            TypeMismatch: If a core field value cannot be coerced
        """
        if name in PEAK_FIELDS:
            raise UnsupportedOperation(
                f"'{name}' is peak data; use add_processing() or the backend's write()"
            )
        for part in self._parts:
            if part.backend.is_read_only(name):
                raise UnsupportedOperation(
                    f"Field '{name}' is read-only for {type(part.backend).__name__}"
                )
        self._metadata.set(name, value)

    def __delitem__(self, name: str) -> None:
        if name in CORE_FIELDS:
            raise UnsupportedOperation(f"Core field '{name}' cannot be removed")
        self._metadata.drop([name])

    # Metadata

    @property
    def processing_log(self) -> List[str]:
        """Human-readable history of the operations applied to this collection."""
        return list(self._log)

    @property
    def backends(self) -> List[BaseSpectraBackend]:
        """Backend of every part, in part order."""
        return [p.backend for p in self._parts]

    @property
    def dispatch(self) -> DispatchConfig:
        return self._dispatch

    def spectra_variables(self) -> List[str]:
        """Names of all metadata fields: core fields first, then extra fields."""
        return self._metadata.fields

    def spectra_data(self, fields: Optional[Sequence[str]] = None) -> pd.DataFrame:
        """
        Return metadata (and optionally peak data) as a DataFrame.

        Args:
            fields: Fields to return; "mz", "intensity" and "peaks" add
                columns holding one array per spectrum. All metadata
                fields when None.

        Raises:
            KeyError: If a requested field is unknown
        """
        names = self.spectra_variables() if fields is None else list(fields)
        unknown = [n for n in names if n not in PEAK_FIELDS and n not in self._metadata]
        if unknown:
            raise KeyError(f"Unknown spectra variables: {unknown}")

        frame = self._metadata.select([n for n in names if n not in PEAK_FIELDS])
        if any(n in PEAK_FIELDS for n in names):
            peaks = self.peaks_data()
            columns = {
                "peaks": peaks,
                "mz": [p[:, MZ_COLUMN] for p in peaks],
                "intensity": [p[:, INTENSITY_COLUMN] for p in peaks],
            }
            for name in names:
                if name in PEAK_FIELDS:
                    frame[name] = _object_column(columns[name], frame.index)
        return frame[names]

    def select_spectra_variables(self, fields: Sequence[str]) -> "Spectra":
        """
        Keep only the listed extra fields; core fields are always kept.

        Raises:
            KeyError: If a listed field is unknown
        """
        fields = [f for f in fields if f not in PEAK_FIELDS]
        unknown = [f for f in fields if f not in self._metadata]
        if unknown:
            raise KeyError(f"Unknown spectra variables: {unknown}")

        metadata = self._metadata.copy()
        metadata.drop([f for f in metadata.stored_fields if f not in CORE_FIELDS and f not in fields])
        return self._derive(
            self._copy_parts(), metadata, self._part_of.copy(), self._local.copy(),
            f"Selected spectra variables {list(fields)}",
        )

    # Peak data

    def _read_peaks(self, positions: Optional[NDArray[np.intp]] = None) -> List[PeakMatrix]:
        """Read processed peaks at collection positions, partitioned by storage."""
        if positions is None:
            positions = np.arange(len(self), dtype=np.intp)
        storage = self._metadata.get("data_storage").to_numpy(dtype=object)[positions]
        partitions = partition_indices(self._part_of[positions], storage)

        def read_partition(partition):
            part = self._parts[partition.part]
            requested = positions[partition.positions]
            raw = part.backend.peaks(self._local[requested])
            variables = None
            if part.queue.spectra_variables:
                variables = self._metadata.rows(part.queue.spectra_variables, requested)
            return part.queue.apply(raw, variables)

        return Dispatcher(self._dispatch).run(
            partitions, read_partition, len(positions), indices=positions
        )

    def peaks_data(self) -> List[PeakMatrix]:
        """Peak matrices of all spectra with the processing queue applied."""
        return self._read_peaks()

    def mz(self) -> List[NDArray[np.float64]]:
        return [p[:, MZ_COLUMN] for p in self._read_peaks()]

    def intensity(self) -> List[NDArray[np.float64]]:
        return [p[:, INTENSITY_COLUMN] for p in self._read_peaks()]

    def lengths(self) -> NDArray[np.int64]:
        """Number of peaks per spectrum."""
        return np.array([len(p) for p in self._read_peaks()], dtype=np.int64)

    def ion_count(self) -> NDArray[np.float64]:
        """Total intensity per spectrum."""
        return np.array(
            [float(np.nansum(p[:, INTENSITY_COLUMN])) for p in self._read_peaks()],
            dtype=np.float64,
        )

    def is_empty(self) -> NDArray[np.bool_]:
        return self.lengths() == 0

    # Processing queue

    @property
    def processing_queues(self) -> List[ProcessingQueue]:
        """Processing queue of every backend part."""
        return [p.queue for p in self._parts]

    @property
    def processing_queue(self) -> ProcessingQueue:
        """
        The processing queue shared by all parts.

        Raises:
            ValueError: If combined parts carry different queues
        """
        queues = self.processing_queues
        if any(q != queues[0] for q in queues[1:]):
            raise ValueError("Parts of this collection have different processing queues")
        return queues[0]

    def add_processing(
        self,
        func: Callable[..., PeakMatrix],
        spectra_variables: Sequence[str] = (),
        **params,
    ) -> "Spectra":
        """
        Queue a peak function; the backend is not modified.

        Args:
            func: Function ``func(peaks, **params, **variables) -> peaks``
            spectra_variables: Metadata fields passed to func per spectrum
            **params: Parameters bound to func

        Returns:
            New collection sharing the backend, with the extended queue
        """
        step = ProcessingStep(func, params, tuple(spectra_variables))
        parts = [_SpectraPart(p.backend, p.queue.add(step)) for p in self._parts]
        return self._derive(
            parts, self._metadata.copy(), self._part_of.copy(), self._local.copy(),
            f"Queued {step.describe()}",
        )

    def reset(self) -> "Spectra":
        """Empty the processing queue and reset every backend's cached state."""
        for part in self._parts:
            part.queue = ProcessingQueue()
            part.backend.reset()
        self._add_log("Processing queue reset")
        return self

    def apply_processing(self) -> "Spectra":
        """
        Write the queued processing into the backends and empty the queue.

        The write goes to a copy of each backend, so collections sharing the
        original backend keep their data. It cannot be undone by reset().
        A failure while reading or writing any part leaves every part with
        its backend and queue unchanged.

        Raises:
            UnsupportedOperation: If a backend cannot store peak data; the
                queue is left untouched
        """
        for part in self._parts:
            backend = part.backend
            if len(part.queue) and (not backend.supports_write() or backend.is_read_only("peaks")):
                raise UnsupportedOperation(
                    f"{type(backend).__name__} cannot store processed peaks; "
                    f"use set_backend() to a writable backend first"
                )

        # Every part is written before any part is swapped
        staged = []
        for p, part in enumerate(self._parts):
            if not len(part.queue):
                continue
            positions = np.flatnonzero(self._part_of == p)
            processed = self._read_peaks(positions)
            backend = part.backend.copy()
            backend.write(self._local[positions], {"peaks": processed})
            staged.append((part, backend, len(positions)))

        for part, backend, n_spectra in staged:
            n_steps = len(part.queue)
            part.backend = backend
            part.queue = ProcessingQueue()
            logging.info(f"Applied {n_steps} processing step(s) to {n_spectra} spectra")

        self._add_log("Processing queue applied to stored peaks")
        return self

    def _add_peak_step(
        self, func: Callable[..., PeakMatrix], ms_level=None, **params
    ) -> "Spectra":
        if ms_level is None:
            return self.add_processing(func, **params)
        return self.add_processing(
            restrict_to_ms_levels,
            spectra_variables=("ms_level",),
            step_func=func,
            ms_levels=tuple(int(m) for m in _as_values(ms_level)),
            **params,
        )

    def replace_intensities_below(self, threshold=0.0, value: float = 0.0, ms_level=None) -> "Spectra":
        """Queue replacement of intensities below threshold by value."""
        return self._add_peak_step(
            _replace_intensities_below, ms_level, threshold=threshold, value=value
        )

    def filter_intensity(self, intensity=(0.0, np.inf), ms_level=None) -> "Spectra":
        """Queue removal of peaks outside the closed intensity range."""
        return self._add_peak_step(_filter_intensity, ms_level, intensity=intensity)

    def filter_mz_range(self, mz=(-np.inf, np.inf), keep: bool = True, ms_level=None) -> "Spectra":
        """Queue removal of peaks outside (or inside, with keep=False) an m/z range."""
        return self._add_peak_step(_filter_mz_range, ms_level, mz=tuple(mz), keep=keep)

    def filter_mz_values(
        self, mz: Iterable[float], tolerance: float = 0.0, ppm: float = 20.0,
        keep: bool = True, ms_level=None,
    ) -> "Spectra":
        """Queue keeping (or removing) peaks matching the given m/z values."""
        return self._add_peak_step(
            _filter_mz_values, ms_level, mz=tuple(mz), tolerance=tolerance, ppm=ppm, keep=keep
        )

    def scale_peaks(self, by: Callable = np.sum, ms_level=None) -> "Spectra":
        return self._add_peak_step(_scale_peaks, ms_level, by=by)

    def smooth(self, half_window: int = 2, method: str = "SavitzkyGolay", ms_level=None) -> "Spectra":
        return self._add_peak_step(_smooth, ms_level, half_window=half_window, method=method)

    def pick_peaks(self, half_window: int = 2, snr: float = 0.0, ms_level=None) -> "Spectra":
        return self._add_peak_step(_pick_peaks, ms_level, half_window=half_window, snr=snr)

    # Metadata filters

    def filter(self, predicate: Callable[[pd.DataFrame], Sequence[bool]]) -> "Spectra":
        """
        Keep spectra for which predicate is true.

        Args:
            predicate: Function receiving spectra_data() and returning one
                boolean per spectrum; missing values count as False
        """
        mask = pd.Series(predicate(self.spectra_data()))
        if len(mask) != len(self):
            raise LengthMismatch(f"Predicate returned {len(mask)} values for {len(self)} spectra")
        keep = mask.fillna(False).to_numpy(dtype=bool)
        return self._take(np.flatnonzero(keep), "Filter: custom predicate")

    def _filter_mask(self, mask: NDArray[np.bool_], message: str) -> "Spectra":
        return self._take(np.flatnonzero(mask), f"Filter: {message}")

    def filter_ms_level(self, ms_level) -> "Spectra":
        """Keep spectra of the given MS level(s)."""
        levels = _as_values(ms_level)
        mask = self._metadata.get("ms_level").isin(levels).to_numpy(dtype=bool)
        return self._filter_mask(mask, f"select MS level(s) {levels}")

    def filter_polarity(self, polarity) -> "Spectra":
        """Keep spectra of the given polarity (0 negative, 1 positive)."""
        values = _as_values(polarity)
        mask = self._metadata.get("polarity").isin(values).to_numpy(dtype=bool)
        return self._filter_mask(mask, f"select polarity {values}")

    def filter_rt(self, rt: Tuple[float, float], ms_level=None) -> "Spectra":
        """
        Keep spectra with retention time in the closed range [lo, hi].

        Args:
            rt: (lo, hi) in seconds
            ms_level: Restrict the filter to these MS levels; spectra of
                other levels are kept
        """
        lo, hi = rt
        mask = _in_range(self._metadata.get("rtime"), lo, hi)
        if ms_level is not None:
            exempt = ~self._metadata.get("ms_level").isin(_as_values(ms_level)).to_numpy(dtype=bool)
            mask |= exempt
        return self._filter_mask(mask, f"select retention time [{lo}..{hi}]")

    def filter_precursor_mz(self, mz: Tuple[float, float]) -> "Spectra":
        """Keep spectra whose precursor m/z lies in the closed range [lo, hi]."""
        lo, hi = mz
        mask = _in_range(self._metadata.get("precursor_mz"), lo, hi)
        return self._filter_mask(mask, f"select precursor m/z [{lo}..{hi}]")

    def filter_isolation_window(self, mz: float) -> "Spectra":
        """Keep spectra whose isolation window contains mz (bounds included)."""
        lower = self._metadata.get("isolation_window_lower_mz")
        upper = self._metadata.get("isolation_window_upper_mz")
        mask = ((lower <= mz) & (upper >= mz)).fillna(False).to_numpy(dtype=bool)
        return self._filter_mask(mask, f"select isolation windows containing m/z {mz}")

    def filter_acquisition_num(self, n, data_storage=None) -> "Spectra":
        """
        Keep spectra with the given acquisition number(s).

        Args:
            n: Acquisition number(s)
            data_storage: Only filter spectra of these storage locations;
                spectra of other locations are kept
        """
        values = _as_values(n)
        mask = self._metadata.get("acquisition_num").isin(values).to_numpy(dtype=bool)
        if data_storage is not None:
            targeted = self._metadata.get("data_storage").isin(
                [str(s) for s in _as_values(data_storage)]
            ).to_numpy(dtype=bool)
            mask |= ~targeted
        return self._filter_mask(mask, f"select acquisition number(s) {values}")

    def filter_data_origin(self, data_origin) -> "Spectra":
        """Keep spectra of the given data origin(s); collection order is kept."""
        values = [str(v) for v in _as_values(data_origin)]
        mask = self._metadata.get("data_origin").isin(values).to_numpy(dtype=bool)
        return self._filter_mask(mask, f"select data origin(s) {values}")

    def filter_data_storage(self, data_storage) -> "Spectra":
        """Keep spectra of the given data storage location(s)."""
        values = [str(v) for v in _as_values(data_storage)]
        mask = self._metadata.get("data_storage").isin(values).to_numpy(dtype=bool)
        return self._filter_mask(mask, f"select data storage(s) {values}")

    def filter_empty_spectra(self) -> "Spectra":
        """Remove spectra without peaks after processing."""
        return self._filter_mask(~self.is_empty(), "remove empty spectra")

    def split(self, field: str) -> List["Spectra"]:
        """
        Split into one collection per distinct value of field.

        Groups follow the first appearance of their value; missing values
        form one group.
        """
        values = self._metadata.get(field)
        keys = values.astype(object).where(values.notna(), None).tolist()
        groups: Dict[Any, List[int]] = {}
        for pos, key in enumerate(keys):
            groups.setdefault(key, []).append(pos)
        return [
            self._take(np.asarray(pos, dtype=np.intp), f"Split by {field} = {key}")
            for key, pos in groups.items()
        ]

    # Combination, migration, export

    def combine(self, *others: "Spectra") -> "Spectra":
        """Concatenate this collection with others, keeping argument order."""
        return combine(self, *others)

    def set_backend(self, backend: BackendLike, **options) -> "Spectra":
        """
        Move all data to a new backend of the given kind.

        Peaks are read through the processing queue, so the new backend stores
        processed peaks and the queue is emptied.

        Args:
            backend: Backend name or class
            **options: Options for the target backend's from_data()
        """
        backend_class = get_backend_class(backend)
        peaks = self.peaks_data()
        new_backend = backend_class.from_data(self._metadata.to_frame(), peaks, **options)

        n = len(self)
        self._parts = [_SpectraPart(new_backend)]
        self._metadata = MetadataTable(new_backend.metadata())
        self._part_of = np.zeros(n, dtype=np.intp)
        self._local = np.arange(n, dtype=np.intp)
        self._add_log(f"Switched backend to {backend_class.__name__}")
        logging.info(f"Moved {n} spectra to {backend_class.__name__}")
        return self

    def export(self, backend: BackendLike, destination: Union[str, Path], **options) -> Path:
        """Write this collection with the export capability of backend."""
        return export(self, backend, destination, **options)

    def with_dispatch(self, config: Optional[DispatchConfig] = None, **kwargs) -> "Spectra":
        """
        Return a collection reading with another dispatch configuration.

        Args:
            config: DispatchConfig; built from kwargs when omitted
        """
        derived = self._derive(
            self._copy_parts(), self._metadata.copy(), self._part_of.copy(), self._local.copy()
        )
        derived._dispatch = config or DispatchConfig(**kwargs)
        return derived

    def close(self) -> None:
        """Release file handles of all backends."""
        for part in self._parts:
            part.backend.close()


def _field_property(name: str) -> property:
    def getter(self: Spectra) -> pd.Series:
        return self._metadata.get(name)

    def setter(self: Spectra, value) -> None:
        self[name] = value

    return property(getter, setter, doc=f"Core field '{name}'")


for _name in CORE_FIELDS:
    setattr(Spectra, _name, _field_property(_name))


def combine(*spectra: Spectra) -> Spectra:
    """
    Concatenate collections in argument order.

    The field set of the result is the union of the inputs' field sets;
    rows lacking a field hold MISSING. Every input keeps its backends and
    processing queues, applied only to the spectra coming from it.
    """
    if len(spectra) == 1 and not isinstance(spectra[0], Spectra):
        spectra = tuple(spectra[0])
    if not spectra:
        raise ValueError("combine() needs at least one Spectra object")

    parts: List[_SpectraPart] = []
    part_of, local = [], []
    for sps in spectra:
        part_of.append(sps._part_of + len(parts))
        local.append(sps._local)
        parts.extend(_SpectraPart(p.backend, p.queue) for p in sps._parts)

    first = spectra[0]
    metadata = MetadataTable.concat([s._metadata for s in spectra])
    combined = first._derive(
        parts, metadata, np.concatenate(part_of), np.concatenate(local),
        f"Combined {len(spectra)} Spectra objects",
    )
    logging.debug(f"Combined {len(spectra)} collections into {len(combined)} spectra")
    return combined


def export(
    spectra: Spectra, backend: BackendLike, destination: Union[str, Path], **options
) -> Path:
    """
    Export a collection through the export capability of a backend.

    Raises:
        UnsupportedFormat: If the backend cannot write the requested format
    """
    backend_class = get_backend_class(backend)
    path = backend_class.export(spectra, destination, **options)
    logging.info(f"Exported {len(spectra)} spectra with {backend_class.__name__} to {path}")
    return path
