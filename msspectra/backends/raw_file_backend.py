# msspectra/backends/raw_file_backend.py

"""
On-demand file-backed spectra backend.

Metadata is parsed once and held in memory; peaks are re-read from the
instrument file on every request. Supported files:

- imzML/ibd pairs (pyimzml)
- mzML and mzXML (pyteomics)

Each file is opened once and shared by every backend created from it
(subsets included). Reads of one file are serialized by a lock.
"""

import logging
import re
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from pyimzml.ImzMLParser import ImzMLParser
from pyimzml.ImzMLWriter import ImzMLWriter
from pyteomics import mzml, mzxml

from ..config import RAW_FILE_EXTENSIONS
from ..core.base_backend import BaseSpectraBackend
from ..core.metadata import MetadataTable, is_missing
from ..core.peaks import PeakMatrix, as_peak_matrix
from ..core.registry import register_backend
from ..exceptions import SourceUnavailable
from .options import ImzMLExportOptions, RawFileOptions

# Errors raised by the parsers for unreadable or malformed files
_PARSE_ERRORS = (OSError, ValueError, KeyError, SyntaxError)


def _extract_scan_number(native_id: str) -> Optional[int]:
    """Extract the scan number from a native ID such as 'controllerType=0 scan=123'."""
    if not native_id:
        return None
    for pattern in (r'scan=(\d+)', r'spectrum=(\d+)', r'index=(\d+)', r'^(\d+)$'):
        match = re.search(pattern, native_id)
        if match:
            return int(match.group(1))
    return None


def _seconds(value) -> Optional[float]:
    """Convert a pyteomics unit float to seconds."""
    if value is None:
        return None
    unit = getattr(value, 'unit_info', None)
    if unit in ('minute', 'min'):
        return float(value) * 60.0
    return float(value)


def _first(container, key: str) -> dict:
    """First element of a pyteomics list wrapper such as {'scan': [...]}."""
    items = (container or {}).get(key, [])
    if isinstance(items, list):
        return items[0] if items else {}
    return items or {}


def _parse_mzml_spectrum(spectrum: dict) -> Dict[str, Any]:
    """Map a pyteomics mzML spectrum dictionary onto core fields."""
    row: Dict[str, Any] = {
        'ms_level': int(spectrum.get('ms level', 1)),
        'acquisition_num': _extract_scan_number(spectrum.get('id', '')),
        'polarity': None,
        'centroided': None,
    }
    if spectrum.get('positive scan') is not None:
        row['polarity'] = 1
    elif spectrum.get('negative scan') is not None:
        row['polarity'] = 0
    if spectrum.get('centroid spectrum') is not None:
        row['centroided'] = True
    elif spectrum.get('profile spectrum') is not None:
        row['centroided'] = False

    scan = _first(spectrum.get('scanList'), 'scan')
    row['rtime'] = _seconds(scan.get('scan start time'))

    precursor = _first(spectrum.get('precursorList'), 'precursor')
    if precursor:
        row['prec_scan_num'] = _extract_scan_number(precursor.get('spectrumRef', ''))

        ion = _first(precursor.get('selectedIonList'), 'selectedIon')
        row['precursor_mz'] = ion.get('selected ion m/z')
        row['precursor_charge'] = ion.get('charge state')
        row['precursor_intensity'] = ion.get('peak intensity')

        window = precursor.get('isolationWindow', {})
        target = window.get('isolation window target m/z')
        if target is not None:
            row['isolation_window_target_mz'] = float(target)
            row['isolation_window_lower_mz'] = float(target) - float(
                window.get('isolation window lower offset', 0.0))
            row['isolation_window_upper_mz'] = float(target) + float(
                window.get('isolation window upper offset', 0.0))

        activation = precursor.get('activation', {})
        row['collision_energy'] = activation.get('collision energy')
    return row


def _parse_mzxml_spectrum(spectrum: dict) -> Dict[str, Any]:
    """Map a pyteomics mzXML scan dictionary onto core fields."""
    polarity = spectrum.get('polarity')
    centroided = spectrum.get('centroided')
    row: Dict[str, Any] = {
        'ms_level': int(spectrum.get('msLevel', 1)),
        'acquisition_num': int(spectrum['num']) if spectrum.get('num') else None,
        'rtime': _seconds(spectrum.get('retentionTime')),
        'polarity': {'+': 1, '-': 0}.get(polarity),
        'centroided': None if centroided is None else bool(int(centroided)),
        'collision_energy': spectrum.get('collisionEnergy'),
    }
    precursors = spectrum.get('precursorMz') or []
    if precursors:
        precursor = precursors[0]
        row['precursor_mz'] = precursor.get('precursorMz')
        row['precursor_charge'] = precursor.get('precursorCharge')
        row['precursor_intensity'] = precursor.get('precursorIntensity')
        row['prec_scan_num'] = precursor.get('precursorScanNum')
    return row


class _RawFileSource:
    """Shared, lock-protected reader for one instrument file."""

    def __init__(self, path: Path):
        self.path = path
        self.format = _detect_format(path)
        self._lock = threading.Lock()
        self._reader = None

    def _open(self):
        if self._reader is None:
            if self.format == 'imzml':
                self._reader = ImzMLParser(str(self.path))
            elif self.format == 'mzxml':
                self._reader = mzxml.MzXML(str(self.path))
            else:
                self._reader = mzml.MzML(str(self.path))
        return self._reader

    def read_metadata(self) -> pd.DataFrame:
        """Parse per-spectrum metadata without decoding peak arrays."""
        if self.format == 'imzml':
            with self._lock:
                coordinates = list(self._open().coordinates)
            n = len(coordinates)
            return pd.DataFrame({
                'ms_level': [1] * n,
                'scan_index': np.arange(1, n + 1),
                'x': [int(c[0]) for c in coordinates],
                'y': [int(c[1]) for c in coordinates],
                'z': [int(c[2]) if len(c) > 2 else 1 for c in coordinates],
            })

        if self.format == 'mzxml':
            with mzxml.MzXML(str(self.path), decode_binary=False) as reader:
                rows = [_parse_mzxml_spectrum(s) for s in reader]
        else:
            with mzml.MzML(str(self.path), decode_binary=False) as reader:
                rows = [_parse_mzml_spectrum(s) for s in reader]
        frame = pd.DataFrame(rows)
        frame['scan_index'] = np.arange(1, len(frame) + 1)
        return frame

    def read_peaks(self, positions: Sequence[int]) -> List[PeakMatrix]:
        """Read peak matrices at 0-based file positions."""
        with self._lock:
            reader = self._open()
            if self.format == 'imzml':
                return [as_peak_matrix(*reader.getspectrum(int(i))) for i in positions]
            result = []
            for i in positions:
                spectrum = reader.get_by_index(int(i))
                result.append(as_peak_matrix(
                    spectrum.get('m/z array', []), spectrum.get('intensity array', [])
                ))
            return result

    def close(self) -> None:
        with self._lock:
            if self._reader is None:
                return
            if self.format == 'imzml':
                self._reader.m.close()
            else:
                self._reader.close()
            self._reader = None


def _detect_format(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix not in RAW_FILE_EXTENSIONS:
        raise SourceUnavailable(
            f"Unsupported file type {suffix} for {path.name}. Expected: {list(RAW_FILE_EXTENSIONS)}"
        )
    return suffix.lstrip('.')


def _has_ibd_file(imzml_path: Path) -> bool:
    return any(
        p.suffix.lower() == '.ibd' and p.stem == imzml_path.stem
        for p in imzml_path.parent.iterdir()
    )


@register_backend("raw_file")
class RawFileBackend(BaseSpectraBackend):
    """
    Backend reading peaks on demand from instrument files.

    Peaks, data_storage and scan_index are read-only; the backend does not
    support write(). An optional bounded cache keeps recently read raw peak
    matrices; reset() clears it.
    """

    export_formats = ("imzml",)
    readonly_fields = frozenset({"peaks", "data_storage", "scan_index"})

    def __init__(
        self,
        metadata: MetadataTable,
        sources: Dict[str, _RawFileSource],
        cache_size: int = 0,
    ):
        super().__init__(metadata)
        self._sources = sources
        self._storage = metadata.get('data_storage').to_numpy(dtype=object)
        self._positions = metadata.get('scan_index').to_numpy(dtype=np.int64, na_value=0) - 1
        self._cache_size = cache_size
        self._cache: "OrderedDict[tuple, PeakMatrix]" = OrderedDict()
        self._cache_lock = threading.Lock()

    def peaks(self, indices: Sequence[int]) -> List[PeakMatrix]:
        indices = self._check_indices(indices)
        result: List[Optional[PeakMatrix]] = [None] * len(indices)

        wanted: Dict[str, List[int]] = {}
        for out_pos, i in enumerate(indices):
            key = (self._storage[i], int(self._positions[i]))
            cached = self._cache_get(key)
            if cached is not None:
                result[out_pos] = cached
            else:
                wanted.setdefault(self._storage[i], []).append(out_pos)

        for path, out_positions in wanted.items():
            file_positions = [int(self._positions[indices[p]]) for p in out_positions]
            matrices = self._sources[path].read_peaks(file_positions)
            for out_pos, file_pos, matrix in zip(out_positions, file_positions, matrices):
                result[out_pos] = matrix
                self._cache_put((path, file_pos), matrix)
        return result

    def _cache_get(self, key) -> Optional[PeakMatrix]:
        if not self._cache_size:
            return None
        with self._cache_lock:
            matrix = self._cache.get(key)
            if matrix is not None:
                self._cache.move_to_end(key)
            return matrix

    def _cache_put(self, key, matrix: PeakMatrix) -> None:
        if not self._cache_size:
            return
        with self._cache_lock:
            self._cache[key] = matrix
            self._cache.move_to_end(key)
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)

    def subset(self, indices: Sequence[int]) -> "RawFileBackend":
        indices = self._check_indices(indices)
        return RawFileBackend(self._metadata.take(indices), self._sources, self._cache_size)

    def reset(self) -> None:
        """Drop cached raw peak matrices."""
        with self._cache_lock:
            self._cache.clear()

    def close(self) -> None:
        """Close all files; backends sharing them reopen on the next read."""
        for source in self._sources.values():
            source.close()

    @classmethod
    def initialize(cls, source: Union[str, Path], **options) -> "RawFileBackend":
        """
        Bind a backend to an imzML, mzML or mzXML file.

        Raises:
            SourceUnavailable: If the file is missing, unsupported or unreadable
        """
        opts = RawFileOptions(**options)
        path = Path(source)
        if not path.exists():
            raise SourceUnavailable(f"File not found: {path}")

        raw_source = _RawFileSource(path)
        if raw_source.format == 'imzml' and not _has_ibd_file(path):
            raise SourceUnavailable(f"No .ibd file found for {path.name}")
        try:
            frame = raw_source.read_metadata()
        except _PARSE_ERRORS as e:
            raise SourceUnavailable(f"Cannot read {path}: {e}") from e

        frame['data_storage'] = str(path)
        frame['data_origin'] = str(path)
        backend = cls(MetadataTable(frame), {str(path): raw_source}, opts.cache_size)
        logging.info(f"Initialized raw file backend for {path.name} with {len(backend)} spectra")
        return backend

    @classmethod
    def _export(cls, spectra, destination: Path, fmt: str, **options) -> Path:
        """
        Write spectra as an imzML/ibd pair.

        Only pixel coordinates (fields x, y, z) and peaks are stored; spectra
        without coordinates are laid out along x.
        """
        opts = ImzMLExportOptions(**options)
        if destination.suffix.lower() != '.imzml':
            destination = destination.with_suffix('.imzML')
        if destination.exists() and not opts.overwrite:
            raise FileExistsError(f"Destination {destination} already exists.")

        coordinates = spectra.spectra_data().reindex(columns=['x', 'y', 'z'])
        peaks = spectra.peaks_data()
        empty = [i for i, p in enumerate(peaks) if len(p) == 0]
        if empty:
            raise ValueError(
                f"imzML cannot store empty spectra (positions {empty[:5]}); "
                f"use filter_empty_spectra() before exporting"
            )

        with ImzMLWriter(
            str(destination),
            mz_dtype=np.dtype(opts.mz_dtype).type,
            intensity_dtype=np.dtype(opts.intensity_dtype).type,
            mode=opts.mode,
            polarity=opts.polarity,
        ) as writer:
            for i, (row, matrix) in enumerate(zip(coordinates.itertuples(index=False), peaks)):
                coords = (
                    i + 1 if is_missing(row.x) else int(row.x),
                    1 if is_missing(row.y) else int(row.y),
                    1 if is_missing(row.z) else int(row.z),
                )
                writer.addSpectrum(matrix[:, 0], matrix[:, 1], coords)

        logging.info(f"Exported {len(peaks)} spectra to {destination}")
        return destination
