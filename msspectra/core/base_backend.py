# msspectra/core/base_backend.py
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, ClassVar, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from ..exceptions import (
    IndexOutOfRange,
    LengthMismatch,
    UnsupportedFormat,
    UnsupportedOperation,
)
from .metadata import MetadataTable
from .peaks import PeakMatrix, validate_peak_matrix


class BaseSpectraBackend(ABC):
    """
    Abstract base class for spectra storage backends.

    A backend stores per-spectrum metadata and peak matrices for a fixed number
    of spectra and answers reads by spectrum index. Collections only talk to
    backends through this interface.
    """

    backend_name: ClassVar[str] = "base"
    # Formats accepted by export(), lower case without the dot
    export_formats: ClassVar[Tuple[str, ...]] = ()
    # Fields that write() and field assignment must refuse
    readonly_fields: ClassVar[FrozenSet[str]] = frozenset()

    def __init__(self, metadata: Optional[MetadataTable] = None):
        """
        Initialize the backend with its in-memory metadata.

        Args:
            metadata: Per-spectrum metadata, one row per spectrum
        """
        self._metadata = metadata if metadata is not None else MetadataTable(n_rows=0)

    def __len__(self) -> int:
        return self.spectrum_count()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(n_spectra={self.spectrum_count()})"

    def spectrum_count(self) -> int:
        """Return the number of spectra held by the backend."""
        return len(self._metadata)

    def fields(self) -> List[str]:
        """Return the metadata fields available from this backend."""
        return self._metadata.fields

    def metadata(self, fields: Optional[Iterable[str]] = None) -> pd.DataFrame:
        """
        Return a projection of the backend's metadata.

        Unknown or unsupported fields are returned as columns of MISSING;
        this method never fails on field names.

        Args:
            fields: Field names to return (all fields when None)

        Returns:
            DataFrame with one row per spectrum
        """
        return self._metadata.select(fields)

    @abstractmethod
    def peaks(self, indices: Sequence[int]) -> List[PeakMatrix]:
        """
        Return the raw peak matrices of the given spectra.

        Args:
            indices: Spectrum indices, in the order the results are wanted

        Returns:
            One (n, 2) matrix per requested index

        Raises:
            IndexOutOfRange: If any index is >= spectrum_count()
        """
        pass

    @abstractmethod
    def subset(self, indices: Sequence[int]) -> "BaseSpectraBackend":
        """
        Return a backend scoped to the given indices (order and duplicates kept).

        Implementations remap indices without copying peak data unless the
        data lives in memory.
        """
        pass

    def copy(self) -> "BaseSpectraBackend":
        """Return a backend that can be written without affecting this one."""
        return self.subset(np.arange(self.spectrum_count()))

    def supports_write(self) -> bool:
        """Return True if write() can modify this backend."""
        return False

    def is_read_only(self, field: str) -> bool:
        """Return True if a field can never be modified through this backend."""
        return field in self.readonly_fields

    def write(self, indices: Sequence[int], values: Dict[str, Any]) -> None:
        """
        Overwrite metadata and/or peak data of the given spectra.

        Args:
            indices: Spectrum indices to overwrite
            values: Mapping of field name to one value per index; the key
                "peaks" carries a list of peak matrices

        Raises:
            UnsupportedOperation: If the backend or one of the fields is read-only
            IndexOutOfRange: If an index is out of range
            LengthMismatch: If a value list does not match indices
        """
        if not self.supports_write():
            raise UnsupportedOperation(f"{type(self).__name__} does not support writing")

        indices = self._check_indices(indices)
        for name, vals in values.items():
            if self.is_read_only(name):
                raise UnsupportedOperation(
                    f"Field '{name}' is read-only for {type(self).__name__}"
                )
            if len(vals) != len(indices):
                raise LengthMismatch(
                    f"Got {len(vals)} values for '{name}' but {len(indices)} indices"
                )

        if "peaks" in values:
            peaks = [validate_peak_matrix(p) for p in values["peaks"]]
            self._write_peaks(indices, peaks)
        for name, vals in values.items():
            if name != "peaks":
                self._metadata.set_at(name, indices, vals)

    def _write_peaks(self, indices: NDArray[np.intp], peaks: List[PeakMatrix]) -> None:
        """Store new peak matrices; writable backends override this."""
        raise UnsupportedOperation(f"{type(self).__name__} cannot write peak data")

    def reset(self) -> None:
        """
        Discard backend-level cached state.

        No-op for backends without an internal cache.
        """
        pass

    def close(self) -> None:
        """Release file handles held by the backend."""
        pass

    @classmethod
    @abstractmethod
    def initialize(cls, source: Any, **options) -> "BaseSpectraBackend":
        """
        Create a backend bound to external storage.

        Raises:
            SourceUnavailable: If the storage cannot be opened
        """
        pass

    @classmethod
    def from_data(
        cls, metadata: pd.DataFrame, peaks: List[PeakMatrix], **options
    ) -> "BaseSpectraBackend":
        """
        Create a backend pre-loaded with materialized metadata and peaks.

        Used when a collection migrates to this backend type.

        Raises:
            UnsupportedOperation: If the backend cannot be created from data
        """
        raise UnsupportedOperation(
            f"{cls.__name__} cannot be created from materialized data"
        )

    @classmethod
    def export(
        cls,
        spectra,
        destination: Union[str, Path],
        format: Optional[str] = None,
        **options,
    ) -> Path:
        """
        Write a collection to destination in one of this backend's formats.

        Fields the format cannot represent are dropped silently; compare
        spectra_variables() before and after a round trip to find them.

        Args:
            spectra: Collection to export (its metadata and processed peaks)
            destination: Output path
            format: Format name; inferred from the destination suffix if None
            **options: Format-specific options

        Returns:
            Path of the written output

        Raises:
            UnsupportedFormat: If this backend cannot write the format
        """
        destination = Path(destination)
        fmt = (format or destination.suffix.lstrip(".")).lower()
        if fmt not in cls.export_formats:
            raise UnsupportedFormat(
                f"{cls.__name__} cannot export to '{fmt or destination.name}'. "
                f"Supported: {list(cls.export_formats)}"
            )
        return cls._export(spectra, destination, fmt, **options)

    @classmethod
    def _export(cls, spectra, destination: Path, fmt: str, **options) -> Path:
        raise UnsupportedFormat(f"{cls.__name__} does not export data")

    def _check_indices(self, indices: Sequence[int]) -> NDArray[np.intp]:
        """Validate indices against the backend length."""
        indices = np.asarray(indices)
        if indices.size == 0:
            return np.empty(0, dtype=np.intp)
        if indices.dtype.kind not in "iu":
            raise TypeError(f"Spectrum indices must be integers, got {indices.dtype}")
        indices = indices.astype(np.intp, copy=False).ravel()
        n = self.spectrum_count()
        bad = indices[(indices < 0) | (indices >= n)]
        if bad.size:
            raise IndexOutOfRange(
                f"Index {int(bad[0])} out of range for {type(self).__name__} with {n} spectra"
            )
        return indices

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit with cleanup."""
        self.close()
