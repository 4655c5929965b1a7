# msspectra/core/metadata.py

"""
Metadata table for spectra collections.

The table holds one row per spectrum, in collection order, and an open set of
named fields. A fixed set of core fields is always queryable: when a core
field was never stored, its accessor returns a column of the missing
sentinel (pandas.NA) with the field's declared dtype.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..exceptions import LengthMismatch, TypeMismatch, UnsupportedOperation

MISSING = pd.NA

# Core fields and their pandas nullable dtypes
CORE_FIELDS: Dict[str, str] = {
    "ms_level": "Int64",
    "rtime": "Float64",
    "acquisition_num": "Int64",
    "scan_index": "Int64",
    "data_origin": "string",
    "data_storage": "string",
    "centroided": "boolean",
    "smoothed": "boolean",
    "polarity": "Int64",
    "prec_scan_num": "Int64",
    "precursor_mz": "Float64",
    "precursor_intensity": "Float64",
    "precursor_charge": "Int64",
    "collision_energy": "Float64",
    "isolation_window_lower_mz": "Float64",
    "isolation_window_target_mz": "Float64",
    "isolation_window_upper_mz": "Float64",
}

# Names reserved for peak data; never stored as metadata
PEAK_FIELDS = ("mz", "intensity", "peaks")


def is_scalar_value(value: Any) -> bool:
    """True for values that are broadcast over all rows on assignment."""
    return value is None or value is pd.NA or np.isscalar(value)


def is_missing(value: Any) -> bool:
    """True when a single field value is the missing sentinel (or None/NaN)."""
    if isinstance(value, (list, tuple, np.ndarray)):
        return False
    return bool(pd.isna(value))


def coerce_field(name: str, values: Sequence[Any]) -> Union[pd.api.extensions.ExtensionArray, pd.Series]:
    """
    Coerce values to the storage type of a field.

    Core fields are converted to their nullable dtype; extra fields are kept
    as given.

    Raises:
        TypeMismatch: If values cannot be represented in a core field's dtype
    """
    if isinstance(values, np.ndarray) and values.ndim > 1:
        values = list(values)

    if name in CORE_FIELDS:
        dtype = CORE_FIELDS[name]
        try:
            return pd.array(values, dtype=dtype)
        except (TypeError, ValueError) as e:
            raise TypeMismatch(
                f"Values for '{name}' cannot be converted to {dtype}: {e}"
            ) from e

    if isinstance(values, pd.Series):
        return values.reset_index(drop=True)
    series = pd.Series(list(values)) if not isinstance(values, np.ndarray) else pd.Series(values)
    return series


def missing_column(name: str, n: int) -> pd.Series:
    """Column of n missing values for a field."""
    if name in CORE_FIELDS:
        return pd.Series(pd.array([MISSING] * n, dtype=CORE_FIELDS[name]), name=name)
    return pd.Series([MISSING] * n, dtype=object, name=name)


class MetadataTable:
    """
    Ordered per-spectrum metadata with core-field defaults.

    Row order is spectrum order. Field names are unique. Reserved peak names
    ("mz", "intensity", "peaks") cannot be stored.
    """

    def __init__(
        self,
        data: Optional[Union[pd.DataFrame, Dict[str, Sequence[Any]]]] = None,
        n_rows: Optional[int] = None,
    ):
        """
        Initialize a metadata table.

        Args:
            data: Initial fields as a DataFrame or a dict of columns
            n_rows: Number of rows when data is empty or omitted

        Raises:
            LengthMismatch: If data and n_rows disagree
            TypeMismatch: If a core field cannot be coerced
        """
        if data is None:
            frame = pd.DataFrame(index=pd.RangeIndex(n_rows or 0))
        elif isinstance(data, pd.DataFrame):
            frame = data.reset_index(drop=True)
        else:
            frame = pd.DataFrame({k: list(v) for k, v in data.items()})

        if len(frame.columns) == 0 and n_rows is not None and len(frame) == 0:
            frame = pd.DataFrame(index=pd.RangeIndex(n_rows))
        if n_rows is not None and len(frame) != n_rows:
            raise LengthMismatch(
                f"Metadata has {len(frame)} rows but {n_rows} spectra were given"
            )
        if frame.columns.duplicated().any():
            dupes = list(frame.columns[frame.columns.duplicated()])
            raise ValueError(f"Duplicated spectra variables: {dupes}")
        reserved = [c for c in frame.columns if c in PEAK_FIELDS]
        if reserved:
            raise UnsupportedOperation(
                f"Peak data cannot be stored as metadata: {reserved}"
            )

        frame = frame.copy()
        for col in frame.columns:
            if col in CORE_FIELDS:
                frame[col] = coerce_field(col, frame[col])
        self._data = frame

    @classmethod
    def _from_frame(cls, frame: pd.DataFrame) -> "MetadataTable":
        """Wrap an already validated frame without re-coercing it."""
        table = cls.__new__(cls)
        table._data = frame.reset_index(drop=True)
        return table

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, name: str) -> bool:
        return name in CORE_FIELDS or name in self._data.columns

    def __repr__(self) -> str:
        return f"MetadataTable(n_rows={len(self)}, fields={len(self.fields)})"

    @property
    def stored_fields(self) -> List[str]:
        """Fields that hold values in this table."""
        return list(self._data.columns)

    @property
    def fields(self) -> List[str]:
        """All queryable fields: core fields first, then extra fields."""
        extras = [c for c in self._data.columns if c not in CORE_FIELDS]
        return list(CORE_FIELDS) + extras

    def get(self, name: str) -> pd.Series:
        """
        Return the values of one field.

        Raises:
            KeyError: If name is neither stored nor a core field
        """
        if name in self._data.columns:
            return self._data[name].copy()
        if name in CORE_FIELDS:
            return missing_column(name, len(self))
        raise KeyError(f"Unknown spectra variable: '{name}'")

    def select(self, fields: Optional[Iterable[str]] = None) -> pd.DataFrame:
        """
        Project the table on fields; unknown fields are filled with MISSING.
        """
        names = self.fields if fields is None else list(fields)
        columns = {}
        for name in names:
            if name in self._data.columns:
                columns[name] = self._data[name].reset_index(drop=True)
            else:
                columns[name] = missing_column(name, len(self))
        return pd.DataFrame(columns, index=pd.RangeIndex(len(self)))

    def to_frame(self) -> pd.DataFrame:
        """All fields as a new DataFrame."""
        return self.select()

    def rows(self, fields: Sequence[str], positions: Sequence[int]) -> List[Dict[str, Any]]:
        """
        Per-row dicts of the given fields at positions, with None for missing.
        """
        frame = self.select(fields).iloc[np.asarray(positions, dtype=np.intp)]
        records = []
        for values in frame.itertuples(index=False, name=None):
            records.append(
                {f: (None if is_missing(v) else v) for f, v in zip(fields, values)}
            )
        return records

    def set(self, name: str, values: Any) -> None:
        """
        Replace all values of a field; scalars are broadcast.

        Raises:
            UnsupportedOperation: If name is a reserved peak field
            LengthMismatch: If values does not have one entry per row
            TypeMismatch: If a core field cannot be coerced
        """
        if name in PEAK_FIELDS:
            raise UnsupportedOperation(
                f"'{name}' is peak data and cannot be assigned as metadata"
            )
        n = len(self)
        if is_scalar_value(values):
            values = [values] * n
        elif len(values) != n:
            raise LengthMismatch(
                f"Length of values ({len(values)}) does not match the number of spectra ({n})"
            )
        self._data[name] = coerce_field(name, values)

    def set_at(self, name: str, positions: Sequence[int], values: Any) -> None:
        """Replace the values of a field at the given row positions."""
        if name in PEAK_FIELDS:
            raise UnsupportedOperation(
                f"'{name}' is peak data and cannot be assigned as metadata"
            )
        positions = np.asarray(positions, dtype=np.intp)
        if is_scalar_value(values):
            values = [values] * len(positions)
        elif len(values) != len(positions):
            raise LengthMismatch(
                f"Got {len(values)} values for {len(positions)} positions"
            )

        if name in CORE_FIELDS:
            column = self.get(name).array.copy()
            column[positions] = coerce_field(name, values)
            self._data[name] = column
            return

        if name in self._data.columns:
            column = self._data[name].to_numpy(dtype=object, copy=True)
        else:
            column = np.full(len(self), MISSING, dtype=object)
        for pos, value in zip(positions, values):
            column[pos] = value
        self._data[name] = pd.Series(column, dtype=object)

    def drop(self, names: Iterable[str]) -> None:
        """
        Remove stored fields. Dropping a core field resets it to MISSING.

        Raises:
            KeyError: If an extra field is not stored
        """
        for name in names:
            if name in self._data.columns:
                self._data = self._data.drop(columns=[name])
            elif name not in CORE_FIELDS:
                raise KeyError(f"Unknown spectra variable: '{name}'")

    def take(self, positions: Sequence[int]) -> "MetadataTable":
        """Row projection at positions; order and duplicates are kept."""
        positions = np.asarray(positions, dtype=np.intp)
        return MetadataTable._from_frame(self._data.iloc[positions].copy())

    def copy(self) -> "MetadataTable":
        return MetadataTable._from_frame(self._data.copy())

    @classmethod
    def concat(cls, tables: Sequence["MetadataTable"]) -> "MetadataTable":
        """
        Concatenate tables row-wise.

        The result's field set is the union of the inputs' fields (in order of
        first appearance). Rows of a table lacking a field are filled with
        MISSING explicitly.
        """
        tables = list(tables)
        if not tables:
            return cls(n_rows=0)

        union: List[str] = []
        for table in tables:
            for name in table.stored_fields:
                if name not in union:
                    union.append(name)

        n_total = sum(len(t) for t in tables)
        columns = {}
        for name in union:
            if name in CORE_FIELDS or all(name in t.stored_fields for t in tables):
                parts = [t.get(name) if name in t.stored_fields else missing_column(name, len(t))
                         for t in tables]
                columns[name] = pd.concat(parts, ignore_index=True)
            else:
                parts = [
                    t.get(name).to_numpy(dtype=object) if name in t.stored_fields
                    else np.full(len(t), MISSING, dtype=object)
                    for t in tables
                ]
                columns[name] = pd.Series(np.concatenate(parts), dtype=object)

        frame = pd.DataFrame(columns, index=pd.RangeIndex(n_total))
        return cls._from_frame(frame)
