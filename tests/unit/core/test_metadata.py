# tests/unit/core/test_metadata.py

"""
Tests for the metadata table.
"""

import numpy as np
import pandas as pd
import pytest

from msspectra.core.metadata import CORE_FIELDS, MISSING, MetadataTable, is_missing
from msspectra.exceptions import LengthMismatch, TypeMismatch, UnsupportedOperation


@pytest.fixture
def table():
    """Three rows with two core fields and one extra field."""
    return MetadataTable({
        "ms_level": [1, 2, 2],
        "rtime": [1.5, 2.5, 3.5],
        "instrument": ["a", "b", "c"],
    })


class TestCoreFields:
    """Test core field defaults and coercion."""

    def test_unstored_core_field_is_missing(self, table):
        """Core fields never stored return a column of MISSING."""
        values = table.get("precursor_mz")

        assert len(values) == 3
        assert values.isna().all()
        assert str(values.dtype) == "Float64"

    def test_stored_core_field_is_coerced(self, table):
        """Core fields are stored with their nullable dtype."""
        assert str(table.get("ms_level").dtype) == "Int64"
        assert str(table.get("rtime").dtype) == "Float64"

    def test_fields_lists_core_then_extra(self, table):
        """Field listing starts with core fields and ends with extra fields."""
        fields = table.fields

        assert fields[:len(CORE_FIELDS)] == list(CORE_FIELDS)
        assert fields[-1] == "instrument"

    def test_unknown_field_raises(self, table):
        """Unknown non-core fields raise KeyError on direct access."""
        with pytest.raises(KeyError):
            table.get("no_such_field")

    def test_select_fills_unknown_fields(self, table):
        """Projection never fails and fills unknown fields with MISSING."""
        frame = table.select(["ms_level", "no_such_field"])

        assert list(frame.columns) == ["ms_level", "no_such_field"]
        assert frame["no_such_field"].isna().all()

    def test_bad_core_value_raises_type_mismatch(self, table):
        """Values that cannot be coerced to a core dtype are rejected."""
        with pytest.raises(TypeMismatch):
            table.set("ms_level", ["one", "two", "three"])

    def test_reserved_peak_names_rejected(self):
        """mz, intensity and peaks cannot be stored as metadata."""
        with pytest.raises(UnsupportedOperation):
            MetadataTable({"mz": [1.0]})


class TestAssignment:
    """Test field assignment."""

    def test_scalar_is_broadcast(self, table):
        table.set("polarity", 1)

        assert table.get("polarity").tolist() == [1, 1, 1]

    def test_length_mismatch(self, table):
        with pytest.raises(LengthMismatch):
            table.set("rtime", [1.0, 2.0])

    def test_set_at_positions(self, table):
        """Partial assignment only changes the given rows."""
        table.set_at("rtime", [0, 2], [10.0, 30.0])

        assert table.get("rtime").tolist() == [10.0, 2.5, 30.0]

    def test_set_at_new_extra_field(self, table):
        """Partial assignment of a new extra field fills other rows with MISSING."""
        table.set_at("score", [1], [0.9])

        values = table.get("score")
        assert is_missing(values[0])
        assert values[1] == 0.9
        assert is_missing(values[2])

    def test_drop_core_field_resets_to_missing(self, table):
        table.drop(["rtime"])

        assert table.get("rtime").isna().all()


class TestRowOperations:
    """Test take, rows and concatenation."""

    def test_take_keeps_order_and_duplicates(self, table):
        taken = table.take([2, 0, 2])

        assert len(taken) == 3
        assert taken.get("instrument").tolist() == ["c", "a", "c"]

    def test_take_does_not_alias(self, table):
        """Changing a projection leaves the source table unchanged."""
        taken = table.take([0, 1])
        taken.set("rtime", 0.0)

        assert table.get("rtime").tolist() == [1.5, 2.5, 3.5]

    def test_rows_convert_missing_to_none(self, table):
        rows = table.rows(["ms_level", "precursor_mz"], [1])

        assert rows == [{"ms_level": 2, "precursor_mz": None}]

    def test_concat_fills_missing_fields(self, table):
        """Rows of a table lacking a field hold MISSING for it."""
        other = MetadataTable({"ms_level": [1], "score": [0.5]})
        combined = MetadataTable.concat([table, other])

        assert len(combined) == 4
        assert combined.get("ms_level").tolist() == [1, 2, 2, 1]

        instrument = combined.get("instrument")
        assert instrument[:3].tolist() == ["a", "b", "c"]
        assert instrument[3] is MISSING

        score = combined.get("score")
        assert all(is_missing(v) for v in score[:3])
        assert score[3] == 0.5

    def test_concat_keeps_core_dtypes(self, table):
        other = MetadataTable({"rtime": [9.0]})
        combined = MetadataTable.concat([table, other])

        assert str(combined.get("rtime").dtype) == "Float64"
        assert pd.isna(combined.get("ms_level")[3])


class TestIsMissing:
    """Test the missing value check."""

    def test_scalars(self):
        assert is_missing(MISSING)
        assert is_missing(None)
        assert is_missing(np.nan)
        assert not is_missing(0)

    def test_arrays_are_never_missing(self):
        assert not is_missing(np.array([np.nan]))
        assert not is_missing([])
