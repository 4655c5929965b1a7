# tests/unit/test_combine.py

"""
Tests for combining collections and for parallel reads across parts.
"""

import numpy as np
import pandas as pd
import pytest

import msspectra
from msspectra import DispatchConfig, Spectra, combine
from msspectra.processing.peak_functions import scale_peaks


def make_spectra(n, offset=0.0, **extra):
    """In-memory collection of n single-peak spectra."""
    metadata = {"ms_level": [1] * n, "rtime": [offset + i for i in range(n)]}
    metadata.update(extra)
    peaks = [np.array([[100.0 + offset + i, 10.0 * (i + 1)]]) for i in range(n)]
    return Spectra.from_data(metadata, peaks)


class TestCombine:
    """Test concatenation of collections."""

    def test_lengths_add_up(self):
        a, b = make_spectra(3), make_spectra(2, offset=100.0)

        combined = combine(a, b)

        assert len(combined) == 5
        assert combined.rtime.tolist() == [0.0, 1.0, 2.0, 100.0, 101.0]

    def test_field_union_fills_missing(self):
        """Rows lacking a field hold MISSING for it."""
        a = make_spectra(3)
        b = make_spectra(1, offset=50.0, instrument=["Orbitrap"])

        combined = a.combine(b)

        assert "instrument" in combined.spectra_variables()
        values = combined["instrument"]
        assert values.iloc[:3].isna().all()
        assert values.iloc[3] == "Orbitrap"

    def test_combine_accepts_iterable(self):
        pieces = [make_spectra(1, offset=float(i)) for i in range(4)]

        assert len(msspectra.combine(pieces)) == 4

    def test_combine_requires_input(self):
        with pytest.raises(ValueError):
            combine()

    def test_peaks_follow_rows(self):
        combined = combine(make_spectra(2), make_spectra(2, offset=100.0))

        np.testing.assert_array_equal(
            [m[0] for m in combined.mz()], [100.0, 101.0, 200.0, 201.0]
        )

    def test_queues_apply_to_own_part(self):
        """Queued processing of an input only affects its own spectra."""
        a = make_spectra(2).add_processing(scale_peaks, by=np.max)
        b = make_spectra(2, offset=100.0)

        combined = combine(a, b)

        assert [i[0] for i in combined.intensity()] == [1.0, 1.0, 10.0, 20.0]
        with pytest.raises(ValueError):
            combined.processing_queue

    def test_processing_after_combine_applies_to_all(self):
        combined = combine(make_spectra(2), make_spectra(1)).scale_peaks(by=np.max)

        assert [i[0] for i in combined.intensity()] == [1.0, 1.0, 1.0]
        assert len(combined.processing_queue) == 1

    def test_subset_across_parts(self):
        combined = combine(make_spectra(3), make_spectra(3, offset=100.0))

        subset = combined[[5, 0, 3]]

        assert subset.rtime.tolist() == [102.0, 0.0, 100.0]
        np.testing.assert_array_equal([m[0] for m in subset.mz()], [202.0, 100.0, 200.0])
        assert len(subset.backends) == 2

    def test_reset_on_combined(self):
        a = make_spectra(2).add_processing(scale_peaks)
        combined = combine(a, make_spectra(1).add_processing(scale_peaks))

        combined.reset()

        assert all(len(q) == 0 for q in combined.processing_queues)
        assert [i[0] for i in combined.intensity()] == [10.0, 20.0, 10.0]

    def test_inputs_unchanged(self):
        a = make_spectra(2)
        combined = combine(a, make_spectra(1))

        combined.reset()
        combined["rtime"] = 5.0

        assert a.rtime.tolist() == [0.0, 1.0]


class TestParallelReads:
    """Test that dispatch modes give the serial result."""

    @pytest.fixture
    def multi_storage(self):
        """Twelve spectra spread over three storage locations, interleaved."""
        n = 12
        storages = [f"file{i % 3}" for i in range(n)]
        metadata = pd.DataFrame({
            "ms_level": [1 + i % 2 for i in range(n)],
            "data_storage": storages,
        })
        rng = np.random.default_rng(42)
        peaks = []
        for i in range(n):
            mz = np.sort(rng.uniform(100.0, 1000.0, size=i + 1))
            peaks.append(np.column_stack([mz, rng.uniform(0.0, 100.0, size=i + 1)]))
        return Spectra.from_data(metadata, peaks)

    @pytest.mark.parametrize("mode", ["threads", "dask"])
    def test_parallel_equals_serial(self, multi_storage, mode):
        processed = multi_storage.filter_intensity((20.0, 80.0)).scale_peaks(ms_level=2)
        serial = processed.with_dispatch(mode="serial").peaks_data()

        parallel = processed.with_dispatch(mode=mode, n_workers=3).peaks_data()

        assert len(parallel) == len(serial)
        for expected, actual in zip(serial, parallel):
            np.testing.assert_array_equal(actual, expected)

    def test_parallel_on_combined_subset(self, multi_storage):
        combined = combine(multi_storage, make_spectra(4))[::-1]
        serial = combined.with_dispatch(mode="serial").lengths()

        parallel = combined.with_dispatch(mode="threads", n_workers=4).lengths()

        np.testing.assert_array_equal(parallel, serial)
        assert serial.tolist() == [1, 1, 1, 1] + list(range(12, 0, -1))

    def test_with_dispatch_keeps_source(self, multi_storage):
        derived = multi_storage.with_dispatch(DispatchConfig(mode="serial"))

        assert derived.dispatch.mode == "serial"
        assert multi_storage.dispatch.mode == "threads"
