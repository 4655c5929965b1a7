# tests/unit/processing/test_peak_functions.py

"""
Tests for the built-in peak functions.
"""

import numpy as np
import pytest
from scipy.stats import median_abs_deviation

from msspectra.processing.peak_functions import (
    filter_intensity,
    filter_mz_range,
    filter_mz_values,
    match_mz,
    pick_peaks,
    replace_intensities_below,
    restrict_to_ms_levels,
    scale_peaks,
    smooth,
)


@pytest.fixture
def peaks():
    """Spectrum with five peaks."""
    return np.array([
        [10.0, 3.407],
        [20.0, 47.494],
        [30.0, 3.094],
        [40.0, 100.0],
        [50.0, 13.24],
    ])


@pytest.fixture
def profile():
    """Profile spectrum with two Gaussian peaks."""
    mz = np.linspace(100.0, 110.0, 201)
    intensity = 100.0 * np.exp(-((mz - 103.0) ** 2) / 0.02) + 50.0 * np.exp(-((mz - 107.0) ** 2) / 0.02)
    return np.column_stack([mz, intensity])


class TestIntensityFunctions:
    """Test intensity replacement and filtering."""

    def test_replace_intensities_below(self, peaks):
        result = replace_intensities_below(peaks, threshold=10, value=0)

        np.testing.assert_array_equal(result[:, 1], [0.0, 47.494, 0.0, 100.0, 13.24])
        np.testing.assert_array_equal(result[:, 0], peaks[:, 0])

    def test_replace_does_not_modify_input(self, peaks):
        replace_intensities_below(peaks, threshold=10)

        assert peaks[0, 1] == 3.407

    def test_replace_with_function_threshold(self, peaks):
        result = replace_intensities_below(peaks, threshold=np.median)

        np.testing.assert_array_equal(result[:, 1], [0.0, 47.494, 0.0, 100.0, 13.24])

    def test_filter_intensity_closed_range(self, peaks):
        result = filter_intensity(peaks, intensity=(13.24, 100.0))

        np.testing.assert_array_equal(result[:, 0], [20.0, 40.0, 50.0])

    def test_filter_intensity_with_function(self, peaks):
        result = filter_intensity(peaks, intensity=lambda x: x > 40)

        np.testing.assert_array_equal(result[:, 0], [20.0, 40.0])

    def test_scale_peaks(self, peaks):
        result = scale_peaks(peaks, by=np.max)

        assert result[3, 1] == 1.0

    def test_scale_empty_and_zero(self):
        assert scale_peaks(np.empty((0, 2))).shape == (0, 2)
        np.testing.assert_array_equal(scale_peaks(np.array([[1.0, 0.0]])), [[1.0, 0.0]])


class TestMzFunctions:
    """Test m/z based peak selection."""

    def test_filter_mz_range_inclusive(self, peaks):
        result = filter_mz_range(peaks, mz=(20.0, 40.0))

        np.testing.assert_array_equal(result[:, 0], [20.0, 30.0, 40.0])

    def test_filter_mz_range_remove(self, peaks):
        result = filter_mz_range(peaks, mz=(20.0, 40.0), keep=False)

        np.testing.assert_array_equal(result[:, 0], [10.0, 50.0])

    def test_match_mz_tolerance(self):
        values = np.array([100.0, 100.05, 200.0, 300.0])
        mask = match_mz(values, [300.0, 100.0], tolerance=0.1, ppm=0)

        np.testing.assert_array_equal(mask, [True, True, False, True])

    def test_match_mz_ppm(self):
        values = np.array([1000.0, 1000.019, 1000.03])
        mask = match_mz(values, [1000.0], tolerance=0, ppm=20)

        np.testing.assert_array_equal(mask, [True, True, False])

    def test_filter_mz_values(self, peaks):
        kept = filter_mz_values(peaks, mz=[20.0, 50.0], ppm=0)
        removed = filter_mz_values(peaks, mz=[20.0, 50.0], ppm=0, keep=False)

        np.testing.assert_array_equal(kept[:, 0], [20.0, 50.0])
        np.testing.assert_array_equal(removed[:, 0], [10.0, 30.0, 40.0])

    def test_filter_mz_values_without_targets(self, peaks):
        assert filter_mz_values(peaks, mz=[]).shape == (0, 2)


class TestProfileFunctions:
    """Test smoothing and peak picking."""

    def test_smooth_methods(self, profile):
        for method in ("SavitzkyGolay", "MovingAverage"):
            result = smooth(profile, half_window=2, method=method)

            assert result.shape == profile.shape
            np.testing.assert_array_equal(result[:, 0], profile[:, 0])

    def test_smooth_short_spectrum_unchanged(self):
        short = np.array([[1.0, 1.0], [2.0, 5.0]])

        np.testing.assert_array_equal(smooth(short, half_window=2), short)

    def test_smooth_invalid_method(self, profile):
        with pytest.raises(ValueError):
            smooth(profile, method="Gaussian")

    def test_pick_peaks_finds_maxima(self, profile):
        result = pick_peaks(profile, half_window=3)

        np.testing.assert_allclose(result[:, 0], [103.0, 107.0])
        np.testing.assert_allclose(result[:, 1], [100.0, 50.0])

    def test_pick_peaks_snr(self, profile):
        """A high signal-to-noise threshold keeps only the largest peak."""
        noise_free = pick_peaks(profile, half_window=3, snr=0)
        assert len(noise_free) == 2

        noise = median_abs_deviation(profile[:, 1], scale="normal")
        strict = pick_peaks(profile, half_window=3, snr=75.0 / noise)
        np.testing.assert_allclose(strict[:, 0], [103.0])


class TestRestrictToMsLevels:
    """Test MS level restriction of peak functions."""

    def test_applies_to_selected_level(self, peaks):
        result = restrict_to_ms_levels(
            peaks, filter_mz_range, ms_levels=(2,), ms_level=2, mz=(10.0, 20.0)
        )

        assert len(result) == 2

    def test_other_levels_unchanged(self, peaks):
        result = restrict_to_ms_levels(
            peaks, filter_mz_range, ms_levels=(2,), ms_level=1, mz=(10.0, 20.0)
        )

        assert result is peaks

    def test_function_passed_by_keyword(self, peaks):
        result = restrict_to_ms_levels(
            peaks, step_func=scale_peaks, ms_levels=[1, 2], ms_level=1, by=np.max
        )

        assert result[3, 1] == 1.0

    def test_unknown_level_unchanged(self, peaks):
        result = restrict_to_ms_levels(peaks, filter_mz_range, ms_levels=(2,), mz=(10.0, 20.0))

        assert result is peaks
