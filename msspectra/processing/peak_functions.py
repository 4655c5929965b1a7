# msspectra/processing/peak_functions.py

"""
Pure functions over peak matrices.

Every function takes an (n, 2) float64 peak matrix as first argument, never
modifies it, and returns a peak matrix. They are meant to be queued as
processing steps but can be called directly on materialized peaks.
"""

from typing import Callable, Iterable, Optional, Tuple, Union

import numpy as np
from numpy.typing import NDArray
from scipy.ndimage import maximum_filter1d, uniform_filter1d
from scipy.signal import find_peaks, savgol_filter
from scipy.stats import median_abs_deviation

from ..config import (
    DEFAULT_HALF_WINDOW,
    DEFAULT_MZ_TOLERANCE,
    DEFAULT_POLYORDER,
    DEFAULT_PPM,
    DEFAULT_SNR,
)
from ..core.peaks import INTENSITY_COLUMN, MZ_COLUMN, PeakMatrix

SMOOTHING_METHODS = ("SavitzkyGolay", "MovingAverage")


def _keep(peaks: PeakMatrix, mask: NDArray[np.bool_]) -> PeakMatrix:
    return np.ascontiguousarray(peaks[mask])


def replace_intensities_below(
    peaks: PeakMatrix,
    threshold: Union[float, Callable[[NDArray[np.float64]], float]] = 0.0,
    value: float = 0.0,
) -> PeakMatrix:
    """
    Replace intensities strictly below a threshold.

    Args:
        peaks: Peak matrix
        threshold: Intensity threshold, or a function computing it from the
            spectrum's intensities (e.g. numpy.median)
        value: Replacement intensity

    Returns:
        New peak matrix with the same m/z values
    """
    result = np.array(peaks, dtype=np.float64, copy=True)
    if len(result) == 0:
        return result
    intensity = result[:, INTENSITY_COLUMN]
    limit = threshold(intensity) if callable(threshold) else threshold
    intensity[intensity < limit] = value
    return result


def filter_intensity(
    peaks: PeakMatrix,
    intensity: Union[Tuple[float, float], Callable[[NDArray[np.float64]], NDArray[np.bool_]]] = (0.0, np.inf),
) -> PeakMatrix:
    """
    Keep peaks whose intensity lies in the closed range [lo, hi].

    Args:
        peaks: Peak matrix
        intensity: (lo, hi) range, or a function returning a boolean mask
            over the intensities

    Returns:
        Peak matrix with the kept peaks; NaN intensities are removed
    """
    values = peaks[:, INTENSITY_COLUMN]
    if callable(intensity):
        mask = np.asarray(intensity(values), dtype=bool)
    else:
        lo, hi = intensity
        mask = (values >= lo) & (values <= hi)
    return _keep(peaks, mask)


def filter_mz_range(
    peaks: PeakMatrix,
    mz: Tuple[float, float] = (-np.inf, np.inf),
    keep: bool = True,
) -> PeakMatrix:
    """
    Keep (or remove) peaks whose m/z lies in the closed range [lo, hi].
    """
    lo, hi = mz
    values = peaks[:, MZ_COLUMN]
    mask = (values >= lo) & (values <= hi)
    return _keep(peaks, mask if keep else ~mask)


def match_mz(
    values: NDArray[np.float64],
    targets: Iterable[float],
    tolerance: float = DEFAULT_MZ_TOLERANCE,
    ppm: float = DEFAULT_PPM,
) -> NDArray[np.bool_]:
    """
    Boolean mask of values lying within tolerance + ppm of any target.

    The accepted deviation for a target t is ``tolerance + ppm * t / 1e6``.
    """
    targets = np.sort(np.asarray(list(targets), dtype=np.float64))
    if targets.size == 0 or values.size == 0:
        return np.zeros(values.shape, dtype=bool)

    # Nearest target on each side of every value
    pos = np.searchsorted(targets, values)
    left = targets[np.clip(pos - 1, 0, targets.size - 1)]
    right = targets[np.clip(pos, 0, targets.size - 1)]
    mask = np.zeros(values.shape, dtype=bool)
    for candidate in (left, right):
        allowed = tolerance + ppm * np.abs(candidate) / 1e6
        mask |= np.abs(values - candidate) <= allowed
    return mask


def filter_mz_values(
    peaks: PeakMatrix,
    mz: Iterable[float] = (),
    tolerance: float = DEFAULT_MZ_TOLERANCE,
    ppm: float = DEFAULT_PPM,
    keep: bool = True,
) -> PeakMatrix:
    """
    Keep (or remove) peaks matching any of the given m/z values.

    Args:
        peaks: Peak matrix
        mz: Target m/z values
        tolerance: Absolute tolerance in Da
        ppm: Relative tolerance in parts per million
        keep: Keep matching peaks when True, remove them when False
    """
    mask = match_mz(peaks[:, MZ_COLUMN], mz, tolerance, ppm)
    return _keep(peaks, mask if keep else ~mask)


def scale_peaks(
    peaks: PeakMatrix,
    by: Callable[[NDArray[np.float64]], float] = np.sum,
) -> PeakMatrix:
    """
    Divide intensities by by(intensities); spectra scaling to 0 are unchanged.
    """
    result = np.array(peaks, dtype=np.float64, copy=True)
    if len(result) == 0:
        return result
    divisor = by(result[:, INTENSITY_COLUMN])
    if divisor and np.isfinite(divisor):
        result[:, INTENSITY_COLUMN] /= divisor
    return result


def smooth(
    peaks: PeakMatrix,
    half_window: int = DEFAULT_HALF_WINDOW,
    method: str = "SavitzkyGolay",
    polyorder: int = DEFAULT_POLYORDER,
) -> PeakMatrix:
    """
    Smooth intensities over a window of 2 * half_window + 1 peaks.

    Args:
        peaks: Peak matrix, sorted by m/z
        half_window: Half window size in peaks
        method: "SavitzkyGolay" or "MovingAverage"
        polyorder: Polynomial order for Savitzky-Golay

    Returns:
        New peak matrix; spectra shorter than the window are returned unchanged

    Raises:
        ValueError: For an unknown method or a non-positive half window
    """
    if method not in SMOOTHING_METHODS:
        raise ValueError(f"Unknown smoothing method: {method}. Expected one of {SMOOTHING_METHODS}")
    if half_window < 1:
        raise ValueError("half_window must be at least 1")

    result = np.array(peaks, dtype=np.float64, copy=True)
    window = 2 * half_window + 1
    if len(result) < window:
        return result

    intensity = result[:, INTENSITY_COLUMN]
    if method == "SavitzkyGolay":
        smoothed = savgol_filter(intensity, window, min(polyorder, window - 1), mode="interp")
    else:
        smoothed = uniform_filter1d(intensity, size=window, mode="nearest")
    result[:, INTENSITY_COLUMN] = smoothed
    return result


def pick_peaks(
    peaks: PeakMatrix,
    half_window: int = DEFAULT_HALF_WINDOW,
    snr: float = DEFAULT_SNR,
) -> PeakMatrix:
    """
    Centroid a profile spectrum by local maxima detection.

    A peak is kept when it is the maximum within 2 * half_window + 1
    neighbours and its intensity exceeds snr times the noise, estimated as
    the normal-scaled median absolute deviation of all intensities.

    Returns:
        Peak matrix holding only the picked local maxima
    """
    if len(peaks) < 3:
        return np.array(peaks, dtype=np.float64, copy=True)

    intensity = peaks[:, INTENSITY_COLUMN]
    noise = median_abs_deviation(intensity, scale="normal")
    candidates, _ = find_peaks(intensity)

    window_max = maximum_filter1d(intensity, size=2 * half_window + 1, mode="nearest")
    is_max = intensity[candidates] >= window_max[candidates]
    above_noise = intensity[candidates] > snr * noise
    return np.ascontiguousarray(peaks[candidates[is_max & above_noise]])


def restrict_to_ms_levels(
    peaks: PeakMatrix,
    step_func: Callable[..., PeakMatrix],
    ms_levels: Iterable[int],
    ms_level: Optional[int] = None,
    **params,
) -> PeakMatrix:
    """
    Apply step_func only to spectra of the given MS levels.

    Meant to be queued with ``spectra_variables=("ms_level",)``; spectra of
    other or unknown MS levels pass through unchanged.
    """
    if ms_level is not None and int(ms_level) in set(int(m) for m in ms_levels):
        return step_func(peaks, **params)
    return peaks
