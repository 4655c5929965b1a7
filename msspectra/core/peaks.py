# msspectra/core/peaks.py

"""
Peak matrix helpers.

A peak matrix is a float64 numpy array of shape (n, 2): column 0 holds the
m/z values, column 1 the intensities. n may be 0.
"""

from typing import Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from ..exceptions import LengthMismatch, TypeMismatch

PeakMatrix = NDArray[np.float64]

MZ_COLUMN = 0
INTENSITY_COLUMN = 1


def empty_peaks() -> PeakMatrix:
    """Return a peak matrix without peaks."""
    return np.empty((0, 2), dtype=np.float64)


def as_peak_matrix(
    mz: Sequence[float], intensity: Optional[Sequence[float]] = None
) -> PeakMatrix:
    """
    Build a peak matrix from m/z and intensity values.

    Args:
        mz: m/z values, or an (n, 2) matrix when intensity is omitted
        intensity: Intensity values, same length as mz

    Returns:
        New C-contiguous float64 array of shape (n, 2)

    Raises:
        LengthMismatch: If mz and intensity differ in length
        TypeMismatch: If the input is not numeric or not two-column
    """
    if intensity is None:
        return np.array(validate_peak_matrix(mz), dtype=np.float64, copy=True)

    try:
        mz_arr = np.asarray(mz, dtype=np.float64).ravel()
        int_arr = np.asarray(intensity, dtype=np.float64).ravel()
    except (TypeError, ValueError) as e:
        raise TypeMismatch(f"Peak values must be numeric: {e}") from e

    if mz_arr.size != int_arr.size:
        raise LengthMismatch(
            f"m/z and intensity arrays differ in length ({mz_arr.size} != {int_arr.size})"
        )
    return np.column_stack([mz_arr, int_arr]) if mz_arr.size else empty_peaks()


def validate_peak_matrix(peaks, source: str = "peak matrix") -> PeakMatrix:
    """
    Check that peaks has the two-column (m/z, intensity) shape.

    Args:
        peaks: Candidate peak matrix
        source: Name used in error messages

    Returns:
        peaks as a float64 array

    Raises:
        TypeMismatch: If peaks is not an (n, 2) numeric array
    """
    try:
        arr = np.asarray(peaks, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise TypeMismatch(f"{source} must be numeric: {e}") from e

    if arr.ndim == 1 and arr.size == 0:
        return empty_peaks()
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise TypeMismatch(
            f"{source} must have shape (n, 2), got {arr.shape}"
        )
    return arr


def frozen_peaks(peaks) -> PeakMatrix:
    """Return a read-only copy of a peak matrix."""
    arr = np.array(validate_peak_matrix(peaks), dtype=np.float64, copy=True)
    arr.flags.writeable = False
    return arr
