"""
Core building blocks of msspectra.

- BaseSpectraBackend: storage backend contract
- MetadataTable: per-spectrum metadata with core-field defaults
- Peak matrix helpers
- Backend registry
"""

from .base_backend import BaseSpectraBackend
from .metadata import CORE_FIELDS, MISSING, PEAK_FIELDS, MetadataTable
from .peaks import PeakMatrix, as_peak_matrix, empty_peaks, validate_peak_matrix
from .registry import available_backends, get_backend_class, register_backend

__all__ = [
    "BaseSpectraBackend",
    "MetadataTable",
    "CORE_FIELDS",
    "PEAK_FIELDS",
    "MISSING",
    "PeakMatrix",
    "as_peak_matrix",
    "empty_peaks",
    "validate_peak_matrix",
    "register_backend",
    "get_backend_class",
    "available_backends",
]
