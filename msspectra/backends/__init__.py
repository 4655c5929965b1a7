# msspectra/backends/__init__.py

"""
Storage backends for spectra collections.

Importing this package registers the built-in backends:

- "memory": MemoryBackend
- "raw_file": RawFileBackend
- "zarr_peaks": ZarrPeaksBackend
"""

from .memory_backend import MemoryBackend
from .options import ImzMLExportOptions, RawFileOptions, ZarrExportOptions, ZarrPeaksOptions
from .raw_file_backend import RawFileBackend
from .zarr_peaks_backend import ZarrPeaksBackend, ZarrPeakStore

__all__ = [
    "MemoryBackend",
    "RawFileBackend",
    "ZarrPeaksBackend",
    "ZarrPeakStore",
    "RawFileOptions",
    "ZarrPeaksOptions",
    "ZarrExportOptions",
    "ImzMLExportOptions",
]
