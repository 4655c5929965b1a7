"""
msspectra - Backend-agnostic collections of mass spectra.

This package provides a Spectra collection that keeps metadata in memory and
reads peaks through pluggable storage backends (in memory, instrument files,
zarr peak stores), with lazily queued peak processing and reads dispatched in
parallel per storage location.
"""

# Suppress known warnings from dependencies before importing them
import warnings

# pyimzml warns about accession mismatches of non-conforming imzML files
warnings.filterwarnings("ignore", message=r"Accession .* found with incorrect name", category=UserWarning)

# Import backends to trigger registration
from . import backends  # noqa: F401
from .config import DispatchConfig
from .core.metadata import CORE_FIELDS, MISSING
from .core.registry import available_backends, get_backend_class, register_backend
from .exceptions import (
    IndexOutOfRange,
    LengthMismatch,
    SourceUnavailable,
    SpectraError,
    TypeMismatch,
    UnsupportedFormat,
    UnsupportedOperation,
)
from .processing.queue import ProcessingQueue, ProcessingStep
from .spectra import Spectra, combine, export

__version__ = "0.1.0"

# Expose main API
__all__ = [
    "__version__",
    "Spectra",
    "combine",
    "export",
    "DispatchConfig",
    "ProcessingStep",
    "ProcessingQueue",
    "CORE_FIELDS",
    "MISSING",
    "register_backend",
    "get_backend_class",
    "available_backends",
    "SpectraError",
    "IndexOutOfRange",
    "UnsupportedOperation",
    "UnsupportedFormat",
    "SourceUnavailable",
    "LengthMismatch",
    "TypeMismatch",
]
