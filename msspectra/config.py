"""
Configuration constants for msspectra.

This module centralizes the configuration values and default settings used
throughout the codebase: parallel dispatch, the zarr peak store and the
defaults of the built-in peak processing functions.
"""

# Parallel dispatch settings
DEFAULT_PARALLEL_MODE = "threads"  # serial, threads or dask
PARALLEL_MODES = ("serial", "threads", "dask")
MAX_DISPATCH_WORKERS = 32  # Upper bound on worker threads per read
MIN_DISPATCH_WORKERS = 1

# Data storage keys
MEMORY_STORAGE_KEY = "<memory>"  # data_storage value of in-memory spectra
UNKNOWN_STORAGE_KEY = "<unknown>"  # Partition key for missing data_storage

# Zarr peak store settings
ZARR_CHUNK_SIZE = 10000  # Peaks per chunk of the flat mz/intensity arrays
ZARR_RESIZE_INCREMENT = 100000  # Headroom added when the store grows
ZARR_COMPRESSION = "zstd"
ZARR_COMPRESSION_LEVEL = 3
ZARR_METADATA_ATTR = "spectra_metadata"
ZARR_FORMAT_VERSION = 1

# Raw file backend settings
DEFAULT_RAW_CACHE_SIZE = 0  # Number of raw peak matrices kept per backend
RAW_FILE_EXTENSIONS = (".imzml", ".mzml", ".mzxml")

# Peak matching defaults
DEFAULT_MZ_TOLERANCE = 0.0  # Absolute tolerance in Da
DEFAULT_PPM = 20.0  # Relative tolerance in parts per million

# Peak picking / smoothing defaults
DEFAULT_HALF_WINDOW = 2
DEFAULT_SNR = 0.0
DEFAULT_POLYORDER = 2

# Configuration classes
from dataclasses import dataclass
from typing import Optional


@dataclass
class DispatchConfig:
    """Configuration for partitioned parallel reads"""
    mode: str = DEFAULT_PARALLEL_MODE
    n_workers: Optional[int] = None  # None = detect from physical cores
    show_progress: bool = False

    def __post_init__(self):
        """Validate configuration after initialization"""
        if self.mode not in PARALLEL_MODES:
            raise ValueError(
                f"Invalid parallel mode: {self.mode}. Expected one of {PARALLEL_MODES}"
            )
        if self.n_workers is not None and self.n_workers < MIN_DISPATCH_WORKERS:
            raise ValueError("n_workers must be at least 1")

    def get_summary(self) -> dict:
        """Get configuration summary for logging"""
        return {
            "mode": self.mode,
            "n_workers": self.n_workers if self.n_workers is not None else "auto",
            "show_progress": self.show_progress,
        }


@dataclass
class ZarrStorageConfig:
    """Configuration for zarr peak store settings."""
    chunk_size: int = ZARR_CHUNK_SIZE
    compression: Optional[str] = ZARR_COMPRESSION
    compression_level: int = ZARR_COMPRESSION_LEVEL
    resize_increment: int = ZARR_RESIZE_INCREMENT

    def __post_init__(self):
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.resize_increment <= 0:
            raise ValueError("resize_increment must be positive")
        if self.compression not in (None, "zstd", "gzip"):
            raise ValueError(f"Invalid compression: {self.compression}")
