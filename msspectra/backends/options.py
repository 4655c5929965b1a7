from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config import (
    DEFAULT_RAW_CACHE_SIZE,
    ZARR_CHUNK_SIZE,
    ZARR_COMPRESSION,
    ZARR_COMPRESSION_LEVEL,
    ZARR_RESIZE_INCREMENT,
    ZarrStorageConfig,
)


class RawFileOptions(BaseModel):
    """Options for binding a RawFileBackend to instrument files"""
    model_config = ConfigDict(extra="forbid")

    cache_size: int = Field(default=DEFAULT_RAW_CACHE_SIZE, ge=0)  # 0 disables caching


class ZarrExportOptions(BaseModel):
    """Options for writing a zarr peak store"""
    model_config = ConfigDict(extra="forbid")

    overwrite: bool = False
    chunk_size: int = Field(default=ZARR_CHUNK_SIZE, gt=0)
    compression: Optional[Literal["zstd", "gzip"]] = ZARR_COMPRESSION
    compression_level: int = Field(default=ZARR_COMPRESSION_LEVEL, ge=0, le=22)
    resize_increment: int = Field(default=ZARR_RESIZE_INCREMENT, gt=0)

    def storage_config(self) -> ZarrStorageConfig:
        return ZarrStorageConfig(
            chunk_size=self.chunk_size,
            compression=self.compression,
            compression_level=self.compression_level,
            resize_increment=self.resize_increment,
        )


class ZarrPeaksOptions(ZarrExportOptions):
    """Options for creating a ZarrPeaksBackend; no path means a temporary store"""
    path: Optional[Path] = None


class ImzMLExportOptions(BaseModel):
    """Options for writing imzML/ibd file pairs"""
    model_config = ConfigDict(extra="forbid")

    mz_dtype: Literal["float32", "float64"] = "float64"
    intensity_dtype: Literal["float32", "float64"] = "float64"
    mode: Literal["auto", "continuous", "processed"] = "processed"
    polarity: Optional[Literal["positive", "negative"]] = None
    overwrite: bool = False
