# msspectra/exceptions.py

"""
Error kinds raised by spectra collections and their storage backends.

Every error derives from SpectraError and from the closest builtin exception,
so callers can catch either the specific kind or the generic builtin.
"""

from typing import Any, Sequence


class SpectraError(Exception):
    """Base class for all msspectra errors."""


class IndexOutOfRange(SpectraError, IndexError):
    """An index is outside the valid range of a collection or backend."""


class UnsupportedOperation(SpectraError):
    """A write or processing request hit a read-only backend or field."""


class UnsupportedFormat(SpectraError):
    """The chosen backend cannot export to the requested format."""


class SourceUnavailable(SpectraError, OSError):
    """A backend could not open the storage it was asked to bind to."""


class LengthMismatch(SpectraError, ValueError):
    """An assigned value does not match the length of the collection."""


class TypeMismatch(SpectraError, TypeError):
    """A value cannot be coerced to the declared type of a field."""


def tag_partition(
    exc: BaseException, key: Any, positions: Sequence[int]
) -> BaseException:
    """
    Attach the failing partition to an exception raised by a worker.

    Args:
        exc: Exception raised while reading or processing a partition
        key: Partition key (backend part, data storage value)
        positions: Collection indices covered by the partition

    Returns:
        The same exception object, with ``partition_key`` and
        ``partition_range`` attributes set
    """
    exc.partition_key = key
    if len(positions):
        exc.partition_range = (int(min(positions)), int(max(positions)))
    else:
        exc.partition_range = None
    return exc
