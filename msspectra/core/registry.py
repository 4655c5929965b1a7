# msspectra/core/registry.py

"""
Registry of storage backends.

Backends register themselves under a short name so that collections can be
created or migrated with ``backend="zarr_peaks"`` as well as with the class.
"""

import logging
from typing import TYPE_CHECKING, Dict, Type, Union

if TYPE_CHECKING:
    from .base_backend import BaseSpectraBackend

_BACKENDS: Dict[str, Type["BaseSpectraBackend"]] = {}


def register_backend(name: str):
    """Decorator to register a backend class under a name."""
    def decorator(backend_class: Type["BaseSpectraBackend"]):
        _BACKENDS[name] = backend_class
        backend_class.backend_name = name
        logging.debug(f"Registered backend '{name}': {backend_class.__name__}")
        return backend_class
    return decorator


def get_backend_class(
    backend: Union[str, Type["BaseSpectraBackend"]]
) -> Type["BaseSpectraBackend"]:
    """
    Resolve a backend name or class to a backend class.

    Raises:
        ValueError: If the name is not registered
    """
    if isinstance(backend, str):
        if backend not in _BACKENDS:
            available = list(_BACKENDS.keys())
            raise ValueError(f"Unknown backend '{backend}'. Available: {available}")
        return _BACKENDS[backend]
    return backend


def available_backends() -> Dict[str, Type["BaseSpectraBackend"]]:
    """Return a copy of the registered backends."""
    return dict(_BACKENDS)
