# msspectra/processing/queue.py

"""
Deferred peak processing.

A ProcessingStep binds a peak function to its parameters. A ProcessingQueue
is an immutable, ordered tuple of steps applied to every peak matrix each time
peak data is read.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..core.peaks import PeakMatrix, validate_peak_matrix


@dataclass(frozen=True)
class ProcessingStep:
    """
    A peak function with bound parameters.

    The function is called as ``func(peaks, **params, **variables)`` where
    ``variables`` holds the values of the requested spectra_variables for the
    spectrum being processed. It must return a new (n, 2) matrix.
    """
    func: Callable[..., PeakMatrix]
    params: Mapping[str, Any] = field(default_factory=dict)
    spectra_variables: Tuple[str, ...] = ()

    def __post_init__(self):
        if not callable(self.func):
            raise TypeError(f"Processing function must be callable, got {type(self.func).__name__}")
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))
        object.__setattr__(self, "spectra_variables", tuple(self.spectra_variables))

    @property
    def name(self) -> str:
        return getattr(self.func, "__name__", repr(self.func))

    def __call__(self, peaks: PeakMatrix, variables: Optional[Dict[str, Any]] = None) -> PeakMatrix:
        result = self.func(peaks, **self.params, **(variables or {}))
        return validate_peak_matrix(result, source=f"Result of processing step '{self.name}'")

    def describe(self) -> str:
        """Short human-readable description for the processing log."""
        args = ", ".join(f"{k}={v!r}" for k, v in self.params.items())
        return f"{self.name}({args})"


class ProcessingQueue:
    """Immutable ordered sequence of processing steps."""

    def __init__(self, steps: Sequence[ProcessingStep] = ()):
        self._steps: Tuple[ProcessingStep, ...] = tuple(steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[ProcessingStep]:
        return iter(self._steps)

    def __getitem__(self, i: int) -> ProcessingStep:
        return self._steps[i]

    def __eq__(self, other) -> bool:
        return isinstance(other, ProcessingQueue) and self._steps == other._steps

    def __repr__(self) -> str:
        return f"ProcessingQueue([{', '.join(s.describe() for s in self._steps)}])"

    def add(self, step: ProcessingStep) -> "ProcessingQueue":
        """Return a new queue with step appended."""
        return ProcessingQueue(self._steps + (step,))

    @property
    def spectra_variables(self) -> List[str]:
        """Union of the spectra variables requested by the steps, in step order."""
        names: List[str] = []
        for step in self._steps:
            for name in step.spectra_variables:
                if name not in names:
                    names.append(name)
        return names

    def apply(
        self,
        peaks: Sequence[PeakMatrix],
        variables: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> List[PeakMatrix]:
        """
        Run every step, in order, on each peak matrix.

        Args:
            peaks: Raw peak matrices
            variables: One dict of spectrum variable values per matrix, required
                when any step requests spectra_variables

        Returns:
            Processed peak matrices in input order
        """
        if not self._steps:
            return list(peaks)

        result = []
        for i, matrix in enumerate(peaks):
            row = variables[i] if variables is not None else {}
            for step in self._steps:
                step_vars = {name: row.get(name) for name in step.spectra_variables}
                matrix = step(matrix, step_vars)
            result.append(matrix)
        return result
