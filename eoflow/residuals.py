"""Global residual vector assembly over all unit operations."""

from __future__ import annotations

from typing import List, Sequence, Tuple

import numpy as np

from .errors import NonFiniteResidual
from .unit_operations import UnitOpBase


class ResidualAssembler:
    """
    Concatenates unit residuals in unit order, preserving each unit's own
    equation order, so the Jacobian row layout is stable between calls.
    """

    def __init__(self, units: Sequence[UnitOpBase]) -> None:
        self.units = list(units)

    def _collect(self) -> np.ndarray:
        parts = [np.asarray(unit.equations(), dtype=float).ravel() for unit in self.units]
        if not parts:
            return np.zeros(0)
        return np.concatenate(parts)

    def try_evaluate(self) -> Tuple[np.ndarray, bool]:
        r = self._collect()
        return r, bool(np.all(np.isfinite(r)))

    def evaluate(self, iteration: int = 0) -> np.ndarray:
        r, ok = self.try_evaluate()
        if not ok:
            raise NonFiniteResidual(iteration)
        return r

    def equation_counts(self) -> List[int]:
        return [len(np.asarray(unit.equations(), dtype=float).ravel()) for unit in self.units]

    def labels(self) -> List[str]:
        labels: List[str] = []
        for unit in self.units:
            labels.extend(unit.equation_labels())
        return labels
