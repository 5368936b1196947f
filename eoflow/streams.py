"""
Material streams: the shared mutable state of an equation-oriented solve.

Units are kmol/s for flow, K for temperature and Pa for pressure.  Each
field has an explicit known flag; anything not flagged known is solved for.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple


@dataclass
class KnownFlags:
    """Fixed-shape known mask.  An empty composition list means all unknown."""

    flow: bool = False
    composition: List[bool] = field(default_factory=list)
    temperature: bool = False
    pressure: bool = False


@dataclass
class Stream:
    name: str
    species: Tuple[str, ...]
    flow: Optional[float] = None  # kmol/s
    composition: Optional[List[float]] = None  # mole fractions, species order
    temperature: Optional[float] = None  # K
    pressure: Optional[float] = None  # Pa
    known: KnownFlags = field(default_factory=KnownFlags)

    def __post_init__(self) -> None:
        self.species = tuple(self.species)
        if not self.known.composition:
            self.known.composition = [False] * len(self.species)

    @property
    def n_species(self) -> int:
        return len(self.species)

    def specify(
        self,
        flow: Optional[float] = None,
        composition: Optional[Sequence[float]] = None,
        temperature: Optional[float] = None,
        pressure: Optional[float] = None,
    ) -> "Stream":
        """Set values and mark them known (fixed during the solve)."""
        if flow is not None:
            self.flow = float(flow)
            self.known.flow = True
        if composition is not None:
            self.composition = [float(v) for v in composition]
            self.known.composition = [True] * len(self.composition)
        if temperature is not None:
            self.temperature = float(temperature)
            self.known.temperature = True
        if pressure is not None:
            self.pressure = float(pressure)
            self.known.pressure = True
        return self

    def guess(
        self,
        flow: Optional[float] = None,
        composition: Optional[Sequence[float]] = None,
        temperature: Optional[float] = None,
        pressure: Optional[float] = None,
    ) -> "Stream":
        """Set initial guesses without changing the known flags."""
        if flow is not None:
            self.flow = float(flow)
        if composition is not None:
            self.composition = [float(v) for v in composition]
        if temperature is not None:
            self.temperature = float(temperature)
        if pressure is not None:
            self.pressure = float(pressure)
        return self

    def component_flows(self) -> Optional[List[float]]:
        """Molar flow of each species (kmol/s), or None while flow or composition is unset."""
        if self.flow is None or self.composition is None:
            return None
        return [self.flow * y for y in self.composition]

    def copy(self) -> "Stream":
        return copy.deepcopy(self)
