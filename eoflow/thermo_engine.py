"""
Ideal-gas property engine based on NIST Shomate correlations.

Provides pure-species calculations on a kJ/kmol basis:
  - molar heat capacity cp  [kJ/(kmol·K)]
  - molar enthalpy h        [kJ/kmol]  (sensible, absolute or formation basis)
  - molar entropy s         [kJ/(kmol·K)] at the standard pressure

Each species carries an ordered list of temperature ranges; the first range
whose inclusive [t_min, t_max] interval contains T is used.  A temperature
outside every range is an error, never an extrapolation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from loguru import logger

from .errors import TemperatureOutOfRange


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

ENTHALPY_MODES = ("sensible", "absolute", "formation")


@dataclass(frozen=True)
class ThermoConstants:
    """Process-wide physical constants, injected into engines and mixtures."""

    gas_constant: float = 8.314462618  # kJ/(kmol·K)
    reference_temperature: float = 298.15  # K
    reference_pressure: float = 1.0e5  # Pa (1 bar)


DEFAULT_CONSTANTS = ThermoConstants()


@dataclass(frozen=True)
class ShomateRange:
    """One Shomate interval: cp = A + B t + C t² + D t³ + E/t², t = T/1000."""

    t_min: float  # K
    t_max: float  # K
    A: float
    B: float
    C: float
    D: float
    E: float
    F: float
    G: float
    H: float

    def contains(self, T: float) -> bool:
        return self.t_min <= T <= self.t_max


@dataclass(frozen=True)
class Species:
    """Immutable species record as stored in a ThermoLibrary."""

    name: str
    mw: float  # kg/kmol
    ranges: Tuple[ShomateRange, ...]
    hf298: Optional[float] = None  # kJ/kmol
    formula: str = ""
    source: str = ""
    notes: str = ""

    def coverage(self) -> Tuple[float, float]:
        """Union bounds (lowest t_min, highest t_max) of all ranges."""
        if not self.ranges:
            return (math.inf, -math.inf)
        return (
            min(r.t_min for r in self.ranges),
            max(r.t_max for r in self.ranges),
        )

    def select_range(self, T: float) -> ShomateRange:
        for rng in self.ranges:
            if rng.contains(T):
                return rng
        lo, hi = self.coverage()
        raise TemperatureOutOfRange(self.name, T, lo, hi)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _validate_temperature(T: float) -> float:
    T = float(T)
    if not math.isfinite(T) or T <= 0:
        raise ValueError(f"Invalid temperature {T:.6g} K. Must be finite and > 0.")
    return T


class PropertyEngine:
    """
    Pure-species Shomate property evaluation.

    Stateless apart from the injected constants, so a single instance can be
    shared by every mixture and unit operation.
    """

    def __init__(self, constants: ThermoConstants = DEFAULT_CONSTANTS) -> None:
        self.constants = constants

    def cp(self, species: Species, T: float) -> float:
        """Molar heat capacity [kJ/(kmol·K)] (1 J/(mol·K) == 1 kJ/(kmol·K))."""
        T = _validate_temperature(T)
        c = species.select_range(T)
        t = T / 1000.0
        return c.A + c.B * t + c.C * t**2 + c.D * t**3 + c.E / t**2

    def enthalpy(self, species: Species, T: float, mode: str = "sensible") -> float:
        """
        Molar enthalpy [kJ/kmol].

        ``absolute`` is the raw Shomate polynomial (including the F - H offset),
        ``sensible`` is absolute(T) - absolute(Tref), and ``formation`` adds the
        species' standard formation enthalpy to the sensible value.
        """
        T = _validate_temperature(T)
        mode = mode.lower()
        if mode == "absolute":
            c = species.select_range(T)
            t = T / 1000.0
            h_kj_mol = (
                c.A * t
                + c.B * t**2 / 2.0
                + c.C * t**3 / 3.0
                + c.D * t**4 / 4.0
                - c.E / t
                + c.F
                - c.H
            )
            return h_kj_mol * 1000.0

        if mode not in ENTHALPY_MODES:
            raise ValueError(
                f"Unknown enthalpy mode '{mode}'. Supported: {', '.join(ENTHALPY_MODES)}"
            )

        h_ref = self.enthalpy(species, self.constants.reference_temperature, "absolute")
        h = self.enthalpy(species, T, "absolute") - h_ref
        if mode == "formation" and species.hf298 is not None:
            h += species.hf298
        return h

    def entropy(self, species: Species, T: float) -> float:
        """Molar entropy [kJ/(kmol·K)] at the standard pressure, pure species."""
        T = _validate_temperature(T)
        c = species.select_range(T)
        t = T / 1000.0
        return (
            c.A * math.log(t)
            + c.B * t
            + c.C * t**2 / 2.0
            + c.D * t**3 / 3.0
            - c.E / (2.0 * t**2)
            + c.G
        )

    def properties(self, species: Species, T: float, mode: str = "sensible") -> dict:
        """cp, h and s for one species at T, as a dict for report layers."""
        props = {
            "species": species.name,
            "temperature": float(T),
            "cp": self.cp(species, T),
            "enthalpy": self.enthalpy(species, T, mode),
            "entropy": self.entropy(species, T),
            "mode": mode,
        }
        logger.debug("Species properties {}: {}", species.name, props)
        return props
