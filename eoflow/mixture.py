"""
Ideal-gas mixture closure over Shomate species.

Mixture properties are mole-fraction weighted sums of pure-species values;
zero-fraction components are skipped.  Entropy adds the ideal mixing term
and the pressure correction against the reference pressure.
"""

from __future__ import annotations

import math
from typing import List, Optional, Sequence, Tuple

from .errors import InvalidCompositionSchema
from .temperature_solver import T_SCAN_MAX, T_SCAN_MIN, solve_temperature
from .thermo_engine import DEFAULT_CONSTANTS, PropertyEngine, Species, ThermoConstants
from .thermo_library import ThermoLibrary


class Mixture:
    """
    Ideal-gas mixture view: library + ordered species names + composition.

    The composition is used exactly as given.  Callers that produce
    compositions (the unknown packer) are responsible for normalisation.
    """

    def __init__(
        self,
        library: ThermoLibrary,
        species_names: Sequence[str],
        composition: Sequence[float],
        constants: ThermoConstants = DEFAULT_CONSTANTS,
        engine: Optional[PropertyEngine] = None,
    ) -> None:
        if len(composition) != len(species_names):
            raise InvalidCompositionSchema(
                f"composition has {len(composition)} entries for {len(species_names)} species"
            )
        self.library = library
        self.species_names = list(species_names)
        self.z = [float(v) for v in composition]
        self.constants = constants
        self.engine = engine or PropertyEngine(constants)
        self._species: List[Species] = [library.get(n) for n in self.species_names]

    def _active(self):
        for zi, sp in zip(self.z, self._species):
            if zi != 0.0:
                yield zi, sp

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    def molecular_weight(self) -> float:
        return sum(zi * sp.mw for zi, sp in self._active())

    def cp(self, T: float) -> float:
        return sum(zi * self.engine.cp(sp, T) for zi, sp in self._active())

    def cv(self, T: float) -> float:
        return self.cp(T) - self.constants.gas_constant

    def gamma(self, T: float) -> float:
        cp = self.cp(T)
        cv = cp - self.constants.gas_constant
        return cp / max(cv, 1e-12)

    def enthalpy(self, T: float, mode: str = "sensible") -> float:
        return sum(zi * self.engine.enthalpy(sp, T, mode) for zi, sp in self._active())

    def entropy(self, T: float, P: float) -> float:
        if not math.isfinite(P) or P <= 0:
            raise ValueError(f"Invalid pressure {P:.6g} Pa. Must be finite and > 0.")
        R = self.constants.gas_constant
        s = 0.0
        mixing = 0.0
        for zi, sp in self._active():
            s += zi * self.engine.entropy(sp, T)
            if zi > 0:
                mixing += zi * math.log(zi)
        return s - R * mixing - R * math.log(P / self.constants.reference_pressure)

    def properties(self, T: float, P: float, mode: str = "sensible") -> dict:
        return {
            "temperature": float(T),
            "pressure": float(P),
            "molecular_weight": self.molecular_weight(),
            "cp": self.cp(T),
            "cv": self.cv(T),
            "gamma": self.gamma(T),
            "enthalpy": self.enthalpy(T, mode),
            "entropy": self.entropy(T, P),
            "mode": mode,
        }

    # ------------------------------------------------------------------
    # Inverse temperature solves
    # ------------------------------------------------------------------

    def coverage(self) -> Tuple[float, float]:
        """Temperature window covered by every present species."""
        lo, hi = -math.inf, math.inf
        for _, sp in self._active():
            sp_lo, sp_hi = sp.coverage()
            lo = max(lo, sp_lo)
            hi = min(hi, sp_hi)
        return lo, hi

    def _scan_window(self, t_low: float, t_high: float) -> Tuple[float, float]:
        lo, hi = self.coverage()
        return max(t_low, lo), min(t_high, hi)

    def temperature_from_enthalpy(
        self,
        h_target: float,
        mode: str = "sensible",
        guess: Optional[float] = None,
        t_low: float = T_SCAN_MIN,
        t_high: float = T_SCAN_MAX,
    ) -> float:
        lo, hi = self._scan_window(t_low, t_high)
        return solve_temperature(
            lambda T: self.enthalpy(T, mode) - h_target,
            lo, hi, label="enthalpy", guess=guess,
        )

    def temperature_from_entropy(
        self,
        s_target: float,
        P: float,
        guess: Optional[float] = None,
        t_low: float = T_SCAN_MIN,
        t_high: float = T_SCAN_MAX,
    ) -> float:
        lo, hi = self._scan_window(t_low, t_high)
        return solve_temperature(
            lambda T: self.entropy(T, P) - s_target,
            lo, hi, label="entropy", guess=guess,
        )
