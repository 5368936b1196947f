"""
Exception taxonomy for the flowsheet solver and the thermodynamic engine.

Every exception carries the numeric context needed to diagnose the failure
as attributes, and repeats it in the message.
"""

from __future__ import annotations

from typing import Iterable, Optional


class EOFlowError(Exception):
    """Base class for all solver and thermo errors."""


# ---------------------------------------------------------------------------
# Thermodynamics
# ---------------------------------------------------------------------------


class SpeciesNotFound(EOFlowError, LookupError):
    def __init__(self, name: str, available: Iterable[str]) -> None:
        self.name = name
        self.available = sorted(available)
        super().__init__(
            f"Species '{name}' not found in thermo library. "
            f"Available: {', '.join(self.available) or '(none)'}"
        )

    def __str__(self) -> str:
        return self.args[0]


class TemperatureOutOfRange(EOFlowError, ValueError):
    def __init__(self, species: str, temperature: float, t_min: float, t_max: float) -> None:
        self.species = species
        self.temperature = temperature
        self.t_min = t_min
        self.t_max = t_max
        super().__init__(
            f"Species '{species}': T={temperature:.2f} K outside Shomate ranges "
            f"[{t_min:.2f}, {t_max:.2f}] K"
        )


class NonFiniteThermoEvaluation(EOFlowError, ArithmeticError):
    def __init__(self, label: str, temperature: float, value: float) -> None:
        self.label = label
        self.temperature = temperature
        self.value = value
        super().__init__(
            f"Thermo solve ({label}): non-finite function value {value} at T={temperature:.2f} K"
        )


class UnbracketedRoot(EOFlowError, ValueError):
    def __init__(
        self,
        label: str,
        t_low: float,
        t_high: float,
        closest_temperature: Optional[float] = None,
        closest_residual: Optional[float] = None,
    ) -> None:
        self.label = label
        self.t_low = t_low
        self.t_high = t_high
        self.closest_temperature = closest_temperature
        self.closest_residual = closest_residual
        if closest_temperature is None or closest_residual is None:
            msg = (
                f"Thermo solve ({label}): empty scan window [{t_low:.1f}, {t_high:.1f}] K "
                "(no temperature covered by every species)"
            )
        else:
            msg = (
                f"Thermo solve ({label}): could not bracket root in [{t_low:.1f}, {t_high:.1f}] K. "
                f"Closest residual {closest_residual:.3e} at {closest_temperature:.2f} K"
            )
        super().__init__(msg)


class InvalidCompositionSchema(EOFlowError, ValueError):
    def __init__(self, message: str, stream: Optional[str] = None) -> None:
        self.stream = stream
        prefix = f"Stream '{stream}': " if stream else ""
        super().__init__(prefix + message)


# ---------------------------------------------------------------------------
# Nonlinear solver
# ---------------------------------------------------------------------------


class NonFiniteInitialResidual(EOFlowError, ArithmeticError):
    def __init__(self, n_unknowns: int, n_equations: int, bad_indices: Iterable[int] = ()) -> None:
        self.n_unknowns = n_unknowns
        self.n_equations = n_equations
        self.bad_indices = list(bad_indices)
        super().__init__(
            "Initial residual returned NaN/Inf. Check initial guesses (flow, composition, T, P). "
            f"unknowns={n_unknowns}, equations={n_equations}, "
            f"non-finite equation indices={self.bad_indices}"
        )


class NonFiniteResidual(EOFlowError, ArithmeticError):
    def __init__(self, iteration: int, last_residual_norm: Optional[float] = None) -> None:
        self.iteration = iteration
        self.last_residual_norm = last_residual_norm
        msg = f"Residual became NaN/Inf at iteration {iteration}"
        if last_residual_norm is not None:
            msg += f" (last finite ||r||={last_residual_norm:.6e})"
        super().__init__(msg)


class LineSearchFailure(EOFlowError, ArithmeticError):
    def __init__(self, iteration: int, residual_norm: float, alpha: float, backtracks: int) -> None:
        self.iteration = iteration
        self.residual_norm = residual_norm
        self.alpha = alpha
        self.backtracks = backtracks
        super().__init__(
            f"Line search failed at iteration {iteration}: ||r||={residual_norm:.6e}, "
            f"alpha={alpha:.3e} after {backtracks} backtracks"
        )
