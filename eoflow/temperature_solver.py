"""
Inverse temperature solves: find T such that property(T) = target.

Two entry points:
  - ``bracketed_temperature``: uniform grid scan to discover a sign change,
    then Brent's method on that cell (guaranteed convergence).
  - ``solve_temperature``: optional local secant search from a caller
    supplied guess; the root is accepted only after it is re-validated
    against the residual function, otherwise the bracketed scan is used.
"""

from __future__ import annotations

import math
from typing import Callable, Optional

import numpy as np
from loguru import logger
from scipy.optimize import brentq, newton

from .errors import NonFiniteThermoEvaluation, UnbracketedRoot

T_SCAN_MIN = 150.0  # K
T_SCAN_MAX = 4000.0  # K
N_GRID = 50


def bracketed_temperature(
    f: Callable[[float], float],
    t_low: float = T_SCAN_MIN,
    t_high: float = T_SCAN_MAX,
    label: str = "temperature",
    n_points: int = N_GRID,
    xtol: float = 1e-10,
) -> float:
    """Grid scan for the first sign change of f on [t_low, t_high], then brentq."""
    if not t_low < t_high:
        raise UnbracketedRoot(label, t_low, t_high)

    grid = np.linspace(t_low, t_high, max(n_points, 2))
    vals = np.empty_like(grid)
    for i, T in enumerate(grid):
        v = float(f(float(T)))
        if not math.isfinite(v):
            raise NonFiniteThermoEvaluation(label, float(T), v)
        vals[i] = v

    sign_change = np.nonzero(vals[:-1] * vals[1:] <= 0.0)[0]
    if sign_change.size == 0:
        k = int(np.argmin(np.abs(vals)))
        raise UnbracketedRoot(label, t_low, t_high, float(grid[k]), float(vals[k]))

    idx = int(sign_change[0])
    a, b = float(grid[idx]), float(grid[idx + 1])
    if vals[idx] == 0.0:
        return a
    if vals[idx + 1] == 0.0:
        return b
    return float(brentq(f, a, b, xtol=xtol))


def solve_temperature(
    f: Callable[[float], float],
    t_low: float = T_SCAN_MIN,
    t_high: float = T_SCAN_MAX,
    label: str = "temperature",
    guess: Optional[float] = None,
    ftol: float = 1e-5,
    n_points: int = N_GRID,
) -> float:
    """
    Solve f(T) = 0, trying a local secant search from ``guess`` first.

    The local root must be finite, lie inside [t_low, t_high] and satisfy
    |f(T)| <= ftol; anything else falls back to ``bracketed_temperature``.
    """
    if guess is not None and math.isfinite(guess):
        x0 = min(max(float(guess), t_low), t_high)
        try:
            T = float(newton(f, x0, tol=1e-10, maxiter=50))
        except (RuntimeError, ArithmeticError, ValueError) as exc:
            logger.debug("Thermo solve ({}): local search from {:.2f} K failed ({})", label, x0, exc)
        else:
            if math.isfinite(T) and t_low <= T <= t_high:
                residual = f(T)
                if math.isfinite(residual) and abs(residual) <= ftol:
                    return T
            logger.debug(
                "Thermo solve ({}): rejected local root T={} from guess {:.2f} K, scanning",
                label, T, x0,
            )

    return bracketed_temperature(f, t_low, t_high, label=label, n_points=n_points)
