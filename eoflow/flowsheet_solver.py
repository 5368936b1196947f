"""
Equation-oriented flowsheet solver.

All unit equations are solved simultaneously as one nonlinear system:
  1. Pack unknown stream fields into x (log flows, composition logits, T, P)
  2. Evaluate the global residual vector r(x)
  3. Build a forward finite-difference Jacobian
  4. Compute a Levenberg-Marquardt regularised Newton step
  5. Backtrack until the residual norm does not increase
  6. Repeat until ||r|| < tolerance or the iteration cap is reached
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
from loguru import logger

from .errors import (
    LineSearchFailure,
    NonFiniteInitialResidual,
    NonFiniteResidual,
    NonFiniteThermoEvaluation,
    TemperatureOutOfRange,
    UnbracketedRoot,
)
from .packing import COMPOSITION, UnknownPacker
from .residuals import ResidualAssembler
from .schemas import SolverConfig
from .streams import Stream
from .unit_operations import UnitOpBase

# Thermo failures at a trial point are treated like a non-finite residual.
_TRIAL_FAILURES = (TemperatureOutOfRange, UnbracketedRoot, NonFiniteThermoEvaluation)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass
class SolverResult:
    converged: bool
    status: str  # "converged" | "max-iterations"
    iterations: int
    residual_norm: float
    residual_history: List[float] = field(default_factory=list)
    step_history: List[float] = field(default_factory=list)
    alpha_history: List[float] = field(default_factory=list)
    log: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    n_unknowns: int = 0
    n_equations: int = 0


# ---------------------------------------------------------------------------
# Solver
# ---------------------------------------------------------------------------


class EquationOrientedSolver:
    """Damped Newton / Levenberg-Marquardt solver over a stream collection."""

    def __init__(
        self,
        streams: Sequence[Stream],
        units: Sequence[UnitOpBase],
        config: Optional[SolverConfig] = None,
    ) -> None:
        self.streams = list(streams)
        self.units = list(units)
        self.config = config or SolverConfig()
        self.packer = UnknownPacker(self.config)
        self.assembler = ResidualAssembler(self.units)
        self._log_lines: List[str] = []

    def _log(self, message: str) -> None:
        self._log_lines.append(message)
        logger.info(message)

    # ------------------------------------------------------------------
    # Residual evaluation
    # ------------------------------------------------------------------

    def _trial_residual(self, x: np.ndarray) -> Tuple[np.ndarray, bool]:
        self.packer.unpack(x, self.streams)
        try:
            return self.assembler.try_evaluate()
        except _TRIAL_FAILURES as exc:
            logger.debug("Trial point rejected: {}", exc)
            return np.zeros(0), False

    def _fd_jacobian(self, x: np.ndarray, r: np.ndarray) -> np.ndarray:
        """Forward-difference Jacobian; columns with non-finite perturbations are zeroed."""
        n, m = len(x), len(r)
        J = np.zeros((m, n))
        eps = self.config.fd_epsilon
        for k in range(n):
            h = eps * max(1.0, abs(x[k]))
            xk = x.copy()
            xk[k] += h
            rk, ok = self._trial_residual(xk)
            if not ok or rk.shape != r.shape:
                logger.debug("Jacobian column {} frozen (non-finite perturbation)", k)
                continue
            J[:, k] = (rk - r) / h
        self.packer.unpack(x, self.streams)
        return J

    def _solve_linear_lm(self, J: np.ndarray, r: np.ndarray) -> np.ndarray:
        """Solve (J^T J + lambda I) dx = -J^T r, escalating lambda on failure."""
        n = J.shape[1]
        JtJ = J.T @ J
        g = J.T @ r
        lam = self.config.lm_lambda_scale * max(1.0, float(np.trace(JtJ)) / n)
        eye = np.eye(n)
        for attempt in range(self.config.lm_max_attempts):
            try:
                dx = np.linalg.solve(JtJ + lam * eye, -g)
            except np.linalg.LinAlgError:
                dx = None
            if dx is not None and np.all(np.isfinite(dx)):
                return dx
            logger.debug("LM attempt {} failed with lambda={:.3e}", attempt + 1, lam)
            lam *= 10.0
        logger.warning("Regularised linear solve failed; taking a zero step")
        return np.zeros(n)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def solve(self) -> SolverResult:
        cfg = self.config
        self._log_lines = []
        warnings: List[str] = []

        x = self.packer.pack(self.streams)
        self.packer.unpack(x, self.streams)
        r, ok = self.assembler.try_evaluate()
        n, m = len(x), len(r)
        if not ok:
            bad = [i for i, v in enumerate(r) if not np.isfinite(v)]
            raise NonFiniteInitialResidual(n, m, bad)

        # Each unknown composition block carries one softmax gauge direction.
        n_gauge = sum(1 for e in self.packer.entries if e.kind == COMPOSITION and e.sub_index == 0)
        norm = float(np.linalg.norm(r))
        self._log(f"Unknowns: {n} ({n - n_gauge} independent)  Equations: {m}  |r0|={norm:.3e}")
        if m < n - n_gauge:
            msg = f"Under-specified system: {n - n_gauge} independent unknowns, {m} equations"
            logger.warning(msg)
            warnings.append(msg)

        res_hist: List[float] = []
        step_hist: List[float] = []
        alpha_hist: List[float] = []

        for it in range(1, cfg.max_iterations + 1):
            if not np.all(np.isfinite(r)):
                raise NonFiniteResidual(it, res_hist[-1] if res_hist else None)
            res_hist.append(norm)
            if norm < cfg.tolerance:
                self._log(f"Converged in {it - 1} iterations, |r| = {norm:.3e}")
                return self._result(True, "converged", it - 1, norm, res_hist, step_hist,
                                    alpha_hist, warnings, n, m)
            if n == 0:
                break

            J = self._fd_jacobian(x, r)
            dx = self._solve_linear_lm(J, r)

            alpha = cfg.damping
            backtracks = 0
            while True:
                x_trial = x + alpha * dx
                r_trial, ok = self._trial_residual(x_trial)
                if ok:
                    norm_trial = float(np.linalg.norm(r_trial))
                    if norm_trial <= norm:
                        break
                alpha *= 0.5
                backtracks += 1
                if backtracks > cfg.max_backtracks or alpha < cfg.min_step_scale:
                    self.packer.unpack(x, self.streams)
                    raise LineSearchFailure(it, norm, alpha, backtracks)

            step_norm = float(np.linalg.norm(alpha * dx))
            x, r, norm = x_trial, r_trial, norm_trial
            step_hist.append(step_norm)
            alpha_hist.append(alpha)
            self._log(
                f"iter {it}: |r|={norm:.3e} |dx|={step_norm:.3e} alpha={alpha:.3g} backtracks={backtracks}"
            )

        self.packer.unpack(x, self.streams)
        if norm < cfg.tolerance:
            self._log(f"Converged in {len(step_hist)} iterations, |r| = {norm:.3e}")
            return self._result(True, "converged", len(step_hist), norm, res_hist + [norm],
                                step_hist, alpha_hist, warnings, n, m)

        msg = f"Max iterations ({cfg.max_iterations}) reached, |r| = {norm:.3e}"
        logger.warning(msg)
        warnings.append(msg)
        self._log_lines.append(msg)
        return self._result(False, "max-iterations", len(step_hist), norm, res_hist + [norm],
                            step_hist, alpha_hist, warnings, n, m)

    def _result(self, converged, status, iterations, norm, res_hist, step_hist,
                alpha_hist, warnings, n, m) -> SolverResult:
        return SolverResult(
            converged=converged,
            status=status,
            iterations=iterations,
            residual_norm=norm,
            residual_history=list(res_hist),
            step_history=list(step_hist),
            alpha_history=list(alpha_hist),
            log=list(self._log_lines),
            warnings=list(warnings),
            n_unknowns=n,
            n_equations=m,
        )


def solve(
    streams: Sequence[Stream],
    units: Sequence[UnitOpBase],
    config: Optional[SolverConfig] = None,
) -> SolverResult:
    """Solve the flowsheet in place; streams hold the final iterate on return."""
    return EquationOrientedSolver(streams, units, config).solve()
