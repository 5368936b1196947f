"""
Flowsheet container: species list, streams and units.

Builds the solver inputs from a JSON payload, checks them before a solve and
converts results back into response models.
"""

from __future__ import annotations

import math
from typing import Dict, List, Optional, Sequence

from loguru import logger

from . import schemas
from .errors import InvalidCompositionSchema
from .flowsheet_solver import SolverResult, solve
from .packing import COMPOSITION, UnknownPacker
from .report import stream_table
from .residuals import ResidualAssembler
from .streams import KnownFlags, Stream
from .thermo_engine import DEFAULT_CONSTANTS, ThermoConstants
from .thermo_library import ThermoLibrary
from .unit_operations import UNIT_OP_REGISTRY, UnitOpBase


class Flowsheet:
    def __init__(
        self,
        species: Sequence[str],
        library: Optional[ThermoLibrary] = None,
        name: str = "flowsheet",
        constants: ThermoConstants = DEFAULT_CONSTANTS,
    ) -> None:
        self.name = name
        self.species = tuple(species)
        self.library = library
        self.constants = constants
        self.streams: List[Stream] = []
        self.units: List[UnitOpBase] = []
        self._by_name: Dict[str, Stream] = {}

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_stream(self, stream: Stream) -> Stream:
        if stream.name in self._by_name:
            raise ValueError(f"Duplicate stream name '{stream.name}'")
        self.streams.append(stream)
        self._by_name[stream.name] = stream
        return stream

    def new_stream(self, name: str) -> Stream:
        return self.add_stream(Stream(name, self.species))

    def add_unit(self, unit: UnitOpBase) -> UnitOpBase:
        if any(u.id == unit.id for u in self.units):
            raise ValueError(f"Duplicate unit id '{unit.id}'")
        self.units.append(unit)
        return unit

    def get_stream(self, name: str) -> Stream:
        try:
            return self._by_name[name]
        except KeyError:
            raise KeyError(f"Stream '{name}' not found in flowsheet '{self.name}'") from None

    @classmethod
    def from_payload(
        cls, payload: schemas.FlowsheetPayload, library: Optional[ThermoLibrary] = None
    ) -> "Flowsheet":
        fs = cls(payload.species, library=library, name=payload.name)
        fs.build_from_payload(payload)
        return fs

    def build_from_payload(self, payload: schemas.FlowsheetPayload) -> None:
        ns = len(self.species)
        for spec in payload.streams:
            composition = None
            if spec.composition is not None:
                unknown = [k for k in spec.composition if k not in self.species]
                if unknown:
                    raise InvalidCompositionSchema(
                        f"composition references species {unknown} not in flowsheet", spec.name
                    )
                composition = [float(spec.composition.get(sp, 0.0)) for sp in self.species]

            comp_flags = spec.known.composition
            if isinstance(comp_flags, bool):
                comp_flags = [comp_flags] * ns
            known = KnownFlags(
                flow=spec.known.flow,
                composition=list(comp_flags),
                temperature=spec.known.temperature,
                pressure=spec.known.pressure,
            )
            self.add_stream(Stream(
                name=spec.name,
                species=self.species,
                flow=spec.flow,
                composition=composition,
                temperature=spec.temperature,
                pressure=spec.pressure,
                known=known,
            ))

        for spec in payload.units:
            unit_cls = UNIT_OP_REGISTRY.get(spec.type)
            if unit_cls is None:
                raise ValueError(
                    f"Unknown unit type '{spec.type}' (available: {sorted(UNIT_OP_REGISTRY)})"
                )
            self.add_unit(unit_cls(
                spec.id,
                inlets=[self.get_stream(n) for n in spec.inlets],
                outlets=[self.get_stream(n) for n in spec.outlets],
                params=spec.parameters,
                library=self.library,
                constants=self.constants,
            ))
        logger.info(
            "Built flowsheet '{}': {} streams, {} units", self.name, len(self.streams), len(self.units)
        )

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Raise on malformed streams before any numeric work."""
        if not self.streams:
            raise ValueError(f"Flowsheet '{self.name}' has no streams")
        ns = len(self.species)
        for s in self.streams:
            if s.species != self.species:
                raise InvalidCompositionSchema(
                    f"stream species {list(s.species)} differ from flowsheet species {list(self.species)}",
                    s.name,
                )
            k = s.known
            for flag_name in ("flow", "temperature", "pressure"):
                if not isinstance(getattr(k, flag_name), bool):
                    raise InvalidCompositionSchema(f"known.{flag_name} must be a boolean", s.name)
            if (
                not isinstance(k.composition, (list, tuple))
                or len(k.composition) != ns
                or not all(isinstance(f, bool) for f in k.composition)
            ):
                raise InvalidCompositionSchema(
                    f"known.composition must be {ns} booleans, got {k.composition!r}", s.name
                )
            if s.composition is not None and len(s.composition) != ns:
                raise InvalidCompositionSchema(
                    f"composition has {len(s.composition)} entries for {ns} species", s.name
                )

            for field_name in ("flow", "temperature", "pressure"):
                if getattr(k, field_name):
                    value = getattr(s, field_name)
                    if value is None or not math.isfinite(value) or value <= 0:
                        raise ValueError(
                            f"Stream '{s.name}': known {field_name} must be finite and > 0, got {value}"
                        )
            if any(k.composition):
                if s.composition is None:
                    raise InvalidCompositionSchema("known composition has no values", s.name)
                for y, flag in zip(s.composition, k.composition):
                    if flag and (not math.isfinite(y) or y < 0):
                        raise ValueError(
                            f"Stream '{s.name}': known mole fractions must be finite and >= 0, got {y}"
                        )

    def count_unknowns(self, config: Optional[schemas.SolverConfig] = None) -> int:
        return len(UnknownPacker(config).pack(self.streams))

    def count_composition_blocks(self, config: Optional[schemas.SolverConfig] = None) -> int:
        packer = UnknownPacker(config)
        packer.pack(self.streams)
        return sum(1 for e in packer.entries if e.kind == COMPOSITION and e.sub_index == 0)

    def count_equations(self, config: Optional[schemas.SolverConfig] = None) -> int:
        # Units need values to evaluate; fill them on the live streams, then restore.
        saved = [s.copy() for s in self.streams]
        packer = UnknownPacker(config)
        try:
            packer.unpack(packer.pack(self.streams), self.streams)
            return sum(ResidualAssembler(self.units).equation_counts())
        finally:
            for s, old in zip(self.streams, saved):
                s.flow = old.flow
                s.composition = old.composition
                s.temperature = old.temperature
                s.pressure = old.pressure

    def check_dof(self, config: Optional[schemas.SolverConfig] = None) -> Dict[str, int]:
        """
        Compare unknown and equation counts without changing any stream value.

        Logits are invariant to a common shift, so every unknown composition
        block contributes one fewer independent unknown than its length.
        """
        n_unknowns = self.count_unknowns(config)
        n_independent = n_unknowns - self.count_composition_blocks(config)
        n_equations = self.count_equations(config)
        dof = n_independent - n_equations
        if dof > 0:
            logger.warning(
                "Flowsheet '{}' is under-specified: {} independent unknowns, {} equations",
                self.name, n_independent, n_equations,
            )
        elif dof < 0:
            logger.info(
                "Flowsheet '{}' has {} more equations than independent unknowns "
                "(redundant balances are solved in least-squares sense)",
                self.name, -dof,
            )
        return {
            "unknowns": n_unknowns,
            "independent_unknowns": n_independent,
            "equations": n_equations,
            "dof": dof,
        }

    # ------------------------------------------------------------------
    # Solve / report
    # ------------------------------------------------------------------

    def solve(self, config: Optional[schemas.SolverConfig] = None) -> SolverResult:
        self.validate()
        self.check_dof(config)
        return solve(self.streams, self.units, config)

    def stream_table(self) -> List[Dict]:
        return stream_table(self.streams, self.species)

    def to_response(self, result: SolverResult) -> schemas.SolveResponse:
        streams = [
            schemas.StreamResult(
                name=s.name,
                flow=s.flow,
                temperature=s.temperature,
                pressure=s.pressure,
                composition=dict(zip(s.species, s.composition or [])),
            )
            for s in self.streams
        ]
        return schemas.SolveResponse(
            flowsheet_name=self.name,
            status=result.status,
            converged=result.converged,
            iterations=result.iterations,
            residual_norm=result.residual_norm,
            streams=streams,
            warnings=result.warnings,
            log=result.log,
            diagnostics={
                "unknowns": result.n_unknowns,
                "equations": result.n_equations,
                "residual_history": result.residual_history,
                "step_history": result.step_history,
                "alpha_history": result.alpha_history,
            },
        )
