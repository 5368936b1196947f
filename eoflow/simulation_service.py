from __future__ import annotations

from typing import Optional

from loguru import logger

from . import schemas
from .flowsheet import Flowsheet
from .mixture import Mixture
from .thermo_engine import PropertyEngine
from .thermo_library import ThermoLibrary


class SimulationService:
    def __init__(self, library: Optional[ThermoLibrary] = None) -> None:
        self._library = library or ThermoLibrary.default()
        self._engine = PropertyEngine()

    @property
    def library(self) -> ThermoLibrary:
        return self._library

    def solve(self, payload: schemas.FlowsheetPayload) -> schemas.SolveResponse:
        flowsheet = Flowsheet.from_payload(payload, library=self._library)
        result = flowsheet.solve(payload.config)
        logger.info(
            "Flowsheet '{}' finished: status={} iterations={} |r|={:.3e}",
            flowsheet.name, result.status, result.iterations, result.residual_norm,
        )
        return flowsheet.to_response(result)

    def species_properties(self, request: schemas.SpeciesPropertyRequest) -> schemas.PropertyResult:
        species = self._library.get(request.species)
        props = self._engine.properties(species, request.temperature, request.mode)
        return schemas.PropertyResult(properties=props)

    def mixture_properties(self, request: schemas.MixturePropertyRequest) -> schemas.PropertyResult:
        mix = Mixture(self._library, request.species, request.composition, engine=self._engine)
        warnings = []
        total = sum(request.composition)
        if abs(total - 1.0) > 1e-6:
            warnings.append(f"Composition sums to {total:.6f}, not 1")
        props = mix.properties(request.temperature, request.pressure, request.mode)
        return schemas.PropertyResult(properties=props, warnings=warnings)

    def solve_temperature(self, request: schemas.TemperatureSolveRequest) -> schemas.PropertyResult:
        mix = Mixture(self._library, request.species, request.composition, engine=self._engine)
        if request.target == "enthalpy":
            T = mix.temperature_from_enthalpy(request.value, mode=request.mode, guess=request.guess)
        else:
            T = mix.temperature_from_entropy(request.value, request.pressure, guess=request.guess)
        return schemas.PropertyResult(
            properties={"temperature": T, "target": request.target, "value": request.value}
        )
