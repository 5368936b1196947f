from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, model_validator


# ---------------------------------------------------------------------------
# Solver configuration
# ---------------------------------------------------------------------------


class SolverConfig(BaseModel):
    max_iterations: int = Field(default=60, ge=1)
    tolerance: float = Field(default=1e-9, gt=0)
    fd_epsilon: float = Field(default=1e-7, gt=0)
    damping: float = Field(default=1.0, gt=0, le=1.0)

    # Safety bounds applied on unpack
    flow_min: float = Field(default=1e-12, gt=0)
    flow_max: float = 1e8
    temperature_min: float = Field(default=1.0, gt=0)
    temperature_max: float = 5000.0
    pressure_min: float = Field(default=1.0, gt=0)
    pressure_max: float = 1e9

    # Line search / Levenberg-Marquardt
    max_backtracks: int = Field(default=30, ge=0)
    min_step_scale: float = Field(default=1e-10, gt=0)
    lm_lambda_scale: float = Field(default=1e-6, gt=0)
    lm_max_attempts: int = Field(default=12, ge=1)

    composition_floor: float = Field(default=1e-12, gt=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "SolverConfig":
        for lo, hi in (
            ("flow_min", "flow_max"),
            ("temperature_min", "temperature_max"),
            ("pressure_min", "pressure_max"),
        ):
            if getattr(self, lo) >= getattr(self, hi):
                raise ValueError(f"{lo} must be smaller than {hi}")
        return self


# ---------------------------------------------------------------------------
# Species library
# ---------------------------------------------------------------------------


class ShomateRangeSpec(BaseModel):
    t_min: float
    t_max: float
    A: float
    B: float
    C: float
    D: float
    E: float
    F: float
    G: float
    H: float

    @model_validator(mode="after")
    def _check_interval(self) -> "ShomateRangeSpec":
        if self.t_min >= self.t_max:
            raise ValueError(f"t_min ({self.t_min}) must be below t_max ({self.t_max})")
        return self


class SpeciesSpec(BaseModel):
    name: str
    mw: float = Field(gt=0)
    hf298: Optional[float] = None  # kJ/kmol
    formula: str = ""
    source: str = ""
    notes: str = ""
    shomate_ranges: List[ShomateRangeSpec] = Field(default_factory=list)


class SpeciesLibraryPayload(BaseModel):
    species: List[SpeciesSpec] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Flowsheet payload
# ---------------------------------------------------------------------------


class KnownFlagsSpec(BaseModel):
    flow: bool = False
    composition: Union[bool, List[bool]] = False
    temperature: bool = False
    pressure: bool = False


class StreamSpec(BaseModel):
    name: str
    flow: Optional[float] = None  # kmol/s
    composition: Optional[Dict[str, float]] = None
    temperature: Optional[float] = None  # K
    pressure: Optional[float] = None  # Pa
    known: KnownFlagsSpec = Field(default_factory=KnownFlagsSpec)


class UnitSpec(BaseModel):
    id: str
    type: str
    inlets: List[str] = Field(default_factory=list)
    outlets: List[str] = Field(default_factory=list)
    parameters: Dict[str, Any] = Field(default_factory=dict)


class FlowsheetPayload(BaseModel):
    name: str = Field(default="flowsheet")
    species: List[str]
    streams: List[StreamSpec]
    units: List[UnitSpec]
    config: SolverConfig = Field(default_factory=SolverConfig)


class StreamResult(BaseModel):
    name: str
    flow: Optional[float] = None
    temperature: Optional[float] = None
    pressure: Optional[float] = None
    composition: Dict[str, float] = Field(default_factory=dict)


class SolveResponse(BaseModel):
    flowsheet_name: str
    status: str
    converged: bool = False
    iterations: int = 0
    residual_norm: Optional[float] = None
    streams: List[StreamResult] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    log: List[str] = Field(default_factory=list)
    diagnostics: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Property queries
# ---------------------------------------------------------------------------


class SpeciesPropertyRequest(BaseModel):
    species: str
    temperature: float
    mode: str = "sensible"


class MixturePropertyRequest(BaseModel):
    species: List[str]
    composition: List[float]
    temperature: float
    pressure: float = 1.0e5
    mode: str = "sensible"


class TemperatureSolveRequest(BaseModel):
    species: List[str]
    composition: List[float]
    target: str = Field(default="enthalpy", pattern="^(enthalpy|entropy)$")
    value: float
    pressure: float = 1.0e5
    mode: str = "sensible"
    guess: Optional[float] = None


class PropertyResult(BaseModel):
    properties: Dict[str, Any]
    warnings: List[str] = Field(default_factory=list)
