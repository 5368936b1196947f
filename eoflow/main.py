from __future__ import annotations

from fastapi import FastAPI, HTTPException

from . import schemas
from .errors import EOFlowError
from .simulation_service import SimulationService

app = FastAPI(title="eoflow Flowsheet Solver API", version="0.1.0")
service = SimulationService()


@app.get("/healthz")
def healthcheck() -> dict[str, str]:
    return {"status": "ok", "species": str(len(service.library))}


@app.post("/solve", response_model=schemas.SolveResponse)
def solve_flowsheet(payload: schemas.FlowsheetPayload) -> schemas.SolveResponse:
    try:
        return service.solve(payload)
    except (EOFlowError, ValueError, KeyError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except Exception as exc:  # pragma: no cover - surfaced as server error
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@app.post("/properties/species", response_model=schemas.PropertyResult)
def species_properties(request: schemas.SpeciesPropertyRequest) -> schemas.PropertyResult:
    try:
        return service.species_properties(request)
    except (EOFlowError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@app.post("/properties/mixture", response_model=schemas.PropertyResult)
def mixture_properties(request: schemas.MixturePropertyRequest) -> schemas.PropertyResult:
    try:
        return service.mixture_properties(request)
    except (EOFlowError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@app.post("/properties/temperature", response_model=schemas.PropertyResult)
def solve_temperature(request: schemas.TemperatureSolveRequest) -> schemas.PropertyResult:
    try:
        return service.solve_temperature(request)
    except (EOFlowError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
