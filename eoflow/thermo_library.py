"""
Species thermodynamic data registry.

Loads Shomate species records from JSON (validated through the pydantic
schemas), provides lookup by name, and can parse coefficient tables pasted
from the NIST Chemistry WebBook.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Dict, List, Optional, Union

from loguru import logger

from . import schemas
from .errors import SpeciesNotFound
from .thermo_engine import ShomateRange, Species

DEFAULT_LIBRARY_PATH = Path(__file__).parent / "data" / "species_shomate.json"

_COEFFICIENT_NAMES = ("A", "B", "C", "D", "E", "F", "G", "H")
_NUMBER = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")


class ThermoLibrary:
    """Name -> Species lookup table."""

    def __init__(self, species: Optional[List[Species]] = None) -> None:
        self._species: Dict[str, Species] = {}
        self.data_file: Optional[Path] = None
        for sp in species or []:
            self.add_species(sp)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, name: str) -> Species:
        try:
            return self._species[name]
        except KeyError:
            raise SpeciesNotFound(name, self._species.keys()) from None

    def has_species(self, name: str) -> bool:
        return name in self._species

    def list_species(self) -> List[str]:
        return sorted(self._species)

    def add_species(self, species: Species) -> None:
        if species.name in self._species:
            logger.debug("Replacing species '{}' in thermo library", species.name)
        self._species[species.name] = species

    def __contains__(self, name: str) -> bool:
        return self.has_species(name)

    def __len__(self) -> int:
        return len(self._species)

    # ------------------------------------------------------------------
    # Conversion helpers
    # ------------------------------------------------------------------

    @staticmethod
    def species_from_spec(spec: schemas.SpeciesSpec) -> Species:
        ranges = tuple(
            ShomateRange(
                t_min=r.t_min, t_max=r.t_max,
                A=r.A, B=r.B, C=r.C, D=r.D, E=r.E, F=r.F, G=r.G, H=r.H,
            )
            for r in spec.shomate_ranges
        )
        return Species(
            name=spec.name,
            mw=spec.mw,
            ranges=ranges,
            hf298=spec.hf298,
            formula=spec.formula,
            source=spec.source,
            notes=spec.notes,
        )

    @staticmethod
    def spec_from_species(species: Species) -> schemas.SpeciesSpec:
        return schemas.SpeciesSpec(
            name=species.name,
            mw=species.mw,
            hf298=species.hf298,
            formula=species.formula,
            source=species.source,
            notes=species.notes,
            shomate_ranges=[
                schemas.ShomateRangeSpec(
                    t_min=r.t_min, t_max=r.t_max,
                    A=r.A, B=r.B, C=r.C, D=r.D, E=r.E, F=r.F, G=r.G, H=r.H,
                )
                for r in species.ranges
            ],
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @classmethod
    def from_payload(cls, payload: schemas.SpeciesLibraryPayload) -> "ThermoLibrary":
        return cls([cls.species_from_spec(spec) for spec in payload.species])

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "ThermoLibrary":
        path = Path(path)
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        # Accept either {"species": [...]} or a bare list
        if isinstance(data, list):
            data = {"species": data}
        payload = schemas.SpeciesLibraryPayload.model_validate(data)
        lib = cls.from_payload(payload)
        lib.data_file = path
        logger.info("Loaded {} species from {}", len(lib), path)
        return lib

    @classmethod
    def default(cls) -> "ThermoLibrary":
        """Library bundled with the package (NIST Shomate data)."""
        return cls.from_json(DEFAULT_LIBRARY_PATH)

    def to_payload(self) -> schemas.SpeciesLibraryPayload:
        return schemas.SpeciesLibraryPayload(
            species=[self.spec_from_species(self._species[n]) for n in self.list_species()]
        )

    def to_json(self, path: Optional[Union[str, Path]] = None) -> Path:
        if path is None:
            if self.data_file is None:
                raise ValueError("No path given and library was not loaded from a file")
            path = self.data_file
        path = Path(path)
        path.write_text(self.to_payload().model_dump_json(indent=2), encoding="utf-8")
        logger.info("Saved {} species to {}", len(self), path)
        return path

    # ------------------------------------------------------------------
    # NIST WebBook text import
    # ------------------------------------------------------------------

    def add_species_from_nist_text(self, name: str, mw: float, text: str, **metadata) -> Species:
        species = parse_nist_shomate_text(name, mw, text, **metadata)
        self.add_species(species)
        return species


def parse_nist_shomate_text(
    name: str,
    mw: float,
    text: str,
    hf298: Optional[float] = None,
    formula: str = "",
    source: str = "NIST Shomate (user paste)",
    notes: str = "",
) -> Species:
    """
    Parse a Shomate coefficient table copied from the NIST Chemistry WebBook.

    Expected layout (tab or space separated, one or more ranges side by side)::

        Temperature (K)    298. - 1300.    1300. - 6000.
        A                  25.56759        35.15070
        ...
        H                  -110.5271       -110.5271
    """
    lines = [ln.strip() for ln in text.strip().splitlines() if ln.strip()]
    if len(lines) < 1 + len(_COEFFICIENT_NAMES):
        raise ValueError(
            f"Expected at least 9 lines (Temperature + 8 coefficients). Got {len(lines)}."
        )

    bounds = [float(v) for v in re.findall(r"\d+\.?\d*", lines[0])]
    n_ranges = len(bounds) // 2
    if n_ranges == 0:
        raise ValueError(f"No temperature ranges found in '{lines[0]}'")

    coeffs: Dict[str, List[float]] = {}
    for i, coeff in enumerate(_COEFFICIENT_NAMES):
        line = lines[i + 1]
        parts = line.split(None, 1)
        if parts[0] == coeff:
            line = parts[1] if len(parts) > 1 else ""
        values = [float(v) for v in _NUMBER.findall(line)]
        if len(values) < n_ranges:
            raise ValueError(
                f"Line {i + 2} ({coeff}): expected {n_ranges} values, got {len(values)}"
            )
        coeffs[coeff] = values[-n_ranges:]

    ranges = tuple(
        ShomateRange(
            t_min=bounds[2 * r],
            t_max=bounds[2 * r + 1],
            **{c: coeffs[c][r] for c in _COEFFICIENT_NAMES},
        )
        for r in range(n_ranges)
    )
    return Species(
        name=name, mw=mw, ranges=ranges, hf298=hf298,
        formula=formula, source=source, notes=notes,
    )
