"""
Unknown packing: stream fields <-> unconstrained numeric vector.

Transforms chosen so that any real vector maps to a physical stream state:
  - flow:         x = ln(flow), clamped to [ln flow_min, ln flow_max] on unpack
  - composition:  x = logits, softmax on unpack (always on the simplex)
  - T, P:         face value; every stream's T and P clamped to configured bounds on unpack

Ordering is positional and deterministic: stream order, then within a
stream flow, composition[0..ns-1], temperature, pressure.
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from .errors import InvalidCompositionSchema
from .schemas import SolverConfig
from .streams import Stream

FLOW = "flow"
COMPOSITION = "composition"
TEMPERATURE = "temperature"
PRESSURE = "pressure"

DEFAULT_FLOW_GUESS = 1.0
DEFAULT_TEMPERATURE_GUESS = 300.0
DEFAULT_PRESSURE_GUESS = 1.0e5


@dataclass(frozen=True)
class UnknownMapEntry:
    stream_index: int
    kind: str
    sub_index: Optional[int] = None


def softmax(a: Sequence[float]) -> np.ndarray:
    a = np.asarray(a, dtype=float)
    ea = np.exp(a - np.max(a))
    return ea / ea.sum()


def normalize_simplex(y: Sequence[float], floor: float = 1e-12) -> np.ndarray:
    y = np.maximum(np.asarray(y, dtype=float), floor)
    return y / y.sum()


def _is_unknown_flag(value) -> bool:
    # Only a genuine boolean True marks a field known; anything else is solved for.
    return not (isinstance(value, (bool, np.bool_)) and bool(value))


def _any_composition_unknown(flags, n_species: int) -> bool:
    if not isinstance(flags, (list, tuple, np.ndarray)) or len(flags) != n_species:
        return True
    if not all(isinstance(f, (bool, np.bool_)) for f in flags):
        return True
    return not all(flags)


def _safe_init(value: Optional[float], fallback: float) -> float:
    if value is None:
        return fallback
    value = float(value)
    return value if math.isfinite(value) else fallback


class UnknownPacker:
    """Builds the unknown map for one solve and converts between x and streams."""

    def __init__(self, config: Optional[SolverConfig] = None) -> None:
        self.config = config or SolverConfig()
        self.entries: List[UnknownMapEntry] = []
        self._z_min = math.log(self.config.flow_min)
        self._z_max = math.log(self.config.flow_max)

    def __len__(self) -> int:
        return len(self.entries)

    def counts(self) -> Dict[str, int]:
        counter = Counter(e.kind for e in self.entries)
        return {k: counter.get(k, 0) for k in (FLOW, COMPOSITION, TEMPERATURE, PRESSURE)}

    def _initial_composition(self, stream: Stream) -> np.ndarray:
        ns = stream.n_species
        y0 = stream.composition
        if y0 is None:
            return np.full(ns, 1.0 / ns)
        if len(y0) != ns:
            raise InvalidCompositionSchema(
                f"composition has {len(y0)} entries for {ns} species", stream.name
            )
        y0 = np.asarray(y0, dtype=float)
        if not np.all(np.isfinite(y0)) or y0.sum() <= 0:
            return np.full(ns, 1.0 / ns)
        return normalize_simplex(y0, self.config.composition_floor)

    def pack(self, streams: Sequence[Stream]) -> np.ndarray:
        """Rebuild the unknown map from the current known flags and return x."""
        floor = self.config.composition_floor
        x: List[float] = []
        entries: List[UnknownMapEntry] = []

        for si, s in enumerate(streams):
            known = s.known
            if _is_unknown_flag(getattr(known, "flow", None)):
                flow0 = _safe_init(s.flow, DEFAULT_FLOW_GUESS)
                x.append(math.log(max(flow0, self.config.flow_min)))
                entries.append(UnknownMapEntry(si, FLOW))

            if s.composition is not None and len(s.composition) != s.n_species:
                raise InvalidCompositionSchema(
                    f"composition has {len(s.composition)} entries for {s.n_species} species",
                    s.name,
                )
            if _any_composition_unknown(getattr(known, "composition", None), s.n_species):
                a0 = np.log(np.maximum(self._initial_composition(s), floor))
                for j in range(s.n_species):
                    x.append(float(a0[j]))
                    entries.append(UnknownMapEntry(si, COMPOSITION, j))

            if _is_unknown_flag(getattr(known, "temperature", None)):
                x.append(_safe_init(s.temperature, DEFAULT_TEMPERATURE_GUESS))
                entries.append(UnknownMapEntry(si, TEMPERATURE))

            if _is_unknown_flag(getattr(known, "pressure", None)):
                x.append(_safe_init(s.pressure, DEFAULT_PRESSURE_GUESS))
                entries.append(UnknownMapEntry(si, PRESSURE))

        self.entries = entries
        return np.asarray(x, dtype=float)

    def unpack(self, x: Sequence[float], streams: Sequence[Stream]) -> None:
        """Write x back into the streams through the inverse transforms."""
        cfg = self.config
        if len(x) != len(self.entries):
            raise ValueError(f"Unknown vector has {len(x)} entries, map has {len(self.entries)}")

        log_flows: Dict[int, float] = {}
        logits: Dict[int, np.ndarray] = {}
        for k, entry in enumerate(self.entries):
            s = streams[entry.stream_index]
            value = float(x[k])
            if entry.kind == FLOW:
                log_flows[entry.stream_index] = value
            elif entry.kind == COMPOSITION:
                a = logits.setdefault(entry.stream_index, np.zeros(s.n_species))
                a[entry.sub_index] = value
            elif entry.kind == TEMPERATURE:
                s.temperature = value
            elif entry.kind == PRESSURE:
                s.pressure = value

        for si, z in log_flows.items():
            streams[si].flow = math.exp(min(max(z, self._z_min), self._z_max))
        for si, a in logits.items():
            streams[si].composition = normalize_simplex(
                softmax(a), cfg.composition_floor
            ).tolist()

        # Physical bounds hold for every stream, known or solved.
        for s in streams:
            if s.temperature is not None:
                s.temperature = min(max(float(s.temperature), cfg.temperature_min), cfg.temperature_max)
            if s.pressure is not None:
                s.pressure = min(max(float(s.pressure), cfg.pressure_min), cfg.pressure_max)

    def describe(self, streams: Sequence[Stream]) -> List[str]:
        """Human-readable label per unknown, in x order."""
        labels = []
        for e in self.entries:
            s = streams[e.stream_index]
            if e.kind == COMPOSITION:
                labels.append(f"{s.name}.{e.kind}[{s.species[e.sub_index]}]")
            else:
                labels.append(f"{s.name}.{e.kind}")
        return labels
