"""
Stream reporting.

``stream_table`` gives one row per stream (name, flow, T, P, mole fractions
and component flows).  ``export_stream_table_csv`` writes the same data in
workbook layout: columns = streams, rows = properties.
"""

from __future__ import annotations

import csv
import io
from typing import Dict, List, Optional, Sequence

from .streams import Stream


def stream_table(streams: Sequence[Stream], species: Optional[Sequence[str]] = None) -> List[Dict]:
    """Read-only tabular view over the current stream values."""
    rows: List[Dict] = []
    for s in streams:
        names = list(species) if species is not None else list(s.species)
        row: Dict = {
            "name": s.name,
            "flow": s.flow,
            "temperature": s.temperature,
            "pressure": s.pressure,
        }
        comp = dict(zip(s.species, s.composition or []))
        flows = dict(zip(s.species, s.component_flows() or []))
        for sp in names:
            row[f"y_{sp}"] = comp.get(sp)
            row[f"n_{sp}"] = flows.get(sp)
        rows.append(row)
    return rows


def export_stream_table_csv(streams: Sequence[Stream], species: Optional[Sequence[str]] = None) -> str:
    if not streams:
        return ""

    if species is None:
        species = []
        seen = set()
        for s in streams:
            for sp in s.species:
                if sp not in seen:
                    seen.add(sp)
                    species.append(sp)

    rows = stream_table(streams, species)
    output = io.StringIO()
    writer = csv.writer(output)

    writer.writerow(["Property", "Unit"] + [r["name"] for r in rows])
    _write_row(writer, "Molar Flow", "kmol/s", rows, lambda r: r["flow"])
    _write_row(writer, "Temperature", "K", rows, lambda r: r["temperature"])
    _write_row(writer, "Pressure", "Pa", rows, lambda r: r["pressure"], decimals=2)

    writer.writerow([])
    writer.writerow(["--- Composition (mole frac) ---"])
    for sp in species:
        _write_row(writer, sp, "mol frac", rows, lambda r, sp=sp: r[f"y_{sp}"])

    writer.writerow([])
    writer.writerow(["--- Component Flows ---"])
    for sp in species:
        _write_row(writer, sp, "kmol/s", rows, lambda r, sp=sp: r[f"n_{sp}"])

    return output.getvalue()


def _fmt(v, decimals: int = 6) -> str:
    if v is None:
        return ""
    if isinstance(v, float):
        return f"{v:.{decimals}f}"
    return str(v)


def _write_row(writer, label, unit, rows, getter, decimals: int = 6):
    writer.writerow([label, unit] + [_fmt(getter(r), decimals) for r in rows])
