"""
Equation-oriented unit operation models.

Each unit holds references to its inlet and outlet Streams and produces a
vector of residuals from their current values.  A residual is zero when the
unit's conservation and specification equations are satisfied.

Units: flow kmol/s, T K, P Pa, h kJ/kmol, duty/power kW.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from loguru import logger

from .mixture import Mixture
from .streams import Stream
from .thermo_engine import DEFAULT_CONSTANTS, PropertyEngine, ThermoConstants
from .thermo_library import ThermoLibrary


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------


class UnitOpBase(ABC):
    """Abstract base for all unit operations."""

    n_inlets: Optional[int] = None  # None = any number
    n_outlets: Optional[int] = None
    requires_thermo = False

    def __init__(
        self,
        id: str,
        inlets: Sequence[Stream] = (),
        outlets: Sequence[Stream] = (),
        params: Optional[Dict] = None,
        library: Optional[ThermoLibrary] = None,
        constants: ThermoConstants = DEFAULT_CONSTANTS,
    ) -> None:
        self.id = id
        self.inlets: List[Stream] = list(inlets)
        self.outlets: List[Stream] = list(outlets)
        self.params = dict(params or {})
        self.library = library
        self.constants = constants
        self.engine = PropertyEngine(constants)

        if self.n_inlets is not None and len(self.inlets) != self.n_inlets:
            raise ValueError(
                f"{type(self).__name__} '{id}' needs {self.n_inlets} inlet(s), got {len(self.inlets)}"
            )
        if self.n_outlets is not None and len(self.outlets) != self.n_outlets:
            raise ValueError(
                f"{type(self).__name__} '{id}' needs {self.n_outlets} outlet(s), got {len(self.outlets)}"
            )
        if self.requires_thermo and library is None:
            raise ValueError(f"{type(self).__name__} '{id}' requires a thermo library")
        self.validate_specs()

    @abstractmethod
    def equations(self) -> List[float]:
        """Residuals for the current stream state."""

    def validate_specs(self) -> None:
        """Check parameter consistency at construction time."""

    def equation_labels(self) -> List[str]:
        n = len(self.equations())
        return [f"{self.describe()} residual({i + 1})" for i in range(n)]

    def describe(self) -> str:
        ins = ", ".join(s.name for s in self.inlets)
        outs = ", ".join(s.name for s in self.outlets)
        return f"{type(self).__name__.replace('Op', '')} '{self.id}': {{{ins}}} -> {{{outs}}}"

    def stream_names(self) -> List[str]:
        return [s.name for s in self.inlets] + [s.name for s in self.outlets]

    def _get_param(self, key: str, default=None):
        value = self.params.get(key, default)
        return default if value is None else value

    def _mixture(self, composition: Sequence[float]) -> Mixture:
        return Mixture(
            self.library, self.inlets[0].species, composition,
            constants=self.constants, engine=self.engine,
        )

    @property
    def inlet(self) -> Stream:
        return self.inlets[0]

    @property
    def outlet(self) -> Stream:
        return self.outlets[0]


def _component_balances(inlet: Stream, outlet: Stream) -> List[float]:
    return [
        outlet.flow * y_out - inlet.flow * y_in
        for y_out, y_in in zip(outlet.composition, inlet.composition)
    ]


def _intensive_pass_through(inlet: Stream, outlet: Stream) -> List[float]:
    """y, T and P of the outlet equal the inlet's."""
    eqs = [y_out - y_in for y_out, y_in in zip(outlet.composition, inlet.composition)]
    eqs.append(outlet.temperature - inlet.temperature)
    eqs.append(outlet.pressure - inlet.pressure)
    return eqs


def _resolve_pressure(params: Dict, inlet_pressure: float, ratio_is_expansion: bool = False) -> float:
    """Outlet pressure from pressure_change / outlet_pressure / pressure_ratio, else pass-through."""
    if params.get("pressure_change") is not None:
        P = inlet_pressure + float(params["pressure_change"])
    elif params.get("outlet_pressure") is not None:
        P = float(params["outlet_pressure"])
    elif params.get("pressure_ratio") is not None:
        ratio = float(params["pressure_ratio"])
        P = inlet_pressure / ratio if ratio_is_expansion else inlet_pressure * ratio
    else:
        P = inlet_pressure
    return P


def _check_pressure_modes(unit: UnitOpBase, required: bool = False) -> None:
    modes = [k for k in ("pressure_change", "outlet_pressure", "pressure_ratio")
             if unit.params.get(k) is not None]
    if len(modes) > 1:
        raise ValueError(
            f"{type(unit).__name__} '{unit.id}': specify at most one pressure mode, got {modes}"
        )
    if required and not modes:
        raise ValueError(f"{type(unit).__name__} '{unit.id}': specify outlet_pressure or pressure_ratio")
    if unit.params.get("outlet_pressure") is not None and float(unit.params["outlet_pressure"]) <= 0:
        raise ValueError(f"{type(unit).__name__} '{unit.id}': outlet_pressure must be > 0 Pa")
    if unit.params.get("pressure_ratio") is not None and float(unit.params["pressure_ratio"]) <= 0:
        raise ValueError(f"{type(unit).__name__} '{unit.id}': pressure_ratio must be > 0")


# ---------------------------------------------------------------------------
# Mixer
# ---------------------------------------------------------------------------


class MixerOp(UnitOpBase):
    """
    Stream mixer.

    Equations (ns + 3):
      - total flow:  n_out - sum(n_in)
      - species:     n_out*y_out[j] - sum(n_in*y_in[j])
      - T_out - T_in[0], or with ``adiabatic`` the enthalpy balance
        sum(n_in*h_in) - n_out*h_out
      - P_out - P_in[0]
    """

    n_outlets = 1

    def validate_specs(self) -> None:
        if not self.inlets:
            raise ValueError(f"Mixer '{self.id}' has no inlet streams")
        if self._get_param("adiabatic", False) and self.library is None:
            raise ValueError(f"Mixer '{self.id}': adiabatic mode requires a thermo library")

    def equations(self) -> List[float]:
        out = self.outlet
        eqs = [out.flow - sum(s.flow for s in self.inlets)]

        for j in range(out.n_species):
            species_in = sum(s.flow * s.composition[j] for s in self.inlets)
            eqs.append(out.flow * out.composition[j] - species_in)

        if self._get_param("adiabatic", False):
            h_in = sum(
                s.flow * self._mixture(s.composition).enthalpy(s.temperature)
                for s in self.inlets
            )
            h_out = out.flow * self._mixture(out.composition).enthalpy(out.temperature)
            eqs.append(h_in - h_out)
        else:
            eqs.append(out.temperature - self.inlets[0].temperature)
        eqs.append(out.pressure - self.inlets[0].pressure)
        return eqs

    def equation_labels(self) -> List[str]:
        out = self.outlet
        labels = [f"Mixer '{self.id}': total flow"]
        labels += [f"Mixer '{self.id}': species {sp} balance" for sp in out.species]
        if self._get_param("adiabatic", False):
            labels.append(f"Mixer '{self.id}': enthalpy balance")
        else:
            labels.append(f"Mixer '{self.id}': T_out - T_in")
        labels.append(f"Mixer '{self.id}': P_out - P_in")
        return labels


# ---------------------------------------------------------------------------
# Splitter
# ---------------------------------------------------------------------------


class SplitterOp(UnitOpBase):
    """
    Stream splitter (composition, T and P copied to every outlet).

    ``fractions`` mode: n_k - f_k*n_in for every outlet.
    ``flows`` mode: n_k - q_k for every specified outlet flow plus the
    overall flow balance.  Defaults to equal fractions.
    """

    n_inlets = 1

    def validate_specs(self) -> None:
        if not self.outlets:
            raise ValueError(f"Splitter '{self.id}' has no outlet streams")
        fractions = self.params.get("fractions")
        flows = self.params.get("flows")
        if fractions is not None and flows is not None:
            raise ValueError(f"Splitter '{self.id}': specify fractions or flows, not both")
        if fractions is None and flows is None:
            self.params["fractions"] = [1.0 / len(self.outlets)] * len(self.outlets)
        spec = self.params.get("fractions") if flows is None else flows
        if len(spec) != len(self.outlets):
            raise ValueError(
                f"Splitter '{self.id}': {len(spec)} split values for {len(self.outlets)} outlets"
            )
        if flows is None and abs(sum(self.params["fractions"]) - 1.0) > 1e-6:
            logger.warning(
                "Splitter '{}' fractions sum to {:.6f}; flows will not balance",
                self.id, sum(self.params["fractions"]),
            )

    def equations(self) -> List[float]:
        inlet = self.inlet
        eqs: List[float] = []
        flows = self.params.get("flows")
        if flows is None:
            for out, f in zip(self.outlets, self.params["fractions"]):
                eqs.append(out.flow - float(f) * inlet.flow)
                eqs.extend(_intensive_pass_through(inlet, out))
        else:
            for out, q in zip(self.outlets, flows):
                if q is not None and not (isinstance(q, float) and math.isnan(q)):
                    eqs.append(out.flow - float(q))
                eqs.extend(_intensive_pass_through(inlet, out))
            eqs.append(sum(s.flow for s in self.outlets) - inlet.flow)
        return eqs


# ---------------------------------------------------------------------------
# Pass-through blocks
# ---------------------------------------------------------------------------


class LinkOp(UnitOpBase):
    """Identity connection: outlet equals inlet in every field."""

    n_inlets = 1
    n_outlets = 1

    def equations(self) -> List[float]:
        return [self.outlet.flow - self.inlet.flow] + _intensive_pass_through(self.inlet, self.outlet)


class RecycleOp(LinkOp):
    """Tear bookkeeping: the tear stream (outlet) matches the loop stream (inlet)."""

    def describe(self) -> str:
        return f"Recycle '{self.id}': {self.inlet.name} -> tear {self.outlet.name}"


class SourceOp(UnitOpBase):
    """
    Feed block.  Adds equations only for the specifications given:
    total_flow, component_flows (None = unspecified), composition,
    temperature, pressure.
    """

    n_inlets = 0
    n_outlets = 1

    def validate_specs(self) -> None:
        ns = self.outlet.n_species
        for key in ("component_flows", "composition"):
            values = self.params.get(key)
            if values is not None and len(values) != ns:
                raise ValueError(f"Source '{self.id}': {key} must have {ns} entries")

    def equations(self) -> List[float]:
        out = self.outlet
        eqs: List[float] = []
        component_flows = self.params.get("component_flows")
        if component_flows is not None:
            for j, q in enumerate(component_flows):
                if q is not None:
                    eqs.append(out.flow * out.composition[j] - float(q))
        if self.params.get("total_flow") is not None:
            eqs.append(out.flow - float(self.params["total_flow"]))
        composition = self.params.get("composition")
        if composition is not None:
            for j, y in enumerate(composition):
                if y is not None:
                    eqs.append(out.composition[j] - float(y))
        if self.params.get("temperature") is not None:
            eqs.append(out.temperature - float(self.params["temperature"]))
        if self.params.get("pressure") is not None:
            eqs.append(out.pressure - float(self.params["pressure"]))
        return eqs

    def describe(self) -> str:
        return f"Source '{self.id}': -> {self.outlet.name}"


class SinkOp(UnitOpBase):
    """Terminal block, contributes no residuals."""

    n_inlets = 1
    n_outlets = 0

    def equations(self) -> List[float]:
        return []

    def describe(self) -> str:
        return f"Sink '{self.id}': {self.inlet.name} ->"


class ConstraintOp(UnitOpBase):
    """Equality constraint on one stream field: value(field[index]) - target."""

    n_inlets = 1
    n_outlets = 0
    _FIELDS = ("flow", "temperature", "pressure", "composition")

    def validate_specs(self) -> None:
        field = self.params.get("field")
        if field not in self._FIELDS:
            raise ValueError(f"Constraint '{self.id}': field must be one of {self._FIELDS}")
        if field == "composition" and self.params.get("index") is None:
            raise ValueError(f"Constraint '{self.id}': composition constraint needs an index")
        if self.params.get("value") is None:
            raise ValueError(f"Constraint '{self.id}': value is required")

    def equations(self) -> List[float]:
        field = self.params["field"]
        v = getattr(self.inlet, field)
        if field == "composition":
            v = v[int(self.params["index"])]
        return [v - float(self.params["value"])]

    def describe(self) -> str:
        return f"Constraint '{self.id}': {self.inlet.name}.{self.params['field']} = {self.params['value']}"


# ---------------------------------------------------------------------------
# Heater
# ---------------------------------------------------------------------------


class HeaterOp(UnitOpBase):
    """
    Single-stream heater / cooler.

    Thermal mode (exactly one): ``outlet_temperature`` [K] or ``duty`` [kW]
    (duty > 0 adds heat).  Pressure mode (at most one): ``pressure_change``,
    ``outlet_pressure`` or ``pressure_ratio``; default pass-through.

    Equations (ns + 2): component pass-through, pressure, energy/temperature.
    """

    n_inlets = 1
    n_outlets = 1

    def validate_specs(self) -> None:
        thermal = [k for k in ("outlet_temperature", "duty") if self.params.get(k) is not None]
        if len(thermal) != 1:
            raise ValueError(
                f"Heater '{self.id}': specify exactly one thermal mode (outlet_temperature or duty)"
            )
        if self.params.get("duty") is not None and self.library is None:
            raise ValueError(f"Heater '{self.id}': duty mode requires a thermo library")
        _check_pressure_modes(self)

    def equations(self) -> List[float]:
        inlet, out = self.inlet, self.outlet
        eqs = _component_balances(inlet, out)
        eqs.append(out.pressure - _resolve_pressure(self.params, inlet.pressure))

        if self.params.get("outlet_temperature") is not None:
            eqs.append(out.temperature - float(self.params["outlet_temperature"]))
        else:
            eqs.append(float(self.params["duty"]) - self.duty())
        return eqs

    def duty(self) -> float:
        """Heat duty [kW] from current stream states."""
        mix = self._mixture(self.inlet.composition)
        h_in = mix.enthalpy(self.inlet.temperature)
        h_out = mix.enthalpy(self.outlet.temperature)
        return self.inlet.flow * (h_out - h_in)


# ---------------------------------------------------------------------------
# Compressor / Turbine
# ---------------------------------------------------------------------------


class CompressorOp(UnitOpBase):
    """
    Adiabatic compressor with isentropic efficiency.

    Parameters: ``outlet_pressure`` [Pa] or ``pressure_ratio`` (Pout/Pin),
    ``efficiency`` in (0, 1] (default 1.0).

    Equations (ns + 2): component pass-through, pressure, enthalpy balance
    h_out - (h_in + (h_2s - h_in)/eta), with T_2s from s(T_2s, P_out) = s_in.
    """

    n_inlets = 1
    n_outlets = 1
    requires_thermo = True
    _expansion = False

    def validate_specs(self) -> None:
        if self.params.get("pressure_change") is not None:
            raise ValueError(f"{type(self).__name__} '{self.id}': use outlet_pressure or pressure_ratio")
        _check_pressure_modes(self, required=True)
        eta = float(self._get_param("efficiency", 1.0))
        if not 0.0 < eta <= 1.0:
            raise ValueError(f"{type(self).__name__} '{self.id}': efficiency must be in (0, 1]")

    @property
    def efficiency(self) -> float:
        return float(self._get_param("efficiency", 1.0))

    def outlet_pressure_spec(self) -> float:
        return _resolve_pressure(self.params, self.inlet.pressure, ratio_is_expansion=self._expansion)

    def _isentropic_enthalpy(self, mix: Mixture, T1: float, P1: float, P2: float) -> float:
        s1 = mix.entropy(T1, P1)
        # Ideal-gas estimate with gamma ~ 1.4
        T2s_guess = T1 * (P2 / P1) ** 0.2857
        T2s = mix.temperature_from_entropy(s1, P2, guess=T2s_guess)
        return mix.enthalpy(T2s)

    def _actual_enthalpy(self, h1: float, h2s: float) -> float:
        return h1 + (h2s - h1) / self.efficiency

    def equations(self) -> List[float]:
        inlet, out = self.inlet, self.outlet
        eqs = _component_balances(inlet, out)

        P2 = self.outlet_pressure_spec()
        eqs.append(out.pressure - P2)

        mix = self._mixture(inlet.composition)
        h1 = mix.enthalpy(inlet.temperature)
        h2s = self._isentropic_enthalpy(mix, inlet.temperature, inlet.pressure, P2)
        h2_outlet = mix.enthalpy(out.temperature)
        eqs.append(h2_outlet - self._actual_enthalpy(h1, h2s))
        return eqs

    def equation_labels(self) -> List[str]:
        name = type(self).__name__.replace("Op", "")
        labels = [f"{name} '{self.id}': component {sp} flow" for sp in self.inlet.species]
        labels.append(f"{name} '{self.id}': pressure")
        labels.append(f"{name} '{self.id}': enthalpy balance")
        return labels

    def power(self) -> float:
        """Shaft power [kW] consumed (positive) from current stream states."""
        mix = self._mixture(self.inlet.composition)
        return self.inlet.flow * (mix.enthalpy(self.outlet.temperature) - mix.enthalpy(self.inlet.temperature))


class TurbineOp(CompressorOp):
    """
    Adiabatic turbine (expander).  ``pressure_ratio`` is Pin/Pout (> 1 for
    expansion); h_out = h_in - eta*(h_in - h_2s).
    """

    _expansion = True

    def _actual_enthalpy(self, h1: float, h2s: float) -> float:
        return h1 - self.efficiency * (h1 - h2s)

    def power(self) -> float:
        """Shaft power [kW] produced (positive) from current stream states."""
        return -super().power()


# ---------------------------------------------------------------------------
# Component separators
# ---------------------------------------------------------------------------


class SeparatorOp(UnitOpBase):
    """
    Component splitter: ``split_fractions`` gives, per species, the fraction
    of the inlet component flow sent to the first outlet; the rest leaves by
    the second.  Either a list in species order or a {species: fraction} dict
    (missing species go entirely to the second outlet).

    Equations (2*ns + 4): component splits for both outlets, T and P
    pass-through.
    """

    n_inlets = 1
    n_outlets = 2

    def validate_specs(self) -> None:
        phi = self.split_fractions()
        if any(not 0.0 <= f <= 1.0 for f in phi):
            raise ValueError(f"{type(self).__name__} '{self.id}': split fractions must be in [0, 1]")

    def split_fractions(self) -> List[float]:
        species = self.inlet.species
        raw = self.params.get("split_fractions")
        if raw is None:
            raise ValueError(f"Separator '{self.id}': split_fractions is required")
        if isinstance(raw, dict):
            unknown = [k for k in raw if k not in species]
            if unknown:
                raise ValueError(f"Separator '{self.id}': unknown species {unknown}")
            return [float(raw.get(sp, 0.0)) for sp in species]
        if len(raw) != len(species):
            raise ValueError(
                f"Separator '{self.id}': {len(raw)} split fractions for {len(species)} species"
            )
        return [float(f) for f in raw]

    def equations(self) -> List[float]:
        inlet = self.inlet
        out_a, out_b = self.outlets
        n_in = inlet.component_flows()
        n_a = out_a.component_flows()
        n_b = out_b.component_flows()
        eqs: List[float] = []
        for j, phi in enumerate(self.split_fractions()):
            eqs.append(n_a[j] - phi * n_in[j])
            eqs.append(n_b[j] - (1.0 - phi) * n_in[j])
        eqs.append(out_a.temperature - inlet.temperature)
        eqs.append(out_b.temperature - inlet.temperature)
        eqs.append(out_a.pressure - inlet.pressure)
        eqs.append(out_b.pressure - inlet.pressure)
        return eqs


class PurgeOp(SeparatorOp):
    """
    Fixed-fraction purge: ``recycle_fraction`` of every component goes to the
    first outlet (recycle), the remainder to the second (purge).
    """

    def split_fractions(self) -> List[float]:
        beta = self.params.get("recycle_fraction")
        if beta is None:
            raise ValueError(f"Purge '{self.id}': recycle_fraction is required")
        return [float(beta)] * self.inlet.n_species

    def describe(self) -> str:
        recycle, purge = self.outlets
        return (
            f"Purge '{self.id}': {self.inlet.name} -> recycle {recycle.name}, purge {purge.name} "
            f"(beta={float(self.params['recycle_fraction']):.3g})"
        )


# ---------------------------------------------------------------------------
# Heat exchanger
# ---------------------------------------------------------------------------


class HeatExchangerOp(UnitOpBase):
    """
    Two-stream heat exchanger.

    Inlets ``[hot_in, cold_in]``, outlets ``[hot_out, cold_out]``.  Exactly one
    of ``duty`` [kW], ``hot_outlet_temperature`` or ``cold_outlet_temperature``
    [K]; optional ``hot_pressure_drop`` / ``cold_pressure_drop`` [Pa].

    Equations (2*ns + 4): component carry-over on both sides, both outlet
    pressures, and either the two duty balances or the outlet temperature
    spec plus the overall energy balance.
    """

    n_inlets = 2
    n_outlets = 2
    requires_thermo = True
    _THERMAL_MODES = ("duty", "hot_outlet_temperature", "cold_outlet_temperature")

    def validate_specs(self) -> None:
        modes = [k for k in self._THERMAL_MODES if self.params.get(k) is not None]
        if len(modes) != 1:
            raise ValueError(
                f"HeatExchanger '{self.id}': specify exactly one of {list(self._THERMAL_MODES)}, got {modes}"
            )

    def _side_duty(self, inlet: Stream, outlet: Stream) -> float:
        mix = self._mixture(inlet.composition)
        return outlet.flow * (mix.enthalpy(outlet.temperature) - mix.enthalpy(inlet.temperature))

    def duty(self) -> float:
        """Heat [kW] released by the hot side at the current stream states."""
        hot_in, _ = self.inlets
        hot_out, _ = self.outlets
        return -self._side_duty(hot_in, hot_out)

    def equations(self) -> List[float]:
        hot_in, cold_in = self.inlets
        hot_out, cold_out = self.outlets
        eqs = _component_balances(hot_in, hot_out) + _component_balances(cold_in, cold_out)
        eqs.append(hot_out.pressure - (hot_in.pressure - float(self._get_param("hot_pressure_drop", 0.0))))
        eqs.append(cold_out.pressure - (cold_in.pressure - float(self._get_param("cold_pressure_drop", 0.0))))

        q_hot = self._side_duty(hot_in, hot_out)
        q_cold = self._side_duty(cold_in, cold_out)
        if self.params.get("duty") is not None:
            Q = float(self.params["duty"])
            eqs.append(Q + q_hot)
            eqs.append(q_cold - Q)
        else:
            if self.params.get("hot_outlet_temperature") is not None:
                eqs.append(hot_out.temperature - float(self.params["hot_outlet_temperature"]))
            else:
                eqs.append(cold_out.temperature - float(self.params["cold_outlet_temperature"]))
            eqs.append(q_hot + q_cold)
        return eqs

    def describe(self) -> str:
        hot_in, cold_in = self.inlets
        hot_out, cold_out = self.outlets
        return (
            f"HeatExchanger '{self.id}': hot {hot_in.name} -> {hot_out.name}, "
            f"cold {cold_in.name} -> {cold_out.name}"
        )


# ---------------------------------------------------------------------------
# Reactors (mass balance only, isothermal and isobaric)
# ---------------------------------------------------------------------------


class _ReactorBase(UnitOpBase):
    """
    Common residuals for mass-only reactors with a predicted outlet
    component flow vector n_target:

      n_out[j] - n_target[j]   (ns)
      F_out - sum(n_target)
      T_out - T_in
      P_out - P_in
    """

    n_inlets = 1
    n_outlets = 1
    negative_tolerance = 1e-10

    def __init__(self, *args, **kwargs) -> None:
        self._warned_negative = False
        super().__init__(*args, **kwargs)

    def _species_index(self, key) -> int:
        species = self.inlet.species
        if isinstance(key, str):
            if key not in species:
                raise ValueError(f"{type(self).__name__} '{self.id}': unknown species '{key}'")
            return species.index(key)
        index = int(key)
        if not 0 <= index < len(species):
            raise ValueError(f"{type(self).__name__} '{self.id}': species index {index} out of range")
        return index

    def _species_vector(self, key: str) -> List[float]:
        """Per-species coefficients from a {species: value} dict or a list."""
        raw = self.params.get(key)
        ns = self.inlet.n_species
        if raw is None:
            raise ValueError(f"{type(self).__name__} '{self.id}': {key} is required")
        if isinstance(raw, dict):
            values = [0.0] * ns
            for sp, v in raw.items():
                values[self._species_index(sp)] = float(v)
            return values
        if len(raw) != ns:
            raise ValueError(f"{type(self).__name__} '{self.id}': {key} must have {ns} entries")
        return [float(v) for v in raw]

    def _mode(self, key: str) -> str:
        mode = str(self._get_param(key, "fixed")).strip().lower()
        if mode not in ("fixed", "solve"):
            raise ValueError(f"{type(self).__name__} '{self.id}': {key} must be 'fixed' or 'solve'")
        return mode

    @abstractmethod
    def target_flows(self) -> List[float]:
        """Predicted outlet component flows [kmol/s]."""

    def equations(self) -> List[float]:
        inlet, out = self.inlet, self.outlet
        n_target = self.target_flows()
        if not self._warned_negative and any(n < -self.negative_tolerance for n in n_target):
            logger.warning(
                "{} '{}': predicted outlet component flow is negative for stream '{}'",
                type(self).__name__, self.id, out.name,
            )
            self._warned_negative = True
        eqs = [n - t for n, t in zip(out.component_flows(), n_target)]
        eqs.append(out.flow - sum(n_target))
        eqs.append(out.temperature - inlet.temperature)
        eqs.append(out.pressure - inlet.pressure)
        return eqs


class StoichiometricReactorOp(_ReactorBase):
    """
    n_out = n_in + nu * xi.

    ``stoichiometry`` (nu, negative for reactants), and either a fixed
    ``extent`` [kmol/s] or ``extent_mode="solve"`` where xi is read from the
    outlet flow of ``reference_species`` and another spec closes the system.
    """

    def validate_specs(self) -> None:
        nu = self._species_vector("stoichiometry")
        if self._mode("extent_mode") == "solve":
            j = self._species_index(self._get_param("reference_species", 0))
            if nu[j] == 0.0:
                raise ValueError(
                    f"StoichiometricReactor '{self.id}': reference species needs a nonzero coefficient"
                )

    def extent(self) -> float:
        if self._mode("extent_mode") == "solve":
            nu = self._species_vector("stoichiometry")
            j = self._species_index(self._get_param("reference_species", 0))
            return (self.outlet.component_flows()[j] - self.inlet.component_flows()[j]) / nu[j]
        return float(self._get_param("extent", 0.0))

    def target_flows(self) -> List[float]:
        xi = self.extent()
        return [n + v * xi for n, v in zip(self.inlet.component_flows(), self._species_vector("stoichiometry"))]

    def describe(self) -> str:
        mode = self._mode("extent_mode")
        return f"StoichiometricReactor '{self.id}': {self.inlet.name} -> {self.outlet.name} ({mode} extent)"


class ConversionReactorOp(_ReactorBase):
    """
    Limiting-reactant conversion: xi = X * n_in[key] / (-nu_key),
    n_out = n_in + nu * xi.

    ``stoichiometry``, ``key_species`` (a reactant, defaults to the first
    species with negative nu), ``conversion`` in [0, 1] or
    ``conversion_mode="solve"`` where X is read from the outlet.
    """

    def validate_specs(self) -> None:
        nu = self._species_vector("stoichiometry")
        if nu[self.key_index()] >= 0:
            raise ValueError(f"ConversionReactor '{self.id}': key species must be a reactant (nu < 0)")
        if self._mode("conversion_mode") == "fixed":
            X = float(self._get_param("conversion", 0.5))
            if not 0.0 <= X <= 1.0:
                raise ValueError(f"ConversionReactor '{self.id}': conversion must be in [0, 1]")

    def key_index(self) -> int:
        key = self.params.get("key_species")
        if key is not None:
            return self._species_index(key)
        nu = self._species_vector("stoichiometry")
        for j, v in enumerate(nu):
            if v < 0:
                return j
        raise ValueError(f"ConversionReactor '{self.id}': stoichiometry has no reactant")

    def conversion(self) -> float:
        j = self.key_index()
        if self._mode("conversion_mode") == "solve":
            n_in = self.inlet.component_flows()[j]
            return (n_in - self.outlet.component_flows()[j]) / max(n_in, 1e-300)
        return float(self._get_param("conversion", 0.5))

    def target_flows(self) -> List[float]:
        nu = self._species_vector("stoichiometry")
        n_in = self.inlet.component_flows()
        j = self.key_index()
        xi = self.conversion() * n_in[j] / -nu[j]
        return [n + v * xi for n, v in zip(n_in, nu)]

    def describe(self) -> str:
        mode = self._mode("conversion_mode")
        return f"ConversionReactor '{self.id}': {self.inlet.name} -> {self.outlet.name} ({mode} X)"


class YieldReactorOp(_ReactorBase):
    """
    Basis reactant consumed by conversion X; each product gains
    yield * (consumed basis).  ``basis_species``, ``conversion`` (or
    ``conversion_mode="solve"``) and ``yields`` ({product: yield}).
    """

    def validate_specs(self) -> None:
        self._species_index(self._get_param("basis_species", 0))
        self._species_vector("yields")
        self._mode("conversion_mode")

    def conversion(self) -> float:
        a = self._species_index(self._get_param("basis_species", 0))
        if self._mode("conversion_mode") == "solve":
            return 1.0 - self.outlet.component_flows()[a] / max(self.inlet.component_flows()[a], 1e-300)
        return float(self._get_param("conversion", 0.5))

    def target_flows(self) -> List[float]:
        a = self._species_index(self._get_param("basis_species", 0))
        n_target = list(self.inlet.component_flows())
        consumed = n_target[a] * self.conversion()
        n_target[a] -= consumed
        for j, y in enumerate(self._species_vector("yields")):
            if j != a:
                n_target[j] += y * consumed
        return n_target

    def describe(self) -> str:
        mode = self._mode("conversion_mode")
        return f"YieldReactor '{self.id}': {self.inlet.name} -> {self.outlet.name} ({mode} X)"


UNIT_OP_REGISTRY: Dict[str, type] = {
    "mixer": MixerOp,
    "splitter": SplitterOp,
    "link": LinkOp,
    "recycle": RecycleOp,
    "source": SourceOp,
    "sink": SinkOp,
    "constraint": ConstraintOp,
    "heater": HeaterOp,
    "cooler": HeaterOp,
    "compressor": CompressorOp,
    "turbine": TurbineOp,
    "separator": SeparatorOp,
    "purge": PurgeOp,
    "heat_exchanger": HeatExchangerOp,
    "stoichiometric_reactor": StoichiometricReactorOp,
    "conversion_reactor": ConversionReactorOp,
    "yield_reactor": YieldReactorOp,
}
