"""
Tests for the Shomate property engine.

Reference values from the NIST Chemistry WebBook Shomate tables.
"""

import math

import pytest

from eoflow.errors import TemperatureOutOfRange
from eoflow.thermo_engine import PropertyEngine, ShomateRange, Species
from eoflow.thermo_library import ThermoLibrary


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def library():
    return ThermoLibrary.default()


@pytest.fixture
def engine():
    return PropertyEngine()


@pytest.fixture
def n2(library):
    return library.get("N2")


# ---------------------------------------------------------------------------
# Heat capacity / enthalpy / entropy
# ---------------------------------------------------------------------------


class TestPureSpeciesProperties:
    def test_n2_cp_at_298(self, engine, n2):
        """NIST: cp(N2, 298.15 K) = 29.12 J/(mol K)."""
        assert engine.cp(n2, 298.15) == pytest.approx(29.12, abs=0.05)

    def test_n2_entropy_at_298(self, engine, n2):
        """NIST: S°(N2, 298.15 K) = 191.61 J/(mol K)."""
        assert engine.entropy(n2, 298.15) == pytest.approx(191.61, abs=0.1)

    def test_sensible_enthalpy_zero_at_reference(self, engine, library):
        for name in library.list_species():
            sp = library.get(name)
            assert engine.enthalpy(sp, 298.15, "sensible") == pytest.approx(0.0, abs=1e-9)

    def test_absolute_enthalpy_near_zero_at_reference(self, engine, n2):
        assert abs(engine.enthalpy(n2, 298.15, "absolute")) < 50.0

    def test_formation_adds_hf298(self, engine, library):
        co2 = library.get("CO2")
        h_f = engine.enthalpy(co2, 298.15, "formation")
        assert h_f == pytest.approx(co2.hf298, abs=1e-6)
        h_600 = engine.enthalpy(co2, 600.0, "formation")
        assert h_600 - h_f == pytest.approx(engine.enthalpy(co2, 600.0, "sensible"), rel=1e-12)

    def test_enthalpy_increases_with_temperature(self, engine, n2):
        temps = [300.0, 500.0, 900.0, 1500.0, 2500.0]
        hs = [engine.enthalpy(n2, T) for T in temps]
        assert all(b > a for a, b in zip(hs, hs[1:]))

    def test_unknown_mode_rejected(self, engine, n2):
        with pytest.raises(ValueError, match="Unknown enthalpy mode"):
            engine.enthalpy(n2, 300.0, "gibbs")

    def test_non_positive_temperature_rejected(self, engine, n2):
        with pytest.raises(ValueError):
            engine.cp(n2, 0.0)
        with pytest.raises(ValueError):
            engine.cp(n2, float("nan"))

    def test_properties_dict(self, engine, n2):
        props = engine.properties(n2, 400.0)
        assert props["species"] == "N2"
        assert set(props) >= {"cp", "enthalpy", "entropy", "temperature", "mode"}


# ---------------------------------------------------------------------------
# Range selection
# ---------------------------------------------------------------------------


class TestRangeSelection:
    def test_boundary_is_inclusive(self, engine, n2):
        """500 K is the shared bound of the first two N2 ranges."""
        assert n2.select_range(500.0) is n2.ranges[0]
        assert math.isfinite(engine.cp(n2, 500.0))

    def test_cp_continuous_across_boundary(self, engine, n2):
        below = engine.cp(n2, 500.0 - 1e-6)
        above = engine.cp(n2, 500.0 + 1e-6)
        assert below == pytest.approx(above, abs=0.05)

    def test_outside_coverage_raises(self, engine, n2):
        with pytest.raises(TemperatureOutOfRange) as exc_info:
            engine.cp(n2, 6001.0)
        err = exc_info.value
        assert err.temperature == 6001.0
        assert (err.t_min, err.t_max) == (100.0, 6000.0)
        assert "6001.00" in str(err)
        assert "[100.00, 6000.00]" in str(err)

    def test_gap_between_ranges_raises(self, engine):
        sp = Species(
            name="gappy",
            mw=10.0,
            ranges=(
                ShomateRange(300.0, 500.0, 30.0, 0, 0, 0, 0, 0, 200.0, 0),
                ShomateRange(600.0, 900.0, 30.0, 0, 0, 0, 0, 0, 200.0, 0),
            ),
        )
        assert engine.cp(sp, 500.0) == pytest.approx(30.0)
        with pytest.raises(TemperatureOutOfRange):
            engine.cp(sp, 550.0)

    def test_coverage_is_union_bounds(self, n2):
        assert n2.coverage() == (100.0, 6000.0)
