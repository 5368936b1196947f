"""
Tests for the Flowsheet container, payload building and stream reports.
"""

import csv
import io

import pytest

from eoflow.errors import InvalidCompositionSchema
from eoflow.flowsheet import Flowsheet
from eoflow.report import export_stream_table_csv, stream_table
from eoflow.schemas import FlowsheetPayload, SolverConfig
from eoflow.streams import Stream
from eoflow.thermo_library import ThermoLibrary
from eoflow.unit_operations import ConstraintOp, MixerOp


def mixer_payload(**overrides):
    data = {
        "name": "air-blend",
        "species": ["N2", "O2"],
        "streams": [
            {"name": "n2", "flow": 10.0, "composition": {"N2": 1.0}, "temperature": 300.0,
             "pressure": 1e5, "known": {"flow": True, "composition": True,
                                        "temperature": True, "pressure": True}},
            {"name": "o2", "flow": 5.0, "composition": {"O2": 1.0}, "temperature": 300.0,
             "pressure": 1e5, "known": {"flow": True, "composition": True,
                                        "temperature": True, "pressure": True}},
            {"name": "blend"},
        ],
        "units": [
            {"id": "mix", "type": "mixer", "inlets": ["n2", "o2"], "outlets": ["blend"]},
        ],
    }
    data.update(overrides)
    return FlowsheetPayload.model_validate(data)


@pytest.fixture
def library():
    return ThermoLibrary.default()


class TestBuild:
    def test_from_payload(self, library):
        fs = Flowsheet.from_payload(mixer_payload(), library=library)
        assert [s.name for s in fs.streams] == ["n2", "o2", "blend"]
        n2 = fs.get_stream("n2")
        assert n2.composition == [1.0, 0.0]
        assert n2.known.composition == [True, True]
        assert fs.get_stream("blend").known.composition == [False, False]
        assert isinstance(fs.units[0], MixerOp)

    def test_unknown_unit_type(self, library):
        payload = mixer_payload(units=[{"id": "x", "type": "reactor", "inlets": ["n2"], "outlets": []}])
        with pytest.raises(ValueError, match="Unknown unit type"):
            Flowsheet.from_payload(payload, library=library)

    def test_unknown_stream_reference(self, library):
        payload = mixer_payload(units=[{"id": "m", "type": "mixer", "inlets": ["zz"], "outlets": ["blend"]}])
        with pytest.raises(KeyError):
            Flowsheet.from_payload(payload, library=library)

    def test_composition_with_foreign_species(self, library):
        payload = mixer_payload()
        payload.streams[0].composition = {"Ar": 1.0}
        with pytest.raises(InvalidCompositionSchema):
            Flowsheet.from_payload(payload, library=library)

    def test_duplicate_stream(self):
        fs = Flowsheet(["A"])
        fs.new_stream("s")
        with pytest.raises(ValueError, match="Duplicate"):
            fs.new_stream("s")


class TestValidate:
    def test_malformed_flags(self):
        fs = Flowsheet(["A", "B"])
        s = fs.new_stream("s").specify(1.0, [0.5, 0.5], 300.0, 1e5)
        s.known.composition = [True]
        with pytest.raises(InvalidCompositionSchema, match="known.composition"):
            fs.validate()

    def test_known_non_positive_flow(self):
        fs = Flowsheet(["A"])
        fs.new_stream("s").specify(flow=-1.0)
        with pytest.raises(ValueError, match="flow"):
            fs.validate()

    def test_known_composition_without_values(self):
        fs = Flowsheet(["A"])
        s = fs.new_stream("s")
        s.known.composition = [True]
        with pytest.raises(InvalidCompositionSchema):
            fs.validate()

    def test_species_mismatch(self):
        fs = Flowsheet(["A", "B"])
        fs.add_stream(Stream("s", ("A",)))
        with pytest.raises(InvalidCompositionSchema):
            fs.validate()


class TestSolve:
    def test_dof_for_mixer(self, library):
        fs = Flowsheet.from_payload(mixer_payload(), library=library)
        dof = fs.check_dof()
        assert dof == {"unknowns": 5, "independent_unknowns": 4, "equations": 5, "dof": -1}

    def test_dof_check_leaves_guesses_alone(self):
        fs = Flowsheet(["A", "B"])
        s = fs.new_stream("hot").specify(1.0, [1.0, 0.0], pressure=1e5).guess(temperature=7000.0)
        fs.add_unit(ConstraintOp("t", inlets=[s], params={"field": "temperature", "value": 7000.0}))
        fs.check_dof()
        assert s.temperature == 7000.0

    def test_solve_uses_config_bounds_for_dof_check(self):
        fs = Flowsheet(["A", "B"])
        s = fs.new_stream("hot").specify(1.0, [1.0, 0.0], pressure=1e5).guess(temperature=7000.0)
        fs.add_unit(ConstraintOp("t", inlets=[s], params={"field": "temperature", "value": 7000.0}))
        result = fs.solve(SolverConfig(temperature_max=10000.0))
        assert result.converged
        assert result.iterations == 0
        assert result.residual_history[0] == pytest.approx(0.0, abs=1e-12)
        assert s.temperature == 7000.0

    def test_solve_and_response(self, library):
        payload = mixer_payload()
        fs = Flowsheet.from_payload(payload, library=library)
        result = fs.solve(payload.config)
        response = fs.to_response(result)
        assert response.converged
        blend = next(s for s in response.streams if s.name == "blend")
        assert blend.flow == pytest.approx(15.0, abs=1e-6)
        assert blend.composition["N2"] == pytest.approx(2 / 3, abs=1e-4)
        assert response.diagnostics["unknowns"] == 5
        assert response.log

    def test_reactor_and_purge_from_payload(self):
        known = {"flow": True, "composition": True, "temperature": True, "pressure": True}
        payload = FlowsheetPayload.model_validate({
            "name": "rxn-purge",
            "species": ["A", "B"],
            "streams": [
                {"name": "feed", "flow": 4.0, "composition": {"A": 1.0}, "temperature": 350.0,
                 "pressure": 2e5, "known": known},
                {"name": "effluent"},
                {"name": "recycle"},
                {"name": "purge"},
            ],
            "units": [
                {"id": "rx", "type": "stoichiometric_reactor", "inlets": ["feed"],
                 "outlets": ["effluent"],
                 "parameters": {"stoichiometry": {"A": -1, "B": 1}, "extent": 1.0}},
                {"id": "p", "type": "purge", "inlets": ["effluent"],
                 "outlets": ["recycle", "purge"], "parameters": {"recycle_fraction": 0.75}},
            ],
        })
        fs = Flowsheet.from_payload(payload)
        result = fs.solve()
        assert result.converged
        assert fs.get_stream("effluent").composition == pytest.approx([0.75, 0.25], abs=1e-6)
        assert fs.get_stream("recycle").flow == pytest.approx(3.0, abs=1e-6)
        assert fs.get_stream("purge").flow == pytest.approx(1.0, abs=1e-6)

    def test_adiabatic_mixer(self, library):
        payload = mixer_payload()
        payload.streams[0].temperature = 600.0
        payload.units[0].parameters = {"adiabatic": True}
        fs = Flowsheet.from_payload(payload, library=library)
        fs.get_stream("blend").guess(temperature=400.0)
        result = fs.solve()
        assert result.converged
        assert 480.0 < fs.get_stream("blend").temperature < 520.0


class TestReport:
    @pytest.fixture
    def streams(self):
        a = Stream("a", ("A", "B")).specify(2.0, [0.25, 0.75], 300.0, 1e5)
        b = Stream("b", ("A", "B")).specify(1.0, [1.0, 0.0], 350.0, 2e5)
        return [a, b]

    def test_stream_table_rows(self, streams):
        rows = stream_table(streams, ["A", "B"])
        assert rows[0]["name"] == "a"
        assert rows[0]["y_B"] == 0.75
        assert rows[0]["n_B"] == pytest.approx(1.5)
        assert rows[1]["pressure"] == 2e5

    def test_unsolved_fields_are_blank(self):
        rows = stream_table([Stream("x", ("A",))])
        assert rows[0]["flow"] is None
        assert rows[0]["y_A"] is None
        assert rows[0]["n_A"] is None

    def test_csv_export(self, streams):
        text = export_stream_table_csv(streams)
        rows = list(csv.reader(io.StringIO(text)))
        assert rows[0] == ["Property", "Unit", "a", "b"]
        assert rows[1][:2] == ["Molar Flow", "kmol/s"]
        assert rows[1][2] == "2.000000"
        comp_rows = [r for r in rows if len(r) > 1 and r[1] == "mol frac"]
        assert [r[0] for r in comp_rows] == ["A", "B"]

    def test_csv_empty(self):
        assert export_stream_table_csv([]) == ""

    def test_flowsheet_stream_table(self, library):
        fs = Flowsheet.from_payload(mixer_payload(), library=library)
        rows = fs.stream_table()
        assert set(rows[0]) >= {"y_N2", "y_O2", "n_N2", "n_O2"}
