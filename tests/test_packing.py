"""
Tests for the unknown packing layer and its variable transforms.
"""

import math

import numpy as np
import pytest

from eoflow.errors import InvalidCompositionSchema
from eoflow.packing import COMPOSITION, FLOW, PRESSURE, TEMPERATURE, UnknownPacker, softmax
from eoflow.schemas import SolverConfig
from eoflow.streams import Stream

SPECIES = ("A", "B", "C")


@pytest.fixture
def packer():
    return UnknownPacker(SolverConfig())


def unknown_stream(name="s", **guesses):
    return Stream(name, SPECIES).guess(**guesses)


class TestTransforms:
    def test_flow_round_trip(self, packer):
        s = unknown_stream(flow=10.0, composition=[0.2, 0.3, 0.5], temperature=350.0, pressure=2e5)
        x = packer.pack([s])
        assert x[0] == pytest.approx(math.log(10.0))
        packer.unpack(x, [s])
        assert abs(s.flow - 10.0) < 1e-9
        assert s.temperature == 350.0
        assert s.pressure == 2e5
        assert np.allclose(s.composition, [0.2, 0.3, 0.5], atol=1e-12)

    def test_pack_unpack_is_idempotent(self, packer):
        s = unknown_stream(flow=3.0, composition=[0.6, 0.4, 0.0], temperature=500.0, pressure=1e6)
        x1 = packer.pack([s])
        packer.unpack(x1, [s])
        x2 = packer.pack([s])
        packer.unpack(x2, [s])
        x3 = packer.pack([s])
        assert np.allclose(x2, x3, rtol=1e-12, atol=1e-12)

    def test_any_vector_gives_physical_state(self, packer):
        s = unknown_stream()
        x = packer.pack([s])
        rng = np.random.default_rng(0)
        for _ in range(50):
            packer.unpack(rng.normal(scale=50.0, size=len(x)), [s])
            assert s.flow > 0
            assert all(y > 0 for y in s.composition)
            assert sum(s.composition) == pytest.approx(1.0, abs=1e-12)

    def test_softmax_large_logits(self):
        y = softmax([1000.0, 0.0, -1000.0])
        assert np.all(np.isfinite(y))
        assert y[0] == pytest.approx(1.0)
        assert y.sum() == pytest.approx(1.0)

    def test_composition_floor_applied(self, packer):
        s = unknown_stream()
        packer.pack([s])
        x = np.array([0.0, 800.0, 0.0, -800.0, 300.0, 1e5])
        packer.unpack(x, [s])
        assert min(s.composition) >= 0.99e-12

    def test_unknown_bounds_clamped(self, packer):
        s = unknown_stream()
        packer.pack([s])
        packer.unpack(np.array([100.0, 0.0, 0.0, 0.0, 1e6, -5.0]), [s])
        assert s.flow == pytest.approx(1e8)
        assert s.temperature == 5000.0
        assert s.pressure == 1.0

    def test_known_values_clamped_to_bounds(self, packer):
        s = unknown_stream().specify(temperature=6000.0, pressure=5e9)
        x = packer.pack([s])
        packer.unpack(x, [s])
        assert s.temperature == 5000.0
        assert s.pressure == 1e9

    def test_known_values_inside_bounds_untouched(self, packer):
        s = unknown_stream().specify(temperature=450.0, pressure=3e5)
        packer.unpack(packer.pack([s]), [s])
        assert s.temperature == 450.0
        assert s.pressure == 3e5

    def test_fully_known_stream_clamped(self, packer):
        s = Stream("k", SPECIES).specify(1.0, [0.2, 0.3, 0.5], 0.5, 1e5)
        x = packer.pack([s])
        assert len(x) == 0
        packer.unpack(x, [s])
        assert s.temperature == 1.0


class TestUnknownMap:
    def test_ordering(self, packer):
        a = unknown_stream("a")
        b = Stream("b", SPECIES).specify(flow=1.0, composition=[1, 0, 0])
        x = packer.pack([a, b])
        assert len(x) == 6 + 2
        assert [e.kind for e in packer.entries[:6]] == [
            FLOW, COMPOSITION, COMPOSITION, COMPOSITION, TEMPERATURE, PRESSURE,
        ]
        assert packer.describe([a, b])[5:] == ["a.pressure", "b.temperature", "b.pressure"]
        assert packer.counts() == {FLOW: 1, COMPOSITION: 3, TEMPERATURE: 2, PRESSURE: 2}

    def test_fully_known_stream_contributes_nothing(self, packer):
        s = Stream("s", SPECIES).specify(1.0, [0.2, 0.3, 0.5], 300.0, 1e5)
        assert len(packer.pack([s])) == 0

    def test_partially_known_composition_is_unknown(self, packer):
        s = Stream("s", SPECIES).specify(flow=1.0, temperature=300.0, pressure=1e5)
        s.composition = [0.2, 0.3, 0.5]
        s.known.composition = [True, False, True]
        assert len(packer.pack([s])) == 3

    def test_malformed_flags_count_as_unknown(self, packer):
        s = Stream("s", SPECIES).specify(1.0, [0.2, 0.3, 0.5], 300.0, 1e5)
        s.known.flow = "yes"
        s.known.composition = [True]
        s.known.temperature = 1
        x = packer.pack([s])
        assert packer.counts() == {FLOW: 1, COMPOSITION: 3, TEMPERATURE: 1, PRESSURE: 0}
        assert len(x) == 5

    def test_missing_flags_count_as_unknown(self, packer):
        s = Stream("s", SPECIES).specify(1.0, [0.2, 0.3, 0.5], 300.0, 1e5)
        s.known = None
        assert len(packer.pack([s])) == 6

    def test_composition_length_mismatch(self, packer):
        s = unknown_stream()
        s.composition = [0.5, 0.5]
        with pytest.raises(InvalidCompositionSchema):
            packer.pack([s])

    def test_unpack_length_mismatch(self, packer):
        s = unknown_stream()
        packer.pack([s])
        with pytest.raises(ValueError):
            packer.unpack(np.zeros(2), [s])

    def test_missing_guesses_get_defaults(self, packer):
        s = unknown_stream()
        packer.unpack(packer.pack([s]), [s])
        assert s.flow == pytest.approx(1.0)
        assert s.composition == pytest.approx([1 / 3, 1 / 3, 1 / 3])
        assert s.temperature == 300.0
        assert s.pressure == 1e5
