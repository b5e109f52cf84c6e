"""
Tests for scenarios, expected scenarios and samplers.
"""

from collections import namedtuple
from dataclasses import dataclass

import pytest
import numpy as np

from stochprog.exceptions import InvalidInputError, NotExpectable, ProbabilityError
from stochprog.stochastic import (
    DiscreteSampler,
    FunctionSampler,
    LogNormalSampler,
    NormalSampler,
    Scenario,
    UniformSampler,
    expectation,
    expected,
)


Prices = namedtuple("Prices", ["buy", "sell"])


@dataclass(frozen=True)
class Yields:
    wheat: float
    corn: np.ndarray


class Weather:
    """Payload with its own reduction."""

    def __init__(self, rain):
        self.rain = rain

    @classmethod
    def expectation(cls, payloads, weights):
        return cls(max(p.rain for p in payloads))


class TestScenario:
    """Tests for Scenario class."""

    def test_scenario_creation(self):
        """Test creating a scenario."""
        s = Scenario(0.3, data=np.array([1.0, 2.0]), name="dry")

        assert s.probability == 0.3
        assert s.name == "dry"
        assert "dry" in repr(s)

    @pytest.mark.parametrize("p", [-0.1, 1.5, float("nan")])
    def test_invalid_probability(self, p):
        """Probabilities outside [0, 1] are rejected."""
        with pytest.raises(ProbabilityError):
            Scenario(p, data=1.0)

    def test_scale_probability(self):
        """Scaling returns a new scenario with the same payload."""
        s = Scenario(0.5, data=3.0)
        scaled = s.scale_probability(0.5)

        assert scaled.probability == 0.25
        assert scaled.data == 3.0
        assert s.probability == 0.5

    def test_frozen(self):
        """Scenarios are immutable."""
        s = Scenario(0.5, data=3.0)
        with pytest.raises(AttributeError):
            s.probability = 0.1


class TestExpectation:
    """Tests for the weighted-sum reduction."""

    def test_reals(self):
        """Numbers reduce to their weighted sum."""
        assert expectation([100.0, 50], [0.4, 0.6]) == pytest.approx(70.0)

    def test_arrays(self):
        """Arrays reduce elementwise."""
        result = expectation([np.array([1, 2]), np.array([3, 4])], [0.5, 0.5])
        np.testing.assert_allclose(result, [2.0, 3.0])

    def test_array_shape_mismatch(self):
        """Arrays of different shapes cannot be reduced."""
        with pytest.raises(NotExpectable):
            expectation([np.zeros(2), np.zeros(3)], [0.5, 0.5])

    def test_dataclass(self):
        """Dataclass fields reduce recursively."""
        result = expectation(
            [Yields(2.0, np.array([3.0])), Yields(3.0, np.array([4.0]))],
            [0.25, 0.75],
        )
        assert isinstance(result, Yields)
        assert result.wheat == pytest.approx(2.75)
        np.testing.assert_allclose(result.corn, [3.75])

    def test_namedtuple_and_mapping(self):
        """Namedtuples and mappings keep their shape."""
        nt = expectation([Prices(1.0, 2.0), Prices(3.0, 4.0)], [0.5, 0.5])
        assert nt == Prices(2.0, 3.0)

        mp = expectation([{"a": 1.0}, {"a": 3.0}], [0.5, 0.5])
        assert mp == {"a": 2.0}

    def test_hook(self):
        """A type-level expectation() classmethod is used when present."""
        result = expectation([Weather(1.0), Weather(5.0)], [0.5, 0.5])
        assert result.rain == 5.0

    def test_not_expectable(self):
        """Opaque payloads raise NotExpectable."""
        with pytest.raises(NotExpectable):
            expectation(["dry", "wet"], [0.5, 0.5])
        with pytest.raises(NotExpectable):
            expectation([object(), object()], [0.5, 0.5])

    def test_expected_scenario(self):
        """expected() normalizes by the total mass."""
        s = expected([Scenario(0.2, 10.0), Scenario(0.2, 20.0)])
        assert s.probability == 1.0
        assert s.data == pytest.approx(15.0)

    def test_expected_empty(self):
        with pytest.raises(ProbabilityError):
            expected([])


class TestSamplers:
    """Tests for scenario samplers."""

    def test_sample_probabilities(self):
        """sample(n) gives n scenarios of probability 1/n."""
        scenarios = UniformSampler(0.0, 1.0, seed=1).sample(8)

        assert len(scenarios) == 8
        assert all(s.probability == pytest.approx(1 / 8) for s in scenarios)
        assert all(isinstance(s.data, float) for s in scenarios)

    def test_call_returns_scenario(self):
        """Calling a sampler draws one scenario."""
        s = NormalSampler(10.0, 1.0, seed=3)()
        assert isinstance(s, Scenario)
        assert s.probability == 1.0

    def test_seed_reproducibility(self):
        """Same seed, same draws; reseed() restarts the stream."""
        a = NormalSampler([0.0, 1.0], std=[1.0, 2.0], seed=7)
        b = NormalSampler([0.0, 1.0], std=[1.0, 2.0], seed=7)
        first = [s.data for s in a.sample(5)]

        np.testing.assert_array_equal(first, [s.data for s in b.sample(5)])
        a.reseed(7)
        np.testing.assert_array_equal(first, [s.data for s in a.sample(5)])

    def test_normal_lower_clip(self):
        """Draws are clipped at ``lower``."""
        sampler = NormalSampler(0.0, 10.0, lower=0.0, seed=0)
        assert all(s.data >= 0.0 for s in sampler.sample(50))

    def test_normal_cov_shape(self):
        with pytest.raises(InvalidInputError):
            NormalSampler([0.0, 0.0], cov=np.eye(3))

    def test_discrete(self):
        """Discrete draws come from the support."""
        sampler = DiscreteSampler([10.0, 20.0, 30.0], [0.2, 0.5, 0.3], seed=2)

        assert {s.data for s in sampler.sample(100)} <= {10.0, 20.0, 30.0}
        support = sampler.scenarios()
        assert [s.probability for s in support] == pytest.approx([0.2, 0.5, 0.3])

    def test_discrete_invalid(self):
        with pytest.raises(ProbabilityError):
            DiscreteSampler([1.0, 2.0], [-0.5, 1.5])
        with pytest.raises(InvalidInputError):
            DiscreteSampler([])

    def test_lognormal_positive(self):
        sampler = LogNormalSampler(0.0, 0.5, seed=4)
        assert all(s.data > 0 for s in sampler.sample(20))
        assert sampler.mean() == pytest.approx(np.exp(0.125))

    def test_uniform_bounds(self):
        with pytest.raises(InvalidInputError):
            UniformSampler(2.0, 1.0)

    def test_function_sampler(self):
        """Arbitrary payloads from a callable of the generator."""
        sampler = FunctionSampler(lambda rng: Prices(rng.uniform(), 1.0), seed=5)
        s = sampler()
        assert isinstance(s.data, Prices)
        assert 0.0 <= s.data.buy <= 1.0

    def test_invalid_sample_size(self):
        with pytest.raises(InvalidInputError):
            UniformSampler(0.0, 1.0).sample(0)
