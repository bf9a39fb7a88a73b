"""Unit tests for ensemble generation and the ensemble container."""
import numpy as np
import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', '..'))

from thermal_enkf.config import EnKFConfig
from thermal_enkf.ensemble import (
    EnsembleState, ensemble_mean, enforce_boundary, perturb,
    generate_ensemble, add_noise, initial_state
)
from thermal_enkf.errors import ConfigurationError


class TestGenerateEnsemble:
    """Tests for generate_ensemble."""

    def test_shape_and_boundary(self, rng):
        base = np.full(6, 300.0)

        x = generate_ensemble(base, 10, 2.0, rng, boundary_cells=(0, 5), boundary_value=290.0)

        assert x.shape == (6, 10)
        np.testing.assert_array_equal(x[[0, 5]], 290.0)

    def test_zero_std_identical_members(self, rng):
        base = np.array([300.0, 310.0, 320.0, 300.0])

        x = generate_ensemble(base, 4, 0.0, rng, boundary_cells=(0, 3), boundary_value=300.0)

        np.testing.assert_array_equal(x, np.repeat(base[:, None], 4, axis=1))

    def test_members_differ(self, rng):
        x = generate_ensemble(np.full(5, 300.0), 3, 1.0, rng)

        assert not np.allclose(x[:, 0], x[:, 1])

    def test_spread_scales_with_magnitude(self, rng):
        """Standard deviation is a percentage of each cell's value."""
        base = np.array([100.0, 1000.0])

        x = generate_ensemble(base, 20000, 1.0, rng)

        np.testing.assert_allclose(x.std(axis=1, ddof=1), [1.0, 10.0], rtol=0.05)

    def test_reproducible(self):
        base = np.full(5, 300.0)

        a = generate_ensemble(base, 4, 1.0, np.random.default_rng(7))
        b = generate_ensemble(base, 4, 1.0, np.random.default_rng(7))

        np.testing.assert_array_equal(a, b)

    def test_single_member_raises(self, rng):
        with pytest.raises(ConfigurationError):
            generate_ensemble(np.full(5, 300.0), 1, 1.0, rng)

    def test_negative_std_raises(self, rng):
        with pytest.raises(ConfigurationError):
            generate_ensemble(np.full(5, 300.0), 4, -1.0, rng)


class TestNegativePolicy:
    """Tests for the handling of negative draws."""

    @pytest.mark.parametrize('policy', ['resample', 'reject'])
    def test_redraw_policies_non_negative(self, rng, policy):
        x = perturb(np.ones(5), 50, 200.0, rng, negative_policy=policy)

        assert np.all(x >= 0.0)
        assert x.shape == (5, 50)

    def test_clip(self, rng):
        x = perturb(np.ones(5), 50, 200.0, rng, negative_policy='clip')

        assert np.all(x >= 0.0)
        assert np.any(x == 0.0)

    def test_zero_base_uses_reference_magnitude(self, rng):
        """A zero base value is perturbed with the reference magnitude."""
        x = perturb(np.zeros(1), 20000, 10.0, rng, reference_magnitude=50.0,
                    negative_policy='clip')

        # mean of max(N(0, 5), 0) is 5 / sqrt(2 pi)
        assert x.mean() == pytest.approx(5.0 / np.sqrt(2.0 * np.pi), abs=0.1)

    def test_exhausted_attempts_raise(self, rng):
        with pytest.raises(ConfigurationError):
            perturb(np.ones(1), 200, 1e5, rng, negative_policy='resample', max_attempts=1)

    def test_unknown_policy_raises(self, rng):
        with pytest.raises(ConfigurationError):
            perturb(np.ones(3), 50, 200.0, rng, negative_policy='ignore')


class TestAddNoise:
    """Tests for add_noise."""

    def test_zero_std_only_pins_boundary(self, rng):
        x = np.arange(12, dtype=float).reshape(4, 3) + 300.0

        y = add_noise(x, 0.0, rng, boundary_cells=(0, 3), boundary_value=1.0)

        np.testing.assert_array_equal(y[1:3], x[1:3])
        np.testing.assert_array_equal(y[[0, 3]], 1.0)
        assert x[0, 0] == 300.0

    def test_perturbs_interior(self, rng):
        x = np.full((5, 4), 300.0)

        y = add_noise(x, 1.0, rng, boundary_cells=(0, 4), boundary_value=300.0)

        assert not np.allclose(y[1:4], 300.0)
        np.testing.assert_array_equal(y[[0, 4]], 300.0)


class TestEnsembleState:
    """Tests for the EnsembleState container."""

    def test_member_round_trip(self):
        state = EnsembleState({'T': np.zeros((3, 2)), 'p': np.ones((3, 2))}, t=1.0)

        member = state.member_state(1)
        member['T'] += 5.0
        np.testing.assert_array_equal(state.members['T'], 0.0)

        state.set_member_state(1, member)
        np.testing.assert_array_equal(state.members['T'][:, 1], 5.0)
        np.testing.assert_array_equal(state.members['T'][:, 0], 0.0)

    def test_copy_is_deep(self):
        state = EnsembleState({'T': np.zeros((3, 2))}, t=2.0)

        clone = state.copy()
        clone.members['T'][0, 0] = 1.0

        assert state.members['T'][0, 0] == 0.0
        assert clone.t == 2.0

    def test_properties(self):
        state = EnsembleState({'T': np.arange(6.0).reshape(3, 2)})

        assert state.n_members == 2
        assert state.variables == ('T',)
        np.testing.assert_array_equal(state.mean()['T'], [0.5, 2.5, 4.5])


class TestHelpers:
    """Tests for ensemble_mean, enforce_boundary and initial_state."""

    def test_ensemble_mean(self):
        np.testing.assert_array_equal(ensemble_mean(np.array([[1.0, 3.0], [2.0, 4.0]])), [2.0, 3.0])

    def test_enforce_boundary_in_place(self):
        x = np.zeros((4, 2))

        out = enforce_boundary(x, (0, 3), 7.0)

        assert out is x
        np.testing.assert_array_equal(x[[0, 3]], 7.0)

    def test_enforce_boundary_no_cells(self):
        x = np.zeros(3)

        np.testing.assert_array_equal(enforce_boundary(x, (), 1.0), 0.0)

    def test_initial_state(self, rng):
        config = EnKFConfig(n_members=4, cx=np.arange(5.0), localization_radius=1.0,
                            n_iter=1, variables=('T', 'p'),
                            boundary_value={'T': 300.0, 'p': 1e5}, t0=3.0)

        state = initial_state(config, {'T': np.full(5, 300.0), 'p': np.full(5, 1e5)}, rng)

        assert state.t == 3.0
        assert state.members['T'].shape == (5, 4)
        np.testing.assert_array_equal(state.members['p'][[0, 4]], 1e5)

    def test_initial_state_missing_variable(self, rng, rod_config):
        with pytest.raises(ConfigurationError):
            initial_state(rod_config, {'p': np.zeros(5)}, rng)

    def test_initial_state_bad_shape(self, rng, rod_config):
        with pytest.raises(ConfigurationError):
            initial_state(rod_config, {'T': np.zeros(4)}, rng)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
