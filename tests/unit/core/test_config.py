"""Unit tests for EnKFConfig and configuration loading."""
import json

import numpy as np
import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', '..'))

from thermal_enkf.config import (
    EnKFConfig, uniform_grid, load_config, save_config, coerce_measurements
)
from thermal_enkf.errors import ConfigurationError
from thermal_enkf.observations import ObservationOperator


class TestEnKFConfig:
    """Tests for defaults and derived values."""

    def test_defaults(self, rod_config):
        assert rod_config.n_cells == 5
        assert rod_config.boundary_cells == (0, 4)
        assert rod_config.variables == ('T',)
        assert rod_config.instability_policy == 'skip'
        assert rod_config.assembly == 'target'
        assert rod_config.process_std == 0.0

    def test_interior_cells(self, rod_config):
        np.testing.assert_array_equal(rod_config.interior_cells(), [1, 2, 3])

    def test_boundary_for(self):
        config = EnKFConfig(n_members=2, cx=np.arange(4.0), localization_radius=1.0, n_iter=1,
                            variables=['T', 'p'], boundary_value={'T': 300.0, 'p': 1e5})

        assert config.boundary_for('p') == 1e5
        with pytest.raises(ConfigurationError):
            config.boundary_for('U')

    def test_validate_ok(self, rod_config, rod_operator):
        rod_config.validate({'T': rod_operator})

    def test_make_operators(self):
        config = EnKFConfig(n_members=2, cx=np.arange(6.0), localization_radius=1.0, n_iter=1,
                            variables=('T', 'Ts'), measurement_std=0.5,
                            boundary_value={'T': 300.0, 'Ts': 350.0})

        operators = config.make_operators({'T': [2], 'Ts': [1, 4]})

        assert operators['Ts'].n_obs == 2
        np.testing.assert_allclose(operators['T'].R, [[0.25]])
        config.validate(operators)


class TestValidate:
    """Tests for EnKFConfig.validate."""

    @pytest.mark.parametrize('changes', [
        {'n_members': 1},
        {'localization_radius': -0.1},
        {'n_iter': -1},
        {'solver_runs': 0},
        {'dt': 0.0},
        {'variables': ()},
        {'variables': ('T', 'T')},
        {'boundary_cells': (0, 5)},
        {'sample_std': -1.0},
        {'instability_policy': 'ignore'},
        {'assembly': 'global'},
        {'negative_policy': 'keep'},
        {'solver': 'qr'},
        {'n_workers': -1},
    ])
    def test_invalid_options(self, rod_config, changes):
        for key, value in changes.items():
            setattr(rod_config, key, value)

        with pytest.raises(ConfigurationError):
            rod_config.validate()

    def test_non_finite_coordinates(self, rod_config):
        rod_config.cx = np.array([0.0, 1.0, np.nan, 3.0, 4.0])

        with pytest.raises(ConfigurationError):
            rod_config.validate()

    def test_missing_operator(self, rod_config):
        with pytest.raises(ConfigurationError):
            rod_config.validate({})

    def test_operator_dimension_mismatch(self, rod_config):
        operator = ObservationOperator.from_cells('T', [2], 6)

        with pytest.raises(ConfigurationError):
            rod_config.validate({'T': operator})

    def test_configuration_error_is_value_error(self, rod_config):
        rod_config.n_members = 1

        with pytest.raises(ValueError):
            rod_config.validate()


class TestSerialization:
    """Tests for dict and JSON round trips."""

    def test_dict_round_trip(self, rod_config):
        restored = EnKFConfig.from_dict(rod_config.to_dict())

        np.testing.assert_array_equal(restored.cx, rod_config.cx)
        assert restored.boundary_cells == rod_config.boundary_cells
        assert restored.n_members == rod_config.n_members

    def test_unknown_key_rejected(self, rod_config):
        d = rod_config.to_dict()
        d['inflation'] = 1.1

        with pytest.raises(ConfigurationError):
            EnKFConfig.from_dict(d)

    def test_save_and_load(self, rod_config, tmp_path):
        path = str(tmp_path / 'config.json')

        save_config(rod_config, path)
        loaded = load_config(path)

        assert loaded.to_dict() == rod_config.to_dict()

    def test_load_uniform_grid(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text(json.dumps({'n_members': 4, 'n_cells': 10, 'length': 2.0,
                                    'localization_radius': 0.3, 'n_iter': 5}))

        config = load_config(str(path))

        assert config.n_cells == 10
        np.testing.assert_allclose(config.cx, uniform_grid(10, 2.0))


class TestHelpers:
    """Tests for uniform_grid and coerce_measurements."""

    def test_uniform_grid(self):
        np.testing.assert_allclose(uniform_grid(4), [0.125, 0.375, 0.625, 0.875])

    def test_uniform_grid_empty(self):
        with pytest.raises(ConfigurationError):
            uniform_grid(0)

    def test_coerce_measurements(self, rod_operator):
        table = coerce_measurements({'T': [[305.0], [306.0]]}, ('T',), 2, {'T': rod_operator})

        assert table['T'].shape == (2, 1)

    def test_coerce_single_sensor_series(self, rod_operator):
        table = coerce_measurements({'T': [305.0, 306.0, 307.0]}, ('T',), 3, {'T': rod_operator})

        np.testing.assert_array_equal(table['T'][:, 0], [305.0, 306.0, 307.0])

    def test_coerce_measurements_wrong_shape(self, rod_operator):
        with pytest.raises(ConfigurationError):
            coerce_measurements({'T': np.zeros((3, 1))}, ('T',), 2, {'T': rod_operator})

    def test_coerce_measurements_missing(self, rod_operator):
        with pytest.raises(ConfigurationError):
            coerce_measurements({}, ('T',), 2, {'T': rod_operator})


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
