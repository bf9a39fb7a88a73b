"""Unit tests for the external-solver adapter, using a small Python stand-in solver."""
import threading
import textwrap

import numpy as np
import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', '..'))

from thermal_enkf.config import EnKFConfig
from thermal_enkf.errors import ForecastFailure
from thermal_enkf.filters import localized_enkf, FilterState
from thermal_enkf.forecast import ForecastModel, ForecastCancelled, SubprocessForecast
from thermal_enkf.observations import ObservationOperator
from thermal_enkf.utils import field_io

FAKE_SOLVER = textwrap.dedent('''
    """Copies every field from startTime to endTime, adding 1 to each value."""
    import os
    import re
    import sys
    import time

    mode = sys.argv[1] if len(sys.argv) > 1 else 'ok'
    if mode == 'fail':
        print('boom: negative temperature')
        sys.exit(3)
    if mode == 'sleep':
        time.sleep(30)

    with open(os.path.join('system', 'controlDict')) as f:
        entries = dict(re.findall(r'^\\s*(\\w+)\\s+([^;]+);', f.read(), re.M))
    start, end = entries['startTime'].strip(), entries['endTime'].strip()
    print('advancing', start, '->', end)
    if mode == 'nooutput':
        sys.exit(0)

    def shift(match):
        values = [float(v) + 1.0 for v in match.group(2).split()]
        return match.group(1) + '\\n'.join(repr(v) for v in values) + match.group(3)

    os.makedirs(end, exist_ok=True)
    for name in os.listdir(start):
        with open(os.path.join(start, name)) as f:
            body = f.read()
        body = re.sub(r'(List<scalar>\\s*\\d+\\s*\\()([^)]*)(\\))', shift, body)
        with open(os.path.join(end, name), 'w') as f:
            f.write(body)
''')


class ShiftForecast(ForecastModel):
    """In-process equivalent of the stand-in solver."""

    def advance(self, state, t, dt, member, cancel_event=None):
        return {name: x + 1.0 for name, x in state.items()}


@pytest.fixture
def solver_script(tmp_path):
    path = tmp_path / 'fake_solver.py'
    path.write_text(FAKE_SOLVER)
    return str(path)


def _forecast(tmp_path, script, mode='ok', **kwargs):
    return SubprocessForecast([sys.executable, script, mode], str(tmp_path / 'runs'), **kwargs)


class TestSubprocessForecast:
    """Tests for a single member run."""

    def test_advance(self, tmp_path, solver_script):
        model = _forecast(tmp_path, solver_script)
        x = np.array([300.0, 301.25, 302.5, 300.0])

        out = model.advance({'T': x}, 0.0, 0.5, member=0)

        np.testing.assert_array_equal(out['T'], x + 1.0)
        directory = model.member_dir(0)
        assert os.path.exists(os.path.join(directory, '0', 'T'))
        assert os.path.exists(os.path.join(directory, '0.5', 'T'))
        entries = field_io.read_control_dict(directory)
        assert entries['startTime'] == '0'
        assert entries['endTime'] == '0.5'
        assert entries['deltaT'] == '0.5'
        with open(os.path.join(directory, 'solver.log')) as f:
            assert 'advancing 0 -> 0.5' in f.read()

    def test_members_use_separate_directories(self, tmp_path, solver_script):
        model = _forecast(tmp_path, solver_script)

        model.advance({'T': np.zeros(3)}, 0.0, 1.0, member=0)
        model.advance({'T': np.ones(3)}, 0.0, 1.0, member=1)

        np.testing.assert_array_equal(field_io.read_field(model.member_dir(0), 1.0, 'T'), 1.0)
        np.testing.assert_array_equal(field_io.read_field(model.member_dir(1), 1.0, 'T'), 2.0)

    def test_case_template(self, tmp_path, solver_script):
        """The template is copied once and its other settings are preserved."""
        template = tmp_path / 'case'
        (template / 'system').mkdir(parents=True)
        (template / 'system' / 'controlDict').write_text(
            'application     laplacianFoam;\nstartTime       0;\nendTime         10;\n')
        model = _forecast(tmp_path, solver_script, case_template=str(template), solver_dt=0.01)

        model.advance({'T': np.full(3, 300.0)}, 2.0, 1.0, member=4)

        entries = field_io.read_control_dict(model.member_dir(4))
        assert entries['application'] == 'laplacianFoam'
        assert entries['startTime'] == '2'
        assert entries['endTime'] == '3'
        assert entries['deltaT'] == '0.01'
        assert 'endTime' in (template / 'system' / 'controlDict').read_text()
        assert not (template / '2').exists()

    def test_drop_input_times(self, tmp_path, solver_script):
        model = _forecast(tmp_path, solver_script, keep_times=False)

        model.advance({'T': np.zeros(3)}, 0.0, 1.0, member=0)

        assert not os.path.exists(os.path.join(model.member_dir(0), '0'))
        assert os.path.exists(os.path.join(model.member_dir(0), '1'))

    def test_nonzero_exit(self, tmp_path, solver_script):
        model = _forecast(tmp_path, solver_script, mode='fail')

        with pytest.raises(ForecastFailure) as info:
            model.advance({'T': np.zeros(3)}, 0.0, 1.0, member=2)

        assert info.value.returncode == 3
        assert info.value.member == 2
        assert 'boom' in str(info.value)

    def test_missing_output(self, tmp_path, solver_script):
        model = _forecast(tmp_path, solver_script, mode='nooutput')

        with pytest.raises(ForecastFailure):
            model.advance({'T': np.zeros(3)}, 0.0, 1.0, member=0)

    def test_missing_executable(self, tmp_path):
        model = SubprocessForecast([str(tmp_path / 'no_such_solver')], str(tmp_path / 'runs'))

        with pytest.raises(ForecastFailure):
            model.advance({'T': np.zeros(3)}, 0.0, 1.0, member=0)

    def test_timeout(self, tmp_path, solver_script):
        model = _forecast(tmp_path, solver_script, mode='sleep', timeout=0.5)

        with pytest.raises(ForecastFailure) as info:
            model.advance({'T': np.zeros(3)}, 0.0, 1.0, member=0)

        assert 'exceeded' in str(info.value)

    def test_cancel_kills_solver(self, tmp_path, solver_script):
        model = _forecast(tmp_path, solver_script, mode='sleep')
        event = threading.Event()
        timer = threading.Timer(0.3, event.set)
        timer.start()

        try:
            with pytest.raises(ForecastCancelled):
                model.advance({'T': np.zeros(3)}, 0.0, 1.0, member=0, cancel_event=event)
        finally:
            timer.cancel()


class TestSubprocessAssimilation:
    """The external solver inside the full time loop."""

    def test_matches_in_process_model(self, tmp_path, solver_script):
        N = 5
        config = EnKFConfig(n_members=3, cx=np.arange(N, dtype=float), localization_radius=1.0,
                            n_iter=2, dt=0.5, n_workers=2)
        operators = {'T': ObservationOperator.from_cells('T', [2], N)}
        base = np.full(N, 300.0)
        measurements = {'T': np.array([[302.0], [303.0]])}

        external = localized_enkf(config, operators, _forecast(tmp_path, solver_script),
                                  base, measurements, rng=np.random.default_rng(0))
        in_process = localized_enkf(config, operators, ShiftForecast(),
                                    base, measurements, rng=np.random.default_rng(0))

        assert external.status is FilterState.DONE
        assert external.history['T'].shape == (N, 3)
        np.testing.assert_allclose(external.history['T'], in_process.history['T'])
        assert os.path.isdir(os.path.join(str(tmp_path / 'runs'), 'member_2', '1'))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
