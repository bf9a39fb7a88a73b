"""
Localized EnKF time loop.

Drives forecast and analysis over the assimilation cycles:

    INITIALIZED -> (FORECASTING -> ANALYZING) x n_iter -> DONE

A forecast failure, an unstable local solve under the 'abort' policy, a bad
measurement or exhausted noise redraws inside a cycle end the run in FAILED;
a cancellation ends it in CANCELLED. The history up to the last completed
cycle is returned with the cycle and cause of the failure.
"""
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Union

import numpy as np

from ..config import coerce_measurements
from ..ensemble import EnsembleState, add_noise, initial_state
from ..errors import ConfigurationError, ForecastFailure, NumericalInstabilityError
from ..forecast.base import ForecastCancelled, forecast_ensemble
from .common import perturb_observations
from .enkf import AnalysisDiagnostics, analysis_step

logger = logging.getLogger(__name__)


class FilterState(Enum):
    INITIALIZED = 'initialized'
    FORECASTING = 'forecasting'
    ANALYZING = 'analyzing'
    DONE = 'done'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


@dataclass
class AssimilationResult:
    """
    Output of a localized EnKF run.

    Attributes
    ----------
    history : dict of str -> ndarray [N, k]
        Ensemble mean per variable; column 0 is the initial mean, column c
        the analysis mean of cycle c
    status : FilterState
        DONE, FAILED or CANCELLED
    completed_cycles : int
        Number of fully completed cycles
    ensemble : EnsembleState
        Ensemble after the last completed cycle
    failed_cycle : int, optional
        Cycle that failed or was cancelled
    error : Exception, optional
        Cause of the failure
    diagnostics : list of dict
        Per-cycle {name: AnalysisDiagnostics}
    runtime : float
        Wall-clock seconds
    """
    history: Dict[str, np.ndarray]
    status: FilterState
    completed_cycles: int
    ensemble: EnsembleState
    failed_cycle: Optional[int] = None
    error: Optional[BaseException] = None
    diagnostics: List[Dict[str, AnalysisDiagnostics]] = field(default_factory=list)
    runtime: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is FilterState.DONE

    def failure_message(self) -> str:
        if self.ok:
            return ''
        return f"cycle {self.failed_cycle} {self.status.value}: {self.error}"


def _transition(current, new, k=None):
    if k is None:
        logger.info("Filter state %s -> %s", current.value, new.value)
    else:
        logger.debug("Cycle %d: %s -> %s", k, current.value, new.value)
    return new


def _measurement_source(measurements, config, operators):
    """Return a callable k, t -> {name: y [n_obs]} for either input form."""
    if callable(measurements):
        def source(k, t):
            ys = measurements(k, t)
            out = {}
            for name in config.variables:
                y = np.asarray(ys[name], dtype=float)
                if y.shape != (operators[name].n_obs,):
                    raise ConfigurationError(
                        f"measurement of '{name}' at cycle {k} has shape {y.shape}, "
                        f"expected {(operators[name].n_obs,)}")
                out[name] = y
            return out
        return source

    if config.n_iter == 0:
        return lambda k, t: {}
    table = coerce_measurements(measurements, config.variables, config.n_iter, operators)
    return lambda k, t: {name: ys[k - 1] for name, ys in table.items()}


def _base_states(base_state, config):
    if isinstance(base_state, Mapping):
        return base_state
    if len(config.variables) != 1:
        raise ConfigurationError("a mapping of base states is required for several variables")
    return {config.variables[0]: base_state}


def _check_ensemble(ensemble, config):
    for name in config.variables:
        if name not in ensemble.members:
            raise ConfigurationError(f"initial ensemble has no variable '{name}'")
        shape = ensemble.members[name].shape
        if shape != (config.n_cells, config.n_members):
            raise ConfigurationError(
                f"initial ensemble of '{name}' has shape {shape}, "
                f"expected {(config.n_cells, config.n_members)}")


def forecast_cycle(state, forecast, config, rng, cancel_event=None):
    """
    Advance the ensemble through the solver_runs sub-steps of one cycle.

    After each sub-step process noise (config.process_std percent, zero by
    default) is added and the boundary is re-enforced.
    """
    for s in range(config.solver_runs):
        forecast_ensemble(forecast, state, config.dt, n_workers=config.n_workers,
                          cancel_event=cancel_event)
        for name in config.variables:
            state.members[name] = add_noise(
                state.members[name], config.process_std, rng,
                boundary_cells=config.boundary_cells,
                boundary_value=config.boundary_for(name),
                reference_magnitude=config.reference_magnitude,
                negative_policy=config.negative_policy,
            )
    return state


def analysis_cycle(state, operators, ys, config, rng):
    """
    Analyse every variable of a forecast ensemble.

    The perturbed observations of a variable are drawn once here and shared by
    all of its local analyses. The ensemble is only replaced once every
    variable has been analysed.

    Returns
    -------
    means : dict of str -> ndarray [N]
    diagnostics : dict of str -> AnalysisDiagnostics
    """
    q = config.n_members
    updated, means, diagnostics = {}, {}, {}
    for name in config.variables:
        operator = operators[name]
        if config.perturb_observations:
            y_pert = perturb_observations(ys[name], operator.R, q, rng)
        else:
            y_pert = np.repeat(np.asarray(ys[name], dtype=float)[:, None], q, axis=1)

        updated[name], means[name], _, diagnostics[name] = analysis_step(
            state.members[name], operator, y_pert, config)

    state.members.update(updated)
    return means, diagnostics


def localized_enkf(config, operators, forecast, base_state,
                   measurements: Union[Mapping[str, np.ndarray], Callable],
                   rng=None, cancel_event=None, initial_ensemble=None):
    """
    Localized stochastic Ensemble Kalman Filter.

    Parameters
    ----------
    config : EnKFConfig
    operators : mapping of str -> ObservationOperator
    forecast : ForecastModel
    base_state : ndarray [N] or mapping of str -> ndarray [N]
        Base state around which the initial ensemble is drawn
    measurements : mapping of str -> ndarray [n_iter, n_obs], or callable
        Precomputed measurements per cycle, or ``f(k, t) -> {name: y}``
    rng : np.random.Generator, optional
        Defaults to default_rng(config.seed)
    cancel_event : threading.Event, optional
        Checked between cycles and between member forecasts
    initial_ensemble : EnsembleState, optional
        Use this ensemble instead of drawing one from base_state

    Returns
    -------
    AssimilationResult

    Raises
    ------
    ConfigurationError
        On invalid configuration, before any cycle runs. Configuration errors
        raised inside a cycle end the run as FAILED instead.
    """
    config.validate(operators)
    if rng is None:
        rng = np.random.default_rng(config.seed)
    source = _measurement_source(measurements, config, operators)

    if initial_ensemble is not None:
        _check_ensemble(initial_ensemble, config)
        state = initial_ensemble.copy()
    else:
        state = initial_state(config, _base_states(base_state, config), rng)

    start = time.time()
    status = FilterState.INITIALIZED
    logger.info("Localized EnKF: %d members, %d cells, %d cycles, radius %g, assembly '%s'",
                config.n_members, config.n_cells, config.n_iter,
                config.localization_radius, config.assembly)

    history = {name: [m] for name, m in state.mean().items()}
    all_diagnostics = []
    last_good = state.copy()
    failed_cycle, error = None, None

    for k in range(1, config.n_iter + 1):
        if cancel_event is not None and cancel_event.is_set():
            status = _transition(status, FilterState.CANCELLED)
            failed_cycle, error = k, ForecastCancelled(f"cancelled before cycle {k}")
            break

        try:
            status = _transition(status, FilterState.FORECASTING, k)
            forecast_cycle(state, forecast, config, rng, cancel_event)

            status = _transition(status, FilterState.ANALYZING, k)
            ys = source(k, state.t)
            means, diagnostics = analysis_cycle(state, operators, ys, config, rng)
        except ForecastCancelled as exc:
            logger.warning("Cycle %d cancelled: %s", k, exc)
            status = _transition(status, FilterState.CANCELLED)
            failed_cycle, error = k, exc
            break
        except (ForecastFailure, NumericalInstabilityError, ConfigurationError) as exc:
            logger.error("Cycle %d failed: %s", k, exc)
            status = _transition(status, FilterState.FAILED)
            failed_cycle, error = k, exc
            break

        for name, m in means.items():
            history[name].append(m)
        all_diagnostics.append(diagnostics)
        last_good = state.copy()

        n_skipped = sum(len(d.skipped_cells) for d in diagnostics.values())
        logger.info("Cycle %d/%d done at t=%g (%d cells skipped)",
                    k, config.n_iter, state.t, n_skipped)
    else:
        status = _transition(status, FilterState.DONE)

    return AssimilationResult(
        history={name: np.column_stack(cols) for name, cols in history.items()},
        status=status,
        completed_cycles=len(all_diagnostics),
        ensemble=last_good,
        failed_cycle=failed_cycle,
        error=error,
        diagnostics=all_diagnostics,
        runtime=time.time() - start,
    )
