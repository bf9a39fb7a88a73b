"""Ensemble Kalman Filter (EnKF) analysis: global and localized update steps."""
import logging
from dataclasses import dataclass, field
from typing import List

import numpy as np

from ..ensemble import enforce_boundary, ensemble_mean
from ..errors import LocalizationEmptyError, NumericalInstabilityError
from .assembly import make_assembly
from .common import sample_covariance, solve_gain
from .local_analysis import analyze_domain
from .localization import localize

logger = logging.getLogger(__name__)


@dataclass
class AnalysisDiagnostics:
    """Per-variable bookkeeping of one analysis pass."""
    variable: str = ''
    n_analyzed: int = 0
    empty_cells: List[int] = field(default_factory=list)
    skipped_cells: List[int] = field(default_factory=list)
    cond_nums: List[float] = field(default_factory=list)

    @property
    def max_cond(self) -> float:
        return max(self.cond_nums) if self.cond_nums else float('nan')


def enkf_update(ensemble, H, R, y_pert, solver='cholesky', max_condition=1e12):
    """
    Global stochastic EnKF update without localization.

    Parameters
    ----------
    ensemble : ndarray [N, q]
        Forecast ensemble
    H : ndarray [m, N]
        Observation matrix
    R : ndarray [m, m]
        Observation noise covariance
    y_pert : ndarray [m, q]
        Perturbed observations, one column per member

    Returns
    -------
    ensemble_post : ndarray [N, q]
        Analysis ensemble
    m_post : ndarray [N]
        Analysis mean
    """
    P = sample_covariance(ensemble)
    PHt = P @ H.T
    K, _ = solve_gain(PHt, H @ PHt + R, solver=solver, max_condition=max_condition)

    ensemble_post = ensemble + K @ (y_pert - H @ ensemble)
    return ensemble_post, ensemble_mean(ensemble_post)


def apply_correction(ensemble, phi, boundary_cells=(), boundary_value=0.0):
    """
    Add a full-state correction to the forecast ensemble.

    Parameters
    ----------
    ensemble : ndarray [N, q]
        Forecast ensemble
    phi : ndarray [N, q]
        Correction assembled from the local analyses
    boundary_cells : iterable of int
        Pinned cells, reset after the update
    boundary_value : float

    Returns
    -------
    analysis : ndarray [N, q]
    mean : ndarray [N]
        Ensemble mean, the estimate of the current cycle
    """
    analysis = enforce_boundary(ensemble + phi, boundary_cells, boundary_value)
    return analysis, ensemble_mean(analysis)


def analysis_step(ensemble, operator, y_pert, config, assembly=None):
    """
    Localized EnKF analysis of one state variable.

    For every interior cell: localize, solve the local Kalman update and fold
    the correction into phi through the configured assembly strategy. Cells
    without observations in range keep a zero correction.

    Parameters
    ----------
    ensemble : ndarray [N, q]
        Forecast ensemble of the variable
    operator : ObservationOperator
        Observation network of the variable
    y_pert : ndarray [n_obs, q]
        Perturbed measurements, drawn once for the whole pass
    config : EnKFConfig
    assembly : str or class, optional
        Overrides ``config.assembly``

    Returns
    -------
    analysis : ndarray [N, q]
    mean : ndarray [N]
    phi : ndarray [N, q]
    diagnostics : AnalysisDiagnostics

    Raises
    ------
    NumericalInstabilityError
        Under the 'abort' policy, on the first unstable local solve
    """
    n_cells, n_members = ensemble.shape
    interior = config.interior_cells()
    updatable = np.zeros(n_cells, dtype=bool)
    updatable[interior] = True

    strategy = make_assembly(assembly or config.assembly, n_cells, n_members, updatable)
    diagnostics = AnalysisDiagnostics(variable=operator.name)

    for n in interior:
        try:
            domain = localize(n, operator, config.cx, config.localization_radius,
                              decimals=config.localization_decimals)
        except LocalizationEmptyError:
            diagnostics.empty_cells.append(int(n))
            continue

        try:
            local = analyze_domain(ensemble, domain, operator, y_pert,
                                   solver=config.solver, max_condition=config.max_condition)
        except NumericalInstabilityError as exc:
            if config.instability_policy == 'abort':
                logger.error("Local analysis of '%s' failed at cell %d: %s", operator.name, n, exc)
                raise
            logger.warning("Skipping cell %d of '%s' (zero correction): %s", n, operator.name, exc)
            diagnostics.skipped_cells.append(int(n))
            continue

        strategy.add(local, domain)
        diagnostics.n_analyzed += 1
        diagnostics.cond_nums.append(local.condition_number)

    phi = strategy.result()
    analysis, mean = apply_correction(ensemble, phi, config.boundary_cells,
                                      config.boundary_for(operator.name))

    logger.debug("Analysis of '%s': %d cells analysed, %d empty, %d skipped, max cond %.3g",
                 operator.name, diagnostics.n_analyzed, len(diagnostics.empty_cells),
                 len(diagnostics.skipped_cells), diagnostics.max_cond)
    return analysis, mean, phi, diagnostics
