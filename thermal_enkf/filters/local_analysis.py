"""Kalman update on a single local analysis domain."""
from dataclasses import dataclass

import numpy as np

from .common import sample_covariance, solve_gain


@dataclass
class LocalCorrection:
    """Result of one local analysis."""
    cell: int
    cell_id: np.ndarray
    correction: np.ndarray
    condition_number: float


def local_analysis(x_local, H_loc, l_matrix, C_loc, y_pert_loc,
                   solver='cholesky', max_condition=1e12, cell=None):
    """
    Local EnKF analysis with perturbed observations.

    Parameters
    ----------
    x_local : ndarray [n, q]
        Forecast ensemble restricted to the local cells
    H_loc : ndarray [m, n]
        Linearized operator H[obs_id, cell_id]
    l_matrix : ndarray [m, m]
        Localized observation-error covariance
    C_loc : ndarray [m, n]
        Measurement operator C[obs_id, cell_id]
    y_pert_loc : ndarray [m, q]
        Perturbed measurements of the active observations
    solver : str
        Gain solver, 'cholesky' or 'lu'
    max_condition : float
        Largest accepted condition number of H P H^T + L
    cell : int, optional
        Target cell, reported in errors

    Returns
    -------
    correction : ndarray [n, q]
        K @ innov for every local cell and member
    cond : float
        Condition number of the innovation covariance

    Raises
    ------
    NumericalInstabilityError
        If the innovation covariance cannot be solved against
    """
    P = sample_covariance(x_local)

    # Per-member innovation
    innov = y_pert_loc - C_loc @ x_local

    # K = P H^T (H P H^T + L)^{-1}
    PHt = P @ H_loc.T
    S = H_loc @ PHt + l_matrix
    K, cond = solve_gain(PHt, S, solver=solver, max_condition=max_condition, cell=cell)

    return K @ innov, cond


def analyze_domain(ensemble, domain, operator, y_pert, solver='cholesky', max_condition=1e12):
    """
    Run local_analysis on the slice of an ensemble selected by a LocalDomain.

    Parameters
    ----------
    ensemble : ndarray [N, q]
        Forecast ensemble of one variable
    domain : LocalDomain
    operator : ObservationOperator
    y_pert : ndarray [n_obs, q]
        Perturbed measurements of all observations of the variable

    Returns
    -------
    LocalCorrection
    """
    obs_id, cell_id = domain.obs_id, domain.cell_id
    rows = np.ix_(obs_id, cell_id)
    correction, cond = local_analysis(
        ensemble[cell_id],
        operator.H[rows],
        domain.l_matrix,
        operator.C[rows],
        y_pert[obs_id],
        solver=solver,
        max_condition=max_condition,
        cell=domain.cell,
    )
    return LocalCorrection(domain.cell, cell_id, correction, cond)
