"""Common linear-algebra utilities for the ensemble update."""
import numpy as np
from scipy import linalg as sla

from ..errors import NumericalInstabilityError


def sample_covariance(x):
    """
    Unbiased sample covariance across the ensemble dimension.

    Parameters
    ----------
    x : ndarray [n, q]
        Ensemble restricted to n cells

    Returns
    -------
    ndarray [n, n]
        X @ X.T / (q - 1) with X the ensemble anomalies
    """
    q = x.shape[1]
    X = x - np.mean(x, axis=1, keepdims=True)
    return X @ X.T / (q - 1)


def _solve_lu(S, B):
    """Solve S @ X = B using LU factorization (np.linalg.solve)."""
    return np.linalg.solve(S, B)


def _solve_cholesky(S, B):
    """Solve S @ X = B using Cholesky factorization (assumes S is SPD)."""
    c, lower = sla.cho_factor(S, lower=True)
    return sla.cho_solve((c, lower), B)


_SOLVERS = {
    'lu': _solve_lu,
    'cholesky': _solve_cholesky,
}


def solve_gain(PHt, S, solver='cholesky', max_condition=1e12, cell=None):
    """
    Kalman gain K = PHt @ S^{-1} by a linear solve.

    Parameters
    ----------
    PHt : ndarray [n, m]
        P @ H.T
    S : ndarray [m, m]
        Innovation covariance H P H^T + R
    solver : str
        'cholesky' or 'lu'
    max_condition : float
        Largest accepted condition number of S
    cell : int, optional
        Cell index reported in errors

    Returns
    -------
    K : ndarray [n, m]
    cond : float
        Condition number of S

    Raises
    ------
    NumericalInstabilityError
        If S is non-finite, singular or worse conditioned than max_condition
    """
    if not np.all(np.isfinite(S)):
        raise NumericalInstabilityError(
            f"innovation covariance of cell {cell} is not finite", cell=cell)

    cond = np.linalg.cond(S)
    if not np.isfinite(cond) or cond > max_condition:
        raise NumericalInstabilityError(
            f"innovation covariance of cell {cell} is ill-conditioned (cond={cond:.3g})",
            cell=cell, condition_number=cond)

    try:
        # S is symmetric, so K^T = S^{-1} (PHt)^T
        K = _SOLVERS[solver](S, PHt.T).T
    except (np.linalg.LinAlgError, sla.LinAlgError) as exc:
        raise NumericalInstabilityError(
            f"gain solve failed for cell {cell}: {exc}",
            cell=cell, condition_number=cond) from exc

    return K, cond


def perturb_observations(y, R, n_members, rng=None):
    """
    Perturbed observations for the stochastic EnKF.

    Parameters
    ----------
    y : ndarray [m]
        Measurement vector
    R : ndarray [m, m]
        Observation-error covariance
    n_members : int
        Ensemble size q
    rng : np.random.Generator, optional

    Returns
    -------
    y_pert : ndarray [m, q]
        y + eps_j, eps_j ~ N(0, R), one column per member
    """
    y = np.asarray(y, dtype=float)
    if rng is None:
        rng = np.random.default_rng()
    if not np.any(R):
        return np.repeat(y[:, None], n_members, axis=1)
    noise = rng.multivariate_normal(np.zeros(len(y)), R, size=n_members)
    return y[:, None] + noise.T
