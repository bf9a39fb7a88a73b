"""
Metrics for evaluating filter performance.
"""
import numpy as np


def compute_mse(estimated, true, cells=None, axis=None):
    """
    Mean squared error of a field estimate.

    Parameters
    ----------
    estimated : ndarray [..., N]
        Estimated field(s)
    true : ndarray [..., N]
        True field(s)
    cells : array_like of int, optional
        Restrict the error to these cells (last axis)
    axis : int, optional
        Axis to average over; all entries when None

    Returns
    -------
    float or ndarray
    """
    err = np.asarray(estimated, dtype=float) - np.asarray(true, dtype=float)
    if cells is not None:
        err = err[..., cells]
    return np.mean(err**2, axis=axis)


def compute_rmse(estimated, true, cells=None, axis=None):
    """Root of compute_mse."""
    return np.sqrt(compute_mse(estimated, true, cells, axis))


def rmse_per_cycle(history, xs, cells=None):
    """
    RMSE of a filter history against the truth at every cycle.

    A run that stopped early has fewer history columns than the truth has
    rows; the truth is cut to the length of the history.

    Parameters
    ----------
    history : ndarray [N, k]
        Ensemble-mean history, one column per cycle
    xs : ndarray [T + 1, N]
        True states, T + 1 >= k
    cells : ndarray, optional
        Restrict the error to these cells (e.g. interior cells)

    Returns
    -------
    ndarray [k]
    """
    n_cols = history.shape[1]
    if len(xs) < n_cols:
        raise ValueError(f"truth has {len(xs)} states, history has {n_cols} columns")
    return compute_rmse(history.T, xs[:n_cols], cells, axis=1)


def ensemble_spread(ensemble):
    """
    Ensemble spread: root of the mean unbiased member variance.

    Parameters
    ----------
    ensemble : ndarray [N, q]

    Returns
    -------
    float
    """
    return np.sqrt(np.mean(np.var(ensemble, axis=1, ddof=1)))


def stability_summary(cond_nums, mse=None):
    """
    Generate summary statistics for numerical stability metrics.

    Parameters
    ----------
    cond_nums : ndarray
        Condition numbers of the local innovation covariances
    mse : float, optional
        Mean squared error

    Returns
    -------
    dict
        Summary statistics
    """
    cond_nums = np.asarray(cond_nums, dtype=float)
    if cond_nums.size == 0:
        summary = {'mean_cond': float('nan'), 'max_cond': float('nan')}
    else:
        summary = {
            'mean_cond': np.mean(cond_nums),
            'max_cond': np.max(cond_nums),
        }
    if mse is not None:
        summary['mse'] = mse
    return summary
