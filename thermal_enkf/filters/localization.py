"""
Distance-based localization of observations around a target cell.

For every analysed cell the observations within the localization radius are
selected with a step function, the observation-error covariance is masked and
pruned to the active observations, and the set of cells those observations
constrain is derived from the measurement operator.
"""
from dataclasses import dataclass

import numpy as np

from ..errors import LocalizationEmptyError


@dataclass
class LocalDomain:
    """
    Local analysis domain of one target cell.

    Attributes
    ----------
    cell : int
        Target cell index
    mask : ndarray [n_obs]
        0/1 localization mask over all observations
    obs_id : ndarray [m]
        Active observation indices
    l_matrix : ndarray [m, m]
        Masked observation-error covariance with zero rows/columns pruned
    cell_id : ndarray [n]
        Sorted cells in the local domain (target cell included)
    """
    cell: int
    mask: np.ndarray
    obs_id: np.ndarray
    l_matrix: np.ndarray
    cell_id: np.ndarray

    @property
    def target_row(self) -> int:
        """Row of the target cell within cell_id."""
        return int(np.searchsorted(self.cell_id, self.cell))


def heaviside(x):
    """Step function with heaviside(0) = 1, so that distance == radius is included."""
    return np.heaviside(x, 1.0)


def localization_mask(cell, obs_coords, cx, radius, decimals=5):
    """
    Step-function mask of the observations within radius of a cell.

    Parameters
    ----------
    cell : int
        Target cell index
    obs_coords : ndarray [n_obs]
        Spatial coordinate of each observation
    cx : ndarray [N]
        Cell coordinate map
    radius : float
        Localization radius
    decimals : int
        Rounding applied to radius - distance before the step, so that
        observations at exactly the radius are not lost to round-off

    Returns
    -------
    ndarray [n_obs]
        1.0 for observations with distance <= radius, else 0.0
    """
    distance = np.abs(cx[cell] - np.asarray(obs_coords, dtype=float))
    return heaviside(np.round(radius - distance, decimals))


def prune_zero(matrix):
    """
    Remove rows and columns that are entirely zero.

    An index is removed only when both its row and its column are all zero,
    so the result of a square matrix stays square.

    Returns
    -------
    pruned : ndarray [m, m]
    keep : ndarray [m]
        Indices of the retained rows/columns
    """
    nonzero = np.any(matrix != 0, axis=1) | np.any(matrix != 0, axis=0)
    keep = np.flatnonzero(nonzero)
    return matrix[np.ix_(keep, keep)], keep


def localize(cell, operator, cx, radius, decimals=5):
    """
    Build the local analysis domain of a target cell.

    Parameters
    ----------
    cell : int
        Target cell index
    operator : ObservationOperator
        Observation network of the analysed variable
    cx : ndarray [N]
        Cell coordinate map
    radius : float
        Localization radius
    decimals : int
        Rounding of the step-function argument

    Returns
    -------
    LocalDomain

    Raises
    ------
    LocalizationEmptyError
        If no observation with nonzero error covariance lies within radius
    """
    obs_coords = cx[operator.obs_cells]
    mask = localization_mask(cell, obs_coords, cx, radius, decimals)

    masked_R = np.outer(mask, mask) * operator.R
    l_matrix, obs_id = prune_zero(masked_R)
    if len(obs_id) == 0:
        raise LocalizationEmptyError(cell)

    constrained = np.flatnonzero(np.any(operator.C[obs_id] != 0, axis=0))
    cell_id = np.union1d(constrained, [cell]).astype(int)

    return LocalDomain(cell=int(cell), mask=mask, obs_id=obs_id,
                       l_matrix=l_matrix, cell_id=cell_id)
