"""Per-variable observation operators (obs cells, C, H, R)."""
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .errors import ConfigurationError


@dataclass
class ObservationOperator:
    """
    Observation network of one state variable.

    Attributes
    ----------
    name : str
        State variable name
    obs_cells : ndarray [n_obs]
        Cell index observed by each observation
    C : ndarray [n_obs, N]
        Measurement operator mapping cell space to observation space
    H : ndarray [n_obs, N]
        Linearized operator used in the gain (equals C for linear sensors)
    R : ndarray [n_obs, n_obs]
        Observation-error covariance
    """
    name: str
    obs_cells: np.ndarray
    C: np.ndarray
    H: np.ndarray
    R: np.ndarray

    @property
    def n_obs(self) -> int:
        return len(self.obs_cells)

    @property
    def n_cells(self) -> int:
        return self.C.shape[1]

    @classmethod
    def from_cells(cls, name: str, obs_cells: Sequence[int], n_cells: int,
                   R: Optional[np.ndarray] = None, std: float = 1.0,
                   H: Optional[np.ndarray] = None) -> 'ObservationOperator':
        """
        Build a point-sensor operator: one unit entry per observation row.

        Parameters
        ----------
        name : str
            State variable name
        obs_cells : sequence of int
            Observed cell indices
        n_cells : int
            Number of cells N
        R : ndarray [n_obs, n_obs], optional
            Observation-error covariance. Defaults to std**2 * I.
        std : float
            Measurement noise standard deviation used when R is None
        H : ndarray [n_obs, N], optional
            Linearized operator. Defaults to C.
        """
        obs_cells = np.asarray(obs_cells, dtype=int)
        n_obs = len(obs_cells)
        if np.any(obs_cells < 0) or np.any(obs_cells >= n_cells):
            raise ConfigurationError(
                f"observation cells for '{name}' must lie in [0, {n_cells})")

        C = np.zeros((n_obs, n_cells))
        C[np.arange(n_obs), obs_cells] = 1.0

        if R is None:
            R = (std ** 2) * np.eye(n_obs)

        return cls(name=name, obs_cells=obs_cells, C=C,
                   H=C.copy() if H is None else np.asarray(H, dtype=float),
                   R=np.asarray(R, dtype=float))

    def validate(self, n_cells: int) -> None:
        """Check that C, H and R agree with each other and with N."""
        n_obs = self.n_obs
        if self.C.shape != (n_obs, n_cells):
            raise ConfigurationError(
                f"C for '{self.name}' has shape {self.C.shape}, expected {(n_obs, n_cells)}")
        if self.H.shape != (n_obs, n_cells):
            raise ConfigurationError(
                f"H for '{self.name}' has shape {self.H.shape}, expected {(n_obs, n_cells)}")
        if self.R.shape != (n_obs, n_obs):
            raise ConfigurationError(
                f"R for '{self.name}' has shape {self.R.shape}, expected {(n_obs, n_obs)}")
        if np.any(np.count_nonzero(self.C, axis=1) == 0):
            raise ConfigurationError(f"C for '{self.name}' has an observation row with no cell")
        if not np.allclose(self.R, self.R.T):
            raise ConfigurationError(f"R for '{self.name}' is not symmetric")
        if np.any(np.diag(self.R) < 0):
            raise ConfigurationError(f"R for '{self.name}' has negative variances")

    def observe(self, x):
        """Apply C to a state vector [N] or ensemble [N, q]."""
        return self.C @ x
