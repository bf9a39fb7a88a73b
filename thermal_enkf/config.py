"""
Filter configuration.

Holds every recognized option of the assimilation run and validates the
dimension contracts between the ensemble, the cell map and the observation
operators before the time loop starts.
"""
import json
from dataclasses import dataclass, fields, asdict
from typing import Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import ConfigurationError
from .observations import ObservationOperator

INSTABILITY_POLICIES = ('skip', 'abort')
ASSEMBLY_STRATEGIES = ('target', 'neighborhood', 'averaged')
NEGATIVE_POLICIES = ('resample', 'clip', 'reject')
SOLVERS = ('cholesky', 'lu')


@dataclass
class EnKFConfig:
    """Configuration of a localized EnKF run."""
    n_members: int
    cx: np.ndarray
    localization_radius: float
    n_iter: int
    variables: Tuple[str, ...] = ('T',)
    solver_runs: int = 1
    dt: float = 1.0
    t0: float = 0.0
    boundary_cells: Optional[Tuple[int, ...]] = None
    boundary_value: Union[float, Dict[str, float]] = 300.0
    sample_std: float = 1.0
    process_std: float = 0.0
    measurement_std: float = 1.0
    reference_magnitude: float = 1.0
    perturb_observations: bool = True
    instability_policy: str = 'skip'
    assembly: str = 'target'
    negative_policy: str = 'resample'
    solver: str = 'cholesky'
    max_condition: float = 1e12
    localization_decimals: int = 5
    n_workers: int = 0
    seed: int = 42

    def __post_init__(self):
        self.cx = np.asarray(self.cx, dtype=float)
        self.variables = tuple(self.variables)
        if self.boundary_cells is None:
            self.boundary_cells = (0, len(self.cx) - 1)
        self.boundary_cells = tuple(int(b) for b in self.boundary_cells)

    @property
    def n_cells(self) -> int:
        return len(self.cx)

    def boundary_for(self, name: str) -> float:
        """Boundary value of a given state variable."""
        if isinstance(self.boundary_value, Mapping):
            try:
                return float(self.boundary_value[name])
            except KeyError:
                raise ConfigurationError(f"no boundary value configured for '{name}'")
        return float(self.boundary_value)

    def interior_cells(self) -> np.ndarray:
        """Cell indices that take part in the analysis."""
        mask = np.ones(self.n_cells, dtype=bool)
        mask[list(self.boundary_cells)] = False
        return np.flatnonzero(mask)

    def validate(self, operators: Optional[Mapping] = None) -> None:
        """
        Check option values and dimension contracts.

        Parameters
        ----------
        operators : mapping of str -> ObservationOperator, optional
            Observation operators keyed by variable name

        Raises
        ------
        ConfigurationError
            On any invalid option or mismatched dimension
        """
        if self.n_members < 2:
            raise ConfigurationError(
                f"ensemble size must be at least 2 to estimate a covariance, got {self.n_members}")
        if self.cx.ndim != 1 or self.n_cells < 1:
            raise ConfigurationError("cell coordinate map must be a non-empty 1-D array")
        if not np.all(np.isfinite(self.cx)):
            raise ConfigurationError("cell coordinates must be finite")
        if self.localization_radius < 0:
            raise ConfigurationError("localization radius must be non-negative")
        if self.n_iter < 0:
            raise ConfigurationError("number of iterations must be non-negative")
        if self.solver_runs < 1:
            raise ConfigurationError("solver_runs must be at least 1")
        if self.dt <= 0:
            raise ConfigurationError("forecast time step must be positive")
        if not self.variables:
            raise ConfigurationError("at least one state variable is required")
        if len(set(self.variables)) != len(self.variables):
            raise ConfigurationError("state variable names must be unique")
        for b in self.boundary_cells:
            if not 0 <= b < self.n_cells:
                raise ConfigurationError(f"boundary cell {b} outside [0, {self.n_cells})")
        for name in self.variables:
            self.boundary_for(name)
        if min(self.sample_std, self.process_std, self.measurement_std) < 0:
            raise ConfigurationError("noise standard deviations must be non-negative")
        if self.instability_policy not in INSTABILITY_POLICIES:
            raise ConfigurationError(f"instability_policy must be one of {INSTABILITY_POLICIES}")
        if self.assembly not in ASSEMBLY_STRATEGIES:
            raise ConfigurationError(f"assembly must be one of {ASSEMBLY_STRATEGIES}")
        if self.negative_policy not in NEGATIVE_POLICIES:
            raise ConfigurationError(f"negative_policy must be one of {NEGATIVE_POLICIES}")
        if self.solver not in SOLVERS:
            raise ConfigurationError(f"solver must be one of {SOLVERS}")
        if self.n_workers < 0:
            raise ConfigurationError("n_workers must be non-negative")

        if operators is None:
            return
        missing = [name for name in self.variables if name not in operators]
        if missing:
            raise ConfigurationError(f"no observation operator for variables {missing}")
        for name in self.variables:
            operators[name].validate(self.n_cells)

    def make_operators(self, obs_cells) -> Dict[str, ObservationOperator]:
        """
        Point-sensor operators with R = measurement_std**2 * I.

        Parameters
        ----------
        obs_cells : sequence of int or mapping of str -> sequence of int
            Observed cells, shared by all variables or given per variable
        """
        operators = {}
        for name in self.variables:
            cells = obs_cells[name] if isinstance(obs_cells, Mapping) else obs_cells
            operators[name] = ObservationOperator.from_cells(
                name, cells, self.n_cells, std=self.measurement_std)
        return operators

    def to_dict(self) -> Dict:
        """JSON-serializable view of the configuration."""
        d = asdict(self)
        d['cx'] = self.cx.tolist()
        d['variables'] = list(self.variables)
        d['boundary_cells'] = list(self.boundary_cells)
        return d

    @classmethod
    def from_dict(cls, d: Mapping) -> 'EnKFConfig':
        known = {f.name for f in fields(cls)}
        unknown = set(d) - known
        if unknown:
            raise ConfigurationError(f"unrecognized configuration options: {sorted(unknown)}")
        return cls(**d)


def uniform_grid(n_cells: int, length: float = 1.0) -> np.ndarray:
    """Cell-centre coordinates of a uniform 1-D grid of given length."""
    if n_cells < 1:
        raise ConfigurationError("n_cells must be positive")
    dx = length / n_cells
    return (np.arange(n_cells) + 0.5) * dx


def load_config(path: str) -> EnKFConfig:
    """
    Load an EnKFConfig from a JSON file.

    The file holds the dataclass fields by name. Instead of ``cx`` it may give
    ``n_cells`` and optionally ``length`` for a uniform grid.
    """
    with open(path, 'r') as f:
        d = json.load(f)

    if 'cx' not in d and 'n_cells' in d:
        d['cx'] = uniform_grid(d.pop('n_cells'), d.pop('length', 1.0))
    return EnKFConfig.from_dict(d)


def save_config(config: EnKFConfig, path: str) -> None:
    with open(path, 'w') as f:
        json.dump(config.to_dict(), f, indent=2)


def coerce_measurements(measurements: Mapping[str, Sequence], variables: Sequence[str],
                        n_iter: int, operators: Mapping) -> Dict[str, np.ndarray]:
    """Validate a precomputed measurement table {name: [n_iter, n_obs]}."""
    table = {}
    for name in variables:
        if name not in measurements:
            raise ConfigurationError(f"no measurements supplied for '{name}'")
        ys = np.asarray(measurements[name], dtype=float)
        expected = (n_iter, operators[name].n_obs)
        # 1-D input: a series of a single sensor, or one cycle of several sensors
        ys = ys[:, None] if ys.ndim == 1 and expected[1] == 1 else np.atleast_2d(ys)
        if ys.shape != expected:
            raise ConfigurationError(
                f"measurements for '{name}' have shape {ys.shape}, expected {expected}")
        table[name] = ys
    return table
