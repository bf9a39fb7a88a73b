"""
Ensemble state, initial ensemble generation and boundary handling.

Ensembles are stored per state variable as ndarray [N, q] (cells x members).
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional

import numpy as np

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class EnsembleState:
    """
    Ensemble owned by the time loop for the duration of one cycle.

    Attributes
    ----------
    members : dict of str -> ndarray [N, q]
        Ensemble matrix per state variable
    t : float
        Simulation time of the ensemble
    """
    members: Dict[str, np.ndarray] = field(default_factory=dict)
    t: float = 0.0

    @property
    def n_members(self) -> int:
        return next(iter(self.members.values())).shape[1]

    @property
    def variables(self):
        return tuple(self.members)

    def member_state(self, j: int) -> Dict[str, np.ndarray]:
        """Copy of all variables of member j, {name: ndarray [N]}."""
        return {name: x[:, j].copy() for name, x in self.members.items()}

    def set_member_state(self, j: int, state: Mapping[str, np.ndarray]) -> None:
        for name, x in self.members.items():
            x[:, j] = state[name]

    def mean(self) -> Dict[str, np.ndarray]:
        return {name: ensemble_mean(x) for name, x in self.members.items()}

    def copy(self) -> 'EnsembleState':
        return EnsembleState({name: x.copy() for name, x in self.members.items()}, self.t)


def ensemble_mean(ensemble):
    """Arithmetic mean across the ensemble dimension, ndarray [N]."""
    return np.mean(ensemble, axis=1)


def enforce_boundary(ensemble, boundary_cells: Iterable[int], boundary_value: float):
    """Pin boundary rows of an ensemble [N, q] (or a state [N]) in place."""
    idx = list(boundary_cells)
    if idx:
        ensemble[idx] = boundary_value
    return ensemble


def _noise_scale(base, std_percent, reference_magnitude):
    """Per-cell standard deviation: percent of |base|, reference where base is zero."""
    magnitude = np.where(base == 0.0, reference_magnitude, np.abs(base))
    return magnitude * std_percent / 100.0


def _draw(base, scale, n_members, rng):
    return base[:, None] + scale[:, None] * rng.standard_normal((len(base), n_members))


def _apply_negative_policy(x, base, scale, rng, policy, max_attempts):
    if policy == 'clip':
        np.maximum(x, 0.0, out=x)
        return x

    for _ in range(max_attempts):
        bad = x < 0.0
        if not np.any(bad):
            return x
        if policy == 'resample':
            rows, cols = np.nonzero(bad)
            x[rows, cols] = base[rows] + scale[rows] * rng.standard_normal(len(rows))
        elif policy == 'reject':
            cols = np.flatnonzero(np.any(bad, axis=0))
            x[:, cols] = _draw(base, scale, len(cols), rng)
        else:
            raise ConfigurationError(f"unknown negative-value policy '{policy}'")

    if np.any(x < 0.0):
        raise ConfigurationError(
            f"could not draw a non-negative ensemble in {max_attempts} attempts "
            f"(policy '{policy}'); reduce the noise level")
    return x


def perturb(base, n_members, std_percent, rng=None, reference_magnitude=1.0,
            negative_policy='resample', max_attempts=100):
    """
    Draw q Gaussian perturbations of a base state.

    Parameters
    ----------
    base : ndarray [N]
        Base state
    n_members : int
        Ensemble size q
    std_percent : float
        Standard deviation in percent of each cell's magnitude
    rng : np.random.Generator, optional
    reference_magnitude : float
        Magnitude used where the base value is exactly zero
    negative_policy : {'resample', 'clip', 'reject'}
        'resample' redraws negative entries, 'clip' clips them to zero,
        'reject' redraws every member containing a negative entry
    max_attempts : int
        Redraw budget for 'resample' and 'reject'

    Returns
    -------
    ndarray [N, q]
    """
    base = np.asarray(base, dtype=float)
    if std_percent == 0:
        return np.repeat(base[:, None], n_members, axis=1)
    if rng is None:
        rng = np.random.default_rng()

    scale = _noise_scale(base, std_percent, reference_magnitude)
    x = _draw(base, scale, n_members, rng)
    return _apply_negative_policy(x, base, scale, rng, negative_policy, max_attempts)


def generate_ensemble(base_state, n_members, std_percent, rng=None, boundary_cells=(),
                      boundary_value=0.0, reference_magnitude=1.0,
                      negative_policy='resample', max_attempts=100):
    """
    Generate an initial ensemble around a base state.

    Each column is the base state perturbed by independent Gaussian noise;
    boundary cells are reset to their Dirichlet value afterwards. A zero
    standard deviation returns q identical boundary-enforced copies.

    Parameters
    ----------
    base_state : ndarray [N]
        Base state
    n_members : int
        Ensemble size q, at least 2
    std_percent : float
        Noise standard deviation in percent of each cell's magnitude
    rng : np.random.Generator, optional
    boundary_cells : iterable of int
        Pinned cell indices
    boundary_value : float
        Dirichlet value of the pinned cells

    Returns
    -------
    ensemble : ndarray [N, q]
    """
    if n_members < 2:
        raise ConfigurationError(
            f"ensemble size must be at least 2 to estimate a covariance, got {n_members}")
    if std_percent < 0:
        raise ConfigurationError("noise standard deviation must be non-negative")

    ensemble = perturb(base_state, n_members, std_percent, rng,
                       reference_magnitude=reference_magnitude,
                       negative_policy=negative_policy, max_attempts=max_attempts)
    return enforce_boundary(ensemble, boundary_cells, boundary_value)


def add_noise(ensemble, std_percent, rng=None, boundary_cells=(), boundary_value=0.0,
              reference_magnitude=1.0, negative_policy='resample', max_attempts=100):
    """
    Add multiplicative-scale Gaussian noise to every member of an ensemble.

    Used for process noise after a forecast. Noise is scaled per entry by the
    member's own value. A zero standard deviation only re-enforces the
    boundary. Negative entries are redrawn individually under both
    'resample' and 'reject', members are kept.

    Returns
    -------
    ndarray [N, q]
        New ensemble
    """
    ensemble = np.array(ensemble, dtype=float)
    if std_percent > 0:
        if rng is None:
            rng = np.random.default_rng()
        scale = _noise_scale(ensemble, std_percent, reference_magnitude)
        noisy = ensemble + scale * rng.standard_normal(ensemble.shape)
        bad = noisy < 0.0
        attempts = 0
        while np.any(bad) and negative_policy != 'clip' and attempts < max_attempts:
            noisy[bad] = ensemble[bad] + scale[bad] * rng.standard_normal(np.count_nonzero(bad))
            bad = noisy < 0.0
            attempts += 1
        if negative_policy == 'clip':
            np.maximum(noisy, 0.0, out=noisy)
        elif np.any(bad):
            raise ConfigurationError(
                f"process noise kept producing negative values after {max_attempts} attempts")
        ensemble = noisy
    return enforce_boundary(ensemble, boundary_cells, boundary_value)


def initial_state(config, base_states: Mapping[str, np.ndarray],
                  rng: Optional[np.random.Generator] = None) -> EnsembleState:
    """
    Build the initial EnsembleState of a run from per-variable base states.

    Parameters
    ----------
    config : EnKFConfig
    base_states : mapping of str -> ndarray [N]
    rng : np.random.Generator, optional
    """
    members = {}
    for name in config.variables:
        if name not in base_states:
            raise ConfigurationError(f"no base state supplied for '{name}'")
        base = np.asarray(base_states[name], dtype=float)
        if base.shape != (config.n_cells,):
            raise ConfigurationError(
                f"base state for '{name}' has shape {base.shape}, expected {(config.n_cells,)}")
        members[name] = generate_ensemble(
            base, config.n_members, config.sample_std, rng,
            boundary_cells=config.boundary_cells,
            boundary_value=config.boundary_for(name),
            reference_magnitude=config.reference_magnitude,
            negative_policy=config.negative_policy,
        )
        logger.debug("Generated %d-member ensemble for '%s' (std %.3g%%)",
                     config.n_members, name, config.sample_std)
    return EnsembleState(members, config.t0)
