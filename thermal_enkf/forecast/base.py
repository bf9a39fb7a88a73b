"""
Forecast step: the forward-model interface and the per-member worker pool.

A forecast model advances the state of one ensemble member by one sub-step.
``forecast_ensemble`` applies it to every member, sequentially or on a thread
pool keyed by member index; members are written back by index, so the
resulting ensemble does not depend on completion order.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Mapping, Optional

import numpy as np

from ..errors import ForecastFailure
from ..ssm.heat_rod import heat_rod_step

logger = logging.getLogger(__name__)


class ForecastCancelled(Exception):
    """Raised when the cancellation event is set during a forecast."""


class ForecastModel:
    """
    Forward-model interface.

    Subclasses implement ``advance``; it receives copies of the member's
    variables and returns the advanced state.
    """

    def advance(self, state: Mapping[str, np.ndarray], t: float, dt: float,
                member: int, cancel_event: Optional[threading.Event] = None
                ) -> Dict[str, np.ndarray]:
        raise NotImplementedError


class IdentityForecast(ForecastModel):
    """Perfect persistence model, returns the state unchanged."""

    def advance(self, state, t, dt, member, cancel_event=None):
        return {name: np.array(x, dtype=float) for name, x in state.items()}


class HeatRodForecast(ForecastModel):
    """
    In-process 1-D heat conduction model.

    Parameters
    ----------
    cx : ndarray [N]
        Cell coordinates
    alpha : float or mapping of str -> float
        Thermal diffusivity, per variable if a mapping
    source : ndarray [N], optional
        Volumetric heating rate
    """

    def __init__(self, cx, alpha=1e-3, source=None):
        self.cx = np.asarray(cx, dtype=float)
        self.alpha = alpha
        self.source = source

    def _alpha(self, name):
        return self.alpha[name] if isinstance(self.alpha, Mapping) else self.alpha

    def advance(self, state, t, dt, member, cancel_event=None):
        return {name: heat_rod_step(x, self.cx, self._alpha(name), dt, self.source)
                for name, x in state.items()}


def _check_state(new_state, expected, member):
    for name, x in expected.items():
        if name not in new_state:
            raise ForecastFailure(f"forecast of member {member} returned no '{name}'",
                                  member=member)
        y = np.asarray(new_state[name], dtype=float)
        if y.shape != x.shape:
            raise ForecastFailure(
                f"forecast of member {member} returned '{name}' with shape {y.shape}, "
                f"expected {x.shape}", member=member)
        if not np.all(np.isfinite(y)):
            raise ForecastFailure(f"forecast of member {member} returned non-finite '{name}'",
                                  member=member)


def _advance_member(model, state, j, t, dt, cancel_event):
    if cancel_event is not None and cancel_event.is_set():
        raise ForecastCancelled(f"cancelled before member {j}")
    member_state = state.member_state(j)
    try:
        new_state = model.advance(member_state, t, dt, j, cancel_event)
    except (ForecastFailure, ForecastCancelled):
        raise
    except Exception as exc:
        raise ForecastFailure(f"forecast of member {j} raised {exc!r}", member=j) from exc
    _check_state(new_state, member_state, j)
    logger.debug("Member %d advanced from t=%g to t=%g", j, t, t + dt)
    return new_state


def forecast_ensemble(model, state, dt, n_workers=0, cancel_event=None):
    """
    Advance every ensemble member by one sub-step.

    Parameters
    ----------
    model : ForecastModel
    state : EnsembleState
        Ensemble, updated in place; its time advances by dt
    dt : float
        Sub-step size
    n_workers : int
        0 runs members sequentially, otherwise the number of worker threads
    cancel_event : threading.Event, optional
        Checked before every member

    Returns
    -------
    EnsembleState
        The same object, advanced

    Raises
    ------
    ForecastFailure
        If any member fails; the ensemble is left unchanged
    ForecastCancelled
        If cancel_event is set
    """
    t = state.t
    q = state.n_members
    results = {}

    if n_workers == 0:
        for j in range(q):
            results[j] = _advance_member(model, state, j, t, dt, cancel_event)
    else:
        with ThreadPoolExecutor(max_workers=n_workers) as pool:
            futures = {
                pool.submit(_advance_member, model, state, j, t, dt, cancel_event): j
                for j in range(q)
            }
            try:
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
            except BaseException:
                for future in futures:
                    future.cancel()
                raise

    for j in range(q):
        state.set_member_state(j, results[j])
    state.t = t + dt
    return state
