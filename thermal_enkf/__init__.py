"""
thermal_enkf: localized Ensemble Kalman Filter for 1-D temperature fields

This package contains implementations of:
- Ensemble generation and boundary handling
- Localization and local Kalman analysis
- The assimilation time loop and forecast-model adapters
- Utility functions
"""
from .config import EnKFConfig, load_config, save_config, uniform_grid
from .errors import (
    EnKFError,
    ConfigurationError,
    ForecastFailure,
    NumericalInstabilityError,
    LocalizationEmptyError,
)
from .observations import ObservationOperator
from .ensemble import EnsembleState, generate_ensemble, add_noise, enforce_boundary
from .filters import localized_enkf, AssimilationResult, FilterState

__version__ = '0.1.0'
