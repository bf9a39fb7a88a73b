"""
Utility Functions.

This module contains utility functions for:
- Metrics computation
- History persistence and experiment logging
- Field-file marshaling for the external solver
"""
from .metrics import compute_mse, compute_rmse, rmse_per_cycle, ensemble_spread, stability_summary
from .experiment_logger import ExperimentLogger, save_history, load_history
from . import field_io

__all__ = [
    # metrics
    'compute_mse',
    'compute_rmse',
    'rmse_per_cycle',
    'ensemble_spread',
    'stability_summary',
    # experiment logger
    'ExperimentLogger',
    'save_history',
    'load_history',
    # solver files
    'field_io',
]
