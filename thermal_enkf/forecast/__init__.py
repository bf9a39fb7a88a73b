"""Forecast step: forward-model interface, in-process models and the solver adapter."""
from .base import (
    ForecastModel,
    ForecastCancelled,
    IdentityForecast,
    HeatRodForecast,
    forecast_ensemble,
)
from .subprocess_solver import SubprocessForecast

__all__ = [
    'ForecastModel',
    'ForecastCancelled',
    'IdentityForecast',
    'HeatRodForecast',
    'SubprocessForecast',
    'forecast_ensemble',
]
