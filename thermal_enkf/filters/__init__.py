"""Filtering algorithm implementations."""
from .enkf import enkf_update, analysis_step, apply_correction, AnalysisDiagnostics
from .lenkf import localized_enkf, forecast_cycle, analysis_cycle, AssimilationResult, FilterState
from .localization import localize, localization_mask, prune_zero, heaviside, LocalDomain
from .local_analysis import local_analysis, analyze_domain, LocalCorrection
from .assembly import (
    TargetCellAssembly,
    NeighborhoodAssembly,
    AveragedNeighborhoodAssembly,
    make_assembly,
)
from .common import sample_covariance, solve_gain, perturb_observations

__all__ = [
    # Main filter
    'localized_enkf',
    'AssimilationResult',
    'FilterState',
    'forecast_cycle',
    'analysis_cycle',
    # Analysis
    'enkf_update',
    'analysis_step',
    'apply_correction',
    'AnalysisDiagnostics',
    # Localization
    'localize',
    'localization_mask',
    'prune_zero',
    'heaviside',
    'LocalDomain',
    # Local analysis
    'local_analysis',
    'analyze_domain',
    'LocalCorrection',
    # Gain assembly
    'TargetCellAssembly',
    'NeighborhoodAssembly',
    'AveragedNeighborhoodAssembly',
    'make_assembly',
    # Utilities
    'sample_covariance',
    'solve_gain',
    'perturb_observations',
]
