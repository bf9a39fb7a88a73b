"""State Space Model implementations."""
from .heat_rod import heat_rod_ssm, heat_rod_step, heat_rod_rhs, stable_substeps

__all__ = [
    'heat_rod_ssm',
    'heat_rod_step',
    'heat_rod_rhs',
    'stable_substeps',
]
