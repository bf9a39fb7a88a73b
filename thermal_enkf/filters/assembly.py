"""
Gain-assembly strategies: how local corrections form the full-state correction.

Each local analysis yields a correction for every cell of its domain. A
strategy decides which of those rows enter the full correction ``phi``:

- ``TargetCellAssembly`` (default) keeps only the row of the analysed cell.
  ``phi`` is the sum of independent local corrections, each truncated to its
  own target cell, so different cells write disjoint rows.
- ``NeighborhoodAssembly`` adds the whole domain correction. Rows overlap
  between cells and accumulate.
- ``AveragedNeighborhoodAssembly`` accumulates like the neighborhood scheme
  and divides each row by the number of domains that touched it.
"""
import numpy as np

from ..errors import ConfigurationError


class TargetCellAssembly:
    """Write only the target-cell row of each local correction."""
    name = 'target'

    def __init__(self, n_cells, n_members, updatable=None):
        self.phi = np.zeros((n_cells, n_members))
        self.updatable = np.ones(n_cells, dtype=bool) if updatable is None else updatable
        self.touched = np.zeros(n_cells, dtype=int)

    def add(self, local, domain):
        """Fold a LocalCorrection into phi."""
        if self.updatable[domain.cell]:
            self.phi[domain.cell] += local.correction[domain.target_row]
            self.touched[domain.cell] += 1

    def result(self):
        return self.phi


class NeighborhoodAssembly(TargetCellAssembly):
    """Accumulate the full domain correction of every local analysis."""
    name = 'neighborhood'

    def add(self, local, domain):
        keep = self.updatable[local.cell_id]
        cells = local.cell_id[keep]
        # cell_id is unique, so fancy-index accumulation has no collisions
        self.phi[cells] += local.correction[keep]
        self.touched[cells] += 1


class AveragedNeighborhoodAssembly(NeighborhoodAssembly):
    """Neighborhood accumulation normalised by the touch count of each cell."""
    name = 'averaged'

    def result(self):
        counts = np.maximum(self.touched, 1)
        return self.phi / counts[:, None]


ASSEMBLIES = {
    cls.name: cls
    for cls in (TargetCellAssembly, NeighborhoodAssembly, AveragedNeighborhoodAssembly)
}


def make_assembly(strategy, n_cells, n_members, updatable=None):
    """
    Instantiate a gain-assembly strategy.

    ``strategy`` is either a registered name or a class with the
    TargetCellAssembly constructor signature.
    """
    if isinstance(strategy, str):
        try:
            strategy = ASSEMBLIES[strategy]
        except KeyError:
            raise ConfigurationError(
                f"assembly must be one of {tuple(ASSEMBLIES)}, got '{strategy}'")
    return strategy(n_cells, n_members, updatable)
