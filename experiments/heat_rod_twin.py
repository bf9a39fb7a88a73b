"""Heat rod twin experiment: localized EnKF against a synthetic truth."""
import argparse
import logging
import os
import sys
import time
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

import numpy as np

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from thermal_enkf.config import EnKFConfig, load_config, uniform_grid
from thermal_enkf.observations import ObservationOperator
from thermal_enkf.filters import localized_enkf
from thermal_enkf.forecast import HeatRodForecast, SubprocessForecast
from thermal_enkf.ssm import heat_rod_ssm
from thermal_enkf.utils import (
    ExperimentLogger, compute_mse, compute_rmse, ensemble_spread, rmse_per_cycle,
    stability_summary
)

DEFAULT_VARIANTS = ['target', 'neighborhood', 'averaged']

# --- Result Container ---

@dataclass
class TwinResult:
    """Container for one filter variant."""
    name: str
    history: np.ndarray
    rmse: np.ndarray
    final_rmse: float
    stability: Dict[str, float]
    spread: float
    skipped_cells: int
    completed_cycles: int
    status: str
    failed_cycle: Optional[int]
    runtime: float

# --- Setup ---

def build_truth(config: EnKFConfig, obs_cells: np.ndarray, alpha: float,
                rng: np.random.Generator):
    """Initial true profile (warm bump over the boundary value) and observations."""
    x0 = config.boundary_for('T') + 20.0 * np.exp(-((config.cx - 0.4) / 0.15) ** 2)
    xs, ys = heat_rod_ssm(config.n_iter, rng, config.cx, x0, obs_cells, alpha=alpha,
                          dt=config.dt, solver_runs=config.solver_runs,
                          boundary_value=config.boundary_for('T'),
                          R_std=config.measurement_std)
    return xs, ys


def run_variant(name: str, config: EnKFConfig, operator: ObservationOperator,
                forecast, base_state: np.ndarray, ys: np.ndarray, xs: np.ndarray,
                rng: np.random.Generator) -> TwinResult:
    """Run the filter with one gain-assembly strategy."""
    config = replace(config, assembly=name)
    start = time.time()
    result = localized_enkf(config, {'T': operator}, forecast, base_state, {'T': ys}, rng=rng)
    runtime = time.time() - start

    history = result.history['T']
    interior = config.interior_cells()
    rmse = rmse_per_cycle(history, xs, interior)
    skipped = sum(len(d['T'].skipped_cells) for d in result.diagnostics)

    final = history.shape[1] - 1
    cond_nums = [c for d in result.diagnostics for c in d['T'].cond_nums]
    stability = stability_summary(cond_nums,
                                  mse=compute_mse(history[:, final], xs[final], interior))

    return TwinResult(name, history, rmse, compute_rmse(history[:, final], xs[final], interior),
                      stability, ensemble_spread(result.ensemble.members['T']),
                      skipped, result.completed_cycles, result.status.value,
                      result.failed_cycle, runtime)

# --- Reporting ---

def print_summary(results: Dict[str, TwinResult]) -> None:
    header = f"{'Variant':<15} {'Final RMSE':>12} {'Mean RMSE':>12} {'Max cond':>10} {'Spread':>10} {'Skipped':>9} {'Status':>10} {'Runtime':>10}"
    print('=' * len(header))
    print(header)
    print('-' * len(header))
    for name, r in results.items():
        mean_rmse = np.mean(r.rmse[1:]) if len(r.rmse) > 1 else float('nan')
        print(f"{name:<15} {r.final_rmse:>12.4f} {mean_rmse:>12.4f} "
              f"{r.stability['max_cond']:>10.3g} {r.spread:>10.4f} "
              f"{r.skipped_cells:>9d} {r.status:>10} {r.runtime:>9.2f}s")
    print('=' * len(header))

# --- Main Experiment ---

def run_experiment(
    config: EnKFConfig,
    obs_every: int = 5,
    alpha: float = 1e-3,
    variants: Optional[List[str]] = None,
    solver_command: Optional[List[str]] = None,
    case_template: Optional[str] = None,
    results_root: Optional[str] = None,
    force_rerun: bool = False
) -> Dict[str, TwinResult]:
    """
    Run the heat rod twin experiment for several gain-assembly variants.

    Parameters
    ----------
    config : EnKFConfig
        Filter configuration (n_cells is len(config.cx))
    obs_every : int
        Observe every m-th interior cell
    alpha : float
        Thermal diffusivity of truth and forecast model
    variants : list of str, optional
        Gain-assembly strategies to compare
    solver_command : list of str, optional
        Use an external solver instead of the in-process heat model
    case_template : str, optional
        Case directory for the external solver
    results_root : str, optional
        Root directory for cached results
    force_rerun : bool
        Ignore cached results
    """
    variants = variants or DEFAULT_VARIANTS
    rng = np.random.default_rng(config.seed)

    obs_cells = np.arange(1, config.n_cells - 1, obs_every)
    operator = config.make_operators(obs_cells)['T']
    xs, ys = build_truth(config, obs_cells, alpha, rng)

    # Start from a flat profile at the boundary temperature
    base_state = np.full(config.n_cells, config.boundary_for('T'))

    exp_logger = ExperimentLogger(experiment_name='heat_rod_twin', results_root=results_root)
    cache_config = {**config.to_dict(), 'n_cells': config.n_cells}

    results = {}
    for name in variants:
        if not force_rerun and exp_logger.variant_result_exists(name, **cache_config):
            history, _ = exp_logger.load_variant_result(name, **cache_config)
            interior = config.interior_cells()
            rmse = rmse_per_cycle(history['T'], xs, interior)
            final = history['T'].shape[1] - 1
            results[name] = TwinResult(name, history['T'], rmse,
                                       compute_rmse(history['T'][:, final], xs[final], interior),
                                       stability_summary([]), float('nan'), 0,
                                       final, 'cached', None, 0.0)
            continue

        if solver_command is not None:
            forecast = SubprocessForecast(
                solver_command, os.path.join(exp_logger.log_dir, 'runs', name),
                case_template=case_template)
        else:
            forecast = HeatRodForecast(config.cx, alpha=alpha)

        result = run_variant(name, config, operator, forecast, base_state, ys, xs,
                             np.random.default_rng(config.seed + 1))
        exp_logger.save_variant_result(
            name, cache_config, {'T': result.history}, extra={'xs': xs, 'ys': ys},
            metrics={'rmse': float(result.final_rmse), 'mean_spread': result.spread,
                     'max_cond': float(result.stability['max_cond']),
                     'skipped_cells': result.skipped_cells,
                     'completed_cycles': result.completed_cycles},
            runtime_sec=result.runtime, status=result.status,
            failed_cycle=result.failed_cycle)
        results[name] = result

    print_summary(results)
    return results


def main(argv=None):
    parser = argparse.ArgumentParser(description='Heat rod localized EnKF twin experiment')
    parser.add_argument('--config', type=str, default=None, help='JSON configuration file')
    parser.add_argument('--n-cells', type=int, default=50)
    parser.add_argument('--n-members', type=int, default=20)
    parser.add_argument('--n-iter', type=int, default=30)
    parser.add_argument('--radius', type=float, default=0.1)
    parser.add_argument('--solver-runs', type=int, default=5)
    parser.add_argument('--dt', type=float, default=2.0)
    parser.add_argument('--sample-std', type=float, default=2.0)
    parser.add_argument('--process-std', type=float, default=0.0)
    parser.add_argument('--measurement-std', type=float, default=0.5)
    parser.add_argument('--obs-every', type=int, default=5)
    parser.add_argument('--alpha', type=float, default=1e-3)
    parser.add_argument('--variants', nargs='+', default=DEFAULT_VARIANTS)
    parser.add_argument('--solver-command', nargs='+', default=None,
                        help='External solver command run in each member directory')
    parser.add_argument('--case-template', type=str, default=None)
    parser.add_argument('--results-root', type=str, default=None)
    parser.add_argument('--seed', type=int, default=42)
    parser.add_argument('--force-rerun', action='store_true')
    parser.add_argument('-v', '--verbose', action='store_true')
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    if args.config is not None:
        config = load_config(args.config)
    else:
        config = EnKFConfig(
            n_members=args.n_members,
            cx=uniform_grid(args.n_cells),
            localization_radius=args.radius,
            n_iter=args.n_iter,
            solver_runs=args.solver_runs,
            dt=args.dt,
            sample_std=args.sample_std,
            process_std=args.process_std,
            measurement_std=args.measurement_std,
            seed=args.seed,
        )

    run_experiment(config, obs_every=args.obs_every, alpha=args.alpha,
                   variants=args.variants, solver_command=args.solver_command,
                   case_template=args.case_template, results_root=args.results_root,
                   force_rerun=args.force_rerun)


if __name__ == '__main__':
    main()
