"""
Experiment Logger - Persist filter histories and track assimilation runs.

Provides per-variant caching with numpy arrays saved to disk.
Results are cached individually per filter variant (gain-assembly strategy),
allowing mixed cached/fresh runs.
"""
import os
import csv
import hashlib
import logging
import numpy as np
from datetime import datetime
from typing import Dict, List, Optional, Any, Mapping

logger = logging.getLogger(__name__)

HISTORY_PREFIX = 'history__'


def save_history(path: str, history: Mapping[str, np.ndarray], **extra) -> str:
    """
    Save a filter history {name: ndarray [N, k]} to a compressed .npz file.

    Parameters
    ----------
    path : str
        Target file (``.npz`` is appended by numpy if missing)
    history : mapping of str -> ndarray
        Ensemble-mean history per variable
    **extra : ndarray
        Additional arrays stored alongside (e.g. xs, ys)

    Returns
    -------
    str
        Path to the saved file
    """
    data = {f"{HISTORY_PREFIX}{name}": np.asarray(h) for name, h in history.items()}
    data.update(extra)
    np.savez_compressed(path, **data)
    return path if path.endswith('.npz') else path + '.npz'


def load_history(path: str):
    """
    Load a file written by save_history.

    Returns
    -------
    history : dict of str -> ndarray
    extra : dict of str -> ndarray
    """
    history, extra = {}, {}
    with np.load(path, allow_pickle=False) as npz:
        for key in npz.files:
            if key.startswith(HISTORY_PREFIX):
                history[key[len(HISTORY_PREFIX):]] = npz[key]
            else:
                extra[key] = npz[key]
    return history, extra


class ExperimentLogger:
    """
    Logger for tracking assimilation configurations and per-variant results.

    Features:
    - Per-variant result caching (numpy arrays saved as .npz files)
    - Single CSV log file tracking individual filter runs
    - Timestamped run directories for reports

    Usage:
        logger = ExperimentLogger(experiment_name='heat_rod_twin')

        config = {'n_members': 20, 'n_cells': 50, 'n_iter': 40, 'seed': 42, ...}

        if logger.variant_result_exists('target', **config):
            result = logger.load_variant_result('target', **config)
        else:
            result = run_filter(...)
            logger.save_variant_result('target', config, result)
    """

    # Columns for per-variant log
    LOG_COLUMNS = [
        'timestamp', 'experiment_name', 'variant',
        'n_members', 'n_cells', 'n_iter', 'localization_radius', 'solver_runs',
        'sample_std', 'process_std', 'measurement_std', 'seed',
        'rmse', 'mean_spread', 'max_cond', 'skipped_cells', 'completed_cycles', 'runtime_sec',
        'cache_file', 'status', 'failed_cycle', 'notes'
    ]

    # Config keys used for cache matching (variant-specific)
    CACHE_KEYS = [
        'n_members', 'n_cells', 'n_iter', 'localization_radius', 'solver_runs',
        'sample_std', 'process_std', 'measurement_std', 'seed'
    ]

    def __init__(
        self,
        experiment_name: Optional[str] = None,
        results_root: Optional[str] = None
    ):
        """
        Initialize experiment logger.

        Parameters
        ----------
        experiment_name : str, optional
            Name of the experiment (e.g., 'heat_rod_twin').
            If provided, logs are stored in results/{experiment_name}/.
        results_root : str, optional
            Root directory for results (default: ./results).
        """
        self._results_root = results_root if results_root is not None else os.path.join(
            os.getcwd(), 'results')
        self.experiment_name = experiment_name

        if experiment_name is not None:
            self.log_dir = os.path.join(self._results_root, experiment_name)
        else:
            self.log_dir = self._results_root

        # Single log file for all filter runs
        self.log_file = os.path.join(self.log_dir, "run_log.csv")

        # Cache directory for numpy result files
        self.cache_dir = os.path.join(self.log_dir, "cache")

        os.makedirs(self.log_dir, exist_ok=True)
        os.makedirs(self.cache_dir, exist_ok=True)

        self._init_csv_file(self.log_file, self.LOG_COLUMNS)

        self._current_timestamp: Optional[str] = None
        self._current_run_dir: Optional[str] = None

    def _init_csv_file(self, filepath: str, columns: List[str]) -> None:
        """Create CSV file with headers if it doesn't exist."""
        if not os.path.exists(filepath):
            with open(filepath, 'w', newline='') as f:
                writer = csv.DictWriter(f, fieldnames=columns)
                writer.writeheader()

    def _get_config_hash(self, variant: str, config: Dict) -> str:
        """Short hash of the variant + cache-relevant config values."""
        key_parts = [variant]
        for k in self.CACHE_KEYS:
            if k in config:
                key_parts.append(f"{k}={config[k]}")

        key_str = "_".join(key_parts)
        return hashlib.md5(key_str.encode()).hexdigest()[:12]

    def get_cache_path(self, variant: str, config: Dict) -> str:
        """
        Get the full path to the cache file for a variant.

        Parameters
        ----------
        variant : str
            Filter variant name
        config : dict
            Experiment configuration

        Returns
        -------
        str
            Full path to cache file
        """
        safe_variant = variant.replace('(', '_').replace(')', '').replace(' ', '_')
        filename = f"{safe_variant}_{self._get_config_hash(variant, config)}.npz"
        return os.path.join(self.cache_dir, filename)

    def variant_result_exists(self, variant: str, **config) -> bool:
        """True if a cached result exists for the variant + config."""
        return os.path.exists(self.get_cache_path(variant, config))

    def save_variant_result(
        self,
        variant: str,
        config: Dict[str, Any],
        history: Mapping[str, np.ndarray],
        extra: Optional[Dict[str, np.ndarray]] = None,
        metrics: Optional[Dict[str, float]] = None,
        runtime_sec: float = 0.0,
        status: str = 'done',
        failed_cycle: Optional[int] = None,
        notes: str = ''
    ) -> Optional[str]:
        """
        Save a filter history to cache and append a row to the run log.

        Only runs that reached 'done' are cached; other runs are logged with
        an empty cache_file so a later call reruns them.

        Parameters
        ----------
        variant : str
            Filter variant name
        config : dict
            Experiment configuration
        history : mapping of str -> ndarray [N, k]
            Ensemble-mean history per variable
        extra : dict, optional
            Additional arrays stored with the history
        metrics : dict, optional
            Summary metrics {rmse, mean_spread, max_cond, skipped_cells, completed_cycles}
        runtime_sec : float
            Filter runtime in seconds
        status : str
            Final filter state ('done', 'failed', 'cancelled')
        failed_cycle : int, optional
            Cycle at which the run stopped
        notes : str
            Optional notes

        Returns
        -------
        str or None
            Path to saved cache file, None when nothing was cached
        """
        cache_path = None
        if status == 'done':
            cache_path = self.get_cache_path(variant, config)
            save_history(cache_path, history, **(extra or {}))

        metrics = metrics or {}

        def fmt(key, fmt_spec):
            value = metrics.get(key)
            return format(value, fmt_spec) if value is not None else ''

        row = {
            'timestamp': datetime.now().strftime('%Y-%m-%d_%H-%M-%S'),
            'experiment_name': self.experiment_name or '',
            'variant': variant,
            **{k: config.get(k, '') for k in self.CACHE_KEYS},
            'rmse': fmt('rmse', '.4f'),
            'mean_spread': fmt('mean_spread', '.4f'),
            'max_cond': fmt('max_cond', '.4g'),
            'skipped_cells': fmt('skipped_cells', 'd'),
            'completed_cycles': fmt('completed_cycles', 'd'),
            'runtime_sec': f"{runtime_sec:.2f}",
            'cache_file': os.path.basename(cache_path) if cache_path else '',
            'status': status,
            'failed_cycle': '' if failed_cycle is None else failed_cycle,
            'notes': notes,
        }

        with open(self.log_file, 'a', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=self.LOG_COLUMNS)
            writer.writerow(row)

        if cache_path is None:
            logger.info("Logged %s run of %s, not cached", status, variant)
        else:
            logger.info("Cached %s: %s", variant, os.path.basename(cache_path))
        return cache_path

    def load_variant_result(self, variant: str, **config):
        """
        Load a cached variant result.

        Returns
        -------
        tuple or None
            (history, extra) dictionaries if the cache exists, else None
        """
        cache_path = self.get_cache_path(variant, config)
        if not os.path.exists(cache_path):
            return None

        result = load_history(cache_path)
        logger.info("Loaded cached %s: %s", variant, os.path.basename(cache_path))
        return result

    def get_cached_variants(self, **config) -> List[str]:
        """Variants with a completed, still-present cached result for the config."""
        cached = []
        if not os.path.exists(self.log_file):
            return cached

        with open(self.log_file, 'r', newline='') as f:
            reader = csv.DictReader(f)
            for row in reader:
                if row.get('status') != 'done':
                    continue

                matches = all(
                    str(row.get(key, '')) == str(config[key])
                    for key in self.CACHE_KEYS if key in config
                )
                if not matches:
                    continue

                variant = row['variant']
                cache_file = row.get('cache_file', '')
                if cache_file and os.path.exists(os.path.join(self.cache_dir, cache_file)):
                    if variant not in cached:
                        cached.append(variant)

        return cached

    def create_timestamped_run_dir(self, timestamp: Optional[str] = None) -> str:
        """
        Create a timestamped directory for reports.

        Parameters
        ----------
        timestamp : str, optional
            Custom timestamp string. If None, uses current time.
            Format: YYYY-MM-DD_HH-MM-SS

        Returns
        -------
        str
            Path to the created timestamped run directory.
        """
        if timestamp is None:
            timestamp = datetime.now().strftime('%Y-%m-%d_%H-%M-%S')

        self._current_timestamp = timestamp
        self._current_run_dir = os.path.join(self.log_dir, timestamp)
        os.makedirs(self._current_run_dir, exist_ok=True)
        return self._current_run_dir

    def get_run_dir(self) -> Optional[str]:
        """Get the current run directory."""
        return self._current_run_dir

    def clear_all_cache(self) -> int:
        """
        Remove all cached results for this experiment.

        Returns
        -------
        int
            Number of cache files removed
        """
        count = 0
        if os.path.exists(self.cache_dir):
            for f in os.listdir(self.cache_dir):
                if f.endswith('.npz'):
                    os.remove(os.path.join(self.cache_dir, f))
                    count += 1
        logger.info("Removed %d cache files.", count)
        return count
