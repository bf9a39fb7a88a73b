"""
Adapter for an external solver run as a subprocess.

Every ensemble member owns a working directory ``<run_root>/member_<j>``,
copied from a case template on first use. One sub-step of member j:

1. write each variable into ``<t>/<name>``
2. set startTime/endTime/deltaT in ``system/controlDict``
3. run the solver command inside the member directory
4. read the variables back from ``<t + dt>/<name>``
"""
import logging
import os
import shutil
import subprocess
import threading
import time

import numpy as np

from ..errors import ForecastFailure
from ..utils import field_io
from .base import ForecastCancelled, ForecastModel

logger = logging.getLogger(__name__)


class SubprocessForecast(ForecastModel):
    """
    Forecast model backed by an external solver executable.

    Parameters
    ----------
    command : list of str
        Solver command line, run with the member directory as cwd
    case_template : str, optional
        Case directory copied into every member directory
    run_root : str
        Parent directory of the member directories
    solver_dt : float, optional
        Internal solver time step written as deltaT (defaults to dt)
    timeout : float, optional
        Seconds before a solver run is killed and reported as failed
    keep_times : bool
        Keep the input time folder after a successful run
    poll_interval : float
        Seconds between checks of the running process
    """

    def __init__(self, command, run_root, case_template=None, solver_dt=None,
                 timeout=None, keep_times=True, poll_interval=0.05):
        self.command = list(command)
        self.run_root = run_root
        self.case_template = case_template
        self.solver_dt = solver_dt
        self.timeout = timeout
        self.keep_times = keep_times
        self.poll_interval = poll_interval
        self._locks = {}
        self._locks_guard = threading.Lock()

    def member_dir(self, member):
        return os.path.join(self.run_root, f"member_{member}")

    def _lock(self, member):
        with self._locks_guard:
            return self._locks.setdefault(member, threading.Lock())

    def prepare_member(self, member):
        """Create the member directory, copying the case template if given."""
        directory = self.member_dir(member)
        if not os.path.isdir(directory):
            if self.case_template is not None:
                shutil.copytree(self.case_template, directory)
            else:
                os.makedirs(directory)
            logger.debug("Prepared working directory %s", directory)
        return directory

    def _run(self, directory, member, cancel_event):
        log_path = os.path.join(directory, 'solver.log')
        start = time.time()
        with open(log_path, 'w') as log:
            try:
                proc = subprocess.Popen(self.command, cwd=directory, stdout=log,
                                        stderr=subprocess.STDOUT)
            except OSError as exc:
                raise ForecastFailure(f"could not start solver for member {member}: {exc}",
                                      member=member) from exc
            try:
                while proc.poll() is None:
                    if cancel_event is not None and cancel_event.is_set():
                        raise ForecastCancelled(f"cancelled while member {member} was running")
                    if self.timeout is not None and time.time() - start > self.timeout:
                        raise ForecastFailure(
                            f"solver for member {member} exceeded {self.timeout:g}s",
                            member=member)
                    time.sleep(self.poll_interval)
            finally:
                if proc.poll() is None:
                    proc.kill()
                    proc.wait()

        if proc.returncode != 0:
            raise ForecastFailure(
                f"solver for member {member} exited with status {proc.returncode}: "
                f"{self._log_tail(log_path)}",
                member=member, returncode=proc.returncode)

    @staticmethod
    def _log_tail(path, n_lines=5):
        with open(path, 'r', errors='replace') as f:
            lines = f.read().strip().splitlines()
        return ' | '.join(lines[-n_lines:])

    def advance(self, state, t, dt, member, cancel_event=None):
        with self._lock(member):
            directory = self.prepare_member(member)
            t_end = t + dt

            for name, x in state.items():
                field_io.write_field(directory, t, name, x)
            field_io.update_control_dict(
                directory,
                startTime=field_io.format_time(t),
                endTime=field_io.format_time(t_end),
                deltaT=f"{self.solver_dt if self.solver_dt is not None else dt:.12g}",
            )

            self._run(directory, member, cancel_event)

            new_state = {}
            for name, x in state.items():
                try:
                    new_state[name] = field_io.read_field(directory, t_end, name, len(x))
                except (OSError, ValueError) as exc:
                    raise ForecastFailure(
                        f"could not read '{name}' of member {member} at t={t_end:g}: {exc}",
                        member=member) from exc
                if new_state[name].shape != np.shape(x):
                    raise ForecastFailure(
                        f"solver returned {len(new_state[name])} values of '{name}' for "
                        f"member {member}, expected {len(x)}", member=member)

            if not self.keep_times:
                shutil.rmtree(field_io.time_dir(directory, t), ignore_errors=True)

        return new_state
