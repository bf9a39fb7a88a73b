"""Exception types raised by the assimilation engine."""


class EnKFError(Exception):
    """Base class for all thermal_enkf errors."""


class ConfigurationError(EnKFError, ValueError):
    """Invalid configuration, detected before the time loop starts."""


class ForecastFailure(EnKFError, RuntimeError):
    """
    The forward model failed to advance an ensemble member.

    Parameters
    ----------
    message : str
        Description of the failure
    member : int, optional
        Ensemble member index
    returncode : int, optional
        Exit status of the external solver process
    """

    def __init__(self, message, member=None, returncode=None):
        super().__init__(message)
        self.member = member
        self.returncode = returncode


class NumericalInstabilityError(EnKFError, ArithmeticError):
    """Singular or ill-conditioned innovation covariance in a local solve."""

    def __init__(self, message, cell=None, condition_number=None):
        super().__init__(message)
        self.cell = cell
        self.condition_number = condition_number


class LocalizationEmptyError(EnKFError):
    """No observation lies within the localization radius of a cell."""

    def __init__(self, cell):
        super().__init__(f"no observations within localization radius of cell {cell}")
        self.cell = cell
