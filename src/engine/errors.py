"""Fairness engine exceptions."""


class FairnessError(Exception):
    """Base class for engine errors."""


class ContractViolation(FairnessError, ValueError):
    """Caller passed input outside the contract (sigma <= 0, empty batch, ...)."""


class CalibrationStalled(FairnessError, RuntimeError):
    """Payout integral did not converge within its subdivision budget."""

    def __init__(self, message: str, last_value: float | None = None):
        super().__init__(message)
        self.last_value = last_value


class ManualOverrideRejected(FairnessError, PermissionError):
    """Manual distance input submitted to a deployment that settles wagers."""
