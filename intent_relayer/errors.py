class ConfigurationError(ValueError):
    """Raised at startup when configuration, identity or allowances make running impossible."""


class EstimationError(RuntimeError):
    """Raised when the fee/gas policy cannot be computed for an order."""
