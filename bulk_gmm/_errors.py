"""Exceptions raised by the bulk EM pipeline.

Every error here is fatal to the ``fit``/``predict`` call that raised it; there
is no partial-result or retry behaviour at this level.
"""


class GMMError(Exception):
    """Base class for all bulk_gmm errors."""


class SingularCovarianceError(GMMError, ArithmeticError):
    """A component covariance cannot be inverted (zero or non-finite determinant)."""

    def __init__(self, message: str, component_id=None) -> None:
        super().__init__(message)
        self.component_id = component_id


class ZeroTotalLikelihoodError(GMMError, ArithmeticError):
    """Every component assigns zero density to a point."""

    def __init__(self, message: str, point_id=None) -> None:
        super().__init__(message)
        self.point_id = point_id


class DimensionMismatchError(GMMError, ValueError):
    """A vector or matrix does not have the dimensionality inferred for the fit."""


class InvalidConfigurationError(GMMError, ValueError):
    """Configuration values are out of range or inconsistent."""


class FitCancelledError(GMMError):
    """The fit was cancelled between two generations."""

    def __init__(self, message: str, generation: int) -> None:
        super().__init__(message)
        self.generation = generation
