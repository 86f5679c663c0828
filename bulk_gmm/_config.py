"""Fit configuration.

``GMMConfig`` is built once and never mutated; use ``with_overrides`` (a thin
``dataclasses.replace``) to derive a variant for a single fit.

The choice between generated and user-supplied starting components is an
explicit variant (``Initialization``) rather than an optional field compared
against ``None``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional, Tuple, Union

import torch

from ._errors import InvalidConfigurationError

DENSITIES = ("gaussian", "source")
ZERO_LIKELIHOOD_POLICIES = ("raise", "uniform")


@dataclass(frozen=True)
class DefaultInitialization:
    """Uniform priors, means ~ U[0,1)^d, covariances ~ U[0,1)^(d x d)."""
    random_state: Optional[int] = None


@dataclass(frozen=True)
class KMeansPlusPlusInitialization:
    """Means seeded with sklearn's k-means++ over the points, uniform priors."""
    random_state: Optional[int] = None


@dataclass(frozen=True, eq=False)
class UserSuppliedInitialization:
    components: Tuple  # Tuple[MixtureComponent, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "components", tuple(self.components))


Initialization = Union[DefaultInitialization, KMeansPlusPlusInitialization, UserSuppliedInitialization]


@dataclass(frozen=True)
class GMMConfig:
    num_iterations: int = 10
    num_components: int = 2
    initialization: Initialization = field(default_factory=DefaultInitialization)
    # "gaussian": textbook (2*pi)^(d/2) * sqrt(|det|) normalizer.
    # "source":   sqrt(2*pi) * |det| normalizer, kept for parity with older results.
    density: str = "gaussian"
    # What to do with a point whose density is zero under every component.
    zero_likelihood: str = "raise"
    reg_covar: float = 0.0
    dtype: torch.dtype = torch.float64

    def __post_init__(self) -> None:
        if isinstance(self.num_iterations, bool) or not isinstance(self.num_iterations, int):
            raise InvalidConfigurationError(f"num_iterations must be an int, got {self.num_iterations!r}")
        if self.num_iterations < 0:
            raise InvalidConfigurationError("num_iterations must be non-negative")
        if isinstance(self.num_components, bool) or not isinstance(self.num_components, int):
            raise InvalidConfigurationError(f"num_components must be an int, got {self.num_components!r}")
        if self.num_components <= 0:
            raise InvalidConfigurationError("num_components must be positive")
        if not isinstance(
            self.initialization,
            (DefaultInitialization, KMeansPlusPlusInitialization, UserSuppliedInitialization),
        ):
            raise InvalidConfigurationError(f"Unknown initialization {self.initialization!r}")
        if isinstance(self.initialization, UserSuppliedInitialization):
            n = len(self.initialization.components)
            if n != self.num_components:
                raise InvalidConfigurationError(
                    f"{n} initial components supplied but num_components={self.num_components}"
                )
            ids = [c.id for c in self.initialization.components]
            if len(set(ids)) != len(ids):
                raise InvalidConfigurationError(f"initial component ids must be unique, got {ids}")
        if self.density not in DENSITIES:
            raise InvalidConfigurationError(f"density must be one of {DENSITIES}, got {self.density!r}")
        if self.zero_likelihood not in ZERO_LIKELIHOOD_POLICIES:
            raise InvalidConfigurationError(
                f"zero_likelihood must be one of {ZERO_LIKELIHOOD_POLICIES}, got {self.zero_likelihood!r}"
            )
        if self.reg_covar < 0:
            raise InvalidConfigurationError("reg_covar must be non-negative")

    @classmethod
    def from_components(cls, components, **kwargs) -> "GMMConfig":
        """Config whose starting mixture is ``components`` (num_components follows)."""
        components = tuple(components)
        return cls(
            num_components=len(components),
            initialization=UserSuppliedInitialization(components),
            **kwargs,
        )

    def with_overrides(self, **overrides) -> "GMMConfig":
        unknown = set(overrides) - set(self.__dataclass_fields__)
        if unknown:
            raise InvalidConfigurationError(f"Unknown config fields: {sorted(unknown)}")
        return replace(self, **overrides)
