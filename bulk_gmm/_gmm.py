"""Fitting and prediction entry points.

``fit`` runs generation 0 (starting components + covariance seeding) and then
exactly ``num_iterations`` EM steps; there is no convergence test. The
returned ``GMModel`` keeps every generation, ``generations[k]`` being the
mixture after k EM steps.

``predict`` is a single E-step against a fitted mixture.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Union

import torch

from ._config import DENSITIES, ZERO_LIKELIHOOD_POLICIES, GMMConfig
from ._dataset import DataSet
from ._em_step import em_step, expectation_step
from ._errors import DimensionMismatchError, FitCancelledError, InvalidConfigurationError
from ._initializer import initialize_covariances, starting_components
from ._records import ArrayLike, DataPoint, points_from_array

logger = logging.getLogger(__name__)


# ---------------------------
# Helpers
# ---------------------------

def _as_points(points: Union[DataSet, ArrayLike], dtype: torch.dtype) -> DataSet:
    if isinstance(points, DataSet):
        return points.map(lambda p: DataPoint(p.id, p.position.to(dtype)))
    return points_from_array(points, dtype=dtype)


def _infer_dimension(points: DataSet) -> int:
    """d from the first point; every other point must agree."""
    if points.count() == 0:
        raise ValueError("cannot fit a mixture on an empty point set")
    d = points.first().dim
    _check_points(points, d)
    return d


def _check_points(points: DataSet, d: int) -> None:
    seen = set()
    for p in points:
        if p.position.dim() != 1 or p.position.shape[0] != d:
            raise DimensionMismatchError(
                f"point {p.id} has shape {tuple(p.position.shape)}, expected ({d},)"
            )
        if p.id in seen:
            raise ValueError(f"duplicate point id {p.id}")
        seen.add(p.id)


def _stack_sorted(components: DataSet, attr: str) -> torch.Tensor:
    ordered = sorted(components, key=lambda c: c.id)
    return torch.stack([torch.as_tensor(getattr(c, attr), dtype=c.mean.dtype) for c in ordered])


# ---------------------------
# Model
# ---------------------------

class GMModel:
    """A fitted mixture plus the generations that produced it."""

    def __init__(self, generations: List[DataSet], num_dimensions: int, config: GMMConfig) -> None:
        if not generations:
            raise ValueError("a model needs at least generation 0")
        self.generations = list(generations)
        self.num_dimensions = num_dimensions
        self.config = config

    @property
    def components(self) -> DataSet:
        return self.generations[-1]

    @property
    def n_iter_(self) -> int:
        return len(self.generations) - 1

    @property
    def component_ids(self) -> List[int]:
        return sorted(c.id for c in self.components)

    # sklearn-shaped views, ordered by component id
    @property
    def weights_(self) -> torch.Tensor:
        return _stack_sorted(self.components, "prior")

    @property
    def means_(self) -> torch.Tensor:
        return _stack_sorted(self.components, "mean")

    @property
    def covariances_(self) -> torch.Tensor:
        return _stack_sorted(self.components, "covariance")

    def transform(self, points: Union[DataSet, ArrayLike]) -> DataSet:
        """Posterior for every (point, component) pair; one E-step, no update."""
        points = _as_points(points, self.config.dtype)
        _check_points(points, self.num_dimensions)
        return expectation_step(
            self.components,
            points,
            density=self.config.density,
            zero_likelihood=self.config.zero_likelihood,
        )

    def predict_proba(self, points: Union[DataSet, ArrayLike]) -> torch.Tensor:
        """(N, K) posteriors, rows by point id, columns by component id."""
        post = self.transform(points)
        point_ids = sorted({p.point_id for p in post})
        row = {pid: i for i, pid in enumerate(point_ids)}
        col = {cid: k for k, cid in enumerate(self.component_ids)}
        out = torch.zeros((len(point_ids), len(col)), dtype=self.config.dtype)
        for p in post:
            out[row[p.point_id], col[p.component_id]] = p.probability
        return out

    def predict_labels(self, points: Union[DataSet, ArrayLike]) -> torch.Tensor:
        """Component id with the largest posterior for each point (point id order)."""
        proba = self.predict_proba(points)
        ids = torch.tensor(self.component_ids, dtype=torch.long)
        return ids[torch.argmax(proba, dim=1)]

    def __repr__(self) -> str:
        return (
            f"GMModel(num_components={self.components.count()}, "
            f"num_dimensions={self.num_dimensions}, n_iter={self.n_iter_})"
        )


# ---------------------------
# Learner
# ---------------------------

class GaussianMixtureEM:
    """Learner holding a default config; per-fit overrides produce a new config."""

    def __init__(self, config: Optional[GMMConfig] = None, **kwargs) -> None:
        if config is not None and kwargs:
            raise TypeError("pass either a GMMConfig or keyword arguments, not both")
        self.config = config if config is not None else GMMConfig(**kwargs)

    def fit(self, points: Union[DataSet, ArrayLike], cancel=None, **overrides) -> GMModel:
        config = self.config.with_overrides(**overrides) if overrides else self.config
        points = _as_points(points, config.dtype)
        d = _infer_dimension(points)

        logger.info(
            "fitting %d components to %d points (d=%d), %d iterations, density=%s",
            config.num_components, points.count(), d, config.num_iterations, config.density,
        )

        generation0 = initialize_covariances(starting_components(points, config, d), points)
        generations = [generation0]

        def step(components: DataSet) -> DataSet:
            k = len(generations)
            if cancel is not None and cancel.is_set():
                raise FitCancelledError(f"fit cancelled before generation {k}", generation=k)
            nxt = em_step(
                components,
                points,
                density=config.density,
                zero_likelihood=config.zero_likelihood,
                reg_covar=config.reg_covar,
            )
            logger.debug(
                "generation %d priors: %s",
                k, {c.id: round(c.prior, 6) for c in nxt},
            )
            generations.append(nxt)
            return nxt

        generation0.iterate(config.num_iterations, step)
        return GMModel(generations, d, config)


def fit(points: Union[DataSet, ArrayLike], config: Optional[GMMConfig] = None, cancel=None) -> GMModel:
    return GaussianMixtureEM(config if config is not None else GMMConfig()).fit(points, cancel=cancel)


def predict(
    mixture: Union[GMModel, DataSet],
    points: Union[DataSet, ArrayLike],
    density: str = "gaussian",
    zero_likelihood: str = "raise",
) -> DataSet:
    """Posteriors of ``points`` under ``mixture``.

    A GMModel brings its own density/zero-likelihood settings; for a bare
    component DataSet they are taken from the keyword arguments and the
    dimension comes from the first component.
    """
    if isinstance(mixture, GMModel):
        return mixture.transform(points)
    if density not in DENSITIES:
        raise InvalidConfigurationError(f"density must be one of {DENSITIES}, got {density!r}")
    if zero_likelihood not in ZERO_LIKELIHOOD_POLICIES:
        raise InvalidConfigurationError(
            f"zero_likelihood must be one of {ZERO_LIKELIHOOD_POLICIES}, got {zero_likelihood!r}"
        )
    dtype = mixture.first().mean.dtype
    d = mixture.first().dim
    points = _as_points(points, dtype)
    _check_points(points, d)
    return expectation_step(mixture, points, density=density, zero_likelihood=zero_likelihood)
