"""Generation 0: starting components and covariance seeding."""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import torch
from sklearn.cluster import kmeans_plusplus

from ._config import (
    DefaultInitialization,
    GMMConfig,
    KMeansPlusPlusInitialization,
    UserSuppliedInitialization,
)
from ._dataset import DataSet
from ._errors import DimensionMismatchError, InvalidConfigurationError
from ._linalg import add, check_square, check_vector, outer_product, scale
from ._records import MixtureComponent

logger = logging.getLogger(__name__)


# ---------------------------
# Starting components
# ---------------------------

def random_components(
    num_components: int,
    d: int,
    dtype: torch.dtype = torch.float64,
    random_state: Optional[int] = None,
) -> DataSet:
    """K components with prior 1/K, mean ~ U[0,1)^d and covariance ~ U[0,1)^(d x d).

    The random covariance is neither symmetric nor guaranteed positive definite;
    the covariance seeding pass replaces it before the first E-step.
    """
    gen = torch.Generator()
    if random_state is None:
        gen.seed()
    else:
        gen.manual_seed(int(random_state))
    prior = 1.0 / num_components
    return DataSet(
        MixtureComponent(
            k,
            prior,
            torch.rand(d, generator=gen, dtype=dtype),
            torch.rand(d, d, generator=gen, dtype=dtype),
        )
        for k in range(1, num_components + 1)
    )


def kmeans_plusplus_components(
    points: DataSet,
    num_components: int,
    dtype: torch.dtype = torch.float64,
    random_state: Optional[int] = None,
) -> DataSet:
    """K components whose means are k-means++ seeds drawn from the points."""
    X = np.stack([p.position.cpu().numpy() for p in points]).astype(np.float64)
    if X.shape[0] < num_components:
        raise InvalidConfigurationError(
            f"k-means++ needs at least num_components={num_components} points, got {X.shape[0]}"
        )
    centers, _ = kmeans_plusplus(X, n_clusters=num_components, random_state=random_state)
    d = X.shape[1]
    prior = 1.0 / num_components
    return DataSet(
        MixtureComponent(
            k + 1,
            prior,
            torch.from_numpy(centers[k]).to(dtype),
            torch.eye(d, dtype=dtype),
        )
        for k in range(num_components)
    )


def _check_supplied(components, d: int, dtype: torch.dtype) -> DataSet:
    out = []
    for c in components:
        check_vector(c.mean, d, what=f"mean of component {c.id}")
        check_square(c.covariance, d, what=f"covariance of component {c.id}")
        out.append(MixtureComponent(c.id, float(c.prior), c.mean.to(dtype), c.covariance.to(dtype)))
    return DataSet(out)


def starting_components(points: DataSet, config: GMMConfig, d: int) -> DataSet:
    init = config.initialization
    if isinstance(init, UserSuppliedInitialization):
        return _check_supplied(init.components, d, config.dtype)
    if isinstance(init, KMeansPlusPlusInitialization):
        return kmeans_plusplus_components(points, config.num_components, config.dtype, init.random_state)
    if isinstance(init, DefaultInitialization):
        return random_components(config.num_components, d, config.dtype, init.random_state)
    raise TypeError(f"Unknown initialization {init!r}")


# ---------------------------
# Covariance seeding
# ---------------------------

def initialize_covariances(components: DataSet, points: DataSet) -> DataSet:
    """Replace every component's covariance with the sample scatter of ALL points
    around that component's mean, divided by (N - 1).

    Points are not partitioned between components here; per-component
    structure only appears after the first M-step. Prior and mean are kept.
    """
    num_points = points.count()
    denom = max(num_points - 1, 1)

    def centered_scatter(pair):
        c, x = pair
        if x.position.shape != c.mean.shape:
            raise DimensionMismatchError(
                f"point {x.id} has shape {tuple(x.position.shape)}, component {c.id} mean has {tuple(c.mean.shape)}"
            )
        return MixtureComponent(c.id, c.prior, c.mean, outer_product(x.position - c.mean))

    def sum_scatter(a, b):
        return MixtureComponent(a.id, a.prior, a.mean, add(a.covariance, b.covariance))

    seeded = (
        components.cross(points)
        .map(centered_scatter)
        .group_by(lambda c: c.id)
        .reduce(sum_scatter)
        .map(lambda c: MixtureComponent(c.id, c.prior, c.mean, scale(c.covariance, 1.0 / denom)))
    )
    logger.debug("seeded %d covariances from %d points", seeded.count(), num_points)
    return seeded
