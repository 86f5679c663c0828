"""Immutable records exchanged between pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Union

import numpy as np
import torch

from ._dataset import DataSet
from ._errors import DimensionMismatchError

ArrayLike = Union[torch.Tensor, np.ndarray, Sequence[float], Sequence[Sequence[float]]]


def as_tensor(x: ArrayLike, dtype: torch.dtype = torch.float64) -> torch.Tensor:
    if isinstance(x, torch.Tensor):
        return x.to(dtype)
    return torch.as_tensor(np.asarray(x, dtype=np.float64), dtype=dtype)


@dataclass(frozen=True, eq=False)
class DataPoint:
    id: int
    position: torch.Tensor  # (d,)

    @property
    def dim(self) -> int:
        return int(self.position.shape[0])


@dataclass(frozen=True, eq=False)
class MixtureComponent:
    id: int
    prior: float
    mean: torch.Tensor        # (d,)
    covariance: torch.Tensor  # (d, d)

    @property
    def dim(self) -> int:
        return int(self.mean.shape[0])


# Transient records; only live inside one generation.

@dataclass(frozen=True)
class ComponentLikelihood:
    point_id: int
    component_id: int
    likelihood: float


@dataclass(frozen=True)
class TotalLikelihood:
    point_id: int
    total_likelihood: float


@dataclass(frozen=True)
class Posterior:
    component_id: int
    point_id: int
    probability: float


# ---------------------------
# Builders
# ---------------------------

def points_from_array(X: ArrayLike, dtype: torch.dtype = torch.float64) -> DataSet:
    """Build DataPoints with ids 0..N-1 from an (N, d) array."""
    X = as_tensor(X, dtype)
    if X.dim() != 2:
        raise DimensionMismatchError(f"X must have shape (N, d), got {tuple(X.shape)}")
    return DataSet(DataPoint(i, X[i].clone()) for i in range(X.shape[0]))


def make_component(
    id: int,
    prior: float,
    mean: ArrayLike,
    covariance: ArrayLike,
    dtype: torch.dtype = torch.float64,
) -> MixtureComponent:
    mean_t = as_tensor(mean, dtype)
    cov_t = as_tensor(covariance, dtype)
    if mean_t.dim() != 1:
        raise DimensionMismatchError(f"mean must be 1-D, got shape {tuple(mean_t.shape)}")
    d = mean_t.shape[0]
    if cov_t.shape != (d, d):
        raise DimensionMismatchError(
            f"covariance of component {id} must have shape ({d}, {d}), got {tuple(cov_t.shape)}"
        )
    return MixtureComponent(int(id), float(prior), mean_t, cov_t)


def components_from_arrays(
    weights: ArrayLike,
    means: ArrayLike,
    covariances: ArrayLike,
    dtype: torch.dtype = torch.float64,
    ids: Optional[Iterable[int]] = None,
) -> DataSet:
    """Build components from sklearn-shaped arrays: (K,), (K, d), (K, d, d).

    Ids default to 1..K.
    """
    w = as_tensor(weights, dtype)
    mu = as_tensor(means, dtype)
    cov = as_tensor(covariances, dtype)
    K = w.shape[0]
    if mu.dim() != 2 or mu.shape[0] != K:
        raise DimensionMismatchError(f"means must have shape (K, d) with K={K}, got {tuple(mu.shape)}")
    d = mu.shape[1]
    if cov.shape != (K, d, d):
        raise DimensionMismatchError(f"covariances must have shape {(K, d, d)}, got {tuple(cov.shape)}")
    ids = list(ids) if ids is not None else list(range(1, K + 1))
    return DataSet(
        MixtureComponent(int(i), float(w[k]), mu[k].clone(), cov[k].clone())
        for k, i in enumerate(ids)
    )
