"""One EM generation written as bulk operators.

E-step
  components x points -> ComponentLikelihood (prior-scaled density)
  group by point, sum  -> TotalLikelihood
  broadcast join       -> Posterior = likelihood / total

M-step
  Posterior join DataPoint -> (p, p*x, p*x x^T)
  group by component, sum  -> per-component weighted sums
  grand total of p         -> broadcast back to every component
  mean = sum(p x) / sum(p), cov = sum(p x x^T) / sum(p) - mean mean^T,
  prior = sum(p) / grand total

Nothing here holds state between calls; a generation is a pure function of
the previous generation and the (fixed) point set.
"""

from __future__ import annotations

import math
import operator
from dataclasses import dataclass

import torch

from ._dataset import DataSet
from ._errors import DimensionMismatchError, SingularCovarianceError, ZeroTotalLikelihoodError
from ._linalg import add, add_reg_diag, cholesky, inverse, mahalanobis, outer_product, scale
from ._records import ComponentLikelihood, MixtureComponent, Posterior, TotalLikelihood

_SQRT_2PI = math.sqrt(2.0 * math.pi)


# ---------------------------
# Density
# ---------------------------

@dataclass(frozen=True, eq=False)
class _PreparedComponent:
    """Component with its inverse covariance and normalizing constant precomputed."""
    id: int
    prior: float
    mean: torch.Tensor
    inv_cov: torch.Tensor
    norm: float


def _normalizer(abs_det: float, d: int, density: str) -> float:
    if density == "source":
        return 1.0 / (_SQRT_2PI * abs_det)
    if density == "gaussian":
        return 1.0 / ((2.0 * math.pi) ** (d / 2.0) * math.sqrt(abs_det))
    raise ValueError(f"Unknown density={density!r}")


def prepare_component(c: MixtureComponent, density: str = "gaussian") -> _PreparedComponent:
    L = cholesky(c.covariance, component_id=c.id)
    # |det| = prod(diag(L))^2
    abs_det = float(torch.prod(torch.diagonal(L))) ** 2
    if abs_det == 0.0 or not math.isfinite(abs_det):
        raise SingularCovarianceError(
            f"covariance of component {c.id} has determinant {abs_det!r}",
            component_id=c.id,
        )
    inv_cov = inverse(c.covariance, component_id=c.id)
    return _PreparedComponent(c.id, c.prior, c.mean, inv_cov, _normalizer(abs_det, c.dim, density))


def _likelihood(c: _PreparedComponent, x) -> ComponentLikelihood:
    if x.position.shape != c.mean.shape:
        raise DimensionMismatchError(
            f"point {x.id} has dimension {x.position.shape[0]}, mixture has {c.mean.shape[0]}"
        )
    diff = x.position - c.mean
    value = c.prior * c.norm * float(torch.exp(-0.5 * mahalanobis(diff, c.inv_cov)))
    if not math.isfinite(value):
        raise SingularCovarianceError(
            f"non-finite density for point {x.id} under component {c.id}; "
            "covariance is not positive definite",
            component_id=c.id,
        )
    return ComponentLikelihood(x.id, c.id, value)


# ---------------------------
# E-step
# ---------------------------

def component_likelihoods(components: DataSet, points: DataSet, density: str = "gaussian") -> DataSet:
    """Prior-scaled density of every point under every component."""
    prepared = components.map(lambda c: prepare_component(c, density))
    return prepared.cross(points).map(lambda pair: _likelihood(*pair))


def total_likelihoods(likelihoods: DataSet) -> DataSet:
    return (
        likelihoods
        .map(lambda l: TotalLikelihood(l.point_id, l.likelihood))
        .group_by(lambda t: t.point_id)
        .reduce(lambda a, b: TotalLikelihood(a.point_id, a.total_likelihood + b.total_likelihood))
    )


def posteriors(
    likelihoods: DataSet,
    totals: DataSet,
    zero_likelihood: str = "raise",
) -> DataSet:
    """likelihood / total per (point, component), joined on point id.

    ``zero_likelihood`` decides what a point with total density 0 gets:
    "raise" fails the step, "uniform" assigns 1 / K, K being the number of
    distinct components in ``likelihoods``.
    """
    num_components = len({l.component_id for l in likelihoods})

    def divide(pair) -> Posterior:
        l, t = pair
        if t.total_likelihood == 0.0:
            if zero_likelihood == "uniform":
                return Posterior(l.component_id, l.point_id, 1.0 / num_components)
            raise ZeroTotalLikelihoodError(
                f"point {l.point_id} has zero density under every component",
                point_id=l.point_id,
            )
        return Posterior(l.component_id, l.point_id, l.likelihood / t.total_likelihood)

    return (
        likelihoods
        .join_with_tiny(totals, where=lambda l: l.point_id, equal_to=lambda t: t.point_id)
        .map(divide)
    )


def expectation_step(
    components: DataSet,
    points: DataSet,
    density: str = "gaussian",
    zero_likelihood: str = "raise",
) -> DataSet:
    likelihoods = component_likelihoods(components, points, density)
    totals = total_likelihoods(likelihoods)
    return posteriors(likelihoods, totals, zero_likelihood)


# ---------------------------
# M-step
# ---------------------------

@dataclass(frozen=True, eq=False)
class _WeightedSums:
    component_id: int
    weight: float
    weighted_position: torch.Tensor  # sum p * x
    weighted_scatter: torch.Tensor   # sum p * x x^T


def _weigh(pair) -> _WeightedSums:
    post, x = pair
    p = post.probability
    return _WeightedSums(
        post.component_id,
        p,
        scale(x.position, p),
        scale(outer_product(x.position), p),
    )


def _sum_weighted(a: _WeightedSums, b: _WeightedSums) -> _WeightedSums:
    return _WeightedSums(
        a.component_id,
        a.weight + b.weight,
        add(a.weighted_position, b.weighted_position),
        add(a.weighted_scatter, b.weighted_scatter),
    )


def maximization_step(posterior: DataSet, points: DataSet, reg_covar: float = 0.0) -> DataSet:
    """New component generation from responsibilities and points."""
    weighted = (
        posterior
        .join_with_tiny(points, where=lambda p: p.point_id, equal_to=lambda x: x.id)
        .map(_weigh)
        .group_by(lambda w: w.component_id)
        .reduce(_sum_weighted)
    )
    sum_priors = weighted.map(lambda w: w.weight).reduce(operator.add)

    def finish(pair) -> MixtureComponent:
        w, total = pair
        if w.weight <= 0.0:
            raise SingularCovarianceError(
                f"component {w.component_id} received no responsibility mass",
                component_id=w.component_id,
            )
        mean = scale(w.weighted_position, 1.0 / w.weight)
        cov = scale(w.weighted_scatter, 1.0 / w.weight) - outer_product(mean)
        cov = add_reg_diag(cov, reg_covar)
        return MixtureComponent(w.component_id, w.weight / total, mean, cov)

    return weighted.cross(sum_priors).map(finish)


def em_step(
    components: DataSet,
    points: DataSet,
    density: str = "gaussian",
    zero_likelihood: str = "raise",
    reg_covar: float = 0.0,
) -> DataSet:
    """E-step followed by M-step: generation k -> generation k + 1."""
    post = expectation_step(components, points, density, zero_likelihood)
    return maximization_step(post, points, reg_covar)
