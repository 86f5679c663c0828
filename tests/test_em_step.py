# tests/test_em_step.py
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import math
from collections import defaultdict

import numpy as np
import pytest
import torch

from bulk_gmm._dataset import DataSet
from bulk_gmm._em_step import (
    component_likelihoods,
    em_step,
    expectation_step,
    maximization_step,
    posteriors,
    total_likelihoods,
)
from bulk_gmm._errors import DimensionMismatchError, SingularCovarianceError, ZeroTotalLikelihoodError
from bulk_gmm._records import Posterior, components_from_arrays, make_component, points_from_array


def _random_seed():
    """Generate a random seed between 1 and 1000."""
    return np.random.default_rng().integers(1, 1001)


class RandomData:
    """Points drawn from a random full-covariance mixture, plus that mixture."""

    def __init__(self, rng, n_samples=60, n_components=3, n_features=2):
        K, D = n_components, n_features
        w = rng.rand(K)
        self.weights = w / w.sum()
        self.means = rng.rand(K, D) * 10.0
        covs = []
        for _ in range(K):
            A = rng.randn(D, D)
            C = A @ A.T
            C /= (np.trace(C) / D)
            C += 0.25 * np.eye(D)
            covs.append(C)
        self.cov = np.stack(covs, axis=0)
        labels = rng.choice(K, size=n_samples, p=self.weights)
        L = np.linalg.cholesky(self.cov)
        self.X = np.stack([self.means[k] + L[k] @ rng.randn(D) for k in labels])

    def components(self):
        return components_from_arrays(self.weights, self.means, self.cov)

    def points(self):
        return points_from_array(self.X)


def _by_point(posterior):
    sums = defaultdict(float)
    for p in posterior:
        sums[p.point_id] += p.probability
    return sums


# ---------------------------
# E-step
# ---------------------------

@pytest.mark.parametrize("density", ["gaussian", "source"])
def test_single_component_single_point_posterior_is_one(density):
    comps = DataSet.from_elements(make_component(1, 1.0, [0.0], [[1.0]]))
    points = points_from_array([[0.0]])
    post = expectation_step(comps, points, density=density).collect()
    assert len(post) == 1
    assert post[0].component_id == 1 and post[0].point_id == 0
    assert post[0].probability == pytest.approx(1.0)


def test_gaussian_density_matches_torch_multivariate_normal():
    rng = np.random.RandomState(_random_seed())
    data = RandomData(rng, n_samples=20, n_components=2, n_features=3)
    likelihoods = component_likelihoods(data.components(), data.points(), density="gaussian")

    X = torch.from_numpy(data.X)
    for l in likelihoods:
        k = l.component_id - 1
        mvn = torch.distributions.MultivariateNormal(
            loc=torch.from_numpy(data.means[k]),
            covariance_matrix=torch.from_numpy(data.cov[k]),
        )
        expected = data.weights[k] * math.exp(float(mvn.log_prob(X[l.point_id])))
        assert l.likelihood == pytest.approx(expected, rel=1e-9)


def test_density_normalizers_at_the_mean():
    # d=2, covariance 2*I, point at the mean, prior 0.5
    comps = DataSet.from_elements(make_component(1, 0.5, [1.0, 1.0], [[2.0, 0.0], [0.0, 2.0]]))
    points = points_from_array([[1.0, 1.0]])

    gaussian = component_likelihoods(comps, points, density="gaussian").first().likelihood
    source = component_likelihoods(comps, points, density="source").first().likelihood

    # (2*pi)^(d/2) * sqrt(det) = 2*pi * 2
    assert gaussian == pytest.approx(0.5 / (4.0 * math.pi))
    # sqrt(2*pi) * |det| = sqrt(2*pi) * 4
    assert source == pytest.approx(0.5 / (math.sqrt(2.0 * math.pi) * 4.0))


def test_total_likelihood_is_sum_over_components():
    rng = np.random.RandomState(_random_seed())
    data = RandomData(rng, n_samples=15, n_components=3, n_features=2)
    likelihoods = component_likelihoods(data.components(), data.points())
    totals = {t.point_id: t.total_likelihood for t in total_likelihoods(likelihoods)}

    assert len(totals) == 15
    expected = defaultdict(float)
    for l in likelihoods:
        expected[l.point_id] += l.likelihood
    for pid, total in totals.items():
        assert total == pytest.approx(expected[pid])


@pytest.mark.parametrize("density", ["gaussian", "source"])
def test_posteriors_sum_to_one(density):
    rng = np.random.RandomState(_random_seed())
    data = RandomData(rng, n_samples=50, n_components=3, n_features=2)
    post = expectation_step(data.components(), data.points(), density=density)

    assert post.count() == 50 * 3
    for p in post:
        assert 0.0 <= p.probability <= 1.0
    for pid, s in _by_point(post).items():
        assert s == pytest.approx(1.0, abs=1e-9), f"point {pid} posteriors sum to {s}"


def test_zero_total_likelihood_raises_by_default():
    comps = DataSet.from_elements(
        make_component(1, 0.5, [0.0], [[1e-4]]),
        make_component(2, 0.5, [1.0], [[1e-4]]),
    )
    points = points_from_array([[0.0], [1000.0]])
    with pytest.raises(ZeroTotalLikelihoodError) as exc:
        expectation_step(comps, points)
    assert exc.value.point_id == 1


def test_zero_total_likelihood_uniform_policy():
    comps = DataSet.from_elements(
        make_component(1, 0.5, [0.0], [[1e-4]]),
        make_component(2, 0.5, [1.0], [[1e-4]]),
    )
    points = points_from_array([[0.0], [1000.0]])
    post = expectation_step(comps, points, zero_likelihood="uniform")
    far = [p.probability for p in post if p.point_id == 1]
    assert far == [0.5, 0.5]
    near = {p.component_id: p.probability for p in post if p.point_id == 0}
    assert near[1] == pytest.approx(1.0)


def test_singular_covariance_raises():
    comps = DataSet.from_elements(
        make_component(1, 0.5, [0.0, 0.0], [[1.0, 0.0], [0.0, 1.0]]),
        make_component(2, 0.5, [1.0, 1.0], [[1.0, 1.0], [1.0, 1.0]]),
    )
    points = points_from_array([[0.0, 0.0], [1.0, 1.0]])
    with pytest.raises(SingularCovarianceError) as exc:
        expectation_step(comps, points)
    assert exc.value.component_id == 2


@pytest.mark.parametrize("density", ["gaussian", "source"])
def test_indefinite_covariance_raises(density):
    # det = -3: invertible, but the density would grow away from the mean
    comps = DataSet.from_elements(
        make_component(1, 0.5, [0.0, 0.0], [[1.0, 2.0], [2.0, 1.0]]),
        make_component(2, 0.5, [5.0, 5.0], [[1.0, 0.0], [0.0, 1.0]]),
    )
    points = points_from_array([[1.0, -1.0], [3.0, -3.0]])
    with pytest.raises(SingularCovarianceError) as exc:
        expectation_step(comps, points, density=density)
    assert exc.value.component_id == 1


def test_uniform_policy_counts_components_from_likelihoods():
    comps = DataSet.from_elements(
        make_component(1, 0.5, [0.0], [[1e-4]]),
        make_component(2, 0.5, [1.0], [[1e-4]]),
    )
    points = points_from_array([[1000.0]])
    likelihoods = component_likelihoods(comps, points)
    post = posteriors(likelihoods, total_likelihoods(likelihoods), zero_likelihood="uniform")
    probs = [p.probability for p in post]
    assert probs == [0.5, 0.5]
    assert sum(probs) == pytest.approx(1.0)


def test_point_of_wrong_dimension_raises():
    comps = DataSet.from_elements(make_component(1, 1.0, [0.0, 0.0], [[1.0, 0.0], [0.0, 1.0]]))
    points = points_from_array([[0.0, 0.0, 0.0]])
    with pytest.raises(DimensionMismatchError):
        expectation_step(comps, points)


def test_expectation_step_is_deterministic():
    rng = np.random.RandomState(_random_seed())
    data = RandomData(rng, n_samples=30, n_components=2, n_features=2)
    comps, points = data.components(), data.points()
    a = sorted((p.point_id, p.component_id, p.probability) for p in expectation_step(comps, points))
    b = sorted((p.point_id, p.component_id, p.probability) for p in expectation_step(comps, points))
    assert a == b


# ---------------------------
# M-step
# ---------------------------

def test_maximization_step_hand_computed():
    points = points_from_array([[0.0], [2.0], [4.0]])
    posterior = DataSet.from_elements(
        Posterior(1, 0, 0.5), Posterior(1, 1, 0.5), Posterior(1, 2, 0.0),
        Posterior(2, 0, 0.5), Posterior(2, 1, 0.5), Posterior(2, 2, 1.0),
    )
    comps = {c.id: c for c in maximization_step(posterior, points)}

    # component 1: weight 1, mean 1, E[x^2] = 2 -> var 1
    assert comps[1].prior == pytest.approx(1.0 / 3.0)
    assert torch.allclose(comps[1].mean, torch.tensor([1.0], dtype=torch.float64))
    assert torch.allclose(comps[1].covariance, torch.tensor([[1.0]], dtype=torch.float64))

    # component 2: weight 2, mean 2.5, E[x^2] = 9 -> var 2.75
    assert comps[2].prior == pytest.approx(2.0 / 3.0)
    assert torch.allclose(comps[2].mean, torch.tensor([2.5], dtype=torch.float64))
    assert torch.allclose(comps[2].covariance, torch.tensor([[2.75]], dtype=torch.float64))


def test_maximization_step_reg_covar_adds_to_diagonal():
    rng = np.random.RandomState(_random_seed())
    data = RandomData(rng, n_samples=40, n_components=2, n_features=2)
    post = expectation_step(data.components(), data.points())
    plain = {c.id: c for c in maximization_step(post, data.points())}
    reg = {c.id: c for c in maximization_step(post, data.points(), reg_covar=0.1)}
    for cid in plain:
        diff = reg[cid].covariance - plain[cid].covariance
        assert torch.allclose(diff, 0.1 * torch.eye(2, dtype=torch.float64))
        assert torch.allclose(reg[cid].mean, plain[cid].mean)


def test_maximization_step_empty_component_raises():
    points = points_from_array([[0.0], [1.0]])
    posterior = DataSet.from_elements(
        Posterior(1, 0, 1.0), Posterior(1, 1, 1.0),
        Posterior(2, 0, 0.0), Posterior(2, 1, 0.0),
    )
    with pytest.raises(SingularCovarianceError) as exc:
        maximization_step(posterior, points)
    assert exc.value.component_id == 2


@pytest.mark.parametrize("density", ["gaussian", "source"])
def test_em_step_priors_sum_to_one_and_covariances_symmetric(density):
    rng = np.random.RandomState(_random_seed())
    data = RandomData(rng, n_samples=80, n_components=3, n_features=2)
    comps = data.components()
    for _ in range(3):
        comps = em_step(comps, data.points(), density=density, reg_covar=1e-6)
        priors = [c.prior for c in comps]
        assert sum(priors) == pytest.approx(1.0, abs=1e-9)
        assert all(p >= 0.0 for p in priors)
        for c in comps:
            assert torch.allclose(c.covariance, c.covariance.T, atol=1e-9)
            assert torch.isfinite(c.mean).all()


def test_em_step_does_not_mutate_input_generation():
    rng = np.random.RandomState(_random_seed())
    data = RandomData(rng, n_samples=30, n_components=2, n_features=2)
    comps = data.components()
    before = [(c.id, c.prior, c.mean.clone(), c.covariance.clone()) for c in comps]
    em_step(comps, data.points())
    for (cid, prior, mean, cov), c in zip(before, comps):
        assert c.id == cid and c.prior == prior
        assert torch.equal(c.mean, mean) and torch.equal(c.covariance, cov)
