"""Observe mixture parameters generation-by-generation, next to scikit-learn."""

import os
import sys
import time

import numpy as np
import pandas as pd
import torch
from sklearn.mixture import GaussianMixture

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from bulk_gmm import GMMConfig, components_from_arrays, fit


def make_data(n_samples, n_dims, n_components, seed=42):
    rng = np.random.RandomState(seed)
    centers = rng.rand(n_components, n_dims) * 10.0
    labels = rng.randint(0, n_components, size=n_samples)
    return centers[labels] + rng.randn(n_samples, n_dims) * 0.5


def observe_bulk(X, n_components, n_iter):
    """Fit with k-means-style starting means and print every generation."""
    print("=" * 70)
    print("BULK EM GMM - Observing Generations")
    print("=" * 70)

    N, D = X.shape
    print(f"\nConfiguration: N={N}, D={D}, K={n_components}, iterations={n_iter}\n")

    # Same starting point as sklearn's means_init below
    means_init = X[np.linspace(0, N - 1, n_components).astype(int)]
    start = components_from_arrays(
        np.full(n_components, 1.0 / n_components),
        means_init,
        np.stack([np.eye(D)] * n_components),
    )

    t0 = time.perf_counter()
    model = fit(X, GMMConfig.from_components(start, num_iterations=n_iter, reg_covar=1e-6))
    elapsed = time.perf_counter() - t0

    rows = []
    for k, generation in enumerate(model.generations):
        for c in sorted(generation, key=lambda c: c.id):
            rows.append({
                "generation": k,
                "component": c.id,
                "prior": c.prior,
                "mean[0]": float(c.mean[0]),
                "trace(cov)": float(torch.trace(c.covariance)),
            })
    frame = pd.DataFrame(rows)
    with pd.option_context("display.max_rows", 200, "display.width", 120):
        print(frame.to_string(index=False))

    print(f"\nFit time: {elapsed:.3f}s")
    print("=" * 70 + "\n")
    return model, means_init


def observe_sklearn(X, n_components, n_iter, means_init):
    print("=" * 70)
    print("SCIKIT-LEARN GMM - Same starting means")
    print("=" * 70)

    gmm = GaussianMixture(
        n_components=n_components,
        covariance_type="full",
        max_iter=n_iter,
        tol=0.0,
        means_init=means_init,
        verbose=2,
        verbose_interval=1,
    )
    gmm.fit(X)
    print(f"\n  Weights: {gmm.weights_}")
    print(f"  Means[:, 0]: {gmm.means_[:, 0]}")
    print("=" * 70 + "\n")
    return gmm


if __name__ == "__main__":
    X = make_data(n_samples=300, n_dims=3, n_components=3)
    model, means_init = observe_bulk(X, n_components=3, n_iter=15)
    gmm = observe_sklearn(X, n_components=3, n_iter=15, means_init=means_init)

    print("Final weight difference (bulk - sklearn):")
    print(model.weights_.numpy() - gmm.weights_)
