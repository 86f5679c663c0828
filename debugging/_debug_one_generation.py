"""Dump every intermediate DataSet of one EM generation on a tiny dataset."""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np
import pandas as pd

from bulk_gmm import (
    DataSet,
    component_likelihoods,
    initialize_covariances,
    make_component,
    maximization_step,
    points_from_array,
    posteriors,
    total_likelihoods,
)


def pretty(name, ds):
    print(f"\n--- {name} ({ds.count()} records)")
    frame = ds.to_frame()
    with pd.option_context("display.width", 120, "display.max_colwidth", 60):
        print(frame)


def main():

    np.set_printoptions(precision=6, suppress=True)

    # -----------------------------
    # 1) Hard-coded tiny dataset (2D)
    # -----------------------------
    points = points_from_array([
        [0, 0],
        [1, 0],
        [0, 1],
        [1, 1],
    ])

    # -----------------------------
    # 2) Hard-coded starting params
    # -----------------------------
    components = DataSet.from_elements(
        make_component(1, 0.5, [0.45, 0.15], [[1.0, 0.0], [0.0, 1.0]]),
        make_component(2, 0.5, [0.55, 0.85], [[1.0, 0.0], [0.0, 1.0]]),
    )

    pretty("points", points)
    pretty("starting components", components)

    # -----------------------------
    # 3) Covariance seeding
    # -----------------------------
    components = initialize_covariances(components, points)
    pretty("generation 0", components)

    # -----------------------------
    # 4) E-step
    # -----------------------------
    likelihoods = component_likelihoods(components, points)
    pretty("component likelihoods", likelihoods)

    totals = total_likelihoods(likelihoods)
    pretty("total likelihoods", totals)

    post = posteriors(likelihoods, totals)
    pretty("posteriors", post)

    # -----------------------------
    # 5) M-step
    # -----------------------------
    pretty("generation 1", maximization_step(post, points))


if __name__ == "__main__":
    main()
