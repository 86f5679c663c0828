"""Gaussian mixture EM expressed as bulk relational operators."""

from ._config import (
    DefaultInitialization,
    GMMConfig,
    KMeansPlusPlusInitialization,
    UserSuppliedInitialization,
)
from ._dataset import DataSet, GroupedDataSet
from ._em_step import (
    component_likelihoods,
    em_step,
    expectation_step,
    maximization_step,
    posteriors,
    total_likelihoods,
)
from ._errors import (
    DimensionMismatchError,
    FitCancelledError,
    GMMError,
    InvalidConfigurationError,
    SingularCovarianceError,
    ZeroTotalLikelihoodError,
)
from ._gmm import GaussianMixtureEM, GMModel, fit, predict
from ._initializer import initialize_covariances, kmeans_plusplus_components, random_components
from ._records import (
    ComponentLikelihood,
    DataPoint,
    MixtureComponent,
    Posterior,
    TotalLikelihood,
    components_from_arrays,
    make_component,
    points_from_array,
)

__version__ = "0.1.0"
