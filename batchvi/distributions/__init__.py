# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

# Models are written against the upstream torch distributions.
from torch.distributions import (
    Bernoulli,
    Beta,
    Categorical,
    Dirichlet,
    Distribution,
    Gamma,
    HalfNormal,
    Independent,
    LogNormal,
    MultivariateNormal,
    Normal,
    OneHotCategorical,
    Poisson,
    Uniform,
    constraints,
    kl_divergence,
)

from batchvi.distributions.delta import Delta
from batchvi.distributions.empirical import Empirical
from batchvi.distributions.util import broadcast_to_dim, sum_rightmost

__all__ = [
    "Bernoulli",
    "Beta",
    "Categorical",
    "Delta",
    "Dirichlet",
    "Distribution",
    "Empirical",
    "Gamma",
    "HalfNormal",
    "Independent",
    "LogNormal",
    "MultivariateNormal",
    "Normal",
    "OneHotCategorical",
    "Poisson",
    "Uniform",
    "broadcast_to_dim",
    "constraints",
    "kl_divergence",
    "sum_rightmost",
]
