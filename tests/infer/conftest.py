# Copyright Contributors to the Pyro project.
# SPDX-License-Identifier: Apache-2.0

import pytest
import torch
from torch.distributions import constraints

import batchvi
import batchvi.distributions as dist
from batchvi.data import TensorDataSource
from batchvi.infer import HierarchicalModel
from batchvi.params import LocalParamSpec

LOCAL_SPECS = {
    "z_loc": LocalParamSpec(()),
    "z_scale": LocalParamSpec((), init=1., constraint=constraints.positive),
}


def normal_normal(size, plate_name="data"):
    """
    ``loc ~ N(0, 10)``, ``z_n ~ N(loc, 1)``, ``x_n ~ N(z_n, 1)`` with a point
    mass guide for ``loc`` and a local normal guide for each ``z_n``.
    """
    def model(data):
        loc = batchvi.sample("loc", dist.Normal(0., 10.))
        with batchvi.plate(plate_name, size):
            z = batchvi.sample("z", dist.Normal(loc, 1.))
            batchvi.sample("obs", dist.Normal(z, 1.), obs=data)

    def guide(data):
        loc_q = batchvi.param("loc_q", lambda: torch.tensor(0.))
        batchvi.sample("loc", dist.Delta(loc_q))
        with batchvi.plate(plate_name, size):
            batchvi.sample("z", dist.Normal(batchvi.param("z_loc"), batchvi.param("z_scale")))

    return HierarchicalModel(model, guide, size, plate_name=plate_name)


@pytest.fixture
def hmodel():
    return normal_normal(100)


@pytest.fixture
def data_source():
    return TensorDataSource(3. + torch.randn(100))


@pytest.fixture
def make_hmodel():
    return normal_normal


@pytest.fixture
def local_specs():
    return dict(LOCAL_SPECS)
