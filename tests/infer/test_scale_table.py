# Copyright Contributors to the Pyro project.
# SPDX-License-Identifier: Apache-2.0

import pytest
import torch

import batchvi
import batchvi.distributions as dist
import batchvi.poutine as poutine
from batchvi.errors import UnknownSiteError
from batchvi.infer import ScaleTable

pytestmark = pytest.mark.stage("unit")


def test_get_set():
    scales = ScaleTable({"obs": 2.})
    assert scales.get("obs") == 2.
    scales.set("z", torch.tensor(4.))
    assert scales.get("z") == 4.
    assert "z" in scales
    assert len(scales) == 2
    assert dict(scales.items()) == {"obs": 2., "z": 4.}
    with pytest.raises(UnknownSiteError):
        scales.get("missing")


@pytest.mark.parametrize("factor", [0., -1., float("inf"), float("nan"), torch.ones(2), "2"])
def test_set_rejects_bad_factor(factor):
    with pytest.raises(ValueError):
        ScaleTable().set("obs", factor)


@pytest.mark.parametrize("size,subsample_size", [(100, 1), (100, 10), (100, 100), (10000000, 128)])
def test_subsampled_factor(size, subsample_size):
    scales = ScaleTable.subsampled(["z", "obs"], size, subsample_size)
    assert scales.get("z") == size / subsample_size
    assert scales.get("obs") == size / subsample_size


def test_subsampled_rejects_large_batch():
    with pytest.raises(ValueError):
        ScaleTable.subsampled(["obs"], 10, 11)
    with pytest.raises(ValueError):
        ScaleTable.subsampled(["obs"], 10, 0)


@pytest.mark.init(rng_seed=0)
@pytest.mark.parametrize("subsample_size", [1, 10, 50])
def test_scaled_batch_sum_is_unbiased(subsample_size):
    size, num_batches = 100, 20000
    per_sample_loss = torch.randn(size)
    scale = ScaleTable.subsampled(["obs"], size, subsample_size).get("obs")
    indices = torch.randint(0, size, (num_batches, subsample_size))
    estimates = scale * per_sample_loss[indices].sum(-1)
    stderr = estimates.std() / num_batches ** 0.5
    assert (estimates.mean() - per_sample_loss.sum()).abs() < 5 * stderr


def test_from_trace():
    def model():
        loc = batchvi.sample("loc", dist.Normal(0., 1.))
        with batchvi.plate("data", 1000, subsample_size=10):
            batchvi.sample("obs", dist.Normal(loc, 1.), obs=torch.zeros(10))

    def guide():
        batchvi.sample("loc", dist.Normal(0., 1.))

    guide_trace = poutine.trace(guide).get_trace()
    model_trace = poutine.trace(poutine.replay(model, trace=guide_trace)).get_trace()
    scales = ScaleTable.from_trace(model_trace, guide_trace)
    assert scales.get("loc") == 1.
    assert scales.get("obs") == 100.
    assert "data" not in scales


def test_from_trace_conflicting_scales():
    def model():
        batchvi.sample("loc", dist.Normal(0., 1.))

    def guide():
        with batchvi.plate("data", 10, subsample_size=5):
            batchvi.sample("loc", dist.Normal(0., 1.))

    with pytest.raises(ValueError, match="loc"):
        ScaleTable.from_trace(poutine.trace(model).get_trace(), poutine.trace(guide).get_trace())
