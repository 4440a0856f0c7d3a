# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

import math

import pytest
import torch

from batchvi.distributions import Empirical
from tests.common import assert_close, assert_equal

pytestmark = pytest.mark.stage("unit")


@pytest.mark.parametrize("size", [[], [1], [2, 3]])
@pytest.mark.parametrize("dtype", [torch.float32, torch.float64])
def test_unweighted_mean_and_var(size, dtype):
    samples = []
    for i in range(5):
        samples.append(torch.ones(size, dtype=dtype) * i)
    samples = torch.stack(samples)
    empirical_dist = Empirical(samples, torch.ones(5, dtype=dtype))
    true_mean = torch.ones(size, dtype=dtype) * 2
    true_var = torch.ones(size, dtype=dtype) * 2
    assert_equal(empirical_dist.mean, true_mean)
    assert_equal(empirical_dist.variance, true_var)


def test_weighted_mean_and_var():
    samples = torch.tensor([[0., 0., 0.], [1., 1., 1.]])
    empirical_dist = Empirical(samples, torch.tensor([0., math.log(3.)]))
    assert_close(empirical_dist.mean, torch.full((3,), 0.75), atol=1e-6)
    assert_close(empirical_dist.variance, torch.full((3,), 0.1875), atol=1e-6)


@pytest.mark.parametrize("sample_shape", [[], [20], [20, 3, 4]])
@pytest.mark.parametrize("event_shape", [[], [5], [5, 2]])
def test_sample_shape(sample_shape, event_shape):
    empirical_dist = Empirical(torch.randn([7] + event_shape))
    assert empirical_dist.sample_size == 7
    assert empirical_dist.event_shape == torch.Size(event_shape)
    samples = empirical_dist.sample(torch.Size(sample_shape))
    assert samples.shape == torch.Size(sample_shape + event_shape)


def test_log_prob():
    samples = torch.tensor([[0., 1.], [2., 3.], [0., 1.]])
    empirical_dist = Empirical(samples)
    assert_close(empirical_dist.log_prob(torch.tensor([0., 1.])).item(), math.log(2 / 3), atol=1e-6)
    assert empirical_dist.log_prob(torch.tensor([5., 5.])).item() == float("-inf")


def test_discrete_mean_is_undefined():
    with pytest.raises(ValueError):
        Empirical(torch.arange(3)).mean


def test_bad_weights():
    with pytest.raises(ValueError):
        Empirical(torch.randn(3, 2), torch.zeros(2))
    with pytest.raises(ValueError):
        Empirical(torch.randn(0, 2))
