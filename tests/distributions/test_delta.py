# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

import pytest
import torch

import batchvi.distributions as dist
from tests.common import assert_equal

pytestmark = pytest.mark.stage("unit")


def test_log_prob():
    d = dist.Delta(torch.tensor([3.0]))
    assert_equal(d.log_prob(torch.tensor([[3.0], [3.0]])).sum().item(), 0.)
    assert d.log_prob(torch.tensor([2.0])).item() == float("-inf")


def test_event_dim():
    v = torch.randn(5, 2)
    d = dist.Delta(v, event_dim=2)
    assert d.batch_shape == ()
    assert d.event_shape == (5, 2)
    assert d.log_prob(v).shape == ()
    assert d.log_prob(v).item() == 0.
    with pytest.raises(ValueError):
        dist.Delta(v, event_dim=3)


def test_log_density():
    d = dist.Delta(torch.zeros(3), log_density=torch.tensor([1., 2., 3.]))
    assert_equal(d.log_prob(torch.zeros(3)), torch.tensor([1., 2., 3.]))


def test_rsample_is_differentiable():
    v = torch.tensor([1., 2.], requires_grad=True)
    x = dist.Delta(v, event_dim=1).rsample()
    (x ** 2).sum().backward()
    assert_equal(v.grad, torch.tensor([2., 4.]))


def test_expand():
    d = dist.Delta(torch.tensor(1.)).expand([4])
    assert d.batch_shape == (4,)
    assert d.sample().shape == (4,)
    assert_equal(d.mean, torch.ones(4))
    assert_equal(d.variance, torch.zeros(4))
    assert_equal(dist.broadcast_to_dim(dist.Delta(torch.tensor(1.)), -2, 3).batch_shape, torch.Size([3, 1]))
