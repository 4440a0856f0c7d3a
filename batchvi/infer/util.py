# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

import numbers

import torch


def torch_item(x):
    """
    Like ``x.item()`` for a :class:`~torch.Tensor`, but also works with numbers.
    """
    return x if isinstance(x, numbers.Number) else x.item()


def zero_grads(tensors):
    """
    Clears the gradients of a list of Tensors.
    """
    for p in tensors:
        p.grad = None


def enumerated_weights(guide_trace):
    """
    Builds the posterior weights of the parallel-enumerated sites of a guide
    trace, keyed by the enumeration dim of each site. Each weight is
    ``exp(unscaled_log_prob)`` of its site, so it sums to one along that dim.

    :param guide_trace: a guide :class:`~batchvi.poutine.Trace` with log
        probabilities computed.
    :rtype: dict
    """
    weights = {}
    for name in guide_trace.enumerated_nodes:
        site = guide_trace.nodes[name]
        weights[site["infer"]["_enumerate_dim"]] = site["unscaled_log_prob"].exp()
    return weights


def expected_sum(value, weights):
    """
    Takes the expectation of ``value`` over every enumeration dim it carries,
    then sums the remaining dims.

    :param torch.Tensor value: a log probability tensor.
    :param dict weights: enumeration dim to weight, as returned by
        :func:`enumerated_weights`.
    :rtype: torch.Tensor
    """
    if isinstance(value, numbers.Number):
        return value
    for dim, weight in sorted(weights.items()):
        if value.dim() >= -dim and value.size(dim) > 1:
            value = (value * weight).sum(dim, keepdim=True)
    return value.sum()
