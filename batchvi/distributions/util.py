# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

import numbers

import torch


def sum_rightmost(value, dim):
    """
    Sum out ``dim`` many rightmost dimensions of a given tensor.

    If ``dim`` is 0, no dimensions are summed out.
    If ``dim`` is ``float('inf')``, then all dimensions are summed out.
    If ``dim`` is 1, the rightmost 1 dimension is summed out.
    If ``dim`` is -1, all but the leftmost 1 dimension is summed out.

    :param torch.Tensor value: A tensor of ``.dim()`` at least ``dim``.
    :param int dim: The number of rightmost dims to sum out.
    """
    if isinstance(value, numbers.Number):
        return value
    if dim < 0:
        dim += value.dim()
    if dim == 0:
        return value
    if dim >= value.dim():
        return value.sum()
    return value.reshape(value.shape[:-dim] + (-1,)).sum(-1)


def broadcast_to_dim(dist, dim, size):
    """
    Expands the batch shape of ``dist`` so that ``batch_shape[dim] == size``,
    left-padding the batch shape with singleton dims as needed. Used by
    :class:`~batchvi.poutine.plate_messenger.PlateMessenger`.

    :param torch.distributions.Distribution dist: a distribution.
    :param int dim: a negative batch dimension.
    :param int size: the target size at ``dim``.
    """
    assert dim < 0
    batch_shape = list(dist.batch_shape)
    if len(batch_shape) >= -dim and batch_shape[dim] == size:
        return dist
    batch_shape = [1] * (-dim - len(batch_shape)) + batch_shape
    if batch_shape[dim] != 1:
        raise ValueError("Shape mismatch inside plate at dim {}: {} vs {}".format(
            dim, batch_shape[dim], size))
    batch_shape[dim] = size
    return dist.expand(torch.Size(batch_shape))
