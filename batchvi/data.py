# Copyright Contributors to the Pyro project.
# SPDX-License-Identifier: Apache-2.0

"""
Sources of minibatches for :class:`~batchvi.infer.driver.SubsamplingDriver`.

A data source knows the dataset size ``N`` and draws batches of ``M``
indices together with the observations at those indices. The default
scheme draws indices i.i.d. uniformly with replacement, independently
across outer iterations; :class:`TensorDataSource` can instead shuffle
the dataset into epochs.
"""
from typing import Callable, NamedTuple

import torch


class Batch(NamedTuple):
    """
    A minibatch: ``M`` data indices and the observations at those indices.
    ``values`` has leading dim ``M``.
    """
    indices: torch.Tensor
    values: torch.Tensor

    @property
    def batch_size(self) -> int:
        return self.indices.size(0)


class DataSource:
    """
    Base class for data sources.

    :param int size: the dataset size ``N``.
    """

    def __init__(self, size: int) -> None:
        if size <= 0:
            raise ValueError("Expected size > 0 but got {}".format(size))
        self.size = size

    def __len__(self) -> int:
        return self.size

    def next_batch(self, batch_size: int) -> Batch:
        """
        :param int batch_size: the batch size ``M``, with ``0 < M <= N``.
        :rtype: Batch
        """
        if not 0 < batch_size <= self.size:
            raise ValueError("Expected 0 < batch_size <= {} but got {}".format(self.size, batch_size))
        indices = self._next_indices(batch_size)
        return Batch(indices, self.values(indices))

    def _next_indices(self, batch_size: int) -> torch.Tensor:
        return torch.randint(0, self.size, (batch_size,))

    def values(self, indices: torch.Tensor) -> torch.Tensor:
        raise NotImplementedError


class TensorDataSource(DataSource):
    """
    Data source over an in-memory tensor whose leading dim indexes the data.

    :param torch.Tensor data: the dataset, of shape ``(N,) + event_shape``.
    :param bool replacement: whether to draw indices i.i.d. with replacement
        (default) or to walk through shuffled epochs without replacement.
    """

    def __init__(self, data: torch.Tensor, replacement: bool = True) -> None:
        super().__init__(data.size(0))
        self.data = data
        self.replacement = replacement
        self._perm = torch.empty(0, dtype=torch.long)

    def _next_indices(self, batch_size):
        if self.replacement:
            return super()._next_indices(batch_size)
        if self._perm.size(0) < batch_size:
            # start a new epoch, carrying over the tail of the previous one
            self._perm = torch.cat([self._perm, torch.randperm(self.size)])
        indices, self._perm = self._perm[:batch_size], self._perm[batch_size:]
        return indices

    def values(self, indices):
        return self.data[indices]


class FunctionDataSource(DataSource):
    """
    Data source whose observations are generated from their indices on
    demand, so that the dataset may be far larger than memory::

        true_locs = torch.tensor([[10., 0.], [-10., 0.]])
        source = FunctionDataSource(10000000, lambda idx: true_locs[idx % 2] + torch.randn(len(idx), 2))

    :param int size: the dataset size ``N``.
    :param callable fn: maps a 1-d index tensor of length ``M`` to a tensor
        with leading dim ``M``.
    """

    def __init__(self, size: int, fn: Callable[[torch.Tensor], torch.Tensor]) -> None:
        super().__init__(size)
        self.fn = fn

    def values(self, indices):
        return self.fn(indices)
