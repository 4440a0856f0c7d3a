# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

from typing import NamedTuple, Optional

import torch
from torch.distributions import Distribution

from batchvi.distributions.util import broadcast_to_dim
from batchvi.poutine.messenger import Messenger
from batchvi.poutine.runtime import apply_stack, get_dim_allocator, new_message
from batchvi.poutine.util import is_validation_enabled, site_is_subsample


class CondIndepStackFrame(NamedTuple):
    name: str
    dim: Optional[int]
    size: int
    counter: int
    full_size: Optional[int] = None

    @property
    def vectorized(self):
        return self.dim is not None

    def __str__(self):
        return self.name


class _Subsample(Distribution):
    """
    Randomly select a subsample of a range of indices.

    Internal use only. This should only be used by `plate`.
    """

    arg_constraints = {}

    def __init__(self, size, subsample_size, device=None):
        """
        :param int size: the size of the range to subsample from
        :param int subsample_size: the size of the returned subsample
        :param str device: device to place the `sample` and `log_prob`
            results on.
        """
        self.size = size
        self.subsample_size = subsample_size
        self.device = device or torch.tensor(tuple()).device
        super().__init__(batch_shape=torch.Size(), validate_args=False)

    def sample(self, sample_shape=torch.Size()):
        """
        :returns: a random subsample of `range(size)`
        :rtype: torch.LongTensor
        """
        if sample_shape:
            raise NotImplementedError
        subsample_size = self.subsample_size
        if subsample_size is None or subsample_size >= self.size:
            return torch.arange(self.size, device=self.device)
        return torch.randperm(self.size, device=self.device)[:subsample_size].clone()

    def log_prob(self, x):
        # This is zero so that plate can provide an unbiased estimate of
        # the non-subsampled log_prob.
        return torch.tensor(0.0, device=self.device)


class PlateMessenger(Messenger):
    """
    Conditional independence context over a dataset axis that combines
    shape inference, independence annotation and subsampling.

    On construction it emits a ``"sample"`` site named after the plate whose
    value is the index tensor of the subsample, so that the indices can be
    fixed with :func:`~batchvi.poutine.condition`. Inside the plate, the
    scale of each sample site is multiplied by ``size / subsample_size`` and
    the batch shape of each distribution is broadcast along the plate's dim.

    :param str name: the plate name, also the name of the subsample site.
    :param int size: the full size of the dataset axis.
    :param int subsample_size: optional size of the random subsample.
    :param torch.Tensor subsample: optional explicit subsample of indices.
    :param int dim: optional negative dim to allocate, counting from the right.
    """

    def __init__(self, name, size, subsample_size=None, subsample=None, dim=None, device=None):
        super().__init__()
        if size is None or size <= 0:
            raise ValueError("plate '{}' expected size > 0 but got {}".format(name, size))
        msg = new_message("sample", name, _Subsample(size, subsample_size, device), value=subsample)
        apply_stack(msg)
        subsample = msg["value"]
        if subsample_size is None:
            subsample_size = subsample.size(0)
        elif subsample_size != subsample.size(0):
            raise ValueError(
                "subsample_size does not match len(subsample), {} vs {}.".format(
                    subsample_size, subsample.size(0)) +
                " Did you accidentally use different subsample_size in the model and guide?")
        if is_validation_enabled() and subsample.numel() and \
                (subsample.min() < 0 or subsample.max() >= size):
            raise ValueError("plate '{}' subsample indices must lie in [0, {})".format(name, size))
        self.name = name
        self.size = size
        self.subsample_size = subsample_size
        self.indices = subsample
        self._requested_dim = dim
        self.dim = dim

    def __enter__(self):
        self.dim = get_dim_allocator().allocate(self.name, self._requested_dim)
        super().__enter__()
        return self.indices

    def __exit__(self, *args):
        get_dim_allocator().free(self.name, self.dim)
        return super().__exit__(*args)

    def _process_sample(self, msg):
        frame = CondIndepStackFrame(
            name=self.name,
            dim=self.dim,
            size=self.subsample_size,
            counter=0,
            full_size=self.size,
        )
        msg["cond_indep_stack"] = (frame,) + msg["cond_indep_stack"]
        msg["scale"] = msg["scale"] * self.size / self.subsample_size
        if not msg["done"] and not site_is_subsample(msg) and hasattr(msg["fn"], "batch_shape"):
            try:
                msg["fn"] = broadcast_to_dim(msg["fn"], self.dim, self.subsample_size)
            except ValueError as e:
                raise ValueError("Shape mismatch inside plate('{}') at site {} dim {}: {}".format(
                    self.name, msg["name"], self.dim, e)) from e
