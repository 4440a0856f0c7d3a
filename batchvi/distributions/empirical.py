# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

import torch
from torch.distributions import Categorical, Distribution, constraints


class Empirical(Distribution):
    r"""
    Empirical distribution over a collection of weighted samples, e.g. the
    states visited by a Langevin chain. Samples are aggregated along the
    leftmost dim; ``log_weights`` must have shape ``(num_samples,)``.

    Example:

    >>> emp_dist = Empirical(torch.randn(100, 5, 2), torch.zeros(100))
    >>> emp_dist.event_shape
    torch.Size([5, 2])
    >>> emp_dist.sample((7,)).shape
    torch.Size([7, 5, 2])

    :param torch.Tensor samples: samples, of shape ``(num_samples,) + event_shape``.
    :param torch.Tensor log_weights: log weights (optional) corresponding
        to the samples. Defaults to uniform weights.
    """

    arg_constraints = {}
    support = constraints.real
    has_enumerate_support = True

    def __init__(self, samples, log_weights=None, validate_args=None):
        if log_weights is None:
            log_weights = torch.zeros(samples.shape[:1], device=samples.device)
        if log_weights.dim() != 1 or log_weights.shape[0] != samples.shape[0]:
            raise ValueError("The shape of ``log_weights`` ({}) must match "
                             "the leftmost shape of ``samples`` ({})".format(log_weights.shape, samples.shape))
        if samples.shape[0] == 0:
            raise ValueError("Empirical requires at least one sample")
        self._samples = samples
        self._log_weights = log_weights
        self._categorical = Categorical(logits=log_weights)
        super().__init__(batch_shape=torch.Size(),
                         event_shape=samples.shape[1:],
                         validate_args=validate_args)

    @property
    def sample_size(self):
        """
        Number of samples that constitute the empirical distribution.

        :return int: number of samples collected.
        """
        return self._log_weights.numel()

    def sample(self, sample_shape=torch.Size()):
        sample_idx = self._categorical.sample(sample_shape)
        return self._samples[sample_idx]

    def log_prob(self, value):
        """
        Returns the log of the probability mass function evaluated at ``value``.
        Only supports scoring values with empty ``sample_shape``.
        """
        if self._validate_args and value.shape != self.event_shape:
            raise ValueError("``value.shape`` must be {}".format(self.event_shape))
        selection_mask = self._samples.eq(value)
        for _ in range(len(self.event_shape)):
            selection_mask = selection_mask.min(dim=-1)[0]
        selection_mask = selection_mask.type(self._categorical.probs.type())
        return (self._categorical.probs * selection_mask).sum(dim=-1).log()

    def _weighted_mean(self, value):
        weights = self._log_weights.reshape((-1,) + (1,) * (value.dim() - 1))
        relative_probs = (weights - weights.max()).exp()
        return (value * relative_probs).sum(0) / relative_probs.sum(0)

    @property
    def mean(self):
        if self._samples.dtype in (torch.int32, torch.int64):
            raise ValueError("Mean for discrete empirical distribution undefined. "
                             "Consider converting samples to ``torch.float32`` "
                             "or ``torch.float64``.")
        return self._weighted_mean(self._samples)

    @property
    def variance(self):
        if self._samples.dtype in (torch.int32, torch.int64):
            raise ValueError("Variance for discrete empirical distribution undefined. "
                             "Consider converting samples to ``torch.float32`` "
                             "or ``torch.float64``.")
        deviation_squared = torch.pow(self._samples - self.mean, 2)
        return self._weighted_mean(deviation_squared)

    @property
    def log_weights(self):
        return self._log_weights

    def enumerate_support(self, expand=True):
        return self._samples
