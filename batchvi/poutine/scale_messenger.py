# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

import torch

from batchvi.poutine.messenger import Messenger
from batchvi.poutine.util import is_validation_enabled


class ScaleMessenger(Messenger):
    """
    Given a stochastic function with some sample statements and a positive
    scale factor, scale the score of all sample and observe sites in the
    function.

        >>> def model(x):
        ...     batchvi.sample("z", dist.Normal(x, 1.), obs=torch.tensor(1.0))
        >>> scaled_tr = batchvi.poutine.trace(batchvi.poutine.scale(model, scale=0.5)).get_trace(0.0)
        >>> unscaled_tr = batchvi.poutine.trace(model).get_trace(0.0)
        >>> bool(scaled_tr.log_prob_sum() == 0.5 * unscaled_tr.log_prob_sum())
        True

    :param fn: a stochastic function (callable containing primitive calls)
    :param scale: a positive scaling factor
    :returns: stochastic function decorated with a :class:`~batchvi.poutine.scale_messenger.ScaleMessenger`
    """

    def __init__(self, scale):
        if isinstance(scale, torch.Tensor):
            if is_validation_enabled() and not (scale > 0).all():
                raise ValueError("Expected scale > 0 but got {}".format(scale))
        elif not (scale > 0):
            raise ValueError("Expected scale > 0 but got {}".format(scale))
        super().__init__()
        self.scale = scale

    def _process_sample(self, msg):
        msg["scale"] = self.scale * msg["scale"]
