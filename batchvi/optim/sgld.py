# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

import math

import torch
from torch.optim.optimizer import Optimizer


class SGLD(Optimizer):
    r"""
    :param params: iterable of parameters to optimize or dicts defining parameter groups
    :param lr: initial step size (default: 1e-4)
    :param decay: polynomial decay exponent of the step size (default: 0.0)

    Stochastic gradient Langevin dynamics. Each step takes half a gradient
    step on the loss and adds Gaussian noise whose variance is the step
    size,

    .. math::

        \theta \leftarrow \theta - \frac{\epsilon_t}{2} \nabla L(\theta) + \eta,
        \quad \eta \sim \mathcal{N}(0, \epsilon_t),
        \quad \epsilon_t = \epsilon (1 + t)^{-\gamma}

    so that with a loss equal to a minibatch estimate of the negative log
    joint density, the iterates approximately sample from the posterior.

    Reference

    `Bayesian Learning via Stochastic Gradient Langevin Dynamics`,
    Max Welling, Yee Whye Teh
    """
    def __init__(self, params, lr=1e-4, decay=0.0):
        if not lr > 0:
            raise ValueError("Expected lr > 0 but got {}".format(lr))
        if decay < 0:
            raise ValueError("Expected decay >= 0 but got {}".format(decay))
        defaults = dict(lr=lr, decay=decay)
        super().__init__(params, defaults)

    @torch.no_grad()
    def step(self, closure=None):
        """
        :param closure: An optional closure that reevaluates the model and returns the loss.

        Performs a single Langevin transition.
        """
        loss = None
        if closure is not None:
            with torch.enable_grad():
                loss = closure()

        for group in self.param_groups:
            for p in group['params']:
                if p.grad is None:
                    continue
                state = self.state[p]
                if len(state) == 0:
                    state['step'] = 0
                step_size = group['lr'] * (1 + state['step']) ** -group['decay']
                state['step'] += 1

                p.add_(p.grad, alpha=-0.5 * step_size)
                p.add_(torch.randn_like(p), alpha=math.sqrt(step_size))

        return loss
