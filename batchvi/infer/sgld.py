# Copyright Contributors to the Pyro project.
# SPDX-License-Identifier: Apache-2.0

from collections import deque

import torch

from batchvi.distributions import Empirical
from batchvi.errors import UnknownSiteError
from batchvi.infer.step import InferenceStep, Mode
from batchvi.optim import SGLD, Optim


class SGLDStep(InferenceStep):
    """
    Sampling variant of :class:`~batchvi.infer.step.InferenceStep`. Local
    updates are ordinary optimizer steps; each global update is one
    stochastic gradient Langevin transition of the global parameters, and
    the visited global states are recorded as samples of an empirical
    posterior approximation.

    Global latent sites should be guided by point masses, e.g.
    ``batchvi.sample("locs", dist.Delta(batchvi.param("locs_q", init), event_dim=2))``,
    so that the scaled ELBO gradient with respect to the global parameters
    is the minibatch estimate of the gradient of the negative log joint.

    :param loss: an :class:`~batchvi.infer.elbo.ELBO` instance.
    :param local_optim: a :class:`~batchvi.optim.Optim` for local parameters.
    :param float lr: initial Langevin step size.
    :param float decay: polynomial decay exponent of the step size.
    :param int num_burn_in: number of initial transitions not recorded.
    :param int max_samples: capacity of the sample buffer; the oldest
        samples are dropped first.
    """

    def __init__(self, loss, local_optim, lr=1e-4, decay=0.0, num_burn_in=0, max_samples=1000):
        if num_burn_in < 0:
            raise ValueError("Expected num_burn_in >= 0 but got {}".format(num_burn_in))
        if max_samples < 1:
            raise ValueError("Expected max_samples >= 1 but got {}".format(max_samples))
        super().__init__(loss, Optim(SGLD, {"lr": lr, "decay": decay}), local_optim)
        self.num_burn_in = num_burn_in
        self.num_transitions = 0
        self._samples = deque(maxlen=max_samples)

    @property
    def num_samples(self):
        return len(self._samples)

    def _after_update(self, mode, subgraph, values):
        if mode is not Mode.GLOBAL:
            return
        self.num_transitions += 1
        if self.num_transitions > self.num_burn_in:
            self._samples.append(values)

    def posterior(self, name):
        """
        :param str name: a global parameter name.
        :returns: the empirical distribution of the recorded constrained
            values of ``name``.
        :rtype: ~batchvi.distributions.Empirical
        :raises UnknownSiteError: if no recorded sample contains ``name``.
        """
        samples = [s[name] for s in self._samples if name in s]
        if not samples:
            raise UnknownSiteError("no samples recorded for global parameter '{}'".format(name))
        return Empirical(torch.stack(samples))
