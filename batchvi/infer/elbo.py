# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

import logging
import warnings
from abc import ABCMeta, abstractmethod

import torch

from batchvi import poutine
from batchvi.infer.util import enumerated_weights, expected_sum, torch_item
from batchvi.poutine.util import is_validation_enabled, prune_subsample_sites, site_is_subsample
from batchvi.util import warn_if_nan

logger = logging.getLogger(__name__)


class ELBO(metaclass=ABCMeta):
    """
    :class:`ELBO` is the top-level interface for variational inference via
    optimization of the evidence lower bound of a zero-argument model/guide
    pair, such as the ``model`` and ``guide`` of a
    :class:`~batchvi.infer.subgraph.Subgraph`.

    Each site's log probability is weighted by a
    :class:`~batchvi.infer.scale_table.ScaleTable` when one is given, and by
    the scale recorded in the trace otherwise.

    :param num_particles: The number of particles/samples used to form the ELBO
        (gradient) estimators.
    :param int max_plate_nesting: Optional bound on max number of nested
        :func:`batchvi.plate` contexts. This is only required when enumerating
        over sample sites in parallel, e.g. if a site sets
        ``infer={"enumerate": "parallel"}``. If omitted, ELBO guesses a valid
        value by running the (model,guide) pair once, however this guess may
        be incorrect if model or guide structure is dynamic.

    References

    [1] `Automated Variational Inference in Probabilistic Programming`
    David Wingate, Theo Weber

    [2] `Black Box Variational Inference`,
    Rajesh Ranganath, Sean Gerrish, David M. Blei
    """

    def __init__(self, num_particles=1, max_plate_nesting=None):
        if num_particles < 1:
            raise ValueError("Expected num_particles >= 1 but got {}".format(num_particles))
        self.num_particles = num_particles
        self.max_plate_nesting = max_plate_nesting

    def _guess_max_plate_nesting(self, model, guide):
        """
        Guesses max_plate_nesting by running the (model,guide) pair once
        without enumeration. This optimistically assumes static model
        structure.
        """
        with poutine.block(), torch.no_grad():
            guide_trace = poutine.trace(guide).get_trace()
            model_trace = poutine.trace(poutine.replay(model, trace=guide_trace)).get_trace()
        guide_trace = prune_subsample_sites(guide_trace)
        model_trace = prune_subsample_sites(model_trace)
        dims = [frame.dim
                for trace in (model_trace, guide_trace)
                for site in trace.nodes.values()
                if site["type"] == "sample"
                for frame in site["cond_indep_stack"]
                if frame.vectorized]
        self.max_plate_nesting = -min(dims) if dims else 0
        logger.info("Guessed max_plate_nesting = {}".format(self.max_plate_nesting))

    def _get_trace(self, model, guide):
        """
        Returns a single trace from the guide, with enumerated sites expanded
        in parallel, and the model that is run against it.
        """
        if self.max_plate_nesting is None:
            self._guess_max_plate_nesting(model, guide)
        guide = poutine.enum(guide, first_available_dim=-1 - self.max_plate_nesting)
        guide_trace = poutine.trace(guide).get_trace()
        model_trace = poutine.trace(poutine.replay(model, trace=guide_trace)).get_trace()
        if is_validation_enabled():
            unmatched = [name for name in model_trace.stochastic_nodes if name not in guide_trace]
            if unmatched:
                warnings.warn("Found latent sites in the model that are not in the guide: {}".format(unmatched))
        guide_trace.compute_log_prob()
        model_trace.compute_log_prob()
        return model_trace, guide_trace

    def _get_traces(self, model, guide):
        for _ in range(self.num_particles):
            yield self._get_trace(model, guide)

    @abstractmethod
    def differentiable_loss(self, model, guide, scales=None):
        raise NotImplementedError

    def loss(self, model, guide, scales=None):
        """
        :returns: an estimate of the negative ELBO
        :rtype: float
        """
        with torch.no_grad():
            return torch_item(self.differentiable_loss(model, guide, scales))


def _site_log_prob(name, site, scales):
    if scales is None:
        return site["log_prob"]
    return site["unscaled_log_prob"] * scales.get(name)


class Trace_ELBO(ELBO):
    """
    A trace implementation of ELBO-based SVI for mean-field guides:

    - reparameterized guide sites contribute pathwise gradients;
    - guide sites marked ``infer={"enumerate": "parallel"}`` are summed out
      exactly, weighting every downstream log probability by the guide
      probability of each enumerated value;
    - the remaining non-reparameterized sites contribute a score function
      surrogate term.

    :meth:`differentiable_loss` returns a tensor whose value is the negative
    ELBO estimate and whose gradient is the gradient estimator.
    """

    def _differentiable_loss_particle(self, model_trace, guide_trace, scales):
        weights = enumerated_weights(guide_trace)
        elbo_particle = 0.
        for name, site in model_trace.nodes.items():
            if site["type"] == "sample" and not site_is_subsample(site):
                elbo_particle = elbo_particle + expected_sum(_site_log_prob(name, site, scales), weights)
        for name in guide_trace.stochastic_nodes:
            site = guide_trace.nodes[name]
            elbo_particle = elbo_particle - expected_sum(_site_log_prob(name, site, scales), weights)

        surrogate_elbo_particle = elbo_particle
        score_sites = guide_trace.nonreparam_stochastic_nodes
        if score_sites and torch.is_tensor(elbo_particle):
            log_q = sum(guide_trace.nodes[name]["unscaled_log_prob"].sum() for name in score_sites)
            score_term = log_q * elbo_particle.detach()
            surrogate_elbo_particle = elbo_particle + (score_term - score_term.detach())
        return -surrogate_elbo_particle

    def differentiable_loss(self, model, guide, scales=None):
        """
        Computes the surrogate loss that can be differentiated with autograd
        to produce gradient estimates for the model and guide parameters.

        :param callable model: a zero-argument model.
        :param callable guide: a zero-argument guide.
        :param scales: optional :class:`~batchvi.infer.scale_table.ScaleTable`.
        """
        loss = 0.
        for model_trace, guide_trace in self._get_traces(model, guide):
            loss = loss + self._differentiable_loss_particle(model_trace, guide_trace, scales) / self.num_particles
        warn_if_nan(loss, "loss")
        return loss
