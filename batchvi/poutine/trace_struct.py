# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

import sys
from collections import OrderedDict

from batchvi.poutine.util import is_validation_enabled, site_is_subsample
from batchvi.util import warn_if_nan


class Trace:
    """
    Record of every ``batchvi.sample`` and ``batchvi.param`` call in a single
    execution of a program, in execution order. Traces are created and
    populated by :func:`~batchvi.poutine.trace`.

        >>> def model(x):
        ...     s = batchvi.param("s", torch.tensor(0.5))
        ...     z = batchvi.sample("z", dist.Normal(x, s))
        ...     return z ** 2
        >>> trace = batchvi.poutine.trace(bound_model).get_trace(0.0)  # doctest: +SKIP
        >>> trace.log_prob_sum()  # doctest: +SKIP

    Each node is the :class:`~batchvi.poutine.runtime.Message` of its site,
    including ``'scale'``, the product of the factors of enclosing
    :func:`~batchvi.poutine.scale` handlers and subsampled plates, and
    ``'cond_indep_stack'``, the enclosing plate frames.
    """

    def __init__(self):
        self.nodes = OrderedDict()

    def __contains__(self, name):
        return name in self.nodes

    def __iter__(self):
        return iter(self.nodes.keys())

    def __len__(self):
        return len(self.nodes)

    def add_node(self, site_name, **kwargs):
        """
        :param string site_name: the name of the site to be added

        Adds a site to the trace.

        Raises an error when attempting to add a duplicate node
        instead of silently overwriting.
        """
        if site_name in self:
            site = self.nodes[site_name]
            if site['type'] != kwargs['type']:
                # Cannot sample after a param statement.
                raise RuntimeError("{} is already in the trace as a {}".format(site_name, site['type']))
            elif kwargs['type'] != "param":
                # Cannot sample after a previous sample statement.
                raise RuntimeError("Multiple {} sites named '{}'".format(kwargs['type'], site_name))
        self.nodes[site_name] = kwargs

    def remove_node(self, site_name):
        self.nodes.pop(site_name)

    def copy(self):
        """
        Makes a shallow copy of self with nodes preserved.
        """
        new_tr = Trace()
        new_tr.nodes.update(self.nodes)
        return new_tr

    def _site_log_prob(self, name, site):
        try:
            return site["fn"].log_prob(site["value"], *site["args"], **site["kwargs"])
        except ValueError as e:
            _, exc_value, traceback = sys.exc_info()
            shapes = self.format_shapes(last_site=name)
            raise ValueError("Error while computing log_prob at site '{}':\n{}\n{}"
                             .format(name, exc_value, shapes)).with_traceback(traceback) from e

    def compute_log_prob(self, site_filter=lambda name, site: True):
        """
        Compute the site-wise log probabilities of the trace.
        Each ``log_prob`` has shape equal to the corresponding ``batch_shape``
        and is multiplied by the site's ``scale``; the raw value is kept as
        ``unscaled_log_prob``. Each ``log_prob_sum`` is a scalar.
        All computations are memoized.
        """
        for name, site in self.nodes.items():
            if site["type"] == "sample" and site_filter(name, site):
                if "log_prob" not in site:
                    log_p = self._site_log_prob(name, site)
                    site["unscaled_log_prob"] = log_p
                    log_p = log_p * site["scale"]
                    site["log_prob"] = log_p
                    site["log_prob_sum"] = log_p.sum()
                    if is_validation_enabled():
                        warn_if_nan(site["log_prob_sum"], "log_prob_sum at site '{}'".format(name))

    def log_prob_sum(self, site_filter=lambda name, site: True):
        """
        :returns: total scaled log probability of the sample sites.
        :rtype: torch.Tensor
        """
        self.compute_log_prob(site_filter)
        result = 0.0
        for name, site in self.nodes.items():
            if site["type"] == "sample" and site_filter(name, site):
                result = result + site["log_prob_sum"]
        return result

    def detach_(self):
        """
        Detach values (in-place) at each sample site of the trace.
        """
        for _, site in self.nodes.items():
            if site["type"] == "sample":
                site["value"] = site["value"].detach()

    @property
    def observation_nodes(self):
        """
        :return: a list of names of observe sites
        """
        return [name for name, node in self.nodes.items()
                if node["type"] == "sample" and
                node["is_observed"] and
                not site_is_subsample(node)]

    @property
    def param_nodes(self):
        """
        :return: a list of names of param sites
        """
        return [name for name, node in self.nodes.items()
                if node["type"] == "param"]

    @property
    def stochastic_nodes(self):
        """
        :return: a list of names of latent sample sites
        """
        return [name for name, node in self.nodes.items()
                if node["type"] == "sample" and
                not node["is_observed"] and
                not site_is_subsample(node)]

    @property
    def reparameterized_nodes(self):
        return [name for name in self.stochastic_nodes
                if getattr(self.nodes[name]["fn"], "has_rsample", False)]

    @property
    def enumerated_nodes(self):
        return [name for name in self.stochastic_nodes
                if "_enumerate_dim" in self.nodes[name]["infer"]]

    @property
    def nonreparam_stochastic_nodes(self):
        """
        :return: a list of names of latent sample sites that are neither
            reparameterized nor enumerated, i.e. those that need a score
            function gradient estimator.
        """
        skip = set(self.reparameterized_nodes) | set(self.enumerated_nodes)
        return [name for name in self.stochastic_nodes if name not in skip]

    def format_shapes(self, title='Trace Shapes:', last_site=None):
        """
        Returns a string showing a table of the shapes of all sites in the
        trace.
        """
        if not self.nodes:
            return title
        rows = [title]
        for name, site in self.nodes.items():
            if site["type"] == "param":
                rows.append("  {} param: {}".format(name, tuple(site["value"].shape)))
            elif site["type"] == "sample":
                batch_shape = tuple(getattr(site["fn"], "batch_shape", ()))
                event_shape = tuple(getattr(site["fn"], "event_shape", ()))
                value_shape = tuple(getattr(site["value"], "shape", ()))
                rows.append("  {} dist: {} | {}, value: {}".format(name, batch_shape, event_shape, value_shape))
            if name == last_site:
                break
        return "\n".join(rows)
