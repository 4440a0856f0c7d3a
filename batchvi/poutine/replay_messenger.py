# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

from batchvi.poutine.messenger import Messenger


class ReplayMessenger(Messenger):
    """
    Given a callable that contains primitive calls, return a callable that
    runs the original, reusing the values at sites in ``trace`` at those
    sites in the new trace. This is how a model is scored against values
    drawn by its guide.

        >>> guide_trace = batchvi.poutine.trace(guide).get_trace()  # doctest: +SKIP
        >>> replayed_model = batchvi.poutine.replay(model, trace=guide_trace)  # doctest: +SKIP

    :param fn: a stochastic function (callable containing primitive calls)
    :param trace: a :class:`~batchvi.poutine.Trace` data structure to replay against
    :returns: a stochastic function decorated with a :class:`~batchvi.poutine.replay_messenger.ReplayMessenger`
    """

    def __init__(self, trace=None):
        super().__init__()
        if trace is None:
            raise ValueError("must provide trace to replay against")
        self.trace = trace

    def _process_sample(self, msg):
        """
        At a latent sample site that appears in self.trace, returns the value
        from self.trace instead of sampling from the distribution at the
        site. Observed sites are left alone.
        """
        name = msg["name"]
        if name in self.trace:
            guide_msg = self.trace.nodes[name]
            if msg["is_observed"]:
                return None
            if guide_msg["type"] != "sample" or guide_msg["is_observed"]:
                raise RuntimeError("site {} must be sampled in trace".format(name))
            msg["done"] = True
            msg["value"] = guide_msg["value"]
            msg["infer"] = guide_msg["infer"]
